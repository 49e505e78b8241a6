#!/usr/bin/env python3
"""
Create the Nook tables.

Usage: python -m nook.setup_database
"""
from nook.core.logging import setup_logging, log_exception, logger
from nook.core.database import get_sync_engine, log_database_config, metadata
from nook.db import models  # noqa: F401  registers the tables

def main():
    setup_logging()
    log_database_config()
    with log_exception("nook.setup_database"):
        engine = get_sync_engine()
        metadata.create_all(engine)
    logger.info(f"Tables ready: {', '.join(sorted(metadata.tables))}")

if __name__ == "__main__":
    main()
