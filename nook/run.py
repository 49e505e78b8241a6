#!/usr/bin/env python3
"""
Development server for the Nook API.
"""
import os

from nook.core.logging import setup_logging
logger = setup_logging()

import uvicorn

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    logger.info(f"Starting Nook API on port {port}")
    uvicorn.run("nook.main:app", host="0.0.0.0", port=port, reload=True, log_level="info")
