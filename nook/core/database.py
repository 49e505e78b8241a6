import databases
import sqlalchemy
from sqlalchemy import create_engine
from urllib.parse import urlparse

from nook.core.config import settings
from nook.core.logging import logger

def log_database_config():
    """Log database configuration details for debugging, without the password."""
    parsed = urlparse(settings.DATABASE_URL)
    logger.info(
        f"Database: scheme={parsed.scheme} host={parsed.hostname} port={parsed.port} "
        f"name={parsed.path.lstrip('/')} user={parsed.username} "
        f"password={'SET' if parsed.password else 'NOT_SET'}"
    )

def build_database(url: str) -> databases.Database:
    """Create the async connection object; pool options only apply to PostgreSQL."""
    if url.startswith("postgresql"):
        return databases.Database(
            url,
            min_size=2,      # Minimum number of connections in the pool
            max_size=15,     # Concurrent requests each hold a connection across MDM calls
            ssl="prefer"     # Use SSL if available
        )
    return databases.Database(url)

def get_sync_engine(url: str = None):
    """SQLAlchemy engine for table creation and other non-async maintenance."""
    engine_url = (url or settings.DATABASE_URL).replace("+asyncpg", "").replace("+aiosqlite", "")
    if engine_url.startswith("postgresql"):
        return create_engine(
            engine_url,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True
        )
    return create_engine(engine_url)

database = build_database(settings.DATABASE_URL)

metadata = sqlalchemy.MetaData()
