import os
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
from urllib.parse import quote_plus

load_dotenv()

class Settings(BaseSettings):
    """
    Nook settings, read from the environment (and .env when present).
    DATABASE_URL_OVERRIDE takes precedence over the DB_* parts.
    """

    # Application
    PROJECT_NAME: str = "Nook MDM API"
    VERSION: str = "1.0.0"
    DESCRIPTION: str = "Parental device management backed by SimpleMDM"
    API_V1_STR: str = "/api/v1"

    # Security
    SECRET_KEY: str = os.getenv("SECRET_KEY", "a_random_secret_key_for_development")
    ALGORITHM: str = "HS256"

    # Database
    DB_USER: str = os.getenv("DB_USER", "")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", "")
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: str = os.getenv("DB_PORT", "5432")
    DB_NAME: str = os.getenv("DB_NAME", "nook")
    DATABASE_URL_OVERRIDE: Optional[str] = os.getenv("DATABASE_URL_OVERRIDE")

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        # URL-encode the username and password to handle special characters
        encoded_user = quote_plus(self.DB_USER)
        encoded_password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+asyncpg://{encoded_user}:{encoded_password}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # SimpleMDM
    SIMPLEMDM_API_KEY: str = os.getenv("SIMPLEMDM_API_KEY", "")
    SIMPLEMDM_BASE_URL: str = os.getenv("SIMPLEMDM_BASE_URL", "https://a.simplemdm.com/api/v1")
    SIMPLEMDM_TIMEOUT_SECONDS: float = float(os.getenv("SIMPLEMDM_TIMEOUT_SECONDS", "10"))

    # Redis (per-family sync locks)
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_PASSWORD: Optional[str] = os.getenv("REDIS_PASSWORD")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SOCKET_TIMEOUT: int = int(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))
    SYNC_LOCK_TIMEOUT_SECONDS: int = int(os.getenv("SYNC_LOCK_TIMEOUT_SECONDS", "60"))

    # Enrollment
    ENROLLMENT_CODE_TTL_HOURS: int = int(os.getenv("ENROLLMENT_CODE_TTL_HOURS", "24"))

    # Logging
    LOG_DIRECTORY: str = os.getenv("LOG_DIRECTORY", "logs")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_TIMEZONE: str = os.getenv("LOG_TIMEZONE", "US/Eastern")

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")

settings = Settings()
