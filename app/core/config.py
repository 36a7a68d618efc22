from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    DATABASE_URL: str
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"

    # Redis settings
    REDIS_URL: str
    REPORT_CACHE_TTL_SECONDS: int = 300  # item/user reports per choice
    REPORT_CACHE_VERSION_TTL_SECONDS: int = 86400

    # SQLite only: how long a writer waits for the database lock
    SQLITE_BUSY_TIMEOUT_SECONDS: int = 30

    # Spend derivation
    DEFAULT_CURRENCY: str = "USD"
    SPEND_ITEM_DESCRIPTION_MAX_LENGTH: int = 280

    LOG_LEVEL: str = "INFO"

    PROJECT_NAME: str = "TripMate Choices API"
    PROJECT_VERSION: str = "1.0.0"
    PROJECT_DESCRIPTION: str = "Group orders and polls with capped selections for TripMate trips"

    class Config:
        env_file = ".env"


settings = Settings()
