from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from urllib.parse import quote_plus


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="tradelogapi/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "Trade Log Review API"
    PROJECT_NAME: str = "Trade Log Review API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_HOST: str = ""
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = ""
    POSTGRES_SCHEMA: str = "tradelog"

    # Full URL override (e.g. sqlite for local runs); otherwise built from POSTGRES_* vars
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    # Security
    SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Review lifecycle
    REVIEW_CREDIT_COST: int = 1
    REVIEW_TIMEOUT_SECONDS: float = 300.0
    REVIEW_WORKER_COUNT: int = 4
    REVIEW_QUEUE_MAX_DEPTH: int = 100
    REVIEW_RECONCILE_ON_STARTUP: bool = True

    # Credits
    DEFAULT_PLAN_ID: str = "basic"
    DEFAULT_PLAN_CREDITS: int = 5
    BONUS_CREDITS_PER_AD: int = 1
    BONUS_CREDIT_TTL_HOURS: int = 24
    MAX_DAILY_REWARDED_ADS: int = 3

    # Analysis engine
    ANALYSIS_ENGINE_URL: str = "http://localhost:8001"
    ANALYSIS_ENGINE_API_KEY: str = ""
    ANALYSIS_ENGINE_CALLBACK_TOKEN: str = ""
    ANALYSIS_ENGINE_SUBMIT_TIMEOUT_SECONDS: float = 10.0
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # Instruments
    INSTRUMENTS_FILE: str = "tradelogapi/data/instruments.json"

    # AWS
    AWS_REGION: str = "ap-south-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    SQS_ENDPOINT_URL: Optional[str] = None

    # Review events FIFO queue; unset means events are only logged
    REVIEW_EVENTS_QUEUE_URL: Optional[str] = None

    # Timezone (rewarded-ad quota day boundary)
    TIMEZONE: str = "Asia/Kolkata"


settings = Settings()
