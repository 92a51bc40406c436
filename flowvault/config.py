from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List, Union

from dotenv import load_dotenv

load_dotenv()

DEFAULT_IMAGE_DOMAINS = [
    "storage.googleapis.com",
    "ai-sandbox-videofx",
    "labs.google",
    "googleapis.com",
]


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    ALLOWED_ORIGIN: str = "*"

    # Database (catalog)
    DATABASE_URL: str = "sqlite://./flowvault.db"
    SYNC_TABLE: str = "flow_images"

    # Storage
    STORAGE_DIR: str = "./storage"
    PUBLIC_BASE_URL: str = "http://localhost:8000/storage"
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    BUCKET_NAME: str = "flow-images"

    # Reconciliation
    SYNC_FOLDER: str = ""
    SYNC_MAX_OBJECTS: int = 2000
    SYNC_SECRET: str = ""
    RECONCILE_RATE_LIMIT: str = "30/minute"

    # Ingestion
    ALLOWED_IMAGE_DOMAINS: Union[str, List[str]] = DEFAULT_IMAGE_DOMAINS
    MAX_IMAGES: int = 50
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    MAX_TOTAL_SIZE: int = 100 * 1024 * 1024
    FETCH_TIMEOUT_SECONDS: float = 30.0
    INGEST_CONCURRENCY: int = 1

    # Security
    RATE_LIMIT_REQUESTS: int = 10
    RATE_LIMIT_WINDOW: int = 60

    @field_validator("ALLOWED_IMAGE_DOMAINS", mode="before")
    @classmethod
    def parse_domains(cls, v):
        if isinstance(v, str):
            return [d.strip().lower() for d in v.split(",") if d.strip()]
        return v

    @field_validator("SYNC_MAX_OBJECTS", "INGEST_CONCURRENCY", mode="after")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        return max(v, 1)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.SUPABASE_URL and (self.SUPABASE_SERVICE_ROLE_KEY or self.SUPABASE_KEY))

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
