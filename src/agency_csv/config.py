"""Application settings using Pydantic Settings"""
from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./agency_csv.db"

    APP_ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    CSV_UPLOAD_DIR: str = "./uploads/csv"
    CSV_MAX_UPLOAD_MB: int = 10
    CSV_ALLOWED_EXTENSIONS: str = "csv,txt"
    CSV_PROGRESS_BATCH_SIZE: int = 100
    CSV_EXPORT_BATCH_SIZE: int = 1000

    IMPORT_RUNNER_ENABLED: bool = False
    IMPORT_RUNNER_INTERVAL_MINUTES: int = 1

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        allowed = ["dev", "test", "staging", "prod"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of: {allowed}")
        return v

    @field_validator("CSV_PROGRESS_BATCH_SIZE", "CSV_EXPORT_BATCH_SIZE")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch sizes must be positive")
        return v

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "prod"

    @property
    def max_upload_bytes(self) -> int:
        return self.CSV_MAX_UPLOAD_MB * 1024 * 1024

    @property
    def allowed_extensions(self) -> List[str]:
        return [e.strip().lower().lstrip(".") for e in self.CSV_ALLOWED_EXTENSIONS.split(",") if e.strip()]

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    return settings
