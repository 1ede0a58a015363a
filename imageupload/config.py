from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()


class Settings(BaseSettings):
    APP_NAME: str = "Image Upload Service"
    VERSION: str = "0.1.0"

    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    # Object store
    AWS_REGION: str = "us-east-1"
    S3_BUCKET_NAME: str = ""
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    S3_ENDPOINT: str = "s3.amazonaws.com"
    S3_SECURE: bool = True
    S3_CREATE_BUCKET: bool = False
    PUBLIC_URL_TEMPLATE: str = "https://{bucket}.s3.{region}.amazonaws.com/{key}"
    USE_MEMORY_STORE: bool = False

    # Uploads
    UPLOAD_PART_SIZE: int = 5 * 1024 * 1024
    UPLOAD_TIMEOUT_SECONDS: float = 60.0
    # 10 MiB of image is about 13.4 MiB once base64-encoded.
    MAX_JSON_BODY_BYTES: int = 15 * 1024 * 1024

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
