from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        protected_namespaces=(),
    )

    env: Literal["local", "prod", "test"] = Field(default="local", alias="ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8080, alias="PORT")

    storage_backend: Literal["gcs", "s3", "local"] = Field(default="gcs", alias="STORAGE_BACKEND")
    storage_bucket: str = Field(default="espaze-seller-product-assets", alias="STORAGE_BUCKET")
    public_base_url: HttpUrl | None = Field(default=None, alias="PUBLIC_BASE_URL")

    gcs_project: str | None = Field(default=None, alias="GCS_PROJECT")

    s3_endpoint: HttpUrl | None = Field(default=None, alias="S3_ENDPOINT_URL")
    s3_access_key: str | None = Field(default=None, alias="S3_ACCESS_KEY")
    s3_secret_key: str | None = Field(default=None, alias="S3_SECRET_KEY")
    s3_region: str | None = Field(default=None, alias="S3_REGION")

    local_storage_dir: Path = Field(default=Path("./storage"), alias="LOCAL_STORAGE_DIR")
    local_create_bucket: bool = Field(default=True, alias="LOCAL_CREATE_BUCKET")

    max_upload_bytes: int = Field(default=100 * 1024 * 1024, gt=0, alias="MAX_UPLOAD_BYTES")
    uploaded_by: str = Field(default="asset-gateway", alias="UPLOADED_BY")

    cors_allow_origin: str = Field(default="*", alias="CORS_ALLOW_ORIGIN")
    disconnect_poll_interval: float = Field(default=0.5, gt=0, alias="DISCONNECT_POLL_INTERVAL")


@lru_cache
def get_settings() -> Settings:
    return Settings()
