from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "presigned-file-manager"
    app_env: str = "dev"
    log_level: str = "INFO"
    app_secret_key: str = "change-me-in-production"

    storage_endpoint_url: str | None = None
    storage_region: str = "auto"
    storage_bucket: str = "files"
    storage_access_key_id: str | None = None
    storage_secret_access_key: str | None = None
    storage_signature_version: str = "s3v4"
    storage_addressing_style: Literal["path", "virtual", "auto"] = "path"

    # S3 rejects presigned URLs that live longer than seven days.
    upload_ttl_seconds: int = Field(default=600, ge=1, le=604800)
    download_ttl_seconds: int = Field(default=600, ge=1, le=604800)
    list_page_size: int = Field(default=1000, ge=1, le=1000)
    key_timestamp_position: Literal["prefix", "suffix"] = "prefix"

    admin_role: str = "admin"
    require_auth_for_reads: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_prefix="FM_")


@lru_cache
def get_settings() -> Settings:
    return Settings()
