from __future__ import annotations

from typing import ClassVar, final

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "NoteKeeper"
    api_prefix: str = "/api/v1"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    database_url: str = "sqlite:///./dev.db"
    log_level: str = "INFO"

    # Primary env: CORS_ALLOW_ORIGINS; also accept CORS_ORIGINS as alias.
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "CORS_ORIGINS"),
    )

    # Notes
    max_notes: int = 10

    # Attachments
    attachments_local_dir: str = ".data/attachments"
    attachments_max_size_bytes: int = 25 * 1024 * 1024
    max_attachments: int = 3
    # Local storage only: deleted objects are kept under .deleted/ and listed as deleted.
    storage_soft_delete: bool = False

    # S3 / any S3-compatible provider
    s3_endpoint_url: str = ""
    s3_region: str = ""
    s3_bucket: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_force_path_style: bool = False

    # Archive request queue. SQS is used when SQS_QUEUE_URL or SQS_ENDPOINT_URL is set.
    archive_queue_name: str = "attachment-zip-requests"
    archive_queue_local_dir: str = ".data/queue"
    archive_queue_base64: bool = True
    archive_queue_visibility_timeout_seconds: int = 120
    sqs_queue_url: str = ""
    sqs_endpoint_url: str = ""
    sqs_region: str = ""

    # Archive worker
    archive_worker_timeout_seconds: float = 60.0
    archive_worker_concurrency: int = 4
    archive_worker_poll_seconds: float = 2.0
    archive_worker_batch_size: int = 10
    archive_worker_max_receive_count: int = 5
    # Failed builds are released with retry_delay * receive_count seconds of delay.
    archive_worker_retry_delay_seconds: int = 5
    # Run the worker loop inside the API process (single-host deployments, dev).
    archive_worker_embedded: bool = False

    # Validate production settings early to fail fast on unsafe defaults.
    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        if self.environment.strip().lower() != "production":
            return self

        errors: list[str] = []

        cors_v = self.cors_allow_origins.strip()
        if not cors_v or cors_v == "*":
            errors.append("CORS_ALLOW_ORIGINS must be explicit (not '*') in production")

        # If any S3 setting is provided, require the full set to avoid silently falling back to local storage.
        s3_fields = {
            "S3_BUCKET": self.s3_bucket.strip(),
            "S3_ENDPOINT_URL": self.s3_endpoint_url.strip(),
            "S3_ACCESS_KEY_ID": self.s3_access_key_id.strip(),
            "S3_SECRET_ACCESS_KEY": self.s3_secret_access_key.strip(),
        }
        if any(v for v in s3_fields.values()) and any(not v for v in s3_fields.values()):
            missing = ",".join([k for k, v in s3_fields.items() if not v])
            errors.append(f"S3 config incomplete in production; missing: {missing}")

        if self.archive_worker_timeout_seconds <= 0:
            errors.append("ARCHIVE_WORKER_TIMEOUT_SECONDS must be positive in production")

        if errors:
            raise ValueError("Invalid production settings: " + "; ".join(errors))
        return self

    def cors_origins_list(self) -> list[str]:
        v = self.cors_allow_origins.strip()
        if not v:
            return []
        if v == "*":
            return ["*"]
        return _split_csv(v)

    def s3_configured(self) -> bool:
        return bool(
            self.s3_bucket.strip()
            and self.s3_endpoint_url.strip()
            and self.s3_access_key_id.strip()
            and self.s3_secret_access_key.strip()
        )

    def sqs_configured(self) -> bool:
        return bool(self.sqs_queue_url.strip() or self.sqs_endpoint_url.strip())

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        if self.cors_allow_origins.strip() == "*":
            warnings.append("CORS_ALLOW_ORIGINS='*' is permissive")
        if self.environment.strip().lower() == "production" and not self.s3_configured():
            warnings.append("attachments use local storage in production")
        return warnings


settings = Settings()
