from __future__ import annotations

import pytest

from notekeeper.config import Settings


def test_settings_development_allows_defaults():
    # Development should stay frictionless: permissive defaults are allowed.
    s = Settings.model_validate({"environment": "development"})
    assert s.cors_origins_list() == ["*"]
    assert not s.s3_configured()
    assert not s.sqs_configured()


def test_settings_production_requires_explicit_cors():
    with pytest.raises(Exception) as excinfo:
        Settings.model_validate({"environment": "production"})

    assert "CORS_ALLOW_ORIGINS" in str(excinfo.value)


def test_settings_production_allows_safe_config():
    s = Settings.model_validate(
        {
            "environment": "production",
            "database_url": "postgresql+psycopg://u:p@localhost:5432/notes",
            "cors_allow_origins": "https://a.example.com, https://b.example.com",
        }
    )
    assert s.cors_origins_list() == ["https://a.example.com", "https://b.example.com"]
    assert s.security_warnings() == ["attachments use local storage in production"]


def test_settings_production_rejects_partial_s3_config():
    with pytest.raises(Exception) as excinfo:
        Settings.model_validate(
            {
                "environment": "production",
                "cors_allow_origins": "https://example.com",
                "s3_bucket": "bucket",
            }
        )

    msg = str(excinfo.value)
    assert "S3 config incomplete" in msg
    assert "S3_ENDPOINT_URL" in msg


def test_settings_production_rejects_non_positive_worker_timeout():
    with pytest.raises(Exception) as excinfo:
        Settings.model_validate(
            {
                "environment": "production",
                "cors_allow_origins": "https://example.com",
                "archive_worker_timeout_seconds": 0,
            }
        )

    assert "ARCHIVE_WORKER_TIMEOUT_SECONDS" in str(excinfo.value)


def test_settings_sqs_is_configured_by_url_or_endpoint():
    assert Settings.model_validate({"sqs_queue_url": "http://sqs.local/q"}).sqs_configured()
    assert Settings.model_validate({"sqs_endpoint_url": "http://localhost:4566"}).sqs_configured()
