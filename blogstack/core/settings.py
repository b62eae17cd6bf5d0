from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List


def _csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")
    ddb_endpoint_url: str = os.environ.get("DDB_ENDPOINT_URL", "")

    # Single table + GSIs
    table_name: str = os.environ.get("DYNAMODB_TABLE_NAME", "Qalam")
    gsi1_name: str = os.environ.get("DDB_GSI1_NAME", "GSI1")
    gsi2_name: str = os.environ.get("DDB_GSI2_NAME", "GSI2")
    index_poll_seconds: int = int(os.environ.get("INDEX_POLL_SECONDS", "30"))
    scan_page_size: int = int(os.environ.get("SCAN_PAGE_SIZE", "500"))

    # Optimistic writes / cascades
    version_retry_attempts: int = int(os.environ.get("VERSION_RETRY_ATTEMPTS", "5"))
    cascade_max_attempts: int = int(os.environ.get("CASCADE_MAX_ATTEMPTS", "3"))

    # Media bucket
    media_bucket: str = os.environ.get("MEDIA_BUCKET", "qalam-media-global")
    upload_url_ttl_seconds: int = int(os.environ.get("UPLOAD_URL_TTL_SECONDS", "3600"))
    download_url_ttl_seconds: int = int(os.environ.get("DOWNLOAD_URL_TTL_SECONDS", str(7 * 24 * 3600)))
    max_upload_bytes: int = int(os.environ.get("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

    # Auth
    jwt_secret: str = os.environ.get("JWT_SECRET", "")
    jwt_algorithm: str = os.environ.get("JWT_ALGORITHM", "HS256")
    jwt_ttl_seconds: int = int(os.environ.get("JWT_TTL_SECONDS", str(24 * 3600)))
    bcrypt_rounds: int = int(os.environ.get("BCRYPT_ROUNDS", "10"))

    # HTTP
    cors_origins: List[str] = field(
        default_factory=lambda: _csv(
            os.environ.get(
                "CORS_ORIGINS",
                "http://localhost:5173,http://localhost:3000,http://localhost:3001",
            )
        )
    )
    frontend_url: str = os.environ.get("FRONTEND_URL", "http://localhost:5173").rstrip("/")

    # Observability
    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()
    metrics_enabled: bool = os.environ.get("METRICS_ENABLED", "1") not in ("0", "false", "False")


S = Settings()
