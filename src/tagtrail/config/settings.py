"""
Telemetry settings configuration
"""

import os
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class TelemetrySettings(BaseSettings):
    """Telemetry application settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database URL
    database_url: Optional[str] = os.getenv("TAGTRAIL_DATABASE_URL") or os.getenv("DATABASE_URL")

    # IP hashing. Both are optional:
    # - no ip_hash_secret: keyed hash is stored as NULL (warned once per process)
    # - no ip_hash_salt: legacy hash falls back to the historical built-in salt
    ip_hash_secret: Optional[str] = None
    ip_hash_salt: Optional[str] = None

    # Geo lookup
    geo_enabled: bool = True
    geo_lookup_url: str = "http://ip-api.com/json"
    geo_timeout_seconds: float = 3.0

    # Identity cookies
    session_ttl_minutes: int = 30
    cookie_secure: bool = False

    # Direct-access scans within this window of an existing scan are duplicates
    dedup_window_seconds: int = 30

    # Fallback host for redirect URLs when the request carries none
    default_host: str = "twojenfc.pl"

    # API server
    api_host: str = os.getenv("TAGTRAIL_API_HOST", os.getenv("API_HOST", "0.0.0.0"))
    api_port: int = int(os.getenv("TAGTRAIL_API_PORT", os.getenv("PORT", "8000")))

    log_level: str = "INFO"

    # Add missing telemetry columns and indexes at startup
    auto_migrate: bool = False

    def get_database_url(self) -> str:
        """Database URL with the async SQLite default applied"""
        url = self.database_url or os.getenv("DATABASE_URL")
        if url:
            return url
        return "sqlite+aiosqlite:///./.data/tagtrail.db"


# Global settings instance
settings = TelemetrySettings()
