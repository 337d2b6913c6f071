"""
Configuration for Case Documents Service
========================================

Environment variables:
- LEGACY_ID_PREFIX: Marker carried by legacy case references (default: legacy_)
- PROTECTED_DOCUMENT_NAMES: JSON list of default document names that bulk
  deletion must never remove
- SYSTEM_ACTOR_NAME: Display name used when no actor is supplied
- UNKNOWN_ACTOR_NAME: Display name for user ids that cannot be resolved
- REDIS_URL: Redis connection for the audit retry queue
- AUDIT_QUEUE_NAME: RQ queue used for audit retries (default: low)
- AUDIT_RETRY_MAX: Max retries for a deferred history entry (default: 3)
- DUE_SOON_DAYS: Look-ahead window for due-soon listings (default: 1)

DATABASE_URL is read by db.session, not here, so tests can swap it at runtime.
"""

from typing import List
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Case identity
    legacy_id_prefix: str = "legacy_"

    # Default documents that can never be bulk-removed
    protected_document_names: List[str] = [
        "Passport Copy",
        "Birth Certificate",
        "Marriage Certificate",
        "Police Certificate",
    ]

    # Actor display names
    system_actor_name: str = "System User"
    unknown_actor_name: str = "Unknown User"

    # Audit retry queue
    redis_url: str = "redis://localhost:6379/0"
    audit_queue_name: str = "low"
    audit_retry_max: int = 3
    audit_retry_timeout: int = 60

    # Listings
    due_soon_days: int = 1

    # Service info
    service_version: str = "1.0.0"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    def validate_config(self) -> List[str]:
        """Validate configuration, return list of warnings"""
        warnings = []

        if not self.legacy_id_prefix:
            warnings.append("LEGACY_ID_PREFIX is empty; every case reference will resolve to the current schema")

        if not self.protected_document_names:
            warnings.append("PROTECTED_DOCUMENT_NAMES is empty; bulk deletion can remove default documents")

        if self.audit_retry_max < 1:
            warnings.append("AUDIT_RETRY_MAX < 1; deferred history entries will not be retried")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


def protected_names() -> frozenset:
    """Normalized protected document names for comparisons"""
    return frozenset(n.strip().lower() for n in get_settings().protected_document_names)
