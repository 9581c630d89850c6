"""
cluster_provisioner.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hide provider secrets from repr/logging.
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Strict env-driven configuration (prefix `CLUSTER_`).
    Defaults are safe for local dev; timings mirror the provider's typical behaviour.
    """

    model_config = SettingsConfigDict(env_prefix="CLUSTER_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "cluster-provisioner"
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    api_host: str = "0.0.0.0"
    api_port: int = 3001

    # Provider API
    provider_base_url: str = "https://cloud.mongodb.com/api/atlas/v1.0"
    provider_project_id: str = ""
    provider_public_key: str = Field(default="", repr=False)
    provider_private_key: str = Field(default="", repr=False)
    provider_region: str = "US_EAST_2"
    provider_cloud: str = "AZURE"
    provider_db_version: str = "7.0"
    provider_timeout_seconds: float = 30.0

    # Validation
    allowed_tiers: tuple[str, ...] = ("M10", "M20", "M30")

    # Progress estimation
    nominal_duration_seconds: float = 8 * 60
    progress_cap: int = 95
    progress_tick_seconds: float = 1.0

    # Reconciliation polling
    poll_grace_seconds: float = 30.0
    poll_interval_seconds: float = 10.0
    max_provisioning_seconds: float = 24 * 60 * 60
    # Resumed records whose create was never acknowledged fail once the provider
    # has reported not-found for this long.
    unacknowledged_timeout_seconds: float = 5 * 60

    # Deletion confirmation
    deletion_poll_interval_seconds: float = 15.0
    deletion_timeout_seconds: float = 12 * 60

    # Persistence + retention
    snapshot_path: Path = Path("./cluster-requests.json")
    sweep_interval_seconds: float = 5 * 60
    ready_retention_seconds: float = 24 * 60 * 60
    failed_retention_seconds: float = 60 * 60

    # Post-ready auxiliary feature (database auditing)
    enable_post_ready_feature: bool = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Every timing knob lives here so tests can shrink intervals without patching modules.
