"""
Application settings using Pydantic for type-safe configuration.

Loads configuration from environment variables (and a local ``.env``) for the
remote job sync engine. Per-source throttle and rate-limit numbers are not
settings; they live next to each source adapter.
"""

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file if it exists
load_dotenv()


def parse_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class JobSyncSettings(BaseSettings):
    """Job sync engine configuration."""

    model_config = SettingsConfigDict(env_prefix="JOB_SYNC_", extra="ignore")

    user_agent: str = Field(default="RemoteJobSync/1.0 (contact: set JOB_SYNC_USER_AGENT)")
    request_timeout_s: float = Field(default=30.0)
    enabled_sources: str = Field(default="greenhouse,lever,workable,remoteok,himalayas,jobicy")
    ats_rotation: str = Field(default="greenhouse,lever")
    aggregator_rotation: str = Field(default="remoteok,himalayas,jobicy")
    ats_jobs_per_company: int = Field(default=20)
    aggregator_max_jobs: int = Field(default=100)
    discovery_batch_size: int = Field(default=5)
    # Empty means the bundled shared/job_sync/data/companies.json
    companies_path: str = Field(default="")

    @property
    def enabled_source_keys(self) -> List[str]:
        return [name.lower() for name in parse_csv(self.enabled_sources)]

    @property
    def ats_rotation_keys(self) -> List[str]:
        return [name.lower() for name in parse_csv(self.ats_rotation)]

    @property
    def aggregator_rotation_keys(self) -> List[str]:
        return [name.lower() for name in parse_csv(self.aggregator_rotation)]


class WarehouseSettings(BaseSettings):
    """Postgres connection used by the persistent store."""

    model_config = SettingsConfigDict(env_prefix="WAREHOUSE_", extra="ignore")

    host: str = Field(default="warehouse")
    port: int = Field(default=5432)
    db: str = Field(default="remote_jobs")
    user: str = Field(default="")
    password: str = Field(default="")

    def dsn(self) -> str:
        if not self.user:
            raise EnvironmentError("Postgres user not set. Configure the WAREHOUSE_USER env var.")
        return f"host={self.host} port={self.port} dbname={self.db} user={self.user} password={self.password}"


class LogSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


class Settings(BaseSettings):
    """Main settings container aggregating all configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    job_sync: JobSyncSettings = Field(default_factory=JobSyncSettings)
    warehouse: WarehouseSettings = Field(default_factory=WarehouseSettings)
    log: LogSettings = Field(default_factory=LogSettings)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once and cached for the lifetime of the process.

    Returns:
        Settings instance with all configuration loaded
    """
    return Settings()
