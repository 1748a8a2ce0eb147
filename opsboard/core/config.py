"""
Application configuration — Pydantic Settings.

Loads from .env with strict validation. Single source of truth
for all environment-dependent values: database credentials, refresh
cadence, cache TTLs, backoff, upstream token and table/column overrides.
"""

from functools import lru_cache
from typing import List
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    APP_NAME: str = "OpsBoard"
    DEBUG: bool = False
    API_PORT: int = 8003
    CORS_ORIGINS: str = "*"

    # ── Database (SQL Server, same host for both databases) ──────
    DB_HOST: str = "localhost"
    DB_PORT: int = 1433
    DB_USER: str = ""
    DB_PASSWORD: str = ""
    DB_ODBC_DRIVER: str = "ODBC Driver 18 for SQL Server"
    DB_ENCRYPT: bool = True
    DB_TRUST_CERT: bool = True
    DB_NAME_LOCAL: str = "colaboradores"
    DB_NAME_CLOUD: str = "vieira_online"
    DB_POOL_SIZE: int = 10
    DB_QUERY_TIMEOUT_S: float = 10.0

    # ── Refresh cadence & caches ─────────────────────────────────
    REFRESH_INTERVAL_S: float = 60.0
    STATUS_CACHE_TTL_S: float = 15.0
    RANKING_CACHE_TTL_S: float = 15.0
    COMPANY_CACHE_TTL_S: float = 60.0
    PHOTO_CACHE_TTL_S: float = 15.0
    CACHE_STALE_GRACE_S: float = 3600.0
    CACHE_SWEEP_INTERVAL_S: float = 120.0

    # ── Backoff (scheduler level) ────────────────────────────────
    BACKOFF_BASE_S: float = 15.0
    BACKOFF_MAX_S: float = 300.0
    BACKOFF_MAX_FAILURES: int = 6

    # ── Argus status API ─────────────────────────────────────────
    ARGUS_TOKEN: str = ""
    ARGUS_RETRIES: int = 2
    ARGUS_RETRY_DELAY_S: float = 0.4
    ARGUS_CONCURRENCY: int = 6
    ARGUS_TIMEOUT_S: float = 5.0

    # ── Tables ───────────────────────────────────────────────────
    COLLABORATOR_TABLE: str = "dbo.colaboradores"
    STATUS_TABLE: str = "dbo.status_operador"
    RANKING_TABLE: str = "dbo.ranking_operador"
    SALES_TABLE: str = "cadastrados"
    PHOTO_TABLE: str = "operadores_new"

    # ── Organization / team filters ──────────────────────────────
    STATUS_ORGANIZATION: str = "VIEIRACRED"
    LOGGED_IN_ORGANIZATION: str = ""
    LOGGED_IN_TEAMS: str = ""
    DEFAULT_ORGANIZATION: str = "VIEIRACRED"
    RANKING_TOP_N: int = 5
    SALES_BATCH_SIZE: int = 300

    # ── Photos ───────────────────────────────────────────────────
    APP_BASE_URL: str = "http://localhost:8003"
    DEFAULT_PHOTO_PATH: str = "/vieira-icone.jpg"
    PLACEHOLDER_PHOTO_MARKERS: str = "logo-vieira,logo_vieira"

    # ── Admin surface ────────────────────────────────────────────
    ADMIN_TOKEN: str = ""

    # ── Logging ──────────────────────────────────────────────────
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    # ── Derived values ───────────────────────────────────────────

    @property
    def refresh_interval(self) -> float:
        """Scheduler period, never below 10 seconds."""
        return max(10.0, self.REFRESH_INTERVAL_S)

    @property
    def logged_in_organization(self) -> str:
        return self.LOGGED_IN_ORGANIZATION or self.STATUS_ORGANIZATION

    @property
    def logged_in_teams(self) -> List[str]:
        return _split_csv(self.LOGGED_IN_TEAMS)

    @property
    def placeholder_photo_markers(self) -> List[str]:
        return [m.lower() for m in _split_csv(self.PLACEHOLDER_PHOTO_MARKERS)]

    @property
    def cors_origins(self) -> List[str]:
        return _split_csv(self.CORS_ORIGINS) or ["*"]

    # ── URL Builders ─────────────────────────────────────────────

    def _build_url(self, db_name: str) -> str:
        """Build a SQLAlchemy ``mssql+aioodbc`` URL for *db_name*."""
        cred = quote_plus(self.DB_USER)
        if self.DB_PASSWORD:
            cred = f"{cred}:{quote_plus(self.DB_PASSWORD)}"
        driver = quote_plus(self.DB_ODBC_DRIVER)
        encrypt = "yes" if self.DB_ENCRYPT else "no"
        trust = "yes" if self.DB_TRUST_CERT else "no"
        return (
            f"mssql+aioodbc://{cred}@{self.DB_HOST}:{self.DB_PORT}/{db_name}"
            f"?driver={driver}&Encrypt={encrypt}&TrustServerCertificate={trust}"
        )

    @property
    def local_db_url(self) -> str:
        return self._build_url(self.DB_NAME_LOCAL)

    @property
    def cloud_db_url(self) -> str:
        return self._build_url(self.DB_NAME_CLOUD)


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
