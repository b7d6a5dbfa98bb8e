from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_DISPATCH_MODES = {"thread", "queue"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CATALOGCLONE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "CatalogClone"
    environment: str = "production"
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    log_level: str = "INFO"

    state_root: Path = Field(default=Path("/state"))
    database_url: str | None = None

    assets_root: Path = Field(default=Path("/state/assets"))
    asset_public_base_url: str = "http://localhost:8080/assets"
    asset_concurrency: PositiveInt = 5
    asset_fetch_timeout_seconds: float = 30.0

    clone_batch_size: PositiveInt = 50
    clone_dispatch_mode: str = "thread"
    clone_batch_claim_ttl_seconds: PositiveInt = 900
    clone_job_deadline_seconds: PositiveInt | None = None
    job_poll_interval_seconds: float = 2.0

    default_page_size: PositiveInt = 50
    max_page_size: PositiveInt = 200

    @field_validator("state_root", "assets_root", mode="before")
    @classmethod
    def _normalize_path(cls, value: str | Path) -> Path:
        raw = str(value)
        if "~" in raw:
            raise ValueError("Home expansion syntax is not allowed in paths")
        if "$" in raw:
            raise ValueError("Environment variable syntax is not allowed in paths")
        path = Path(raw)
        if not path.is_absolute():
            raise ValueError("Path settings must be absolute")
        return path

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        self.state_root = self.state_root.resolve(strict=False)
        self.assets_root = self.assets_root.resolve(strict=False)

        self.state_root.mkdir(parents=True, exist_ok=True)
        if self.assets_root.as_posix() == "/state/assets" and self.state_root.as_posix() != "/state":
            self.assets_root = (self.state_root / "assets").resolve(strict=False)
        self.assets_root.mkdir(parents=True, exist_ok=True)

        if self.max_page_size < self.default_page_size:
            raise ValueError("max_page_size must be greater than or equal to default_page_size")

        normalized_mode = self.clone_dispatch_mode.lower().strip()
        if normalized_mode not in SUPPORTED_DISPATCH_MODES:
            raise ValueError(f"clone_dispatch_mode must be one of {sorted(SUPPORTED_DISPATCH_MODES)}")
        self.clone_dispatch_mode = normalized_mode

        if self.asset_fetch_timeout_seconds <= 0:
            raise ValueError("asset_fetch_timeout_seconds must be greater than zero")
        if self.job_poll_interval_seconds <= 0:
            raise ValueError("job_poll_interval_seconds must be greater than zero")

        self.asset_public_base_url = self.asset_public_base_url.rstrip("/")
        return self

    @property
    def effective_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        db_path = self.state_root / "catalogclone.sqlite3"
        return f"sqlite:///{db_path.as_posix()}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
