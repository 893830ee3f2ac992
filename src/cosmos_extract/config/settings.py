"""Application settings using Pydantic.

Sources, highest precedence first:
  - values from a JSON config file passed to ``load_settings``
  - environment variables (GATEWAY_*, REPORT_*, COSMOS_EXTRACT_*)
  - .env in the project root, then the current directory
"""

import json
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from dotenv import load_dotenv
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from cosmos_extract.services._helpers import ensure_utc
from cosmos_extract.services.enums import CommissionFailurePolicy
from cosmos_extract.services.errors import ConfigurationError


def _project_root() -> Path:
    """Repository root. settings.py is in src/cosmos_extract/config/."""
    return Path(__file__).resolve().parent.parent.parent.parent


def _ensure_env_loaded() -> None:
    """Load .env from project root (then cwd) before any settings. Idempotent."""
    for candidate in (_project_root() / ".env", Path.cwd() / ".env"):
        if candidate.exists():
            load_dotenv(candidate, override=False)


_ensure_env_loaded()


class GatewaySettings(BaseSettings):
    """Remote search service and chain REST endpoints."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=(str(_project_root() / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    search_url: str = Field(default="", description="Search service base URL (heights, rewards)")
    lcd_url: str = Field(default="", description="Chain REST (LCD) base URL (delegations, validators)")
    auth_token: str = Field(default="", description="Value of the Authorization header")
    timeout: float = Field(default=30.0, description="Per-request timeout in seconds")
    requests_per_second: int = Field(default=33, description="Request ceiling for the gateway")
    retry_attempts: int = Field(default=3, description="Attempts per call, including the first")
    retry_delay: float = Field(default=1.0, description="Base delay between retries in seconds")

    def require_endpoints(self) -> None:
        if not self.search_url.strip():
            raise ConfigurationError("search service URL is not set (GATEWAY_SEARCH_URL)")
        if not self.lcd_url.strip():
            raise ConfigurationError("chain REST URL is not set (GATEWAY_LCD_URL)")
        if not self.auth_token.strip():
            raise ConfigurationError("auth token is not set (GATEWAY_AUTH_TOKEN)")
        if self.requests_per_second < 1:
            raise ConfigurationError("requests_per_second must be at least 1")


class ReportSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REPORT_",
        env_file=(str(_project_root() / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    network: str = Field(default="cosmos")
    chain_id: str = Field(default="cosmoshub-4")
    accounts: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Accounts to report on (JSON list or comma-separated)",
    )
    start_time: datetime | None = Field(default=None)
    end_time: datetime | None = Field(default=None)
    output: Path = Field(default=Path("out.csv"))
    max_workers: int = Field(default=1, description="Parallel (account, period) units; 1 = sequential")
    commission_failure_policy: CommissionFailurePolicy = Field(default=CommissionFailurePolicy.FAIL)

    @field_validator("accounts", mode="before")
    @classmethod
    def _split_accounts(cls, value: object) -> object:
        if isinstance(value, str):
            raw: str = value.strip()
            if raw.startswith("["):
                return json.loads(raw)
            return [a.strip() for a in raw.split(",") if a.strip()]
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="COSMOS_EXTRACT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = Field(default="development")
    debug: bool = Field(default=False)

    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    report: ReportSettings = Field(default_factory=ReportSettings)


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


def load_settings(config_path: Path | None = None) -> Settings:
    """Settings from the environment, overridden by a JSON config file when given."""
    if config_path is None:
        return get_settings()
    try:
        data: object = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Cannot read config file {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a JSON object")

    extra: dict[str, object] = {
        k: v for k, v in data.items() if k in ("environment", "debug")
    }
    try:
        return Settings(
            gateway=GatewaySettings(**data.get("gateway", {})),
            report=ReportSettings(**data.get("report", {})),
            **extra,
        )
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid config file {config_path}: {exc}") from exc


@dataclass
class RunConfig:
    """Run parameters consumed by the report core."""

    accounts: list[str]
    start_time: datetime | None
    end_time: datetime | None
    output_path: Path
    requests_per_second: int = 33
    network: str = "cosmos"
    chain_id: str = "cosmoshub-4"
    max_workers: int = 1
    commission_failure_policy: CommissionFailurePolicy = CommissionFailurePolicy.FAIL

    @classmethod
    def from_settings(cls, settings: Settings) -> "RunConfig":
        report: ReportSettings = settings.report
        return cls(
            accounts=list(report.accounts),
            start_time=report.start_time,
            end_time=report.end_time,
            output_path=report.output,
            requests_per_second=settings.gateway.requests_per_second,
            network=report.network,
            chain_id=report.chain_id,
            max_workers=report.max_workers,
            commission_failure_policy=report.commission_failure_policy,
        )

    def time_range(self) -> tuple[datetime, datetime]:
        if self.start_time is None or self.end_time is None:
            raise ConfigurationError("start and end time must both be set")
        return ensure_utc(self.start_time), ensure_utc(self.end_time)

    def validate(self) -> None:
        """Normalize times to UTC and drop duplicate accounts; raise on bad input."""
        self.accounts = list(dict.fromkeys(a.strip() for a in self.accounts if a.strip()))
        if not self.accounts:
            raise ConfigurationError("at least one account must be provided")
        if self.start_time is None:
            raise ConfigurationError("start time is not set")
        if self.end_time is None:
            raise ConfigurationError("end time is not set")
        self.start_time = ensure_utc(self.start_time)
        self.end_time = ensure_utc(self.end_time)
        if self.start_time > self.end_time:
            raise ConfigurationError("start time must come before end time")
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if self.requests_per_second < 1:
            raise ConfigurationError("requests_per_second must be at least 1")
        if not self.output_path.name:
            raise ConfigurationError("output path is not set")
