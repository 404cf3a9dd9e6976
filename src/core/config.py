"""Application configuration.

Responsibilities:
- Centralizes settings (pydantic-settings) without leaking env/file handling
  into the core services.
- Sources, highest priority first: init kwargs, `DYNDNS_SYNC_*` environment
  variables, `.env` files, the TOML config file, defaults.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import ClassVar, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic.config import ConfigDict
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from core.domain.errors import ConfigurationError
from core.domain.family import IpVersionSelection

CONFIG_FILE_ENV = "DYNDNS_SYNC_CONFIG_FILE"


def get_user_config_dir() -> Path:
    """Per-user configuration directory (cross-platform, no extra dependencies)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / "dyndns-sync"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "dyndns-sync"

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "dyndns-sync"
    return Path.home() / ".config" / "dyndns-sync"


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def resolve_config_file() -> Path:
    explicit = os.environ.get(CONFIG_FILE_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return get_user_config_dir() / "config.toml"


class RateLimitSettings(BaseModel):
    """Outbound call budget: at most `capacity` calls per rolling `window_seconds`."""

    model_config = ConfigDict(frozen=True)

    capacity: int = Field(..., ge=1, description="Calls allowed per window.")
    window_seconds: float = Field(..., gt=0, description="Rolling window length (seconds).")


class RetrySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1, le=10, description="Total attempts per provider call.")
    base_delay_seconds: float = Field(default=1.0, ge=0, description="First backoff delay.")
    max_delay_seconds: float = Field(default=30.0, ge=0, description="Backoff cap.")
    jitter_seconds: float = Field(default=0.35, ge=0, description="Uniform random jitter added to each delay.")
    rate_limit_floor_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Minimum delay after the provider answered 429.",
    )


class SubdomainConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(default="", description="Relative label; '' or '@' for the apex, '*' for wildcard.")
    ip_version: IpVersionSelection = Field(default=IpVersionSelection.BOTH)


class CloudflareConfig(BaseModel):
    """One Cloudflare zone."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    name: str = Field(default="", description="Zone name (example.com).")
    zone_id: str = Field(default="", description="32 character zone identifier.")
    api_token: str = Field(default="", description="API token with DNS edit permission.")
    proxied: bool = Field(default=False, description="Proxy records through Cloudflare.")
    ttl: int = Field(default=1, ge=1, description="Record TTL; 1 means automatic.")
    rate_limit: RateLimitSettings = Field(
        default_factory=lambda: RateLimitSettings(capacity=1200, window_seconds=300),
    )
    subdomains: list[SubdomainConfig] = Field(default_factory=list)


class ArvanCloudConfig(BaseModel):
    """One ArvanCloud CDN domain."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    domain: str = Field(default="", description="Domain registered in ArvanCloud (example.com).")
    api_token: str = Field(default="", description="Machine user API key ('Apikey ...').")
    ttl: int = Field(default=120, ge=1)
    cloud: bool = Field(default=False, description="Serve records through the Arvan CDN.")
    rate_limit: RateLimitSettings = Field(
        default_factory=lambda: RateLimitSettings(capacity=120, window_seconds=60),
    )
    subdomains: list[SubdomainConfig] = Field(default_factory=list)


class SourceDescriptor(BaseModel):
    """An HTTP service returning the caller's address as text or JSON."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    url_v4: str | None = Field(default=None, description="Endpoint queried over IPv4.")
    url_v6: str | None = Field(default=None, description="Endpoint queried over IPv6.")
    enabled: bool = True
    max_requests_per_hour: int = Field(
        default=200,
        ge=1,
        description="Queries allowed per family in any rolling hour; past that the source sits out.",
    )
    retries: int = Field(default=1, ge=0, description="Extra attempts after a network error or 5xx.")
    retry_delay_seconds: float = Field(default=0.5, ge=0)

    @model_validator(mode="after")
    def _needs_an_endpoint(self) -> "SourceDescriptor":
        if not self.url_v4 and not self.url_v6:
            raise ValueError(f"source {self.name!r} needs url_v4 and/or url_v6")
        return self


def default_sources() -> list[SourceDescriptor]:
    return [
        SourceDescriptor(name="ipify", url_v4="https://api4.ipify.org", url_v6="https://api6.ipify.org"),
        SourceDescriptor(
            name="icanhazip",
            url_v4="https://ipv4.icanhazip.com",
            url_v6="https://ipv6.icanhazip.com",
        ),
        SourceDescriptor(name="ident.me", url_v4="https://v4.ident.me", url_v6="https://v6.ident.me"),
        SourceDescriptor(name="ifconfig.me", url_v4="https://ifconfig.me/ip", url_v6="https://ifconfig.me/ip"),
        SourceDescriptor(name="seeip", url_v4="https://api.seeip.org/jsonip", url_v6="https://api.seeip.org/jsonip"),
    ]


class AppSettings(BaseSettings):
    """Central application configuration.

    Handed to the core already validated; the core never reads the
    environment itself.
    """

    model_config = SettingsConfigDict(
        env_prefix="DYNDNS_SYNC_",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
        # Project first (dev), then the per-user file.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    config_file_override: ClassVar[Path | None] = None

    update_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between detection cycles.",
    )
    consensus_threshold: int = Field(
        default=2,
        ge=1,
        description="Sources that must report the same address before it is trusted.",
    )
    source_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for one discovery query (seconds).",
    )
    http_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Timeout per provider request (seconds).",
    )
    user_agent: str = Field(
        default="dyndns-sync/0.1",
        min_length=1,
        description="User-Agent for every outbound request.",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    sources: list[SourceDescriptor] = Field(
        default_factory=default_sources,
        description="Ordered discovery sources; order breaks consensus ties.",
    )
    interface_detection: bool = Field(
        default=False,
        description="Also read global addresses from local network interfaces.",
    )
    interface_names: list[str] = Field(
        default_factory=list,
        description="Restrict interface detection to these interfaces (empty = all).",
    )

    retry: RetrySettings = Field(default_factory=RetrySettings)
    disable_on_auth_failure: bool = Field(
        default=False,
        description="Stop calling a provider after it rejects the credentials.",
    )

    cloudflare: list[CloudflareConfig] = Field(default_factory=list)
    arvancloud: list[ArvanCloudConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _threshold_reachable(self) -> "AppSettings":
        available = len(self.enabled_sources()) + (1 if self.interface_detection else 0)
        if self.consensus_threshold > available:
            raise ValueError(
                f"consensus_threshold={self.consensus_threshold} exceeds the "
                f"{available} enabled discovery source(s)"
            )
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        toml_file = cls.config_file_override or resolve_config_file()
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            file_secret_settings,
        )

    @classmethod
    def load(cls, config_file: Path | None = None) -> "AppSettings":
        """Build settings, reading `config_file` instead of the default TOML path."""

        if config_file is None:
            return cls()

        class AppSettingsFromFile(cls):  # type: ignore[misc, valid-type]
            config_file_override = config_file

        return AppSettingsFromFile()

    def enabled_sources(self) -> list[SourceDescriptor]:
        return [source for source in self.sources if source.enabled]

    def enabled_provider_count(self) -> int:
        return sum(1 for cfg in self.cloudflare if cfg.enabled) + sum(
            1 for cfg in self.arvancloud if cfg.enabled
        )


EXAMPLE_CONFIG = """\
# dyndns-sync configuration

update_interval_seconds = 300
consensus_threshold = 2
source_timeout_seconds = 10
log_level = "INFO"

# Read global addresses from local interfaces as one more discovery source.
interface_detection = false

# Keep calling a provider after it rejects the credentials (they may be rotated).
disable_on_auth_failure = false

# Discovery services default to ipify, icanhazip, ident.me, ifconfig.me and seeip.
# Listing [[sources]] replaces them; each has its own hourly budget.
# [[sources]]
# name = "ipify"
# url_v4 = "https://api4.ipify.org"
# url_v6 = "https://api6.ipify.org"
# max_requests_per_hour = 200
# retries = 1

[retry]
max_attempts = 3
base_delay_seconds = 1.0
max_delay_seconds = 30.0
rate_limit_floor_seconds = 10.0

[[cloudflare]]
enabled = true
name = "example.com"
zone_id = "your_zone_id"
api_token = "your_api_token"
proxied = false
rate_limit = { capacity = 1200, window_seconds = 300 }

[[cloudflare.subdomains]]
name = "www"
ip_version = "both"

[[cloudflare.subdomains]]
# Empty name means the apex.
name = ""
ip_version = "v4"

[[arvancloud]]
enabled = false
domain = "example.ir"
api_token = "Apikey your_api_key"

[[arvancloud.subdomains]]
name = "home"
ip_version = "v4"
"""


def write_example_config(path: Path | None = None, *, force: bool = False) -> Path:
    """Write the example TOML config, refusing to overwrite unless `force`."""

    target = path or resolve_config_file()
    if target.exists() and not force:
        raise FileExistsError(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(EXAMPLE_CONFIG, encoding="utf-8")
    return target


def load_settings(config_file: Path | None = None) -> AppSettings:
    """Load settings, reporting any validation problem as `ConfigurationError`."""

    try:
        return AppSettings.load(config_file)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'settings'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigurationError(f"invalid settings: {problems}") from exc
    except ValueError as exc:
        # Malformed TOML surfaces as tomllib.TOMLDecodeError.
        raise ConfigurationError(f"unreadable configuration: {exc}") from exc
