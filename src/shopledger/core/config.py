from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
import yaml

from shopledger.core.errors import ConfigurationError

DEFAULT_API_VERSION = "2024-10"
DEFAULT_LEDGER_CURRENCY = "DKK"


@dataclass(frozen=True, slots=True)
class TenantConfig:
    """Per-tenant settings resolved once and threaded through every call."""

    tenant_id: str
    domain: str
    access_token: str
    currency: str
    conversion_rate: Decimal
    timezone: str = "UTC"
    default_country: str | None = None

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True, slots=True)
class SyncSettings:
    """Process-wide sync settings loaded at startup."""

    database_url: str = "sqlite:///shopledger.db"
    ledger_currency: str = DEFAULT_LEDGER_CURRENCY
    api_version: str = DEFAULT_API_VERSION
    page_size: int = 250
    max_line_items: int = 100
    rate_limit_ms: int = 250
    chunk_days: int = 30
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    poll_interval_seconds: float = 10.0
    bulk_timeout_seconds: float = 3600.0
    window_timeout_seconds: float | None = None
    max_concurrent_tenants: int = 5


class TenantRegistry:
    """Explicit lookup of tenant configuration by tenant id."""

    def __init__(self, tenants: Iterable[TenantConfig]) -> None:
        self._tenants: dict[str, TenantConfig] = {}
        for tenant in tenants:
            if tenant.tenant_id in self._tenants:
                raise ConfigurationError(f"Duplicate tenant id: {tenant.tenant_id!r}")
            self._tenants[tenant.tenant_id] = tenant

    def resolve(self, tenant_id: str) -> TenantConfig:
        try:
            return self._tenants[tenant_id]
        except KeyError as e:
            raise ConfigurationError(f"Unknown tenant: {tenant_id!r}") from e

    def tenant_ids(self) -> list[str]:
        return list(self._tenants)

    def __len__(self) -> int:
        return len(self._tenants)


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def load_sync_settings_from_env() -> SyncSettings:
    """Load sync settings from ``SHOPLEDGER_*`` environment variables."""
    load_dotenv(override=False)
    defaults = SyncSettings()

    backoff = _env_float("SHOPLEDGER_BACKOFF_SECONDS", defaults.backoff_seconds)
    poll_interval = _env_float(
        "SHOPLEDGER_POLL_INTERVAL_SECONDS", defaults.poll_interval_seconds
    )
    bulk_timeout = _env_float(
        "SHOPLEDGER_BULK_TIMEOUT_SECONDS", defaults.bulk_timeout_seconds
    )

    return SyncSettings(
        database_url=os.environ.get(
            "SHOPLEDGER_DATABASE_URL", defaults.database_url
        ).strip(),
        ledger_currency=os.environ.get(
            "SHOPLEDGER_LEDGER_CURRENCY", defaults.ledger_currency
        )
        .strip()
        .upper(),
        api_version=os.environ.get(
            "SHOPLEDGER_API_VERSION", defaults.api_version
        ).strip(),
        page_size=_env_int("SHOPLEDGER_PAGE_SIZE", defaults.page_size),
        max_line_items=_env_int("SHOPLEDGER_MAX_LINE_ITEMS", defaults.max_line_items),
        rate_limit_ms=_env_int(
            "SHOPLEDGER_RATE_LIMIT_MS", defaults.rate_limit_ms, minimum=0
        ),
        chunk_days=_env_int("SHOPLEDGER_CHUNK_DAYS", defaults.chunk_days),
        max_attempts=_env_int("SHOPLEDGER_MAX_ATTEMPTS", defaults.max_attempts),
        backoff_seconds=backoff or defaults.backoff_seconds,
        poll_interval_seconds=poll_interval or defaults.poll_interval_seconds,
        bulk_timeout_seconds=bulk_timeout or defaults.bulk_timeout_seconds,
        window_timeout_seconds=_env_float("SHOPLEDGER_WINDOW_TIMEOUT_SECONDS", None),
        max_concurrent_tenants=_env_int(
            "SHOPLEDGER_MAX_CONCURRENT_TENANTS", defaults.max_concurrent_tenants
        ),
    )


def tenant_from_mapping(
    data: Mapping[str, Any],
    *,
    environ: Mapping[str, str] | None = None,
) -> TenantConfig:
    """Build a ``TenantConfig`` from one YAML entry.

    The access token is never stored in the file; the entry names the
    environment variable holding it via ``token_env``.
    """
    env = os.environ if environ is None else environ

    tenant_id = str(data.get("id") or data.get("domain") or "").strip()
    domain = str(data.get("domain") or "").strip()
    if not tenant_id or not domain:
        raise ConfigurationError("Tenant entries require 'id' and 'domain'")

    token_env = str(data.get("token_env") or "").strip()
    if not token_env:
        raise ConfigurationError(f"Tenant {tenant_id!r} is missing 'token_env'")
    access_token = env.get(token_env, "").strip()
    if not access_token:
        raise ConfigurationError(
            f"Missing access token for tenant {tenant_id!r}: set {token_env}"
        )

    try:
        rate = Decimal(str(data.get("rate", "1")))
    except InvalidOperation as e:
        raise ConfigurationError(f"Tenant {tenant_id!r} has an invalid rate") from e
    if rate <= 0:
        raise ConfigurationError(f"Tenant {tenant_id!r} rate must be positive")

    timezone = str(data.get("timezone") or "UTC")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(
            f"Tenant {tenant_id!r} has an unknown timezone {timezone!r}"
        ) from e

    default_country = data.get("default_country")

    return TenantConfig(
        tenant_id=tenant_id,
        domain=domain,
        access_token=access_token,
        currency=str(data.get("currency") or DEFAULT_LEDGER_CURRENCY).upper(),
        conversion_rate=rate,
        timezone=timezone,
        default_country=str(default_country) if default_country else None,
    )


def load_tenants_from_yaml(
    path: Path,
    *,
    environ: Mapping[str, str] | None = None,
) -> TenantRegistry:
    """Load the tenant registry from a YAML file.

    Expected layout::

        tenants:
          - id: pompdelux-de
            domain: pompdelux-de.myshopify.com
            token_env: SHOPIFY_TOKEN_DE
            currency: EUR
            rate: "7.46"
            timezone: Europe/Copenhagen
    """
    if environ is None:
        load_dotenv(override=False)

    if not path.exists():
        raise ConfigurationError(f"Tenant config file not found: {path}")

    try:
        document = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid tenant config YAML in {path}: {e}") from e

    entries = document.get("tenants") if isinstance(document, dict) else None
    if not isinstance(entries, list):
        raise ConfigurationError(f"{path} must contain a 'tenants' list")

    return TenantRegistry(
        tenant_from_mapping(entry, environ=environ) for entry in entries
    )
