"""Daily scan quota: configuration, usage counters and the scan gate.

Usage counters reset lazily: the first read on a new local date zeroes
them and persists the reset. There is no separate reset timer.

Storage keys:
    scan:config -> ScanConfig.to_dict()
    scan:usage -> ScanUsage.to_dict()
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..storage import KeyValueStore

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

CONFIG_KEY = "scan:config"
USAGE_KEY = "scan:usage"

DEFAULT_MAX_SCANS_PER_DAY = 48
DEFAULT_MAX_TOKENS_PER_DAY = 100_000
DEFAULT_ACTIVE_INTERVAL_MS = 15 * 60 * 1000
DEFAULT_INACTIVE_INTERVAL_MS = 45 * 60 * 1000
MIN_INTERVAL_MS = 60_000

REASON_DISABLED = "disabled"
REASON_SCAN_LIMIT = "scan_limit"
REASON_TOKEN_LIMIT = "token_limit"

# camelCase names accepted from API payloads
_FIELD_ALIASES = {
    "maxScansPerDay": "max_scans_per_day",
    "maxTokensPerDay": "max_tokens_per_day",
    "scanIntervalActiveMs": "scan_interval_active_ms",
    "scanIntervalInactiveMs": "scan_interval_inactive_ms",
}


def _now() -> datetime:
    """Return current local datetime (timezone-aware)."""
    return datetime.now().astimezone()


def _local_date(now: datetime) -> str:
    return now.astimezone().date().isoformat()


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class ScanConfig:
    """Scan settings for one agent instance.

    Attributes:
        enabled: Whether background scans run at all
        max_scans_per_day: Ceiling on scans that consumed tokens
        max_tokens_per_day: Ceiling on classifier tokens
        scan_interval_active_ms: Cadence while clients are connected
        scan_interval_inactive_ms: Cadence while nobody is connected
    """
    enabled: bool = True
    max_scans_per_day: int = DEFAULT_MAX_SCANS_PER_DAY
    max_tokens_per_day: int = DEFAULT_MAX_TOKENS_PER_DAY
    scan_interval_active_ms: int = DEFAULT_ACTIVE_INTERVAL_MS
    scan_interval_inactive_ms: int = DEFAULT_INACTIVE_INTERVAL_MS

    def interval_ms(self, has_active_clients: bool) -> int:
        return self.scan_interval_active_ms if has_active_clients else self.scan_interval_inactive_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "max_scans_per_day": self.max_scans_per_day,
            "max_tokens_per_day": self.max_tokens_per_day,
            "scan_interval_active_ms": self.scan_interval_active_ms,
            "scan_interval_inactive_ms": self.scan_interval_inactive_ms,
        }

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "maxScansPerDay": self.max_scans_per_day,
            "maxTokensPerDay": self.max_tokens_per_day,
            "scanIntervalActiveMs": self.scan_interval_active_ms,
            "scanIntervalInactiveMs": self.scan_interval_inactive_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanConfig":
        """Rebuild a stored config; invalid stored fields fall back to defaults."""
        config, rejected = apply_config_overrides(cls(), data or {})
        if rejected:
            logger.warning(f"Ignoring invalid stored scan config fields: {rejected}")
        return config


@dataclass
class ScanUsage:
    """Daily counters for scan quota accounting."""

    scans_today: int = 0
    tokens_today: int = 0
    last_scan_at: Optional[datetime] = None
    last_reset_date: str = ""

    def reset_if_new_day(self, now: Optional[datetime] = None) -> bool:
        """Zero the counters when the local date changed. Returns True on reset."""
        today = _local_date(now or _now())
        if self.last_reset_date == today:
            return False
        self.scans_today = 0
        self.tokens_today = 0
        self.last_reset_date = today
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scans_today": self.scans_today,
            "tokens_today": self.tokens_today,
            "last_scan_at": self.last_scan_at.isoformat() if self.last_scan_at else None,
            "last_reset_date": self.last_reset_date,
        }

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "scansToday": self.scans_today,
            "tokensToday": self.tokens_today,
            "lastScanAt": self.last_scan_at.isoformat() if self.last_scan_at else None,
            "lastResetDate": self.last_reset_date,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanUsage":
        last_scan_at = data.get("last_scan_at")
        if isinstance(last_scan_at, str) and last_scan_at:
            last_scan_at = datetime.fromisoformat(last_scan_at)
        elif not isinstance(last_scan_at, datetime):
            last_scan_at = None
        return cls(
            scans_today=int(data.get("scans_today", 0) or 0),
            tokens_today=int(data.get("tokens_today", 0) or 0),
            last_scan_at=last_scan_at,
            last_reset_date=data.get("last_reset_date", "") or "",
        )


@dataclass(frozen=True)
class CanScanResult:
    allowed: bool
    reason: Optional[str] = None

    def to_api_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"allowed": self.allowed}
        if self.reason:
            data["reason"] = self.reason
        return data


# =============================================================================
# Quota gate
# =============================================================================

def can_scan(config: ScanConfig, usage: ScanUsage) -> CanScanResult:
    """Decide whether a scan may run.

    The disabled flag wins over everything, then the scan ceiling, then
    the token ceiling.
    """
    if not config.enabled:
        return CanScanResult(False, REASON_DISABLED)
    if usage.scans_today >= config.max_scans_per_day:
        return CanScanResult(False, REASON_SCAN_LIMIT)
    if usage.tokens_today >= config.max_tokens_per_day:
        return CanScanResult(False, REASON_TOKEN_LIMIT)
    return CanScanResult(True)


# =============================================================================
# Config overrides
# =============================================================================

class _ScanConfigOverrides(BaseModel):
    """Validation schema for scan config overrides."""

    model_config = ConfigDict(extra="forbid", strict=True)

    enabled: bool = True
    max_scans_per_day: int = Field(default=DEFAULT_MAX_SCANS_PER_DAY, gt=0)
    max_tokens_per_day: int = Field(default=DEFAULT_MAX_TOKENS_PER_DAY, gt=0)
    scan_interval_active_ms: int = Field(default=DEFAULT_ACTIVE_INTERVAL_MS, ge=MIN_INTERVAL_MS)
    scan_interval_inactive_ms: int = Field(default=DEFAULT_INACTIVE_INTERVAL_MS, ge=MIN_INTERVAL_MS)


def apply_config_overrides(current: ScanConfig, overrides: Dict[str, Any]) -> Tuple[ScanConfig, List[str]]:
    """Apply field overrides to a config.

    Accepts snake_case or camelCase names. Unknown fields and values of the
    wrong type or out of range are not applied; their names (as given) are
    returned in the rejected list.

    Returns:
        (new config, rejected field names)
    """
    original_names: Dict[str, str] = {}
    candidate: Dict[str, Any] = {}
    for name, value in (overrides or {}).items():
        field_name = _FIELD_ALIASES.get(name, name)
        original_names[field_name] = name
        candidate[field_name] = value

    rejected: List[str] = []
    try:
        _ScanConfigOverrides.model_validate(candidate)
    except ValidationError as exc:
        bad_fields = {str(err["loc"][0]) for err in exc.errors() if err.get("loc")}
        rejected = sorted(original_names.get(name, name) for name in bad_fields)
        candidate = {k: v for k, v in candidate.items() if k not in bad_fields}

    validated = _ScanConfigOverrides.model_validate(candidate)
    applied = {name: getattr(validated, name) for name in candidate}
    return replace(current, **applied), rejected


# =============================================================================
# Load / Save
# =============================================================================

def load_scan_config(store: KeyValueStore) -> ScanConfig:
    data = store.get(CONFIG_KEY)
    if not data:
        return ScanConfig()
    return ScanConfig.from_dict(data)


def save_scan_config(store: KeyValueStore, config: ScanConfig) -> None:
    store.put(CONFIG_KEY, config.to_dict())


def update_scan_config(store: KeyValueStore, overrides: Dict[str, Any]) -> Tuple[ScanConfig, List[str]]:
    """Validate and persist config overrides. Returns (saved config, rejected fields)."""
    with store.lock:
        config, rejected = apply_config_overrides(load_scan_config(store), overrides)
        save_scan_config(store, config)
    if rejected:
        logger.info(f"Rejected scan config fields: {rejected}")
    return config, rejected


def load_scan_usage(store: KeyValueStore, now: Optional[datetime] = None) -> ScanUsage:
    """Load usage, resetting (and persisting the reset) on a new local date."""
    with store.lock:
        usage = ScanUsage.from_dict(store.get(USAGE_KEY, {}) or {})
        if usage.reset_if_new_day(now):
            store.put(USAGE_KEY, usage.to_dict())
        return usage


def record_scan_usage(store: KeyValueStore, tokens_used: int, now: Optional[datetime] = None) -> ScanUsage:
    """Count a scan that consumed classifier tokens."""
    now = now or _now()
    with store.lock:
        usage = load_scan_usage(store, now)
        usage.scans_today += 1
        usage.tokens_today += max(0, int(tokens_used))
        usage.last_scan_at = now
        store.put(USAGE_KEY, usage.to_dict())
        return usage


def touch_last_scan_at(store: KeyValueStore, now: Optional[datetime] = None) -> ScanUsage:
    """Note that a scan ran without consuming quota."""
    now = now or _now()
    with store.lock:
        usage = load_scan_usage(store, now)
        usage.last_scan_at = now
        store.put(USAGE_KEY, usage.to_dict())
        return usage


def record_scan_result(store: KeyValueStore, tokens_used: int, now: Optional[datetime] = None) -> ScanUsage:
    """Record a finished scan: counts toward quota only when tokens were used."""
    if tokens_used > 0:
        return record_scan_usage(store, tokens_used, now)
    return touch_last_scan_at(store, now)
