"""Tests for scan quota: config overrides, usage counters and the gate."""
from __future__ import annotations

from datetime import datetime

from inbox_agent.scan.quota import (
    CONFIG_KEY,
    USAGE_KEY,
    ScanConfig,
    ScanUsage,
    apply_config_overrides,
    can_scan,
    load_scan_config,
    load_scan_usage,
    record_scan_result,
    update_scan_config,
)


def _local_now():
    return datetime.now().astimezone()


class TestCanScan:
    """Gate ordering: disabled, then scan ceiling, then token ceiling."""

    def test_allowed_by_default(self):
        result = can_scan(ScanConfig(), ScanUsage())
        assert result.allowed
        assert result.reason is None

    def test_disabled_wins(self):
        usage = ScanUsage(scans_today=100, tokens_today=10_000_000)
        assert can_scan(ScanConfig(enabled=False), usage).reason == "disabled"

    def test_scan_limit_before_token_limit(self):
        usage = ScanUsage(scans_today=48, tokens_today=100_000)
        assert can_scan(ScanConfig(), usage).reason == "scan_limit"

    def test_token_limit(self):
        usage = ScanUsage(scans_today=3, tokens_today=100_000)
        result = can_scan(ScanConfig(), usage)
        assert not result.allowed
        assert result.reason == "token_limit"
        assert result.to_api_dict() == {"allowed": False, "reason": "token_limit"}


class TestConfigOverrides:
    def test_camel_and_snake_case(self):
        config, rejected = apply_config_overrides(
            ScanConfig(), {"max_scans_per_day": 10, "scanIntervalInactiveMs": 120_000}
        )
        assert rejected == []
        assert config.max_scans_per_day == 10
        assert config.scan_interval_inactive_ms == 120_000

    def test_invalid_fields_rejected_and_valid_ones_applied(self):
        config, rejected = apply_config_overrides(ScanConfig(), {
            "maxScansPerDay": 0,
            "scanIntervalActiveMs": 1000,
            "bogus": 1,
            "enabled": "yes",
            "maxTokensPerDay": 5000,
        })
        assert rejected == ["bogus", "enabled", "maxScansPerDay", "scanIntervalActiveMs"]
        assert config.max_scans_per_day == 48
        assert config.scan_interval_active_ms == 15 * 60 * 1000
        assert config.enabled is True
        assert config.max_tokens_per_day == 5000

    def test_update_persists(self, store):
        config, rejected = update_scan_config(store, {"enabled": False})
        assert rejected == []
        assert load_scan_config(store).enabled is False
        assert store.get(CONFIG_KEY)["enabled"] is False

    def test_invalid_stored_field_falls_back_to_default(self, store):
        store.put(CONFIG_KEY, {"max_scans_per_day": -5, "max_tokens_per_day": 2000})
        config = load_scan_config(store)
        assert config.max_scans_per_day == 48
        assert config.max_tokens_per_day == 2000

    def test_interval_depends_on_clients(self):
        config = ScanConfig()
        assert config.interval_ms(True) == 15 * 60 * 1000
        assert config.interval_ms(False) == 45 * 60 * 1000


class TestUsage:
    def test_reset_on_new_local_date(self, store):
        store.put(USAGE_KEY, {"scans_today": 5, "tokens_today": 900, "last_reset_date": "2000-01-01"})

        usage = load_scan_usage(store)

        assert usage.scans_today == 0
        assert usage.tokens_today == 0
        assert usage.last_reset_date == _local_now().date().isoformat()
        assert store.get(USAGE_KEY)["scans_today"] == 0

    def test_same_day_not_reset(self, store):
        today = _local_now().date().isoformat()
        store.put(USAGE_KEY, {"scans_today": 5, "tokens_today": 900, "last_reset_date": today})
        assert load_scan_usage(store).scans_today == 5

    def test_scan_without_tokens_does_not_count(self, store):
        now = _local_now()
        usage = record_scan_result(store, 0, now)
        assert usage.scans_today == 0
        assert usage.last_scan_at == now

    def test_scan_with_tokens_counts(self, store):
        record_scan_result(store, 500)
        usage = record_scan_result(store, 250)
        assert usage.scans_today == 2
        assert usage.tokens_today == 750
        assert load_scan_usage(store).tokens_today == 750
