"""
Tests for cache lifecycle helpers (application/backfill/cache_lifecycle.py).

Covers:
- prepare_caches: year rollover, quarter-range invalidation, daily refresh, EMA sneak peek, quarter pruning.
- prepare_caches is idempotent once caches are fresh.
- refresh_daily_caches clears only stale daily caches.
- retry_missing_entries fills a small batch of EMA / forward P/E gaps.
"""

import json
from datetime import UTC, datetime

from conftest import DEFAULT_NOW, TEST_CACHE_DIR, TrackingMockStockService

from application.backfill.cache_lifecycle import (
    prepare_caches,
    refresh_daily_caches,
    retry_missing_entries,
)
from domain.entities import EMAEntry
from domain.quarters import cache_quarter_range
from infrastructure.ticker_config import WatchlistConfig

# Friday 2026-02-13 14:30 ET
FRIDAY_AFTER_SNEAK_PEEK = datetime(2026, 2, 13, 19, 30, tzinfo=UTC)


def _write_cache(file_system, file_name, stamp, last_updated, entries):
    document = {"stamp": stamp, "lastUpdated": last_updated, "entries": entries}
    file_system.files[f"{TEST_CACHE_DIR}/{file_name}"] = json.dumps(document).encode()


def _read_cache(file_system, file_name):
    return json.loads(file_system.files[f"{TEST_CACHE_DIR}/{file_name}"])


# ---------------------------------------------------------------------------
# prepare_caches
# ---------------------------------------------------------------------------


class TestPrepareCaches:
    def test_fresh_install_stamps_every_policy_cache(self, caches, file_system):
        # Act
        prepare_caches(caches, DEFAULT_NOW)

        # Assert
        assert caches.ytd.stamp == 2026
        assert caches.highest_close.stamp == cache_quarter_range(DEFAULT_NOW)
        assert caches.forward_pe.stamp == cache_quarter_range(DEFAULT_NOW)
        assert _read_cache(file_system, "ytd-cache.json")["stamp"] == 2026

    def test_previous_year_ytd_is_cleared(self, caches, file_system):
        _write_cache(
            file_system, "ytd-cache.json", 2025, "2025-12-31T20:00:00+00:00", {"AAPL": 190.0}
        )

        actions = prepare_caches(caches, DEFAULT_NOW)

        assert caches.ytd.get("AAPL") is None
        assert caches.ytd.stamp == 2026
        assert any("new year" in a for a in actions)

    def test_changed_quarter_range_clears_forward_pe(self, caches, file_system):
        _write_cache(
            file_system,
            "forward-pe-cache.json",
            "Q3-2022:Q2-2025",
            "2026-02-11T14:00:00+00:00",
            {"AAPL": {"Q2-2025": 30.0}},
        )

        prepare_caches(caches, DEFAULT_NOW)

        assert caches.forward_pe.get("AAPL") is None

    def test_current_range_keeps_forward_pe(self, caches, file_system):
        _write_cache(
            file_system,
            "forward-pe-cache.json",
            cache_quarter_range(DEFAULT_NOW),
            "2026-01-02T14:00:00+00:00",
            {"AAPL": {"Q4-2025": 30.0}},
        )

        prepare_caches(caches, DEFAULT_NOW)

        assert caches.forward_pe.get("AAPL") == {"Q4-2025": 30.0}

    def test_daily_caches_from_yesterday_are_cleared(self, caches, file_system):
        _write_cache(
            file_system, "rsi-cache.json", None, "2026-02-10T20:00:00+00:00", {"AAPL": 55.0}
        )

        prepare_caches(caches, DEFAULT_NOW)

        assert caches.rsi.get("AAPL") is None

    def test_daily_caches_from_today_are_kept(self, caches, file_system):
        _write_cache(
            file_system, "rsi-cache.json", None, "2026-02-11T14:30:00+00:00", {"AAPL": 55.0}
        )

        prepare_caches(caches, DEFAULT_NOW)

        assert caches.rsi.get("AAPL") == 55.0

    def test_quarters_outside_window_are_pruned(self, caches, file_system):
        _write_cache(
            file_system,
            "quarterly-cache.json",
            None,
            "2026-02-01T14:00:00+00:00",
            {"Q1-2020": {"AAPL": 70.0}, "Q4-2025": {"AAPL": 254.0}},
        )

        prepare_caches(caches, DEFAULT_NOW)

        assert caches.quarterly.get("Q1-2020") is None
        assert caches.quarterly.get_price("AAPL", "Q4-2025") == 254.0
        assert set(_read_cache(file_system, "quarterly-cache.json")["entries"]) == {"Q4-2025"}

    def test_friday_afternoon_refreshes_ema_once(self, caches, file_system, date_provider):
        # Arrange: written Friday 10:00 ET, before the sneak-peek boundary
        date_provider.current = FRIDAY_AFTER_SNEAK_PEEK
        _write_cache(
            file_system,
            "ema-cache.json",
            None,
            "2026-02-13T15:00:00+00:00",
            {"AAPL": {"day": 195.0, "week": 190.0}},
        )

        # Act
        actions = prepare_caches(caches, FRIDAY_AFTER_SNEAK_PEEK)

        # Assert
        assert caches.ema.get("AAPL") is None
        assert any("sneak peek" in a for a in actions)

    def test_second_call_is_a_noop(self, caches):
        prepare_caches(caches, DEFAULT_NOW)
        caches.rsi.set("AAPL", 55.0)
        caches.save_all()

        actions = prepare_caches(caches, DEFAULT_NOW)

        assert actions == []
        assert caches.rsi.get("AAPL") == 55.0


# ---------------------------------------------------------------------------
# refresh_daily_caches
# ---------------------------------------------------------------------------


class TestRefreshDailyCaches:
    def test_returns_false_when_everything_is_fresh(self, caches):
        prepare_caches(caches, DEFAULT_NOW)
        caches.rsi.set("AAPL", 55.0)
        caches.ema.set("AAPL", EMAEntry(day=195.0))
        caches.highest_close.set("AAPL", 260.0)

        assert refresh_daily_caches(caches) is False
        assert caches.rsi.get("AAPL") == 55.0

    def test_clears_stale_daily_caches_only(self, caches, date_provider):
        # Arrange
        prepare_caches(caches, DEFAULT_NOW)
        caches.rsi.set("AAPL", 55.0)
        caches.ytd.set("AAPL", 250.0)
        caches.save_all()

        # Act: next trading day
        date_provider.current = datetime(2026, 2, 12, 15, 0, tzinfo=UTC)
        refreshed = refresh_daily_caches(caches)

        # Assert
        assert refreshed is True
        assert caches.rsi.get("AAPL") is None
        assert caches.ytd.get("AAPL") == 250.0


# ---------------------------------------------------------------------------
# retry_missing_entries
# ---------------------------------------------------------------------------


class TestRetryMissingEntries:
    def test_fills_missing_ema_and_forward_pe(self, caches):
        # Arrange
        service = TrackingMockStockService()
        service.ema_entries["AAPL"] = EMAEntry(day=195.0, week=190.0)
        service.forward_pes["AAPL"] = {"Q4-2025": 31.0}
        config = WatchlistConfig(watchlist=["AAPL"], index_symbols=[])

        # Act
        written = retry_missing_entries(caches, service, config, DEFAULT_NOW)

        # Assert
        assert written == {"ema": 1, "forward_pe": 1}
        assert caches.ema.get("AAPL") == EMAEntry(day=195.0, week=190.0)
        assert caches.forward_pe.get("AAPL") == {"Q4-2025": 31.0}

    def test_respects_batch_size(self, caches):
        service = TrackingMockStockService()
        symbols = [f"S{i}" for i in range(8)]
        config = WatchlistConfig(watchlist=symbols, index_symbols=[])

        retry_missing_entries(caches, service, config, DEFAULT_NOW, batch_size=3)

        assert service.calls_for("fetch_ema_entry") == symbols[:3]
        assert service.calls_for("fetch_forward_pe_ratios") == symbols[:3]

    def test_nothing_missing_makes_no_calls(self, caches):
        service = TrackingMockStockService()
        caches.ema.set("AAPL", EMAEntry(day=1.0))
        caches.forward_pe.set_forward_pe("AAPL", {})
        config = WatchlistConfig(watchlist=["AAPL"], index_symbols=[])

        written = retry_missing_entries(caches, service, config, DEFAULT_NOW)

        assert written == {"ema": 0, "forward_pe": 0}
        assert service.calls == []
