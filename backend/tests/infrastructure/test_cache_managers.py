"""
Tests for the typed cache managers (infrastructure/cache).

Covers:
- set/save/load round trip per manager, including the on-disk JSON layout.
- Missing-key semantics (presence, not truthiness).
- Invalidation predicates: range, daily refresh, year rollover, EMA sneak peek.
- Merge strategies: quarterly inner mapping, EMA non-null field merge.
"""

import json
from datetime import UTC, datetime

import pytest
from conftest import TEST_CACHE_DIR, MockDateProvider, MockFileSystem

from domain.entities import EMAEntry, SwingLevelEntry
from domain.enums import CacheName
from infrastructure.cache import create_backfill_caches


def _caches(fs=None, clock=None):
    return create_backfill_caches(
        TEST_CACHE_DIR, fs or MockFileSystem(), clock or MockDateProvider()
    )


def _reload(fs, clock):
    caches = _caches(fs, clock)
    caches.load_all()
    return caches


# ---------------------------------------------------------------------------
# Round trip & layout
# ---------------------------------------------------------------------------


class TestRoundTrip:
    def test_every_cache_should_survive_save_and_load(self):
        # Arrange
        fs, clock = MockFileSystem(), MockDateProvider()
        caches = _caches(fs, clock)
        caches.load_all()
        swing = SwingLevelEntry(120.0, "10/6/25", 95.0, "10/3/25")
        ema = EMAEntry(day=195.0, week=190.0, week_crossover_weeks_below=None, week_below_count=2)

        # Act
        caches.ytd.set("AAPL", 250.42)
        caches.quarterly.set_prices("Q4-2025", {"AAPL": 254.23})
        caches.highest_close.set("AAPL", 260.1)
        caches.forward_pe.set_forward_pe("AAPL", {"Q4-2025": 31.5})
        caches.swing_level.set("AAPL", swing)
        caches.rsi.set("AAPL", 55.3)
        caches.ema.set("AAPL", ema)
        caches.save_all()
        reloaded = _reload(fs, clock)

        # Assert
        assert reloaded.ytd.get("AAPL") == 250.42
        assert reloaded.quarterly.get_price("AAPL", "Q4-2025") == 254.23
        assert reloaded.highest_close.get("AAPL") == 260.1
        assert reloaded.forward_pe.get("AAPL") == {"Q4-2025": 31.5}
        assert reloaded.swing_level.get("AAPL") == swing
        assert reloaded.rsi.get("AAPL") == 55.3
        assert reloaded.ema.get("AAPL") == ema

    def test_quarterly_file_layout(self):
        fs, clock = MockFileSystem(), MockDateProvider()
        caches = _caches(fs, clock)
        caches.load_all()

        caches.quarterly.set_prices("Q4-2025", {"AAPL": 254.23})
        caches.quarterly.save()

        document = json.loads(fs.files[f"{TEST_CACHE_DIR}/quarterly-cache.json"])
        assert document["entries"] == {"Q4-2025": {"AAPL": 254.23}}
        assert document["lastUpdated"] == clock.now().isoformat()
        assert set(document) == {"stamp", "lastUpdated", "entries"}

    def test_ytd_stamp_should_be_current_year_on_first_write(self):
        caches = _caches()
        caches.load_all()

        caches.ytd.set("AAPL", 250.0)

        assert caches.ytd.stamp == 2026

    def test_save_before_load_or_set_is_a_noop(self):
        fs = MockFileSystem()
        caches = _caches(fs)

        caches.save_all()

        assert fs.write_calls == []

    def test_corrupt_file_loads_as_empty_and_heals_on_save(self):
        fs, clock = MockFileSystem(), MockDateProvider()
        path = f"{TEST_CACHE_DIR}/rsi-cache.json"
        fs.files[path] = b"garbage"
        caches = _caches(fs, clock)

        caches.rsi.load()
        caches.rsi.set("AAPL", 40.0)
        caches.rsi.save()

        assert caches.rsi.is_loaded
        assert json.loads(fs.files[path])["entries"] == {"AAPL": 40.0}

    def test_ensure_loaded_reads_file_only_once(self):
        fs, clock = MockFileSystem(), MockDateProvider()
        path = f"{TEST_CACHE_DIR}/rsi-cache.json"
        fs.files[path] = json.dumps(
            {"stamp": None, "lastUpdated": "", "entries": {"AAPL": 50.0}}
        ).encode()
        caches = _caches(fs, clock)

        first = caches.rsi.ensure_loaded()
        caches.rsi.set("MSFT", 40.0)
        second = caches.rsi.ensure_loaded()

        assert (first, second) == (True, False)
        assert caches.rsi.get_all() == {"AAPL": 50.0, "MSFT": 40.0}

    def test_ensure_loaded_skips_already_loaded_caches(self):
        fs, clock = MockFileSystem(), MockDateProvider()
        caches = _caches(fs, clock)
        caches.ytd.load()
        caches.ytd.set("AAPL", 250.0)
        fs.files[f"{TEST_CACHE_DIR}/ema-cache.json"] = json.dumps(
            {"stamp": None, "lastUpdated": "", "entries": {"AAPL": {"day": 1.0}}}
        ).encode()

        caches.ensure_loaded()

        assert caches.ytd.get("AAPL") == 250.0
        assert caches.ema.get("AAPL") == EMAEntry(day=1.0)
        assert all(m.is_loaded for m in caches.by_name().values())

    def test_get_all_returns_copy(self):
        caches = _caches()
        caches.load_all()
        caches.forward_pe.set_forward_pe("AAPL", {"Q4-2025": 30.0})

        snapshot = caches.forward_pe.get_all()
        snapshot["AAPL"]["Q4-2025"] = 0.0
        snapshot["MSFT"] = {}

        assert caches.forward_pe.get("AAPL") == {"Q4-2025": 30.0}
        assert caches.forward_pe.get("MSFT") is None

    def test_by_name_covers_all_seven_caches(self):
        assert set(_caches().by_name()) == set(CacheName)


# ---------------------------------------------------------------------------
# Missing keys
# ---------------------------------------------------------------------------


class TestMissing:
    def test_get_missing_preserves_order(self):
        caches = _caches()
        caches.load_all()
        caches.ytd.set("MSFT", 400.0)

        assert caches.ytd.get_missing(["NVDA", "MSFT", "AAPL"]) == ["NVDA", "AAPL"]

    def test_empty_forward_pe_mapping_is_not_missing(self):
        caches = _caches()
        caches.load_all()

        caches.forward_pe.set_forward_pe("BTC-USD", {})

        assert caches.forward_pe.get_missing(["BTC-USD", "AAPL"]) == ["AAPL"]
        assert caches.forward_pe.get("BTC-USD") == {}

    def test_quarterly_missing_is_per_quarter(self):
        caches = _caches()
        caches.load_all()
        caches.quarterly.set_prices("Q4-2025", {"AAPL": 1.0})

        assert caches.quarterly.get_missing_for_quarter("Q4-2025", ["AAPL", "MSFT"]) == ["MSFT"]
        assert caches.quarterly.get_missing_for_quarter("Q3-2025", ["AAPL"]) == ["AAPL"]

    def test_ema_missing_weekly_lists_day_only_entries(self):
        caches = _caches()
        caches.load_all()
        caches.ema.set("AAPL", EMAEntry(day=195.0))
        caches.ema.set("MSFT", EMAEntry(day=400.0, week=390.0))

        assert caches.ema.get_missing_weekly(["AAPL", "MSFT", "NVDA"]) == ["AAPL"]


# ---------------------------------------------------------------------------
# Merge strategies
# ---------------------------------------------------------------------------


class TestMerge:
    def test_quarterly_set_prices_merges_inner_mapping(self):
        caches = _caches()
        caches.load_all()

        caches.quarterly.set_prices("Q4-2025", {"AAPL": 1.0})
        caches.quarterly.set_prices("Q4-2025", {"MSFT": 2.0})

        assert caches.quarterly.get("Q4-2025") == {"AAPL": 1.0, "MSFT": 2.0}

    def test_ema_merge_keeps_day_when_update_has_only_week(self):
        caches = _caches()
        caches.load_all()

        caches.ema.set("AAPL", EMAEntry(day=195.0, week=None))
        caches.ema.set("AAPL", EMAEntry(day=None, week=190.0))

        assert caches.ema.get("AAPL") == EMAEntry(day=195.0, week=190.0)

    def test_replace_strategy_overwrites(self):
        caches = _caches()
        caches.load_all()

        caches.rsi.set("AAPL", 40.0)
        caches.rsi.set("AAPL", 60.0)

        assert caches.rsi.get("AAPL") == 60.0


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------


class TestInvalidation:
    def test_needs_invalidation_when_unloaded_or_stamp_differs(self):
        caches = _caches()
        assert caches.highest_close.needs_invalidation("Q1-2023:Q4-2025")

        caches.highest_close.load()
        caches.highest_close.clear_for_new_range("Q1-2023:Q4-2025")

        assert not caches.highest_close.needs_invalidation("Q1-2023:Q4-2025")
        assert caches.highest_close.needs_invalidation("Q2-2023:Q1-2026")

    def test_clear_for_new_range_resets_entries_and_last_updated(self):
        caches = _caches()
        caches.load_all()
        caches.swing_level.set("AAPL", SwingLevelEntry(1.0, "1/1/26", None, None))

        caches.swing_level.clear_for_new_range("Q2-2023:Q1-2026")

        assert len(caches.swing_level) == 0
        assert caches.swing_level.last_updated == ""
        assert caches.swing_level.stamp == "Q2-2023:Q1-2026"

    def test_daily_refresh_is_false_after_write_today(self):
        caches = _caches()
        caches.load_all()
        caches.rsi.set("AAPL", 50.0)

        assert caches.rsi.needs_daily_refresh() is False

    def test_daily_refresh_when_last_updated_is_yesterday(self):
        clock = MockDateProvider(datetime(2026, 2, 10, 15, 0, tzinfo=UTC))
        caches = _caches(clock=clock)
        caches.load_all()
        caches.rsi.set("AAPL", 50.0)

        clock.current = datetime(2026, 2, 11, 15, 0, tzinfo=UTC)

        assert caches.rsi.needs_daily_refresh() is True

    def test_daily_refresh_uses_eastern_calendar_day(self):
        # 2026-02-11 02:00 UTC 仍是美東 2/10
        clock = MockDateProvider(datetime(2026, 2, 10, 20, 0, tzinfo=UTC))
        caches = _caches(clock=clock)
        caches.load_all()
        caches.rsi.set("AAPL", 50.0)

        clock.current = datetime(2026, 2, 11, 2, 0, tzinfo=UTC)

        assert caches.rsi.needs_daily_refresh() is False

    def test_daily_refresh_when_last_updated_unparsable(self):
        fs, clock = MockFileSystem(), MockDateProvider()
        fs.files[f"{TEST_CACHE_DIR}/rsi-cache.json"] = json.dumps(
            {"stamp": None, "lastUpdated": "yesterday-ish", "entries": {"AAPL": 1.0}}
        ).encode()
        caches = _caches(fs, clock)
        caches.rsi.load()

        assert caches.rsi.needs_daily_refresh() is True

    def test_clear_for_daily_refresh_keeps_stamp(self):
        caches = _caches()
        caches.load_all()
        caches.highest_close.clear_for_new_range("Q1-2023:Q4-2025")
        caches.highest_close.set("AAPL", 1.0)

        caches.highest_close.clear_for_daily_refresh()

        assert caches.highest_close.stamp == "Q1-2023:Q4-2025"
        assert caches.highest_close.get("AAPL") is None

    def test_year_rollover(self):
        clock = MockDateProvider(datetime(2025, 12, 31, 15, 0, tzinfo=UTC))
        caches = _caches(clock=clock)
        caches.load_all()
        caches.ytd.set("AAPL", 1.0)
        assert caches.ytd.needs_year_rollover() is False

        clock.current = datetime(2026, 1, 2, 15, 0, tzinfo=UTC)
        assert caches.ytd.needs_year_rollover() is True

        caches.ytd.clear_for_new_year()
        assert caches.ytd.stamp == 2026
        assert len(caches.ytd) == 0

    def test_quarterly_prune_keeps_only_active_quarters(self):
        caches = _caches()
        caches.load_all()
        for quarter in ("Q4-2025", "Q3-2025", "Q2-2022"):
            caches.quarterly.set_prices(quarter, {"AAPL": 1.0})

        caches.quarterly.prune_old_quarters(["Q4-2025", "Q3-2025"])

        assert sorted(caches.quarterly.get_all()) == ["Q3-2025", "Q4-2025"]


# ---------------------------------------------------------------------------
# EMA sneak peek (Friday 14:00 ET)
# ---------------------------------------------------------------------------

# 2026-02-13 為週五（EST, UTC-5）
FRIDAY_1300_ET = datetime(2026, 2, 13, 18, 0, tzinfo=UTC)
FRIDAY_1500_ET = datetime(2026, 2, 13, 20, 0, tzinfo=UTC)
FRIDAY_1430_ET = datetime(2026, 2, 13, 19, 30, tzinfo=UTC)
THURSDAY_1500_ET = datetime(2026, 2, 12, 20, 0, tzinfo=UTC)


class TestSneakPeek:
    @pytest.mark.parametrize(
        ("written_at", "now", "expected"),
        [
            (FRIDAY_1300_ET, FRIDAY_1500_ET, True),
            (THURSDAY_1500_ET, FRIDAY_1500_ET, True),
            (FRIDAY_1430_ET, FRIDAY_1500_ET, False),
            (FRIDAY_1300_ET, FRIDAY_1300_ET, False),
            (THURSDAY_1500_ET, THURSDAY_1500_ET, False),
        ],
        ids=[
            "friday-after-2pm-written-before",
            "friday-after-2pm-written-yesterday",
            "friday-after-2pm-written-after-boundary",
            "friday-before-2pm",
            "not-friday",
        ],
    )
    def test_needs_sneak_peek_refresh(self, written_at, now, expected):
        # Arrange
        clock = MockDateProvider(written_at)
        caches = _caches(clock=clock)
        caches.ema.load()
        caches.ema.set("AAPL", EMAEntry(day=1.0))

        # Act
        clock.current = now

        # Assert
        assert caches.ema.needs_sneak_peek_refresh() is expected

    def test_never_written_cache_needs_no_sneak_peek(self):
        caches = _caches(clock=MockDateProvider(FRIDAY_1500_ET))
        caches.ema.load()

        assert caches.ema.needs_sneak_peek_refresh() is False
