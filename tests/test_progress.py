"""
Tests for the progress ledger.

Tests cover:
1. Unlocked week defaults, clamping and monotonicity
2. mark_practice_done() idempotency and full-week unlocks
3. Calendar day statuses
4. Last calendar selection
5. Storage failures leave state untouched
6. Concurrent completion, within one pair and across pairs
"""
import json
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from jlpt_practice.constants import COMPLETED_KEY
from jlpt_practice.errors import StorageUnavailable
from jlpt_practice.services.progress import DayStatus, ProgressLedger, token_of, unlocked_week_key

A, D, L = DayStatus.AVAILABLE, DayStatus.DONE, DayStatus.LOCKED


def complete_week(ledger, level, category, week, days=range(1, 8)):
    results = [ledger.mark_practice_done(level, category, week, day) for day in days]
    return results[-1]


class TestUnlockedWeek:
    """Test get_unlocked_week() and set_unlocked_week()."""

    def test_defaults_to_one(self, ledger):
        assert ledger.get_unlocked_week("N3", "grammar") == 1

    def test_set_and_get(self, ledger):
        assert ledger.set_unlocked_week("N3", "grammar", 4) == 4
        assert ledger.get_unlocked_week("N3", "grammar") == 4

    def test_clamped_to_ten(self, ledger):
        assert ledger.set_unlocked_week("N3", "grammar", 42) == 10

    def test_never_lowered(self, ledger):
        ledger.set_unlocked_week("N3", "grammar", 5)
        assert ledger.set_unlocked_week("N3", "grammar", 2) == 5
        assert ledger.get_unlocked_week("N3", "grammar") == 5

    def test_malformed_value_reads_as_one(self, ledger, kv):
        kv.set(unlocked_week_key("N3", "grammar"), "three")
        assert ledger.get_unlocked_week("N3", "grammar") == 1

    def test_stored_key_format(self, ledger, kv):
        ledger.set_unlocked_week("N4", "vocab", 3)
        assert kv.get("progress.unlockedWeek.N4.vocab") == "3"

    def test_week_accessibility(self, ledger):
        ledger.set_unlocked_week("N3", "grammar", 2)
        assert ledger.is_week_accessible("N3", "grammar", 2) is True
        assert ledger.is_week_accessible("N3", "grammar", 3) is False


class TestMarkPracticeDone:
    """Test mark_practice_done()."""

    def test_adds_token(self, ledger, kv):
        result = ledger.mark_practice_done("N3", "grammar", 1, 3)

        assert result["newly_completed"] is True
        assert result["token"] == "N3|grammar|1|3"
        assert json.loads(kv.get(COMPLETED_KEY)) == ["N3|grammar|1|3"]

    def test_idempotent(self, ledger, kv):
        ledger.mark_practice_done("N3", "grammar", 1, 3)
        completed_once = kv.get(COMPLETED_KEY)
        unlocked_once = ledger.get_unlocked_week("N3", "grammar")

        result = ledger.mark_practice_done("N3", "grammar", 1, 3)

        assert result["newly_completed"] is False
        assert kv.get(COMPLETED_KEY) == completed_once
        assert ledger.get_unlocked_week("N3", "grammar") == unlocked_once

    def test_full_week_unlocks_next(self, ledger):
        ledger.set_unlocked_week("N3", "grammar", 2)

        result = complete_week(ledger, "N3", "grammar", 2, days=[5, 1, 7, 3, 2, 6, 4])

        assert result["advanced"] is True
        assert ledger.get_unlocked_week("N3", "grammar") == 3

    def test_six_of_seven_days_leave_week_locked(self, ledger):
        ledger.set_unlocked_week("N3", "grammar", 2)

        complete_week(ledger, "N3", "grammar", 2, days=[1, 2, 3, 4, 5, 6])

        assert ledger.get_unlocked_week("N3", "grammar") == 2

    def test_repeating_last_day_does_not_advance_twice(self, ledger):
        complete_week(ledger, "N3", "grammar", 1)
        assert ledger.get_unlocked_week("N3", "grammar") == 2

        result = ledger.mark_practice_done("N3", "grammar", 1, 7)

        assert result["advanced"] is False
        assert ledger.get_unlocked_week("N3", "grammar") == 2

    def test_completing_an_earlier_week_does_not_advance(self, ledger):
        ledger.set_unlocked_week("N3", "grammar", 4)
        complete_week(ledger, "N3", "grammar", 1)
        assert ledger.get_unlocked_week("N3", "grammar") == 4

    def test_finishing_week_ten_never_advances(self, ledger):
        ledger.set_unlocked_week("N3", "grammar", 9)

        result = complete_week(ledger, "N3", "grammar", 10)

        assert result["week_complete"] is True
        assert result["advanced"] is False
        assert ledger.get_unlocked_week("N3", "grammar") == 9

    def test_last_week_stays_at_ten(self, ledger):
        ledger.set_unlocked_week("N3", "grammar", 10)
        result = complete_week(ledger, "N3", "grammar", 10)

        assert result["week_complete"] is True
        assert result["advanced"] is False
        assert ledger.get_unlocked_week("N3", "grammar") == 10

    def test_unlock_is_monotonic_and_bounded(self, ledger):
        seen = []
        for week in range(1, 11):
            for day in range(1, 8):
                ledger.mark_practice_done("N5", "vocab", week, day)
                seen.append(ledger.get_unlocked_week("N5", "vocab"))

        assert seen == sorted(seen)
        assert max(seen) == 10

    def test_pairs_are_independent(self, ledger):
        complete_week(ledger, "N3", "grammar", 1)

        assert ledger.get_unlocked_week("N3", "grammar") == 2
        assert ledger.get_unlocked_week("N3", "vocab") == 1
        assert ledger.get_unlocked_week("N2", "grammar") == 1

    def test_rejects_out_of_range_day(self, ledger):
        with pytest.raises(ValueError):
            ledger.mark_practice_done("N3", "grammar", 1, 8)


class FailingWrites:
    """Key-value store whose writes always fail."""

    def __init__(self, kv):
        self.kv = kv

    def get(self, key):
        return self.kv.get(key)

    def set(self, key, value):
        self.set_many({key: value})

    def set_many(self, values):
        raise StorageUnavailable("disk full")


class TestStorageFailure:
    """A failed write leaves completion and unlock state as they were."""

    def test_failed_unlock_changes_nothing(self, ledger, kv):
        complete_week(ledger, "N3", "grammar", 1, days=[1, 2, 3, 4, 5, 6])
        completed_before = kv.get(COMPLETED_KEY)

        failing = ProgressLedger(FailingWrites(kv))
        with pytest.raises(StorageUnavailable):
            failing.mark_practice_done("N3", "grammar", 1, 7)

        assert kv.get(COMPLETED_KEY) == completed_before
        assert ledger.get_unlocked_week("N3", "grammar") == 1

    def test_set_many_is_all_or_nothing(self, kv):
        kv.set("a", "1")
        with pytest.raises(StorageUnavailable):
            # None violates the NOT NULL value column
            kv.set_many({"a": "2", "b": None})
        assert kv.get("a") == "1"
        assert kv.get("b") is None


class TestDayStatuses:
    """Test the calendar day rule."""

    def test_fresh_week_one_opens_days_one_and_two(self, ledger):
        assert ledger.day_statuses("N3", "grammar", 1) == [A, A, L, L, L, L, L]

    def test_after_day_one(self, ledger):
        ledger.mark_practice_done("N3", "grammar", 1, 1)
        assert ledger.day_statuses("N3", "grammar", 1) == [D, A, L, L, L, L, L]

    def test_day_two_first_keeps_day_one_available(self, ledger):
        ledger.mark_practice_done("N3", "grammar", 1, 2)
        assert ledger.day_statuses("N3", "grammar", 1) == [A, D, L, L, L, L, L]

    def test_locked_week(self, ledger):
        assert ledger.day_statuses("N3", "grammar", 2) == [L] * 7

    def test_unlocked_later_week_opens_only_first_day(self, ledger):
        ledger.set_unlocked_week("N3", "grammar", 2)
        assert ledger.day_statuses("N3", "grammar", 2) == [A, L, L, L, L, L, L]

    def test_completed_week(self, ledger):
        complete_week(ledger, "N3", "grammar", 1)
        assert ledger.day_statuses("N3", "grammar", 1) == [D] * 7

    def test_can_start_day(self, ledger):
        assert ledger.can_start_day("N3", "grammar", 1, 2) is True
        assert ledger.can_start_day("N3", "grammar", 1, 3) is False
        assert ledger.can_start_day("N3", "grammar", 2, 1) is False

    def test_calendar(self, ledger):
        ledger.mark_practice_done("N3", "grammar", 1, 1)
        calendar = ledger.calendar("N3", "grammar")

        assert calendar["unlocked_week"] == 1
        assert len(calendar["weeks"]) == 10
        assert calendar["weeks"][0]["done_count"] == 1
        assert calendar["weeks"][0]["days"][:2] == ["done", "available"]
        assert calendar["weeks"][1]["unlocked"] is False


class TestSelection:
    """Test the remembered calendar selection."""

    def test_empty_by_default(self, ledger):
        assert ledger.get_selection() == {"level": None, "category": None}

    def test_round_trip(self, ledger, kv):
        ledger.set_selection("N2", "vocab")

        assert ledger.get_selection() == {"level": "N2", "category": "vocab"}
        assert kv.get("user.level") == "N2"
        assert kv.get("user.pick") == "vocab"


class TestConcurrency:
    """Concurrent completions lose no tokens and unlock once."""

    def test_parallel_days_unlock_exactly_once(self, ledger):
        with ThreadPoolExecutor(max_workers=7) as pool:
            results = list(pool.map(lambda day: ledger.mark_practice_done("N3", "grammar", 1, day), range(1, 8)))

        assert sum(r["advanced"] for r in results) == 1
        assert ledger.get_unlocked_week("N3", "grammar") == 2
        assert {token_of("N3", "grammar", 1, d) for d in range(1, 8)} <= ledger.get_completed_set()

    def test_different_pairs_keep_every_token(self, kv):
        slow = ProgressLedger(SlowReads(kv))
        pairs = [("N3", "grammar"), ("N2", "vocab"), ("N5", "vocab"), ("N1", "grammar")]

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(lambda pair: slow.mark_practice_done(pair[0], pair[1], 1, 1), pairs))

        assert slow.get_completed_set() == {token_of(lv, cat, 1, 1) for lv, cat in pairs}


class SlowReads:
    """Key-value store whose reads pause, widening read-modify-write windows."""

    def __init__(self, kv, delay=0.05):
        self.kv = kv
        self.delay = delay

    def get(self, key):
        time.sleep(self.delay)
        return self.kv.get(key)

    def set(self, key, value):
        self.kv.set(key, value)

    def set_many(self, values):
        self.kv.set_many(values)
