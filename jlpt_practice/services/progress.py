"""Daily practice progress: completion tokens and weekly unlocks."""
import json
import threading
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from jlpt_practice.constants import (
    COMPLETED_KEY, DAYS_PER_WEEK, LEVEL_KEY, MAX_WEEK, PICK_KEY, UNLOCKED_WEEK_KEY_TEMPLATE,
)
from jlpt_practice.domain import Category, Level
from jlpt_practice.logging_config import get_logger

logger = get_logger(__name__)


class DayStatus(str, Enum):
    """Calendar state of one daily unit."""
    DONE = "done"
    AVAILABLE = "available"
    LOCKED = "locked"


def token_of(level, category, week: int, day: int) -> str:
    """Completion token for one daily unit, e.g. 'N3|grammar|2|5'."""
    return f"{Level(level).value}|{Category(category).value}|{week}|{day}"


def unlocked_week_key(level, category) -> str:
    return UNLOCKED_WEEK_KEY_TEMPLATE.format(level=Level(level).value, category=Category(category).value)


def _check_week_day(week: int, day: Optional[int] = None) -> None:
    if not 1 <= week <= MAX_WEEK:
        raise ValueError(f"week must be in 1..{MAX_WEEK}, got {week}")
    if day is not None and not 1 <= day <= DAYS_PER_WEEK:
        raise ValueError(f"day must be in 1..{DAYS_PER_WEEK}, got {day}")


class ProgressLedger:
    """
    Per level/category unlock state and the set of completed daily units.

    Read-modify-write cycles for the same (level, category) pair are
    serialized. The completed set is one shared entry, so every update of it
    also holds a ledger-wide lock.
    """

    def __init__(self, kv_store):
        self.kv = kv_store
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._completed_lock = threading.Lock()

    def _lock_for(self, level: str, category: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((level, category), threading.Lock())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_unlocked_week(self, level, category) -> int:
        """Highest accessible week, in 1..MAX_WEEK (1 if never set)."""
        raw = self.kv.get(unlocked_week_key(level, category))
        try:
            week = int(raw) if raw is not None else 1
        except ValueError:
            logger.warning(f"Ignoring malformed unlocked week {raw!r} for {level}/{category}")
            week = 1
        return min(max(1, week), MAX_WEEK)

    def get_completed_set(self) -> Set[str]:
        raw = self.kv.get(COMPLETED_KEY)
        if not raw:
            return set()
        try:
            return set(json.loads(raw))
        except (ValueError, TypeError):
            logger.warning("Completed-set entry is not a JSON list; treating it as empty")
            return set()

    def is_week_accessible(self, level, category, week: int) -> bool:
        return 1 <= week <= self.get_unlocked_week(level, category)

    def is_done(self, level, category, week: int, day: int) -> bool:
        return token_of(level, category, week, day) in self.get_completed_set()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_unlocked_week(self, level, category, week: int) -> int:
        """
        Persist the unlocked week, clamped to 1..MAX_WEEK.

        The stored value never goes down; a lower value is ignored.

        Returns:
            The unlocked week after the call
        """
        level, category = Level(level).value, Category(category).value
        week = min(max(1, int(week)), MAX_WEEK)
        with self._lock_for(level, category):
            current = self.get_unlocked_week(level, category)
            if week <= current:
                if week < current:
                    logger.debug(f"Not lowering unlocked week {current} -> {week} for {level}/{category}")
                return current
            self.kv.set(unlocked_week_key(level, category), str(week))
        logger.info(f"Unlocked week set to {week} for {level}/{category}")
        return week

    def mark_practice_done(self, level, category, week: int, day: int) -> Dict:
        """
        Record a finished daily unit and unlock the next week when due.

        Process:
        1. Add the (level, category, week, day) token to the completed set
        2. If that completes all 7 days of ``week``, ``week`` is at or past the
           unlocked week, and both ``week`` and the unlocked week are below
           MAX_WEEK, advance
           the unlocked week by exactly one

        Both writes happen in one transaction. Marking an already completed
        day changes nothing.

        Returns:
            Dictionary describing the outcome:
            {
                "token": "N3|grammar|2|7",
                "newly_completed": True,
                "week_complete": True,
                "advanced": True,
                "unlocked_week": 3
            }

        Raises:
            StorageUnavailable: state is left exactly as before the call
        """
        level, category = Level(level).value, Category(category).value
        _check_week_day(week, day)
        token = token_of(level, category, week, day)

        with self._lock_for(level, category), self._completed_lock:
            completed = self.get_completed_set()
            unlocked = self.get_unlocked_week(level, category)

            newly_completed = token not in completed
            completed.add(token)
            week_complete = all(
                token_of(level, category, week, d) in completed
                for d in range(1, DAYS_PER_WEEK + 1)
            )
            advanced = (
                newly_completed
                and week_complete
                and week >= unlocked
                and week < MAX_WEEK
                and unlocked < MAX_WEEK
            )

            writes = {}
            if newly_completed:
                writes[COMPLETED_KEY] = json.dumps(sorted(completed))
            if advanced:
                unlocked += 1
                writes[unlocked_week_key(level, category)] = str(unlocked)
            self.kv.set_many(writes)

        if advanced:
            logger.info(f"Week {week} complete for {level}/{category}; unlocked week {unlocked}")
        elif newly_completed:
            logger.debug(f"Marked {token} done")

        return {
            "token": token,
            "newly_completed": newly_completed,
            "week_complete": week_complete,
            "advanced": advanced,
            "unlocked_week": unlocked,
        }

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    def day_statuses(self, level, category, week: int,
                     unlocked_week: Optional[int] = None,
                     completed: Optional[Set[str]] = None) -> List[DayStatus]:
        """
        Status of the 7 days of a week.

        Rules:
        - Every day of a locked week is locked
        - Completed days are done
        - Only the first unfinished day is available, except at the very
          start of week 1 where days 1 and 2 both are
        """
        _check_week_day(week)
        if unlocked_week is None:
            unlocked_week = self.get_unlocked_week(level, category)
        if completed is None:
            completed = self.get_completed_set()

        statuses = [DayStatus.LOCKED] * DAYS_PER_WEEK
        if week > unlocked_week:
            return statuses

        done = [token_of(level, category, week, d) in completed for d in range(1, DAYS_PER_WEEK + 1)]
        for i, is_done in enumerate(done):
            if is_done:
                statuses[i] = DayStatus.DONE

        if week == 1 and not done[0] and not done[1]:
            statuses[0] = DayStatus.AVAILABLE
            statuses[1] = DayStatus.AVAILABLE
            return statuses

        first_undone = next((i for i, is_done in enumerate(done) if not is_done), None)
        if first_undone is not None:
            statuses[first_undone] = DayStatus.AVAILABLE
        return statuses

    def calendar(self, level, category) -> Dict:
        """Unlocked week plus per-week day statuses for all MAX_WEEK weeks."""
        unlocked = self.get_unlocked_week(level, category)
        completed = self.get_completed_set()
        weeks = []
        for week in range(1, MAX_WEEK + 1):
            statuses = self.day_statuses(level, category, week, unlocked, completed)
            weeks.append({
                "week": week,
                "unlocked": week <= unlocked,
                "done_count": sum(1 for s in statuses if s == DayStatus.DONE),
                "days": [s.value for s in statuses],
            })
        return {
            "level": Level(level).value,
            "category": Category(category).value,
            "unlocked_week": unlocked,
            "weeks": weeks,
        }

    def can_start_day(self, level, category, week: int, day: int) -> bool:
        """True if the day is done or available (locked days may not be opened)."""
        _check_week_day(week, day)
        return self.day_statuses(level, category, week)[day - 1] != DayStatus.LOCKED

    # ------------------------------------------------------------------
    # Last selection on the calendar
    # ------------------------------------------------------------------

    def get_selection(self) -> Dict[str, Optional[str]]:
        return {"level": self.kv.get(LEVEL_KEY), "category": self.kv.get(PICK_KEY)}

    def set_selection(self, level, category) -> None:
        self.kv.set_many({LEVEL_KEY: Level(level).value, PICK_KEY: Category(category).value})
