"""Pool filter: turn practice criteria into a candidate item list."""
import random
from dataclasses import replace
from typing import List, Optional, Tuple

from jlpt_practice.constants import (
    DAYS_PER_WEEK, LANGUAGE_SECTIONS, MAX_WEEK, RANDOM_LEVEL_PAIR, SESSION_MONTHS,
)
from jlpt_practice.domain import (
    Category, Criteria, DailyCriteria, Item, Level, LEVEL_ALL, LEVEL_RANDOM_PAIR,
    PracticeCriteria, PracticeKind, RANDOM,
)
from jlpt_practice.errors import EmptyPool
from jlpt_practice.logging_config import get_logger

logger = get_logger(__name__)


def make_daily_key(level, category, week: int, day: int) -> str:
    """
    Deterministic key of one daily unit.

    Week 1 day 1 is unit 1, week 10 day 7 is unit 70:

        >>> make_daily_key("N3", "grammar", 2, 1)
        'N3-GRAMMAR-0008'
    """
    if not 1 <= week <= MAX_WEEK or not 1 <= day <= DAYS_PER_WEEK:
        raise ValueError(f"week/day out of range: week={week}, day={day}")
    level = Level(level).value
    category = Category(category).value
    index = (week - 1) * DAYS_PER_WEEK + day
    return f"{level}-{category.upper()}-{index:04d}"


def parse_daily_key(daily_key: str) -> Tuple[Level, Category, int, int]:
    """Inverse of make_daily_key. Raises ValueError for malformed keys."""
    try:
        level, category, index = daily_key.split("-")
        index = int(index)
        parsed_level = Level(level)
        parsed_category = Category(category.lower())
    except ValueError as e:
        raise ValueError(f"Malformed daily key: {daily_key!r}") from e
    if not 1 <= index <= MAX_WEEK * DAYS_PER_WEEK:
        raise ValueError(f"Daily key index out of range: {daily_key!r}")
    week, day = divmod(index - 1, DAYS_PER_WEEK)
    return parsed_level, parsed_category, week + 1, day + 1


def _is_wildcard(value) -> bool:
    return value is None or value == RANDOM


def resolve_criteria(criteria: PracticeCriteria, rng: Optional[random.Random] = None) -> PracticeCriteria:
    """
    Resolve the randomized-pair level sentinel to one concrete level.

    Callers that want "one of N2/N3 per session" resolve before filtering;
    an unresolved sentinel makes the filter match both levels.
    """
    if criteria.level != LEVEL_RANDOM_PAIR:
        return criteria
    rng = rng or random.Random()
    return replace(criteria, level=rng.choice(RANDOM_LEVEL_PAIR))


def levels_for(level: str) -> List[str]:
    """Concrete level values matched by a criteria level."""
    if level == LEVEL_ALL:
        return [lv.value for lv in Level.exam_levels()]
    if level == LEVEL_RANDOM_PAIR:
        return list(RANDOM_LEVEL_PAIR)
    return [Level(level).value]


def effective_month(criteria: PracticeCriteria) -> Optional[str]:
    """Concrete month filter: an explicit month wins over the session name."""
    if not _is_wildcard(criteria.month):
        return str(criteria.month).zfill(2)
    if not _is_wildcard(criteria.session):
        try:
            return SESSION_MONTHS[criteria.session]
        except KeyError:
            raise ValueError(f"Unknown exam session: {criteria.session!r}") from None
    return None


class PoolFilter:
    """Query the item store for the items a practice selection allows."""

    def __init__(self, store):
        self.store = store

    def filter(self, criteria: Criteria) -> List[Item]:
        """
        Items satisfying every non-wildcard criterion.

        Args:
            criteria: PracticeCriteria for free practice, DailyCriteria for a
                daily unit (exact key lookup)

        Returns:
            Non-empty list of items

        Raises:
            EmptyPool: nothing matched (store_loaded=False if the store is empty)
            StorageUnavailable: the store could not be read
        """
        if isinstance(criteria, DailyCriteria):
            daily_key = make_daily_key(criteria.level, criteria.category, criteria.week, criteria.day)
            pool = self.by_daily_key(daily_key)
        else:
            pool = self._filter_practice(criteria)

        if not pool:
            loaded = self.store.is_loaded()
            logger.info(f"No items match {criteria} (store loaded: {loaded})")
            raise EmptyPool(
                "No practice items match the selection" if loaded else "Practice items have not been synced yet",
                store_loaded=loaded,
            )
        return pool

    def by_daily_key(self, daily_key: str) -> List[Item]:
        """Exact-match lookup of one daily unit's fixed items."""
        pool = self.store.query_by_daily_key(daily_key)
        logger.debug(f"Daily pool loaded: {len(pool)} items", extra={"daily_key": daily_key})
        return pool

    def _filter_practice(self, criteria: PracticeCriteria) -> List[Item]:
        kind = PracticeKind(criteria.kind)
        levels = levels_for(criteria.level)

        if kind.uses_vocab_items:
            kinds = {
                PracticeKind.WORDS: ["word"],
                PracticeKind.SENTENCES: ["sentence"],
                PracticeKind.MIX: ["word", "sentence"],
            }[kind]
            pool = self.store.query_vocab(levels=levels, kinds=kinds)
        elif kind == PracticeKind.LISTENING:
            # No listening material yet
            pool = []
        else:
            sections = list(LANGUAGE_SECTIONS) if kind == PracticeKind.LANGUAGE else [Category.READING.value]
            year = None if _is_wildcard(criteria.year) else int(criteria.year)
            pool = self.store.query_items(
                levels=levels,
                sections=sections,
                year=year,
                month=effective_month(criteria),
            )

        seen = set()
        unique = []
        for item in pool:
            if item.identity not in seen:
                seen.add(item.identity)
                unique.append(item)
        logger.debug(f"Practice pool loaded: {len(unique)} items for {criteria}")
        return unique
