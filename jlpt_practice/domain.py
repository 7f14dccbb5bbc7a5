"""Domain types for practice items, selection criteria and mistake records.

Items are a tagged union of three frozen dataclasses (Word, Sentence,
ExamQuestion). Code that needs to treat them differently matches on the
class, e.g. ``match item: case Word(): ...``.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional, Tuple, Union

from jlpt_practice.constants import DAYS_PER_WEEK, MAX_WEEK


class Level(str, Enum):
    """JLPT proficiency level, hardest first, plus the daily pseudo-level."""
    N1 = "N1"
    N2 = "N2"
    N3 = "N3"
    N4 = "N4"
    N5 = "N5"
    DAILY = "daily"

    @classmethod
    def exam_levels(cls) -> Tuple["Level", ...]:
        return (cls.N1, cls.N2, cls.N3, cls.N4, cls.N5)


class Category(str, Enum):
    """Exam section / practice category."""
    GRAMMAR = "grammar"
    VOCAB = "vocab"
    READING = "reading"
    LISTENING = "listening"


class PracticeKind(str, Enum):
    """What a free-practice session draws from."""
    LANGUAGE = "language"     # exam vocab + grammar + reading
    READING = "reading"       # exam reading only
    LISTENING = "listening"   # not available yet, always empty
    WORDS = "words"
    SENTENCES = "sentences"
    MIX = "mix"               # words and sentences

    @property
    def uses_vocab_items(self) -> bool:
        return self in (PracticeKind.WORDS, PracticeKind.SENTENCES, PracticeKind.MIX)


LEVEL_ALL = "all"
LEVEL_RANDOM_PAIR = "N2-N3-random"
RANDOM = "random"


@dataclass(frozen=True)
class Choice:
    """One answer choice of an exam question."""
    position: int
    content: str
    is_correct: bool
    explanation: str = ""


@dataclass(frozen=True)
class Word:
    id: int
    text: str
    translation: str
    reading: Optional[str] = None
    level: Optional[Level] = None
    category: Category = Category.VOCAB

    kind: ClassVar[str] = "word"

    @property
    def identity(self) -> str:
        return f"word:{self.id}"


@dataclass(frozen=True)
class Sentence:
    id: int
    text: str
    translation: str
    level: Optional[Level] = None
    category: Category = Category.GRAMMAR

    kind: ClassVar[str] = "sentence"

    @property
    def identity(self) -> str:
        return f"sentence:{self.id}"


@dataclass(frozen=True)
class ExamQuestion:
    """A past-exam or daily question bundling its own choices.

    Daily questions reuse this type with the daily key as ``exam_key`` and
    the item number as ``question_number``.
    """
    exam_key: str
    question_number: int
    section: Category
    stem: str
    choices: Tuple[Choice, ...]
    passage: Optional[str] = None
    level: Optional[Level] = None
    year: Optional[int] = None
    month: Optional[str] = None

    kind: ClassVar[str] = "question"

    def __post_init__(self):
        if len(self.choices) < 2:
            raise ValueError(
                f"{self.exam_key}#{self.question_number} needs at least 2 choices, got {len(self.choices)}"
            )
        correct = sum(1 for c in self.choices if c.is_correct)
        if correct != 1:
            raise ValueError(
                f"{self.exam_key}#{self.question_number} must have exactly one correct choice, got {correct}"
            )
        positions = [c.position for c in self.choices]
        if len(set(positions)) != len(positions):
            raise ValueError(f"{self.exam_key}#{self.question_number} has duplicate choice positions")

    @property
    def identity(self) -> str:
        return f"question:{self.exam_key}#{self.question_number}"

    @property
    def correct_choice(self) -> Choice:
        return next(c for c in self.choices if c.is_correct)


Item = Union[Word, Sentence, ExamQuestion]


@dataclass(frozen=True)
class PracticeCriteria:
    """Free-practice selection.

    ``level`` is a concrete level value ("N1".."N5"), ``"N2-N3-random"`` or
    ``"all"``. ``year``, ``month`` and ``session`` accept ``"random"`` (or
    None) as a wildcard.

    ``sequential`` walks the pool in order (a past-exam paper read front to
    back) instead of drawing random questions.
    """
    level: str = LEVEL_RANDOM_PAIR
    kind: PracticeKind = PracticeKind.LANGUAGE
    year: Union[int, str, None] = RANDOM
    month: Optional[str] = RANDOM
    session: Optional[str] = RANDOM
    sequential: bool = False


@dataclass(frozen=True)
class DailyCriteria:
    """One day of the daily practice calendar."""
    level: Level
    category: Category
    week: int
    day: int

    def __post_init__(self):
        if not 1 <= self.week <= MAX_WEEK:
            raise ValueError(f"week must be in 1..{MAX_WEEK}, got {self.week}")
        if not 1 <= self.day <= DAYS_PER_WEEK:
            raise ValueError(f"day must be in 1..{DAYS_PER_WEEK}, got {self.day}")


Criteria = Union[PracticeCriteria, DailyCriteria]


@dataclass(frozen=True)
class MistakeRecord:
    """A wrongly answered item, as stored in the mistake log."""
    item_identity: str
    prompt: str
    correct_text: str
    picked_text: str
    level: Optional[str] = None
    category: Optional[str] = None
    exam_key: Optional[str] = None
    question_number: Optional[int] = None
    picked_position: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    id: Optional[int] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "item_identity": self.item_identity,
            "prompt": self.prompt,
            "correct_text": self.correct_text,
            "picked_text": self.picked_text,
            "level": self.level,
            "category": self.category,
            "exam_key": self.exam_key,
            "question_number": self.question_number,
            "picked_position": self.picked_position,
            "created_at": self.created_at.isoformat(),
        }
