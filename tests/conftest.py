"""Pytest fixtures for testing."""
import copy
import os

# Keep the app's module-level engine off the filesystem and the network
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CORPUS_URL", "")
os.environ.setdefault("TTS_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jlpt_practice.db.database import Base
from jlpt_practice.db import models  # noqa: F401
from jlpt_practice.services.item_store import ItemStore
from jlpt_practice.services.kv_store import KeyValueStore
from jlpt_practice.services.pool_filter import PoolFilter
from jlpt_practice.services.progress import ProgressLedger


def make_choices(labels, correct=1):
    """Choice dicts for positions 1..n; ``correct`` is the right position."""
    return [
        {"position": i, "content": label, "is_correct": i == correct, "explanation": f"why {label}"}
        for i, label in enumerate(labels, start=1)
    ]


TEST_CORPUS = {
    "exams": [
        {
            "exam_key": "N3-2019-07", "level": "N3", "year": 2019, "month": "07", "title": "N3 July 2019",
            "questions": [
                {"question_number": 1, "section": "vocab", "stem": "vocab q1",
                 "choices": make_choices(["a1", "b1", "c1", "d1"], correct=2)},
                {"question_number": 2, "section": "grammar", "stem": "grammar q2",
                 "choices": make_choices(["a2", "b2", "c2", "d2"])},
                {"question_number": 3, "section": "reading", "stem": "reading q3", "passage": "passage text",
                 "choices": make_choices(["a3", "b3", "c3"], correct=3)},
                {"question_number": 4, "section": "listening", "stem": "listening q4",
                 "choices": make_choices(["a4", "b4"])},
            ],
        },
        {
            "exam_key": "N3-2018-12", "level": "N3", "year": 2018, "month": "12", "title": "N3 December 2018",
            "questions": [
                {"question_number": 1, "section": "vocab", "stem": "old vocab",
                 "choices": make_choices(["w", "x", "y", "z"])},
            ],
        },
        {
            "exam_key": "N2-2019-12", "level": "N2", "year": 2019, "month": "12", "title": "N2 December 2019",
            "questions": [
                {"question_number": 1, "section": "grammar", "stem": "n2 grammar",
                 "choices": make_choices(["p", "q", "r", "s"], correct=4)},
            ],
        },
        {
            "exam_key": "N1-2020-07", "level": "N1", "year": 2020, "month": "7", "title": "N1 July 2020",
            "questions": [
                {"question_number": 1, "section": "vocab", "stem": "n1 vocab",
                 "choices": make_choices(["e", "f", "g"])},
            ],
        },
    ],
    "daily_sets": [
        {
            "level": "N3", "category": "grammar", "week": 1, "day": 1,
            "questions": [
                {"item_number": 2, "question_type": "grammar", "stem": "daily two",
                 "choices": make_choices(["d2a", "d2b", "d2c"], correct=2)},
                {"item_number": 1, "question_type": "grammar", "stem": "daily one",
                 "choices": make_choices(["d1a", "d1b", "d1c", "d1d"])},
                {"item_number": 3, "question_type": "grammar", "stem": "daily three",
                 "choices": make_choices(["d3a", "d3b"], correct=2)},
            ],
        },
        {
            "level": "N3", "category": "grammar", "week": 2, "day": 1,
            "questions": [
                {"item_number": 1, "question_type": "grammar", "stem": "week two",
                 "choices": make_choices(["x", "y"])},
            ],
        },
    ],
    "words": [
        {"id": 1, "text": "学校", "reading": "がっこう", "translation": "school", "level": "N5"},
        {"id": 2, "text": "水", "reading": "みず", "translation": "water", "level": "N5"},
        {"id": 3, "text": "先生", "reading": "せんせい", "translation": "teacher", "level": "N5"},
        {"id": 4, "text": "電車", "reading": "でんしゃ", "translation": "train", "level": "N5"},
        {"id": 5, "text": "勉強", "reading": "べんきょう", "translation": "study", "level": "N3"},
    ],
    "sentences": [
        {"id": 101, "text": "私は学生です。", "translation": "I am a student.", "level": "N5"},
        {"id": 102, "text": "駅はどこですか。", "translation": "Where is the station?", "level": "N5"},
    ],
}


@pytest.fixture
def corpus():
    """A fresh copy of the test corpus."""
    return copy.deepcopy(TEST_CORPUS)


@pytest.fixture
def engine():
    """In-memory SQLite shared across threads (asyncio.to_thread, ledger locks)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def store(session_factory):
    """Empty item store."""
    return ItemStore(session_factory)


@pytest.fixture
def loaded_store(store, corpus):
    """Item store holding the test corpus."""
    store.replace_contents(corpus)
    return store


@pytest.fixture
def pool_filter(loaded_store):
    return PoolFilter(loaded_store)


@pytest.fixture
def kv(session_factory):
    return KeyValueStore(session_factory)


@pytest.fixture
def ledger(kv):
    return ProgressLedger(kv)
