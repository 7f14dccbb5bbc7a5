"""
Tests for database initialization and index migrations.

Tests cover:
1. Schema creation (tables, constraints)
2. Index migrations are applied once and are idempotent
3. Indexes missing from older databases are recreated
"""
import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from jlpt_practice.db.init_db import INDEX_MIGRATIONS, apply_schema_migrations, check_index_exists, init_db
from jlpt_practice.db.models import DailySet


@pytest.fixture
def fresh_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


class TestSchema:
    """Test schema structure and constraints."""

    def test_creates_all_tables(self, fresh_engine):
        init_db(fresh_engine)
        tables = set(inspect(fresh_engine).get_table_names())

        assert {
            "exams", "exam_questions", "exam_choices", "daily_sets", "daily_questions",
            "daily_choices", "vocab_items", "mistakes", "kv_entries",
        } <= tables

    def test_daily_week_constraint(self, session_factory):
        db = session_factory()
        db.add(DailySet(daily_key="N3-GRAMMAR-0071", level="N3", category="grammar", week=11, day=1))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
        db.close()


class TestIndexMigrations:
    """Test apply_schema_migrations()."""

    def test_all_indexes_present_after_init(self, fresh_engine):
        init_db(fresh_engine)
        inspector = inspect(fresh_engine)

        for table, index_name, _ in INDEX_MIGRATIONS:
            assert check_index_exists(inspector, table, index_name), index_name

    def test_idempotent(self, fresh_engine):
        init_db(fresh_engine)
        assert apply_schema_migrations(fresh_engine) == []

    def test_recreates_dropped_index(self, fresh_engine):
        init_db(fresh_engine)
        with fresh_engine.begin() as conn:
            conn.execute(text("DROP INDEX idx_exams_level_year"))

        applied = apply_schema_migrations(fresh_engine)

        assert applied == ["Created index idx_exams_level_year"]
        assert check_index_exists(inspect(fresh_engine), "exams", "idx_exams_level_year")

    def test_missing_table_is_skipped(self, fresh_engine):
        assert apply_schema_migrations(fresh_engine) == []
