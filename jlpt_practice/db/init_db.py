"""Database initialization with auto-migration."""
from typing import List, Optional, Tuple

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from jlpt_practice.db import models  # noqa: F401  registers tables on Base.metadata
from jlpt_practice.db.database import Base, engine as default_engine
from jlpt_practice.logging_config import get_logger

logger = get_logger(__name__)

# (table, index name, CREATE statement) for databases created before the index existed
INDEX_MIGRATIONS: List[Tuple[str, str, str]] = [
    ("exams", "idx_exams_level_year",
     "CREATE INDEX IF NOT EXISTS idx_exams_level_year ON exams (level, year)"),
    ("exam_questions", "idx_exam_questions_section",
     "CREATE INDEX IF NOT EXISTS idx_exam_questions_section ON exam_questions (section)"),
    ("daily_sets", "idx_daily_sets_lc",
     "CREATE INDEX IF NOT EXISTS idx_daily_sets_lc ON daily_sets (level, category)"),
    ("vocab_items", "idx_vocab_level_kind",
     "CREATE INDEX IF NOT EXISTS idx_vocab_level_kind ON vocab_items (level, kind)"),
    ("mistakes", "idx_mistakes_created",
     "CREATE INDEX IF NOT EXISTS idx_mistakes_created ON mistakes (created_at)"),
    ("mistakes", "idx_mistakes_item",
     "CREATE INDEX IF NOT EXISTS idx_mistakes_item ON mistakes (item_identity)"),
]


def check_index_exists(inspector, table_name: str, index_name: str) -> bool:
    """Check if an index exists on a table."""
    try:
        indexes = inspector.get_indexes(table_name)
        return any(idx["name"] == index_name for idx in indexes)
    except Exception as e:
        logger.warning(f"Error checking index {index_name} in {table_name}: {e}")
        return False


def apply_schema_migrations(bind: Engine) -> List[str]:
    """
    Create lookup indexes missing from an existing database.

    All operations are idempotent.

    Returns:
        Descriptions of the migrations applied
    """
    inspector = inspect(bind)
    existing_tables = set(inspector.get_table_names())
    applied = []

    with bind.begin() as conn:
        for table, index_name, sql in INDEX_MIGRATIONS:
            if table not in existing_tables or check_index_exists(inspector, table, index_name):
                continue
            try:
                logger.info(f"Creating index {index_name}...")
                conn.execute(text(sql))
                applied.append(f"Created index {index_name}")
            except OperationalError as e:
                logger.warning(f"Could not create index {index_name}: {e}")

    if applied:
        logger.info(f"Applied {len(applied)} schema migrations: {', '.join(applied)}")
    else:
        logger.info("No schema migrations needed. Database is up to date.")
    return applied


def init_db(bind: Optional[Engine] = None) -> None:
    """
    Initialize database: create tables and apply migrations.

    Safe to call multiple times. Corpus content is loaded separately by
    CorpusSync.ensure_seeded().
    """
    bind = bind or default_engine
    logger.info("Initializing database...")
    Base.metadata.create_all(bind=bind)
    apply_schema_migrations(bind)
    logger.info("Database initialization complete.")
