"""Persistent key-value store backed by the kv_entries table."""
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from jlpt_practice.db.models import KVEntry
from jlpt_practice.errors import StorageUnavailable
from jlpt_practice.logging_config import get_logger

logger = get_logger(__name__)


class KeyValueStore:
    """String key-value persistence with an atomic multi-key write."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        db = self._session_factory()
        try:
            entry = db.query(KVEntry).filter(KVEntry.key == key).first()
            return entry.value if entry else None
        except SQLAlchemyError as e:
            logger.error(f"Failed to read key {key}: {e}", exc_info=True)
            raise StorageUnavailable(str(e)) from e
        finally:
            db.close()

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, values: Dict[str, str]) -> None:
        """Write all values in one transaction; on failure nothing is written."""
        if not values:
            return
        db = self._session_factory()
        try:
            existing = {
                entry.key: entry
                for entry in db.query(KVEntry).filter(KVEntry.key.in_(list(values))).all()
            }
            now = datetime.utcnow()
            for key, value in values.items():
                entry = existing.get(key)
                if entry is None:
                    db.add(KVEntry(key=key, value=value, updated_at=now))
                else:
                    entry.value = value
                    entry.updated_at = now
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to write keys {sorted(values)}: {e}", exc_info=True)
            raise StorageUnavailable(str(e)) from e
        finally:
            db.close()
