"""Application context: the services one running app shares."""
import random
import threading
import uuid
from collections import OrderedDict
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from jlpt_practice.config import Settings, settings as default_settings
from jlpt_practice.constants import MAX_ACTIVE_SESSIONS
from jlpt_practice.logging_config import get_logger
from jlpt_practice.services.corpus_sync import CorpusSync
from jlpt_practice.services.item_store import ItemStore
from jlpt_practice.services.kv_store import KeyValueStore
from jlpt_practice.services.playback import GTTSPlayback, NullPlayback, PlaybackSink
from jlpt_practice.services.pool_filter import PoolFilter
from jlpt_practice.services.practice_session import PracticeSession
from jlpt_practice.services.progress import ProgressLedger

logger = get_logger(__name__)


class AppContext:
    """
    Owns the stores, the ledger, corpus sync, playback and the live sessions.

    Created once at startup and kept on ``app.state.context``.
    """

    def __init__(self, session_factory: sessionmaker, config: Settings = default_settings,
                 playback: Optional[PlaybackSink] = None, rng: Optional[random.Random] = None,
                 max_sessions: int = MAX_ACTIVE_SESSIONS):
        self.config = config
        self.store = ItemStore(session_factory)
        self.kv = KeyValueStore(session_factory)
        self.ledger = ProgressLedger(self.kv)
        self.pool_filter = PoolFilter(self.store)
        self.sync = CorpusSync(
            self.store,
            path=config.CORPUS_PATH,
            url=config.CORPUS_URL,
            timeout=config.SYNC_TIMEOUT,
        )
        if playback is None:
            if config.TTS_ENABLED:
                playback = GTTSPlayback(config.AUDIO_CACHE_DIR, lang=config.TTS_LANG)
            else:
                playback = NullPlayback()
        self.playback = playback
        self.rng = rng
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, PracticeSession]" = OrderedDict()
        self._sessions_lock = threading.Lock()

    def new_session(self) -> PracticeSession:
        """Register a new session, evicting the least recently used past the limit."""
        session_id = uuid.uuid4().hex
        rng = random.Random(self.rng.random()) if self.rng else None
        session = PracticeSession(
            self.pool_filter, self.store, rng=rng, playback=self.playback, session_id=session_id,
        )
        with self._sessions_lock:
            self._sessions[session_id] = session
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.info("Evicted idle practice session", extra={"session_id": evicted})
        return session

    def get_session(self, session_id: str) -> Optional[PracticeSession]:
        with self._sessions_lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._sessions.move_to_end(session_id)
            return session

    def drop_session(self, session_id: str) -> bool:
        with self._sessions_lock:
            return self._sessions.pop(session_id, None) is not None

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def close(self) -> None:
        self.playback.close()


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the app's context."""
    return request.app.state.context
