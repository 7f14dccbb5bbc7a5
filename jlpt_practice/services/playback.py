"""Prompt playback sinks.

The session hands every newly presented prompt to a sink and never waits for
it. ``GTTSPlayback`` renders prompts to mp3 files with gTTS in a background
thread; ``NullPlayback`` is used when text-to-speech is disabled.
"""
import hashlib
import os
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from gtts import gTTS

from jlpt_practice.logging_config import get_logger

logger = get_logger(__name__)


class PlaybackSink:
    """Receives prompt text to render audibly. Must not raise."""

    def speak(self, text: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class NullPlayback(PlaybackSink):
    def speak(self, text: str) -> None:
        pass


class GTTSPlayback(PlaybackSink):
    """
    Render prompts to ``<cache_dir>/<sha1>.mp3`` with gTTS.

    Prompts already rendered are not rendered again. Failures (no network,
    gTTS errors) are logged and otherwise ignored.
    """

    def __init__(self, cache_dir: str, lang: str = "ja", slow: bool = False,
                 tts_factory=gTTS, executor: Optional[ThreadPoolExecutor] = None):
        self.cache_dir = Path(cache_dir)
        self.lang = lang
        self.slow = slow
        self._tts_factory = tts_factory
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="tts")

    def path_for(self, text: str) -> Path:
        digest = hashlib.sha1(f"{self.lang}:{text}".encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}.mp3"

    def speak(self, text: str) -> Optional[Future]:
        """Queue ``text`` for rendering. Returns the pending future, or None if cached or empty."""
        if not text or not text.strip():
            return None
        path = self.path_for(text)
        if path.exists():
            return None
        return self._executor.submit(self.render, text, path)

    def render(self, text: str, path: Path) -> bool:
        tmp_path = path.with_suffix(".part")
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            tts = self._tts_factory(text=text, lang=self.lang, slow=self.slow)
            tts.save(str(tmp_path))
            os.replace(tmp_path, path)
            logger.debug(f"Rendered prompt audio {path.name}")
            return True
        except Exception as e:
            logger.warning(f"Could not render prompt audio: {e}")
            if tmp_path.exists():
                tmp_path.unlink()
            return False

    def close(self) -> None:
        self._executor.shutdown(wait=False)
