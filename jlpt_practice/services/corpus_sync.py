"""Corpus resync: reload the item store from a local file or a remote endpoint."""
import json
import threading
from pathlib import Path
from typing import Dict, Optional, Tuple

import requests

from jlpt_practice.errors import StaleGeneration
from jlpt_practice.logging_config import get_logger

logger = get_logger(__name__)

SOURCE_LOCAL = "local"
SOURCE_REMOTE = "remote"
SOURCE_NONE = "none"


class CorpusSync:
    """
    Replace the item store's contents from the first corpus source that works.

    Sources are tried in a fixed order:
    1. The local JSON file at ``path``
    2. The remote JSON document at ``url`` (fetched with requests)
    3. Nothing: the store is left as it is

    Overlapping resyncs are resolved by generation: a resync that finishes
    loading after a newer one started does not write.
    """

    def __init__(self, store, path: Optional[str] = None, url: Optional[str] = None,
                 timeout: float = 10.0):
        self.store = store
        self.path = Path(path) if path else None
        self.url = url or None
        self.timeout = timeout
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def load_local(self) -> Optional[dict]:
        if self.path is None or not self.path.is_file():
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read local corpus {self.path}: {e}")
            return None

    def load_remote(self) -> Optional[dict]:
        if not self.url:
            return None
        try:
            response = requests.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.warning(f"Could not fetch remote corpus {self.url}: {e}")
            return None
        except ValueError as e:
            logger.warning(f"Remote corpus is not valid JSON: {e}")
            return None

    def load_corpus(self) -> Tuple[Optional[dict], str]:
        """Corpus from the first working source, and that source's name."""
        corpus = self.load_local()
        if corpus is not None:
            return corpus, SOURCE_LOCAL
        corpus = self.load_remote()
        if corpus is not None:
            return corpus, SOURCE_REMOTE
        return None, SOURCE_NONE

    def _check_generation(self, generation: int) -> None:
        if generation != self._generation:
            raise StaleGeneration(generation, self._generation)

    def resync(self) -> Dict:
        """
        Reload the store.

        Returns:
            {
                "applied": bool,      # False if superseded or no source worked
                "source": "local" | "remote" | "none",
                "generation": int,
                "counts": {...}       # store counts after the call
            }

        Raises:
            ValueError: the corpus failed validation (store unchanged)
            StorageUnavailable: the store could not be written (store unchanged)
        """
        with self._lock:
            self._generation += 1
            generation = self._generation

        corpus, source = self.load_corpus()

        with self._lock:
            try:
                self._check_generation(generation)
            except StaleGeneration as e:
                logger.debug(f"Discarding superseded resync: {e}", extra={"generation": generation})
                return {"applied": False, "source": source, "generation": generation,
                        "counts": self.store.counts()}

            if corpus is None:
                logger.warning("No corpus source available; item store left unchanged")
                return {"applied": False, "source": source, "generation": generation,
                        "counts": self.store.counts()}

            counts = self.store.replace_contents(corpus)

        logger.info(f"Resynced item store from {source} corpus", extra={"generation": generation})
        return {"applied": True, "source": source, "generation": generation, "counts": counts}

    def ensure_seeded(self) -> Optional[Dict]:
        """Resync only if the store has never been loaded."""
        if self.store.is_loaded():
            return None
        return self.resync()
