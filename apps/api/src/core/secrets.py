from __future__ import annotations

import logging
from pathlib import Path

from cachetools import LRUCache, cachedmethod

logger = logging.getLogger(__name__)


class SecretNotFoundError(FileNotFoundError):
    """Raised when a secret file is missing or empty."""


class SecretFileRepository:
    """Loads secrets stored one per file, memoizing each value by key."""

    def __init__(self, root: Path, max_entries: int = 64) -> None:
        self.root = root
        self._cache: LRUCache = LRUCache(maxsize=max_entries)

    @cachedmethod(lambda self: self._cache)
    def load(self, key: str) -> str:
        """Read ``<root>/<key>`` and return its stripped contents."""
        secret_path = self.root / key
        if not secret_path.is_file():
            raise SecretNotFoundError(f"Missing secret '{key}': {secret_path}")
        value = secret_path.read_text(encoding="utf-8").strip()
        if not value:
            raise SecretNotFoundError(f"Secret '{key}' is empty: {secret_path}")
        logger.info("Loaded secret '%s' from %s", key, self.root)
        return value

    def get(self, key: str) -> str | None:
        """Return the secret, or None when it is not configured."""
        try:
            return self.load(key)
        except SecretNotFoundError:
            return None
