"""Result cache for resolved utterances"""

import hashlib
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from voice_commands.core.logging import get_logger
from voice_commands.schemas import CommandResult

logger = get_logger(__name__)


class ResultCache:
    """
    TTL cache of successful command results.

    Entries are keyed by a hash of the normalized input, user id and
    language. When full, the oldest entry is evicted. All mutations happen
    under a single lock so the cache can be shared across event loops.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, CommandResult]]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def make_key(
        normalized_input: str,
        user_id: Optional[str],
        language: Optional[str],
        authenticated: bool = False,
    ) -> str:
        """Hash of the inputs that decide a result, trust flag included"""
        raw = "\x1f".join((
            normalized_input,
            user_id or "",
            language or "",
            "1" if authenticated else "0",
        ))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def get(self, key: str) -> Optional[CommandResult]:
        """
        Get cached result

        Args:
            key: Cache key from make_key

        Returns:
            Deep copy of the stored result, or None when absent or expired
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            stored_at, result = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                logger.debug("Cache entry expired", key=key[:12])
                return None

            return result.model_copy(deep=True)

    def set(self, key: str, result: CommandResult) -> None:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache entry evicted", key=evicted[:12])

            self._entries[key] = (self._clock(), result.model_copy(deep=True))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
