from __future__ import annotations
import logging
import time
from typing import Callable, List, Optional

from .m3u_core import Channel
from .storage import Storage

logger = logging.getLogger(__name__)

CACHE_KEY = "m3u_channels_cache"


def now_ms() -> int:
    return int(time.time() * 1000)


class CatalogCache:
    """
    The last built channel list plus the epoch-millis time it was built.
    A record is valid while `now - timestamp < ttl`; every save replaces it.
    """

    def __init__(self, storage: Storage, ttl_seconds: float, clock: Callable[[], int] = now_ms):
        self.storage = storage
        self.ttl_ms = int(ttl_seconds * 1000)
        self.clock = clock

    def _record(self) -> Optional[dict]:
        rec = self.storage.read_json(CACHE_KEY)
        if not isinstance(rec, dict):
            return None
        if not isinstance(rec.get("timestamp"), (int, float)) or not isinstance(rec.get("channels"), list):
            logger.warning("Ignoring malformed cache record")
            return None
        return rec

    def age_ms(self) -> Optional[int]:
        rec = self._record()
        if rec is None:
            return None
        return self.clock() - int(rec["timestamp"])

    def load_valid(self) -> Optional[List[Channel]]:
        rec = self._record()
        if rec is None:
            return None
        age = self.clock() - int(rec["timestamp"])
        if age >= self.ttl_ms:
            logger.debug("Cache expired (%d ms old)", age)
            return None
        try:
            return [Channel.from_dict(d) for d in rec["channels"] if isinstance(d, dict) and d.get("url")]
        except TypeError as e:
            logger.warning("Ignoring unreadable cache record: %s", e)
            return None

    def save(self, channels: List[Channel]) -> bool:
        return self.storage.write_json(
            CACHE_KEY,
            {"channels": [ch.to_dict() for ch in channels], "timestamp": self.clock()},
        )

    def clear(self) -> bool:
        return self.storage.remove(CACHE_KEY)
