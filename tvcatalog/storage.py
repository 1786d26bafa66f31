from __future__ import annotations
import json
import logging
import re
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

KEY_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


class Storage:
    """
    Key -> string persistence. Every key lives in its own file
    `<root>/<key>.json`, so writes to different keys never interleave.

    Read and write failures are logged, never raised: callers keep their
    in-memory state when a write does not land.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        if not KEY_RE.match(key or ""):
            raise ValueError(f"invalid storage key: {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        p = self._path(key)
        try:
            return p.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error("Storage read failed for %s: %s", key, e)
            return None

    def set(self, key: str, value: str) -> bool:
        p = self._path(key)
        tmp = p.with_suffix(".tmp")
        try:
            ensure_dir(self.root)
            tmp.write_text(value, encoding="utf-8")
            tmp.replace(p)
            return True
        except OSError as e:
            logger.error("Storage write failed for %s: %s", key, e)
            return False

    def remove(self, key: str) -> bool:
        p = self._path(key)
        try:
            p.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Storage delete failed for %s: %s", key, e)
            return False

    def read_json(self, key: str, default: Any = None) -> Any:
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.error("Storage value for %s is not valid JSON: %s", key, e)
            return default

    def write_json(self, key: str, obj: Any) -> bool:
        return self.set(key, json.dumps(obj, ensure_ascii=False))
