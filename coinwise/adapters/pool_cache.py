"""Local mirror of the last known leaderboard pool (one orjson document)."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Sequence

import orjson
from pydantic import ValidationError

from coinwise.sync.codec import decode_pool, encode_entry
from coinwise.types.types import LeaderboardEntry

logger = logging.getLogger(__name__)


class FilePoolCache:
    def __init__(self, path: Path) -> None:
        self._path = path if isinstance(path, Path) else Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[LeaderboardEntry]:
        if not self._path.exists():
            return []
        try:
            raw = orjson.loads(self._path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            logger.warning(f"[pool_cache] ignoring unreadable cache {self._path}: {e}")
            return []
        try:
            return decode_pool(raw)
        except (TypeError, AttributeError, ValidationError) as e:
            logger.warning(f"[pool_cache] ignoring malformed cache {self._path}: {e}")
            return []

    def save(self, entries: Sequence[LeaderboardEntry]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = orjson.dumps([encode_entry(e) for e in entries])
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_bytes(payload)
        os.replace(tmp, self._path)
