"""
Leaderboard pool read-model.

Every delivery from the store replaces the local view wholesale:
decode -> drop bot entries -> rank -> mirror to the local cache.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from coinwise.config.configs import PoolConfig
from coinwise.core.competition import rank_pool
from coinwise.ports.pool_cache import PoolCache
from coinwise.sync.codec import decode_pool
from coinwise.types.aliases import AccountId
from coinwise.types.types import LeaderboardEntry

logger = logging.getLogger(__name__)


class PoolReadModel:
    def __init__(self, cfg: Optional[PoolConfig] = None, cache: Optional[PoolCache] = None) -> None:
        self._cfg = cfg or PoolConfig()
        self._bot_re = re.compile(self._cfg.bot_name_pattern)
        self._cache = cache
        self._entries: list[LeaderboardEntry] = []
        self._own: Optional[AccountId] = None

    @property
    def entries(self) -> list[LeaderboardEntry]:
        return list(self._entries)

    def is_bot(self, entry: LeaderboardEntry) -> bool:
        return bool(self._bot_re.search(entry.name))

    def set_owner(self, account_id: Optional[AccountId]) -> None:
        """Re-flag `is_user` for a new session owner."""
        self._own = account_id
        self._entries = rank_pool(self._entries, account_id)

    def apply(self, raw: Any) -> list[LeaderboardEntry]:
        """Replace the pool from a full store value."""
        decoded = decode_pool(raw)
        humans = [e for e in decoded if not self.is_bot(e)]
        dropped = len(decoded) - len(humans)
        if dropped:
            logger.debug(f"[pool] filtered {dropped} bot entries")

        self._entries = rank_pool(humans, self._own)
        if self._cache is not None:
            try:
                self._cache.save(self._entries)
            except OSError as e:
                logger.warning(f"[pool] cache write failed: {e}")
        return self.entries

    def load_cached(self) -> list[LeaderboardEntry]:
        """Seed the view from the local cache (shown until the first delivery)."""
        if self._cache is None:
            return self.entries
        cached = [e for e in self._cache.load() if not self.is_bot(e)]
        self._entries = rank_pool(cached, self._own)
        logger.debug(f"[pool] loaded {len(self._entries)} cached entries")
        return self.entries

    def rank_of(self, account_id: AccountId) -> Optional[int]:
        for e in self._entries:
            if e.account_id == account_id:
                return e.rank
        return None

    def clear(self) -> None:
        self._entries = []
        self._own = None
