"""PoolCache Port Interface.

Contract: best-effort local mirror of the last leaderboard pool. Never
authoritative; load() returns [] when nothing usable is cached.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from coinwise.types.types import LeaderboardEntry


class PoolCache(Protocol):
    def load(self) -> list[LeaderboardEntry]: ...
    def save(self, entries: Sequence[LeaderboardEntry]) -> None: ...
