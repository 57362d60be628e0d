"""
In-memory RemoteStore.

Behaves like a realtime database tree: values live under slash-separated
paths, empty containers vanish, and a subscription on a path sees the full
value beneath it after every write that touches it. Deliveries are awaited
inline so tests observe them deterministically.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from coinwise.ports.remote_store import Listener

logger = logging.getLogger(__name__)


def _segments(path: str) -> list[str]:
    return [s for s in path.strip("/").split("/") if s]


def _related(a: list[str], b: list[str]) -> bool:
    """True when one path is a prefix of the other."""
    n = min(len(a), len(b))
    return a[:n] == b[:n]


@dataclass(eq=False)
class _Sub:
    store: "InMemoryRemoteStore"
    path: list[str]
    listener: Listener
    closed: bool = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.store._detach(self)


@dataclass
class WriteRecord:
    op: str  # "set" | "delete"
    path: str
    value: Any = None


@dataclass
class InMemoryRemoteStore:
    _root: dict[str, Any] = field(default_factory=dict)
    _subs: list[_Sub] = field(default_factory=list)
    _fail_remaining: int = 0
    _fail_exc: Optional[Exception] = None
    writes: list[WriteRecord] = field(default_factory=list)

    # --- Test hooks ---

    def fail_next(self, count: int, exc: Optional[Exception] = None) -> None:
        """Make the next `count` reads/writes raise."""
        self._fail_remaining = count
        self._fail_exc = exc

    @property
    def subscriber_count(self) -> int:
        return sum(1 for s in self._subs if not s.closed)

    def _maybe_fail(self, op: str, path: str) -> None:
        if self._fail_remaining > 0:
            self._fail_remaining -= 1
            raise self._fail_exc or ConnectionError(f"injected failure on {op} {path}")

    # --- RemoteStore ---

    async def get(self, path: str) -> Optional[Any]:
        self._maybe_fail("get", path)
        node: Any = self._root
        for seg in _segments(path):
            if not isinstance(node, dict) or seg not in node:
                return None
            node = node[seg]
        return copy.deepcopy(node)

    async def set(self, path: str, value: Any) -> None:
        if value is None:
            await self.delete(path)
            return
        self._maybe_fail("set", path)
        segs = _segments(path)
        if not segs:
            raise ValueError("cannot set the root")
        node = self._root
        for seg in segs[:-1]:
            child = node.get(seg)
            if not isinstance(child, dict):
                child = {}
                node[seg] = child
            node = child
        node[segs[-1]] = copy.deepcopy(value)
        self.writes.append(WriteRecord("set", path, copy.deepcopy(value)))
        await self._notify(segs)

    async def delete(self, path: str) -> None:
        self._maybe_fail("delete", path)
        segs = _segments(path)
        if not segs:
            raise ValueError("cannot delete the root")
        self.writes.append(WriteRecord("delete", path))
        trail: list[tuple[dict[str, Any], str]] = []
        node: Any = self._root
        for seg in segs:
            if not isinstance(node, dict) or seg not in node:
                return
            trail.append((node, seg))
            node = node[seg]
        parent, key = trail[-1]
        del parent[key]
        # prune containers left empty
        for parent, key in reversed(trail[:-1]):
            if parent[key]:
                break
            del parent[key]
        await self._notify(segs)

    async def subscribe(self, path: str, listener: Listener) -> _Sub:
        sub = _Sub(store=self, path=_segments(path), listener=listener)
        self._subs.append(sub)
        await sub.listener(await self._peek(sub.path))
        return sub

    # --- Internals ---

    def _detach(self, sub: _Sub) -> None:
        if sub in self._subs:
            self._subs.remove(sub)

    async def _peek(self, segs: list[str]) -> Optional[Any]:
        node: Any = self._root
        for seg in segs:
            if not isinstance(node, dict) or seg not in node:
                return None
            node = node[seg]
        return copy.deepcopy(node)

    async def _notify(self, written: list[str]) -> None:
        for sub in list(self._subs):
            if sub.closed or not _related(sub.path, written):
                continue
            try:
                await sub.listener(await self._peek(sub.path))
            except Exception as e:
                logger.error(f"[memory_store] listener on {'/'.join(sub.path)} failed: {e!r}")
