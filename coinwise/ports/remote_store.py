"""RemoteStore Port Interface.

Contract: key-value document store with path subscriptions (realtime database).
- `set` overwrites the whole document at path (last write wins, no merge).
- `delete` removes the document; deleting a missing path is not an error.
- `subscribe` delivers the full current value at path (None when empty) on
  every change, including once right after subscribing. Deliveries may be
  coalesced; a listener only ever sees whole values, never diffs.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol

Listener = Callable[[Optional[Any]], Awaitable[None]]


class StoreSubscription(Protocol):
    async def close(self) -> None: ...


class RemoteStore(Protocol):
    async def get(self, path: str) -> Optional[Any]: ...
    async def set(self, path: str, value: Any) -> None: ...
    async def delete(self, path: str) -> None: ...
    async def subscribe(self, path: str, listener: Listener) -> StoreSubscription: ...
