"""IdentityProvider Port Interface.

Contract: authenticate a principal and report session changes.
- sign_in / sign_up raise AuthFailure with a reason on rejection.
- on_auth_change(callback) delivers Identity-or-None on every session change,
  plus the current Identity right after registering when one exists; returns
  an unsubscribe callable.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol

from coinwise.types.types import Identity

AuthListener = Callable[[Optional[Identity]], Awaitable[None]]
Unsubscribe = Callable[[], None]


class IdentityProvider(Protocol):
    async def sign_in(self, email: str, password: str) -> Identity: ...
    async def sign_up(self, email: str, password: str) -> Identity: ...
    async def sign_out(self) -> None: ...
    def on_auth_change(self, callback: AuthListener) -> Unsubscribe: ...
