"""
In-memory IdentityProvider with the same failure surface as the hosted one
(unknown email, wrong password, weak password, duplicate email, bad email).
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

from coinwise.errors.errors import AuthFailure, AuthFailureReason
from coinwise.ports.identity_provider import AuthListener, Unsubscribe
from coinwise.types.types import Identity
from coinwise.utils.utility import new_id

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


class InMemoryIdentityProvider:
    def __init__(self) -> None:
        self._accounts: dict[str, tuple[str, str]] = {}  # email -> (uid, password)
        self._current: Optional[Identity] = None
        self._listeners: list[AuthListener] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def current(self) -> Optional[Identity]:
        return self._current

    async def sign_up(self, email: str, password: str) -> Identity:
        email = email.strip().lower()
        if not _EMAIL_RE.match(email):
            raise AuthFailure(AuthFailureReason.INVALID_EMAIL, provider_code="invalid-email")
        if email in self._accounts:
            raise AuthFailure(
                AuthFailureReason.ALREADY_IN_USE, provider_code="email-already-in-use"
            )
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthFailure(AuthFailureReason.WEAK_PASSWORD, provider_code="weak-password")

        uid = new_id()
        self._accounts[email] = (uid, password)
        logger.info(f"[memory_identity] registered {email}")
        identity = Identity(user_id=uid, email=email)
        await self._switch(identity)
        return identity

    async def sign_in(self, email: str, password: str) -> Identity:
        email = email.strip().lower()
        if not _EMAIL_RE.match(email):
            raise AuthFailure(AuthFailureReason.INVALID_EMAIL, provider_code="invalid-email")
        account = self._accounts.get(email)
        if account is None:
            raise AuthFailure(AuthFailureReason.NOT_FOUND, provider_code="user-not-found")
        uid, stored = account
        if stored != password:
            raise AuthFailure(
                AuthFailureReason.INVALID_CREDENTIAL, provider_code="wrong-password"
            )
        identity = Identity(user_id=uid, email=email)
        await self._switch(identity)
        return identity

    async def sign_out(self) -> None:
        if self._current is None:
            return
        await self._switch(None)

    def on_auth_change(self, callback: AuthListener) -> Unsubscribe:
        self._listeners.append(callback)
        if self._current is not None:
            # initial delivery of an existing session, like the hosted SDKs
            task = asyncio.get_running_loop().create_task(callback(self._current))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    async def _switch(self, identity: Optional[Identity]) -> None:
        self._current = identity
        for cb in list(self._listeners):
            try:
                await cb(identity)
            except Exception as e:
                logger.error(f"[memory_identity] auth listener failed: {e!r}")
