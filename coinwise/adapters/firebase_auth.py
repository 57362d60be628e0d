"""
Firebase Authentication adapter (IdentityProvider port) over the identity
toolkit REST API:

    POST {identity_url}/accounts:signUp?key=API_KEY
    POST {identity_url}/accounts:signInWithPassword?key=API_KEY
         {"email": .., "password": .., "returnSecureToken": true}

Rejections come back as {"error": {"message": "EMAIL_NOT_FOUND"}}, sometimes
with a suffix ("WEAK_PASSWORD : Password should be at least 6 characters");
the code before " : " is mapped onto AuthFailureReason.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import aiohttp
import orjson

from coinwise.config.configs import FirebaseConfig
from coinwise.errors.errors import AuthFailure, AuthFailureReason, CoinwiseError
from coinwise.ports.identity_provider import AuthListener, Unsubscribe
from coinwise.types.types import Identity

logger = logging.getLogger(__name__)

PROVIDER_CODES: dict[str, AuthFailureReason] = {
    "EMAIL_NOT_FOUND": AuthFailureReason.NOT_FOUND,
    "INVALID_PASSWORD": AuthFailureReason.INVALID_CREDENTIAL,
    "INVALID_LOGIN_CREDENTIALS": AuthFailureReason.INVALID_CREDENTIAL,
    "USER_DISABLED": AuthFailureReason.INVALID_CREDENTIAL,
    "WEAK_PASSWORD": AuthFailureReason.WEAK_PASSWORD,
    "EMAIL_EXISTS": AuthFailureReason.ALREADY_IN_USE,
    "INVALID_EMAIL": AuthFailureReason.INVALID_EMAIL,
    "MISSING_EMAIL": AuthFailureReason.INVALID_EMAIL,
    "MISSING_PASSWORD": AuthFailureReason.WEAK_PASSWORD,
}


def map_provider_error(message: str) -> AuthFailure:
    code = message.split(" : ", 1)[0].strip()
    reason = PROVIDER_CODES.get(code)
    if reason is None:
        # unknown rejection codes are treated as bad credentials
        logger.warning(f"[firebase_auth] unmapped provider code {code!r}")
        reason = AuthFailureReason.INVALID_CREDENTIAL
    return AuthFailure(reason, provider_code=code)


class FirebaseIdentityProvider:
    def __init__(
        self,
        cfg: FirebaseConfig,
        api_key: str,
        session: Optional[aiohttp.ClientSession] = None,
        on_token: Optional[Callable[[Optional[str]], None]] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key must be non-empty")
        self._cfg = cfg
        self._api_key = api_key
        self._session = session
        self._owns_session = session is None
        self._on_token = on_token

        self._current: Optional[Identity] = None
        self._id_token: Optional[str] = None
        self._listeners: list[AuthListener] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def current(self) -> Optional[Identity]:
        return self._current

    @property
    def id_token(self) -> Optional[str]:
        return self._id_token

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._cfg.request_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    # --- IdentityProvider ---

    async def sign_in(self, email: str, password: str) -> Identity:
        return await self._authenticate("accounts:signInWithPassword", email, password)

    async def sign_up(self, email: str, password: str) -> Identity:
        return await self._authenticate("accounts:signUp", email, password)

    async def sign_out(self) -> None:
        self._id_token = None
        if self._on_token:
            self._on_token(None)
        if self._current is not None:
            await self._switch(None)

    def on_auth_change(self, callback: AuthListener) -> Unsubscribe:
        self._listeners.append(callback)
        if self._current is not None:
            task = asyncio.get_running_loop().create_task(callback(self._current))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    # --- Internals ---

    async def _authenticate(self, endpoint: str, email: str, password: str) -> Identity:
        body = await self._post(
            endpoint, {"email": email, "password": password, "returnSecureToken": True}
        )
        identity = Identity(
            user_id=body["localId"],
            email=body.get("email", email),
            display_name=body.get("displayName") or None,
        )
        self._id_token = body.get("idToken")
        if self._on_token:
            self._on_token(self._id_token)
        logger.info(f"[firebase_auth] {endpoint.split(':', 1)[1]} ok for {identity.email}")
        await self._switch(identity)
        return identity

    async def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        session = await self._get_session()
        url = f"{self._cfg.identity_url.rstrip('/')}/{endpoint}"
        try:
            async with session.post(
                url,
                params={"key": self._api_key},
                data=orjson.dumps(payload),
                headers={"Content-Type": "application/json"},
            ) as resp:
                raw = await resp.read()
                status = resp.status
        except asyncio.TimeoutError as e:
            raise CoinwiseError("Identity request timed out", component="identity") from e
        except aiohttp.ClientError as e:
            raise CoinwiseError(f"Identity request failed: {e}", component="identity") from e

        try:
            body = orjson.loads(raw) if raw else {}
        except orjson.JSONDecodeError as e:
            raise CoinwiseError(
                f"Identity response is not JSON (HTTP {status})", component="identity"
            ) from e

        if status >= 400:
            message = (body.get("error") or {}).get("message", "") if isinstance(body, dict) else ""
            if message:
                raise map_provider_error(message)
            raise CoinwiseError(f"Identity request failed with HTTP {status}", component="identity")
        return body

    async def _switch(self, identity: Optional[Identity]) -> None:
        self._current = identity
        for cb in list(self._listeners):
            try:
                await cb(identity)
            except Exception as e:
                logger.error(f"[firebase_auth] auth listener failed: {e!r}")
