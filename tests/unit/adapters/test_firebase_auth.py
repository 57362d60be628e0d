"""
Unit tests for the Firebase identity adapter: provider error mapping and the
request/response handling around the REST endpoints.
"""

from unittest.mock import AsyncMock, MagicMock

import orjson
import pytest

from coinwise.adapters.firebase_auth import FirebaseIdentityProvider, map_provider_error
from coinwise.config.configs import FirebaseConfig
from coinwise.errors.errors import AuthFailure, AuthFailureReason, CoinwiseError


class _Response:
    def __init__(self, status: int, body: dict) -> None:
        self.status = status
        self._raw = orjson.dumps(body)

    async def read(self) -> bytes:
        return self._raw

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def _session(status: int, body: dict) -> MagicMock:
    session = MagicMock()
    session.closed = False
    session.post.return_value = _Response(status, body)
    return session


@pytest.mark.parametrize(
    "message, reason",
    [
        ("EMAIL_NOT_FOUND", AuthFailureReason.NOT_FOUND),
        ("INVALID_PASSWORD", AuthFailureReason.INVALID_CREDENTIAL),
        ("INVALID_LOGIN_CREDENTIALS", AuthFailureReason.INVALID_CREDENTIAL),
        ("EMAIL_EXISTS", AuthFailureReason.ALREADY_IN_USE),
        ("INVALID_EMAIL", AuthFailureReason.INVALID_EMAIL),
        ("WEAK_PASSWORD : Password should be at least 6 characters", AuthFailureReason.WEAK_PASSWORD),
        ("SOMETHING_NEW", AuthFailureReason.INVALID_CREDENTIAL),
    ],
)
def test_map_provider_error(message, reason):
    err = map_provider_error(message)
    assert err.reason == reason
    assert err.provider_code == message.split(" : ")[0]


def test_api_key_required():
    with pytest.raises(ValueError):
        FirebaseIdentityProvider(FirebaseConfig(), "")


@pytest.mark.asyncio
async def test_sign_in_success_switches_identity_and_token():
    tokens = []
    session = _session(200, {"localId": "uid-1", "email": "a@x.io", "idToken": "jwt"})
    provider = FirebaseIdentityProvider(FirebaseConfig(), "key", session=session, on_token=tokens.append)
    listener = AsyncMock()
    provider.on_auth_change(listener)

    principal = await provider.sign_in("a@x.io", "secret1")

    assert principal.user_id == "uid-1"
    assert provider.current == principal
    assert provider.id_token == "jwt"
    listener.assert_awaited_once_with(principal)

    url = session.post.call_args.args[0]
    assert url.endswith("/accounts:signInWithPassword")
    assert session.post.call_args.kwargs["params"] == {"key": "key"}
    assert orjson.loads(session.post.call_args.kwargs["data"])["returnSecureToken"] is True

    await provider.sign_out()
    assert provider.current is None
    assert tokens == ["jwt", None]


@pytest.mark.asyncio
async def test_rejection_maps_to_auth_failure():
    session = _session(400, {"error": {"code": 400, "message": "EMAIL_EXISTS"}})
    provider = FirebaseIdentityProvider(FirebaseConfig(), "key", session=session)

    with pytest.raises(AuthFailure) as exc:
        await provider.sign_up("a@x.io", "secret1")

    assert exc.value.reason == AuthFailureReason.ALREADY_IN_USE
    assert provider.current is None


@pytest.mark.asyncio
async def test_http_error_without_message():
    provider = FirebaseIdentityProvider(FirebaseConfig(), "key", session=_session(503, {}))
    with pytest.raises(CoinwiseError) as exc:
        await provider.sign_in("a@x.io", "secret1")
    assert not isinstance(exc.value, AuthFailure)
