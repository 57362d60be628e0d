from decimal import Decimal

import pytest

from coinwise.errors.errors import (
    AlreadyCompeting,
    AuthFailure,
    AuthFailureReason,
    CoinwiseError,
    CompetitionError,
    ConfigurationError,
    InsufficientFunds,
    InsufficientHoldings,
    InvalidOrder,
    LedgerError,
    SyncFailure,
)


def test_str_includes_component_and_details():
    err = CoinwiseError("boom", component="sync", details={"path": "users/u1"})
    assert str(err) == "boom [component=sync] [details={'path': 'users/u1'}]"
    assert str(CoinwiseError("plain")) == "plain"


@pytest.mark.parametrize(
    "exc, base",
    [
        (InsufficientFunds(), LedgerError),
        (InsufficientHoldings(), LedgerError),
        (InvalidOrder("bad"), LedgerError),
        (AlreadyCompeting("again"), CompetitionError),
        (SyncFailure("down"), CoinwiseError),
        (ConfigurationError("bad"), CoinwiseError),
    ],
)
def test_hierarchy(exc, base):
    assert isinstance(exc, base)
    assert isinstance(exc, CoinwiseError)


def test_insufficient_funds_details():
    err = InsufficientFunds(required=Decimal("50000"), available=Decimal("10000"))
    assert err.component == "ledger"
    assert err.details == {"required": "50000", "available": "10000"}


def test_insufficient_holdings_details():
    err = InsufficientHoldings(symbol="BTC", required=Decimal("2"), available=Decimal("1"))
    assert err.details == {"symbol": "BTC", "required": "2", "available": "1"}


def test_auth_failure_carries_reason_and_user_message():
    err = AuthFailure(AuthFailureReason.WEAK_PASSWORD, provider_code="WEAK_PASSWORD")
    assert err.reason is AuthFailureReason.WEAK_PASSWORD
    assert err.user_message == "Password must be at least 6 characters."
    assert err.details == {"reason": "weak_password", "provider_code": "WEAK_PASSWORD"}
    assert err.component == "identity"


def test_sync_failure_records_path_and_attempts():
    err = SyncFailure("write failed", path="users/u1", attempts=3)
    assert err.path == "users/u1"
    assert err.attempts == 3
    assert err.details == {"path": "users/u1", "attempts": 3}


def test_configuration_error_field_and_value():
    err = ConfigurationError("bad", field="sync.max_attempts", value=0)
    assert err.field == "sync.max_attempts"
    assert err.details == {"field": "sync.max_attempts", "value": "0"}
