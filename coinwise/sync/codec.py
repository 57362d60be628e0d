"""
Wire codec between domain records and remote documents.

Remote documents use the camelCase layout written by the browser client:

    users/{uid}                      -> UserDocument
    competition/players/{poolKey}    -> LeaderboardDocument

Decoding is tolerant of what a realtime database hands back: empty lists are
dropped by the store (missing key), lists may come back as {"0": .., "1": ..}
objects, and the competition record may be partially populated.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from coinwise.errors.errors import SyncFailure
from coinwise.types.types import (
    IDLE,
    ActiveCompetition,
    AssetHolding,
    CompetitionState,
    LeaderboardEntry,
    Transaction,
    TransactionType,
    UserState,
)
from coinwise.utils.utility import dec

logger = logging.getLogger(__name__)

# Characters a realtime-database key may not contain, and their escapes.
_KEY_ESCAPES: dict[str, str] = {
    "%": "%25",
    ".": "%2E",
    "$": "%24",
    "#": "%23",
    "[": "%5B",
    "]": "%5D",
    "/": "%2F",
}


def pool_key(account_id: str) -> str:
    """Escape an account id (usually an email) into a legal store key."""
    if not account_id:
        raise ValueError("account_id must be non-empty")
    return "".join(_KEY_ESCAPES.get(ch, ch) for ch in account_id)


def _as_list(v: Any) -> Any:
    if v is None:
        return []
    if isinstance(v, dict):
        # sparse arrays come back as objects keyed by index
        try:
            return [v[k] for k in sorted(v, key=int)]
        except (TypeError, ValueError):
            return list(v.values())
    return v


# --- Wire models ---


class _Doc(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AssetDoc(_Doc):
    symbol: str
    amount: float


class TransactionDoc(_Doc):
    id: str
    type: TransactionType
    asset: str
    amount: float
    price: float
    total: float
    timestamp: int


class CompetitionDoc(_Doc):
    is_competing: bool = False
    entry_net_worth: float = 0
    entry_time: int = 0
    pnl_percent: float = 0
    current_rank: int = 0
    end_time: Optional[int] = None


class UserDocument(_Doc):
    account_id: str
    name: str = ""
    balance: float = Field(ge=0)
    assets: list[AssetDoc] = Field(default_factory=list)
    transactions: list[TransactionDoc] = Field(default_factory=list)
    competition: Optional[CompetitionDoc] = None

    @field_validator("assets", "transactions", mode="before")
    @classmethod
    def _coerce_list(cls, v: Any) -> Any:
        return _as_list(v)


class LeaderboardDocument(_Doc):
    rank: int = 0
    name: str
    account_id: str
    pnl: float = 0
    value: float = 0
    is_user: bool = True


# --- Domain <-> wire ---


def _f(d: Decimal) -> float:
    return float(d)


def _competition_to_doc(comp: CompetitionState) -> CompetitionDoc:
    if isinstance(comp, ActiveCompetition):
        return CompetitionDoc(
            is_competing=True,
            entry_net_worth=_f(comp.entry_net_worth),
            entry_time=comp.entry_time,
            pnl_percent=_f(comp.pnl_percent),
            current_rank=comp.current_rank,
            end_time=comp.end_time,
        )
    return CompetitionDoc()


def _competition_from_doc(doc: Optional[CompetitionDoc]) -> CompetitionState:
    if doc is None or not doc.is_competing:
        return IDLE
    return ActiveCompetition(
        entry_net_worth=dec(doc.entry_net_worth),
        entry_time=doc.entry_time,
        end_time=doc.end_time,
        pnl_percent=dec(doc.pnl_percent),
        current_rank=doc.current_rank,
    )


def encode_user(state: UserState) -> dict[str, Any]:
    doc = UserDocument(
        account_id=state.account_id,
        name=state.name,
        balance=_f(state.balance),
        assets=[AssetDoc(symbol=h.symbol, amount=_f(h.amount)) for h in state.assets],
        transactions=[
            TransactionDoc(
                id=t.id,
                type=t.type,
                asset=t.asset,
                amount=_f(t.amount),
                price=_f(t.price),
                total=_f(t.total),
                timestamp=t.timestamp,
            )
            for t in state.transactions
        ],
        competition=_competition_to_doc(state.competition),
    )
    return doc.model_dump(mode="json", by_alias=True, exclude_none=True)


def decode_user(raw: Any, *, path: Optional[str] = None) -> UserState:
    """
    Raises:
        SyncFailure: if the document does not match the user layout
    """
    try:
        doc = UserDocument.model_validate(raw)
    except ValidationError as e:
        raise SyncFailure(
            "Remote user document is malformed",
            path=path,
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e

    assets: list[AssetHolding] = []
    seen: set[str] = set()
    for a in doc.assets:
        amount = dec(a.amount)
        # enforce holding invariants on foreign data
        if amount <= 0 or a.symbol in seen:
            logger.warning(f"[codec] dropping invalid holding {a.symbol}={a.amount}")
            continue
        seen.add(a.symbol)
        assets.append(AssetHolding(symbol=a.symbol, amount=amount))

    return UserState(
        account_id=doc.account_id,
        name=doc.name,
        balance=dec(doc.balance),
        assets=tuple(assets),
        transactions=tuple(
            Transaction(
                id=t.id,
                type=t.type,
                asset=t.asset,
                amount=dec(t.amount),
                price=dec(t.price),
                total=dec(t.total),
                timestamp=t.timestamp,
            )
            for t in doc.transactions
        ),
        competition=_competition_from_doc(doc.competition),
    )


def encode_entry(entry: LeaderboardEntry) -> dict[str, Any]:
    return LeaderboardDocument(
        rank=entry.rank,
        name=entry.name,
        account_id=entry.account_id,
        pnl=_f(entry.pnl),
        value=_f(entry.value),
        is_user=entry.is_user,
    ).model_dump(mode="json", by_alias=True)


def decode_entry(raw: Any) -> LeaderboardEntry:
    doc = LeaderboardDocument.model_validate(raw)
    return LeaderboardEntry(
        rank=doc.rank,
        name=doc.name,
        account_id=doc.account_id,
        pnl=dec(doc.pnl),
        value=dec(doc.value),
        is_user=doc.is_user,
    )


def decode_pool(raw: Any) -> list[LeaderboardEntry]:
    """
    Decode the full pool value (mapping key -> entry, a list, or None).
    Malformed entries are skipped; one bad client never blanks the board.
    """
    if raw is None:
        return []
    values: Iterable[Any] = raw.values() if isinstance(raw, dict) else raw
    entries: list[LeaderboardEntry] = []
    for item in values:
        if item is None:
            continue
        try:
            entries.append(decode_entry(item))
        except ValidationError as e:
            logger.warning(f"[codec] skipping malformed pool entry: {e.error_count()} errors")
    return entries
