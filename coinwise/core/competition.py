"""
Competition Engine.

State machine per user:

    [Idle] --enter()--> [Active] --reset()--> [Idle]

There is no automatic expiry transition. Once `end_time` has passed the data
stays Active (score keeps updating until reset) but `phase()` reports ENDED,
which is what display and eligibility checks use.

Entering a competition:
1. charge the entry fee (FEE transaction, debit)
2. force-liquidate holdings at market (SELL transactions)
3. allocate the baseline net worth (ALLOCATION transaction, balance := baseline)
"""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Iterable, Optional

from coinwise.config.configs import CompetitionConfig
from coinwise.core.clock import Clock
from coinwise.core.ledger import PortfolioLedger
from coinwise.errors.errors import AlreadyCompeting, NotCompeting
from coinwise.types.aliases import AccountId
from coinwise.types.types import (
    HUNDRED,
    IDLE,
    ZERO,
    ActiveCompetition,
    CompetitionPhase,
    LeaderboardEntry,
    MarketSnapshot,
    UserState,
)

logger = logging.getLogger(__name__)


def pnl_percent(entry_net_worth: Decimal, current_net_worth: Decimal) -> Decimal:
    """(current - entry) / entry * 100. Zero exactly when current == entry."""
    if entry_net_worth <= ZERO:
        return ZERO
    return (current_net_worth - entry_net_worth) / entry_net_worth * HUNDRED


def rank_pool(
    entries: Iterable[LeaderboardEntry], own_account_id: Optional[AccountId] = None
) -> list[LeaderboardEntry]:
    """
    Consumer-side global ranking over a merged pool.
    Order: pnl desc, value desc, account_id asc. Ranks are 1..N.
    """
    ordered = sorted(entries, key=lambda e: (-e.pnl, -e.value, e.account_id))
    return [
        replace(
            e,
            rank=i,
            is_user=(own_account_id is not None and e.account_id == own_account_id),
        )
        for i, e in enumerate(ordered, start=1)
    ]


class CompetitionEngine:
    """
    Owns the competition sub-state of a UserState. Sole writer of pnl_percent and
    current_rank while the user is competing.
    """

    def __init__(
        self,
        ledger: PortfolioLedger,
        clock: Clock,
        cfg: Optional[CompetitionConfig] = None,
    ) -> None:
        self._ledger = ledger
        self._clock = clock
        self._cfg = cfg or CompetitionConfig()

    @property
    def config(self) -> CompetitionConfig:
        return self._cfg

    # --- Transitions ---

    def enter(
        self,
        state: UserState,
        snapshot: MarketSnapshot,
        *,
        baseline_net_worth: Optional[Decimal] = None,
        duration_ms: Optional[int] = None,
    ) -> UserState:
        """
        Raises:
            AlreadyCompeting: if the user is already in a round
            InsufficientFunds: if the balance cannot cover the entry fee
        """
        if state.is_competing:
            raise AlreadyCompeting(
                "Already registered for a competition",
                component="competition",
                details={"account_id": state.account_id},
            )

        baseline = self._cfg.baseline_net_worth if baseline_net_worth is None else baseline_net_worth
        duration = self._cfg.duration_ms if duration_ms is None else duration_ms
        now = self._clock.now()

        s = self._ledger.charge(state, self._cfg.entry_fee)
        s = self._ledger.liquidate(s, snapshot)
        s = self._ledger.allocate(s, baseline)
        s = replace(
            s,
            competition=ActiveCompetition(
                entry_net_worth=baseline,
                entry_time=now,
                end_time=now + duration,
                pnl_percent=ZERO,
                current_rank=0,
            ),
        )
        logger.info(
            f"[competition] {state.account_id} entered: baseline={baseline} "
            f"fee={self._cfg.entry_fee} ends_at={now + duration}"
        )
        return s

    def recompute_score(self, state: UserState, current_net_worth: Decimal) -> UserState:
        """Update pnl_percent from the latest valuation. Idle states are returned as-is."""
        comp = state.competition
        if not isinstance(comp, ActiveCompetition):
            return state
        pnl = pnl_percent(comp.entry_net_worth, current_net_worth)
        if pnl == comp.pnl_percent:
            return state
        return replace(state, competition=replace(comp, pnl_percent=pnl))

    def set_rank(self, state: UserState, rank: int) -> UserState:
        comp = state.competition
        if not isinstance(comp, ActiveCompetition) or comp.current_rank == rank:
            return state
        return replace(state, competition=replace(comp, current_rank=rank))

    def reset(self, state: UserState) -> UserState:
        """Always yields Idle, whatever the prior state."""
        if state.is_competing:
            logger.info(f"[competition] {state.account_id} reset")
        return replace(state, competition=IDLE)

    # --- Projections ---

    def phase(self, state: UserState, now: Optional[int] = None) -> CompetitionPhase:
        comp = state.competition
        if not isinstance(comp, ActiveCompetition):
            return CompetitionPhase.IDLE
        ts = self._clock.now() if now is None else now
        return CompetitionPhase.ENDED if comp.is_expired(ts) else CompetitionPhase.ACTIVE

    def remaining_ms(self, state: UserState) -> int:
        comp = state.competition
        if not isinstance(comp, ActiveCompetition) or comp.end_time is None:
            return 0
        return max(0, comp.end_time - self._clock.now())

    @staticmethod
    def project_leaderboard_entry(state: UserState, net_worth: Decimal) -> LeaderboardEntry:
        """
        Pure projection. rank is a placeholder (0); ranking belongs to whoever
        holds the merged pool.
        """
        comp = state.competition
        if not isinstance(comp, ActiveCompetition):
            raise NotCompeting(
                "Cannot project a leaderboard entry for an idle user",
                component="competition",
                details={"account_id": state.account_id},
            )
        return LeaderboardEntry(
            rank=0,
            name=state.name,
            account_id=state.account_id,
            pnl=comp.pnl_percent,
            value=net_worth,
            is_user=True,
        )
