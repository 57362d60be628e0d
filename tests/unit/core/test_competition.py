"""
Unit tests for CompetitionEngine and the pool ranking helpers.
"""

from decimal import Decimal

import pytest

from coinwise.core.competition import pnl_percent, rank_pool
from coinwise.core.ledger import net_worth
from coinwise.errors.errors import AlreadyCompeting, InsufficientFunds, NotCompeting
from coinwise.types.types import (
    EMPTY_SNAPSHOT,
    IDLE,
    ActiveCompetition,
    CompetitionPhase,
    LeaderboardEntry,
    TransactionType,
)


def _entry(account_id: str, pnl: str, value: str = "10000", name: str = "") -> LeaderboardEntry:
    return LeaderboardEntry(
        rank=0,
        name=name or account_id,
        account_id=account_id,
        pnl=Decimal(pnl),
        value=Decimal(value),
    )


class TestEnter:
    def test_enter_charges_fee_liquidates_and_allocates(self, ledger, engine, clock, make_snapshot) -> None:
        s = ledger.new_user("alice@example.com", "alice")
        s = ledger.trade(s, "BUY", "BTC", "0.1", "50000")

        out = engine.enter(s, make_snapshot({"BTC": "51000"}))

        assert out.balance == Decimal("10000")
        assert out.assets == ()
        types = [t.type for t in out.transactions[1:]]
        assert types == [TransactionType.FEE, TransactionType.SELL, TransactionType.ALLOCATION]
        debits = (TransactionType.BUY, TransactionType.FEE)
        replayed = Decimal("10000") + sum(-t.total if t.type in debits else t.total for t in out.transactions)
        assert replayed == out.balance

        comp = out.competition
        assert isinstance(comp, ActiveCompetition)
        assert comp.entry_net_worth == Decimal("10000")
        assert comp.entry_time == clock.now()
        assert comp.end_time == clock.now() + 60_000
        assert comp.pnl_percent == 0
        assert comp.current_rank == 0

    def test_enter_with_explicit_baseline_and_duration(self, ledger, engine, clock) -> None:
        out = engine.enter(
            ledger.new_user("a", "a"),
            EMPTY_SNAPSHOT,
            baseline_net_worth=Decimal("5000"),
            duration_ms=1_000,
        )

        assert out.balance == Decimal("5000")
        assert out.competition.end_time == clock.now() + 1_000

    def test_enter_twice_raises(self, ledger, engine) -> None:
        s = engine.enter(ledger.new_user("a", "a"), EMPTY_SNAPSHOT)
        with pytest.raises(AlreadyCompeting):
            engine.enter(s, EMPTY_SNAPSHOT)

    def test_enter_requires_fee_funds(self, ledger, engine) -> None:
        s = ledger.new_user("a", "a", starting_balance="5")
        with pytest.raises(InsufficientFunds):
            engine.enter(s, EMPTY_SNAPSHOT)
        assert not s.is_competing


class TestScoring:
    def test_price_move_scenario_yields_five_percent(self, ledger, engine, make_snapshot) -> None:
        s = engine.enter(ledger.new_user("a", "a"), EMPTY_SNAPSHOT)
        s = ledger.trade(s, "BUY", "ETH", "2", "3000")

        worth = net_worth(s, make_snapshot({"ETH": "3250"}))
        s = engine.recompute_score(s, worth)

        assert worth == Decimal("10500")
        assert s.competition.pnl_percent == Decimal("5")

    def test_recompute_on_idle_is_identity(self, ledger, engine) -> None:
        s = ledger.new_user("a", "a")
        assert engine.recompute_score(s, Decimal("99999")) is s

    def test_unchanged_score_returns_same_state(self, ledger, engine) -> None:
        s = engine.enter(ledger.new_user("a", "a"), EMPTY_SNAPSHOT)
        assert engine.recompute_score(s, Decimal("10000")) is s

    def test_pnl_percent_zero_at_entry(self) -> None:
        assert pnl_percent(Decimal("10000"), Decimal("10000")) == 0
        assert pnl_percent(Decimal("0"), Decimal("10")) == 0
        assert pnl_percent(Decimal("200"), Decimal("150")) == Decimal("-25")

    def test_set_rank(self, ledger, engine) -> None:
        s = engine.enter(ledger.new_user("a", "a"), EMPTY_SNAPSHOT)
        assert engine.set_rank(s, 3).competition.current_rank == 3
        assert engine.set_rank(ledger.new_user("b", "b"), 3).competition is IDLE


class TestResetAndPhase:
    def test_reset_from_any_state_is_idle(self, ledger, engine) -> None:
        active = engine.enter(ledger.new_user("a", "a"), EMPTY_SNAPSHOT)
        idle = ledger.new_user("b", "b")

        assert engine.reset(active).competition is IDLE
        assert engine.reset(idle).competition is IDLE

    def test_reset_keeps_balance_and_log(self, ledger, engine) -> None:
        active = engine.enter(ledger.new_user("a", "a"), EMPTY_SNAPSHOT)
        out = engine.reset(active)

        assert out.balance == active.balance
        assert out.transactions == active.transactions

    def test_phase_transitions(self, ledger, engine, clock) -> None:
        s = ledger.new_user("a", "a")
        assert engine.phase(s) == CompetitionPhase.IDLE

        s = engine.enter(s, EMPTY_SNAPSHOT)
        assert engine.phase(s) == CompetitionPhase.ACTIVE
        assert engine.remaining_ms(s) == 60_000

        clock.advance_by(60_000)
        assert engine.phase(s) == CompetitionPhase.ENDED
        assert engine.remaining_ms(s) == 0
        # data stays active until reset
        assert s.is_competing


class TestLeaderboard:
    def test_projection_has_placeholder_rank(self, ledger, engine) -> None:
        s = engine.enter(ledger.new_user("a@x.io", "alice"), EMPTY_SNAPSHOT)
        s = engine.recompute_score(s, Decimal("10100"))

        entry = engine.project_leaderboard_entry(s, Decimal("10100"))

        assert entry.rank == 0
        assert entry.name == "alice"
        assert entry.account_id == "a@x.io"
        assert entry.pnl == Decimal("1")
        assert entry.value == Decimal("10100")

    def test_projection_for_idle_raises(self, ledger, engine) -> None:
        with pytest.raises(NotCompeting):
            engine.project_leaderboard_entry(ledger.new_user("a", "a"), Decimal("1"))

    def test_rank_pool_orders_and_flags_user(self) -> None:
        ranked = rank_pool(
            [_entry("c", "1.0"), _entry("a", "5.0"), _entry("b", "5.0", value="12000"), _entry("d", "-2")],
            own_account_id="a",
        )

        assert [(e.account_id, e.rank) for e in ranked] == [("b", 1), ("a", 2), ("c", 3), ("d", 4)]
        assert [e.is_user for e in ranked] == [False, True, False, False]

    def test_rank_pool_ties_break_on_account_id(self) -> None:
        ranked = rank_pool([_entry("z", "1"), _entry("m", "1")])
        assert [e.account_id for e in ranked] == ["m", "z"]
        assert not any(e.is_user for e in ranked)
