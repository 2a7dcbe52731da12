"""Tests for twap_rebalancer/integration/controller.py."""

from __future__ import annotations

import logging

import pytest

from twap_rebalancer.core.rebalancer import (
    AutoCompoundDisabledError,
    Decision,
    Event,
    InvalidTWAPError,
    RebalancerConfig,
    RebalancerError,
    RebalancerReentrancyError,
)
from twap_rebalancer.core.rebalancer.math import MAX_UINT256
from twap_rebalancer.integration import (
    FileStateStore,
    ManualClock,
    Notification,
    RebalanceController,
    StubLendingProtocol,
    StubLiquidityPool,
)


def _config(**overrides) -> RebalancerConfig:
    base = dict(
        lending_protocol="aave-v3",
        observation_period=3600,
        min_reallocation_time=1800,
        price_range=100,
        initial_price=1000,
    )
    base.update(overrides)
    return RebalancerConfig(**base)


def _controller(*, lending=None, pool=None, store=None, **overrides):
    clock = ManualClock(0)
    lending = lending if lending is not None else StubLendingProtocol()
    pool = pool if pool is not None else StubLiquidityPool(idle=1000, fees_per_collection=25)
    ctl = RebalanceController.initialize(
        _config(**overrides), clock=clock, lending=lending, pool=pool, identity="ctl-1", store=store
    )
    events: list[Notification] = []
    ctl.subscribe(events.append)
    return ctl, clock, lending, pool, events


def _warm(ctl: RebalanceController, clock: ManualClock) -> None:
    """One full observation period at price 1000, so the TWAP reads 1000."""
    clock.set(3600)
    ctl.update_twap(1000)
    assert ctl.twap() == 1000


class TestTwap:
    def test_reference_scenario(self):
        ctl, clock, _, _, events = _controller(initial_price=0)
        clock.set(1000)
        ctl.update_twap(100)
        clock.set(2800)
        ctl.update_twap(200)
        assert ctl.cumulative_price == 180000
        assert ctl.last_price == 200
        assert ctl.last_timestamp == 2800
        assert events == []

    def test_same_second_rejected(self, caplog):
        ctl, clock, _, _, _ = _controller()
        clock.set(10)
        ctl.update_twap(5)
        before = ctl.state
        with caplog.at_level(logging.WARNING, logger="twap_rebalancer.integration.controller"):
            with pytest.raises(InvalidTWAPError):
                ctl.update_twap(6)
        assert ctl.state is before
        assert any("invalid_twap" in rec.getMessage() for rec in caplog.records)


class TestReallocation:
    def test_out_of_range_deposits_idle_capital(self):
        ctl, clock, lending, _, events = _controller()
        _warm(ctl, clock)
        r = ctl.check_and_reallocate(1200)
        assert r.effect.event is Event.MOVED_TO_LENDING
        assert lending.balance == 1000
        assert ctl.amount_in_lending == 1000
        assert ctl.last_reallocation == 3600
        assert len(events) == 1
        n = events[0]
        assert n.event is Event.MOVED_TO_LENDING
        assert n.controller == "ctl-1"
        assert n.amount == 1000
        assert n.timestamp == 3600
        assert n.lending_protocol == "aave-v3"
        assert n.twap == 1000
        assert n.deviation_bps == 2000

    def test_gated_call_touches_nothing(self):
        ctl, clock, lending, _, events = _controller()
        _warm(ctl, clock)
        ctl.check_and_reallocate(1200)
        clock.advance(10)
        r = ctl.check_and_reallocate(5000)
        assert r.effect.decision is Decision.GATED
        assert lending.balance == 1000
        assert len(events) == 1

    def test_in_range_does_not_query_pool(self):
        class ExplodingPool(StubLiquidityPool):
            def idle_capital(self) -> int:
                raise AssertionError("pool should not be queried")

        ctl, clock, _, _, events = _controller(pool=ExplodingPool())
        _warm(ctl, clock)
        r = ctl.check_and_reallocate(1005)
        assert r.effect.decision is Decision.IN_RANGE
        assert events == []

    def test_move_back_withdraws_everything(self):
        ctl, clock, lending, _, events = _controller()
        _warm(ctl, clock)
        ctl.check_and_reallocate(1200)
        clock.advance(1)
        r = ctl.move_to_lp_if_in_range(1005)
        assert r.effect.event is Event.MOVED_TO_LP
        assert lending.balance == 0
        assert ctl.amount_in_lending == 0
        assert [n.event for n in events] == [Event.MOVED_TO_LENDING, Event.MOVED_TO_LP]
        assert events[1].amount == 1000

    def test_deposit_failure_leaves_record(self):
        class FailingLending(StubLendingProtocol):
            def deposit(self, amount: int) -> int:
                raise RuntimeError("lending protocol unavailable")

        ctl, clock, _, _, events = _controller(lending=FailingLending())
        _warm(ctl, clock)
        before = ctl.state
        with pytest.raises(RuntimeError):
            ctl.check_and_reallocate(1200)
        assert ctl.state is before
        assert events == []

    def test_withdraw_failure_leaves_record(self):
        ctl, clock, lending, _, events = _controller()
        _warm(ctl, clock)
        ctl.check_and_reallocate(1200)
        lending.balance = 0
        before = ctl.state
        with pytest.raises(ValueError):
            ctl.move_to_lp_if_in_range(1000)
        assert ctl.state is before
        assert ctl.amount_in_lending == 1000
        assert len(events) == 1

    def test_malformed_deposit_result_records_requested_amount(self, caplog):
        class MisreportingLending(StubLendingProtocol):
            def deposit(self, amount: int) -> int:
                super().deposit(amount)
                return -1

        ctl, clock, lending, _, events = _controller(lending=MisreportingLending())
        _warm(ctl, clock)
        with caplog.at_level(logging.ERROR, logger="twap_rebalancer.integration.controller"):
            r = ctl.check_and_reallocate(2000)
        assert r.effect.event is Event.MOVED_TO_LENDING
        assert lending.balance == 1000
        assert ctl.amount_in_lending == 1000
        assert events[0].amount == 1000
        assert any("returned -1" in rec.getMessage() for rec in caplog.records)

    def test_malformed_withdraw_result_still_clears_position(self, caplog):
        class MisreportingLending(StubLendingProtocol):
            def withdraw(self, amount: int) -> int:
                super().withdraw(amount)
                return MAX_UINT256 + 1

        ctl, clock, lending, _, events = _controller(lending=MisreportingLending())
        _warm(ctl, clock)
        ctl.check_and_reallocate(1200)
        with caplog.at_level(logging.ERROR, logger="twap_rebalancer.integration.controller"):
            r = ctl.move_to_lp_if_in_range(1000)
        assert r.effect.event is Event.MOVED_TO_LP
        assert lending.balance == 0
        assert ctl.amount_in_lending == 0
        assert events[-1].amount == 1000
        assert any(rec.levelno == logging.ERROR for rec in caplog.records)

    def test_reentrant_call_rejected(self):
        holder: dict[str, RebalanceController] = {}

        class ReentrantLending(StubLendingProtocol):
            def deposit(self, amount: int) -> int:
                holder["ctl"].update_twap(1)
                return amount

        ctl, clock, _, _, events = _controller(lending=ReentrantLending())
        holder["ctl"] = ctl
        _warm(ctl, clock)
        before = ctl.state
        with pytest.raises(RebalancerReentrancyError):
            ctl.check_and_reallocate(1200)
        assert ctl.state is before
        assert events == []
        # The guard is released once the failed operation unwinds.
        clock.advance(1)
        ctl.update_twap(1000)


class TestFees:
    def test_lp_fees_and_compounding(self):
        ctl, clock, _, pool, events = _controller(auto_compound_enabled=True, min_compound_amount=50)
        clock.set(1)
        ctl.collect_lp_fees()
        r = ctl.auto_compound_lp_fees()
        assert r.effect.decision is Decision.BELOW_THRESHOLD
        assert pool.reinvested == []
        clock.set(2)
        ctl.collect_lp_fees()
        r = ctl.auto_compound_lp_fees()
        assert r.effect.event is Event.LP_FEES_COMPOUNDED
        assert pool.reinvested == [50]
        assert ctl.lp_fees == 0
        assert ctl.total_compounded == 50
        assert [n.event for n in events] == [
            Event.LP_FEES_COLLECTED,
            Event.LP_FEES_COLLECTED,
            Event.LP_FEES_COMPOUNDED,
        ]

    def test_empty_balance_compounds_without_reinvesting(self):
        ctl, _, _, pool, events = _controller(auto_compound_enabled=True)
        r = ctl.auto_compound_lp_fees()
        assert r.effect.event is Event.LP_FEES_COMPOUNDED
        assert r.effect.amount == 0
        assert pool.reinvested == []
        assert len(events) == 1
        assert events[0].amount == 0

    def test_compounding_disabled(self):
        ctl, clock, _, pool, _ = _controller()
        ctl.collect_lp_fees()
        with pytest.raises(AutoCompoundDisabledError):
            ctl.auto_compound_lp_fees()
        assert pool.reinvested == []
        assert ctl.lp_fees == 25

    def test_reinvest_failure_keeps_fees(self):
        class FailingPool(StubLiquidityPool):
            def reinvest(self, amount: int) -> None:
                raise RuntimeError("pool paused")

        ctl, _, _, _, _ = _controller(pool=FailingPool(fees_per_collection=30), auto_compound_enabled=True)
        ctl.collect_lp_fees()
        with pytest.raises(RuntimeError):
            ctl.auto_compound_lp_fees()
        assert ctl.lp_fees == 30
        assert ctl.total_compounded == 0

    def test_lending_fees(self):
        ctl, clock, _, _, events = _controller(lending=StubLendingProtocol(yield_per_collection=7))
        clock.set(500)
        ctl.collect_lending_fees()
        assert ctl.total_lending_fees == 7
        assert ctl.last_fee_collection == 500
        assert ctl.last_reallocation == 0
        assert events[0].event is Event.LENDING_FEES_COLLECTED


class TestAdmin:
    def test_setters_and_accessors(self):
        ctl, _, _, _, events = _controller()
        ctl.set_price_range(250)
        ctl.set_observation_period(60)
        ctl.set_min_reallocation_time(0)
        ctl.set_min_compound_amount(5)
        ctl.set_auto_compound(True)
        ctl.set_lending_protocol("compound-v3")
        assert ctl.price_range == 250
        assert ctl.observation_period == 60
        assert ctl.min_reallocation_time == 0
        assert ctl.min_compound_amount == 5
        assert ctl.auto_compound_enabled is True
        assert ctl.lending_protocol == "compound-v3"
        assert events == []

    def test_unsubscribe(self):
        ctl, clock, _, _, events = _controller()
        extra: list[Notification] = []
        unsubscribe = ctl.subscribe(extra.append)
        ctl.collect_lp_fees()
        unsubscribe()
        clock.advance(1)
        ctl.collect_lp_fees()
        assert len(extra) == 1
        assert len(events) == 2


class TestPersistence:
    def test_record_survives_restart(self, tmp_path):
        store = FileStateStore(tmp_path / "state" / "ctl.json")
        ctl, clock, lending, pool, _ = _controller(store=store)
        assert store.exists()
        _warm(ctl, clock)
        ctl.check_and_reallocate(1200)

        restored = RebalanceController.restore(
            store, clock=clock, lending=lending, pool=pool, identity="ctl-1"
        )
        assert restored.state == ctl.state
        assert restored.amount_in_lending == 1000

    def test_initialize_only_once(self, tmp_path):
        store = FileStateStore(tmp_path / "ctl.json")
        _controller(store=store)
        with pytest.raises(RebalancerError) as excinfo:
            _controller(store=store)
        assert excinfo.value.code == "already_initialized"

    def test_failed_operation_is_not_persisted(self, tmp_path):
        store = FileStateStore(tmp_path / "ctl.json")
        ctl, clock, _, _, _ = _controller(store=store)
        clock.set(5)
        ctl.update_twap(3)
        with pytest.raises(InvalidTWAPError):
            ctl.update_twap(4)
        assert store.load() == ctl.state
        assert store.load().last_price == 3
