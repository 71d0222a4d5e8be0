"""
Test suite for the payout dispatcher.

Covers the fee buffer, the split invariant, partial failure handling,
ledger clearing and the JSON payout history.
"""

import asyncio
import json

import pytest
from hypothesis import given, strategies as st

from skimmer.core.config import PayoutDestination
from skimmer.core.errors import PayoutPartialFailure
from skimmer.treasury.ledger import ProfitLedger
from skimmer.treasury.payouts import (
    DispatchOutcome,
    PayoutDispatcher,
    PayoutStatus,
    allocate,
)
from tests.conftest import FakePaymentRail


SPLIT_60_40 = (
    PayoutDestination("primary", "bc1qprimary", 0.6),
    PayoutDestination("operator", "bc1qoperator", 0.4),
)


def make_dispatcher(pending, fee_buffer=1.0, destinations=SPLIT_60_40, rail=None, **kwargs):
    ledger = ProfitLedger(distribution_share=1.0, payout_threshold=0.0)
    if pending > 0:
        ledger.credit(pending)
    rail = rail or FakePaymentRail()
    dispatcher = PayoutDispatcher(ledger, rail, destinations, fee_buffer=fee_buffer, **kwargs)
    return dispatcher, ledger, rail


shares = st.lists(st.integers(min_value=0, max_value=100), min_size=1, max_size=5).filter(lambda xs: sum(xs) > 0)


class TestAllocate:

    @given(
        net=st.floats(min_value=0.01, max_value=1e6, allow_nan=False),
        weights=shares,
    )
    def test_allocations_sum_to_net(self, net, weights):
        total = sum(weights)
        destinations = [
            PayoutDestination(f"d{i}", f"addr{i}", w / total) for i, w in enumerate(weights)
        ]

        allocations = allocate(net, destinations)

        assert sum(allocations.values()) == pytest.approx(net, abs=1e-6)
        assert all(amount >= 0 for amount in allocations.values())
        assert list(allocations) == [d.destination_id for d in destinations]

    def test_sixty_forty_split(self):
        allocations = allocate(30.0, SPLIT_60_40)
        assert allocations["primary"] == pytest.approx(18.0)
        assert allocations["operator"] == pytest.approx(12.0)


class TestSplitInvariant:

    @given(
        pending=st.floats(min_value=0.01, max_value=1e5, allow_nan=False),
        fee=st.floats(min_value=0, max_value=1e3, allow_nan=False),
    )
    def test_split_or_skip(self, pending, fee):
        dispatcher, ledger, rail = make_dispatcher(pending, fee_buffer=fee)

        report = asyncio.run(dispatcher.dispatch())

        if pending > fee:
            paid = sum(amount for _, amount in rail.calls)
            skipped_zero = [a for a in report.attempts if a.status is PayoutStatus.SKIPPED]
            assert paid + sum(a.amount_requested for a in skipped_zero) == pytest.approx(pending - fee, abs=1e-6)
            assert report.outcome is DispatchOutcome.COMPLETE
        else:
            assert rail.calls == []
            assert report.outcome is DispatchOutcome.SKIPPED
            assert all(a.status is PayoutStatus.SKIPPED for a in report.attempts)

        assert len(report.attempts) == len(SPLIT_60_40)


@pytest.mark.asyncio
class TestDispatch:

    async def test_fifty_dollar_scenario_with_twenty_dollar_buffer(self):
        ledger = ProfitLedger(distribution_share=0.6, payout_threshold=50.0)
        rail = FakePaymentRail()
        dispatcher = PayoutDispatcher(ledger, rail, SPLIT_60_40, fee_buffer=20.0)

        trades = 0
        while not ledger.should_dispatch():
            ledger.credit(0.50)
            trades += 1
            if trades == 10:
                assert ledger.pending_distribution_amount == pytest.approx(3.0)
                assert not ledger.should_dispatch()

        pending = ledger.pending_distribution_amount
        report = await dispatcher.dispatch()

        assert report.outcome is DispatchOutcome.COMPLETE
        assert report.net_amount == pytest.approx(pending - 20.0)
        amounts = {a.destination_id: a.amount_requested for a in report.attempts}
        assert amounts["primary"] == pytest.approx((pending - 20.0) * 0.6, abs=0.01)
        assert sum(amounts.values()) == pytest.approx(pending - 20.0)
        assert ledger.pending_distribution_amount == 0
        assert report.ledger_cleared

    async def test_partial_failure_still_clears(self):
        rail = FakePaymentRail(failing={"bc1qoperator"})
        dispatcher, ledger, _ = make_dispatcher(60.0, fee_buffer=10.0, rail=rail)

        report = await dispatcher.dispatch()

        assert report.outcome is DispatchOutcome.PARTIAL_FAILURE
        assert report.succeeded == 1
        assert report.failed == 1
        assert ledger.pending_distribution_amount == 0
        with pytest.raises(PayoutPartialFailure) as exc_info:
            report.raise_for_status()
        assert len(exc_info.value.attempts) == 2

    async def test_total_failure_keeps_pending_for_retry(self):
        rail = FakePaymentRail(failing={"bc1qprimary", "bc1qoperator"})
        dispatcher, ledger, _ = make_dispatcher(60.0, fee_buffer=10.0, rail=rail)

        report = await dispatcher.dispatch()

        assert report.outcome is DispatchOutcome.FAILED
        assert not report.ledger_cleared
        assert ledger.pending_distribution_amount == pytest.approx(60.0)

    async def test_rail_exception_is_a_failed_leg(self):
        class ExplodingRail:
            async def pay(self, address, amount_usd):
                raise ConnectionError("boom")

        dispatcher, ledger, _ = make_dispatcher(60.0, rail=ExplodingRail())

        report = await dispatcher.dispatch()

        assert report.outcome is DispatchOutcome.FAILED
        assert all(a.reason == "boom" for a in report.attempts)

    async def test_below_fee_buffer_dropped_by_default(self):
        dispatcher, ledger, rail = make_dispatcher(0.75, fee_buffer=1.0)

        report = await dispatcher.dispatch()

        assert report.outcome is DispatchOutcome.SKIPPED
        assert rail.calls == []
        assert ledger.pending_distribution_amount == 0

    async def test_below_fee_buffer_carried_forward_when_configured(self):
        dispatcher, ledger, rail = make_dispatcher(0.75, fee_buffer=1.0, drop_sub_fee_remainder=False)

        report = await dispatcher.dispatch()

        assert report.outcome is DispatchOutcome.SKIPPED
        assert not report.ledger_cleared
        assert ledger.pending_distribution_amount == pytest.approx(0.75)

    async def test_nothing_pending(self):
        dispatcher, ledger, rail = make_dispatcher(0.0)

        report = await dispatcher.dispatch()

        assert report.outcome is DispatchOutcome.NOTHING_PENDING
        assert report.attempts == []
        assert rail.calls == []

    async def test_zero_share_destination_is_skipped(self):
        destinations = (
            PayoutDestination("primary", "bc1qprimary", 1.0),
            PayoutDestination("dormant", "bc1qdormant", 0.0),
        )
        dispatcher, ledger, rail = make_dispatcher(11.0, fee_buffer=1.0, destinations=destinations)

        report = await dispatcher.dispatch()

        statuses = {a.destination_id: a.status for a in report.attempts}
        assert statuses == {"primary": PayoutStatus.SUCCESS, "dormant": PayoutStatus.SKIPPED}
        assert rail.calls == [("bc1qprimary", pytest.approx(10.0))]

    async def test_history_appended(self, tmp_path):
        history = tmp_path / "history" / "payouts.json"
        dispatcher, ledger, _ = make_dispatcher(21.0, history_path=str(history))

        await dispatcher.dispatch()
        ledger.credit(5.0)
        await dispatcher.dispatch()

        data = json.loads(history.read_text())
        assert [d["outcome"] for d in data["dispatches"]] == ["complete", "complete"]
        assert data["dispatches"][0]["net_amount"] == 20.0
        assert dispatcher.get_history() == data["dispatches"]

    async def test_unwritable_history_does_not_affect_ledger(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        dispatcher, ledger, _ = make_dispatcher(21.0, history_path=str(blocker / "payouts.json"))

        report = await dispatcher.dispatch()

        assert report.outcome is DispatchOutcome.COMPLETE
        assert ledger.pending_distribution_amount == 0


class TestConstruction:

    def test_shares_must_sum_to_one(self):
        with pytest.raises(ValueError):
            PayoutDispatcher(
                ProfitLedger(), FakePaymentRail(),
                [PayoutDestination("a", "x", 0.5), PayoutDestination("b", "y", 0.4)],
            )

    def test_destinations_required(self):
        with pytest.raises(ValueError):
            PayoutDispatcher(ProfitLedger(), FakePaymentRail(), [])
