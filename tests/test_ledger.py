"""
Test suite for the profit ledger.

Covers credit accounting, the distribution share, dispatch threshold and
clearing.
"""

import pytest
from hypothesis import given, strategies as st

from skimmer.treasury.ledger import ProfitLedger


positive_amounts = st.floats(min_value=1e-6, max_value=1e6, allow_nan=False, allow_infinity=False)


class TestCredit:

    @given(prior=st.lists(positive_amounts, max_size=10), amount=positive_amounts)
    def test_credit_adds_amount_to_total(self, prior, amount):
        ledger = ProfitLedger()
        for value in prior:
            ledger.credit(value)

        before = ledger.total_realized_profit
        ledger.credit(amount)

        assert ledger.total_realized_profit == pytest.approx(before + amount)

    @given(amount=st.floats(max_value=0, allow_nan=False, allow_infinity=False))
    def test_non_positive_credit_rejected(self, amount):
        ledger = ProfitLedger()
        with pytest.raises(ValueError):
            ledger.credit(amount)
        assert ledger.total_realized_profit == 0
        assert ledger.pending_distribution_amount == 0

    @given(
        share=st.floats(min_value=0, max_value=1, allow_nan=False),
        amount=positive_amounts,
    )
    def test_only_the_distribution_share_is_pending(self, share, amount):
        ledger = ProfitLedger(distribution_share=share)
        earmarked = ledger.credit(amount)

        assert earmarked == pytest.approx(amount * share)
        assert ledger.pending_distribution_amount == pytest.approx(amount * share)
        assert ledger.total_realized_profit == pytest.approx(amount)

    @given(amounts=st.lists(positive_amounts, min_size=1, max_size=20))
    def test_pending_never_decreases_between_clears(self, amounts):
        ledger = ProfitLedger(distribution_share=0.6)
        previous = 0.0
        for amount in amounts:
            ledger.credit(amount)
            assert ledger.pending_distribution_amount >= previous
            previous = ledger.pending_distribution_amount


class TestDispatchThreshold:

    def test_ten_trades_at_sixty_percent_do_not_reach_fifty(self):
        ledger = ProfitLedger(distribution_share=0.6, payout_threshold=50.0)
        for _ in range(10):
            ledger.credit(0.50)

        assert ledger.pending_distribution_amount == pytest.approx(3.0)
        assert not ledger.should_dispatch()

    def test_threshold_is_inclusive(self):
        ledger = ProfitLedger(payout_threshold=50.0)
        ledger.credit(50.0)
        assert ledger.should_dispatch()

    def test_clear_resets_pending_but_keeps_total(self):
        ledger = ProfitLedger(distribution_share=0.5)
        ledger.credit(10.0)

        cleared = ledger.clear()

        assert cleared == pytest.approx(5.0)
        assert ledger.pending_distribution_amount == 0
        assert ledger.total_realized_profit == pytest.approx(10.0)
        assert ledger.last_cleared_at is not None

    def test_snapshot_reports_current_values(self):
        ledger = ProfitLedger(payout_threshold=25.0)
        ledger.credit(2.5)

        snapshot = ledger.snapshot().to_dict()

        assert snapshot["total_realized_profit"] == 2.5
        assert snapshot["pending_distribution_amount"] == 2.5
        assert snapshot["payout_threshold"] == 25.0
        assert snapshot["last_cleared_at"] is None


class TestConstruction:

    @pytest.mark.parametrize("share", [-0.1, 1.5])
    def test_share_outside_unit_interval_rejected(self, share):
        with pytest.raises(ValueError):
            ProfitLedger(distribution_share=share)

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError):
            ProfitLedger(payout_threshold=-1)
