"""
Pytest configuration and shared fixtures for Skimmer testing.

Provides settings factories and fake collaborators (oracle, quote service,
executor, payment rail, wallet) so components can be driven without a
network.
"""

import os
import sys
from dataclasses import replace
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import settings, Verbosity

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from integrations.bitcoin.blockonomics import PaymentReceipt
from integrations.solana.jupiter import Quote
from integrations.solana.tokens import SOL, USDC, USDT, resolve_token
from skimmer.core.config import AgentSettings, PayoutDestination
from skimmer.core.errors import OracleUnavailable
from skimmer.core.state import AgentState
from skimmer.trading.transaction_executor import TradeResult, TradeStatus
from skimmer.treasury.ledger import ProfitLedger


# ============================================================================
# Hypothesis Configuration
# ============================================================================

settings.register_profile("default", max_examples=100, deadline=None)
settings.register_profile("ci", max_examples=1000, deadline=None)
settings.register_profile("dev", max_examples=20, verbosity=Verbosity.verbose)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


BONK = resolve_token("BONK")
WIF = resolve_token("WIF")
JUP = resolve_token("JUP")


# ============================================================================
# Settings
# ============================================================================

def make_settings(**overrides) -> AgentSettings:
    """Build valid AgentSettings, overriding any field."""
    base = AgentSettings(
        rpc_url="https://rpc.test",
        private_key="test-key",
        jupiter_api_key=None,
        blockonomics_api_key="bk-test",
        evaluation_interval=30,
        replenish_interval=300,
        trade_amount=0.1,
        min_profit_usd=0.20,
        max_price_impact_pct=0.02,
        slippage_bps=100,
        catalog=(USDC, BONK, WIF),
        stable_units=frozenset({USDC.mint, USDT.mint}),
        reserve_threshold=0.5,
        reserve_top_up_amount=0.1,
        min_swap_value_usd=1.0,
        profit_distribution_share=1.0,
        payout_threshold_usd=50.0,
        payout_fee_buffer_usd=1.0,
        payout_destinations=(
            PayoutDestination("primary", "bc1qprimary", 0.6),
            PayoutDestination("operator", "bc1qoperator", 0.4),
        ),
        drop_sub_fee_remainder=True,
        confirmation_timeout=60,
        request_timeout=5,
        payout_history_path="data/payout_history.json",
    )
    return replace(base, **overrides)


@pytest.fixture
def agent_settings():
    return make_settings()


@pytest.fixture
def ledger():
    return ProfitLedger(distribution_share=1.0, payout_threshold=50.0)


@pytest.fixture
def agent_state(ledger):
    state = AgentState(ledger=ledger)
    state.running = True
    return state


# ============================================================================
# Fake collaborators
# ============================================================================

class FakeOracle:
    """Price oracle backed by a dict; missing mints are unavailable."""

    def __init__(self, prices=None):
        self.prices = dict(prices or {})
        self.calls = []

    async def get_rate(self, unit):
        self.calls.append(unit)
        if unit not in self.prices:
            raise OracleUnavailable(f"No price available for {unit}")
        return self.prices[unit]

    async def get_rates(self, units):
        return {u: self.prices[u] for u in units if u in self.prices}


def make_quote(
    input_unit=SOL.mint,
    output_unit=USDC.mint,
    input_amount=100_000_000,
    expected_output_amount=20_000_000,
    price_impact=0.001,
) -> Quote:
    return Quote(
        input_unit=input_unit,
        output_unit=output_unit,
        input_amount=input_amount,
        expected_output_amount=expected_output_amount,
        price_impact=price_impact,
        slippage_bps=100,
        route_handle={"inputMint": input_unit, "outputMint": output_unit},
    )


def success_result(quote: Quote, tx_id="sig_ok") -> TradeResult:
    return TradeResult(
        status=TradeStatus.SUCCESS,
        input_unit=quote.input_unit,
        output_unit=quote.output_unit,
        tx_id=tx_id,
        realized_output_amount=quote.expected_output_amount,
        fee_paid=0.000005,
    )


def failed_result(quote: Quote, error="Transaction confirmation timeout") -> TradeResult:
    return TradeResult(
        status=TradeStatus.FAILED,
        input_unit=quote.input_unit,
        output_unit=quote.output_unit,
        error=error,
    )


@pytest.fixture
def mock_quote_client():
    """Quote service whose get_quote is a plain (blocking) Mock."""
    client = MagicMock()
    client.get_quote = MagicMock(return_value=None)
    return client


@pytest.fixture
def mock_executor():
    executor = MagicMock()
    executor.execute = AsyncMock(side_effect=lambda quote: success_result(quote))
    return executor


class FakePaymentRail:
    """Payment rail that fails for the configured addresses."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    async def pay(self, address, amount_usd):
        self.calls.append((address, amount_usd))
        if address in self.failing:
            return PaymentReceipt(False, address, amount_usd, reason="HTTP 500")
        return PaymentReceipt(True, address, amount_usd, reference=f"order_{len(self.calls)}")


@pytest.fixture
def payment_rail():
    return FakePaymentRail()
