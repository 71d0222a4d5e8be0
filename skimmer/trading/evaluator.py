"""
Opportunity Evaluator

One evaluation tick:
1. Advance the rotation over the output catalog
2. Price the reserve unit
3. Quote a fixed amount of reserve unit into the candidate
4. Reject routes above the price-impact ceiling
5. Value the quoted output and compare net value to the minimum profit
6. Execute, credit the ledger on success, dispatch payouts when due

Every failure is a skip with a typed outcome; nothing raises past tick().
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from integrations.solana.jupiter import JupiterIntegration, Quote
from integrations.solana.tokens import TokenInfo
from skimmer.core.config import AgentSettings
from skimmer.core.errors import NoRouteFound, OracleUnavailable, PriceImpactExceeded
from skimmer.core.state import AgentState
from skimmer.logging_config import get_activity_logger
from skimmer.services.price_service import PriceOracle
from skimmer.trading.transaction_executor import TradeExecutor, TradeResult
from skimmer.treasury.payouts import DispatchReport, PayoutDispatcher

logger = logging.getLogger(__name__)
activity_logger = get_activity_logger()


class TickOutcome(Enum):
    NOT_RUNNING = "not_running"
    ORACLE_UNAVAILABLE = "oracle_unavailable"
    NO_ROUTE = "no_route"
    PRICE_IMPACT_EXCEEDED = "price_impact_exceeded"
    BELOW_MIN_PROFIT = "below_min_profit"
    EXECUTION_FAILED = "execution_failed"
    EXECUTED = "executed"


@dataclass
class TickReport:
    """What happened on one evaluation tick."""
    outcome: TickOutcome
    unit: Optional[TokenInfo] = None
    rotation_index: Optional[int] = None
    net_value: Optional[float] = None
    quote: Optional[Quote] = None
    trade: Optional[TradeResult] = None
    dispatch: Optional[DispatchReport] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "unit": self.unit.symbol if self.unit else None,
            "rotation_index": self.rotation_index,
            "net_value": self.net_value,
            "tx_id": self.trade.tx_id if self.trade else None,
            "dispatch": self.dispatch.outcome.value if self.dispatch else None,
            "reason": self.reason,
        }


def net_value(
    output_amount: float,
    output_rate: float,
    input_amount: float,
    input_rate: float,
) -> float:
    """Value of the quoted output minus the value of the input, in USD."""
    return output_amount * output_rate - input_amount * input_rate


class OpportunityEvaluator:
    """
    Decides on each tick whether to trade reserve into the next catalog unit.
    """

    def __init__(
        self,
        settings: AgentSettings,
        state: AgentState,
        oracle: PriceOracle,
        quote_client: JupiterIntegration,
        executor: TradeExecutor,
        dispatcher: PayoutDispatcher,
    ):
        self.settings = settings
        self.state = state
        self.oracle = oracle
        self.quote_client = quote_client
        self.executor = executor
        self.dispatcher = dispatcher
        self.reserve = settings.reserve_token
        self.last_report: Optional[TickReport] = None

    async def tick(self) -> TickReport:
        if not self.state.running:
            return TickReport(TickOutcome.NOT_RUNNING)

        # The rotation advances on every running tick, whatever the outcome
        index = self.state.next_catalog_index(len(self.settings.catalog))
        candidate = self.settings.catalog[index]

        report = await self._evaluate(candidate, index)
        self.last_report = report

        activity_logger.log_evaluation_tick(
            unit=candidate.symbol,
            outcome=report.outcome.value,
            net_value=report.net_value,
            rotation_index=index,
        )
        return report

    async def _evaluate(self, candidate: TokenInfo, index: int) -> TickReport:
        try:
            reserve_rate = await self.oracle.get_rate(self.reserve.mint)
        except OracleUnavailable as e:
            logger.warning(f"Skipping tick: {e}")
            return TickReport(TickOutcome.ORACLE_UNAVAILABLE, candidate, index, reason=str(e))
        except Exception as e:
            logger.error(f"Reference price fetch failed: {e}", exc_info=True)
            activity_logger.log_error("evaluator", type(e).__name__, str(e), unit=self.reserve.symbol)
            return TickReport(TickOutcome.ORACLE_UNAVAILABLE, candidate, index, reason=str(e))

        self.state.last_reference_rate = reserve_rate

        try:
            quote = await self._request_quote(candidate)
            self._check_price_impact(quote, candidate)
        except NoRouteFound as e:
            logger.info(f"Skipping tick: {e}")
            return TickReport(TickOutcome.NO_ROUTE, candidate, index, reason=str(e))
        except PriceImpactExceeded as e:
            logger.info(f"Skipping tick: {e}")
            return TickReport(TickOutcome.PRICE_IMPACT_EXCEEDED, candidate, index, quote=quote, reason=str(e))

        try:
            output_rate = await self.oracle.get_rate(candidate.mint)
        except Exception as e:
            logger.warning(f"No price for {candidate.symbol}: {e}")
            return TickReport(TickOutcome.ORACLE_UNAVAILABLE, candidate, index, quote=quote, reason=str(e))

        value = net_value(
            candidate.from_raw(quote.expected_output_amount),
            output_rate,
            self.settings.trade_amount,
            reserve_rate,
        )

        if value <= self.settings.min_profit_usd:
            logger.debug(
                f"{candidate.symbol}: net ${value:.4f} <= min ${self.settings.min_profit_usd:.2f}, skipping"
            )
            return TickReport(TickOutcome.BELOW_MIN_PROFIT, candidate, index, net_value=value, quote=quote)

        logger.info(f"Opportunity {self.reserve.symbol} -> {candidate.symbol}: net ${value:.4f}, executing")
        result = await self.executor.execute(quote)
        activity_logger.log_trade(
            purpose="evaluation",
            input_unit=self.reserve.symbol,
            output_unit=candidate.symbol,
            success=result.success,
            tx_id=result.tx_id,
            error=result.error,
        )

        if not result.success:
            return TickReport(
                TickOutcome.EXECUTION_FAILED, candidate, index, net_value=value,
                quote=quote, trade=result, reason=result.error,
            )

        self.state.ledger.credit(value)
        report = TickReport(TickOutcome.EXECUTED, candidate, index, net_value=value, quote=quote, trade=result)

        if self.state.ledger.should_dispatch():
            report.dispatch = await self.dispatcher.dispatch()
            activity_logger.log_dispatch(
                outcome=report.dispatch.outcome.value,
                pending=report.dispatch.pending_amount,
                net=report.dispatch.net_amount,
                succeeded=report.dispatch.succeeded,
                failed=report.dispatch.failed,
                skipped=report.dispatch.skipped,
            )

        return report

    async def _request_quote(self, candidate: TokenInfo) -> Quote:
        """
        Raises:
            NoRouteFound: No route, or the quote request failed or timed out
        """
        route = f"{self.reserve.symbol} -> {candidate.symbol}"
        try:
            quote = await asyncio.wait_for(
                asyncio.to_thread(
                    self.quote_client.get_quote,
                    self.reserve.mint,
                    candidate.mint,
                    self.reserve.to_raw(self.settings.trade_amount),
                    self.settings.slippage_bps,
                ),
                timeout=self.settings.request_timeout,
            )
        except asyncio.TimeoutError:
            raise NoRouteFound(f"quote request timed out for {route}")
        except Exception as e:
            logger.error(f"Quote request failed for {candidate.symbol}: {e}", exc_info=True)
            activity_logger.log_error("evaluator", type(e).__name__, str(e), route=route)
            raise NoRouteFound(f"quote request failed for {route}: {e}") from e

        if quote is None:
            raise NoRouteFound(f"no route {route}")
        return quote

    def _check_price_impact(self, quote: Quote, candidate: TokenInfo):
        ceiling = self.settings.max_price_impact_pct
        if quote.price_impact > ceiling:
            raise PriceImpactExceeded(
                f"price impact {quote.price_impact:.4%} above ceiling {ceiling:.4%} for {candidate.symbol}"
            )
