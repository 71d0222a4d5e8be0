"""
Reserve Monitor & Replenisher

Keeps the SOL reserve above its threshold by liquidating one holding per
tick. Candidate selection is a pure ranking + first-fit function so the
policy can be tested without a wallet or network.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from integrations.solana.jupiter import JupiterIntegration, Quote
from integrations.solana.tokens import resolve_token
from skimmer.core.config import AgentSettings
from skimmer.core.errors import NoRouteFound, ReplenishmentSourceExhausted
from skimmer.core.state import AgentState, ReserveState
from skimmer.core.wallet import Holding, WalletManager
from skimmer.logging_config import get_activity_logger
from skimmer.services.price_service import PriceOracle
from skimmer.trading.transaction_executor import TradeExecutor, TradeResult

logger = logging.getLogger(__name__)
activity_logger = get_activity_logger()


class ReplenishOutcome(Enum):
    NOT_NEEDED = "not_needed"
    REPLENISHED = "replenished"
    SOURCE_EXHAUSTED = "source_exhausted"
    ORACLE_UNAVAILABLE = "oracle_unavailable"
    NO_ROUTE = "no_route"
    EXECUTION_FAILED = "execution_failed"
    WALLET_UNAVAILABLE = "wallet_unavailable"


@dataclass(frozen=True)
class Candidate:
    """A holding eligible for liquidation, valued in USD."""
    holding: Holding
    price: float
    value_usd: float
    stable: bool


@dataclass(frozen=True)
class Liquidation:
    """The chosen holding and how much of it to sell."""
    candidate: Candidate
    quantity: float
    covers_target: bool

    @property
    def raw_amount(self) -> int:
        # Floor so rounding never sells more than is held
        raw = math.floor(self.quantity * (10 ** self.candidate.holding.decimal_precision))
        return min(raw, self.candidate.holding.raw_quantity)


@dataclass
class ReplenishReport:
    outcome: ReplenishOutcome
    reserve_balance: Optional[float] = None
    liquidation: Optional[Liquidation] = None
    trade: Optional[TradeResult] = None
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        source = None
        if self.liquidation:
            token = resolve_token(self.liquidation.candidate.holding.unit_id)
            source = token.symbol if token else self.liquidation.candidate.holding.unit_id
        return {
            "outcome": self.outcome.value,
            "reserve_balance": self.reserve_balance,
            "source": source,
            "quantity": self.liquidation.quantity if self.liquidation else None,
            "tx_id": self.trade.tx_id if self.trade else None,
            "reason": self.reason,
        }


def rank_candidates(
    holdings: Iterable[Holding],
    prices: Dict[str, float],
    stable_units: Iterable[str],
    min_swap_value_usd: float,
    reserve_unit: str,
) -> List[Candidate]:
    """
    Rank holdings for liquidation.

    Stable units come first, then descending USD value. Holdings of the
    reserve unit, without a price, with no balance, or valued under the
    minimum swap value are not eligible.
    """
    stable = set(stable_units)
    candidates = []
    for holding in holdings:
        if holding.unit_id == reserve_unit or holding.quantity <= 0:
            continue
        price = prices.get(holding.unit_id)
        if not price or price <= 0:
            continue
        value = holding.quantity * price
        if value < min_swap_value_usd:
            continue
        candidates.append(Candidate(holding, price, value, holding.unit_id in stable))

    candidates.sort(key=lambda c: (not c.stable, -c.value_usd))
    return candidates


def select_liquidation(candidates: List[Candidate], target_usd: float) -> Optional[Liquidation]:
    """
    Pick the first ranked candidate that covers the target on its own.

    If none does, the highest-value candidate is sold in full for a
    partial top-up.
    """
    if not candidates:
        return None

    for candidate in candidates:
        if candidate.value_usd >= target_usd:
            quantity = min(target_usd / candidate.price, candidate.holding.quantity)
            return Liquidation(candidate, quantity, covers_target=True)

    best = max(candidates, key=lambda c: c.value_usd)
    return Liquidation(best, best.holding.quantity, covers_target=False)


class ReserveReplenisher:
    """Tops up the reserve from other holdings when it runs low."""

    def __init__(
        self,
        settings: AgentSettings,
        state: AgentState,
        wallet: WalletManager,
        oracle: PriceOracle,
        quote_client: JupiterIntegration,
        executor: TradeExecutor,
    ):
        self.settings = settings
        self.state = state
        self.wallet = wallet
        self.oracle = oracle
        self.quote_client = quote_client
        self.executor = executor
        self.reserve = settings.reserve_token
        self.last_report: Optional[ReplenishReport] = None

    async def tick(self) -> ReplenishReport:
        report = await self._replenish()
        self.last_report = report

        source = None
        amount = None
        if report.liquidation:
            token = resolve_token(report.liquidation.candidate.holding.unit_id)
            source = token.symbol if token else report.liquidation.candidate.holding.unit_id
            amount = report.liquidation.quantity
        activity_logger.log_replenishment(
            outcome=report.outcome.value,
            balance=report.reserve_balance,
            source_unit=source,
            amount=amount,
        )
        return report

    async def _replenish(self) -> ReplenishReport:
        try:
            balance = await asyncio.wait_for(
                self.wallet.get_reserve_balance(), timeout=self.settings.request_timeout
            )
        except Exception as e:
            logger.error(f"Could not read reserve balance: {e}")
            activity_logger.log_error("replenisher", type(e).__name__, str(e), read="reserve_balance")
            return ReplenishReport(ReplenishOutcome.WALLET_UNAVAILABLE, reason=str(e) or type(e).__name__)

        self.state.reserve = ReserveState(
            current_balance=balance,
            threshold=self.settings.reserve_threshold,
            top_up_amount=self.settings.reserve_top_up_amount,
        )

        if not self.state.reserve.below_threshold:
            logger.debug(
                f"Reserve {balance:.4f} {self.reserve.symbol} >= threshold "
                f"{self.settings.reserve_threshold}, nothing to do"
            )
            return ReplenishReport(ReplenishOutcome.NOT_NEEDED, balance)

        logger.warning(
            f"Reserve low: {balance:.4f} {self.reserve.symbol} < {self.settings.reserve_threshold}, "
            f"looking for a holding to liquidate"
        )

        try:
            holdings = await asyncio.wait_for(
                self.wallet.get_holdings(), timeout=self.settings.request_timeout
            )
        except Exception as e:
            logger.error(f"Could not read wallet holdings: {e}")
            activity_logger.log_error("replenisher", type(e).__name__, str(e), read="holdings")
            return ReplenishReport(ReplenishOutcome.WALLET_UNAVAILABLE, balance, reason=str(e) or type(e).__name__)

        holdings = [h for h in holdings if h.unit_id != self.reserve.mint and h.quantity > 0]
        if not holdings:
            logger.warning("No holdings available to replenish the reserve")
            return ReplenishReport(ReplenishOutcome.SOURCE_EXHAUSTED, balance, reason="no holdings")

        try:
            reserve_rate = await self.oracle.get_rate(self.reserve.mint)
            prices = await self.oracle.get_rates(h.unit_id for h in holdings)
        except Exception as e:
            logger.warning(f"Could not price holdings: {e}")
            return ReplenishReport(ReplenishOutcome.ORACLE_UNAVAILABLE, balance, reason=str(e))

        if not prices:
            return ReplenishReport(ReplenishOutcome.ORACLE_UNAVAILABLE, balance, reason="no holding prices")

        target_usd = self.settings.reserve_top_up_amount * reserve_rate
        try:
            liquidation = self._choose_liquidation(holdings, prices, target_usd)
        except ReplenishmentSourceExhausted as e:
            logger.warning(f"Cannot replenish the reserve: {e}")
            return ReplenishReport(ReplenishOutcome.SOURCE_EXHAUSTED, balance, reason=str(e))

        try:
            quote = await self._request_quote(liquidation)
        except NoRouteFound as e:
            logger.warning(f"Cannot replenish the reserve: {e}")
            return ReplenishReport(ReplenishOutcome.NO_ROUTE, balance, liquidation, reason=str(e))

        result = await self.executor.execute(quote)
        source = resolve_token(liquidation.candidate.holding.unit_id)
        activity_logger.log_trade(
            purpose="replenish",
            input_unit=source.symbol if source else liquidation.candidate.holding.unit_id,
            output_unit=self.reserve.symbol,
            success=result.success,
            tx_id=result.tx_id,
            error=result.error,
        )

        if not result.success:
            return ReplenishReport(
                ReplenishOutcome.EXECUTION_FAILED, balance, liquidation, result, reason=result.error
            )

        logger.info(
            f"Reserve replenished: +{self.reserve.from_raw(result.realized_output_amount):.6f} "
            f"{self.reserve.symbol} (tx {result.tx_id})"
        )
        return ReplenishReport(ReplenishOutcome.REPLENISHED, balance, liquidation, result)

    def _choose_liquidation(
        self,
        holdings: List[Holding],
        prices: Dict[str, float],
        target_usd: float,
    ) -> Liquidation:
        """
        Raises:
            ReplenishmentSourceExhausted: No holding clears the minimum swap value
        """
        candidates = rank_candidates(
            holdings,
            prices,
            self.settings.stable_units,
            self.settings.min_swap_value_usd,
            self.reserve.mint,
        )
        liquidation = select_liquidation(candidates, target_usd)
        if liquidation is None:
            raise ReplenishmentSourceExhausted(
                f"no holding worth at least ${self.settings.min_swap_value_usd:.2f}"
            )

        if not liquidation.covers_target:
            logger.info(
                f"No holding covers ${target_usd:.2f}; selling entire "
                f"${liquidation.candidate.value_usd:.2f} position for a partial top-up"
            )
        return liquidation

    async def _request_quote(self, liquidation: Liquidation) -> Quote:
        """
        Raises:
            NoRouteFound: No route, or the quote request failed or timed out
        """
        amount = liquidation.raw_amount
        source = liquidation.candidate.holding.unit_id
        if amount <= 0:
            raise NoRouteFound(f"liquidation of {source} rounds to zero raw units")
        try:
            quote = await asyncio.wait_for(
                asyncio.to_thread(
                    self.quote_client.get_quote,
                    source,
                    self.reserve.mint,
                    amount,
                    self.settings.slippage_bps,
                ),
                timeout=self.settings.request_timeout,
            )
        except asyncio.TimeoutError:
            raise NoRouteFound("replenishment quote timed out")
        except Exception as e:
            logger.error(f"Replenishment quote failed: {e}", exc_info=True)
            activity_logger.log_error("replenisher", type(e).__name__, str(e), source=source)
            raise NoRouteFound(f"replenishment quote failed: {e}") from e

        if quote is None:
            raise NoRouteFound(f"no route from {source} to {self.reserve.symbol}")
        return quote
