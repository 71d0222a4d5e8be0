"""
Skimmer - unattended profit-skimming agent on Solana

Wires the wallet, price oracle, Jupiter, Blockonomics, ledger and payout
dispatcher into one SkimmerAgent and serves the HTTP control surface.
"""

import asyncio
import logging
import signal

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed

from integrations.bitcoin import BlockonomicsClient
from integrations.solana import JupiterIntegration
from skimmer.control.server import run_control_server
from skimmer.core.config import AgentSettings, check_startup_requirements, load_config
from skimmer.core.errors import ConfigurationInvalid
from skimmer.core.state import AgentState
from skimmer.core.wallet import WalletManager
from skimmer.logging_config import setup_logging, get_logger
from skimmer.services.price_service import PriceOracle
from skimmer.trading.evaluator import OpportunityEvaluator
from skimmer.trading.loop import SkimmerAgent
from skimmer.trading.replenisher import ReserveReplenisher
from skimmer.trading.transaction_executor import TradeExecutor
from skimmer.treasury.ledger import ProfitLedger
from skimmer.treasury.payouts import PayoutDispatcher

logger = get_logger(__name__)


class SkimmerApp:
    """Owns the agent and every external client it uses."""

    def __init__(self, settings: AgentSettings):
        self.settings = settings

        self.rpc_client = AsyncClient(settings.rpc_url, commitment=Confirmed, timeout=settings.request_timeout)
        self.wallet = WalletManager(
            settings.private_key,
            settings.rpc_url,
            client=self.rpc_client,
            timeout=settings.request_timeout,
        )
        self.oracle = PriceOracle(timeout=settings.request_timeout)
        self.jupiter = JupiterIntegration(api_key=settings.jupiter_api_key, timeout=settings.request_timeout)
        self.payment_rail = BlockonomicsClient(
            api_key=settings.blockonomics_api_key,
            timeout=settings.request_timeout,
        )

        self.ledger = ProfitLedger(
            distribution_share=settings.profit_distribution_share,
            payout_threshold=settings.payout_threshold_usd,
        )
        self.state = AgentState(ledger=self.ledger)

        self.executor = TradeExecutor(
            rpc_client=self.rpc_client,
            wallet_manager=self.wallet,
            quote_client=self.jupiter,
            confirmation_timeout=settings.confirmation_timeout,
            request_timeout=settings.request_timeout,
        )
        self.dispatcher = PayoutDispatcher(
            ledger=self.ledger,
            payment_rail=self.payment_rail,
            destinations=settings.payout_destinations,
            fee_buffer=settings.payout_fee_buffer_usd,
            drop_sub_fee_remainder=settings.drop_sub_fee_remainder,
            history_path=settings.payout_history_path,
        )
        evaluator = OpportunityEvaluator(
            settings, self.state, self.oracle, self.jupiter, self.executor, self.dispatcher
        )
        replenisher = ReserveReplenisher(
            settings, self.state, self.wallet, self.oracle, self.jupiter, self.executor
        )
        self.agent = SkimmerAgent(settings, self.state, evaluator, replenisher, self.dispatcher)

    async def cleanup(self):
        """Stop the agent and close every client."""
        try:
            await self.agent.stop()
        except Exception as e:
            logger.error(f"Error stopping agent: {e}", exc_info=True)

        for name, closer in (
            ("price oracle", self.oracle.close),
            ("payment rail", self.payment_rail.close),
            ("wallet", self.wallet.close),
        ):
            try:
                await closer()
            except Exception as e:
                logger.error(f"Error closing {name}: {e}", exc_info=True)

        self.jupiter.close()
        logger.info("Cleanup complete")


async def main():
    """Entry point."""
    # Fails fast (exit 1) before anything touches the network
    settings = check_startup_requirements()
    config = load_config()

    setup_logging(
        log_dir=config.get("LOG_DIR"),
        log_level=config.get("LOG_LEVEL"),
        console_level=config.get("CONSOLE_LOG_LEVEL"),
        enable_compression=True,
        compress_after_days=7,
        retention_days=30,
    )

    logger.info("Skimmer agent v0.1.0 starting...")

    try:
        app = SkimmerApp(settings)
    except Exception as e:
        logger.error(f"Failed to initialize agent: {e}", exc_info=True)
        return

    runner = await run_control_server(app.agent, port=config.get_port())

    if config.is_auto_start():
        try:
            await app.agent.start()
        except ConfigurationInvalid as e:
            logger.error(f"Agent refused to start: {e}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    try:
        await stop_event.wait()
        logger.info("Received stop signal")
    finally:
        await runner.cleanup()
        await app.cleanup()
        logging.shutdown()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
