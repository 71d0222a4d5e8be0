"""
Configuration management and environment validation for the Skimmer agent.

This module handles:
- Environment variable loading (.env via python-dotenv)
- Typed accessors with defaults for operational knobs
- Strict validation of everything that moves money
- Startup error handling
"""

import os
import sys
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from pathlib import Path
from dotenv import load_dotenv

from integrations.solana.tokens import (
    SOL,
    DEFAULT_CATALOG,
    DEFAULT_STABLE_UNITS,
    TokenInfo,
    resolve_token,
)
from skimmer.core.errors import ConfigurationInvalid

logger = logging.getLogger(__name__)

# Tolerance when checking that payout shares sum to 1.0
SHARE_SUM_TOLERANCE = 1e-6


@dataclass(frozen=True)
class PayoutDestination:
    """A payout leg: where profit goes and which fraction of it."""
    destination_id: str
    address: str
    share: float


@dataclass(frozen=True)
class AgentSettings:
    """
    Validated, immutable settings for one agent instance.

    Amounts suffixed `_usd` are in the reference currency; reserve amounts
    are in reserve units (SOL).
    """
    rpc_url: str
    private_key: str
    jupiter_api_key: Optional[str]
    blockonomics_api_key: Optional[str]
    evaluation_interval: float
    replenish_interval: float
    trade_amount: float
    min_profit_usd: float
    max_price_impact_pct: float
    slippage_bps: int
    catalog: Tuple[TokenInfo, ...]
    stable_units: frozenset
    reserve_threshold: float
    reserve_top_up_amount: float
    min_swap_value_usd: float
    profit_distribution_share: float
    payout_threshold_usd: float
    payout_fee_buffer_usd: float
    payout_destinations: Tuple[PayoutDestination, ...]
    drop_sub_fee_remainder: bool
    confirmation_timeout: float
    request_timeout: float
    payout_history_path: str = "data/payout_history.json"
    reserve_token: TokenInfo = field(default=SOL)

    def validate(self) -> None:
        """
        Check invariants that the agent relies on.

        Raises:
            ConfigurationInvalid: If any setting would make the agent unsafe
        """
        problems = []

        if not self.catalog:
            problems.append("output catalog is empty")
        if any(t.mint == self.reserve_token.mint for t in self.catalog):
            problems.append(f"output catalog contains the reserve unit {self.reserve_token.symbol}")

        if not self.payout_destinations:
            problems.append("no payout destinations configured")
        else:
            if any(d.share < 0 for d in self.payout_destinations):
                problems.append("payout shares must not be negative")
            total = sum(d.share for d in self.payout_destinations)
            if abs(total - 1.0) > SHARE_SUM_TOLERANCE:
                problems.append(f"payout shares sum to {total}, expected 1.0")
            ids = [d.destination_id for d in self.payout_destinations]
            if len(set(ids)) != len(ids):
                problems.append("payout destination ids must be unique")

        if not 0.0 <= self.profit_distribution_share <= 1.0:
            problems.append("PROFIT_DISTRIBUTION_SHARE must be within [0, 1]")

        non_negative = {
            "TRADE_AMOUNT": self.trade_amount,
            "MIN_PROFIT_USD": self.min_profit_usd,
            "MAX_PRICE_IMPACT_PCT": self.max_price_impact_pct,
            "RESERVE_THRESHOLD": self.reserve_threshold,
            "RESERVE_TOP_UP_AMOUNT": self.reserve_top_up_amount,
            "MIN_SWAP_VALUE_USD": self.min_swap_value_usd,
            "PAYOUT_THRESHOLD_USD": self.payout_threshold_usd,
            "PAYOUT_FEE_BUFFER_USD": self.payout_fee_buffer_usd,
        }
        for key, value in non_negative.items():
            if value < 0:
                problems.append(f"{key} must not be negative (got {value})")

        if self.trade_amount <= 0:
            problems.append("TRADE_AMOUNT must be positive")
        if self.evaluation_interval <= 0 or self.replenish_interval <= 0:
            problems.append("schedule intervals must be positive")
        if self.confirmation_timeout <= 0 or self.request_timeout <= 0:
            problems.append("timeouts must be positive")
        if not self.private_key:
            problems.append("WALLET_PRIVATE_KEY is not set")

        if problems:
            raise ConfigurationInvalid("Invalid configuration: " + "; ".join(problems))


class EnvironmentConfig:
    """Environment configuration with validation."""

    # Required for the agent to trade and pay out
    REQUIRED_PRODUCTION = [
        "WALLET_PRIVATE_KEY",
        "BLOCKONOMICS_API_KEY",
        "PAYOUT_DESTINATIONS",
    ]

    # Optional variables with defaults
    OPTIONAL_WITH_DEFAULTS = {
        "SOLANA_RPC_URL": "https://api.mainnet-beta.solana.com",
        "LOG_DIR": "logs",
        "LOG_LEVEL": "INFO",
        "CONSOLE_LOG_LEVEL": "INFO",
        "PORT": "3000",
        "AUTO_START": "false",
        # Schedules
        "EVALUATION_INTERVAL": "30",
        "REPLENISH_INTERVAL": "300",
        # Opportunity evaluation
        "TRADE_AMOUNT": "0.1",  # reserve units per evaluation trade
        "MIN_PROFIT_USD": "0.20",
        "MAX_PRICE_IMPACT_PCT": "0.02",  # 2% as a fraction
        "SLIPPAGE_BPS": "100",
        "OUTPUT_CATALOG": ",".join(DEFAULT_CATALOG),
        "STABLE_UNITS": ",".join(DEFAULT_STABLE_UNITS),
        # Reserve replenishment
        "RESERVE_THRESHOLD": "0.5",
        "RESERVE_TOP_UP_AMOUNT": "0.1",
        "MIN_SWAP_VALUE_USD": "1.0",
        # Profit ledger and payouts
        "PROFIT_DISTRIBUTION_SHARE": "1.0",
        "PAYOUT_THRESHOLD_USD": "50.0",
        "PAYOUT_FEE_BUFFER_USD": "1.0",
        "DROP_SUB_FEE_REMAINDER": "true",
        "PAYOUT_HISTORY_PATH": "data/payout_history.json",
        # Transaction execution
        "CONFIRMATION_TIMEOUT": "60",
        "REQUEST_TIMEOUT": "10",
    }

    ALL_VARIABLES = (
        REQUIRED_PRODUCTION +
        list(OPTIONAL_WITH_DEFAULTS.keys()) +
        ["JUPITER_API_KEY"]
    )

    def __init__(self, env_file: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            env_file: Path to .env file (default: .env in cwd or a parent)
        """
        if env_file:
            load_dotenv(env_file)
        else:
            current = Path.cwd()
            for parent in [current] + list(current.parents):
                env_path = parent / ".env"
                if env_path.exists():
                    load_dotenv(env_path)
                    break

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get environment variable with optional default."""
        value = os.getenv(key)
        if value is None and key in self.OPTIONAL_WITH_DEFAULTS:
            return self.OPTIONAL_WITH_DEFAULTS[key]
        return value or default

    def get_required(self, key: str) -> str:
        """
        Get required environment variable.

        Raises:
            ConfigurationInvalid: If variable is not set
        """
        value = self.get(key)
        if not value:
            raise ConfigurationInvalid(
                f"Required environment variable '{key}' is not set. "
                f"Please add it to your .env file."
            )
        return value

    def validate(self, require_all: bool = False) -> Dict[str, str]:
        """
        Collect configuration and check required variables.

        Args:
            require_all: If True, missing required variables are fatal

        Returns:
            Dictionary of configured values

        Raises:
            ConfigurationInvalid: If required variables are missing
        """
        config = {}
        missing = []

        for var in self.REQUIRED_PRODUCTION:
            value = self.get(var)
            if value:
                config[var] = value
            else:
                missing.append(var)

        for var in self.ALL_VARIABLES:
            if var not in config:
                value = self.get(var)
                if value:
                    config[var] = value

        if missing and require_all:
            raise ConfigurationInvalid(
                f"Missing required environment variables: {', '.join(missing)}\n"
                f"Please add them to your .env file.\n"
                f"See .env.example for details."
            )
        if missing:
            logger.warning(f"Missing variables: {', '.join(missing)}")
            logger.warning("The agent will refuse to start until they are set")

        return config

    # Numeric parsing helpers

    def _get_float(self, key: str) -> float:
        """Parse a float; money-related values fail loudly."""
        raw = self.get(key)
        try:
            return float(raw)
        except (ValueError, TypeError):
            raise ConfigurationInvalid(f"Invalid {key} value: {raw!r}")

    def _get_clamped(self, key: str, minimum: float, maximum: float) -> float:
        """Parse an operational knob, clamping to [minimum, maximum]."""
        default = float(self.OPTIONAL_WITH_DEFAULTS[key])
        try:
            value = float(self.get(key))
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid {key} value: {e}, using default {default}")
            return default
        if value < minimum:
            logger.warning(f"{key} {value} too low, using minimum {minimum}")
            return minimum
        if value > maximum:
            logger.warning(f"{key} {value} too high, using maximum {maximum}")
            return maximum
        return value

    # Schedules

    def get_evaluation_interval(self) -> float:
        """Seconds between opportunity evaluation ticks (default 30)."""
        return self._get_clamped("EVALUATION_INTERVAL", 1, 3600)

    def get_replenish_interval(self) -> float:
        """Seconds between reserve replenishment ticks (default 300)."""
        return self._get_clamped("REPLENISH_INTERVAL", 10, 86400)

    # Transaction execution

    def get_confirmation_timeout(self) -> float:
        """Get transaction confirmation timeout in seconds (default 60)."""
        return self._get_clamped("CONFIRMATION_TIMEOUT", 10, 300)

    def get_request_timeout(self) -> float:
        """Per-request timeout for external calls in seconds (default 10)."""
        return self._get_clamped("REQUEST_TIMEOUT", 1, 120)

    def get_slippage_bps(self) -> int:
        """Get slippage tolerance in basis points (default 100 = 1%)."""
        return int(self._get_clamped("SLIPPAGE_BPS", 0, 10000))

    def get_port(self) -> int:
        """Port for the control surface (default 3000)."""
        return int(self._get_clamped("PORT", 1, 65535))

    # Token lists

    def _get_tokens(self, key: str) -> List[TokenInfo]:
        tokens = []
        for item in (self.get(key) or "").split(","):
            item = item.strip()
            if not item:
                continue
            token = resolve_token(item)
            if token is None:
                raise ConfigurationInvalid(f"{key}: unknown token '{item}'")
            tokens.append(token)
        return tokens

    def get_output_catalog(self) -> List[TokenInfo]:
        """Ordered rotation catalog of output units."""
        return self._get_tokens("OUTPUT_CATALOG")

    def get_stable_units(self) -> frozenset:
        """Mints designated as low-volatility for replenishment ranking."""
        return frozenset(t.mint for t in self._get_tokens("STABLE_UNITS"))

    # Payouts

    def get_payout_destinations(self) -> List[PayoutDestination]:
        """
        Parse PAYOUT_DESTINATIONS.

        Format: ``id=address:share,id=address:share`` e.g.
        ``user=bc1q...:0.8,reserve=bc1q...:0.2``

        Raises:
            ConfigurationInvalid: If an entry is malformed
        """
        raw = self.get("PAYOUT_DESTINATIONS") or ""
        destinations = []
        for entry in raw.split(","):
            entry = entry.strip()
            if not entry:
                continue
            try:
                destination_id, rest = entry.split("=", 1)
                address, share = rest.rsplit(":", 1)
                destinations.append(PayoutDestination(
                    destination_id=destination_id.strip(),
                    address=address.strip(),
                    share=float(share),
                ))
            except ValueError:
                raise ConfigurationInvalid(f"Malformed PAYOUT_DESTINATIONS entry: {entry!r}")
        return destinations

    def is_auto_start(self) -> bool:
        """Start trading at boot instead of waiting for POST /start."""
        return (self.get("AUTO_START") or "false").lower() in ("true", "1", "yes", "on")

    def is_drop_sub_fee_remainder(self) -> bool:
        value = (self.get("DROP_SUB_FEE_REMAINDER") or "true").lower()
        return value in ("true", "1", "yes", "on")

    def to_settings(self) -> AgentSettings:
        """
        Build AgentSettings from the environment.

        Raises:
            ConfigurationInvalid: If a value cannot be parsed
        """
        return AgentSettings(
            rpc_url=self.get("SOLANA_RPC_URL"),
            private_key=self.get("WALLET_PRIVATE_KEY") or "",
            jupiter_api_key=self.get("JUPITER_API_KEY"),
            blockonomics_api_key=self.get("BLOCKONOMICS_API_KEY"),
            evaluation_interval=self.get_evaluation_interval(),
            replenish_interval=self.get_replenish_interval(),
            trade_amount=self._get_float("TRADE_AMOUNT"),
            min_profit_usd=self._get_float("MIN_PROFIT_USD"),
            max_price_impact_pct=self._get_float("MAX_PRICE_IMPACT_PCT"),
            slippage_bps=self.get_slippage_bps(),
            catalog=tuple(self.get_output_catalog()),
            stable_units=self.get_stable_units(),
            reserve_threshold=self._get_float("RESERVE_THRESHOLD"),
            reserve_top_up_amount=self._get_float("RESERVE_TOP_UP_AMOUNT"),
            min_swap_value_usd=self._get_float("MIN_SWAP_VALUE_USD"),
            profit_distribution_share=self._get_float("PROFIT_DISTRIBUTION_SHARE"),
            payout_threshold_usd=self._get_float("PAYOUT_THRESHOLD_USD"),
            payout_fee_buffer_usd=self._get_float("PAYOUT_FEE_BUFFER_USD"),
            payout_destinations=tuple(self.get_payout_destinations()),
            drop_sub_fee_remainder=self.is_drop_sub_fee_remainder(),
            confirmation_timeout=self.get_confirmation_timeout(),
            request_timeout=self.get_request_timeout(),
            payout_history_path=self.get("PAYOUT_HISTORY_PATH"),
        )


def load_config(env_file: Optional[str] = None, require_all: bool = False) -> EnvironmentConfig:
    """
    Load and validate configuration.

    Args:
        env_file: Path to .env file
        require_all: If True, require all production variables

    Returns:
        EnvironmentConfig instance

    Raises:
        ConfigurationInvalid: If configuration is invalid
    """
    config = EnvironmentConfig(env_file)
    config.validate(require_all=require_all)
    return config


def check_startup_requirements(env_file: Optional[str] = None) -> AgentSettings:
    """
    Check startup requirements and fail fast if critical config is missing.

    Called at the start of main() so the agent never runs half-configured.

    Returns:
        Validated AgentSettings

    Raises:
        SystemExit: If startup checks fail
    """
    try:
        config = load_config(env_file, require_all=True)
        settings = config.to_settings()
        settings.validate()

        Path(config.get("LOG_DIR")).mkdir(parents=True, exist_ok=True)
        Path(settings.payout_history_path).parent.mkdir(parents=True, exist_ok=True)

        logger.info("Startup requirements satisfied")
        logger.info("Configuration:")
        logger.info(f"  RPC: {settings.rpc_url}")
        logger.info(f"  Evaluation interval: {settings.evaluation_interval}s")
        logger.info(f"  Replenish interval: {settings.replenish_interval}s")
        logger.info(f"  Trade amount: {settings.trade_amount} {settings.reserve_token.symbol}")
        logger.info(f"  Min profit: ${settings.min_profit_usd:.2f}")
        logger.info(f"  Max price impact: {settings.max_price_impact_pct * 100}%")
        logger.info(f"  Catalog: {', '.join(t.symbol for t in settings.catalog)}")

        logger.info("Reserve:")
        logger.info(f"  Threshold: {settings.reserve_threshold} {settings.reserve_token.symbol}")
        logger.info(f"  Top-up amount: {settings.reserve_top_up_amount} {settings.reserve_token.symbol}")
        logger.info(f"  Min swap value: ${settings.min_swap_value_usd:.2f}")

        logger.info("Payouts:")
        logger.info(f"  Distribution share: {settings.profit_distribution_share * 100}%")
        logger.info(f"  Threshold: ${settings.payout_threshold_usd:.2f}")
        logger.info(f"  Fee buffer: ${settings.payout_fee_buffer_usd:.2f}")
        for dest in settings.payout_destinations:
            logger.info(f"  {dest.destination_id}: {dest.share * 100}% -> {dest.address}")

        if not settings.jupiter_api_key:
            logger.warning("JUPITER_API_KEY not set - quotes use the public endpoint")

        return settings

    except ConfigurationInvalid as e:
        logger.error(f"\nConfiguration Error: {e}\n")
        logger.error("Please fix the configuration and try again.")
        sys.exit(1)
