"""Core agent components: configuration, errors, shared state and wallet."""

from skimmer.core.errors import (
    SkimmerError,
    OracleUnavailable,
    NoRouteFound,
    PriceImpactExceeded,
    ExecutionFailed,
    ReplenishmentSourceExhausted,
    PayoutPartialFailure,
    ConfigurationInvalid,
)
from skimmer.core.config import AgentSettings, PayoutDestination, load_config

__all__ = [
    "SkimmerError",
    "OracleUnavailable",
    "NoRouteFound",
    "PriceImpactExceeded",
    "ExecutionFailed",
    "ReplenishmentSourceExhausted",
    "PayoutPartialFailure",
    "ConfigurationInvalid",
    "AgentSettings",
    "PayoutDestination",
    "load_config",
]
