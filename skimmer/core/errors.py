"""
Error taxonomy for the Skimmer agent.

Every failure the core can observe maps to one of these types. Recoverable
errors are caught at the component seam and turned into an outcome on the
tick report; only ConfigurationInvalid is fatal.
"""


class SkimmerError(Exception):
    """Base class for all Skimmer errors."""
    pass


class OracleUnavailable(SkimmerError):
    """Reference price could not be fetched. Skip the tick."""
    pass


class NoRouteFound(SkimmerError):
    """Quote service returned no usable route. Skip the tick."""
    pass


class PriceImpactExceeded(SkimmerError):
    """Quoted route exceeds the configured price-impact ceiling. Skip the tick."""
    pass


class ExecutionFailed(SkimmerError):
    """Swap could not be built, submitted or confirmed. No ledger mutation."""
    pass


class ReplenishmentSourceExhausted(SkimmerError):
    """No holding is eligible to top up the reserve. Skip the cycle."""
    pass


class PayoutPartialFailure(SkimmerError):
    """
    Some payout legs failed while others succeeded.

    The ledger is still cleared; failed legs are not re-driven.
    """

    def __init__(self, message: str, attempts=None):
        super().__init__(message)
        self.attempts = attempts or []


class ConfigurationInvalid(SkimmerError):
    """Configuration is invalid or missing. The agent refuses to start."""
    pass
