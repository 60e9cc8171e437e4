class ReachBotError(Exception):
    """Base class for outreach workflow errors."""


class AuthorizationError(ReachBotError):
    """A user tried an operation their current role does not allow."""


class ClassificationParseError(ReachBotError):
    """The classifier returned output that does not fit the expected schema."""


class TransientProviderError(ReachBotError):
    """The LLM provider stayed rate-limited or overloaded after all retries."""


class NotFoundError(ReachBotError):
    """A referenced user, query or reach-out does not exist."""


class DeliveryError(ReachBotError):
    """An outbound message could not be sent over the transport."""


class InvalidTransitionError(ReachBotError, ValueError):
    """A user write would break the type/current reach-out invariant."""
