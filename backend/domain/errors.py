"""Error taxonomy shared by services and routers."""


class BillingError(Exception):
    """Base error for session/billing failures."""

    reason = "error"


class ValidationError(BillingError):
    """Raised when input breaks a business rule before any mutation."""

    reason = "validation"


class NotFoundError(BillingError):
    """Raised when a session, bill, device or table id does not resolve."""

    reason = "not_found"


class StateConflictError(BillingError):
    """Raised when the entity is in a state that forbids the mutation."""

    reason = "state_conflict"
