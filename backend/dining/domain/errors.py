class DomainError(Exception):
    """Base class for business-rule failures surfaced to the caller."""


class NotFoundError(DomainError):
    pass


class ConflictError(DomainError):
    pass


class ValidationError(DomainError):
    pass


class CapacityExceededError(DomainError):
    pass


class SlotUnavailableError(CapacityExceededError):
    """Slot is blocked, full, or lacks headroom for the requested guests."""


class InvalidTransitionError(DomainError):
    pass


class InvalidStateError(ConflictError):
    """Booking is already in a state that forbids the operation."""
