from dataclasses import dataclass
from datetime import time

from ..models import BookingStatus, SlotStatus
from .errors import InvalidStateError, InvalidTransitionError, ValidationError

# Bookings in these states hold capacity on their slot.
ACTIVE_BOOKING_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED}
)


@dataclass(frozen=True)
class SlotSnapshot:
    status: SlotStatus
    max_slots: int
    booked_slots: int


def has_capacity(snapshot: SlotSnapshot, *, guest_count: int) -> bool:
    """Blocked or fully booked slots never fit, whatever the arithmetic says."""
    if snapshot.status != SlotStatus.AVAILABLE:
        return False
    return snapshot.max_slots - snapshot.booked_slots >= guest_count


def validate_time_range(start_time: time, end_time: time) -> None:
    if start_time >= end_time:
        raise ValidationError("start_time must be earlier than end_time")


def validate_guest_count(guest_count: int, *, min_guests: int, max_guests: int) -> None:
    if guest_count <= 0:
        raise ValidationError("guest_count must be positive")
    if guest_count < min_guests or guest_count > max_guests:
        raise ValidationError(f"guest_count must be between {min_guests} and {max_guests}")


def ensure_can_confirm(status: BookingStatus) -> None:
    if status != BookingStatus.PENDING:
        raise InvalidTransitionError("only pending bookings can be confirmed")


def ensure_can_complete(status: BookingStatus) -> None:
    if status != BookingStatus.CONFIRMED:
        raise InvalidTransitionError("only confirmed bookings can be marked as completed")


def ensure_can_cancel(status: BookingStatus) -> None:
    if status == BookingStatus.CANCELLED:
        raise InvalidStateError("booking is already cancelled")
    if status == BookingStatus.COMPLETED:
        raise InvalidStateError("cannot cancel a completed booking")
    if status == BookingStatus.NO_SHOW:
        raise InvalidStateError("cannot cancel a no-show booking")
