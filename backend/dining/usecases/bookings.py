import logging
from datetime import date
from typing import Any

from ..domain.errors import InvalidTransitionError, NotFoundError, SlotUnavailableError, ValidationError
from ..domain.pricing import price_per_guest, quote_price
from ..domain.repositories import BookingRepository, CatalogRepository, SlotRepository
from ..domain.services import (
    ACTIVE_BOOKING_STATUSES,
    ensure_can_cancel,
    ensure_can_complete,
    ensure_can_confirm,
    validate_guest_count,
)
from ..models import Booking, BookingStatus, PaymentStatus
from ..utils.time import utc_now_naive
from . import slots as slot_ledger

logger = logging.getLogger(__name__)

_UNSET: Any = object()


async def create_booking(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    catalog_repo: CatalogRepository,
    *,
    user_id: int,
    experience_id: int,
    slot_id: int,
    guest_count: int,
    special_requests: str | None = None,
) -> Booking:
    """
    Create a PENDING booking and debit its seats from the slot.

    Must run inside a single transaction owned by the caller. Seats are
    debited before the booking row is inserted, so the slot row is
    write-locked before the insert takes its foreign key lock on it. A
    failed insert rolls the seats back with it.
    """
    if guest_count <= 0:
        raise ValidationError("guest_count must be positive")
    if not await catalog_repo.user_exists(user_id):
        raise NotFoundError("user not found")
    experience = await catalog_repo.get_experience(experience_id)
    if experience is None:
        raise NotFoundError("experience not found")

    slot = await slot_ledger.get_slot(slot_repo, slot_id=slot_id)
    if slot.experience_id != experience.id:
        raise ValidationError("slot does not belong to this experience")
    if not await slot_ledger.check_availability(slot_repo, slot_id=slot_id, guest_count=guest_count):
        raise SlotUnavailableError("selected time slot is not available or fully booked")
    validate_guest_count(guest_count, min_guests=experience.min_guests, max_guests=experience.max_guests)

    quote = quote_price(
        price_per_guest(price_override=slot.price_override, base_price=experience.base_price),
        guest_count,
    )
    await slot_ledger.reserve(slot_repo, slot_id=slot.id, guest_count=guest_count)
    booking = await booking_repo.create(
        user_id=user_id,
        experience_id=experience.id,
        slot_id=slot.id,
        guest_count=guest_count,
        total_price=quote.total_price,
        service_fee=quote.service_fee,
        taxes=quote.taxes,
        special_requests=special_requests,
    )
    logger.info(
        "booking created booking_id=%s slot_id=%s guest_count=%s total=%s",
        booking.id,
        slot.id,
        guest_count,
        quote.total_price,
    )
    return booking


async def get_booking(booking_repo: BookingRepository, *, booking_id: int) -> Booking:
    booking = await booking_repo.get(booking_id)
    if booking is None:
        raise NotFoundError("booking not found")
    return booking


async def _get_for_update(booking_repo: BookingRepository, booking_id: int) -> Booking:
    booking = await booking_repo.get_for_update(booking_id)
    if booking is None:
        raise NotFoundError("booking not found")
    return booking


def _apply_confirm(booking: Booking) -> None:
    ensure_can_confirm(booking.status)
    booking.status = BookingStatus.CONFIRMED
    booking.confirmed_at = utc_now_naive()


def _apply_complete(booking: Booking) -> None:
    ensure_can_complete(booking.status)
    booking.status = BookingStatus.COMPLETED


async def _apply_cancel(slot_repo: SlotRepository, booking: Booking, reason: str | None) -> None:
    # The guard rejects already-cancelled bookings, so seats go back exactly once.
    ensure_can_cancel(booking.status)
    await slot_ledger.release(slot_repo, slot_id=booking.slot_id, guest_count=booking.guest_count)
    booking.status = BookingStatus.CANCELLED
    booking.cancelled_at = utc_now_naive()
    if reason:
        booking.cancellation_reason = reason


async def confirm_booking(
    booking_repo: BookingRepository,
    *,
    booking_id: int,
) -> tuple[Booking, BookingStatus]:
    booking = await _get_for_update(booking_repo, booking_id)
    previous = booking.status
    _apply_confirm(booking)
    return await booking_repo.save(booking), previous


async def complete_booking(
    booking_repo: BookingRepository,
    *,
    booking_id: int,
) -> tuple[Booking, BookingStatus]:
    booking = await _get_for_update(booking_repo, booking_id)
    previous = booking.status
    _apply_complete(booking)
    return await booking_repo.save(booking), previous


async def cancel_booking(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    *,
    booking_id: int,
    reason: str | None = None,
) -> tuple[Booking, BookingStatus]:
    booking = await _get_for_update(booking_repo, booking_id)
    previous = booking.status
    await _apply_cancel(slot_repo, booking, reason)
    return await booking_repo.save(booking), previous


async def update_booking(
    slot_repo: SlotRepository,
    booking_repo: BookingRepository,
    catalog_repo: CatalogRepository,
    *,
    booking_id: int,
    status: BookingStatus | None = None,
    guest_count: int | None = None,
    payment_status: PaymentStatus | None = None,
    special_requests: str | None = _UNSET,
    cancellation_reason: str | None = _UNSET,
) -> tuple[Booking, BookingStatus]:
    """
    Patch a booking. A status change runs through the same guards and side
    effects as the dedicated transitions; resubmitting the current status is
    a no-op. Prices stay as quoted at creation.
    """
    booking = await _get_for_update(booking_repo, booking_id)
    previous = booking.status
    reason = None if cancellation_reason is _UNSET else cancellation_reason

    if status is not None and status != booking.status:
        if status == BookingStatus.CANCELLED:
            await _apply_cancel(slot_repo, booking, reason)
        elif status == BookingStatus.CONFIRMED:
            _apply_confirm(booking)
        elif status == BookingStatus.COMPLETED:
            _apply_complete(booking)
        else:
            raise InvalidTransitionError(f"bookings cannot be moved to {status.value}")

    if guest_count is not None and guest_count != booking.guest_count:
        await _resize(slot_repo, catalog_repo, booking, guest_count)

    if payment_status is not None:
        booking.payment_status = payment_status
    if special_requests is not _UNSET:
        booking.special_requests = special_requests
    if cancellation_reason is not _UNSET and booking.status == BookingStatus.CANCELLED:
        booking.cancellation_reason = cancellation_reason
    return await booking_repo.save(booking), previous


async def _resize(
    slot_repo: SlotRepository,
    catalog_repo: CatalogRepository,
    booking: Booking,
    guest_count: int,
) -> None:
    experience = await catalog_repo.get_experience(booking.experience_id)
    if experience is None:
        raise NotFoundError("experience not found")
    validate_guest_count(guest_count, min_guests=experience.min_guests, max_guests=experience.max_guests)
    if booking.status in ACTIVE_BOOKING_STATUSES:
        delta = guest_count - booking.guest_count
        if delta > 0:
            await slot_ledger.reserve(slot_repo, slot_id=booking.slot_id, guest_count=delta)
        else:
            await slot_ledger.release(slot_repo, slot_id=booking.slot_id, guest_count=-delta)
    booking.guest_count = guest_count


async def list_bookings(
    booking_repo: BookingRepository,
    *,
    status: BookingStatus | None = None,
    payment_status: PaymentStatus | None = None,
    user_id: int | None = None,
    experience_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Booking]:
    return await booking_repo.search(
        status=status,
        payment_status=payment_status,
        user_id=user_id,
        experience_id=experience_id,
        start_date=start_date,
        end_date=end_date,
    )


async def list_user_bookings(booking_repo: BookingRepository, *, user_id: int) -> list[Booking]:
    return await booking_repo.search(user_id=user_id)


async def list_host_bookings(booking_repo: BookingRepository, *, host_id: int) -> list[Booking]:
    return await booking_repo.search(host_id=host_id)


async def get_booking_stats(booking_repo: BookingRepository, *, host_id: int | None = None) -> dict[str, Any]:
    """Counts every booking in scope; revenue only sums PAID ones."""
    return await booking_repo.stats(host_id)
