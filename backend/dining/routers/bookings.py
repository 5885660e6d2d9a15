from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_user_id, get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import (
    SqlAlchemyBookingRepository,
    SqlAlchemyCatalogRepository,
    SqlAlchemySlotRepository,
)
from ..models import Booking, BookingStatus, PaymentStatus
from ..schemas import BookingCancel, BookingCreate, BookingRead, BookingStats, BookingUpdate
from ..usecases import bookings as booking_usecase
from ..utils.audit_log import AuditAction, AuditInitiator, emit_audit_log
from .errors import to_http_exception

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _audit(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    booking: Booking,
    status_from: Optional[BookingStatus],
    message: Optional[str] = None,
) -> None:
    try:
        emit_audit_log(
            action=action,
            initiator=initiator,
            booking_id=booking.id,
            slot_id=booking.slot_id,
            experience_id=booking.experience_id,
            user_id=booking.user_id,
            guest_count=booking.guest_count,
            status_from=status_from,
            status_to=booking.status,
            message=message,
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed") from exc


@router.post("", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> BookingRead:
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    catalog_repo = SqlAlchemyCatalogRepository(session)
    async with session.begin():
        try:
            booking = await booking_usecase.create_booking(
                slot_repo,
                booking_repo,
                catalog_repo,
                user_id=user_id,
                experience_id=payload.experience_id,
                slot_id=payload.slot_id,
                guest_count=payload.guest_count,
                special_requests=payload.special_requests,
            )
        except DomainError as exc:
            raise to_http_exception(exc)

    _audit(action="booking.created", initiator="guest", booking=booking, status_from=None)
    return BookingRead.from_db(booking=booking)


@router.get("", response_model=List[BookingRead])
async def list_bookings(
    booking_status: Optional[BookingStatus] = Query(default=None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(default=None),
    user_id: Optional[int] = Query(default=None),
    experience_id: Optional[int] = Query(default=None),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[BookingRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    rows = await booking_usecase.list_bookings(
        booking_repo,
        status=booking_status,
        payment_status=payment_status,
        user_id=user_id,
        experience_id=experience_id,
        start_date=start_date,
        end_date=end_date,
    )
    return [BookingRead.from_db(booking=booking) for booking in rows]


@router.get("/stats", response_model=BookingStats)
async def get_booking_stats(
    host_id: Optional[int] = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> BookingStats:
    booking_repo = SqlAlchemyBookingRepository(session)
    stats = await booking_usecase.get_booking_stats(booking_repo, host_id=host_id)
    return BookingStats(**stats)


@router.get("/user/{user_id}", response_model=List[BookingRead])
async def list_user_bookings(
    user_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> list[BookingRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    rows = await booking_usecase.list_user_bookings(booking_repo, user_id=user_id)
    return [BookingRead.from_db(booking=booking) for booking in rows]


@router.get("/host/{host_id}", response_model=List[BookingRead])
async def list_host_bookings(
    host_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> list[BookingRead]:
    booking_repo = SqlAlchemyBookingRepository(session)
    rows = await booking_usecase.list_host_bookings(booking_repo, host_id=host_id)
    return [BookingRead.from_db(booking=booking) for booking in rows]


@router.get("/{booking_id}", response_model=BookingRead)
async def get_booking(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> BookingRead:
    booking_repo = SqlAlchemyBookingRepository(session)
    try:
        booking = await booking_usecase.get_booking(booking_repo, booking_id=booking_id)
    except DomainError as exc:
        raise to_http_exception(exc)
    return BookingRead.from_db(booking=booking)


@router.patch("/{booking_id}", response_model=BookingRead)
async def update_booking(
    payload: BookingUpdate,
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> BookingRead:
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    catalog_repo = SqlAlchemyCatalogRepository(session)
    async with session.begin():
        try:
            booking, previous = await booking_usecase.update_booking(
                slot_repo,
                booking_repo,
                catalog_repo,
                booking_id=booking_id,
                **payload.model_dump(exclude_unset=True),
            )
        except DomainError as exc:
            raise to_http_exception(exc)

    _audit(action="booking.updated", initiator="host", booking=booking, status_from=previous)
    return BookingRead.from_db(booking=booking)


@router.patch("/{booking_id}/confirm", response_model=BookingRead)
async def confirm_booking(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> BookingRead:
    booking_repo = SqlAlchemyBookingRepository(session)
    async with session.begin():
        try:
            booking, previous = await booking_usecase.confirm_booking(booking_repo, booking_id=booking_id)
        except DomainError as exc:
            raise to_http_exception(exc)

    _audit(action="booking.confirmed", initiator="host", booking=booking, status_from=previous)
    return BookingRead.from_db(booking=booking)


@router.patch("/{booking_id}/complete", response_model=BookingRead)
async def complete_booking(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> BookingRead:
    booking_repo = SqlAlchemyBookingRepository(session)
    async with session.begin():
        try:
            booking, previous = await booking_usecase.complete_booking(booking_repo, booking_id=booking_id)
        except DomainError as exc:
            raise to_http_exception(exc)

    _audit(action="booking.completed", initiator="host", booking=booking, status_from=previous)
    return BookingRead.from_db(booking=booking)


async def _cancel(session: AsyncSession, booking_id: int, reason: Optional[str]) -> BookingRead:
    slot_repo = SqlAlchemySlotRepository(session)
    booking_repo = SqlAlchemyBookingRepository(session)
    async with session.begin():
        try:
            booking, previous = await booking_usecase.cancel_booking(
                slot_repo,
                booking_repo,
                booking_id=booking_id,
                reason=reason,
            )
        except DomainError as exc:
            raise to_http_exception(exc)

    _audit(action="booking.cancelled", initiator="guest", booking=booking, status_from=previous, message=reason)
    return BookingRead.from_db(booking=booking)


@router.patch("/{booking_id}/cancel", response_model=BookingRead)
async def cancel_booking(
    booking_id: int = Path(..., ge=1),
    payload: Optional[BookingCancel] = Body(default=None),
    session: AsyncSession = Depends(get_session),
) -> BookingRead:
    return await _cancel(session, booking_id, payload.reason if payload is not None else None)


@router.delete("/{booking_id}", response_model=BookingRead)
async def delete_booking(
    booking_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> BookingRead:
    # Bookings are never removed; deleting one cancels it.
    return await _cancel(session, booking_id, "Deleted by user")
