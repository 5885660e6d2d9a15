from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from typing import Any, Iterable, List, Optional, cast

from sqlalchemy import CursorResult, Select, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.repositories import BookingRepository, CatalogRepository, SlotRepository
from ..domain.pricing import round2
from ..models import Booking, BookingStatus, Experience, PaymentStatus, Slot, SlotStatus, User, Venue
from ..utils.time import utc_now_naive


class SqlAlchemyCatalogRepository(CatalogRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def user_exists(self, user_id: int) -> bool:
        return await self.session.scalar(select(User.id).where(User.id == user_id)) is not None

    async def get_experience(self, experience_id: int) -> Experience | None:
        result = await self.session.scalar(select(Experience).where(Experience.id == experience_id))
        return result if isinstance(result, Experience) else None


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, slot_id: int) -> Slot | None:
        # Counters are written with bulk UPDATEs, so always reload from the row.
        stmt = select(Slot).where(Slot.id == slot_id).execution_options(populate_existing=True)
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Slot) else None

    async def get_for_update(self, slot_id: int) -> Slot | None:
        stmt = (
            select(Slot)
            .where(Slot.id == slot_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Slot) else None

    async def find_by_start(self, experience_id: int, slot_date: date, start_time: time) -> Slot | None:
        stmt = select(Slot).where(
            Slot.experience_id == experience_id,
            Slot.date == slot_date,
            Slot.start_time == start_time,
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Slot) else None

    async def existing_dates(
        self,
        experience_id: int,
        start_date: date,
        end_date: date,
        start_time: time,
    ) -> set[date]:
        stmt = select(Slot.date).where(
            Slot.experience_id == experience_id,
            Slot.start_time == start_time,
            Slot.date >= start_date,
            Slot.date <= end_date,
        )
        return set((await self.session.scalars(stmt)).all())

    async def create(
        self,
        *,
        experience_id: int,
        slot_date: date,
        start_time: time,
        end_time: time,
        max_slots: int,
        price_override: Decimal | None,
        notes: str | None,
        is_blocked: bool,
    ) -> Slot:
        now = utc_now_naive()
        slot = Slot(
            experience_id=experience_id,
            date=slot_date,
            start_time=start_time,
            end_time=end_time,
            max_slots=max_slots,
            booked_slots=0,
            price_override=price_override,
            is_blocked=is_blocked,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def create_many(
        self,
        *,
        experience_id: int,
        dates: Iterable[date],
        start_time: time,
        end_time: time,
        max_slots: int,
        price_override: Decimal | None,
    ) -> list[Slot]:
        now = utc_now_naive()
        slots = [
            Slot(
                experience_id=experience_id,
                date=slot_date,
                start_time=start_time,
                end_time=end_time,
                max_slots=max_slots,
                booked_slots=0,
                price_override=price_override,
                is_blocked=False,
                created_at=now,
                updated_at=now,
            )
            for slot_date in dates
        ]
        self.session.add_all(slots)
        await self.session.flush()
        return slots

    async def save(self, slot: Slot) -> Slot:
        slot.updated_at = utc_now_naive()
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def delete(self, slot: Slot) -> None:
        await self.session.delete(slot)
        await self.session.flush()

    async def search(
        self,
        *,
        experience_id: int | None,
        start_date: date | None,
        end_date: date | None,
        status: SlotStatus | None,
        offset: int,
        limit: int | None,
    ) -> tuple[list[Slot], int]:
        stmt: Select[tuple[Slot]] = select(Slot)
        if experience_id is not None:
            stmt = stmt.where(Slot.experience_id == experience_id)
        if start_date is not None:
            stmt = stmt.where(Slot.date >= start_date)
        if end_date is not None:
            stmt = stmt.where(Slot.date <= end_date)
        if status is not None:
            stmt = stmt.where(Slot.status == status.value)

        total = await self.session.scalar(select(func.count()).select_from(stmt.subquery()))
        stmt = stmt.order_by(Slot.date, Slot.start_time, Slot.id).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = await self.session.scalars(stmt.execution_options(populate_existing=True))
        return list(rows.all()), int(total or 0)

    async def try_reserve(self, slot_id: int, guest_count: int) -> bool:
        """
        Conditional increment: the row is only touched while it is unblocked,
        not yet full and has headroom for `guest_count`. Returns False when no
        row matched, which means the reservation lost.
        """
        stmt = (
            update(Slot)
            .where(
                Slot.id == slot_id,
                Slot.is_blocked.is_(False),
                Slot.booked_slots < Slot.max_slots,
                Slot.booked_slots + guest_count <= Slot.max_slots,
            )
            .values(booked_slots=Slot.booked_slots + guest_count, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        result = cast(CursorResult[Any], await self.session.execute(stmt))
        return result.rowcount == 1

    async def release(self, slot_id: int, guest_count: int) -> Slot | None:
        stmt = (
            update(Slot)
            .where(Slot.id == slot_id)
            .values(
                booked_slots=case(
                    (Slot.booked_slots > guest_count, Slot.booked_slots - guest_count),
                    else_=0,
                ),
                updated_at=utc_now_naive(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        return await self.get(slot_id)


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, booking_id: int) -> Booking | None:
        stmt = select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Booking) else None

    async def get_for_update(self, booking_id: int) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.scalar(stmt)
        return result if isinstance(result, Booking) else None

    async def create(
        self,
        *,
        user_id: int,
        experience_id: int,
        slot_id: int,
        guest_count: int,
        total_price: Decimal,
        service_fee: Decimal,
        taxes: Decimal,
        special_requests: str | None,
    ) -> Booking:
        now = utc_now_naive()
        booking = Booking(
            user_id=user_id,
            experience_id=experience_id,
            slot_id=slot_id,
            guest_count=guest_count,
            total_price=total_price,
            service_fee=service_fee,
            taxes=taxes,
            status=BookingStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            special_requests=special_requests,
            created_at=now,
            updated_at=now,
        )
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def save(self, booking: Booking) -> Booking:
        booking.updated_at = utc_now_naive()
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def search(
        self,
        *,
        status: BookingStatus | None = None,
        payment_status: PaymentStatus | None = None,
        user_id: int | None = None,
        experience_id: int | None = None,
        host_id: int | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> List[Booking]:
        stmt: Select[tuple[Booking]] = select(Booking)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        if payment_status is not None:
            stmt = stmt.where(Booking.payment_status == payment_status)
        if user_id is not None:
            stmt = stmt.where(Booking.user_id == user_id)
        if experience_id is not None:
            stmt = stmt.where(Booking.experience_id == experience_id)
        if host_id is not None:
            stmt = _scope_to_host(stmt, host_id)
        if start_date is not None and end_date is not None:
            stmt = stmt.join(Slot, Booking.slot_id == Slot.id).where(Slot.date.between(start_date, end_date))
        stmt = stmt.order_by(Booking.created_at.desc(), Booking.id.desc())
        rows = await self.session.scalars(stmt)
        return list(rows.all())

    async def stats(self, host_id: int | None) -> dict[str, Any]:
        total_stmt = select(func.count(Booking.id))
        status_stmt = select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
        revenue_stmt = select(func.coalesce(func.sum(Booking.total_price), 0)).where(
            Booking.payment_status == PaymentStatus.PAID
        )
        if host_id is not None:
            total_stmt = _scope_to_host(total_stmt, host_id)
            status_stmt = _scope_to_host(status_stmt, host_id)
            revenue_stmt = _scope_to_host(revenue_stmt, host_id)

        total = await self.session.scalar(total_stmt)
        status_rows = (await self.session.execute(status_stmt)).all()
        revenue = await self.session.scalar(revenue_stmt)
        return {
            "total_bookings": int(total or 0),
            "status_counts": {BookingStatus(status).value: int(count) for status, count in status_rows},
            "total_revenue": round2(Decimal(str(revenue or 0))),
        }


def _scope_to_host(stmt: Select[Any], host_id: Optional[int]) -> Select[Any]:
    return (
        stmt.join(Experience, Booking.experience_id == Experience.id)
        .join(Venue, Experience.venue_id == Venue.id)
        .where(Venue.host_id == host_id)
    )
