from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from typing import Any, Iterable, Protocol

from ..models import Booking, BookingStatus, Experience, PaymentStatus, Slot, SlotStatus


class CatalogRepository(Protocol):
    async def user_exists(self, user_id: int) -> bool: ...

    async def get_experience(self, experience_id: int) -> Experience | None: ...


class SlotRepository(Protocol):
    async def get(self, slot_id: int) -> Slot | None: ...

    async def get_for_update(self, slot_id: int) -> Slot | None: ...

    async def find_by_start(self, experience_id: int, slot_date: date, start_time: time) -> Slot | None: ...

    async def existing_dates(
        self,
        experience_id: int,
        start_date: date,
        end_date: date,
        start_time: time,
    ) -> set[date]: ...

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
    ) -> Slot: ...

    async def create_many(
        self,
        *,
        experience_id: int,
        dates: Iterable[date],
        start_time: time,
        end_time: time,
        max_slots: int,
        price_override: Decimal | None,
    ) -> list[Slot]: ...

    async def save(self, slot: Slot) -> Slot: ...

    async def delete(self, slot: Slot) -> None: ...

    async def search(
        self,
        *,
        experience_id: int | None,
        start_date: date | None,
        end_date: date | None,
        status: SlotStatus | None,
        offset: int,
        limit: int | None,
    ) -> tuple[list[Slot], int]: ...

    async def try_reserve(self, slot_id: int, guest_count: int) -> bool: ...

    async def release(self, slot_id: int, guest_count: int) -> Slot | None: ...


class BookingRepository(Protocol):
    async def get(self, booking_id: int) -> Booking | None: ...

    async def get_for_update(self, booking_id: int) -> Booking | None: ...

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
    ) -> Booking: ...

    async def save(self, booking: Booking) -> Booking: ...

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
    ) -> list[Booking]: ...

    async def stats(self, host_id: int | None) -> dict[str, Any]: ...
