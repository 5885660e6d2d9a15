import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import Booking, BookingStatus, PaymentStatus, Slot, SlotStatus
from .utils.time import WEEKDAYS


class SlotCreate(BaseModel):
    experience_id: int
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    max_slots: int = Field(ge=1)
    price_override: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    status: SlotStatus = SlotStatus.AVAILABLE
    notes: Optional[str] = None


class SlotBulkCreate(BaseModel):
    experience_id: int
    start_date: dt.date
    end_date: dt.date
    start_time: dt.time
    end_time: dt.time
    max_slots: int = Field(ge=1)
    price_override: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    exclude_days: list[str] = Field(default_factory=list)

    @field_validator("exclude_days")
    @classmethod
    def _normalize_days(cls, value: list[str]) -> list[str]:
        days = [day.strip().lower() for day in value]
        unknown = [day for day in days if day not in WEEKDAYS]
        if unknown:
            raise ValueError(f"unknown weekday names: {', '.join(unknown)}")
        return days

    @model_validator(mode="after")
    def _check_range(self) -> "SlotBulkCreate":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class SlotUpdate(BaseModel):
    date: Optional[dt.date] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    max_slots: Optional[int] = Field(default=None, ge=1)
    price_override: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    status: Optional[SlotStatus] = None
    notes: Optional[str] = None


class SlotRead(BaseModel):
    slot_id: int
    experience_id: int
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    max_slots: int
    booked_slots: int
    remaining: int
    price_override: Optional[Decimal]
    status: SlotStatus
    notes: Optional[str]

    @classmethod
    def from_db(cls, *, slot: Slot) -> "SlotRead":
        return cls(
            slot_id=slot.id,
            experience_id=slot.experience_id,
            date=slot.date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            max_slots=slot.max_slots,
            booked_slots=slot.booked_slots,
            remaining=slot.remaining,
            price_override=slot.price_override,
            status=slot.status,
            notes=slot.notes,
        )


class SlotPage(BaseModel):
    items: list[SlotRead]
    total: int
    page: int
    limit: int


class AvailabilityCheck(BaseModel):
    slot_id: int
    guest_count: int
    available: bool


class BookingCreate(BaseModel):
    experience_id: int
    slot_id: int
    guest_count: int = Field(ge=1)
    special_requests: Optional[str] = None


class BookingUpdate(BaseModel):
    status: Optional[BookingStatus] = None
    guest_count: Optional[int] = Field(default=None, ge=1)
    payment_status: Optional[PaymentStatus] = None
    special_requests: Optional[str] = None
    cancellation_reason: Optional[str] = None


class BookingCancel(BaseModel):
    reason: Optional[str] = None


class BookingRead(BaseModel):
    booking_id: int
    user_id: int
    experience_id: int
    slot_id: int
    guest_count: int
    total_price: Decimal
    service_fee: Decimal
    taxes: Decimal
    status: BookingStatus
    payment_status: PaymentStatus
    special_requests: Optional[str]
    cancellation_reason: Optional[str]
    confirmed_at: Optional[dt.datetime]
    cancelled_at: Optional[dt.datetime]
    created_at: dt.datetime

    @classmethod
    def from_db(cls, *, booking: Booking) -> "BookingRead":
        return cls(
            booking_id=booking.id,
            user_id=booking.user_id,
            experience_id=booking.experience_id,
            slot_id=booking.slot_id,
            guest_count=booking.guest_count,
            total_price=booking.total_price,
            service_fee=booking.service_fee,
            taxes=booking.taxes,
            status=booking.status,
            payment_status=booking.payment_status,
            special_requests=booking.special_requests,
            cancellation_reason=booking.cancellation_reason,
            confirmed_at=booking.confirmed_at,
            cancelled_at=booking.cancelled_at,
            created_at=booking.created_at,
        )


class BookingStats(BaseModel):
    total_bookings: int
    status_counts: dict[str, int]
    total_revenue: Decimal
