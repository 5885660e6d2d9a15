import asyncio
from decimal import Decimal
from typing import Any

import pytest
from dining.domain.errors import (
    CapacityExceededError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from dining.models import Booking, BookingStatus, PaymentStatus, SlotStatus
from dining.usecases import bookings as uc
from fakes import InMemoryStore

USER_ID = 200


def _seed(store: InMemoryStore, *, max_slots: int = 4, max_guests: int = 4, base_price: str = "100.00"):
    store.add_user(USER_ID)
    experience = store.add_experience(base_price=base_price, max_guests=max_guests)
    slot = store.add_slot(experience.id, max_slots=max_slots)
    return experience, slot


async def _book(store: InMemoryStore, experience_id: int, slot_id: int, guests: int) -> Booking:
    async with store.transaction():
        return await uc.create_booking(
            store.slot_repo,
            store.booking_repo,
            store.catalog_repo,
            user_id=USER_ID,
            experience_id=experience_id,
            slot_id=slot_id,
            guest_count=guests,
        )


@pytest.mark.asyncio
async def test_create_booking_quotes_and_reserves(store: InMemoryStore) -> None:
    experience, slot = _seed(store)
    booking = await _book(store, experience.id, slot.id, 3)

    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.total_price == Decimal("339.00")
    assert booking.service_fee == Decimal("15.00")
    assert booking.taxes == Decimal("24.00")
    assert slot.booked_slots == 3
    assert slot.status == SlotStatus.AVAILABLE

    with pytest.raises(SlotUnavailableError):
        await _book(store, experience.id, slot.id, 2)
    assert slot.booked_slots == 3
    assert len(store.bookings) == 1


@pytest.mark.asyncio
async def test_cancel_returns_seats(store: InMemoryStore) -> None:
    experience, slot = _seed(store)
    booking = await _book(store, experience.id, slot.id, 3)

    cancelled, previous = await uc.cancel_booking(
        store.slot_repo, store.booking_repo, booking_id=booking.id, reason="plans changed"
    )
    assert previous == BookingStatus.PENDING
    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert cancelled.cancellation_reason == "plans changed"
    assert slot.booked_slots == 0
    assert slot.status == SlotStatus.AVAILABLE


@pytest.mark.asyncio
async def test_slot_override_price_is_used(store: InMemoryStore) -> None:
    store.add_user(USER_ID)
    experience = store.add_experience(base_price="100.00")
    slot = store.add_slot(experience.id, price_override=Decimal("50.00"))
    booking = await _book(store, experience.id, slot.id, 2)
    # 100 base + 5 fee + 8 tax
    assert booking.total_price == Decimal("113.00")


@pytest.mark.asyncio
async def test_stored_price_survives_base_price_change(store: InMemoryStore) -> None:
    experience, slot = _seed(store)
    booking = await _book(store, experience.id, slot.id, 1)
    experience.base_price = Decimal("250.00")
    confirmed, _ = await uc.confirm_booking(store.booking_repo, booking_id=booking.id)
    assert confirmed.total_price == Decimal("113.00")


@pytest.mark.asyncio
async def test_create_booking_validation_order(store: InMemoryStore) -> None:
    experience, slot = _seed(store, max_guests=2)
    other = store.add_experience()
    foreign_slot = store.add_slot(other.id)

    with pytest.raises(ValidationError):
        await _book(store, experience.id, slot.id, 0)
    with pytest.raises(NotFoundError):
        await _book(store, 9999, slot.id, 1)
    with pytest.raises(NotFoundError):
        await _book(store, experience.id, 9999, 1)
    with pytest.raises(ValidationError):
        await _book(store, experience.id, foreign_slot.id, 1)
    with pytest.raises(ValidationError):
        await _book(store, experience.id, slot.id, 3)

    store.users.clear()
    with pytest.raises(NotFoundError):
        await _book(store, experience.id, slot.id, 1)
    assert store.bookings == {}
    assert slot.booked_slots == 0


@pytest.mark.asyncio
async def test_blocked_slot_rejects_booking(store: InMemoryStore) -> None:
    store.add_user(USER_ID)
    experience = store.add_experience()
    slot = store.add_slot(experience.id, is_blocked=True)
    with pytest.raises(SlotUnavailableError):
        await _book(store, experience.id, slot.id, 1)


@pytest.mark.asyncio
async def test_lost_reservation_rolls_back_booking(store: InMemoryStore, monkeypatch: pytest.MonkeyPatch) -> None:
    experience, slot = _seed(store)

    async def lose(slot_id: int, guest_count: int) -> bool:
        return False

    monkeypatch.setattr(store.slot_repo, "try_reserve", lose)
    with pytest.raises(CapacityExceededError):
        await _book(store, experience.id, slot.id, 2)
    assert store.bookings == {}
    assert slot.booked_slots == 0


@pytest.mark.asyncio
async def test_concurrent_creates_never_overbook(store: InMemoryStore) -> None:
    experience, slot = _seed(store, max_slots=10)

    results = await asyncio.gather(
        *(_book(store, experience.id, slot.id, 3) for _ in range(8)),
        return_exceptions=True,
    )

    succeeded = [r for r in results if isinstance(r, Booking)]
    failed = [r for r in results if isinstance(r, BaseException)]
    assert len(succeeded) == 3
    assert len(failed) == 5
    assert all(isinstance(exc, CapacityExceededError) for exc in failed)
    assert slot.booked_slots == 9
    assert len(store.bookings) == 3
    assert store.active_guests(slot.id) == slot.booked_slots


@pytest.mark.asyncio
async def test_state_machine(store: InMemoryStore) -> None:
    experience, slot = _seed(store)
    booking = await _book(store, experience.id, slot.id, 2)

    with pytest.raises(InvalidTransitionError):
        await uc.complete_booking(store.booking_repo, booking_id=booking.id)

    confirmed, previous = await uc.confirm_booking(store.booking_repo, booking_id=booking.id)
    assert previous == BookingStatus.PENDING
    assert confirmed.confirmed_at is not None

    with pytest.raises(InvalidTransitionError):
        await uc.confirm_booking(store.booking_repo, booking_id=booking.id)

    completed, previous = await uc.complete_booking(store.booking_repo, booking_id=booking.id)
    assert previous == BookingStatus.CONFIRMED
    assert completed.status == BookingStatus.COMPLETED

    with pytest.raises(InvalidStateError):
        await uc.cancel_booking(store.slot_repo, store.booking_repo, booking_id=booking.id)
    # Completed bookings keep their seats.
    assert slot.booked_slots == 2


@pytest.mark.asyncio
async def test_cancelled_booking_cannot_move_again(store: InMemoryStore) -> None:
    experience, slot = _seed(store)
    booking = await _book(store, experience.id, slot.id, 2)
    await uc.cancel_booking(store.slot_repo, store.booking_repo, booking_id=booking.id)

    with pytest.raises(InvalidTransitionError):
        await uc.confirm_booking(store.booking_repo, booking_id=booking.id)
    with pytest.raises(InvalidStateError):
        await uc.cancel_booking(store.slot_repo, store.booking_repo, booking_id=booking.id)
    assert slot.booked_slots == 0


@pytest.mark.asyncio
async def test_missing_booking_is_not_found(store: InMemoryStore) -> None:
    with pytest.raises(NotFoundError):
        await uc.get_booking(store.booking_repo, booking_id=1)
    with pytest.raises(NotFoundError):
        await uc.confirm_booking(store.booking_repo, booking_id=1)


@pytest.mark.asyncio
async def test_update_to_cancelled_releases_once(store: InMemoryStore) -> None:
    experience, slot = _seed(store)
    other = await _book(store, experience.id, slot.id, 1)
    booking = await _book(store, experience.id, slot.id, 2)
    assert slot.booked_slots == 3

    updated, previous = await uc.update_booking(
        store.slot_repo,
        store.booking_repo,
        store.catalog_repo,
        booking_id=booking.id,
        status=BookingStatus.CANCELLED,
        cancellation_reason="host closed",
    )
    assert previous == BookingStatus.PENDING
    assert updated.cancellation_reason == "host closed"
    assert slot.booked_slots == 1

    # Resubmitting the same status leaves the ledger alone.
    await uc.update_booking(
        store.slot_repo,
        store.booking_repo,
        store.catalog_repo,
        booking_id=booking.id,
        status=BookingStatus.CANCELLED,
    )
    assert slot.booked_slots == 1
    assert store.active_guests(slot.id) == other.guest_count


@pytest.mark.asyncio
async def test_update_rejects_unsupported_target(store: InMemoryStore) -> None:
    experience, slot = _seed(store)
    booking = await _book(store, experience.id, slot.id, 2)
    with pytest.raises(InvalidTransitionError):
        await uc.update_booking(
            store.slot_repo,
            store.booking_repo,
            store.catalog_repo,
            booking_id=booking.id,
            status=BookingStatus.NO_SHOW,
        )
    with pytest.raises(InvalidTransitionError):
        await uc.update_booking(
            store.slot_repo,
            store.booking_repo,
            store.catalog_repo,
            booking_id=booking.id,
            status=BookingStatus.COMPLETED,
        )


@pytest.mark.asyncio
async def test_update_resizes_against_ledger(store: InMemoryStore) -> None:
    experience, slot = _seed(store)
    booking = await _book(store, experience.id, slot.id, 2)

    grown, _ = await uc.update_booking(
        store.slot_repo, store.booking_repo, store.catalog_repo, booking_id=booking.id, guest_count=4
    )
    assert grown.guest_count == 4
    assert slot.booked_slots == 4
    assert slot.status == SlotStatus.BOOKED
    # Price is fixed at creation.
    assert grown.total_price == Decimal("226.00")

    shrunk, _ = await uc.update_booking(
        store.slot_repo, store.booking_repo, store.catalog_repo, booking_id=booking.id, guest_count=1
    )
    assert shrunk.guest_count == 1
    assert slot.booked_slots == 1

    with pytest.raises(ValidationError):
        await uc.update_booking(
            store.slot_repo, store.booking_repo, store.catalog_repo, booking_id=booking.id, guest_count=5
        )
    assert store.active_guests(slot.id) == slot.booked_slots


@pytest.mark.asyncio
async def test_update_grow_beyond_capacity_fails(store: InMemoryStore) -> None:
    experience, slot = _seed(store)
    await _book(store, experience.id, slot.id, 2)
    booking = await _book(store, experience.id, slot.id, 2)
    with pytest.raises(CapacityExceededError):
        async with store.transaction():
            await uc.update_booking(
                store.slot_repo, store.booking_repo, store.catalog_repo, booking_id=booking.id, guest_count=3
            )
    assert slot.booked_slots == 4


@pytest.mark.asyncio
async def test_update_payment_and_requests(store: InMemoryStore) -> None:
    experience, slot = _seed(store)
    booking = await _book(store, experience.id, slot.id, 2)
    updated, previous = await uc.update_booking(
        store.slot_repo,
        store.booking_repo,
        store.catalog_repo,
        booking_id=booking.id,
        payment_status=PaymentStatus.PAID,
        special_requests="window seat",
    )
    assert previous == BookingStatus.PENDING
    assert updated.status == BookingStatus.PENDING
    assert updated.payment_status == PaymentStatus.PAID
    assert updated.special_requests == "window seat"


@pytest.mark.asyncio
async def test_listing_and_stats(store: InMemoryStore) -> None:
    store.add_user(USER_ID)
    mine = store.add_experience(host_id=500)
    theirs = store.add_experience(host_id=600)
    mine_slot = store.add_slot(mine.id)
    theirs_slot = store.add_slot(theirs.id)

    paid = await _book(store, mine.id, mine_slot.id, 1)
    await uc.update_booking(
        store.slot_repo,
        store.booking_repo,
        store.catalog_repo,
        booking_id=paid.id,
        payment_status=PaymentStatus.PAID,
    )
    cancelled = await _book(store, mine.id, mine_slot.id, 2)
    await uc.cancel_booking(store.slot_repo, store.booking_repo, booking_id=cancelled.id)
    await _book(store, theirs.id, theirs_slot.id, 2)

    host_rows = await uc.list_host_bookings(store.booking_repo, host_id=500)
    assert {b.id for b in host_rows} == {paid.id, cancelled.id}

    user_rows = await uc.list_user_bookings(store.booking_repo, user_id=USER_ID)
    assert len(user_rows) == 3

    only_cancelled = await uc.list_bookings(store.booking_repo, status=BookingStatus.CANCELLED)
    assert [b.id for b in only_cancelled] == [cancelled.id]

    stats = await uc.get_booking_stats(store.booking_repo, host_id=500)
    assert stats["total_bookings"] == 2
    assert stats["status_counts"] == {"pending": 1, "cancelled": 1}
    assert stats["total_revenue"] == Decimal("113.00")

    everything = await uc.get_booking_stats(store.booking_repo)
    assert everything["total_bookings"] == 3
    assert everything["total_revenue"] == Decimal("113.00")


@pytest.mark.asyncio
async def test_seats_are_taken_before_booking_insert(store: InMemoryStore, monkeypatch: pytest.MonkeyPatch) -> None:
    experience, slot = _seed(store)
    calls: list[str] = []
    original_reserve = store.slot_repo.try_reserve
    original_create = store.booking_repo.create

    async def recording_reserve(slot_id: int, guest_count: int) -> bool:
        calls.append("try_reserve")
        return await original_reserve(slot_id, guest_count)

    async def recording_create(**kwargs: Any) -> Booking:
        calls.append("create")
        return await original_create(**kwargs)

    monkeypatch.setattr(store.slot_repo, "try_reserve", recording_reserve)
    monkeypatch.setattr(store.booking_repo, "create", recording_create)

    await _book(store, experience.id, slot.id, 2)
    assert calls == ["try_reserve", "create"]


@pytest.mark.asyncio
async def test_lost_reservation_never_inserts(store: InMemoryStore, monkeypatch: pytest.MonkeyPatch) -> None:
    experience, slot = _seed(store)
    inserts: list[dict[str, Any]] = []

    async def lose(slot_id: int, guest_count: int) -> bool:
        return False

    async def recording_create(**kwargs: Any) -> Booking:
        inserts.append(kwargs)
        raise AssertionError("booking inserted after a lost reservation")

    monkeypatch.setattr(store.slot_repo, "try_reserve", lose)
    monkeypatch.setattr(store.booking_repo, "create", recording_create)

    with pytest.raises(CapacityExceededError):
        await _book(store, experience.id, slot.id, 2)
    assert inserts == []


@pytest.mark.asyncio
async def test_failed_insert_gives_seats_back(store: InMemoryStore, monkeypatch: pytest.MonkeyPatch) -> None:
    experience, slot = _seed(store)

    async def broken_create(**kwargs: Any) -> Booking:
        raise RuntimeError("insert failed")

    monkeypatch.setattr(store.booking_repo, "create", broken_create)
    with pytest.raises(RuntimeError):
        await _book(store, experience.id, slot.id, 3)
    assert slot.booked_slots == 0
    assert store.bookings == {}
