import logging
from datetime import date, time
from decimal import Decimal
from typing import Any, Iterable

from ..domain.errors import CapacityExceededError, ConflictError, NotFoundError, ValidationError
from ..domain.repositories import CatalogRepository, SlotRepository
from ..domain.services import SlotSnapshot, has_capacity, validate_time_range
from ..models import Slot, SlotStatus
from ..utils.time import WEEKDAYS, iter_dates, weekday_name

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def snapshot_of(slot: Slot) -> SlotSnapshot:
    return SlotSnapshot(status=slot.status, max_slots=slot.max_slots, booked_slots=slot.booked_slots)


async def get_slot(slot_repo: SlotRepository, *, slot_id: int) -> Slot:
    slot = await slot_repo.get(slot_id)
    if slot is None:
        raise NotFoundError("slot not found")
    return slot


async def check_availability(slot_repo: SlotRepository, *, slot_id: int, guest_count: int) -> bool:
    slot = await get_slot(slot_repo, slot_id=slot_id)
    return has_capacity(snapshot_of(slot), guest_count=guest_count)


async def reserve(slot_repo: SlotRepository, *, slot_id: int, guest_count: int) -> Slot:
    """
    Debit `guest_count` seats from the slot in one conditional update.

    Callers usually run `check_availability` first; that read is advisory
    only. The decision is taken again by the update itself, so two racing
    callers cannot both pass when their combined guests exceed capacity.
    """
    if guest_count <= 0:
        raise ValidationError("guest_count must be positive")
    await get_slot(slot_repo, slot_id=slot_id)
    if not await slot_repo.try_reserve(slot_id, guest_count):
        logger.warning("reserve rejected slot_id=%s guest_count=%s", slot_id, guest_count)
        raise CapacityExceededError("slot is no longer available")
    slot = await get_slot(slot_repo, slot_id=slot_id)
    logger.info(
        "reserved slot_id=%s guest_count=%s booked=%s/%s",
        slot_id,
        guest_count,
        slot.booked_slots,
        slot.max_slots,
    )
    return slot


async def release(slot_repo: SlotRepository, *, slot_id: int, guest_count: int) -> Slot:
    """Give seats back; the counter is clamped at zero."""
    await get_slot(slot_repo, slot_id=slot_id)
    slot = await slot_repo.release(slot_id, guest_count)
    if slot is None:
        raise NotFoundError("slot not found")
    logger.info(
        "released slot_id=%s guest_count=%s booked=%s/%s",
        slot_id,
        guest_count,
        slot.booked_slots,
        slot.max_slots,
    )
    return slot


async def create_slot(
    slot_repo: SlotRepository,
    catalog_repo: CatalogRepository,
    *,
    experience_id: int,
    slot_date: date,
    start_time: time,
    end_time: time,
    max_slots: int,
    price_override: Decimal | None = None,
    notes: str | None = None,
    status: SlotStatus = SlotStatus.AVAILABLE,
) -> Slot:
    if await catalog_repo.get_experience(experience_id) is None:
        raise NotFoundError("experience not found")
    validate_time_range(start_time, end_time)
    if max_slots < 1:
        raise ValidationError("max_slots must be >= 1")
    if status == SlotStatus.BOOKED:
        raise ValidationError("booked status is derived from capacity")
    if await slot_repo.find_by_start(experience_id, slot_date, start_time) is not None:
        raise ConflictError("availability slot already exists for this time")
    return await slot_repo.create(
        experience_id=experience_id,
        slot_date=slot_date,
        start_time=start_time,
        end_time=end_time,
        max_slots=max_slots,
        price_override=price_override,
        notes=notes,
        is_blocked=status == SlotStatus.BLOCKED,
    )


async def create_slots_bulk(
    slot_repo: SlotRepository,
    catalog_repo: CatalogRepository,
    *,
    experience_id: int,
    start_date: date,
    end_date: date,
    start_time: time,
    end_time: time,
    max_slots: int,
    price_override: Decimal | None = None,
    exclude_days: Iterable[str] = (),
) -> list[Slot]:
    """
    Generate one slot per day between `start_date` and `end_date` inclusive.
    Days named in `exclude_days` are skipped, and so are days that already
    have a slot at `start_time`.
    """
    if await catalog_repo.get_experience(experience_id) is None:
        raise NotFoundError("experience not found")
    if start_date > end_date:
        raise ValidationError("start_date must not be after end_date")
    validate_time_range(start_time, end_time)
    if max_slots < 1:
        raise ValidationError("max_slots must be >= 1")

    excluded = {day.strip().lower() for day in exclude_days}
    unknown = excluded.difference(WEEKDAYS)
    if unknown:
        raise ValidationError(f"unknown weekday names: {', '.join(sorted(unknown))}")

    existing = await slot_repo.existing_dates(experience_id, start_date, end_date, start_time)
    dates = [
        day
        for day in iter_dates(start_date, end_date)
        if weekday_name(day) not in excluded and day not in existing
    ]
    if not dates:
        raise ValidationError("no new availability slots to create")

    slots = await slot_repo.create_many(
        experience_id=experience_id,
        dates=dates,
        start_time=start_time,
        end_time=end_time,
        max_slots=max_slots,
        price_override=price_override,
    )
    logger.info(
        "bulk created %s slots experience_id=%s range=%s..%s skipped_existing=%s",
        len(slots),
        experience_id,
        start_date,
        end_date,
        len(existing),
    )
    return slots


async def update_slot(
    slot_repo: SlotRepository,
    *,
    slot_id: int,
    slot_date: date | None = None,
    start_time: time | None = None,
    end_time: time | None = None,
    max_slots: int | None = None,
    price_override: Decimal | None = _UNSET,
    notes: str | None = _UNSET,
    status: SlotStatus | None = None,
) -> Slot:
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise NotFoundError("slot not found")

    new_date = slot_date if slot_date is not None else slot.date
    new_start = start_time if start_time is not None else slot.start_time
    new_end = end_time if end_time is not None else slot.end_time
    validate_time_range(new_start, new_end)

    if (new_date, new_start) != (slot.date, slot.start_time):
        clash = await slot_repo.find_by_start(slot.experience_id, new_date, new_start)
        if clash is not None and clash.id != slot.id:
            raise ConflictError("availability slot already exists for this time")

    if max_slots is not None:
        if max_slots < 1:
            raise ValidationError("max_slots must be >= 1")
        if max_slots < slot.booked_slots:
            raise ValidationError("max_slots cannot be lower than the seats already booked")
        slot.max_slots = max_slots

    if status == SlotStatus.BOOKED:
        raise ValidationError("booked status is derived from capacity")
    if status is not None:
        slot.is_blocked = status == SlotStatus.BLOCKED

    slot.date = new_date
    slot.start_time = new_start
    slot.end_time = new_end
    if price_override is not _UNSET:
        slot.price_override = price_override
    if notes is not _UNSET:
        slot.notes = notes
    return await slot_repo.save(slot)


async def delete_slot(slot_repo: SlotRepository, *, slot_id: int) -> None:
    slot = await slot_repo.get_for_update(slot_id)
    if slot is None:
        raise NotFoundError("slot not found")
    if slot.booked_slots > 0:
        raise ValidationError("cannot delete availability with existing bookings")
    await slot_repo.delete(slot)


async def list_slots(
    slot_repo: SlotRepository,
    *,
    experience_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    status: SlotStatus | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be >= 1")
    items, total = await slot_repo.search(
        experience_id=experience_id,
        start_date=start_date,
        end_date=end_date,
        status=status,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return {"items": items, "total": total, "page": page, "limit": limit}


async def list_slots_for_experience(
    slot_repo: SlotRepository,
    *,
    experience_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Slot]:
    items, _ = await slot_repo.search(
        experience_id=experience_id,
        start_date=start_date,
        end_date=end_date,
        status=None,
        offset=0,
        limit=None,
    )
    return items
