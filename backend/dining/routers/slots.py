from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session
from ..domain.errors import DomainError
from ..infrastructure.repositories import SqlAlchemyCatalogRepository, SqlAlchemySlotRepository
from ..models import SlotStatus
from ..schemas import AvailabilityCheck, SlotBulkCreate, SlotCreate, SlotPage, SlotRead, SlotUpdate
from ..usecases import slots as slot_usecase
from .errors import to_http_exception

router = APIRouter(prefix="/availability", tags=["availability"])


@router.post("", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    session: AsyncSession = Depends(get_session),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    catalog_repo = SqlAlchemyCatalogRepository(session)
    async with session.begin():
        try:
            slot = await slot_usecase.create_slot(
                slot_repo,
                catalog_repo,
                experience_id=payload.experience_id,
                slot_date=payload.date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                max_slots=payload.max_slots,
                price_override=payload.price_override,
                notes=payload.notes,
                status=payload.status,
            )
        except DomainError as exc:
            raise to_http_exception(exc)
        except IntegrityError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slot already exists")
    return SlotRead.from_db(slot=slot)


@router.post("/bulk", response_model=List[SlotRead], status_code=status.HTTP_201_CREATED)
async def create_slots_bulk(
    payload: SlotBulkCreate,
    session: AsyncSession = Depends(get_session),
) -> list[SlotRead]:
    slot_repo = SqlAlchemySlotRepository(session)
    catalog_repo = SqlAlchemyCatalogRepository(session)
    async with session.begin():
        try:
            slots = await slot_usecase.create_slots_bulk(
                slot_repo,
                catalog_repo,
                experience_id=payload.experience_id,
                start_date=payload.start_date,
                end_date=payload.end_date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                max_slots=payload.max_slots,
                price_override=payload.price_override,
                exclude_days=payload.exclude_days,
            )
        except DomainError as exc:
            raise to_http_exception(exc)
        except IntegrityError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slot already exists")
    return [SlotRead.from_db(slot=slot) for slot in slots]


@router.get("", response_model=SlotPage)
async def list_slots(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    experience_id: Optional[int] = Query(default=None),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    slot_status: Optional[SlotStatus] = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_session),
) -> SlotPage:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        result = await slot_usecase.list_slots(
            slot_repo,
            experience_id=experience_id,
            start_date=start_date,
            end_date=end_date,
            status=slot_status,
            page=page,
            limit=limit,
        )
    except DomainError as exc:
        raise to_http_exception(exc)
    return SlotPage(
        items=[SlotRead.from_db(slot=slot) for slot in result["items"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
    )


@router.get("/experience/{experience_id}", response_model=List[SlotRead])
async def list_experience_slots(
    experience_id: int = Path(..., ge=1),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[SlotRead]:
    slot_repo = SqlAlchemySlotRepository(session)
    slots = await slot_usecase.list_slots_for_experience(
        slot_repo,
        experience_id=experience_id,
        start_date=start_date,
        end_date=end_date,
    )
    return [SlotRead.from_db(slot=slot) for slot in slots]


@router.get("/{slot_id}", response_model=SlotRead)
async def get_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        slot = await slot_usecase.get_slot(slot_repo, slot_id=slot_id)
    except DomainError as exc:
        raise to_http_exception(exc)
    return SlotRead.from_db(slot=slot)


@router.get("/{slot_id}/check/{guest_count}", response_model=AvailabilityCheck)
async def check_availability(
    slot_id: int = Path(..., ge=1),
    guest_count: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> AvailabilityCheck:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        available = await slot_usecase.check_availability(slot_repo, slot_id=slot_id, guest_count=guest_count)
    except DomainError as exc:
        raise to_http_exception(exc)
    return AvailabilityCheck(slot_id=slot_id, guest_count=guest_count, available=available)


@router.patch("/{slot_id}", response_model=SlotRead)
async def update_slot(
    payload: SlotUpdate,
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    changes = payload.model_dump(exclude_unset=True)
    if "date" in changes:
        changes["slot_date"] = changes.pop("date")
    async with session.begin():
        try:
            slot = await slot_usecase.update_slot(slot_repo, slot_id=slot_id, **changes)
        except DomainError as exc:
            raise to_http_exception(exc)
        except IntegrityError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slot already exists")
    return SlotRead.from_db(slot=slot)


@router.delete("/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_slot(
    slot_id: int = Path(..., ge=1),
    session: AsyncSession = Depends(get_session),
) -> Response:
    slot_repo = SqlAlchemySlotRepository(session)
    async with session.begin():
        try:
            await slot_usecase.delete_slot(slot_repo, slot_id=slot_id)
        except DomainError as exc:
            raise to_http_exception(exc)
        except IntegrityError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slot is referenced by bookings")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
