from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.cache import RedisCache
from app.core.exceptions import (
    ChoiceItemNotFoundError, ChoiceNotFoundError, ChoiceStateError,
    DuplicateNoParticipationError
)
from app.core.logger import logger
from app.models.audit.event_log import EventType
from app.models.choices.choice_models import (
    Choice, ChoiceActivity, ChoiceItem, ChoiceItemType, ChoiceSelection,
    ChoiceStatus, NO_PARTICIPATION_NAME
)
from app.models.expense.expense_models import Expense
from app.schemas.choices.activity import (
    ChoiceActivityResponse, ChoiceArchivedPayload, ChoiceCreatedPayload,
    ChoiceRestoredPayload, ChoiceStatusPayload, ChoiceUpdatedPayload,
    ItemCreatedPayload, ItemDeactivatedPayload, ItemUpdatedPayload
)
from app.schemas.choices.choice import (
    BulkChoiceItem, ChoiceCreate, ChoiceItemCreate,
    ChoiceItemUpdate, ChoiceResponse, ChoiceStatusUpdate,
    ChoiceSummary, ChoiceUpdate
)
from app.schemas.expense.expense import LinkedSpendResponse
from app.services.audit.event_log import log_event, record_activity, to_activity_response
from app.services.choices.report_service import drop_choice_reports, invalidate_choice_reports
from app.services.trips.trip_member_service import get_membership
from app.utils.normalize import minor_to_money, to_money, utcnow


# ----------------------
# Helpers
# ----------------------
async def get_choice_or_404(session: AsyncSession, choice_id: int) -> Choice:
    choice = await session.get(Choice, choice_id)
    if choice is None:
        raise ChoiceNotFoundError(choice_id)
    return choice


async def get_choice_item_or_404(session: AsyncSession, item_id: int) -> ChoiceItem:
    result = await session.execute(
        select(ChoiceItem).options(selectinload(ChoiceItem.choice)).where(ChoiceItem.id == item_id)
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise ChoiceItemNotFoundError(item_id)
    return item


def ensure_not_archived(choice: Choice) -> None:
    if choice.is_archived:
        raise ChoiceStateError("Cannot update archived choice")


async def can_manage_choice(session: AsyncSession, user_id: int, choice: Choice) -> bool:
    """Creator, or a trip owner/cohost."""
    if choice.created_by == user_id:
        return True
    membership = await get_membership(session, choice.trip_id, user_id)
    return membership is not None and membership.is_organiser


def _changes(data) -> dict:
    return data.model_dump(mode="json", exclude_unset=True)


def _apply_changes(obj, data, required=()) -> None:
    """Copy the fields the caller sent; None is ignored for NOT NULL columns."""
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None and field in required:
            continue
        setattr(obj, field, value)


# ----------------------
# Choice CRUD
# ----------------------
async def create_choice(
    session: AsyncSession,
    trip_id: int,
    data: ChoiceCreate,
    user_id: int
) -> Choice:
    try:
        choice = Choice(
            trip_id=trip_id,
            created_by=user_id,
            status=ChoiceStatus.OPEN,
            **data.model_dump()
        )
        session.add(choice)
        await session.flush()

        await log_event(session, "Choice", choice.id, EventType.CHOICE_CREATED, user_id, {
            "trip_id": trip_id,
            "name": data.name,
        })
        await record_activity(session, choice.id, user_id, ChoiceCreatedPayload(name=data.name))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Choice {choice.id} created in trip {trip_id} by user {user_id}")
    return choice


async def update_choice(
    session: AsyncSession,
    choice_id: int,
    data: ChoiceUpdate,
    user_id: int
) -> Choice:
    try:
        choice = await get_choice_or_404(session, choice_id)
        ensure_not_archived(choice)

        _apply_changes(choice, data, required=("name", "visibility"))
        choice.updated_at = utcnow()

        await log_event(session, "Choice", choice_id, EventType.CHOICE_UPDATED, user_id, {
            "trip_id": choice.trip_id,
            "changes": _changes(data),
        })
        await record_activity(session, choice_id, user_id, ChoiceUpdatedPayload(changes=_changes(data)))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Choice {choice_id} updated by user {user_id}")
    return choice


async def set_choice_status(
    session: AsyncSession,
    choice_id: int,
    data: ChoiceStatusUpdate,
    user_id: int
) -> Choice:
    """Open or close a choice. The deadline changes only when it is sent."""
    try:
        choice = await get_choice_or_404(session, choice_id)
        ensure_not_archived(choice)

        choice.status = data.status
        if "deadline" in data.model_fields_set:
            choice.deadline = data.deadline
        choice.updated_at = utcnow()

        closing = data.status == ChoiceStatus.CLOSED
        await log_event(
            session, "Choice", choice_id,
            EventType.CHOICE_CLOSED if closing else EventType.CHOICE_REOPENED,
            user_id,
            {
                "trip_id": choice.trip_id,
                "status": data.status.value,
                "deadline": choice.deadline.isoformat() if choice.deadline else None,
            },
        )
        await record_activity(session, choice_id, user_id, ChoiceStatusPayload(
            action="closed" if closing else "reopened",
            status=data.status,
            deadline=choice.deadline,
        ))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Choice {choice_id} set to {data.status.value} by user {user_id}")
    return choice


async def archive_choice(session: AsyncSession, choice_id: int, user_id: int) -> Choice:
    try:
        choice = await get_choice_or_404(session, choice_id)
        if choice.is_archived:
            raise ChoiceStateError("Choice is already archived")

        choice.archived_at = utcnow()
        await log_event(session, "Choice", choice_id, EventType.CHOICE_ARCHIVED, user_id, {
            "trip_id": choice.trip_id,
        })
        await record_activity(session, choice_id, user_id, ChoiceArchivedPayload())
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Choice {choice_id} archived by user {user_id}")
    return choice


async def restore_choice(session: AsyncSession, choice_id: int, user_id: int) -> Choice:
    try:
        choice = await get_choice_or_404(session, choice_id)
        if not choice.is_archived:
            raise ChoiceStateError("Choice is not archived")

        choice.archived_at = None
        await log_event(session, "Choice", choice_id, EventType.CHOICE_RESTORED, user_id, {
            "trip_id": choice.trip_id,
        })
        await record_activity(session, choice_id, user_id, ChoiceRestoredPayload())
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Choice {choice_id} restored by user {user_id}")
    return choice


async def delete_choice(
    session: AsyncSession,
    choice_id: int,
    user_id: int,
    cache: Optional[RedisCache] = None
) -> bool:
    """Hard delete; items, selections, lines and activity go with it."""
    try:
        choice = await get_choice_or_404(session, choice_id)

        # the row is gone afterwards, so the audit entry keeps the name
        await log_event(session, "Choice", choice_id, EventType.CHOICE_DELETED, user_id, {
            "trip_id": choice.trip_id,
            "name": choice.name,
        })
        await session.delete(choice)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await drop_choice_reports(cache, choice_id)
    logger.info(f"Choice {choice_id} deleted by user {user_id}")
    return True


async def list_trip_choices(
    session: AsyncSession,
    trip_id: int,
    include_closed: bool = True,
    include_archived: bool = False
) -> List[ChoiceSummary]:
    item_count = (
        select(func.count(ChoiceItem.id))
        .where(ChoiceItem.choice_id == Choice.id)
        .correlate(Choice)
        .scalar_subquery()
    )
    selection_count = (
        select(func.count(ChoiceSelection.id))
        .where(ChoiceSelection.choice_id == Choice.id)
        .correlate(Choice)
        .scalar_subquery()
    )
    query = select(Choice, item_count, selection_count).where(Choice.trip_id == trip_id)
    if not include_archived:
        query = query.where(Choice.archived_at.is_(None))
    if not include_closed:
        query = query.where(Choice.status == ChoiceStatus.OPEN)
    query = query.order_by(
        Choice.event_datetime.is_(None),
        Choice.event_datetime.asc(),
        Choice.created_at.desc(),
        Choice.id.desc(),
    )

    result = await session.execute(query)
    return [
        ChoiceSummary(
            **ChoiceResponse.model_validate(choice).model_dump(),
            item_count=items or 0,
            selection_count=selections or 0,
        )
        for choice, items, selections in result.all()
    ]


# ----------------------
# Items
# ----------------------
async def _add_item(session: AsyncSession, choice: Choice, item: ChoiceItem) -> ChoiceItem:
    """Insert one item; the partial unique index backs the opt-out singleton."""
    if item.type == ChoiceItemType.NO_PARTICIPATION:
        existing = await _find_no_participation_item(session, choice.id)
        if existing is not None:
            raise DuplicateNoParticipationError(choice.id)
    try:
        async with session.begin_nested():
            session.add(item)
    except IntegrityError:
        if item.type != ChoiceItemType.NO_PARTICIPATION:
            raise
        raise DuplicateNoParticipationError(choice.id) from None
    return item


async def create_choice_item(
    session: AsyncSession,
    choice_id: int,
    data: ChoiceItemCreate,
    user_id: int,
    cache: Optional[RedisCache] = None
) -> ChoiceItem:
    try:
        choice = await get_choice_or_404(session, choice_id)
        ensure_not_archived(choice)

        values = data.model_dump()
        values["price"] = to_money(values["price"])
        item = await _add_item(session, choice, ChoiceItem(choice_id=choice_id, **values))

        await log_event(session, "ChoiceItem", item.id, EventType.CHOICE_ITEM_CREATED, user_id, {
            "trip_id": choice.trip_id,
            "choice_id": choice_id,
            "name": item.name,
        })
        await record_activity(session, choice_id, user_id, ItemCreatedPayload(
            item_ids=[item.id], names=[item.name]
        ))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await invalidate_choice_reports(cache, choice_id)
    logger.info(f"Item {item.id} ({item.type.value}) added to choice {choice_id} by user {user_id}")
    return item


async def bulk_create_choice_items(
    session: AsyncSession,
    choice_id: int,
    entries: List[BulkChoiceItem],
    user_id: int,
    cache: Optional[RedisCache] = None
) -> List[ChoiceItem]:
    """Create many normal items at once (menu import), all or nothing."""
    try:
        choice = await get_choice_or_404(session, choice_id)
        ensure_not_archived(choice)

        items = []
        for entry in entries:
            values = entry.model_dump(exclude={"price_minor"})
            if entry.price_minor is not None:
                values["price"] = minor_to_money(entry.price_minor)
            else:
                values["price"] = to_money(values["price"])
            item = ChoiceItem(choice_id=choice_id, type=ChoiceItemType.NORMAL, **values)
            session.add(item)
            items.append(item)
        await session.flush()

        for item in items:
            await log_event(session, "ChoiceItem", item.id, EventType.CHOICE_ITEM_CREATED, user_id, {
                "trip_id": choice.trip_id,
                "choice_id": choice_id,
                "name": item.name,
                "bulk": True,
            })
        await record_activity(session, choice_id, user_id, ItemCreatedPayload(
            item_ids=[i.id for i in items], names=[i.name for i in items]
        ))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await invalidate_choice_reports(cache, choice_id)
    logger.info(f"{len(items)} items bulk-added to choice {choice_id} by user {user_id}")
    return items


async def update_choice_item(
    session: AsyncSession,
    item_id: int,
    data: ChoiceItemUpdate,
    user_id: int,
    cache: Optional[RedisCache] = None
) -> ChoiceItem:
    try:
        item = await get_choice_item_or_404(session, item_id)
        ensure_not_archived(item.choice)

        _apply_changes(item, data, required=("name", "sort_index", "is_active"))
        if "price" in data.model_fields_set:
            item.price = to_money(data.price)

        await log_event(session, "ChoiceItem", item_id, EventType.CHOICE_ITEM_UPDATED, user_id, {
            "trip_id": item.choice.trip_id,
            "changes": _changes(data),
        })
        await record_activity(session, item.choice_id, user_id, ItemUpdatedPayload(
            item_id=item_id, changes=_changes(data)
        ))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await invalidate_choice_reports(cache, item.choice_id)
    logger.info(f"Item {item_id} updated by user {user_id}")
    return item


async def deactivate_choice_item(
    session: AsyncSession,
    item_id: int,
    user_id: int,
    cache: Optional[RedisCache] = None
) -> ChoiceItem:
    """Hide an item from new picks; existing lines stay in the reports."""
    try:
        item = await get_choice_item_or_404(session, item_id)
        ensure_not_archived(item.choice)

        item.is_active = False
        await log_event(session, "ChoiceItem", item_id, EventType.CHOICE_ITEM_DEACTIVATED, user_id, {
            "trip_id": item.choice.trip_id,
            "name": item.name,
        })
        await record_activity(session, item.choice_id, user_id, ItemDeactivatedPayload(
            item_id=item_id, name=item.name
        ))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await invalidate_choice_reports(cache, item.choice_id)
    logger.info(f"Item {item_id} deactivated by user {user_id}")
    return item


async def _find_no_participation_item(session: AsyncSession, choice_id: int) -> Optional[ChoiceItem]:
    result = await session.execute(
        select(ChoiceItem).where(
            ChoiceItem.choice_id == choice_id,
            ChoiceItem.type == ChoiceItemType.NO_PARTICIPATION,
        )
    )
    return result.scalar_one_or_none()


async def ensure_no_participation_item(
    session: AsyncSession,
    choice_id: int,
    user_id: int,
    cache: Optional[RedisCache] = None
) -> ChoiceItem:
    """Return the choice's opt-out item, creating it on first use."""
    choice = await get_choice_or_404(session, choice_id)
    existing = await _find_no_participation_item(session, choice_id)
    if existing is not None:
        return existing

    ensure_not_archived(choice)
    try:
        return await create_choice_item(
            session,
            choice_id,
            ChoiceItemCreate(name=NO_PARTICIPATION_NAME, type=ChoiceItemType.NO_PARTICIPATION),
            user_id,
            cache,
        )
    except DuplicateNoParticipationError:
        # another request created it first
        existing = await _find_no_participation_item(session, choice_id)
        if existing is None:
            raise
        return existing


async def get_choice_items(session: AsyncSession, choice_id: int) -> List[ChoiceItem]:
    """All items, inactive ones included, in menu order."""
    await get_choice_or_404(session, choice_id)
    result = await session.execute(
        select(ChoiceItem)
        .where(ChoiceItem.choice_id == choice_id)
        .order_by(ChoiceItem.sort_index, ChoiceItem.id)
    )
    return result.scalars().all()


# ----------------------
# Reads
# ----------------------
async def get_choice_activity(session: AsyncSession, choice_id: int) -> List[ChoiceActivityResponse]:
    await get_choice_or_404(session, choice_id)
    result = await session.execute(
        select(ChoiceActivity)
        .where(ChoiceActivity.choice_id == choice_id)
        .order_by(ChoiceActivity.created_at.desc(), ChoiceActivity.id.desc())
    )
    return [to_activity_response(activity) for activity in result.scalars().all()]


async def get_linked_spend(session: AsyncSession, choice_id: int) -> LinkedSpendResponse:
    """Most recent expense created from this choice, if it still exists."""
    await get_choice_or_404(session, choice_id)
    result = await session.execute(
        select(ChoiceActivity)
        .where(ChoiceActivity.choice_id == choice_id, ChoiceActivity.action == "spend_created")
        .order_by(ChoiceActivity.created_at.desc(), ChoiceActivity.id.desc())
        .limit(1)
    )
    activity = result.scalar_one_or_none()
    spend_id = (activity.payload or {}).get("spend_id") if activity else None
    if spend_id is None:
        return LinkedSpendResponse(has_spend=False)

    spend = await session.get(Expense, spend_id)
    if spend is None:
        return LinkedSpendResponse(has_spend=False)
    return LinkedSpendResponse(has_spend=True, spend_id=spend.id)
