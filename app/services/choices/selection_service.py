from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.cache import RedisCache
from app.core.exceptions import (
    ChoiceError, ChoiceNotFoundError, ChoiceStateError, SelectionNotFoundError
)
from app.core.logger import logger
from app.models.audit.event_log import EventType
from app.models.choices.choice_models import (
    Choice, ChoiceItem, ChoiceSelection, ChoiceSelectionLine
)
from app.schemas.choices.activity import (
    SelectionNotePayload, SelectionSavedPayload, SelectionWithdrawnPayload
)
from app.schemas.choices.choice import (
    ChoiceDetail, ChoiceItemResponse, ChoiceResponse, SelectionLineIn,
    SelectionLineOut, SelectionResult
)
from app.services.audit.event_log import log_event, record_activity
from app.services.choices.capacity import ProposedLine, validate_selection
from app.services.choices.choice_service import get_choice_or_404
from app.services.choices.report_service import invalidate_choice_reports
from app.utils.normalize import ZERO, utcnow


# ----------------------
# Loading helpers
# ----------------------
async def _lock_choice(session: AsyncSession, choice_id: int) -> Choice:
    """Fresh copy of the choice, share-locked so it can't close mid-submit."""
    result = await session.execute(
        select(Choice)
        .where(Choice.id == choice_id)
        .with_for_update(read=True)
        .execution_options(populate_existing=True)
    )
    choice = result.scalar_one_or_none()
    if choice is None:
        raise ChoiceNotFoundError(choice_id)
    return choice


async def _lock_items(session: AsyncSession, item_ids: Sequence[int]) -> Dict[int, ChoiceItem]:
    """Row-lock the referenced items, in id order so concurrent callers can't deadlock."""
    if not item_ids:
        return {}
    result = await session.execute(
        select(ChoiceItem)
        .where(ChoiceItem.id.in_(item_ids))
        .order_by(ChoiceItem.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {item.id: item for item in result.scalars().all()}


async def _quantities_held_by_others(
    session: AsyncSession,
    item_ids: Sequence[int],
    user_id: int
) -> Dict[int, int]:
    if not item_ids:
        return {}
    result = await session.execute(
        select(ChoiceSelectionLine.item_id, func.sum(ChoiceSelectionLine.quantity))
        .join(ChoiceSelection, ChoiceSelection.id == ChoiceSelectionLine.selection_id)
        .where(
            ChoiceSelectionLine.item_id.in_(item_ids),
            ChoiceSelection.user_id != user_id,
        )
        .group_by(ChoiceSelectionLine.item_id)
    )
    return {item_id: int(total or 0) for item_id, total in result.all()}


async def fetch_selection(
    session: AsyncSession,
    choice_id: int,
    user_id: int
) -> Optional[ChoiceSelection]:
    result = await session.execute(
        select(ChoiceSelection)
        .options(selectinload(ChoiceSelection.lines).selectinload(ChoiceSelectionLine.item))
        .where(ChoiceSelection.choice_id == choice_id, ChoiceSelection.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _find_selection_for_update(
    session: AsyncSession,
    choice_id: int,
    user_id: int
) -> Optional[ChoiceSelection]:
    result = await session.execute(
        select(ChoiceSelection)
        .where(ChoiceSelection.choice_id == choice_id, ChoiceSelection.user_id == user_id)
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def _get_or_create_selection(
    session: AsyncSession,
    choice_id: int,
    user_id: int,
    note: Optional[str] = None
) -> Tuple[ChoiceSelection, bool]:
    """The (choice, user) row, inserting it if needed.

    A concurrent insert for the same pair trips the unique constraint inside
    the savepoint; the row the other request wrote is then used instead.
    """
    selection = await _find_selection_for_update(session, choice_id, user_id)
    if selection is not None:
        return selection, False

    selection = ChoiceSelection(choice_id=choice_id, user_id=user_id, note=note)
    try:
        async with session.begin_nested():
            session.add(selection)
    except IntegrityError:
        selection = await _find_selection_for_update(session, choice_id, user_id)
        if selection is None:
            raise
        return selection, False
    return selection, True


async def _set_lines(
    session: AsyncSession,
    selection: ChoiceSelection,
    lines: Sequence[ProposedLine]
) -> None:
    """Replace every line of a selection with ``lines``."""
    await session.execute(
        delete(ChoiceSelectionLine).where(ChoiceSelectionLine.selection_id == selection.id)
    )
    for line in lines:
        session.add(ChoiceSelectionLine(
            selection_id=selection.id,
            item_id=line.item_id,
            quantity=line.quantity,
            note=line.note,
        ))
    selection.updated_at = utcnow()
    await session.flush()


# ----------------------
# Serialisation
# ----------------------
def line_total(line: ChoiceSelectionLine) -> Decimal:
    """Quantity times price; an unpriced item counts as zero."""
    price = line.item.price if line.item.price is not None else ZERO
    return price * line.quantity


def to_selection_result(selection: ChoiceSelection) -> SelectionResult:
    lines = [
        SelectionLineOut(
            id=line.id,
            item_id=line.item_id,
            item_name=line.item.name,
            item_type=line.item.type,
            quantity=line.quantity,
            unit_price=line.item.price,
            line_price=line_total(line),
            note=line.note,
        )
        for line in selection.lines
    ]
    return SelectionResult(
        selection_id=selection.id,
        note=selection.note,
        lines=lines,
        total=sum((line.line_price for line in lines), ZERO),
    )


# ----------------------
# Operations
# ----------------------
async def submit_selection(
    session: AsyncSession,
    choice_id: int,
    user_id: int,
    lines: List[SelectionLineIn],
    cache: Optional[RedisCache] = None
) -> SelectionResult:
    """Validate and store ``lines`` as the user's whole selection, atomically.

    Validation reads the item rows under lock and the other members' current
    quantities in the same transaction that rewrites the lines, so two
    submissions can never both claim the last units of a capped item.
    """
    proposal = [ProposedLine(l.item_id, l.quantity, l.note) for l in lines]
    item_ids = sorted({line.item_id for line in proposal})
    try:
        choice = await _lock_choice(session, choice_id)
        items = await _lock_items(session, item_ids)
        held_by_others = await _quantities_held_by_others(session, item_ids, user_id)
        validate_selection(choice, proposal, items, held_by_others, now=utcnow())

        selection, is_new = await _get_or_create_selection(session, choice_id, user_id)
        await _set_lines(session, selection, proposal)

        await log_event(
            session, "ChoiceSelection", selection.id,
            EventType.CHOICE_SELECTION_CREATED if is_new else EventType.CHOICE_SELECTION_UPDATED,
            user_id,
            {"trip_id": choice.trip_id, "choice_id": choice_id, "line_count": len(proposal)},
        )
        await record_activity(session, choice_id, user_id, SelectionSavedPayload(
            user_id=user_id, line_count=len(proposal), is_new=is_new
        ))
        # built before commit so it shows exactly the lines written here
        result = to_selection_result(await fetch_selection(session, choice_id, user_id))
        await session.commit()
    except ChoiceError as exc:
        await session.rollback()
        logger.warning(f"Selection rejected for user {user_id} on choice {choice_id}: {exc.detail}")
        raise
    except Exception:
        await session.rollback()
        raise

    await invalidate_choice_reports(cache, choice_id)
    logger.info(
        f"Selection saved for user {user_id} on choice {choice_id}: "
        f"{len(result.lines)} lines, total {result.total}"
    )
    return result


async def withdraw_selection(
    session: AsyncSession,
    choice_id: int,
    user_id: int,
    cache: Optional[RedisCache] = None
) -> bool:
    """Delete the user's selection and its lines while the choice is open."""
    try:
        choice = await _lock_choice(session, choice_id)
        selection = await _find_selection_for_update(session, choice_id, user_id)
        if selection is None:
            raise SelectionNotFoundError(choice_id, user_id)
        if not choice.is_open:
            raise ChoiceStateError("Choice is closed for modifications")
        if choice.is_archived:
            raise ChoiceStateError("Choice is archived")

        await log_event(session, "ChoiceSelection", selection.id, EventType.CHOICE_SELECTION_DELETED, user_id, {
            "trip_id": choice.trip_id,
            "choice_id": choice_id,
        })
        await record_activity(session, choice_id, user_id, SelectionWithdrawnPayload(user_id=user_id))
        await session.delete(selection)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await invalidate_choice_reports(cache, choice_id)
    logger.info(f"Selection withdrawn by user {user_id} on choice {choice_id}")
    return True


async def set_selection_note(
    session: AsyncSession,
    choice_id: int,
    user_id: int,
    note: Optional[str],
    cache: Optional[RedisCache] = None
) -> Optional[str]:
    """Set the user's overall note, creating an empty selection if needed.

    No lines change, so capacity checks do not apply.
    """
    try:
        choice = await _lock_choice(session, choice_id)
        if choice.is_archived:
            raise ChoiceStateError("Choice is archived")
        if not choice.is_open:
            raise ChoiceStateError("Choice is closed for modifications")

        selection, is_new = await _get_or_create_selection(session, choice_id, user_id, note=note)
        if not is_new:
            selection.note = note
            selection.updated_at = utcnow()

        await log_event(
            session, "ChoiceSelection", selection.id,
            EventType.CHOICE_SELECTION_CREATED if is_new else EventType.CHOICE_SELECTION_UPDATED,
            user_id,
            {"trip_id": choice.trip_id, "choice_id": choice_id, "note": note},
        )
        await record_activity(session, choice_id, user_id, SelectionNotePayload(
            user_id=user_id, note=note, is_new=is_new
        ))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await invalidate_choice_reports(cache, choice_id)
    logger.info(f"Selection note set by user {user_id} on choice {choice_id}")
    return note


async def get_choice_detail(session: AsyncSession, choice_id: int, user_id: int) -> ChoiceDetail:
    """Choice, its active items, and the caller's own selection and total."""
    choice = await get_choice_or_404(session, choice_id)
    result = await session.execute(
        select(ChoiceItem)
        .where(ChoiceItem.choice_id == choice_id, ChoiceItem.is_active.is_(True))
        .order_by(ChoiceItem.sort_index, ChoiceItem.id)
    )
    items = result.scalars().all()

    selection = await fetch_selection(session, choice_id, user_id)
    my_selection = to_selection_result(selection) if selection is not None else None

    return ChoiceDetail(
        choice=ChoiceResponse.model_validate(choice),
        items=[ChoiceItemResponse.model_validate(item) for item in items],
        my_selection=my_selection,
        my_total=my_selection.total if my_selection is not None else None,
    )
