from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    CapacityExceededError, ChoiceStateError, ExclusivityViolationError, SelectionNotFoundError
)
from app.models.audit.event_log import EventLog, EventType
from app.models.choices.choice_models import ChoiceActivity, ChoiceSelection, ChoiceSelectionLine, ChoiceStatus
from app.schemas.choices.choice import ChoiceStatusUpdate, SelectionLineIn
from app.services.choices.choice_service import (
    deactivate_choice_item, ensure_no_participation_item, set_choice_status
)
from app.services.choices.selection_service import (
    fetch_selection, get_choice_detail, set_selection_note, submit_selection, withdraw_selection
)


def lines(*pairs):
    return [SelectionLineIn(item_id=item_id, quantity=qty) for item_id, qty in pairs]


async def stored_lines(session_factory, choice_id, user_id):
    async with session_factory() as s:
        selection = await fetch_selection(s, choice_id, user_id)
        if selection is None:
            return None
        return sorted((line.item_id, line.quantity) for line in selection.lines)


async def count(session_factory, model, *where):
    async with session_factory() as s:
        stmt = select(func.count()).select_from(model)
        if where:
            stmt = stmt.where(*where)
        return await s.scalar(stmt)


async def test_submit_returns_priced_lines(session_factory, trip, menu):
    async with session_factory() as s:
        result = await submit_selection(s, menu.id, trip.alice, lines((menu.pizza, 2), (menu.water, 1)))

    assert result.total == Decimal("25.00")
    by_item = {line.item_id: line for line in result.lines}
    assert by_item[menu.pizza].line_price == Decimal("25.00")
    assert by_item[menu.water].unit_price is None
    assert by_item[menu.water].line_price == Decimal("0.00")


async def test_resubmit_replaces_lines(session_factory, trip, menu):
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.alice, lines((menu.pizza, 2), (menu.cola, 1)))
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.alice, lines((menu.cola, 3)))

    assert await stored_lines(session_factory, menu.id, trip.alice) == [(menu.cola, 3)]
    assert await count(session_factory, ChoiceSelection, ChoiceSelection.choice_id == menu.id) == 1


async def test_same_submission_twice_is_stable(session_factory, trip, menu):
    proposal = lines((menu.pizza, 1), (menu.cola, 2))
    for _ in range(2):
        async with session_factory() as s:
            result = await submit_selection(s, menu.id, trip.bob, proposal)

    assert result.total == Decimal("16.50")
    assert await stored_lines(session_factory, menu.id, trip.bob) == sorted([(menu.pizza, 1), (menu.cola, 2)])
    assert await count(session_factory, ChoiceSelectionLine) == 2


async def test_own_previous_quantity_does_not_count_against_stock(session_factory, trip, menu):
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.alice, lines((menu.pizza, 3)))
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.bob, lines((menu.pizza, 2)))
    # 5 of 5 taken; bob lowering and raising back his own share is still fine
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.bob, lines((menu.pizza, 2)))

    async with session_factory() as s:
        with pytest.raises(CapacityExceededError) as exc:
            await submit_selection(s, menu.id, trip.carol, lines((menu.pizza, 1)))
    assert exc.value.current == 5


async def test_rejected_submission_leaves_no_trace(session_factory, trip, menu):
    async with session_factory() as s:
        with pytest.raises(CapacityExceededError):
            await submit_selection(s, menu.id, trip.alice, lines((menu.cola, 1), (menu.pizza, 4)))

    assert await stored_lines(session_factory, menu.id, trip.alice) is None
    assert await count(session_factory, EventLog, EventLog.entity == "ChoiceSelection") == 0
    assert await count(
        session_factory, ChoiceActivity, ChoiceActivity.action == "selection_saved"
    ) == 0


async def test_rejected_resubmission_keeps_previous_lines(session_factory, trip, menu):
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.alice, lines((menu.cola, 1)))
    async with session_factory() as s:
        opt_out = await ensure_no_participation_item(s, menu.id, trip.alice)
        opt_out_id = opt_out.id

    async with session_factory() as s:
        with pytest.raises(ExclusivityViolationError):
            await submit_selection(s, menu.id, trip.alice, lines((menu.cola, 1), (opt_out_id, 1)))

    assert await stored_lines(session_factory, menu.id, trip.alice) == [(menu.cola, 1)]


async def test_closed_choice_rejects_then_reopens(session_factory, trip, menu):
    # Scenario C
    async with session_factory() as s:
        await set_choice_status(s, menu.id, ChoiceStatusUpdate(status=ChoiceStatus.CLOSED), trip.olivia)

    async with session_factory() as s:
        with pytest.raises(ChoiceStateError, match="closed"):
            await submit_selection(s, menu.id, trip.alice, lines((menu.cola, 1)))

    async with session_factory() as s:
        await set_choice_status(s, menu.id, ChoiceStatusUpdate(status=ChoiceStatus.OPEN), trip.olivia)
    async with session_factory() as s:
        result = await submit_selection(s, menu.id, trip.alice, lines((menu.cola, 1)))
    assert result.total == Decimal("2.00")


async def test_submission_is_audited(session_factory, trip, menu):
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.alice, lines((menu.cola, 1)))
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.alice, lines((menu.cola, 2)))

    async with session_factory() as s:
        events = (await s.execute(
            select(EventLog.event_type)
            .where(EventLog.entity == "ChoiceSelection")
            .order_by(EventLog.id)
        )).scalars().all()
    assert events == [EventType.CHOICE_SELECTION_CREATED, EventType.CHOICE_SELECTION_UPDATED]


async def test_withdraw_removes_selection(session_factory, trip, menu):
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.alice, lines((menu.cola, 1)))
    async with session_factory() as s:
        assert await withdraw_selection(s, menu.id, trip.alice) is True

    assert await stored_lines(session_factory, menu.id, trip.alice) is None
    assert await count(session_factory, ChoiceSelectionLine) == 0


async def test_withdraw_without_selection_is_not_found(session_factory, trip, menu):
    async with session_factory() as s:
        with pytest.raises(SelectionNotFoundError):
            await withdraw_selection(s, menu.id, trip.bob)


async def test_note_creates_empty_selection(session_factory, trip, menu):
    async with session_factory() as s:
        assert await set_selection_note(s, menu.id, trip.carol, "No onions please") == "No onions please"

    async with session_factory() as s:
        selection = await fetch_selection(s, menu.id, trip.carol)
        assert selection.note == "No onions please"
        assert selection.lines == []


async def test_note_changes_are_audited(session_factory, trip, menu):
    async with session_factory() as s:
        await set_selection_note(s, menu.id, trip.carol, "No onions please")
    async with session_factory() as s:
        await set_selection_note(s, menu.id, trip.carol, "Extra napkins")

    async with session_factory() as s:
        events = (await s.execute(
            select(EventLog.event_type)
            .where(EventLog.entity == "ChoiceSelection")
            .order_by(EventLog.id)
        )).scalars().all()
        activity = (await s.execute(
            select(ChoiceActivity)
            .where(ChoiceActivity.choice_id == menu.id, ChoiceActivity.action == "selection_note")
            .order_by(ChoiceActivity.id)
        )).scalars().all()

    assert events == [EventType.CHOICE_SELECTION_CREATED, EventType.CHOICE_SELECTION_UPDATED]
    assert [a.payload["is_new"] for a in activity] == [True, False]
    assert activity[-1].payload["note"] == "Extra napkins"


async def test_detail_shows_active_items_and_own_selection(session_factory, trip, menu):
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.alice, lines((menu.pizza, 1), (menu.cola, 1)))
    async with session_factory() as s:
        await deactivate_choice_item(s, menu.cola, trip.olivia)

    async with session_factory() as s:
        detail = await get_choice_detail(s, menu.id, trip.alice)
    assert [item.name for item in detail.items] == ["Pizza", "Tap water"]
    assert detail.my_total == Decimal("14.50")
    assert len(detail.my_selection.lines) == 2

    async with session_factory() as s:
        other = await get_choice_detail(s, menu.id, trip.bob)
    assert other.my_selection is None
    assert other.my_total is None
