from app.models.choices.choice_models import (
    ChoiceItem, ChoiceItemType, ChoiceSelection, ChoiceSelectionLine
)
from app.models.trips.trip_member import TripMember, TripRole
from app.models.user.user import User
from app.schemas.choices.choice import SelectionLineIn
from app.services.choices.choice_service import ensure_no_participation_item
from app.services.choices.respondents import classify_respondents, get_respondents
from app.services.choices.selection_service import set_selection_note, submit_selection

PIZZA = ChoiceItem(id=1, name="Pizza", type=ChoiceItemType.NORMAL)
OPT_OUT = ChoiceItem(id=2, name="Not participating", type=ChoiceItemType.NO_PARTICIPATION)


def member(user_id):
    return TripMember(
        user_id=user_id,
        role=TripRole.MEMBER,
        user=User(id=user_id, username=f"user{user_id}", email=f"user{user_id}@example.com"),
    )


def selection(user_id, *items):
    return ChoiceSelection(
        user_id=user_id,
        lines=[ChoiceSelectionLine(item=item, item_id=item.id, quantity=1) for item in items],
    )


def test_partition_covers_roster_exactly_once():
    roster = [member(i) for i in (1, 2, 3, 4)]
    result = classify_respondents(roster, [
        selection(1, PIZZA),
        selection(2, OPT_OUT),
        selection(4),
        selection(99, PIZZA),  # left the trip
    ])

    assert result.responded_user_ids == [1]
    assert result.opted_out_user_ids == [2]
    assert result.pending_user_ids == [3, 4]
    everyone = result.responded_user_ids + result.opted_out_user_ids + result.pending_user_ids
    assert sorted(everyone) == [1, 2, 3, 4]


def test_respondents_carry_display_details():
    result = classify_respondents([member(7)], [])
    assert result.pending[0].display_name == "user7"
    assert result.pending[0].email == "user7@example.com"


async def test_respondents_from_database(session_factory, trip, menu):
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.alice, [SelectionLineIn(item_id=menu.pizza, quantity=1)])
    async with session_factory() as s:
        opt_out = await ensure_no_participation_item(s, menu.id, trip.bob)
        opt_out_id = opt_out.id
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.bob, [SelectionLineIn(item_id=opt_out_id, quantity=1)])
    async with session_factory() as s:
        await set_selection_note(s, menu.id, trip.mallory, "not on the trip")

    async with session_factory() as s:
        result = await get_respondents(s, menu.id)

    assert result.responded_user_ids == [trip.alice]
    assert result.opted_out_user_ids == [trip.bob]
    assert result.pending_user_ids == [trip.olivia, trip.carol]
    assert [r.display_name for r in result.opted_out] == ["bob"]
