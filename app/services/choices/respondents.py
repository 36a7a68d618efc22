from typing import Dict, List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.choices.choice_models import ChoiceItemType, ChoiceSelection, ChoiceSelectionLine
from app.models.trips.trip_member import TripMember
from app.schemas.choices.choice import Respondent, RespondentsResponse
from app.services.choices.choice_service import get_choice_or_404
from app.services.choices.report_service import is_opted_out
from app.services.trips.trip_member_service import get_trip_roster


def _respondent(member: TripMember) -> Respondent:
    user = member.user
    return Respondent(
        user_id=member.user_id,
        display_name=user.display_name if user else None,
        email=user.email if user else None,
    )


def has_regular_line(selection: ChoiceSelection) -> bool:
    return any(line.item.type != ChoiceItemType.NO_PARTICIPATION for line in selection.lines)


def classify_respondents(
    roster: Sequence[TripMember],
    selections: Sequence[ChoiceSelection]
) -> RespondentsResponse:
    """Partition the trip roster into responded, opted out and pending.

    A member has responded once their selection holds a line on a regular
    item, and has opted out when it holds only the opt-out item. Everyone
    else, including members with an empty selection, is pending. Selections
    by users no longer on the roster are ignored.
    """
    by_user: Dict[int, ChoiceSelection] = {s.user_id: s for s in selections}
    responded: List[Respondent] = []
    opted_out: List[Respondent] = []
    pending: List[Respondent] = []

    for member in roster:
        selection = by_user.get(member.user_id)
        if selection is not None and has_regular_line(selection):
            responded.append(_respondent(member))
        elif selection is not None and is_opted_out(selection):
            opted_out.append(_respondent(member))
        else:
            pending.append(_respondent(member))

    return RespondentsResponse(
        responded_user_ids=[r.user_id for r in responded],
        opted_out_user_ids=[r.user_id for r in opted_out],
        pending_user_ids=[r.user_id for r in pending],
        responded=responded,
        opted_out=opted_out,
        pending=pending,
    )


async def get_respondents(session: AsyncSession, choice_id: int) -> RespondentsResponse:
    choice = await get_choice_or_404(session, choice_id)
    roster = await get_trip_roster(session, choice.trip_id)

    result = await session.execute(
        select(ChoiceSelection)
        .options(selectinload(ChoiceSelection.lines).selectinload(ChoiceSelectionLine.item))
        .where(ChoiceSelection.choice_id == choice_id)
        .execution_options(populate_existing=True)
    )
    return classify_respondents(roster, result.scalars().all())
