from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit.event_log import EventLog, EventType
from app.models.choices.choice_models import ChoiceActivity
from app.schemas.choices.activity import (
    ActivityPayload, ChoiceActivityResponse, activity_payload_adapter
)


async def log_event(
    session: AsyncSession,
    entity: str,
    entity_id: int,
    event_type: EventType,
    actor_id: Optional[int],
    payload: Optional[Dict[str, Any]] = None
) -> EventLog:
    """Queue an audit row on the caller's transaction.

    Nothing is committed here: the row is written together with the change
    it describes, or not at all.
    """
    event = EventLog(
        entity=entity,
        entity_id=str(entity_id),
        event_type=event_type,
        actor_id=actor_id,
        payload=payload,
    )
    session.add(event)
    return event


async def record_activity(
    session: AsyncSession,
    choice_id: int,
    actor_id: Optional[int],
    payload: ActivityPayload
) -> ChoiceActivity:
    activity = ChoiceActivity(
        choice_id=choice_id,
        actor_id=actor_id,
        action=payload.action,
        payload=payload.model_dump(mode="json"),
    )
    session.add(activity)
    return activity


def to_activity_response(activity: ChoiceActivity) -> ChoiceActivityResponse:
    return ChoiceActivityResponse(
        id=activity.id,
        choice_id=activity.choice_id,
        actor_id=activity.actor_id,
        action=activity.action,
        payload=activity_payload_adapter.validate_python(activity.payload),
        created_at=activity.created_at,
    )
