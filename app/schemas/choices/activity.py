"""Activity payloads, one shape per action tag."""
from pydantic import BaseModel, Field, TypeAdapter
from typing import Optional, Dict, Any, Literal, Union, List, Annotated
from datetime import datetime
from app.models.choices.choice_models import ChoiceStatus


class ChoiceCreatedPayload(BaseModel):
    action: Literal["created"] = "created"
    name: str


class ChoiceUpdatedPayload(BaseModel):
    action: Literal["updated"] = "updated"
    changes: Dict[str, Any]


class ChoiceStatusPayload(BaseModel):
    action: Literal["closed", "reopened"]
    status: ChoiceStatus
    deadline: Optional[datetime] = None


class ChoiceArchivedPayload(BaseModel):
    action: Literal["archived"] = "archived"


class ChoiceRestoredPayload(BaseModel):
    action: Literal["restored"] = "restored"


class ItemCreatedPayload(BaseModel):
    action: Literal["item_created"] = "item_created"
    item_ids: List[int]
    names: List[str]


class ItemUpdatedPayload(BaseModel):
    action: Literal["item_updated"] = "item_updated"
    item_id: int
    changes: Dict[str, Any]


class ItemDeactivatedPayload(BaseModel):
    action: Literal["item_deactivated"] = "item_deactivated"
    item_id: int
    name: str


class SelectionSavedPayload(BaseModel):
    action: Literal["selection_saved"] = "selection_saved"
    user_id: int
    line_count: int
    is_new: bool


class SelectionWithdrawnPayload(BaseModel):
    action: Literal["selection_withdrawn"] = "selection_withdrawn"
    user_id: int


class SelectionNotePayload(BaseModel):
    action: Literal["selection_note"] = "selection_note"
    user_id: int
    note: Optional[str] = None
    is_new: bool


class SpendCreatedPayload(BaseModel):
    action: Literal["spend_created"] = "spend_created"
    spend_id: int
    mode: str


ActivityPayload = Annotated[
    Union[
        ChoiceCreatedPayload,
        ChoiceUpdatedPayload,
        ChoiceStatusPayload,
        ChoiceArchivedPayload,
        ChoiceRestoredPayload,
        ItemCreatedPayload,
        ItemUpdatedPayload,
        ItemDeactivatedPayload,
        SelectionSavedPayload,
        SelectionWithdrawnPayload,
        SelectionNotePayload,
        SpendCreatedPayload,
    ],
    Field(discriminator="action"),
]

activity_payload_adapter = TypeAdapter(ActivityPayload)


class ChoiceActivityResponse(BaseModel):
    id: int
    choice_id: int
    actor_id: Optional[int] = None
    action: str
    payload: ActivityPayload
    created_at: datetime
