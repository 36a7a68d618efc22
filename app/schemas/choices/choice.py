from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from app.models.choices.choice_models import ChoiceVisibility, ChoiceStatus, ChoiceItemType
from app.utils.normalize import to_naive_utc


class _NaiveUtcModel(BaseModel):
    @field_validator("event_datetime", "deadline", check_fields=False)
    @classmethod
    def _naive_utc(cls, value):
        return to_naive_utc(value)


# Choice schemas
class ChoiceCreate(_NaiveUtcModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    event_datetime: Optional[datetime] = None
    place: Optional[str] = None
    visibility: ChoiceVisibility = ChoiceVisibility.TRIP


class ChoiceUpdate(_NaiveUtcModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    event_datetime: Optional[datetime] = None
    place: Optional[str] = None
    visibility: Optional[ChoiceVisibility] = None


class ChoiceStatusUpdate(_NaiveUtcModel):
    status: ChoiceStatus
    # leave out to keep the current deadline, send null to clear it
    deadline: Optional[datetime] = None


class ChoiceResponse(BaseModel):
    id: int
    trip_id: int
    name: str
    description: Optional[str] = None
    event_datetime: Optional[datetime] = None
    place: Optional[str] = None
    visibility: ChoiceVisibility
    status: ChoiceStatus
    deadline: Optional[datetime] = None
    created_by: int
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ChoiceSummary(ChoiceResponse):
    item_count: int = 0
    selection_count: int = 0


# Item schemas
class ChoiceItemBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    tags: Optional[List[str]] = None
    allergens: Optional[List[str]] = None
    course: Optional[str] = None
    sort_index: int = 0
    max_per_user: Optional[int] = Field(None, gt=0)
    max_total: Optional[int] = Field(None, gt=0)
    is_active: bool = True


class ChoiceItemCreate(ChoiceItemBase):
    type: ChoiceItemType = ChoiceItemType.NORMAL


class BulkChoiceItem(ChoiceItemBase):
    """Menu-import row; prices may arrive as integer minor units (cents)."""
    price_minor: Optional[int] = Field(None, ge=0)


class BulkChoiceItemsCreate(BaseModel):
    items: List[BulkChoiceItem] = Field(..., min_length=1)


class ChoiceItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, decimal_places=2)
    tags: Optional[List[str]] = None
    allergens: Optional[List[str]] = None
    course: Optional[str] = None
    sort_index: Optional[int] = None
    max_per_user: Optional[int] = Field(None, gt=0)
    max_total: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None


class ChoiceItemResponse(BaseModel):
    id: int
    choice_id: int
    name: str
    description: Optional[str] = None
    price: Optional[Decimal] = None
    tags: Optional[List[str]] = None
    allergens: Optional[List[str]] = None
    course: Optional[str] = None
    sort_index: int
    max_per_user: Optional[int] = None
    max_total: Optional[int] = None
    is_active: bool
    type: ChoiceItemType

    model_config = {"from_attributes": True}


# Selection schemas
class SelectionLineIn(BaseModel):
    item_id: int
    quantity: int = Field(..., gt=0)
    note: Optional[str] = Field(None, max_length=500)


class SelectionSubmit(BaseModel):
    lines: List[SelectionLineIn] = []


class SelectionNoteUpdate(BaseModel):
    note: Optional[str] = Field(None, max_length=1000)


class SelectionLineOut(BaseModel):
    id: int
    item_id: int
    item_name: str
    item_type: ChoiceItemType
    quantity: int
    unit_price: Optional[Decimal] = None
    line_price: Decimal
    note: Optional[str] = None


class SelectionResult(BaseModel):
    selection_id: int
    note: Optional[str] = None
    lines: List[SelectionLineOut]
    total: Decimal


class ChoiceDetail(BaseModel):
    choice: ChoiceResponse
    items: List[ChoiceItemResponse]
    my_selection: Optional[SelectionResult] = None
    my_total: Optional[Decimal] = None


# Respondents
class Respondent(BaseModel):
    user_id: int
    display_name: Optional[str] = None
    email: Optional[str] = None


class RespondentsResponse(BaseModel):
    responded_user_ids: List[int]
    opted_out_user_ids: List[int]
    pending_user_ids: List[int]
    responded: List[Respondent]
    opted_out: List[Respondent]
    pending: List[Respondent]
