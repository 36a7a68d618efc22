from pydantic import BaseModel
from typing import Optional, List
from decimal import Decimal
from app.models.choices.choice_models import ChoiceItemType


class ItemReportRow(BaseModel):
    item_id: int
    name: str
    item_type: ChoiceItemType
    is_active: bool
    unit_price: Optional[Decimal] = None
    qty_total: int
    total_price: Optional[Decimal] = None
    distinct_users: int


class ItemsReport(BaseModel):
    choice_id: int
    items: List[ItemReportRow]
    grand_total_price: Optional[Decimal] = None


class UserReportLine(BaseModel):
    item_id: int
    item_name: str
    quantity: int
    line_price: Optional[Decimal] = None
    note: Optional[str] = None


class UserReportRow(BaseModel):
    user_id: int
    display_name: Optional[str] = None
    note: Optional[str] = None
    lines: List[UserReportLine]
    user_total_price: Optional[Decimal] = None
    is_no_participation: bool = False


class UsersReport(BaseModel):
    choice_id: int
    users: List[UserReportRow]
    grand_total_price: Optional[Decimal] = None
