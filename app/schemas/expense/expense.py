from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum
from app.models.expense.expense_models import ExpenseCategory, ExpenseStatus, SplitType


class SpendMode(str, Enum):
    by_item = "byItem"
    by_user = "byUser"


class CreateSpendRequest(BaseModel):
    mode: SpendMode = SpendMode.by_user


# Response schemas
class ExpenseItemResponse(BaseModel):
    id: int
    expense_id: int
    name: str
    description: Optional[str] = None
    cost: Decimal
    assigned_user_id: Optional[int] = None

    model_config = {"from_attributes": True}


class ExpenseSplitResponse(BaseModel):
    id: int
    expense_id: int
    user_id: int
    item_id: Optional[int] = None
    amount: Decimal
    normalized_amount: Optional[Decimal] = None
    split_type: SplitType
    is_paid: bool

    model_config = {"from_attributes": True}


class ExpenseResponse(BaseModel):
    id: int
    trip_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    amount: Decimal
    currency: str
    fx_rate: Decimal
    normalized_amount: Optional[Decimal] = None
    category: ExpenseCategory
    status: ExpenseStatus
    expense_date: datetime
    paid_by: int
    notes: Optional[str] = None
    is_split_equally: bool
    items: List[ExpenseItemResponse] = []
    splits: List[ExpenseSplitResponse] = []

    model_config = {"from_attributes": True}


class SpendFromChoiceResponse(BaseModel):
    spend_id: int
    mode: SpendMode
    expense: ExpenseResponse


class LinkedSpendResponse(BaseModel):
    has_spend: bool
    spend_id: Optional[int] = None
