from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Text, Enum, UniqueConstraint, Index, Numeric
from sqlalchemy.orm import relationship
from app.core.database import Base
from app.utils.normalize import utcnow
import enum

class ExpenseCategory(str, enum.Enum):
    accommodation = "accommodation"
    transportation = "transportation"
    food = "food"
    activities = "activities"
    shopping = "shopping"
    emergency = "emergency"
    other = "other"

class ExpenseStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    settled = "settled"

class SplitType(str, enum.Enum):
    equal = "equal"
    exact = "exact"

class Expense(Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(
    Integer,
    ForeignKey("trips.id", ondelete="SET NULL"),
    nullable=True
    )
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)  # Total amount of the expense
    currency = Column(String(3), default="USD", nullable=False)
    fx_rate = Column(Numeric(12, 6), nullable=False, default=1)  # amount -> trip base currency
    normalized_amount = Column(Numeric(10, 2), nullable=True)  # amount in trip base currency
    category = Column(Enum(ExpenseCategory), nullable=False, default=ExpenseCategory.other)
    status = Column(Enum(ExpenseStatus), nullable=False, default=ExpenseStatus.pending)
    expense_date = Column(DateTime, nullable=False, default=utcnow)
    paid_by = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    is_split_equally = Column(Boolean, default=True)  # Whether to split equally among all members

    # Relationships
    trip = relationship("Trip", backref="expenses",passive_deletes=True)
    payer = relationship("User", foreign_keys=[paid_by])
    items = relationship("ExpenseItem", back_populates="expense", cascade="all, delete", order_by="ExpenseItem.id")
    splits = relationship("ExpenseSplit", back_populates="expense", cascade="all, delete", order_by="ExpenseSplit.id")

    __table_args__ = (
        Index("ix_expenses_trip_id", "trip_id"),
        Index("ix_expenses_category", "category"),
        Index("ix_expenses_status", "status"),
        Index("ix_expenses_paid_by", "paid_by"),
    )

class ExpenseItem(Base):
    """One line on an itemised expense, optionally owned by a single member."""
    __tablename__ = "expense_items"

    id = Column(Integer, primary_key=True, index=True)
    expense_id = Column(Integer, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(String(280), nullable=True)
    cost = Column(Numeric(10, 2), nullable=False)
    assigned_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    expense = relationship("Expense", back_populates="items")
    assigned_user = relationship("User", foreign_keys=[assigned_user_id])

    __table_args__ = (
        Index("ix_expense_items_expense_id", "expense_id"),
    )

class ExpenseSplit(Base):
    __tablename__ = "expense_splits"

    id = Column(Integer, primary_key=True, index=True)
    expense_id = Column(Integer, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    item_id = Column(Integer, ForeignKey("expense_items.id", ondelete="SET NULL"), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)  # Amount this user owes for this expense
    normalized_amount = Column(Numeric(10, 2), nullable=True)
    split_type = Column(Enum(SplitType), nullable=False, default=SplitType.equal)
    is_paid = Column(Boolean, default=False)  # Whether this user has paid their share
    paid_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    # Relationships
    expense = relationship("Expense", back_populates="splits")
    item = relationship("ExpenseItem")
    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_expense_split_user"),
        Index("ix_expense_splits_expense_id", "expense_id"),
        Index("ix_expense_splits_user_id", "user_id"),
    )
