from collections import OrderedDict
from decimal import Decimal
from typing import Dict, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.cache import RedisCache
from app.core.config import settings
from app.core.exceptions import SpendPreconditionError
from app.core.logger import logger
from app.models.audit.event_log import EventType
from app.models.choices.choice_models import Choice, ChoiceSelection
from app.models.expense.expense_models import (
    Expense, ExpenseCategory, ExpenseItem, ExpenseSplit, ExpenseStatus, SplitType
)
from app.models.trips.trip_model import Trip
from app.schemas.choices.activity import SpendCreatedPayload
from app.schemas.expense.expense import ExpenseResponse, SpendFromChoiceResponse, SpendMode
from app.services.audit.event_log import log_event, record_activity
from app.services.choices.choice_service import get_choice_or_404
from app.services.choices.report_service import (
    build_items_report, build_users_report, invalidate_choice_reports,
    load_choice_selections, priced_amount
)
from app.utils.normalize import ZERO, utcnow


# ----------------------
# Helper: eager load expense with relationships
# ----------------------
async def _fetch_expense_with_relations(session: AsyncSession, expense_id: int) -> Optional[Expense]:
    q = (
        select(Expense)
        .options(selectinload(Expense.items), selectinload(Expense.splits))
        .where(Expense.id == expense_id)
        .execution_options(populate_existing=True)
    )
    res = await session.execute(q)
    return res.scalar_one_or_none()


def order_summary(lines: Sequence[Tuple[int, str]], limit: int) -> str:
    """``2x Pizza, 1x Cola``, cut to ``limit`` characters."""
    text = ", ".join(f"{qty}x {name}" for qty, name in lines)
    return text[:limit]


def _split(expense: Expense, user_id: int, amount: Decimal, paid_by: int, item_id: Optional[int] = None) -> ExpenseSplit:
    return ExpenseSplit(
        expense_id=expense.id,
        user_id=user_id,
        item_id=item_id,
        amount=amount,
        normalized_amount=amount,
        split_type=SplitType.exact,
        is_paid=(user_id == paid_by),
    )


# ----------------------
# Allocation modes
# ----------------------
async def _allocate_by_item(
    session: AsyncSession,
    expense: Expense,
    selections: Sequence[ChoiceSelection],
    paid_by: int
) -> None:
    """One expense item per (user, item) pair with a positive price, one split per user."""
    user_totals: Dict[int, Decimal] = OrderedDict()
    for selection in sorted(selections, key=lambda s: s.user_id):
        for line in sorted(selection.lines, key=lambda l: (l.item.sort_index, l.item.id)):
            amount = priced_amount(line)
            if amount is None or amount <= ZERO:
                continue
            session.add(ExpenseItem(
                expense_id=expense.id,
                name=line.item.name,
                description=f"Qty: {line.quantity}",
                cost=amount,
                assigned_user_id=selection.user_id,
                created_by=paid_by,
            ))
            user_totals[selection.user_id] = user_totals.get(selection.user_id, ZERO) + amount

    for user_id, total in user_totals.items():
        session.add(_split(expense, user_id, total, paid_by))


async def _allocate_by_user(
    session: AsyncSession,
    expense: Expense,
    choice_id: int,
    selections: Sequence[ChoiceSelection],
    paid_by: int
) -> None:
    """One summarising expense item per user with a nonzero total, each with its own split."""
    report = build_users_report(choice_id, selections)
    limit = settings.SPEND_ITEM_DESCRIPTION_MAX_LENGTH
    for row in report.users:
        if row.is_no_participation or not row.user_total_price:
            continue
        label = row.display_name or f"User {row.user_id}"
        item = ExpenseItem(
            expense_id=expense.id,
            name=f"{label}'s order",
            description=order_summary([(l.quantity, l.item_name) for l in row.lines], limit),
            cost=row.user_total_price,
            assigned_user_id=row.user_id,
            created_by=paid_by,
        )
        session.add(item)
        await session.flush()
        session.add(_split(expense, row.user_id, row.user_total_price, paid_by, item_id=item.id))


# ----------------------
# Operation
# ----------------------
async def create_spend_from_choice(
    session: AsyncSession,
    choice_id: int,
    user_id: int,
    mode: SpendMode,
    cache: Optional[RedisCache] = None
) -> SpendFromChoiceResponse:
    """Turn a choice's current selections into one expense paid by ``user_id``.

    The amount is the item report's grand total; splits are exact and sum to it.
    """
    try:
        choice: Choice = await get_choice_or_404(session, choice_id)
        selections = await load_choice_selections(session, choice_id)
        items_report = build_items_report(choice_id, selections)
        if items_report.grand_total_price is None:
            raise SpendPreconditionError("Cannot create spend with zero total")

        trip = await session.get(Trip, choice.trip_id)
        currency = (trip.base_currency if trip is not None else None) or settings.DEFAULT_CURRENCY
        amount = items_report.grand_total_price

        expense = Expense(
            trip_id=choice.trip_id,
            title=f"{choice.name} - Menu Order",
            description=choice.description,
            amount=amount,
            currency=currency,
            fx_rate=Decimal("1"),
            normalized_amount=amount,
            category=ExpenseCategory.food,
            status=ExpenseStatus.pending,
            expense_date=choice.event_datetime or utcnow(),
            paid_by=user_id,
            notes=f"Auto-generated from choice: {choice.name}",
            is_split_equally=False,
        )
        session.add(expense)
        await session.flush()

        if mode == SpendMode.by_item:
            await _allocate_by_item(session, expense, selections, user_id)
        else:
            await _allocate_by_user(session, expense, choice_id, selections, user_id)

        await log_event(session, "Choice", choice_id, EventType.SPEND_CREATED, user_id, {
            "trip_id": choice.trip_id,
            "expense_id": expense.id,
            "mode": mode.value,
            "amount": str(amount),
        })
        await record_activity(session, choice_id, user_id, SpendCreatedPayload(
            spend_id=expense.id, mode=mode.value
        ))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await invalidate_choice_reports(cache, choice_id)
    logger.info(f"Spend {expense.id} ({mode.value}) created from choice {choice_id} by user {user_id}: {amount}")

    stored = await _fetch_expense_with_relations(session, expense.id)
    return SpendFromChoiceResponse(
        spend_id=stored.id,
        mode=mode,
        expense=ExpenseResponse.model_validate(stored),
    )
