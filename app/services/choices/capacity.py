"""Admission checks for a proposed selection.

Everything here is pure: callers load the choice, the referenced items and
the quantities other members already hold, then call ``validate_selection``
inside the transaction that will write the lines. Rejections raise the typed
errors from ``app.core.exceptions``; nothing is clamped or dropped.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional, Sequence

from app.core.exceptions import (
    CapacityExceededError,
    ChoiceItemNotFoundError,
    ChoiceStateError,
    ExclusivityViolationError,
    SelectionValidationError,
)
from app.models.choices.choice_models import Choice, ChoiceItem, ChoiceItemType


@dataclass(frozen=True)
class ProposedLine:
    item_id: int
    quantity: int
    note: Optional[str] = None


def check_choice_accepts_selections(choice: Choice, now: datetime) -> None:
    if not choice.is_open:
        raise ChoiceStateError("Choice is closed for selections")
    if choice.is_archived:
        raise ChoiceStateError("Choice is archived")
    if choice.deadline_passed(now):
        raise ChoiceStateError("Choice deadline has passed")


def check_item_selectable(item: Optional[ChoiceItem], line: ProposedLine, choice_id: int) -> ChoiceItem:
    if item is None or item.choice_id != choice_id:
        raise ChoiceItemNotFoundError(line.item_id)
    if not item.is_active:
        raise SelectionValidationError(f'Item "{item.name}" is no longer active')
    return item


def check_per_user_cap(item: ChoiceItem, quantity: int) -> None:
    if item.max_per_user is not None and quantity > item.max_per_user:
        raise CapacityExceededError(item.name, limit=item.max_per_user, requested=quantity)


def check_global_cap(item: ChoiceItem, quantity: int, held_by_others: int) -> None:
    """``held_by_others`` excludes the acting user's current lines, which are
    about to be replaced rather than added to."""
    if item.max_total is None:
        return
    if held_by_others + quantity > item.max_total:
        raise CapacityExceededError(
            item.name,
            limit=item.max_total,
            requested=quantity,
            current=held_by_others,
        )


def check_exclusivity(lines: Sequence[ProposedLine], items: Mapping[int, ChoiceItem]) -> None:
    if len(lines) < 2:
        return
    for line in lines:
        item = items[line.item_id]
        if item.type == ChoiceItemType.NO_PARTICIPATION:
            raise ExclusivityViolationError(item.name)


def validate_selection(
    choice: Choice,
    lines: Sequence[ProposedLine],
    items: Mapping[int, ChoiceItem],
    held_by_others: Mapping[int, int],
    now: datetime,
) -> None:
    """Admit or reject ``lines`` as the acting user's complete new selection.

    ``items`` maps item id to the item row (missing ids are unknown items) and
    ``held_by_others`` maps item id to the quantity every other member of the
    choice currently holds.
    """
    check_choice_accepts_selections(choice, now)

    seen = set()
    for line in lines:
        if line.quantity < 1:
            raise SelectionValidationError("Quantity must be a positive whole number")
        if line.item_id in seen:
            raise SelectionValidationError(f"Item {line.item_id} is listed more than once")
        seen.add(line.item_id)

        item = check_item_selectable(items.get(line.item_id), line, choice.id)
        check_per_user_cap(item, line.quantity)
        check_global_cap(item, line.quantity, held_by_others.get(item.id, 0))

    check_exclusivity(lines, items)
