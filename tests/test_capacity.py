from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.core.exceptions import (
    CapacityExceededError,
    ChoiceItemNotFoundError,
    ChoiceStateError,
    ExclusivityViolationError,
    SelectionValidationError,
)
from app.models.choices.choice_models import Choice, ChoiceItem, ChoiceItemType, ChoiceStatus
from app.services.choices.capacity import ProposedLine, validate_selection

NOW = datetime(2026, 6, 1, 18, 0)


def make_choice(**overrides):
    values = dict(id=10, trip_id=1, name="Dinner", status=ChoiceStatus.OPEN, archived_at=None, deadline=None)
    values.update(overrides)
    return Choice(**values)


def make_item(item_id, name, **overrides):
    values = dict(
        id=item_id, choice_id=10, name=name, price=Decimal("5.00"), is_active=True,
        type=ChoiceItemType.NORMAL, max_per_user=None, max_total=None,
    )
    values.update(overrides)
    return ChoiceItem(**values)


@pytest.fixture
def items():
    return {
        1: make_item(1, "Limited", max_per_user=2, max_total=5),
        2: make_item(2, "Salad"),
        3: make_item(3, "Not participating", price=None, type=ChoiceItemType.NO_PARTICIPATION),
        4: make_item(4, "Old special", is_active=False),
        5: make_item(5, "Elsewhere", choice_id=99),
    }


def test_accepts_lines_within_caps(items):
    validate_selection(make_choice(), [ProposedLine(1, 2), ProposedLine(2, 4)], items, {1: 3}, NOW)


def test_empty_selection_is_allowed(items):
    validate_selection(make_choice(), [], items, {}, NOW)


def test_per_user_cap_names_item_and_limit(items):
    with pytest.raises(CapacityExceededError) as exc:
        validate_selection(make_choice(), [ProposedLine(1, 3)], items, {}, NOW)

    assert exc.value.status_code == 409
    assert exc.value.detail == 'Item "Limited" exceeds per-user limit of 2'
    assert not exc.value.is_global


def test_global_cap_reports_current_and_requested(items):
    # Scenario B: two others hold 4 of 5
    with pytest.raises(CapacityExceededError) as exc:
        validate_selection(make_choice(), [ProposedLine(1, 2)], items, {1: 4}, NOW)

    err = exc.value
    assert err.is_global
    assert (err.limit, err.current, err.requested) == (5, 4, 2)
    assert "total stock limit of 5" in err.detail
    assert "current: 4" in err.detail


def test_global_cap_ignores_callers_own_previous_lines(items):
    # others hold 3; the caller's previous 2 are being replaced, not added to
    validate_selection(make_choice(), [ProposedLine(1, 2)], items, {1: 3}, NOW)


def test_opt_out_alone_is_fine(items):
    validate_selection(make_choice(), [ProposedLine(3, 1)], items, {}, NOW)


def test_opt_out_cannot_be_combined(items):
    with pytest.raises(ExclusivityViolationError) as exc:
        validate_selection(make_choice(), [ProposedLine(2, 1), ProposedLine(3, 1)], items, {}, NOW)
    assert exc.value.status_code == 400


@pytest.mark.parametrize(
    "choice, message",
    [
        (make_choice(status=ChoiceStatus.CLOSED), "closed"),
        (make_choice(archived_at=NOW - timedelta(days=1)), "archived"),
        (make_choice(deadline=NOW - timedelta(minutes=1)), "deadline"),
    ],
)
def test_choice_state_rejections(items, choice, message):
    with pytest.raises(ChoiceStateError) as exc:
        validate_selection(choice, [ProposedLine(2, 1)], items, {}, NOW)
    assert exc.value.status_code == 409
    assert message in exc.value.detail


def test_deadline_in_future_is_accepted(items):
    validate_selection(make_choice(deadline=NOW + timedelta(hours=1)), [ProposedLine(2, 1)], items, {}, NOW)


def test_inactive_item_rejected(items):
    with pytest.raises(SelectionValidationError, match="no longer active"):
        validate_selection(make_choice(), [ProposedLine(4, 1)], items, {}, NOW)


@pytest.mark.parametrize("item_id", [5, 404])
def test_unknown_or_foreign_item_rejected(items, item_id):
    with pytest.raises(ChoiceItemNotFoundError):
        validate_selection(make_choice(), [ProposedLine(item_id, 1)], items, {}, NOW)


def test_same_item_twice_rejected(items):
    with pytest.raises(SelectionValidationError, match="more than once"):
        validate_selection(make_choice(), [ProposedLine(2, 1), ProposedLine(2, 1)], items, {}, NOW)


def test_non_positive_quantity_rejected(items):
    with pytest.raises(SelectionValidationError):
        validate_selection(make_choice(), [ProposedLine(2, 0)], items, {}, NOW)
