"""Typed failures raised by the choice services.

Every class is an ``HTTPException`` so route handlers can let them propagate
unchanged; the ``detail`` string is meant to be shown to the user as is.
"""
from typing import Optional

from fastapi import HTTPException, status


class ChoiceError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


# Not found
class ChoiceNotFoundError(ChoiceError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, choice_id: int):
        self.choice_id = choice_id
        super().__init__("Choice not found")


class ChoiceItemNotFoundError(ChoiceError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Item {item_id} not found")


class SelectionNotFoundError(ChoiceError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, choice_id: int, user_id: int):
        self.choice_id = choice_id
        self.user_id = user_id
        super().__init__("Selection not found")


# State conflicts
class ChoiceStateError(ChoiceError):
    """Closed, archived or past-deadline choice."""
    status_code = status.HTTP_409_CONFLICT


class DuplicateNoParticipationError(ChoiceError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, choice_id: int):
        self.choice_id = choice_id
        super().__init__("This choice already has a 'not participating' option")


# Selection proposal problems
class SelectionValidationError(ChoiceError):
    """Inactive item, bad quantity or an item listed twice."""


class CapacityExceededError(ChoiceError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(
        self,
        item_name: str,
        limit: int,
        requested: int,
        current: Optional[int] = None,
    ):
        self.item_name = item_name
        self.limit = limit
        self.requested = requested
        self.current = current
        if current is None:
            message = f'Item "{item_name}" exceeds per-user limit of {limit}'
        else:
            message = (
                f'Item "{item_name}" would exceed total stock limit of {limit} '
                f"(current: {current}, requested: {requested})"
            )
        super().__init__(message)

    @property
    def is_global(self) -> bool:
        return self.current is not None


class ExclusivityViolationError(ChoiceError):
    def __init__(self, item_name: str):
        self.item_name = item_name
        super().__init__(f'"{item_name}" cannot be combined with other items')


# Spend derivation
class SpendPreconditionError(ChoiceError):
    pass
