from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.cache import RedisCache
from app.core.config import settings
from app.core.exceptions import ChoiceNotFoundError
from app.core.logger import logger
from app.models.choices.choice_models import (
    Choice, ChoiceItemType, ChoiceSelection, ChoiceSelectionLine
)
from app.schemas.choices.report import (
    ItemReportRow, ItemsReport, UserReportLine, UserReportRow, UsersReport
)
from app.utils.normalize import ZERO


# ----------------------
# Helpers
# ----------------------
def priced_amount(line: ChoiceSelectionLine) -> Optional[Decimal]:
    """Price of a line, or None when the item has no price.

    Opt-out lines never carry a price, so they can't leak into a total.
    """
    item = line.item
    if item.type == ChoiceItemType.NO_PARTICIPATION or item.price is None:
        return None
    return item.price * line.quantity


def is_opted_out(selection: ChoiceSelection) -> bool:
    return bool(selection.lines) and all(
        line.item.type == ChoiceItemType.NO_PARTICIPATION for line in selection.lines
    )


def _grand_total(amounts) -> Optional[Decimal]:
    total = sum((a for a in amounts if a is not None), ZERO)
    return total if total != ZERO else None


async def load_choice_selections(session: AsyncSession, choice_id: int) -> List[ChoiceSelection]:
    """Every selection of a choice with its lines, items and user loaded."""
    choice = await session.get(Choice, choice_id)
    if choice is None:
        raise ChoiceNotFoundError(choice_id)

    result = await session.execute(
        select(ChoiceSelection)
        .options(
            selectinload(ChoiceSelection.lines).selectinload(ChoiceSelectionLine.item),
            selectinload(ChoiceSelection.user),
        )
        .where(ChoiceSelection.choice_id == choice_id)
        .order_by(ChoiceSelection.id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


# ----------------------
# Report builders
# ----------------------
def build_items_report(choice_id: int, selections: Sequence[ChoiceSelection]) -> ItemsReport:
    """Per-item totals over every line of every selection."""
    rows: Dict[int, dict] = {}
    for selection in selections:
        for line in selection.lines:
            item = line.item
            row = rows.get(item.id)
            if row is None:
                row = rows[item.id] = {"item": item, "qty": 0, "users": set()}
            row["qty"] += line.quantity
            row["users"].add(selection.user_id)

    items = []
    for entry in sorted(rows.values(), key=lambda r: (r["item"].sort_index, r["item"].id)):
        item = entry["item"]
        priced = item.type != ChoiceItemType.NO_PARTICIPATION and item.price is not None
        items.append(ItemReportRow(
            item_id=item.id,
            name=item.name,
            item_type=item.type,
            is_active=item.is_active,
            unit_price=item.price,
            qty_total=entry["qty"],
            total_price=item.price * entry["qty"] if priced else None,
            distinct_users=len(entry["users"]),
        ))

    return ItemsReport(
        choice_id=choice_id,
        items=items,
        grand_total_price=_grand_total(row.total_price for row in items),
    )


def build_users_report(choice_id: int, selections: Sequence[ChoiceSelection]) -> UsersReport:
    """Per-user lines and totals; opted-out users are flagged with no lines."""
    users = []
    for selection in selections:
        opted_out = is_opted_out(selection)
        lines = []
        if not opted_out:
            for line in selection.lines:
                lines.append(UserReportLine(
                    item_id=line.item_id,
                    item_name=line.item.name,
                    quantity=line.quantity,
                    line_price=priced_amount(line),
                    note=line.note,
                ))
        users.append(UserReportRow(
            user_id=selection.user_id,
            display_name=selection.user.display_name if selection.user else None,
            note=selection.note,
            lines=lines,
            user_total_price=_grand_total(line.line_price for line in lines),
            is_no_participation=opted_out,
        ))

    users.sort(key=lambda u: ((u.display_name or "").lower(), u.user_id))
    return UsersReport(
        choice_id=choice_id,
        users=users,
        grand_total_price=_grand_total(
            u.user_total_price for u in users if not u.is_no_participation
        ),
    )


async def get_items_report(session: AsyncSession, choice_id: int) -> ItemsReport:
    selections = await load_choice_selections(session, choice_id)
    return build_items_report(choice_id, selections)


async def get_users_report(session: AsyncSession, choice_id: int) -> UsersReport:
    selections = await load_choice_selections(session, choice_id)
    return build_users_report(choice_id, selections)


# ----------------------
# Cached access for read endpoints
# ----------------------
def _report_key(choice_id: int, kind: str) -> str:
    return RedisCache.build_key("choices", choice_id, "report", kind)


def _version_key(choice_id: int) -> str:
    return _report_key(choice_id, "version")


async def invalidate_choice_reports(cache: Optional[RedisCache], choice_id: int) -> None:
    """Move the choice's reports to a new version.

    Cached copies under the old version are never read again, including one a
    slow reader stores after this call.
    """
    if cache is None:
        return
    await cache.incr(_version_key(choice_id), expire=settings.REPORT_CACHE_VERSION_TTL_SECONDS)


async def drop_choice_reports(cache: Optional[RedisCache], choice_id: int) -> None:
    """Remove every cached report key of a deleted choice."""
    if cache is None:
        return
    await cache.delete_pattern(_report_key(choice_id, "*"))


class ChoiceReportService:
    """Report reads through the Redis cache.

    Only read endpoints go through here; selection writes and spend creation
    always compute from the database. The version is read before the query,
    so a report built from rows older than the latest invalidation is stored
    under a version nobody asks for.
    """

    def __init__(self, cache: RedisCache):
        self.cache = cache

    async def _current_version(self, choice_id: int) -> int:
        return await self.cache.get(_version_key(choice_id)) or 0

    async def get_items_report(self, session: AsyncSession, choice_id: int) -> ItemsReport:
        key = _report_key(choice_id, "items")
        version = await self._current_version(choice_id)
        cached = await self.cache.get(key, version=version)
        if cached:
            logger.info(f"Items report for choice {choice_id} served from cache (v{version})")
            return ItemsReport.model_validate(cached)

        report = await get_items_report(session, choice_id)
        await self.cache.set(
            key, report.model_dump(mode="json"),
            expire=settings.REPORT_CACHE_TTL_SECONDS, version=version
        )
        return report

    async def get_users_report(self, session: AsyncSession, choice_id: int) -> UsersReport:
        key = _report_key(choice_id, "users")
        version = await self._current_version(choice_id)
        cached = await self.cache.get(key, version=version)
        if cached:
            logger.info(f"Users report for choice {choice_id} served from cache (v{version})")
            return UsersReport.model_validate(cached)

        report = await get_users_report(session, choice_id)
        await self.cache.set(
            key, report.model_dump(mode="json"),
            expire=settings.REPORT_CACHE_TTL_SECONDS, version=version
        )
        return report
