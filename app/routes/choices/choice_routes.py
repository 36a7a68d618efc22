from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Literal

from app.core.cache import RedisCache
from app.core.database import get_db
from app.core.redis_lifecyle import get_cache
from app.dependencies.auth import get_current_user
from app.models.choices.choice_models import Choice
from app.models.user.user import User
from app.schemas.choices.activity import ChoiceActivityResponse
from app.schemas.choices.choice import (
    BulkChoiceItemsCreate, ChoiceCreate, ChoiceDetail, ChoiceItemCreate, ChoiceItemResponse,
    ChoiceItemUpdate, ChoiceResponse, ChoiceStatusUpdate, ChoiceSummary, ChoiceUpdate,
    RespondentsResponse, SelectionNoteUpdate, SelectionResult, SelectionSubmit
)
from app.schemas.choices.report import ItemsReport, UsersReport
from app.schemas.expense.expense import CreateSpendRequest, LinkedSpendResponse, SpendFromChoiceResponse
from app.services.choices.choice_service import (
    archive_choice, bulk_create_choice_items, can_manage_choice, create_choice,
    create_choice_item, deactivate_choice_item, delete_choice, ensure_no_participation_item,
    get_choice_activity, get_choice_item_or_404, get_choice_items, get_choice_or_404,
    get_linked_spend, list_trip_choices, restore_choice, set_choice_status,
    update_choice, update_choice_item
)
from app.services.choices.export import export_filename, items_report_to_csv, users_report_to_csv
from app.services.choices.report_service import ChoiceReportService
from app.services.choices.respondents import get_respondents
from app.services.choices.selection_service import (
    get_choice_detail, set_selection_note, submit_selection, withdraw_selection
)
from app.services.choices.spend_service import create_spend_from_choice
from app.services.trips.trip_member_service import get_membership

router = APIRouter(tags=["Choices"])


# ----------------------
# Access checks
# ----------------------
async def _require_member(session: AsyncSession, trip_id: int, user: User):
    membership = await get_membership(session, trip_id, user.id)
    if membership is None:
        raise HTTPException(status_code=403, detail="You are not a member of this trip")
    return membership


async def _member_choice(session: AsyncSession, choice_id: int, user: User) -> Choice:
    choice = await get_choice_or_404(session, choice_id)
    await _require_member(session, choice.trip_id, user)
    return choice


async def _managed_choice(session: AsyncSession, choice_id: int, user: User) -> Choice:
    choice = await _member_choice(session, choice_id, user)
    if not await can_manage_choice(session, user.id, choice):
        raise HTTPException(status_code=403, detail="Only the choice creator or a trip organiser can do this")
    return choice


# ----------------------
# Choices
# ----------------------
@router.post("/trips/{trip_id}/choices", response_model=ChoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_trip_choice(
    trip_id: int = Path(..., gt=0),
    choice_data: ChoiceCreate = ...,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a choice in a trip. Organisers only."""
    try:
        membership = await _require_member(session, trip_id, current_user)
        if not membership.is_organiser:
            raise HTTPException(status_code=403, detail="Only trip organisers can create choices")
        return await create_choice(session, trip_id, choice_data, current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create choice: {str(e)}")


@router.get("/trips/{trip_id}/choices", response_model=List[ChoiceSummary])
async def get_trip_choices(
    trip_id: int = Path(..., gt=0),
    include_closed: bool = Query(False),
    include_archived: bool = Query(False),
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        await _require_member(session, trip_id, current_user)
        return await list_trip_choices(session, trip_id, include_closed, include_archived)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch choices: {str(e)}")


@router.get("/choices/{choice_id}", response_model=ChoiceDetail)
async def get_choice(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """A choice with its active items and the caller's own selection."""
    try:
        await _member_choice(session, choice_id, current_user)
        return await get_choice_detail(session, choice_id, current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch choice: {str(e)}")


@router.patch("/choices/{choice_id}", response_model=ChoiceResponse)
async def update_choice_details(
    choice_id: int = Path(..., gt=0),
    update_data: ChoiceUpdate = ...,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        await _managed_choice(session, choice_id, current_user)
        return await update_choice(session, choice_id, update_data, current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update choice: {str(e)}")


@router.delete("/choices/{choice_id}")
async def delete_choice_by_id(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    try:
        await _managed_choice(session, choice_id, current_user)
        await delete_choice(session, choice_id, current_user.id, cache)
        return {"detail": "Choice deleted"}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to delete choice: {str(e)}")


@router.post("/choices/{choice_id}/status", response_model=ChoiceResponse)
async def change_choice_status(
    choice_id: int = Path(..., gt=0),
    status_data: ChoiceStatusUpdate = ...,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Open or close a choice, optionally moving its deadline."""
    try:
        await _managed_choice(session, choice_id, current_user)
        return await set_choice_status(session, choice_id, status_data, current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update choice status: {str(e)}")


@router.post("/choices/{choice_id}/archive", response_model=ChoiceResponse)
async def archive_choice_by_id(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        await _managed_choice(session, choice_id, current_user)
        return await archive_choice(session, choice_id, current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to archive choice: {str(e)}")


@router.post("/choices/{choice_id}/restore", response_model=ChoiceResponse)
async def restore_choice_by_id(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        await _managed_choice(session, choice_id, current_user)
        return await restore_choice(session, choice_id, current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to restore choice: {str(e)}")


# ----------------------
# Items
# ----------------------
@router.get("/choices/{choice_id}/items", response_model=List[ChoiceItemResponse])
async def list_choice_items(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Every item, inactive ones included."""
    try:
        await _managed_choice(session, choice_id, current_user)
        return await get_choice_items(session, choice_id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch items: {str(e)}")


@router.post("/choices/{choice_id}/items", response_model=ChoiceItemResponse, status_code=status.HTTP_201_CREATED)
async def add_choice_item(
    choice_id: int = Path(..., gt=0),
    item_data: ChoiceItemCreate = ...,
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    try:
        await _managed_choice(session, choice_id, current_user)
        return await create_choice_item(session, choice_id, item_data, current_user.id, cache)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create item: {str(e)}")


@router.post("/choices/{choice_id}/items/bulk", response_model=List[ChoiceItemResponse], status_code=status.HTTP_201_CREATED)
async def add_choice_items_bulk(
    choice_id: int = Path(..., gt=0),
    bulk_data: BulkChoiceItemsCreate = ...,
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    try:
        await _managed_choice(session, choice_id, current_user)
        return await bulk_create_choice_items(session, choice_id, bulk_data.items, current_user.id, cache)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create items: {str(e)}")


@router.post("/choices/{choice_id}/items/no-participation", response_model=ChoiceItemResponse)
async def get_or_create_opt_out_item(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    """The choice's opt-out item; members may trigger its creation."""
    try:
        await _member_choice(session, choice_id, current_user)
        return await ensure_no_participation_item(session, choice_id, current_user.id, cache)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to prepare opt-out item: {str(e)}")


@router.patch("/choice-items/{item_id}", response_model=ChoiceItemResponse)
async def update_item(
    item_id: int = Path(..., gt=0),
    update_data: ChoiceItemUpdate = ...,
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    try:
        item = await get_choice_item_or_404(session, item_id)
        await _managed_choice(session, item.choice_id, current_user)
        return await update_choice_item(session, item_id, update_data, current_user.id, cache)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to update item: {str(e)}")


@router.delete("/choice-items/{item_id}", response_model=ChoiceItemResponse)
async def deactivate_item(
    item_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    """Soft delete: the item stays in reports but can't be picked again."""
    try:
        item = await get_choice_item_or_404(session, item_id)
        await _managed_choice(session, item.choice_id, current_user)
        return await deactivate_choice_item(session, item_id, current_user.id, cache)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to deactivate item: {str(e)}")


# ----------------------
# Selections
# ----------------------
@router.put("/choices/{choice_id}/selections", response_model=SelectionResult)
async def save_my_selection(
    choice_id: int = Path(..., gt=0),
    selection_data: SelectionSubmit = ...,
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    """Replace the caller's selection with the submitted lines."""
    try:
        await _member_choice(session, choice_id, current_user)
        return await submit_selection(session, choice_id, current_user.id, selection_data.lines, cache)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to save selection: {str(e)}")


@router.delete("/choices/{choice_id}/selections")
async def withdraw_my_selection(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    try:
        await _member_choice(session, choice_id, current_user)
        await withdraw_selection(session, choice_id, current_user.id, cache)
        return {"detail": "Selection withdrawn"}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to withdraw selection: {str(e)}")


@router.put("/choices/{choice_id}/my-note")
async def update_my_note(
    choice_id: int = Path(..., gt=0),
    note_data: SelectionNoteUpdate = ...,
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    try:
        await _member_choice(session, choice_id, current_user)
        note = await set_selection_note(session, choice_id, current_user.id, note_data.note, cache)
        return {"note": note}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to save note: {str(e)}")


# ----------------------
# Respondents and reports
# ----------------------
@router.get("/choices/{choice_id}/respondents", response_model=RespondentsResponse)
async def list_respondents(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        await _member_choice(session, choice_id, current_user)
        return await get_respondents(session, choice_id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch respondents: {str(e)}")


@router.get("/choices/{choice_id}/report/items", response_model=ItemsReport)
async def items_report(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    try:
        await _member_choice(session, choice_id, current_user)
        return await ChoiceReportService(cache).get_items_report(session, choice_id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to build items report: {str(e)}")


@router.get("/choices/{choice_id}/report/users", response_model=UsersReport)
async def users_report(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    try:
        await _member_choice(session, choice_id, current_user)
        return await ChoiceReportService(cache).get_users_report(session, choice_id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to build users report: {str(e)}")


@router.get("/choices/{choice_id}/export")
async def export_report(
    choice_id: int = Path(..., gt=0),
    report_type: Literal["items", "users"] = Query("items", alias="type"),
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    """Download a report as CSV."""
    try:
        choice = await _managed_choice(session, choice_id, current_user)
        reports = ChoiceReportService(cache)
        if report_type == "items":
            content = items_report_to_csv(await reports.get_items_report(session, choice_id))
        else:
            content = users_report_to_csv(await reports.get_users_report(session, choice_id))
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{export_filename(choice.name, report_type)}"'},
        )
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to export report: {str(e)}")


@router.get("/choices/{choice_id}/activity", response_model=List[ChoiceActivityResponse])
async def list_activity(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        await _member_choice(session, choice_id, current_user)
        return await get_choice_activity(session, choice_id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch activity: {str(e)}")


# ----------------------
# Spend
# ----------------------
@router.post("/choices/{choice_id}/create-spend", response_model=SpendFromChoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_spend(
    choice_id: int = Path(..., gt=0),
    spend_data: CreateSpendRequest = ...,
    session: AsyncSession = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    current_user: User = Depends(get_current_user)
):
    """Turn the current selections into one trip expense paid by the caller."""
    try:
        await _managed_choice(session, choice_id, current_user)
        return await create_spend_from_choice(session, choice_id, current_user.id, spend_data.mode, cache)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create spend: {str(e)}")


@router.get("/choices/{choice_id}/linked-spend", response_model=LinkedSpendResponse)
async def linked_spend(
    choice_id: int = Path(..., gt=0),
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        await _member_choice(session, choice_id, current_user)
        return await get_linked_spend(session, choice_id)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch linked spend: {str(e)}")
