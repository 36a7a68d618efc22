from decimal import Decimal

from app.schemas.choices.choice import SelectionLineIn
from app.services.choices.choice_service import (
    deactivate_choice_item, delete_choice, ensure_no_participation_item
)
from app.services.choices.report_service import (
    ChoiceReportService, get_items_report, get_users_report
)
from app.services.choices.selection_service import submit_selection


async def _select(session_factory, choice_id, user_id, *pairs):
    async with session_factory() as s:
        await submit_selection(
            s, choice_id, user_id, [SelectionLineIn(item_id=i, quantity=q) for i, q in pairs]
        )


async def _opt_out(session_factory, choice_id, user_id):
    async with session_factory() as s:
        item = await ensure_no_participation_item(s, choice_id, user_id)
        item_id = item.id
    await _select(session_factory, choice_id, user_id, (item_id, 1))
    return item_id


async def test_scenario_a_item_totals(session_factory, trip, menu):
    await _select(session_factory, menu.id, trip.alice, (menu.pizza, 2))
    await _select(session_factory, menu.id, trip.bob, (menu.pizza, 1))

    async with session_factory() as s:
        report = await get_items_report(s, menu.id)

    (pizza,) = report.items
    assert pizza.qty_total == 3
    assert pizza.total_price == Decimal("37.50")
    assert pizza.distinct_users == 2
    assert report.grand_total_price == Decimal("37.50")


async def test_reports_agree_and_exclude_opt_outs(session_factory, trip, menu):
    await _select(session_factory, menu.id, trip.alice, (menu.pizza, 2), (menu.water, 1))
    await _select(session_factory, menu.id, trip.bob, (menu.cola, 3))
    opt_out_id = await _opt_out(session_factory, menu.id, trip.carol)

    async with session_factory() as s:
        items = await get_items_report(s, menu.id)
        users = await get_users_report(s, menu.id)

    assert items.grand_total_price == users.grand_total_price == Decimal("31.00")

    rows = {row.item_id: row for row in items.items}
    assert rows[menu.water].total_price is None
    assert rows[opt_out_id].total_price is None
    assert rows[opt_out_id].qty_total == 1

    carol = next(u for u in users.users if u.user_id == trip.carol)
    assert carol.is_no_participation
    assert carol.lines == []
    assert carol.user_total_price is None
    assert [u.display_name for u in users.users] == ["alice", "bob", "carol"]


async def test_empty_or_unpriced_reports_have_no_grand_total(session_factory, trip, menu):
    async with session_factory() as s:
        assert (await get_items_report(s, menu.id)).grand_total_price is None

    await _select(session_factory, menu.id, trip.alice, (menu.water, 2))
    async with session_factory() as s:
        items = await get_items_report(s, menu.id)
        users = await get_users_report(s, menu.id)
    assert items.grand_total_price is None
    assert users.grand_total_price is None


async def test_inactive_items_still_reported(session_factory, trip, menu):
    await _select(session_factory, menu.id, trip.alice, (menu.cola, 2))
    async with session_factory() as s:
        await deactivate_choice_item(s, menu.cola, trip.olivia)

    async with session_factory() as s:
        report = await get_items_report(s, menu.id)
    (cola,) = report.items
    assert cola.is_active is False
    assert cola.total_price == Decimal("4.00")


async def test_cached_report_is_invalidated_by_new_selection(session_factory, trip, menu, cache):
    reports = ChoiceReportService(cache)
    await _select(session_factory, menu.id, trip.alice, (menu.cola, 1))

    async with session_factory() as s:
        first = await reports.get_items_report(s, menu.id)
    assert first.grand_total_price == Decimal("2.00")
    assert await cache.get(f"choices:{menu.id}:report:items", version=0) is not None

    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.bob, [SelectionLineIn(item_id=menu.cola, quantity=2)], cache)
    assert await cache.get(f"choices:{menu.id}:report:version") == 1
    assert await cache.get(f"choices:{menu.id}:report:items", version=1) is None

    async with session_factory() as s:
        second = await reports.get_items_report(s, menu.id)
    assert second.grand_total_price == Decimal("6.00")


async def test_report_built_before_a_write_is_not_served_after_it(session_factory, trip, menu, hooked_cache):
    async with session_factory() as reader:
        async def bob_orders_after_the_read():
            # the read transaction is over, the way a READ COMMITTED reader's would be
            await reader.commit()
            async with session_factory() as writer:
                await submit_selection(
                    writer, menu.id, trip.bob, [SelectionLineIn(item_id=menu.pizza, quantity=2)], hooked_cache
                )

        hooked_cache.before["set"] = bob_orders_after_the_read
        stale = await ChoiceReportService(hooked_cache).get_items_report(reader, menu.id)
    assert stale.grand_total_price is None

    reports = ChoiceReportService(hooked_cache)
    async with session_factory() as s:
        items = await reports.get_items_report(s, menu.id)
    async with session_factory() as s:
        users = await reports.get_users_report(s, menu.id)
    assert items.grand_total_price == Decimal("25.00")
    assert users.grand_total_price == items.grand_total_price


async def test_deleting_choice_drops_cached_reports(session_factory, trip, menu, cache):
    await _select(session_factory, menu.id, trip.alice, (menu.cola, 1))
    reports = ChoiceReportService(cache)
    async with session_factory() as s:
        await reports.get_users_report(s, menu.id)
    async with session_factory() as s:
        await submit_selection(s, menu.id, trip.bob, [SelectionLineIn(item_id=menu.cola, quantity=1)], cache)
    async with session_factory() as s:
        await delete_choice(s, menu.id, trip.olivia, cache)

    assert await cache.redis.keys(f"choices:{menu.id}:report:*") == []
