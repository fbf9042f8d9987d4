import asyncio

import pytest

from app.domain import OrderFilter, OrderLine, OrderStatus, SessionStatus
from app.errors import (
    AuthorizationError, ConflictError, InvalidRequestError, InvalidStateError, NotFoundError,
)
from app.pricing import PricingRules, compute_time_cost
from app.sessions import CafeSessionManager
from tests.conftest import T0

USER = 7
OTHER_USER = 8
TEA = 1
CAKE = 2
PARFAIT = 3


async def test_check_in_creates_active_session(manager):
    session = await manager.check_in(USER, table_number="A3")

    assert session.status == SessionStatus.ACTIVE
    assert session.check_in_time == T0
    assert session.table_number == "A3"
    assert session.check_out_time is None
    assert session.total_time is None
    assert session.total_cost is None
    assert await manager.get_active_session(USER) == session


async def test_check_in_twice_conflicts(manager):
    await manager.check_in(USER)
    with pytest.raises(ConflictError):
        await manager.check_in(USER)


async def test_check_in_again_after_checkout(manager, clock):
    first = await manager.check_in(USER)
    clock.advance(seconds=1800)
    await manager.check_out(first.id, USER)

    second = await manager.check_in(USER)

    assert second.id != first.id
    assert await manager.get_active_session(USER) == second


async def test_users_have_independent_sessions(manager):
    await manager.check_in(USER)
    other = await manager.check_in(OTHER_USER)
    assert (await manager.get_active_session(OTHER_USER)).id == other.id


async def test_checkout_without_orders_bills_time_only(manager, clock, rules):
    session = await manager.check_in(USER)
    clock.advance(seconds=4000)

    done = await manager.check_out(session.id, USER)

    assert done.status == SessionStatus.COMPLETED
    assert done.total_time == 4000
    assert done.total_cost == compute_time_cost(4000, rules)
    assert done.check_out_time == T0 + 4000 * 1000
    assert done.check_in_time == T0
    assert await manager.get_active_session(USER) is None


async def test_ninety_minute_visit_with_two_orders(manager, clock):
    session = await manager.check_in(USER)
    clock.advance(seconds=600)
    await manager.place_order(session.id, USER, [OrderLine(menu_item_id=TEA, quantity=1)])
    clock.advance(seconds=600)
    await manager.place_order(session.id, USER, [{"menu_item_id": CAKE, "quantity": 1}])
    clock.advance(seconds=4200)

    done = await manager.check_out(session.id, USER)

    assert done.total_time == 5400
    assert done.total_cost == 1040


async def test_short_visit_reports_real_duration(manager, clock):
    session = await manager.check_in(USER)
    clock.advance(seconds=60)

    done = await manager.check_out(session.id, USER)

    assert done.total_time == 60
    assert done.total_cost == 500


async def test_short_visit_is_billed_the_minimum_duration(storage, clock):
    rules = PricingRules(base_fee=0, included_seconds=0, per_minute_rate=10, daily_cap=2000,
                         minimum_session_seconds=900)
    manager = CafeSessionManager(storage, clock, rules)
    session = await manager.check_in(USER)
    clock.advance(seconds=60)

    done = await manager.check_out(session.id, USER)

    assert done.total_cost == 150
    assert done.total_time == 60
    assert done.check_in_time == T0


async def test_minimum_duration_policy_can_be_disabled(storage, clock):
    rules = PricingRules(base_fee=0, included_seconds=0, per_minute_rate=10, daily_cap=2000,
                         minimum_session_seconds=0)
    manager = CafeSessionManager(storage, clock, rules)
    session = await manager.check_in(USER)
    clock.advance(seconds=60)

    done = await manager.check_out(session.id, USER)

    assert done.total_cost == 10


async def test_checkout_twice_is_rejected_without_rewriting(manager, clock):
    session = await manager.check_in(USER)
    clock.advance(seconds=5400)
    done = await manager.check_out(session.id, USER)

    clock.advance(seconds=3600)
    with pytest.raises(InvalidStateError) as exc:
        await manager.check_out(session.id, USER)

    assert exc.value.reason == "session_not_active"
    stored = await manager.storage.get_session(session.id)
    assert stored.total_cost == done.total_cost
    assert stored.total_time == done.total_time
    assert stored.check_out_time == done.check_out_time


async def test_concurrent_checkouts_only_one_wins(manager, clock):
    session = await manager.check_in(USER)
    await manager.place_order(session.id, USER, [OrderLine(menu_item_id=CAKE, quantity=2)])
    clock.advance(seconds=7200)

    results = await asyncio.gather(
        manager.check_out(session.id, USER),
        manager.check_out(session.id, USER),
        return_exceptions=True,
    )

    finished = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(finished) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], InvalidStateError)
    assert finished[0].total_cost == 980 + 400
    assert (await manager.storage.get_session(session.id)).total_cost == 1380


async def test_checkout_unknown_session(manager):
    with pytest.raises(NotFoundError):
        await manager.check_out(404, USER)


async def test_checkout_someone_elses_session(manager):
    session = await manager.check_in(USER)
    with pytest.raises(AuthorizationError):
        await manager.check_out(session.id, OTHER_USER)
    assert (await manager.storage.get_session(session.id)).status == SessionStatus.ACTIVE


async def test_checkout_with_corrupt_check_in_fails_loudly(manager, storage, clock):
    session = await manager.check_in(USER)
    storage.sessions[session.id] = storage.sessions[session.id].model_copy(update={"check_in_time": None})
    clock.advance(seconds=3600)

    with pytest.raises(InvalidStateError) as exc:
        await manager.check_out(session.id, USER)

    assert exc.value.reason == "corrupt_timestamp"
    stored = await storage.get_session(session.id)
    assert stored.status == SessionStatus.ACTIVE
    assert stored.total_cost is None


async def test_checkout_with_check_in_in_the_future_costs_base_fee(manager, storage):
    session = await manager.check_in(USER)
    storage.sessions[session.id] = storage.sessions[session.id].model_copy(
        update={"check_in_time": T0 + 120_000}
    )

    done = await manager.check_out(session.id, USER)

    assert done.total_time == 0
    assert done.total_cost == 500


async def test_place_order_snapshots_prices(manager, storage):
    session = await manager.check_in(USER)
    order = await manager.place_order(session.id, USER, [
        OrderLine(menu_item_id=TEA, quantity=3),
        OrderLine(menu_item_id=CAKE, quantity=1),
    ])

    assert order.total_cost == 500
    assert order.status == OrderStatus.PENDING
    assert [(i.menu_item_id, i.quantity, i.price) for i in order.items] == [(TEA, 3, 100), (CAKE, 1, 200)]

    storage.menu[TEA] = storage.menu[TEA].model_copy(update={"price": 1000})
    [stored] = await manager.list_orders(session.id, USER)
    assert stored.total_cost == 500
    assert stored.items[0].price == 100


async def test_place_order_defaults_to_active_session(manager):
    session = await manager.check_in(USER)
    order = await manager.place_order(None, USER, [OrderLine(menu_item_id=TEA)])
    assert order.session_id == session.id


async def test_place_order_without_session(manager):
    with pytest.raises(InvalidStateError) as exc:
        await manager.place_order(None, USER, [OrderLine(menu_item_id=TEA)])
    assert exc.value.reason == "no_active_session"


async def test_place_order_on_ended_session(manager, clock):
    session = await manager.check_in(USER)
    clock.advance(seconds=1200)
    await manager.check_out(session.id, USER)

    with pytest.raises(InvalidStateError) as exc:
        await manager.place_order(session.id, USER, [OrderLine(menu_item_id=TEA)])
    assert exc.value.reason == "session_ended"


async def test_no_session_and_ended_session_are_distinguishable(manager, clock):
    with pytest.raises(InvalidStateError) as no_session:
        await manager.place_order(None, USER, [OrderLine(menu_item_id=TEA)])

    session = await manager.check_in(USER)
    await manager.check_out(session.id, USER)
    with pytest.raises(InvalidStateError) as ended:
        await manager.place_order(session.id, USER, [OrderLine(menu_item_id=TEA)])

    assert no_session.value.reason != ended.value.reason
    assert str(no_session.value) != str(ended.value)


async def test_storage_rechecks_session_at_write_time(manager, storage, clock):
    session = await manager.check_in(USER)
    await manager.check_out(session.id, USER)

    with pytest.raises(InvalidStateError):
        await storage.create_order(session.id, USER, clock.now(), 100, [])
    assert await storage.list_orders(session.id) == []


async def test_place_order_validation(manager):
    session = await manager.check_in(USER)

    with pytest.raises(InvalidRequestError):
        await manager.place_order(session.id, USER, [])
    with pytest.raises(InvalidRequestError):
        await manager.place_order(session.id, USER, [OrderLine(menu_item_id=TEA, quantity=0)])
    with pytest.raises(NotFoundError):
        await manager.place_order(session.id, USER, [OrderLine(menu_item_id=999)])
    with pytest.raises(NotFoundError):
        await manager.place_order(session.id, USER, [OrderLine(menu_item_id=PARFAIT)])
    with pytest.raises(NotFoundError):
        await manager.place_order(999, USER, [OrderLine(menu_item_id=TEA)])
    with pytest.raises(AuthorizationError):
        await manager.place_order(session.id, OTHER_USER, [OrderLine(menu_item_id=TEA)])


async def test_order_subtotal_filters(manager, storage):
    session = await manager.check_in(USER)
    await manager.place_order(session.id, USER, [OrderLine(menu_item_id=TEA)])
    second = await manager.place_order(session.id, USER, [OrderLine(menu_item_id=CAKE)])
    storage.orders[second.id] = storage.orders[second.id].model_copy(update={"status": OrderStatus.COMPLETED})

    assert await manager.get_order_subtotal(session.id, OrderFilter.ALL) == 300
    assert await manager.get_order_subtotal(session.id, OrderFilter.PENDING) == 100
    assert await manager.get_order_subtotal(session.id, "completed") == 200
    assert await manager.get_order_subtotal(12345) == 0


async def test_running_receipt_for_active_session(manager, clock):
    session = await manager.check_in(USER)
    await manager.place_order(session.id, USER, [OrderLine(menu_item_id=CAKE)])
    clock.advance(seconds=3660)

    receipt = await manager.get_receipt(session.id, USER)

    assert receipt.estimated
    assert receipt.time_cost == 508
    assert receipt.total == 708
    assert receipt.duration_formatted == "1h 1m"


async def test_session_history_newest_first(manager, clock):
    first = await manager.check_in(USER)
    clock.advance(seconds=1800)
    await manager.check_out(first.id, USER)
    clock.advance(seconds=3600)
    second = await manager.check_in(USER)

    history = await manager.session_history(USER)

    assert [s.id for s in history] == [second.id, first.id]
    assert await manager.session_history(OTHER_USER) == []
