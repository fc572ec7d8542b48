"""Tests for the simulated paper venue."""

import asyncio
import random

import pytest

from launchtrade.core.bus import EventBus
from launchtrade.core.errors import OrderNotFoundError, PositionNotFoundError, VenueError
from launchtrade.core.types import EventType, OrderStatus
from launchtrade.execution.paper_venue import PRICE_HISTORY_LIMIT, PaperVenue
from launchtrade.execution.price_engine import PriceEngine
from launchtrade.execution.slippage import SlippageModel


async def _open(venue: PaperVenue, token: str = "X", usd: float = 100.0, price: float = 1.0):
    venue.set_price(token, price)
    result = await venue.buy_market(token, usd)
    assert result.success
    return result


@pytest.mark.asyncio
async def test_buy_reduces_balance_and_opens_position(venue) -> None:
    result = await _open(venue)

    assert result.usd_amount == 100.0
    assert result.filled_price >= 1.0 * (1 - 0.0025)
    assert result.amount_out == pytest.approx(100.0 / result.filled_price)
    assert await venue.get_balance() == pytest.approx(900.0)
    assert (await venue.get_position("X")).size == pytest.approx(result.amount_out)


@pytest.mark.asyncio
async def test_buy_clipped_to_balance(venue) -> None:
    result = await _open(venue, usd=5000.0)
    assert result.usd_amount == pytest.approx(1000.0)
    assert await venue.get_balance() == pytest.approx(0.0)

    second = await venue.buy_market("Y", 10.0)
    assert not second.success
    assert second.error.startswith("Insufficient balance")


@pytest.mark.asyncio
async def test_second_buy_averages_entry(venue) -> None:
    first = await _open(venue, usd=100.0, price=1.0)
    venue.set_price("X", 2.0)
    second = await venue.buy_market("X", 100.0)

    pos = venue.state.positions["X"]
    assert pos.quantity == pytest.approx(first.amount_out + second.amount_out)
    assert pos.entry_price == pytest.approx(200.0 / pos.quantity)
    assert pos.usd_amount == pytest.approx(200.0)


@pytest.mark.asyncio
async def test_excessive_slippage_leaves_balance_untouched(clock, store) -> None:
    rng = random.Random(1)
    venue = PaperVenue(
        starting_balance=1000.0,
        price_engine=PriceEngine(0.05, rng=rng, clock=clock),
        slippage=SlippageModel(base_slippage=0.5, min_delay_ms=0.0, max_delay_ms=0.0, rng=rng, clock=clock),
        store=store,
        clock=clock,
    )
    venue.set_price("X", 1.0)
    result = await venue.buy_market("X", 100.0)

    assert not result.success
    assert "Excessive slippage" in result.error
    assert await venue.get_balance() == 1000.0
    assert (await venue.get_position("X")).size == 0.0


@pytest.mark.asyncio
async def test_stop_trigger_sells_whole_holding(venue) -> None:
    await _open(venue)
    qty = venue.state.positions["X"].quantity
    order = await venue.place_stop_loss("X", qty, 0.9)

    await venue.tick("X", 0.95)
    assert (await venue.get_position("X")).size == pytest.approx(qty)

    await venue.tick("X", 0.9)
    assert (await venue.get_position("X")).size == 0.0
    assert await venue.get_balance() == pytest.approx(900.0 + qty * 0.9)
    assert await venue.get_realized_pnl("X") == pytest.approx(qty * 0.9 - 100.0)
    assert (await venue.get_order(order.order_id)).status == OrderStatus.TRIGGERED
    assert venue.get_open_orders() == []


@pytest.mark.asyncio
async def test_take_profits_fill_in_price_order(venue) -> None:
    await _open(venue)
    qty = venue.state.positions["X"].quantity
    stop = await venue.place_stop_loss("X", qty, 0.5)
    tp1 = await venue.place_take_profit("X", qty / 2, 1.5)
    tp2 = await venue.place_take_profit("X", qty / 2, 2.0)

    await venue.tick("X", 1.6)
    assert (await venue.get_position("X")).size == pytest.approx(qty / 2)
    assert (await venue.get_order(tp1.order_id)).status == OrderStatus.TRIGGERED
    assert (await venue.get_order(tp2.order_id)).status == OrderStatus.OPEN
    # resting stop shrinks with the holding
    assert (await venue.get_order(stop.order_id)).quantity == pytest.approx(qty / 2)

    await venue.tick("X", 2.1)
    assert (await venue.get_position("X")).size == 0.0
    assert (await venue.get_order(tp2.order_id)).status == OrderStatus.TRIGGERED
    assert (await venue.get_order(stop.order_id)).status == OrderStatus.CANCELLED
    entry = 100.0 / qty
    expected = qty / 2 * (1.6 - entry) + qty / 2 * (2.1 - entry)
    assert await venue.get_realized_pnl("X") == pytest.approx(expected)


@pytest.mark.asyncio
async def test_stop_checked_before_limits(venue) -> None:
    await _open(venue)
    qty = venue.state.positions["X"].quantity
    stop = await venue.place_stop_loss("X", qty, 0.9)
    tp = await venue.place_take_profit("X", qty, 0.8)

    await venue.tick("X", 0.85)

    assert (await venue.get_order(stop.order_id)).status == OrderStatus.TRIGGERED
    assert (await venue.get_order(tp.order_id)).status == OrderStatus.CANCELLED
    assert venue.state.closed_trades == 1


@pytest.mark.asyncio
async def test_new_stop_replaces_existing_one(venue) -> None:
    await _open(venue)
    first = await venue.place_stop_loss("X", 1.0, 0.8)
    second = await venue.place_stop_loss("X", 1.0, 0.85)

    assert (await venue.get_order(first.order_id)).status == OrderStatus.CANCELLED
    assert [o.order_id for o in venue.get_open_orders("X")] == [second.order_id]
    assert second.quantity == pytest.approx(venue.state.positions["X"].quantity)


@pytest.mark.asyncio
async def test_take_profit_capped_at_holding(venue) -> None:
    await _open(venue)
    qty = venue.state.positions["X"].quantity
    order = await venue.place_take_profit("X", qty * 3, 1.5)
    assert order.quantity == pytest.approx(qty)


@pytest.mark.asyncio
async def test_orders_require_a_position(venue) -> None:
    venue.set_price("X", 1.0)
    with pytest.raises(PositionNotFoundError):
        await venue.place_stop_loss("X", 1.0, 0.5)
    with pytest.raises(PositionNotFoundError):
        await venue.place_take_profit("X", 1.0, 1.5)


@pytest.mark.asyncio
async def test_modify_order(venue) -> None:
    await _open(venue)
    stop = await venue.place_stop_loss("X", 1.0, 0.8)

    modified = await venue.modify_order(stop.order_id, {"trigger_price": 0.9})
    assert modified.trigger_price == 0.9
    assert modified.updated_at is not None
    assert venue.get_open_orders("X")[0].trigger_price == 0.9

    with pytest.raises(OrderNotFoundError):
        await venue.modify_order("missing", {"trigger_price": 0.9})
    with pytest.raises(VenueError):
        await venue.modify_order(stop.order_id, {"kind": "limit"})
    with pytest.raises(VenueError):
        await venue.modify_order(stop.order_id, {"trigger_price": -1.0})


@pytest.mark.asyncio
async def test_cancel_order(venue) -> None:
    await _open(venue)
    stop = await venue.place_stop_loss("X", 1.0, 0.8)

    assert await venue.cancel_order(stop.order_id) is True
    assert await venue.cancel_order(stop.order_id) is False
    assert venue.get_open_orders() == []


@pytest.mark.asyncio
async def test_close_position(venue) -> None:
    await _open(venue)
    qty = venue.state.positions["X"].quantity
    await venue.place_stop_loss("X", qty, 0.5)
    venue.set_price("X", 1.2)

    result = await venue.close_position("X")
    assert result.success
    assert result.exit_price == 1.2
    assert result.profit == pytest.approx(qty * 1.2 - 100.0)
    assert venue.get_open_orders() == []

    again = await venue.close_position("X")
    assert not again.success
    assert again.error == "No position found"


@pytest.mark.asyncio
async def test_account_value_matches_pnl(venue) -> None:
    await _open(venue, "A", 200.0, 0.5)
    await _open(venue, "B", 100.0, 0.002)
    qty_a = venue.state.positions["A"].quantity
    await venue.place_take_profit("A", qty_a / 4, 0.6)
    await venue.tick("A", 0.65)
    venue.set_price("B", 0.0015)

    summary = venue.get_portfolio_summary()
    assert summary["total_value"] == pytest.approx(
        1000.0 + summary["realized_pnl"] + summary["unrealized_pnl"]
    )
    assert summary["total_pnl"] == pytest.approx(summary["total_value"] - 1000.0)
    assert summary["active_positions"] == 2
    assert summary["total_trades"] == 2
    assert summary["win_rate"] == 100.0


@pytest.mark.asyncio
async def test_detailed_positions(venue, clock) -> None:
    await _open(venue)
    venue.set_price("X", 1.1)
    await clock.advance(30)

    [detail] = venue.get_detailed_positions()
    assert detail["token_id"] == "X"
    assert detail["current_price"] == 1.1
    assert detail["holding_seconds"] == 30
    assert detail["unrealized_pnl"] == pytest.approx(detail["quantity"] * 1.1 - 100.0)


@pytest.mark.asyncio
async def test_current_price_lists_token_once(venue) -> None:
    first = await venue.get_current_price("NEW")
    second = await venue.get_current_price("NEW")
    assert first == second
    assert 1e-6 <= first <= 1e-2
    assert len(venue.price_history("NEW")) == 1


def test_price_history_is_bounded(venue) -> None:
    for i in range(PRICE_HISTORY_LIMIT + 5):
        venue.set_price("X", 1.0 + i)
    history = venue.price_history("X")
    assert len(history) == PRICE_HISTORY_LIMIT
    assert history[-1].price == 1.0 + PRICE_HISTORY_LIMIT + 4


@pytest.mark.asyncio
async def test_checkpoint_round_trip(venue, store, clock) -> None:
    await _open(venue)
    stop = await venue.place_stop_loss("X", 1.0, 0.8)
    await venue.checkpoint()

    resumed = PaperVenue.from_checkpoint(store, starting_balance=1000.0, clock=clock)
    assert await resumed.get_balance() == pytest.approx(900.0)
    assert (await resumed.get_position("X")).size == pytest.approx(
        venue.state.positions["X"].quantity
    )
    assert [o.order_id for o in resumed.get_open_orders()] == [stop.order_id]
    assert await resumed.get_current_price("X") == 1.0


@pytest.mark.asyncio
async def test_corrupt_checkpoint_keeps_fresh_state(store, clock, caplog) -> None:
    store.path.write_text("{not json", encoding="utf-8")

    venue = PaperVenue.from_checkpoint(store, starting_balance=500.0, clock=clock)
    assert await venue.get_balance() == 500.0
    assert venue.state.positions == {}
    assert "unreadable paper checkpoint" in caplog.text


@pytest.mark.asyncio
async def test_background_loops(venue, store, clock) -> None:
    venue.set_price("X", 1.0)
    await venue.start()
    await asyncio.sleep(0)

    await clock.advance(5)
    assert len(venue.price_history("X")) == 2
    await clock.advance(5)
    assert len(venue.price_history("X")) == 3

    await venue.stop()
    assert store.exists()
    await clock.advance(5)
    assert len(venue.price_history("X")) == 3


@pytest.mark.asyncio
async def test_order_events_published(clock, store) -> None:
    bus = EventBus()
    seen = []
    bus.subscribe(EventType.ORDER_TRIGGERED, seen.append)
    rng = random.Random(4)
    venue = PaperVenue(
        starting_balance=1000.0,
        price_engine=PriceEngine(0.05, rng=rng, clock=clock),
        slippage=SlippageModel(base_slippage=0.0, min_delay_ms=0.0, max_delay_ms=0.0, rng=rng, clock=clock),
        store=store,
        bus=bus,
        clock=clock,
    )
    await _open(venue)
    await venue.place_stop_loss("X", 1.0, 0.9)
    await venue.tick("X", 0.5)
    await bus.flush()

    assert len(seen) == 1
    assert seen[0].data["order"].status == OrderStatus.TRIGGERED
    assert seen[0].data["profit"] < 0
