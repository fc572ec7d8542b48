"""Paper trading venue with simulated prices, latency and slippage."""

import random
import uuid
from typing import Any

from launchtrade.config import LaunchTradeSettings, settings
from launchtrade.core.bus import EventBus
from launchtrade.core.errors import CheckpointError, OrderNotFoundError, PositionNotFoundError, VenueError
from launchtrade.core.scheduler import Clock, PeriodicTask, SystemClock
from launchtrade.core.types import (
    BuyResult,
    ClosePositionResult,
    Event,
    EventType,
    Order,
    OrderKind,
    OrderStatus,
    PricePoint,
    SimPosition,
    SimulatedVenueState,
    VenuePosition,
    utcnow,
)
from launchtrade.execution.price_engine import PriceEngine
from launchtrade.execution.slippage import SlippageModel
from launchtrade.execution.venue import Venue
from launchtrade.logging import get_logger
from launchtrade.storage.checkpoint import CheckpointStore

logger = get_logger(__name__)

MIN_ORDER_USD = 1.0
DUST_QUANTITY = 1e-12
PRICE_HISTORY_LIMIT = 1000
_MODIFIABLE_FIELDS = frozenset({"trigger_price", "quantity"})


class PaperVenue(Venue):
    """Simulated venue answering the :class:`Venue` interface.

    Holds a synthetic USD balance, one price process per token and a virtual
    order book. Buys wait a simulated network delay and fill with slippage;
    resting orders are checked on every :meth:`tick` and settle at the ticked
    price. Slippage is folded into the entry price, so the account value
    always equals ``starting_balance + realized + unrealized`` P/L.
    """

    def __init__(
        self,
        starting_balance: float | None = None,
        price_engine: PriceEngine | None = None,
        slippage: SlippageModel | None = None,
        store: CheckpointStore | None = None,
        bus: EventBus | None = None,
        clock: Clock | None = None,
        tick_interval: float | None = None,
        checkpoint_interval: float | None = None,
    ) -> None:
        balance = settings.paper_starting_balance if starting_balance is None else starting_balance
        if balance <= 0:
            raise ValueError(f"Invalid starting_balance: {balance}, must be > 0")
        self._clock = clock or SystemClock()
        self._price_engine = price_engine or PriceEngine(
            settings.paper_price_volatility / 100, clock=self._clock
        )
        self._slippage = slippage or SlippageModel(clock=self._clock)
        self._store = store
        self._bus = bus
        self._tick_interval = tick_interval or settings.paper_tick_interval_seconds
        self._checkpoint_interval = (
            checkpoint_interval or settings.paper_checkpoint_interval_seconds
        )
        self._volume_rng = random.Random()

        self._state = SimulatedVenueState(
            starting_balance=balance, balance=balance, peak_balance=balance
        )
        # Orders that left the book, kept so callers can see how they ended
        self._closed_orders: dict[str, Order] = {}

        self._price_task: PeriodicTask | None = None
        self._checkpoint_task: PeriodicTask | None = None

    @classmethod
    def from_settings(
        cls,
        cfg: LaunchTradeSettings | None = None,
        clock: Clock | None = None,
        bus: EventBus | None = None,
    ) -> "PaperVenue":
        """Build a venue (and its models) from settings."""
        cfg = cfg or settings
        clock = clock or SystemClock()
        rng = random.Random(cfg.paper_seed)
        engine = PriceEngine(cfg.paper_price_volatility / 100, rng=rng, clock=clock)
        slippage = SlippageModel(
            base_slippage=cfg.paper_default_slippage / 100,
            max_slippage=cfg.paper_max_slippage,
            reference_liquidity_usd=cfg.paper_reference_liquidity_usd,
            min_delay_ms=cfg.paper_min_delay_ms,
            max_delay_ms=cfg.paper_max_delay_ms,
            rng=rng,
            clock=clock,
        )
        venue = cls(
            starting_balance=cfg.paper_starting_balance,
            price_engine=engine,
            slippage=slippage,
            store=CheckpointStore(cfg.paper_state_path),
            bus=bus,
            clock=clock,
            tick_interval=cfg.paper_tick_interval_seconds,
            checkpoint_interval=cfg.paper_checkpoint_interval_seconds,
        )
        venue._volume_rng = random.Random(cfg.paper_seed)
        return venue

    @classmethod
    def from_checkpoint(cls, store: CheckpointStore, **kwargs: Any) -> "PaperVenue":
        """Build a venue and resume from the store's checkpoint if one exists."""
        venue = cls(store=store, **kwargs)
        venue.restore()
        return venue

    # ------------------------------------------------------------------
    # State and persistence
    # ------------------------------------------------------------------

    @property
    def state(self) -> SimulatedVenueState:
        return self._state

    def restore(self) -> bool:
        """Load the checkpoint into this venue. Returns True if one was loaded.

        A corrupt checkpoint is logged and the fresh state is kept.
        """
        if self._store is None:
            return False
        try:
            state = self._store.load()
        except CheckpointError as e:
            logger.error(f"Ignoring unreadable paper checkpoint: {e}")
            return False
        if state is None:
            return False
        self.load_state(state)
        return True

    def load_state(self, state: SimulatedVenueState) -> None:
        self._state = state.model_copy(deep=True)
        self._price_engine.load_trends(self._state.trends)
        self._closed_orders.clear()

    def snapshot(self) -> SimulatedVenueState:
        """Deep copy of the current state, trimmed for persistence."""
        snap = self._state.model_copy(deep=True)
        snap.trends = {t: s.model_copy() for t, s in self._price_engine.trends.items()}
        snap.prices = {t: points[-PRICE_HISTORY_LIMIT:] for t, points in snap.prices.items()}
        snap.orders = [o for o in snap.orders if o.status == OrderStatus.OPEN]
        return snap

    async def checkpoint(self) -> None:
        """Persist the current state through the checkpoint store."""
        if self._store is None:
            return
        self._store.save(self.snapshot())

    async def start(self) -> None:
        """Resume from checkpoint and start the price and checkpoint loops."""
        self.restore()
        self._price_task = PeriodicTask(
            "paper-price-loop", self._tick_interval, self.tick_all, self._clock
        )
        self._price_task.start()
        if self._store is not None:
            self._checkpoint_task = PeriodicTask(
                "paper-checkpoint", self._checkpoint_interval, self.checkpoint, self._clock
            )
            self._checkpoint_task.start()
        logger.info(
            f"Paper venue started: balance=${self._state.balance:.2f} "
            f"tokens={len(self._state.prices)} positions={len(self._state.positions)}"
        )

    async def stop(self) -> None:
        """Stop background loops and write a final checkpoint."""
        for task in (self._price_task, self._checkpoint_task):
            if task is not None:
                await task.stop()
        self._price_task = None
        self._checkpoint_task = None
        try:
            await self.checkpoint()
        except CheckpointError as e:
            logger.error(f"Final checkpoint failed: {e}")
        logger.info("Paper venue stopped")

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    def _last_price(self, token_id: str) -> float | None:
        history = self._state.prices.get(token_id)
        return history[-1].price if history else None

    def _record_price(self, token_id: str, price: float) -> None:
        history = self._state.prices.setdefault(token_id, [])
        history.append(
            PricePoint(
                price=price,
                timestamp=self._clock.time(),
                volume=50_000 + self._volume_rng.random() * 500_000,
            )
        )
        if len(history) > PRICE_HISTORY_LIMIT:
            del history[:-PRICE_HISTORY_LIMIT]

    def _ensure_price(self, token_id: str) -> float:
        """Current price, listing the token with an initial price if new."""
        price = self._last_price(token_id)
        if price is None:
            price = self._price_engine.initial_price()
            self._record_price(token_id, price)
            self._price_engine.trend_for(token_id)
            logger.debug(f"Listed {token_id} at {price:.10g}")
        return price

    def set_price(self, token_id: str, price: float) -> None:
        """Record a price without evaluating orders."""
        if price <= 0:
            raise ValueError(f"Invalid price: {price}, must be > 0")
        self._record_price(token_id, price)

    def price_history(self, token_id: str) -> list[PricePoint]:
        return list(self._state.prices.get(token_id, []))

    async def tick(self, token_id: str, price: float | None = None) -> float:
        """Advance one token's price and settle any triggered orders.

        ``price`` overrides the simulated step.
        """
        last = self._ensure_price(token_id)
        if price is None:
            price = self._price_engine.next_price(token_id, last)
        elif price <= 0:
            raise ValueError(f"Invalid price: {price}, must be > 0")
        self._record_price(token_id, price)
        await self._check_triggers(token_id, price)
        return price

    async def tick_all(self) -> None:
        """Tick every listed token."""
        for token_id in list(self._state.prices):
            await self.tick(token_id)

    # ------------------------------------------------------------------
    # Venue interface
    # ------------------------------------------------------------------

    async def get_balance(self) -> float:
        return self._state.balance

    async def get_current_price(self, token_id: str) -> float:
        return self._ensure_price(token_id)

    async def get_position(self, token_id: str) -> VenuePosition:
        pos = self._state.positions.get(token_id)
        return VenuePosition(size=pos.quantity if pos else 0.0)

    async def get_realized_pnl(self, token_id: str) -> float | None:
        return self._state.last_realized.get(token_id)

    async def buy_market(
        self, token_id: str, usd_amount: float, urgency: str = "low"
    ) -> BuyResult:
        """Simulated market buy.

        The amount is clipped to the free balance. Fills wait out the network
        delay and are rejected when slippage exceeds the ceiling.
        """
        if usd_amount <= 0:
            return BuyResult(success=False, error=f"Invalid amount: {usd_amount}")
        amount = min(usd_amount, self._state.balance)
        if amount < MIN_ORDER_USD:
            return BuyResult(
                success=False, error=f"Insufficient balance: ${self._state.balance:.2f}"
            )

        quoted = self._ensure_price(token_id)
        quote = await self._slippage.fill(
            quoted, amount, self._price_engine.base_volatility, urgency
        )
        if not quote.success:
            return BuyResult(success=False, error=quote.error, slippage=quote.slippage)

        # The balance may have moved while this fill was in flight
        amount = min(amount, self._state.balance)
        if amount < MIN_ORDER_USD:
            return BuyResult(
                success=False, error=f"Insufficient balance: ${self._state.balance:.2f}"
            )

        quantity = amount / quote.price
        self._state.balance -= amount
        self._state.total_trades += 1
        self._state.total_slippage_cost += amount - quantity * quoted

        existing = self._state.positions.get(token_id)
        if existing is not None:
            total_qty = existing.quantity + quantity
            existing.entry_price = (existing.quantity * existing.entry_price + amount) / total_qty
            existing.quantity = total_qty
            existing.usd_amount += amount
        else:
            self._state.positions[token_id] = SimPosition(
                token_id=token_id,
                entry_price=quote.price,
                quantity=quantity,
                usd_amount=amount,
                opened_at=self._clock.time(),
            )
            self._state.last_realized.pop(token_id, None)

        logger.info(
            f"[PAPER] Bought {quantity:.6g} {token_id} at {quote.price:.10g} "
            f"(${amount:.2f}, slippage {quote.slippage:.2%}, delay {quote.delay_ms:.0f}ms)"
        )
        return BuyResult(
            success=True,
            id=f"paper-{uuid.uuid4().hex[:12]}",
            filled_price=quote.price,
            amount_out=quantity,
            usd_amount=amount,
            slippage=quote.slippage,
        )

    async def place_stop_loss(self, token_id: str, quantity: float, stop_price: float) -> Order:
        """Rest a stop for the whole holding, replacing any existing stop."""
        pos = self._state.positions.get(token_id)
        if pos is None:
            raise PositionNotFoundError(token_id)
        for order in self._open_orders(token_id):
            if order.kind == OrderKind.STOP:
                self._remove_order(order, OrderStatus.CANCELLED)
        order = Order(
            order_id=f"sl-{uuid.uuid4().hex[:12]}",
            token_id=token_id,
            kind=OrderKind.STOP,
            trigger_price=stop_price,
            quantity=pos.quantity,
        )
        self._state.orders.append(order)
        await self._publish(EventType.ORDER_PLACED, order)
        return order.model_copy()

    async def place_take_profit(self, token_id: str, quantity: float, price: float) -> Order:
        pos = self._state.positions.get(token_id)
        if pos is None:
            raise PositionNotFoundError(token_id)
        order = Order(
            order_id=f"tp-{uuid.uuid4().hex[:12]}",
            token_id=token_id,
            kind=OrderKind.LIMIT,
            trigger_price=price,
            quantity=min(quantity, pos.quantity),
        )
        self._state.orders.append(order)
        await self._publish(EventType.ORDER_PLACED, order)
        return order.model_copy()

    async def modify_order(self, order_id: str, updates: dict[str, Any]) -> Order:
        order = self._find_order(order_id)
        unsupported = set(updates) - _MODIFIABLE_FIELDS
        if unsupported:
            raise VenueError(f"Cannot modify {sorted(unsupported)} on order {order_id}")
        data = order.model_dump()
        data.update(updates)
        data["updated_at"] = utcnow()
        try:
            modified = Order.model_validate(data)
        except ValueError as e:
            raise VenueError(f"Invalid update for order {order_id}: {e}") from e
        index = self._state.orders.index(order)
        self._state.orders[index] = modified
        await self._publish(EventType.ORDER_MODIFIED, modified)
        return modified.model_copy()

    async def cancel_order(self, order_id: str) -> bool:
        try:
            order = self._find_order(order_id)
        except OrderNotFoundError:
            return False
        self._remove_order(order, OrderStatus.CANCELLED)
        await self._publish(EventType.ORDER_CANCELLED, order)
        return True

    async def close_position(self, token_id: str) -> ClosePositionResult:
        """Sell the whole holding at the current price and drop its orders."""
        pos = self._state.positions.get(token_id)
        if pos is None:
            return ClosePositionResult(success=False, error="No position found")
        price = self._last_price(token_id)
        if price is None:
            return ClosePositionResult(success=False, error="No price available")
        profit = self._settle(pos, pos.quantity, price)
        self._drop_position(token_id)
        logger.info(f"[PAPER] Closed {token_id} at {price:.10g} P/L ${profit:.2f}")
        return ClosePositionResult(success=True, profit=profit, exit_price=price)

    # ------------------------------------------------------------------
    # Order book
    # ------------------------------------------------------------------

    def _open_orders(self, token_id: str) -> list[Order]:
        return [
            o
            for o in self._state.orders
            if o.token_id == token_id and o.status == OrderStatus.OPEN
        ]

    def get_open_orders(self, token_id: str | None = None) -> list[Order]:
        """Copies of resting orders, optionally for one token."""
        return [
            o.model_copy()
            for o in self._state.orders
            if o.status == OrderStatus.OPEN and (token_id is None or o.token_id == token_id)
        ]

    async def get_order(self, order_id: str) -> Order | None:
        """Look up a resting or recently closed order."""
        for order in self._state.orders:
            if order.order_id == order_id:
                return order.model_copy()
        closed = self._closed_orders.get(order_id)
        return closed.model_copy() if closed else None

    def _find_order(self, order_id: str) -> Order:
        for order in self._state.orders:
            if order.order_id == order_id and order.status == OrderStatus.OPEN:
                return order
        raise OrderNotFoundError(order_id)

    def _remove_order(self, order: Order, status: OrderStatus) -> None:
        order.status = status
        order.updated_at = utcnow()
        self._state.orders = [o for o in self._state.orders if o.order_id != order.order_id]
        self._closed_orders[order.order_id] = order

    def _drop_position(self, token_id: str) -> None:
        self._state.positions.pop(token_id, None)
        for order in self._open_orders(token_id):
            self._remove_order(order, OrderStatus.CANCELLED)

    def _settle(self, pos: SimPosition, quantity: float, price: float) -> float:
        """Sell ``quantity`` of ``pos`` at ``price`` and book the P/L."""
        profit = quantity * (price - pos.entry_price)
        pos.usd_amount -= quantity * pos.entry_price
        pos.quantity -= quantity
        self._state.balance += quantity * price
        self._state.realized_pnl += profit
        self._state.closed_trades += 1
        if profit > 0:
            self._state.winning_trades += 1
        self._state.last_realized[pos.token_id] = (
            self._state.last_realized.get(pos.token_id, 0.0) + profit
        )
        self._update_drawdown()
        return profit

    def _update_drawdown(self) -> None:
        equity = self._account_value()
        if equity > self._state.peak_balance:
            self._state.peak_balance = equity
        if self._state.peak_balance > 0:
            drawdown = (self._state.peak_balance - equity) / self._state.peak_balance
            self._state.max_drawdown = max(self._state.max_drawdown, drawdown)

    async def _check_triggers(self, token_id: str, price: float) -> None:
        orders = self._open_orders(token_id)
        if not orders:
            return
        pos = self._state.positions.get(token_id)
        if pos is None:
            for order in orders:
                self._remove_order(order, OrderStatus.CANCELLED)
            return

        # Stops first: a triggered stop takes the whole holding
        for order in orders:
            if order.kind == OrderKind.STOP and price <= order.trigger_price:
                profit = self._settle(pos, pos.quantity, price)
                self._remove_order(order, OrderStatus.TRIGGERED)
                self._drop_position(token_id)
                logger.info(
                    f"[PAPER] Stop triggered for {token_id} at {price:.10g} P/L ${profit:.2f}"
                )
                await self._publish(EventType.ORDER_TRIGGERED, order, profit=profit)
                return

        limits = sorted(
            (o for o in orders if o.kind == OrderKind.LIMIT), key=lambda o: o.trigger_price
        )
        for order in limits:
            if price < order.trigger_price:
                break
            remaining = pos.quantity - order.quantity
            quantity = pos.quantity if remaining <= DUST_QUANTITY else order.quantity
            profit = self._settle(pos, quantity, price)
            self._remove_order(order, OrderStatus.TRIGGERED)
            logger.info(
                f"[PAPER] Take-profit triggered for {token_id} at {price:.10g} "
                f"qty={quantity:.6g} P/L ${profit:.2f}"
            )
            await self._publish(EventType.ORDER_TRIGGERED, order, profit=profit)
            if pos.quantity <= DUST_QUANTITY:
                self._drop_position(token_id)
                return
        # Resting stop never sells more than is held
        for order in self._open_orders(token_id):
            if order.kind == OrderKind.STOP and order.quantity > pos.quantity:
                order.quantity = pos.quantity

    async def _publish(self, event_type: EventType, order: Order, **extra: Any) -> None:
        if self._bus is None:
            return
        try:
            await self._bus.publish(
                Event(event_type=event_type, data={"order": order.model_copy(), **extra})
            )
        except RuntimeError as e:
            logger.warning(f"Dropped {event_type.value} event: {e}")

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _account_value(self) -> float:
        value = self._state.balance
        for token_id, pos in self._state.positions.items():
            price = self._last_price(token_id) or pos.entry_price
            value += pos.quantity * price
        return value

    def get_portfolio_summary(self) -> dict[str, Any]:
        """Account overview at the latest prices."""
        position_value = 0.0
        unrealized = 0.0
        for token_id, pos in self._state.positions.items():
            price = self._last_price(token_id) or pos.entry_price
            position_value += pos.quantity * price
            unrealized += pos.quantity * (price - pos.entry_price)
        total_value = self._state.balance + position_value
        start = self._state.starting_balance
        closed = self._state.closed_trades
        return {
            "balance": self._state.balance,
            "position_value": position_value,
            "total_value": total_value,
            "unrealized_pnl": unrealized,
            "realized_pnl": self._state.realized_pnl,
            "total_pnl": unrealized + self._state.realized_pnl,
            "active_positions": len(self._state.positions),
            "total_trades": self._state.total_trades,
            "win_rate": (self._state.winning_trades / closed * 100) if closed else 0.0,
            "max_drawdown": self._state.max_drawdown * 100,
            "roi": (total_value - start) / start * 100,
            "total_slippage_cost": self._state.total_slippage_cost,
        }

    def get_detailed_positions(self) -> list[dict[str, Any]]:
        details = []
        for token_id, pos in self._state.positions.items():
            price = self._last_price(token_id) or pos.entry_price
            pnl = pos.quantity * (price - pos.entry_price)
            cost = pos.quantity * pos.entry_price
            details.append(
                {
                    "token_id": token_id,
                    "entry_price": pos.entry_price,
                    "current_price": price,
                    "quantity": pos.quantity,
                    "position_value": pos.quantity * price,
                    "unrealized_pnl": pnl,
                    "unrealized_pnl_percent": (pnl / cost * 100) if cost else 0.0,
                    "holding_seconds": self._clock.time() - pos.opened_at,
                }
            )
        return details
