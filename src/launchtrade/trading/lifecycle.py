"""Trade lifecycle: admit, open, protect, trail and close positions.

:class:`TradeLifecycleManager` is the single owner of the open-position
registry. At most one position (or one in-flight open) exists per token; a
second request for the same token is rejected, not queued. Venue failures end
the attempt with a failed result and leave no half-built state behind.
"""

import asyncio
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any

from launchtrade.config import LaunchTradeSettings, settings
from launchtrade.core.scheduler import Clock, SystemClock
from launchtrade.core.types import (
    CloseResult,
    ExitType,
    Order,
    OrderStatus,
    Position,
    Signal,
    TradeResult,
)
from launchtrade.execution.venue import Venue
from launchtrade.logging import clear_trading_context, get_logger, set_trading_context
from launchtrade.notify import Notifier, NullNotifier, notify_safely
from launchtrade.risk.channels import ChannelRegistry
from launchtrade.risk.manager import RiskManager
from launchtrade.trading.trailing_stop import TrailingStopController

logger = get_logger(__name__)


def split_quantity(quantity: float, parts: int) -> list[float]:
    """Split ``quantity`` into ``parts`` equal shares.

    The last share takes the rounding remainder so the shares sum to
    ``quantity`` exactly.
    """
    if parts <= 0:
        return []
    share = quantity / parts
    shares = [share] * (parts - 1)
    shares.append(quantity - share * (parts - 1))
    return shares


class TradeLifecycleManager:
    """Orchestrates the life of every position.

    Args:
        venue: Live or paper venue.
        risk: Session risk gate.
        channels: Channel profile registry.
        notifier: Receives open/exit notifications (fire-and-forget).
        cfg: Settings for sizing caps and trailing stops.
        clock: Drives trailing-stop tasks.
    """

    def __init__(
        self,
        venue: Venue,
        risk: RiskManager | None = None,
        channels: ChannelRegistry | None = None,
        notifier: Notifier | None = None,
        cfg: LaunchTradeSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._venue = venue
        self._channels = channels or ChannelRegistry(cfg=self._cfg)
        self._risk = risk or RiskManager(channels=self._channels, cfg=self._cfg)
        self._notifier = notifier or NullNotifier()
        self._clock = clock or SystemClock()

        self._positions: dict[str, Position] = {}
        self._in_flight: set[str] = set()
        self._closing: set[str] = set()
        self._trailing: dict[str, TrailingStopController] = {}
        self._notify_tasks: set[asyncio.Task[None]] = set()
        self._channel_stats: dict[str, dict[str, float]] = defaultdict(
            lambda: {"total_trades": 0, "wins": 0, "losses": 0, "total_profit": 0.0}
        )

    @property
    def risk(self) -> RiskManager:
        return self._risk

    @property
    def venue(self) -> Venue:
        return self._venue

    def get_position(self, token_id: str) -> Position | None:
        return self._positions.get(token_id)

    def get_positions(self) -> list[Position]:
        return list(self._positions.values())

    def is_trading(self, token_id: str) -> bool:
        return token_id in self._positions or token_id in self._in_flight

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    async def open_trade(self, signal: Signal) -> TradeResult:
        """Admit, size, buy and protect a new position for ``signal``."""
        token_id = signal.token_id
        if self.is_trading(token_id):
            logger.warning(f"Already trading {token_id}, skipping duplicate")
            return TradeResult(success=False, token_id=token_id, reason=f"Already trading {token_id}")

        self._in_flight.add(token_id)
        set_trading_context(token_id=token_id, channel=signal.source_channel or None)
        try:
            return await self._open(signal)
        finally:
            self._in_flight.discard(token_id)
            clear_trading_context()

    async def _open(self, signal: Signal) -> TradeResult:
        token_id = signal.token_id
        profile = self._channels.get(signal.source_channel)

        try:
            balance = await self._venue.get_balance()
            equity = balance + await self._mark_to_market()
        except Exception as e:
            logger.error(f"Could not read account state: {e}", exc_info=True)
            return TradeResult(success=False, token_id=token_id, reason=f"Venue error: {e}")

        today = datetime.fromtimestamp(self._clock.time(), UTC).date()
        self._risk.roll_session_if_due(today, equity)
        self._risk.observe_equity(equity)
        assessment = self._risk.evaluate(
            signal, equity, list(self._positions.values()), profile
        )
        if not assessment.allowed:
            return TradeResult(
                success=False,
                token_id=token_id,
                reason="; ".join(assessment.reasons),
                assessment=assessment,
            )

        effective_percent = min(
            signal.trade_percent * profile.risk_multiplier,
            profile.max_trade_percent,
            self._cfg.max_trade_percent,
            assessment.adjusted_trade_percent,
        )
        usd_amount = balance * effective_percent / 100
        logger.info(
            f"Buying {token_id}: ${usd_amount:.2f} ({effective_percent:.2f}% of ${balance:.2f}, "
            f"channel {profile.name}, risk score {assessment.risk_score})"
        )

        try:
            buy = await self._venue.buy_market(token_id, usd_amount, signal.urgency)
        except Exception as e:
            logger.error(f"Buy failed for {token_id}: {e}", exc_info=True)
            return TradeResult(
                success=False, token_id=token_id, reason=f"Buy failed: {e}", assessment=assessment
            )
        if not buy.success:
            reason = buy.error or "Buy failed"
            logger.warning(f"Buy rejected for {token_id}: {reason}")
            return TradeResult(
                success=False, token_id=token_id, reason=reason, assessment=assessment
            )

        entry_price = buy.filled_price
        quantity = buy.amount_out
        stop_percent = signal.stop_loss_percent or profile.default_stop_loss_percent
        stop_price = entry_price * (1 - stop_percent / 100)
        tp_prices = [entry_price * (1 + target / 100) for target in signal.take_profit_targets]

        placed: list[Order] = []
        try:
            stop_order = await self._venue.place_stop_loss(token_id, quantity, stop_price)
            placed.append(stop_order)
            logger.info(f"Stop loss placed at {stop_price:.10g} ({stop_percent}%)")
            for tp_price, share in zip(
                tp_prices, split_quantity(quantity, len(tp_prices)), strict=True
            ):
                placed.append(await self._venue.place_take_profit(token_id, share, tp_price))
                logger.info(f"Take profit placed at {tp_price:.10g} for {share:.6g}")
        except Exception as e:
            logger.error(f"Protective orders failed for {token_id}: {e}", exc_info=True)
            await self._unwind(token_id, placed)
            return TradeResult(
                success=False,
                token_id=token_id,
                reason=f"Protective orders failed: {e}",
                assessment=assessment,
            )

        position = Position(
            token_id=token_id,
            entry_price=entry_price,
            quantity=quantity,
            initial_quantity=quantity,
            stop_price=stop_price,
            take_profit_prices=tp_prices,
            source_channel=signal.source_channel,
            channel_risk_profile=profile,
            usd_amount=buy.usd_amount,
            trade_percent=effective_percent,
            stop_order_id=stop_order.order_id,
            take_profit_order_ids=[o.order_id for o in placed[1:]],
        )
        self._positions[token_id] = position
        self._start_trailing(position)
        self._fire(self._notifier.notify_trade_execution(position), "notify_trade_execution")

        logger.info(
            f"Opened {token_id}: qty={quantity:.6g} entry={entry_price:.10g} "
            f"stop={stop_price:.10g} tps={len(tp_prices)}"
        )
        return TradeResult(
            success=True,
            token_id=token_id,
            reason="Trade executed",
            entry_price=entry_price,
            quantity=quantity,
            usd_amount=buy.usd_amount,
            order_id=buy.id,
            assessment=assessment,
        )

    async def _unwind(self, token_id: str, placed: list[Order]) -> None:
        """Cancel placed orders and liquidate a holding that could not be protected."""
        for order in placed:
            try:
                await self._venue.cancel_order(order.order_id)
            except Exception as e:
                logger.error(f"Cancel failed for {order.order_id} during unwind: {e}")
        try:
            result = await self._venue.close_position(token_id)
        except Exception as e:
            logger.error(f"Liquidation failed for {token_id} during unwind: {e}", exc_info=True)
            return
        if result.success:
            logger.warning(f"Unprotected {token_id} liquidated, P/L ${result.profit:.2f}")
        else:
            logger.error(f"Liquidation failed for {token_id} during unwind: {result.error}")

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    async def close_trade(
        self, token_id: str, exit_type: ExitType | str = ExitType.MANUAL
    ) -> CloseResult:
        """Cancel a position's orders and liquidate it.

        A second close for a token whose close is still running is rejected.
        """
        exit_type = ExitType(exit_type)
        if token_id in self._in_flight:
            return CloseResult(
                success=False, token_id=token_id, reason="Open in progress", exit_type=exit_type
            )
        if token_id in self._closing:
            return CloseResult(
                success=False, token_id=token_id, reason="Close in progress", exit_type=exit_type
            )
        position = self._positions.get(token_id)
        if position is None:
            logger.warning(f"No active trade found for {token_id}")
            return CloseResult(
                success=False, token_id=token_id, reason="No active trade", exit_type=exit_type
            )

        self._closing.add(token_id)
        set_trading_context(token_id=token_id, channel=position.source_channel or None)
        try:
            return await self._close(position, exit_type)
        finally:
            self._closing.discard(token_id)
            clear_trading_context()

    async def _close(self, position: Position, exit_type: ExitType) -> CloseResult:
        token_id = position.token_id
        await self._stop_trailing(token_id)

        for order_id in [position.stop_order_id, *position.take_profit_order_ids]:
            if order_id is None:
                continue
            try:
                await self._venue.cancel_order(order_id)
            except Exception as e:
                logger.warning(f"Cancel failed for {order_id}: {e}")

        try:
            result = await self._venue.close_position(token_id)
            failure = None if result.success else (result.error or "Close failed")
        except Exception as e:
            logger.error(f"Close failed for {token_id}: {e}", exc_info=True)
            result, failure = None, str(e)

        if failure is not None:
            holding = await self._safe_holding(token_id)
            if holding == 0:
                closed = await self.handle_external_close(token_id)
                if closed is not None:
                    return closed
            # already deregistered elsewhere; nothing left to protect
            if self._positions.get(token_id) is position:
                await self._restore_protection(position)
            return CloseResult(
                success=False, token_id=token_id, reason=failure, exit_type=exit_type
            )

        realized = await self._venue.get_realized_pnl(token_id)
        profit = realized if realized is not None else result.profit
        self._positions.pop(token_id, None)
        await self._book_exit(position, profit, exit_type)
        logger.info(f"Closed {token_id} ({exit_type.value}) at {result.exit_price:.10g}, P/L ${profit:.2f}")
        return CloseResult(
            success=True,
            token_id=token_id,
            reason="Position closed",
            exit_type=exit_type,
            exit_price=result.exit_price,
            profit=profit,
        )

    async def _safe_holding(self, token_id: str) -> float | None:
        try:
            return (await self._venue.get_position(token_id)).size
        except Exception as e:
            logger.error(f"Could not read holding for {token_id}: {e}")
            return None

    async def _restore_protection(self, position: Position) -> None:
        """Re-place the stop after a failed close so the holding is not naked."""
        try:
            order = await self._venue.place_stop_loss(
                position.token_id, position.quantity, position.stop_price
            )
        except Exception as e:
            logger.error(f"Could not restore stop for {position.token_id}: {e}", exc_info=True)
            position.stop_order_id = None
        else:
            position.stop_order_id = order.order_id
        position.take_profit_order_ids = []
        position.take_profit_prices = []
        self._start_trailing(position)

    async def handle_external_close(self, token_id: str) -> CloseResult | None:
        """Deregister a position the venue closed on its own."""
        position = self._positions.pop(token_id, None)
        if position is None:
            return None
        await self._stop_trailing(token_id)
        realized = await self._venue.get_realized_pnl(token_id)
        profit = realized if realized is not None else position.realized_pnl
        await self._book_exit(position, profit, ExitType.EXTERNAL)
        logger.info(f"Position {token_id} closed externally, P/L ${profit:.2f}")
        return CloseResult(
            success=True,
            token_id=token_id,
            reason="Closed by venue",
            exit_type=ExitType.EXTERNAL,
            profit=profit,
        )

    async def reconcile_quantity(self, token_id: str, venue_size: float) -> None:
        """Shrink a position after take-profits filled on the venue."""
        position = self._positions.get(token_id)
        if position is None or venue_size >= position.quantity:
            return
        kept_ids: list[str] = []
        kept_prices: list[float] = []
        for order_id, price in zip(
            position.take_profit_order_ids, position.take_profit_prices, strict=False
        ):
            order = await self._venue.get_order(order_id)
            if order is not None and order.status == OrderStatus.TRIGGERED:
                continue
            kept_ids.append(order_id)
            kept_prices.append(price)
        position.take_profit_order_ids = kept_ids
        position.take_profit_prices = kept_prices
        sold = position.quantity - venue_size
        position.quantity = venue_size
        logger.info(f"Take profit filled for {token_id}: sold {sold:.6g}, {venue_size:.6g} left")

    async def _book_exit(self, position: Position, profit: float, exit_type: ExitType) -> None:
        position.realized_pnl = profit
        try:
            equity = await self._venue.get_balance() + await self._mark_to_market()
        except Exception as e:
            logger.error(f"Could not read equity after exit: {e}")
            equity = None
        self._risk.record_outcome(profit, equity)

        stats = self._channel_stats[position.source_channel or "unknown"]
        stats["total_trades"] += 1
        stats["total_profit"] += profit
        if profit > 0:
            stats["wins"] += 1
        else:
            stats["losses"] += 1

        self._fire(
            self._notifier.notify_trade_exit(position, exit_type), "notify_trade_exit"
        )

    # ------------------------------------------------------------------
    # Trailing stops and notifications
    # ------------------------------------------------------------------

    def _start_trailing(self, position: Position) -> None:
        controller = TrailingStopController(
            position,
            self._venue,
            trailing_percent=position.channel_risk_profile.trailing_stop_percent,
            interval=self._cfg.trailing_check_interval_seconds,
            on_closed=self.handle_external_close,
            on_reduced=self.reconcile_quantity,
            clock=self._clock,
            ratchet=self._cfg.use_trailing_stop,
        )
        self._trailing[position.token_id] = controller
        controller.start()

    def trailing_controller(self, token_id: str) -> TrailingStopController | None:
        return self._trailing.get(token_id)

    async def _stop_trailing(self, token_id: str) -> None:
        controller = self._trailing.pop(token_id, None)
        if controller is not None:
            await controller.stop()

    def _fire(self, call: Any, what: str) -> None:
        task = asyncio.create_task(notify_safely(call, what))
        self._notify_tasks.add(task)
        task.add_done_callback(self._notify_tasks.discard)

    async def drain_notifications(self) -> None:
        """Wait for in-flight notifications to finish."""
        while self._notify_tasks:
            await asyncio.gather(*list(self._notify_tasks))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _mark_to_market(self) -> float:
        value = 0.0
        for position in list(self._positions.values()):
            value += position.quantity * await self._venue.get_current_price(position.token_id)
        return value

    async def get_active_trades(self) -> list[dict[str, Any]]:
        """Snapshot of open positions at current prices."""
        trades = []
        for position in list(self._positions.values()):
            price = await self._venue.get_current_price(position.token_id)
            pnl = position.unrealized_pnl(price)
            trades.append(
                {
                    "token_id": position.token_id,
                    "entry_price": position.entry_price,
                    "current_price": price,
                    "quantity": position.quantity,
                    "value": position.quantity * price,
                    "unrealized_pnl": pnl,
                    "pnl_percent": (price / position.entry_price - 1) * 100,
                    "stop_price": position.stop_price,
                    "take_profit_prices": list(position.take_profit_prices),
                    "channel_id": position.source_channel,
                    "channel_name": position.channel_risk_profile.name,
                    "trade_percent": position.trade_percent,
                }
            )
        return trades

    def get_channel_stats(self) -> dict[str, dict[str, Any]]:
        """Per-channel trade counts, profit and win rate."""
        result: dict[str, dict[str, Any]] = {}
        for channel_id, stats in self._channel_stats.items():
            total = stats["total_trades"]
            result[channel_id] = {
                "name": self._channels.get(channel_id).name,
                "total_trades": int(total),
                "wins": int(stats["wins"]),
                "losses": int(stats["losses"]),
                "total_profit": stats["total_profit"],
                "win_rate": (stats["wins"] / total * 100) if total else 0.0,
            }
        return result

    async def shutdown(self) -> None:
        """Stop every trailing task; open positions stay open."""
        for token_id in list(self._trailing):
            await self._stop_trailing(token_id)
        await self.drain_notifications()
        logger.info(f"Lifecycle manager shut down with {len(self._positions)} open positions")
