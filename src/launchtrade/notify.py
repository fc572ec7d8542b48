"""Trade notifications.

The lifecycle manager reports opens and exits to a :class:`Notifier`. Delivery
is fire-and-forget: :func:`notify_safely` logs and swallows notifier errors so
that a broken notification path never affects a trade.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable

from launchtrade.core.bus import EventBus
from launchtrade.core.types import Event, EventType, ExitType, Position
from launchtrade.logging import get_logger

logger = get_logger(__name__)


class Notifier(ABC):
    """Receives lifecycle notifications."""

    @abstractmethod
    async def notify_trade_execution(self, position: Position) -> None:
        """Called after a position is opened and protected."""

    @abstractmethod
    async def notify_trade_exit(self, position: Position, exit_type: ExitType) -> None:
        """Called after a position is fully closed."""


class NullNotifier(Notifier):
    async def notify_trade_execution(self, position: Position) -> None:
        return None

    async def notify_trade_exit(self, position: Position, exit_type: ExitType) -> None:
        return None


class LoggingNotifier(Notifier):
    """Writes one log line per notification."""

    async def notify_trade_execution(self, position: Position) -> None:
        logger.info(
            f"Trade executed: {position.token_id} qty={position.quantity:.6g} "
            f"entry={position.entry_price:.10g} stop={position.stop_price:.10g} "
            f"tps={len(position.take_profit_prices)} channel={position.source_channel or '-'}"
        )

    async def notify_trade_exit(self, position: Position, exit_type: ExitType) -> None:
        logger.info(
            f"Trade exited: {position.token_id} via {exit_type.value} "
            f"realized_pnl=${position.realized_pnl:.2f}"
        )


class BusNotifier(Notifier):
    """Publishes POSITION_OPENED / POSITION_CLOSED events on an :class:`EventBus`."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    async def notify_trade_execution(self, position: Position) -> None:
        await self._bus.publish(
            Event(
                event_type=EventType.POSITION_OPENED,
                data={"position": position.model_copy(deep=True)},
            )
        )

    async def notify_trade_exit(self, position: Position, exit_type: ExitType) -> None:
        await self._bus.publish(
            Event(
                event_type=EventType.POSITION_CLOSED,
                data={"position": position.model_copy(deep=True), "exit_type": exit_type},
            )
        )


async def notify_safely(call: Awaitable[None], what: str) -> None:
    """Await a notifier call, logging any failure instead of raising."""
    try:
        await call
    except Exception as e:
        logger.warning(f"Notifier {what} failed: {e}", exc_info=True)
