"""Per-position trailing stop."""

from collections.abc import Awaitable, Callable
from typing import Any

from launchtrade.core.scheduler import Clock, PeriodicTask
from launchtrade.core.types import Position
from launchtrade.execution.venue import Venue
from launchtrade.logging import get_logger

logger = get_logger(__name__)


class TrailingStopController:
    """Ratchets a position's stop up behind the price.

    Each tick reads the venue holding and price. A vanished holding is
    reported through ``on_closed`` and ends the controller; a smaller holding
    (a take-profit filled) is reported through ``on_reduced``. When the price
    is above entry, the stop is raised to ``price × (1 - trailing%)`` if that
    is strictly higher than the current stop. The stop never moves down.

    With ``ratchet=False`` the controller only watches the holding and
    never touches the stop.
    """

    def __init__(
        self,
        position: Position,
        venue: Venue,
        trailing_percent: float,
        interval: float,
        on_closed: Callable[[str], Awaitable[Any]],
        on_reduced: Callable[[str, float], Awaitable[Any]] | None = None,
        clock: Clock | None = None,
        ratchet: bool = True,
    ) -> None:
        if not 0 < trailing_percent < 100:
            raise ValueError(f"Invalid trailing_percent: {trailing_percent}")
        self.position = position
        self.trailing_percent = trailing_percent
        self.ratchet = ratchet
        self._venue = venue
        self._on_closed = on_closed
        self._on_reduced = on_reduced
        self._task = PeriodicTask(
            f"trailing-stop-{position.token_id}", interval, self.tick, clock
        )
        self.finished = False

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> None:
        self._task.start()
        if self.ratchet:
            logger.info(
                f"Trailing stop started for {self.position.token_id} "
                f"(distance {self.trailing_percent}%)"
            )
        else:
            logger.info(f"Watching {self.position.token_id} for venue-side exits")

    async def stop(self) -> None:
        await self._task.stop()

    async def tick(self) -> None:
        """One evaluation; exceptions propagate to the task runner."""
        if self.finished:
            return
        position = self.position
        token_id = position.token_id

        holding = await self._venue.get_position(token_id)
        if holding.size <= 0:
            logger.info(f"Position {token_id} closed on venue, ending trailing stop")
            self.finished = True
            await self._task.stop()
            await self._on_closed(token_id)
            return
        if holding.size < position.quantity and self._on_reduced is not None:
            await self._on_reduced(token_id, holding.size)
        if not self.ratchet:
            return

        price = await self._venue.get_current_price(token_id)
        if price <= position.entry_price:
            return
        candidate = price * (1 - self.trailing_percent / 100)
        if candidate <= position.stop_price:
            return

        if position.stop_order_id is not None:
            await self._venue.modify_order(position.stop_order_id, {"trigger_price": candidate})
        previous = position.stop_price
        position.stop_price = candidate
        logger.info(
            f"Trailing stop raised for {token_id}: {previous:.10g} -> {candidate:.10g} "
            f"(price {price:.10g})"
        )
