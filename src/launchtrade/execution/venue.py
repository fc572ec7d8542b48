"""Venue capability interface.

A venue holds the account balance, executes market buys, rests protective
orders and liquidates holdings. The lifecycle manager only talks to this
interface, so the live DEX client and :class:`~launchtrade.execution.paper_venue.PaperVenue`
are interchangeable.
"""

from abc import ABC, abstractmethod
from typing import Any

from launchtrade.core.types import BuyResult, ClosePositionResult, Order, VenuePosition


class Venue(ABC):
    """Async trading venue.

    ``place_*`` and ``modify_order`` raise :class:`~launchtrade.core.errors.VenueError`
    subclasses on failure; ``buy_market`` and ``close_position`` report
    failure through their result objects.
    """

    @abstractmethod
    async def get_balance(self) -> float:
        """Free quote balance in USD."""

    @abstractmethod
    async def buy_market(
        self, token_id: str, usd_amount: float, urgency: str = "low"
    ) -> BuyResult:
        """Spend up to ``usd_amount`` on ``token_id`` at market."""

    @abstractmethod
    async def place_stop_loss(self, token_id: str, quantity: float, stop_price: float) -> Order:
        """Rest a stop that sells the whole holding at or below ``stop_price``."""

    @abstractmethod
    async def place_take_profit(self, token_id: str, quantity: float, price: float) -> Order:
        """Rest a limit that sells ``quantity`` at or above ``price``."""

    @abstractmethod
    async def modify_order(self, order_id: str, updates: dict[str, Any]) -> Order:
        """Change fields of a resting order (e.g. ``{"trigger_price": x}``)."""

    @abstractmethod
    async def cancel_order(self, order_id: str) -> bool:
        """Cancel a resting order. Returns False if it was already gone."""

    @abstractmethod
    async def get_current_price(self, token_id: str) -> float:
        """Last known price of ``token_id``."""

    @abstractmethod
    async def get_position(self, token_id: str) -> VenuePosition:
        """Venue-side holding; ``size == 0`` when nothing is held."""

    @abstractmethod
    async def close_position(self, token_id: str) -> ClosePositionResult:
        """Liquidate the whole holding at market."""

    async def get_realized_pnl(self, token_id: str) -> float | None:
        """P/L of the last close the venue made on its own, if it knows it."""
        return None

    async def get_order(self, order_id: str) -> Order | None:
        """Look up an order, including ones that already left the book."""
        return None
