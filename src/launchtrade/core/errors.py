"""Exception hierarchy.

Policy rejections are not exceptions; they travel as ``RiskAssessment`` /
``TradeResult`` values. These types cover venue and storage failures.
"""


class LaunchTradeError(Exception):
    """Base class for engine errors."""


class VenueError(LaunchTradeError):
    """A venue call failed."""


class OrderNotFoundError(VenueError):
    """Order id unknown to the venue."""

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class PositionNotFoundError(VenueError):
    """No holding for the token on the venue."""

    def __init__(self, token_id: str) -> None:
        super().__init__(f"No position found for {token_id}")
        self.token_id = token_id


class CheckpointError(LaunchTradeError):
    """A checkpoint could not be read or written."""
