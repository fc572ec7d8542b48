"""Domain types and DTOs shared across the engine."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(UTC)


class EventType(str, Enum):
    """Event type enumeration."""

    # Venue events
    ORDER_PLACED = "order_placed"
    ORDER_MODIFIED = "order_modified"
    ORDER_TRIGGERED = "order_triggered"
    ORDER_CANCELLED = "order_cancelled"

    # Lifecycle events
    POSITION_OPENED = "position_opened"
    POSITION_CLOSED = "position_closed"
    STOP_RAISED = "stop_raised"
    TRADE_REJECTED = "trade_rejected"

    # System events
    ERROR = "error"


@dataclass
class Event:
    """Base event class."""

    event_type: EventType
    timestamp: datetime = field(default_factory=utcnow)
    data: dict[str, Any] = field(default_factory=dict)


class OrderKind(str, Enum):
    """Protective order kinds."""

    STOP = "stop"
    LIMIT = "limit"


class OrderStatus(str, Enum):
    """Order status enumeration."""

    OPEN = "open"
    TRIGGERED = "triggered"
    CANCELLED = "cancelled"


class RiskTier(str, Enum):
    """Concurrency tier derived from a signal and its channel."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ChannelType(str, Enum):
    """Channel classification used by risk rules."""

    STANDARD = "standard"
    PREMIUM = "premium"
    DEGEN = "degen"


class ExitType(str, Enum):
    """Why a position (or part of it) was closed."""

    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    MANUAL = "manual"
    EXTERNAL = "external"


Level = Literal["low", "medium", "high"]


class Signal(BaseModel):
    """Trade instruction derived from an inbound message.

    Frozen: the core never mutates a signal after it is handed over.
    """

    model_config = ConfigDict(frozen=True)

    token_id: str = Field(min_length=1)
    trade_percent: float = Field(gt=0, le=100)
    stop_loss_percent: float | None = Field(default=None, gt=0, lt=100)
    take_profit_targets: tuple[float, ...] = ()
    confidence: float = Field(default=0.0, ge=0)
    source_channel: str = ""
    urgency: Level = "low"
    risk: Level = "medium"
    sentiment: Literal["bullish", "neutral", "bearish"] = "neutral"
    symbol: str | None = None

    @field_validator("take_profit_targets")
    @classmethod
    def validate_targets(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        """Take-profit targets are percentages above entry."""
        for target in v:
            if target <= 0:
                raise ValueError(f"Invalid take-profit target: {target}, must be > 0")
        return v


class ChannelRiskProfile(BaseModel):
    """Per-channel risk parameters."""

    model_config = ConfigDict(frozen=True)

    channel_id: str
    name: str = "Custom Channel"
    max_trade_percent: float = Field(default=5.0, gt=0, le=100)
    default_stop_loss_percent: float = Field(default=20.0, gt=0, lt=100)
    risk_multiplier: float = Field(default=1.0, gt=0)
    confidence_threshold: float = Field(default=3.0, ge=0)
    trailing_stop_percent: float = Field(default=20.0, gt=0, lt=100)
    channel_type: ChannelType = ChannelType.STANDARD


class Order(BaseModel):
    """Protective order resting on a venue."""

    order_id: str
    token_id: str
    kind: OrderKind
    trigger_price: float = Field(gt=0)
    quantity: float = Field(gt=0)
    status: OrderStatus = OrderStatus.OPEN
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime | None = None


class Position(BaseModel):
    """Open holding tracked by the lifecycle manager."""

    token_id: str
    entry_price: float
    quantity: float
    initial_quantity: float
    entry_timestamp: datetime = Field(default_factory=utcnow)
    stop_price: float
    take_profit_prices: list[float] = Field(default_factory=list)
    source_channel: str = ""
    channel_risk_profile: ChannelRiskProfile
    usd_amount: float = 0.0
    trade_percent: float = 0.0
    stop_order_id: str | None = None
    take_profit_order_ids: list[str] = Field(default_factory=list)
    realized_pnl: float = 0.0

    def unrealized_pnl(self, price: float) -> float:
        return (price - self.entry_price) * self.quantity


class BuyResult(BaseModel):
    """Outcome of a market buy."""

    success: bool
    id: str | None = None
    filled_price: float = 0.0
    amount_out: float = 0.0
    usd_amount: float = 0.0
    slippage: float = 0.0
    error: str | None = None


class VenuePosition(BaseModel):
    """Venue-side view of a holding."""

    size: float = 0.0


class ClosePositionResult(BaseModel):
    """Outcome of a venue liquidation."""

    success: bool
    profit: float = 0.0
    exit_price: float = 0.0
    error: str | None = None


class RiskAssessment(BaseModel):
    """Risk manager verdict for one signal."""

    allowed: bool
    adjusted_trade_percent: float
    risk_score: int = 5
    risk_tier: RiskTier = RiskTier.MEDIUM
    reasons: list[str] = Field(default_factory=list)


class SessionRiskState(BaseModel):
    """Session counters read by the risk manager."""

    trades_count: int = 0
    total_loss: float = 0.0
    total_profit: float = 0.0
    consecutive_losses: int = 0
    starting_balance: float = 0.0
    peak_balance: float = 0.0
    session_started: date = Field(default_factory=lambda: utcnow().date())


class TradeResult(BaseModel):
    """Outcome of an open attempt."""

    success: bool
    token_id: str
    reason: str = ""
    entry_price: float | None = None
    quantity: float | None = None
    usd_amount: float | None = None
    order_id: str | None = None
    assessment: RiskAssessment | None = None


class CloseResult(BaseModel):
    """Outcome of a close attempt."""

    success: bool
    token_id: str
    reason: str = ""
    exit_type: ExitType = ExitType.MANUAL
    exit_price: float | None = None
    profit: float | None = None


class PricePoint(BaseModel):
    """One simulated price observation."""

    price: float
    timestamp: float
    volume: float = 0.0


class TrendState(BaseModel):
    """Slow-moving drift of one simulated token."""

    volatility: float
    trend: float = Field(ge=-1, le=1)
    last_update: float


class SimPosition(BaseModel):
    """Holding inside the simulated venue."""

    token_id: str
    entry_price: float
    quantity: float
    usd_amount: float
    opened_at: float


class SimulatedVenueState(BaseModel):
    """Everything the paper venue needs to resume a session."""

    starting_balance: float
    balance: float
    prices: dict[str, list[PricePoint]] = Field(default_factory=dict)
    trends: dict[str, TrendState] = Field(default_factory=dict)
    orders: list[Order] = Field(default_factory=list)
    positions: dict[str, SimPosition] = Field(default_factory=dict)
    realized_pnl: float = 0.0
    total_slippage_cost: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    closed_trades: int = 0
    peak_balance: float = 0.0
    max_drawdown: float = 0.0
    last_realized: dict[str, float] = Field(default_factory=dict)
    saved_at: datetime | None = None
