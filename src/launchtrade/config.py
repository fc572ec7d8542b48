"""Configuration management using Pydantic v2."""

import json
import os
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_json_env(value: Any) -> Any:
    """Parse a JSON object from env; pass dicts and empty values through."""
    if value is None or isinstance(value, dict):
        return value
    if isinstance(value, str):
        if value.strip() == "":
            return {}
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Expected a JSON object, got {value!r}") from e
        if not isinstance(parsed, dict):
            raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
        return parsed
    return value


def _find_env_file() -> str:
    """Find .env file: check project root first, then CWD."""
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    env_path = os.path.join(project_root, ".env")
    if os.path.exists(env_path):
        return env_path
    return ".env"


class LaunchTradeSettings(BaseSettings):
    """Main configuration for the trading engine."""

    model_config = SettingsConfigDict(
        env_file=_find_env_file(),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development",
        description="Application environment (development or production)",
    )
    dry_run: bool = Field(
        default=True,
        description="Route all orders to the simulated paper venue",
    )

    # Trade sizing and protective orders
    max_trade_percent: float = Field(
        default=5.0, gt=0, le=100, description="Hard ceiling on trade size as % of balance"
    )
    default_stop_loss_percent: float = Field(
        default=20.0,
        gt=0,
        lt=100,
        description="Stop distance used when neither signal nor channel provides one",
    )
    use_trailing_stop: bool = Field(default=True, description="Start a trailing stop per position")
    trailing_stop_percent: float = Field(
        default=20.0, gt=0, lt=100, description="Trailing distance below the last price (%)"
    )
    trailing_check_interval_seconds: float = Field(
        default=5.0, gt=0, description="Trailing stop evaluation interval (seconds)"
    )

    # Risk Management
    max_daily_trades: int = Field(default=20, gt=0, description="Session trade cap")
    max_daily_loss_usd: float | None = Field(
        default=None,
        gt=0,
        description="Session loss cap in USD (None = 15% of the session starting balance)",
    )
    max_daily_loss_fraction: float = Field(
        default=0.15,
        gt=0,
        le=1,
        description="Loss cap as a fraction of starting balance when max_daily_loss_usd is unset",
    )
    max_drawdown: float = Field(
        default=0.25, gt=0, le=1, description="Maximum drawdown from peak balance (fraction)"
    )
    consecutive_loss_threshold: int = Field(
        default=5, gt=0, description="Losing streak length that shrinks trade size"
    )
    consecutive_loss_trade_cap: float = Field(
        default=2.0, gt=0, le=100, description="Trade size cap (%) during a losing streak"
    )
    low_confidence_threshold: float = Field(
        default=2.0, ge=0, description="Signals below this confidence get a smaller size"
    )
    low_confidence_trade_cap: float = Field(
        default=3.0, gt=0, le=100, description="Trade size cap (%) for low-confidence signals"
    )
    degen_trade_cap: float = Field(
        default=4.0, gt=0, le=100, description="Trade size cap (%) for degen channels"
    )
    max_concurrent_low: int = Field(default=3, gt=0, description="Open position cap, low tier")
    max_concurrent_medium: int = Field(
        default=5, gt=0, description="Open position cap, medium tier"
    )
    max_concurrent_high: int = Field(default=8, gt=0, description="Open position cap, high tier")
    risk_session_reset: Literal["manual", "daily"] = Field(
        default="manual",
        description="Session counter reset boundary: operator-driven or at UTC day rollover",
    )

    # Paper venue
    paper_starting_balance: float = Field(
        default=1000.0, gt=0, description="Starting balance in USD for paper trading"
    )
    paper_price_volatility: float = Field(
        default=5.0, gt=0, le=100, description="Base per-tick volatility for simulated prices (%)"
    )
    paper_default_slippage: float = Field(
        default=3.0, ge=0, le=100, description="Base entry slippage for simulated fills (%)"
    )
    paper_max_slippage: float = Field(
        default=0.15,
        gt=0,
        le=1,
        description="Slippage ceiling; fills above it are rejected (fraction)",
    )
    paper_reference_liquidity_usd: float = Field(
        default=10000.0, gt=0, description="Trade size at which slippage grows by 50%"
    )
    paper_min_delay_ms: float = Field(default=50.0, ge=0, description="Min simulated latency")
    paper_max_delay_ms: float = Field(default=500.0, ge=0, description="Max simulated latency")
    paper_tick_interval_seconds: float = Field(
        default=5.0, gt=0, description="Simulated price tick interval (seconds)"
    )
    paper_checkpoint_interval_seconds: float = Field(
        default=30.0, gt=0, description="State checkpoint interval (seconds)"
    )
    paper_state_path: str = Field(
        default="data/paper-state.json", description="Paper venue checkpoint file"
    )
    paper_seed: int | None = Field(
        default=None, description="Seed for the simulator RNG (None = nondeterministic)"
    )

    # Channel risk profiles (JSON object: channel_id -> partial profile)
    channel_profiles: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Per-channel profile overrides merged over the built-in profiles",
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["text", "json"] = Field(
        default="text", description="Log output format (text or json)"
    )

    @field_validator("channel_profiles", mode="before")
    @classmethod
    def parse_channel_profiles(cls, v: Any) -> Any:
        """Parse channel_profiles from env values."""
        return parse_json_env(v)

    @field_validator("paper_max_delay_ms")
    @classmethod
    def validate_delay_range(cls, v: float, info: ValidationInfo) -> float:
        """Ensure the latency range is not inverted."""
        min_delay = info.data.get("paper_min_delay_ms")
        if min_delay is not None and v < min_delay:
            raise ValueError(
                f"paper_max_delay_ms ({v}) must be >= paper_min_delay_ms ({min_delay})"
            )
        return v

    def daily_loss_cap(self, starting_balance: float) -> float:
        """Resolve the session loss cap in USD."""
        if self.max_daily_loss_usd is not None:
            return self.max_daily_loss_usd
        return starting_balance * self.max_daily_loss_fraction

    def concurrency_caps(self) -> dict[str, int]:
        """Open position caps keyed by risk tier."""
        return {
            "low": self.max_concurrent_low,
            "medium": self.max_concurrent_medium,
            "high": self.max_concurrent_high,
        }


# Global settings instance
settings = LaunchTradeSettings()
