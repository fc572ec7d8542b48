"""Shared test fixtures."""

import random

import pytest
import pytest_asyncio

from launchtrade.config import LaunchTradeSettings
from launchtrade.core.scheduler import ManualClock
from launchtrade.core.types import Signal
from launchtrade.execution.paper_venue import PaperVenue
from launchtrade.execution.price_engine import PriceEngine
from launchtrade.execution.slippage import SlippageModel
from launchtrade.risk.channels import ChannelRegistry
from launchtrade.risk.manager import RiskManager
from launchtrade.storage.checkpoint import CheckpointStore
from launchtrade.trading.lifecycle import TradeLifecycleManager

START = 1_700_000_000.0


@pytest.fixture
def cfg(tmp_path) -> LaunchTradeSettings:
    """Settings isolated from the environment's .env file."""
    return LaunchTradeSettings(
        _env_file=None,
        paper_starting_balance=1000.0,
        paper_min_delay_ms=0.0,
        paper_max_delay_ms=0.0,
        paper_default_slippage=0.0,
        paper_state_path=str(tmp_path / "paper-state.json"),
        paper_seed=7,
        channel_profiles={},
        risk_session_reset="manual",
    )


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start=START)


@pytest.fixture
def store(tmp_path) -> CheckpointStore:
    return CheckpointStore(tmp_path / "paper-state.json")


@pytest.fixture
def venue(rng, clock, store) -> PaperVenue:
    """Zero-latency paper venue with only the random slippage component."""
    return PaperVenue(
        starting_balance=1000.0,
        price_engine=PriceEngine(0.05, rng=rng, clock=clock),
        slippage=SlippageModel(
            base_slippage=0.0, min_delay_ms=0.0, max_delay_ms=0.0, rng=rng, clock=clock
        ),
        store=store,
        clock=clock,
        tick_interval=5.0,
        checkpoint_interval=30.0,
    )


@pytest.fixture
def channels(cfg) -> ChannelRegistry:
    return ChannelRegistry(overrides={}, cfg=cfg)


@pytest.fixture
def risk(cfg, channels) -> RiskManager:
    return RiskManager(starting_balance=1000.0, channels=channels, cfg=cfg)


@pytest_asyncio.fixture
async def manager(venue, risk, channels, cfg, clock):
    lifecycle = TradeLifecycleManager(
        venue=venue, risk=risk, channels=channels, cfg=cfg, clock=clock
    )
    yield lifecycle
    await lifecycle.shutdown()


def _make_signal(token_id: str = "X", **kwargs) -> Signal:
    fields = {
        "token_id": token_id,
        "trade_percent": 5.0,
        "stop_loss_percent": 20.0,
        "confidence": 3.0,
    }
    fields.update(kwargs)
    return Signal(**fields)


@pytest.fixture
def make_signal():
    """Factory for a confident medium-risk signal; keyword arguments override fields."""
    return _make_signal
