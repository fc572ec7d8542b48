"""Tests for channel risk profiles."""

import pytest
from pydantic import ValidationError

from launchtrade.config import LaunchTradeSettings
from launchtrade.core.types import ChannelType
from launchtrade.risk.channels import BUILTIN_PROFILES, ChannelRegistry

UNDERDOG = "-1002209371269"
DEGEN = "-1002277274250"


def test_builtin_profiles(channels) -> None:
    underdog = channels.get(UNDERDOG)
    assert underdog.name == "Underdog Calls"
    assert underdog.max_trade_percent == 7.0
    assert underdog.risk_multiplier == 1.2
    assert underdog.channel_type == ChannelType.PREMIUM

    degen = channels.get(DEGEN)
    assert degen.trailing_stop_percent == 25.0
    assert degen.channel_type == ChannelType.DEGEN
    assert set(channels.known_channels()) == set(BUILTIN_PROFILES)


def test_unknown_channel_gets_default_profile(channels) -> None:
    profile = channels.get("-100999")
    assert profile.channel_id == "-100999"
    assert profile.name == "Custom Channel"
    assert profile.max_trade_percent == 5.0
    assert profile.default_stop_loss_percent == 20.0
    assert profile.confidence_threshold == 3.0
    assert profile.channel_type == ChannelType.STANDARD
    assert "-100999" not in channels.known_channels()

    assert channels.get(None).channel_id == ""


def test_override_merges_over_builtin(cfg) -> None:
    registry = ChannelRegistry(overrides={UNDERDOG: {"max_trade_percent": 3.0}}, cfg=cfg)
    profile = registry.get(UNDERDOG)
    assert profile.max_trade_percent == 3.0
    assert profile.name == "Underdog Calls"
    assert profile.channel_type == ChannelType.PREMIUM


def test_register_new_channel(channels) -> None:
    profile = channels.register("-100555", name="Fresh", channel_type="degen")
    assert profile.channel_type == ChannelType.DEGEN
    assert profile.trailing_stop_percent == 20.0
    assert channels.get("-100555") is profile


def test_invalid_override_rejected(cfg) -> None:
    with pytest.raises(ValidationError):
        ChannelRegistry(overrides={"-100555": {"max_trade_percent": 500.0}}, cfg=cfg)


def test_overrides_read_from_settings() -> None:
    cfg = LaunchTradeSettings(_env_file=None, channel_profiles={"-100777": {"name": "Alpha"}})
    registry = ChannelRegistry(cfg=cfg)
    assert registry.get("-100777").name == "Alpha"
    assert registry.get("-100777").channel_id == "-100777"
