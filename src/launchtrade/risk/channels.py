"""Per-channel risk profiles.

Channels differ only in data: sizing caps, default stop, trailing distance
and classification. Unknown channels get a profile built from settings.
"""

from typing import Any

from launchtrade.config import LaunchTradeSettings, settings
from launchtrade.core.types import ChannelRiskProfile, ChannelType
from launchtrade.logging import get_logger

logger = get_logger(__name__)

BUILTIN_PROFILES: dict[str, ChannelRiskProfile] = {
    "-1002209371269": ChannelRiskProfile(
        channel_id="-1002209371269",
        name="Underdog Calls",
        max_trade_percent=7.0,
        default_stop_loss_percent=15.0,
        risk_multiplier=1.2,
        confidence_threshold=2.0,
        trailing_stop_percent=18.0,
        channel_type=ChannelType.PREMIUM,
    ),
    "-1002277274250": ChannelRiskProfile(
        channel_id="-1002277274250",
        name="Degen",
        max_trade_percent=4.0,
        default_stop_loss_percent=22.0,
        risk_multiplier=0.8,
        confidence_threshold=2.0,
        trailing_stop_percent=25.0,
        channel_type=ChannelType.DEGEN,
    ),
}


class ChannelRegistry:
    """Resolves a channel id to its :class:`ChannelRiskProfile`.

    Overrides (``settings.channel_profiles``) are merged field by field over
    the built-in profile for the same id, or over the default profile for a
    new id.
    """

    def __init__(
        self,
        overrides: dict[str, dict[str, Any]] | None = None,
        cfg: LaunchTradeSettings | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._profiles: dict[str, ChannelRiskProfile] = dict(BUILTIN_PROFILES)
        if overrides is None:
            overrides = self._cfg.channel_profiles
        for channel_id, fields in overrides.items():
            self.register(channel_id, **fields)

    def default_profile(self, channel_id: str = "") -> ChannelRiskProfile:
        return ChannelRiskProfile(
            channel_id=channel_id,
            name="Custom Channel",
            max_trade_percent=self._cfg.max_trade_percent,
            default_stop_loss_percent=self._cfg.default_stop_loss_percent,
            risk_multiplier=1.0,
            confidence_threshold=3.0,
            trailing_stop_percent=self._cfg.trailing_stop_percent,
        )

    def register(self, channel_id: str, **fields: Any) -> ChannelRiskProfile:
        """Add or update a channel profile."""
        base = self._profiles.get(channel_id) or self.default_profile(channel_id)
        data = base.model_dump()
        data.update(fields)
        data["channel_id"] = channel_id
        profile = ChannelRiskProfile.model_validate(data)
        self._profiles[channel_id] = profile
        logger.debug(f"Channel profile registered: {channel_id} ({profile.name})")
        return profile

    def get(self, channel_id: str | None) -> ChannelRiskProfile:
        if channel_id and channel_id in self._profiles:
            return self._profiles[channel_id]
        return self.default_profile(channel_id or "")

    def known_channels(self) -> list[str]:
        return list(self._profiles)
