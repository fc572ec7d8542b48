"""LaunchTrade: signal-driven position and risk engine for newly launched tokens."""

__all__ = ["LaunchTradeSettings", "TradeLifecycleManager", "__version__"]
__version__ = "0.1.0"


def __getattr__(name: str):
    if name == "LaunchTradeSettings":
        from .config import LaunchTradeSettings

        return LaunchTradeSettings
    if name == "TradeLifecycleManager":
        from .trading.lifecycle import TradeLifecycleManager

        return TradeLifecycleManager
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
