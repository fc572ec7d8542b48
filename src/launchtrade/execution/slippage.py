"""Slippage and latency model for simulated fills."""

import random
from dataclasses import dataclass

from launchtrade.core.scheduler import Clock, SystemClock
from launchtrade.logging import get_logger

logger = get_logger(__name__)


@dataclass
class FillQuote:
    """Result of simulating one market fill."""

    success: bool
    price: float = 0.0
    slippage: float = 0.0
    drift: float = 0.0
    delay_ms: float = 0.0
    error: str | None = None


class SlippageModel:
    """Prices a market order against a quoted price.

    Slippage grows with trade size relative to a reference liquidity, with
    market volatility, and with signal urgency. Orders whose slippage exceeds
    ``max_slippage`` are rejected.
    """

    def __init__(
        self,
        base_slippage: float = 0.03,
        max_slippage: float = 0.15,
        reference_liquidity_usd: float = 10000.0,
        min_delay_ms: float = 50.0,
        max_delay_ms: float = 500.0,
        rng: random.Random | None = None,
        clock: Clock | None = None,
    ) -> None:
        if max_delay_ms < min_delay_ms:
            raise ValueError(
                f"max_delay_ms ({max_delay_ms}) must be >= min_delay_ms ({min_delay_ms})"
            )
        self.base_slippage = base_slippage
        self.max_slippage = max_slippage
        self.reference_liquidity_usd = reference_liquidity_usd
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self._rng = rng or random.Random()
        self._clock = clock or SystemClock()

    def estimate(self, usd_amount: float, volatility: float, urgency: str = "low") -> float:
        """Slippage fraction for a buy of ``usd_amount``."""
        size_factor = min(usd_amount / self.reference_liquidity_usd, 2.0)
        slippage = self.base_slippage * (1 + size_factor * 0.5)
        slippage *= 1 + volatility
        if urgency == "high":
            slippage *= 1.3
        slippage += (self._rng.random() - 0.5) * 0.02
        return max(0.0, slippage)

    def draw_delay_ms(self) -> float:
        return self.min_delay_ms + self._rng.random() * (self.max_delay_ms - self.min_delay_ms)

    async def fill(
        self,
        quoted_price: float,
        usd_amount: float,
        volatility: float,
        urgency: str = "low",
    ) -> FillQuote:
        """Wait out the network delay and price the fill.

        The quoted price may drift during the delay by up to
        ``±volatility × 5%``.
        """
        delay_ms = self.draw_delay_ms()
        await self._clock.sleep(delay_ms / 1000)

        slippage = self.estimate(usd_amount, volatility, urgency)
        drift = (self._rng.random() - 0.5) * volatility * 0.1
        if slippage > self.max_slippage:
            logger.warning(
                f"Simulated fill rejected: slippage {slippage:.2%} > {self.max_slippage:.2%}"
            )
            return FillQuote(
                success=False,
                slippage=slippage,
                delay_ms=delay_ms,
                error=f"Excessive slippage: {slippage * 100:.2f}%",
            )
        return FillQuote(
            success=True,
            price=quoted_price * (1 + slippage + drift),
            slippage=slippage,
            drift=drift,
            delay_ms=delay_ms,
        )
