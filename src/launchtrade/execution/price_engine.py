"""Synthetic price process for the paper venue.

Each token gets a random-walk price with a slow drift term. The model is meant
to make trailing stops and take-profits fire in plausible ways, not to be
statistically realistic.
"""

import random

from launchtrade.core.scheduler import Clock, SystemClock
from launchtrade.core.types import TrendState

# (low, high, weight) buckets for a freshly launched token's first price
INITIAL_PRICE_RANGES: tuple[tuple[float, float, float], ...] = (
    (1e-6, 1e-5, 0.4),
    (1e-5, 1e-4, 0.3),
    (1e-4, 1e-3, 0.2),
    (1e-3, 1e-2, 0.1),
)

TREND_REVISION_SECONDS = 60.0
TREND_STEP = 0.1
TREND_WEIGHT = 0.3
PRICE_FLOOR_RATIO = 0.01


class PriceEngine:
    """Generates the next simulated price of a token.

    Args:
        base_volatility: Per-tick volatility as a fraction (0.05 = 5%).
        rng: Random source; pass a seeded instance for reproducible runs.
        clock: Time source for trend revisions.
    """

    def __init__(
        self,
        base_volatility: float,
        rng: random.Random | None = None,
        clock: Clock | None = None,
    ) -> None:
        if base_volatility <= 0:
            raise ValueError(f"Invalid base_volatility: {base_volatility}, must be > 0")
        self.base_volatility = base_volatility
        self._rng = rng or random.Random()
        self._clock = clock or SystemClock()
        self._trends: dict[str, TrendState] = {}

    @property
    def trends(self) -> dict[str, TrendState]:
        return self._trends

    def load_trends(self, trends: dict[str, TrendState]) -> None:
        """Restore trend state from a checkpoint."""
        self._trends = {token: state.model_copy() for token, state in trends.items()}

    def trend_for(self, token_id: str) -> TrendState:
        """Return the token's trend state, creating it on first use."""
        state = self._trends.get(token_id)
        if state is None:
            state = TrendState(
                volatility=self.base_volatility * (0.5 + self._rng.random()),
                trend=self._rng.random() - 0.5,
                last_update=self._clock.time(),
            )
            self._trends[token_id] = state
        return state

    def initial_price(self) -> float:
        """Draw a first price from the memecoin range table."""
        r = self._rng.random()
        cumulative = 0.0
        for low, high, weight in INITIAL_PRICE_RANGES:
            cumulative += weight
            if r <= cumulative:
                return low + self._rng.random() * (high - low)
        return 1e-5

    def next_price(self, token_id: str, last_price: float) -> float:
        """Advance the token's price by one step."""
        state = self.trend_for(token_id)
        now = self._clock.time()
        if now - state.last_update > TREND_REVISION_SECONDS:
            drift = state.trend + (self._rng.random() - 0.5) * TREND_STEP
            state.trend = max(-1.0, min(1.0, drift))
            state.last_update = now

        shock = self._rng.random() * 2 - 1
        change = (shock + state.trend * TREND_WEIGHT) * state.volatility
        return max(last_price * (1 + change), last_price * PRICE_FLOOR_RATIO)
