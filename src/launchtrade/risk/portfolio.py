"""Concentration and diversification metrics over open positions."""

from collections.abc import Sequence
from typing import Any

from launchtrade.core.types import Position

CONCENTRATION_WARNING = 0.4
DIVERSIFICATION_WARNING = 0.3
MAX_COMFORTABLE_POSITIONS = 8


class PortfolioAnalyzer:
    """Scores how spread out the open book is.

    Weights are by notional (``usd_amount``). Channel correlation is a proxy:
    positions from the same channel are assumed to move together.
    """

    def analyze(
        self, positions: Sequence[Position], prices: dict[str, float] | None = None
    ) -> dict[str, Any]:
        prices = prices or {}
        total_value = sum(p.usd_amount for p in positions)
        total_pnl = sum(
            p.unrealized_pnl(prices[p.token_id]) for p in positions if p.token_id in prices
        )
        analysis: dict[str, Any] = {
            "position_count": len(positions),
            "total_value": total_value,
            "total_pnl": total_pnl,
            "diversification": self.diversification(positions),
            "risk_concentration": self.risk_concentration(positions),
            "correlation_risk": self.correlation_risk(positions),
            "recommendations": [],
        }

        if analysis["risk_concentration"] > CONCENTRATION_WARNING:
            analysis["recommendations"].append(
                "Portfolio is concentrated - consider diversifying"
            )
        if len(positions) > MAX_COMFORTABLE_POSITIONS:
            analysis["recommendations"].append(
                "Too many concurrent positions - consider reducing"
            )
        if analysis["diversification"] < DIVERSIFICATION_WARNING:
            analysis["recommendations"].append("Low diversification - avoid similar tokens")
        return analysis

    @staticmethod
    def diversification(positions: Sequence[Position]) -> float:
        """``1 - HHI`` of notional weights; 1.0 for an empty book."""
        total = sum(p.usd_amount for p in positions)
        if total <= 0:
            return 1.0
        return 1.0 - sum((p.usd_amount / total) ** 2 for p in positions)

    @staticmethod
    def risk_concentration(positions: Sequence[Position]) -> float:
        """Largest position's share of notional."""
        if not positions:
            return 0.0
        total = sum(p.usd_amount for p in positions)
        if total <= 0:
            return 0.0
        return max(p.usd_amount for p in positions) / total

    @staticmethod
    def correlation_risk(positions: Sequence[Position]) -> float:
        if not positions:
            return 0.0
        channels = {p.source_channel for p in positions}
        return 1.0 - len(channels) / len(positions)
