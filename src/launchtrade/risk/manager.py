"""Session risk gate.

The :class:`RiskManager` admits, resizes or rejects each signal against the
session counters held in :class:`~launchtrade.core.types.SessionRiskState`.
``evaluate`` only reads state; counters change through ``record_outcome``,
``observe_equity`` and the session boundary methods.
"""

import math
from collections.abc import Sequence
from datetime import date
from typing import Any

from launchtrade.config import LaunchTradeSettings, settings
from launchtrade.core.types import (
    ChannelRiskProfile,
    ChannelType,
    Position,
    RiskAssessment,
    RiskTier,
    SessionRiskState,
    Signal,
    utcnow,
)
from launchtrade.logging import get_logger
from launchtrade.risk.channels import ChannelRegistry

logger = get_logger(__name__)

RECOMMENDATIONS: dict[str, list[str]] = {
    "HIGH": [
        "Consider taking a break from trading",
        "Reduce position sizes significantly",
        "Focus only on highest confidence signals",
    ],
    "MEDIUM": [
        "Reduce position sizes by 25-50%",
        "Be more selective with signals",
        "Consider tighter stop losses",
    ],
    "LOW": [
        "Current risk level is acceptable",
        "Continue with normal trading parameters",
    ],
}


class RiskManager:
    """Admits or rejects trades and shrinks their size.

    Args:
        starting_balance: Balance at the start of the session; defaults to
            the paper starting balance.
        channels: Registry used to classify a signal's source channel.
        cfg: Settings holding the limits.
    """

    def __init__(
        self,
        starting_balance: float | None = None,
        channels: ChannelRegistry | None = None,
        cfg: LaunchTradeSettings | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._channels = channels or ChannelRegistry(cfg=self._cfg)
        self._state = SessionRiskState()
        self.start_session(
            self._cfg.paper_starting_balance if starting_balance is None else starting_balance
        )

    @property
    def state(self) -> SessionRiskState:
        return self._state

    @property
    def max_daily_loss(self) -> float:
        return self._cfg.daily_loss_cap(self._state.starting_balance)

    # ------------------------------------------------------------------
    # Session boundary
    # ------------------------------------------------------------------

    def start_session(self, balance: float, today: date | None = None) -> None:
        """Zero the counters and anchor the peak at ``balance``."""
        self._state = SessionRiskState(
            starting_balance=balance,
            peak_balance=balance,
            session_started=today or utcnow().date(),
        )
        logger.info(f"Risk session started: balance=${balance:.2f}")

    def roll_session_if_due(self, today: date, balance: float) -> bool:
        """Start a new session on the first call of a new UTC day.

        Only applies when ``risk_session_reset`` is ``"daily"``.
        """
        if self._cfg.risk_session_reset != "daily":
            return False
        if today <= self._state.session_started:
            return False
        logger.info(f"Daily risk reset: {self._state.session_started} -> {today}")
        self.start_session(balance, today)
        return True

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _profile_for(self, signal: Signal, profile: ChannelRiskProfile | None) -> ChannelRiskProfile:
        return profile or self._channels.get(signal.source_channel)

    def classify_tier(self, signal: Signal, profile: ChannelRiskProfile | None = None) -> RiskTier:
        profile = self._profile_for(signal, profile)
        if (
            signal.risk == "high"
            or signal.urgency == "high"
            or profile.channel_type == ChannelType.DEGEN
        ):
            return RiskTier.HIGH
        if signal.confidence >= 2.5 and signal.risk == "low":
            return RiskTier.LOW
        return RiskTier.MEDIUM

    def drawdown(self, current_balance: float) -> float:
        peak = self._state.peak_balance
        if peak <= 0:
            return 0.0
        return max(0.0, (peak - current_balance) / peak)

    def evaluate(
        self,
        signal: Signal,
        current_balance: float,
        open_positions: Sequence[Position] | int,
        profile: ChannelRiskProfile | None = None,
    ) -> RiskAssessment:
        """Decide whether ``signal`` may trade and at what size.

        Hard limits are checked in order and the first one that fails rejects
        the trade. Soft caps then shrink ``adjusted_trade_percent``.
        """
        profile = self._profile_for(signal, profile)
        open_count = open_positions if isinstance(open_positions, int) else len(open_positions)
        tier = self.classify_tier(signal, profile)
        state = self._state

        def reject(reason: str) -> RiskAssessment:
            logger.info(f"Trade rejected for {signal.token_id}: {reason}")
            return RiskAssessment(
                allowed=False,
                adjusted_trade_percent=0.0,
                risk_score=self.risk_score(signal, open_count, profile),
                risk_tier=tier,
                reasons=[reason],
            )

        if state.trades_count >= self._cfg.max_daily_trades:
            return reject(
                f"Daily trade limit reached ({state.trades_count}/{self._cfg.max_daily_trades})"
            )

        loss_cap = self.max_daily_loss
        if state.total_loss >= loss_cap:
            return reject(f"Daily loss limit reached (${state.total_loss:.2f}/${loss_cap:.2f})")

        drawdown = self.drawdown(current_balance)
        if drawdown >= self._cfg.max_drawdown:
            return reject(f"Maximum drawdown reached: {drawdown * 100:.1f}%")

        max_concurrent = self._cfg.concurrency_caps()[tier.value]
        if open_count >= max_concurrent:
            return reject(
                f"Maximum concurrent trades reached for {tier.value} risk level "
                f"({open_count}/{max_concurrent})"
            )

        adjusted = signal.trade_percent
        reasons: list[str] = []
        if state.consecutive_losses >= self._cfg.consecutive_loss_threshold:
            adjusted = min(adjusted, self._cfg.consecutive_loss_trade_cap)
            reasons.append("Trade size reduced due to losing streak")
        if signal.confidence < self._cfg.low_confidence_threshold:
            adjusted = min(adjusted, self._cfg.low_confidence_trade_cap)
            reasons.append("Trade size adjusted for low confidence signal")
        if profile.channel_type == ChannelType.DEGEN:
            adjusted = min(adjusted, self._cfg.degen_trade_cap)
            reasons.append("Degen channel risk adjustment applied")

        return RiskAssessment(
            allowed=True,
            adjusted_trade_percent=adjusted,
            risk_score=self.risk_score(signal, open_count, profile),
            risk_tier=tier,
            reasons=reasons,
        )

    def risk_score(
        self,
        signal: Signal,
        open_count: int,
        profile: ChannelRiskProfile | None = None,
    ) -> int:
        """Informational 1-10 score; higher is riskier."""
        profile = self._profile_for(signal, profile)
        score = 5.0
        if signal.confidence >= 2.5:
            score -= 1
        if signal.confidence < 1.5:
            score += 2
        if signal.sentiment == "bullish":
            score -= 1
        elif signal.sentiment == "bearish":
            score += 1
        if signal.trade_percent > 8:
            score += 2
        if signal.trade_percent < 3:
            score -= 1
        if open_count > 3:
            score += 1
        if self._state.consecutive_losses > 2:
            score += 2
        if profile.channel_type == ChannelType.DEGEN:
            score += 1
        elif profile.channel_type == ChannelType.PREMIUM:
            score -= 0.5
        return max(1, min(10, math.floor(score + 0.5)))

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def record_outcome(self, profit: float, equity: float | None = None) -> None:
        """Book a closed trade and raise the peak if equity made a new high."""
        state = self._state
        state.trades_count += 1
        if profit > 0:
            state.total_profit += profit
            state.consecutive_losses = 0
        else:
            state.total_loss += abs(profit)
            state.consecutive_losses += 1
        if equity is None:
            equity = self.realized_equity()
        self.observe_equity(equity)
        logger.debug(
            f"Outcome recorded: profit=${profit:.2f} trades={state.trades_count} "
            f"streak={state.consecutive_losses} peak=${state.peak_balance:.2f}"
        )

    def observe_equity(self, equity: float) -> None:
        """Raise the peak from mark-to-market equity; never lowers it."""
        if equity > self._state.peak_balance:
            self._state.peak_balance = equity

    def realized_equity(self) -> float:
        state = self._state
        return state.starting_balance + state.total_profit - state.total_loss

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def risk_level(self, current_balance: float | None = None) -> str:
        balance = self.realized_equity() if current_balance is None else current_balance
        drawdown = self.drawdown(balance)
        losses = self._state.consecutive_losses
        if drawdown >= 0.15 or losses >= 4:
            return "HIGH"
        if drawdown >= 0.08 or losses >= 2:
            return "MEDIUM"
        return "LOW"

    def get_status(self, current_balance: float | None = None) -> dict[str, Any]:
        balance = self.realized_equity() if current_balance is None else current_balance
        level = self.risk_level(balance)
        return {
            "trades_remaining": self._cfg.max_daily_trades - self._state.trades_count,
            "loss_remaining": self.max_daily_loss - self._state.total_loss,
            "drawdown": self.drawdown(balance),
            "consecutive_losses": self._state.consecutive_losses,
            "risk_level": level,
            "recommendations": list(RECOMMENDATIONS[level]),
        }

    def risk_report(self, current_balance: float | None = None) -> str:
        """Plain-text session summary."""
        balance = self.realized_equity() if current_balance is None else current_balance
        status = self.get_status(balance)
        state = self._state
        lines = [
            "RISK REPORT",
            "",
            "Current status:",
            f"  Risk level: {status['risk_level']}",
            f"  Current balance: ${balance:.2f}",
            f"  Peak balance: ${state.peak_balance:.2f}",
            f"  Current drawdown: {status['drawdown'] * 100:.1f}%",
            "",
            "Session statistics:",
            f"  Trades executed: {state.trades_count}",
            f"  Trades remaining: {status['trades_remaining']}",
            f"  Total profit: ${state.total_profit:.2f}",
            f"  Total loss: ${state.total_loss:.2f}",
            f"  Net P/L: ${state.total_profit - state.total_loss:.2f}",
            f"  Consecutive losses: {state.consecutive_losses}",
            "",
            "Recommendations:",
            *(f"  - {r}" for r in status["recommendations"]),
            "",
            "Limits:",
            f"  Max daily trades: {self._cfg.max_daily_trades}",
            f"  Max daily loss: ${self.max_daily_loss:.2f}",
            f"  Max drawdown: {self._cfg.max_drawdown * 100:.0f}%",
        ]
        return "\n".join(lines)
