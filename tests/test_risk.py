"""Tests for the session risk gate."""

from datetime import date

import pytest

from launchtrade.config import LaunchTradeSettings
from launchtrade.core.types import RiskTier
from launchtrade.risk.channels import ChannelRegistry
from launchtrade.risk.manager import RiskManager

UNDERDOG = "-1002209371269"
DEGEN = "-1002277274250"


def test_confident_signal_passes_unchanged(risk, make_signal) -> None:
    assessment = risk.evaluate(make_signal(), 1000.0, [])
    assert assessment.allowed
    assert assessment.adjusted_trade_percent == 5.0
    assert assessment.risk_tier == RiskTier.MEDIUM
    assert assessment.reasons == []
    assert assessment.risk_score == 4


def test_losing_streak_shrinks_size(risk, make_signal) -> None:
    for _ in range(5):
        risk.record_outcome(-1.0)

    assessment = risk.evaluate(make_signal(), 995.0, [])
    assert assessment.allowed
    assert assessment.adjusted_trade_percent == 2.0
    assert "Trade size reduced due to losing streak" in assessment.reasons


def test_daily_trade_limit(risk, make_signal) -> None:
    for _ in range(20):
        risk.record_outcome(1.0)

    assessment = risk.evaluate(make_signal(), 1020.0, [])
    assert not assessment.allowed
    assert assessment.adjusted_trade_percent == 0.0
    assert "Daily trade limit" in assessment.reasons[0]


def test_daily_loss_limit(risk, make_signal) -> None:
    risk.record_outcome(-150.0)
    assessment = risk.evaluate(make_signal(), 850.0, [])
    assert not assessment.allowed
    assert assessment.reasons[0].startswith("Daily loss limit reached")


def test_drawdown_limit(risk, make_signal) -> None:
    assessment = risk.evaluate(make_signal(), 750.0, [])
    assert not assessment.allowed
    assert assessment.reasons == ["Maximum drawdown reached: 25.0%"]

    assert risk.evaluate(make_signal(), 751.0, []).allowed


def test_concurrency_caps_by_tier(risk, make_signal) -> None:
    urgent = make_signal(urgency="high")
    assert risk.classify_tier(urgent) == RiskTier.HIGH
    assert risk.evaluate(urgent, 1000.0, 7).allowed
    rejected = risk.evaluate(urgent, 1000.0, 8)
    assert not rejected.allowed
    assert "for high risk level (8/8)" in rejected.reasons[0]

    safe = make_signal(risk="low")
    assert risk.classify_tier(safe) == RiskTier.LOW
    assert risk.evaluate(safe, 1000.0, 2).allowed
    assert not risk.evaluate(safe, 1000.0, 3).allowed


def test_low_confidence_cap(risk, make_signal) -> None:
    assessment = risk.evaluate(make_signal(confidence=1.0), 1000.0, [])
    assert assessment.allowed
    assert assessment.adjusted_trade_percent == 3.0
    assert assessment.reasons == ["Trade size adjusted for low confidence signal"]


def test_degen_channel_cap(risk, make_signal) -> None:
    assessment = risk.evaluate(make_signal(source_channel=DEGEN), 1000.0, [])
    assert assessment.allowed
    assert assessment.adjusted_trade_percent == 4.0
    assert assessment.risk_tier == RiskTier.HIGH
    assert "Degen channel risk adjustment applied" in assessment.reasons


def test_soft_caps_stack(risk, make_signal) -> None:
    for _ in range(5):
        risk.record_outcome(-1.0)
    signal = make_signal(source_channel=DEGEN, confidence=1.0)
    assessment = risk.evaluate(signal, 995.0, [])
    assert assessment.adjusted_trade_percent == 2.0
    assert len(assessment.reasons) == 3


def test_evaluate_does_not_mutate_state(risk, make_signal) -> None:
    risk.record_outcome(-3.0)
    before = risk.state.model_dump()
    first = risk.evaluate(make_signal(), 990.0, 1)
    second = risk.evaluate(make_signal(), 990.0, 1)
    assert first == second
    assert risk.state.model_dump() == before


@pytest.mark.parametrize(
    "fields, open_count, expected",
    [
        ({}, 0, 4),
        ({"confidence": 0.0, "sentiment": "bearish", "trade_percent": 10.0, "source_channel": DEGEN}, 4, 10),
        ({"source_channel": UNDERDOG, "sentiment": "bullish"}, 0, 3),
        ({"sentiment": "bullish", "trade_percent": 2.0}, 0, 2),
        ({"confidence": 1.0}, 0, 7),
    ],
)
def test_risk_score(risk, make_signal, fields, open_count, expected) -> None:
    assert risk.risk_score(make_signal(**fields), open_count) == expected


def test_risk_score_counts_losing_streak(risk, make_signal) -> None:
    for _ in range(3):
        risk.record_outcome(-1.0)
    assert risk.risk_score(make_signal(), 0) == 6


def test_peak_tracks_equity(risk) -> None:
    risk.record_outcome(50.0, equity=1050.0)
    assert risk.state.peak_balance == 1050.0

    risk.record_outcome(-20.0, equity=1030.0)
    assert risk.state.peak_balance == 1050.0
    assert risk.drawdown(1030.0) == pytest.approx(20.0 / 1050.0)

    risk.observe_equity(1100.0)
    assert risk.state.peak_balance == 1100.0

    risk.observe_equity(900.0)
    assert risk.state.peak_balance == 1100.0


def test_outcome_without_equity_uses_realized(risk) -> None:
    risk.record_outcome(30.0)
    assert risk.state.peak_balance == 1030.0
    assert risk.realized_equity() == 1030.0


def test_outcome_counters(risk) -> None:
    risk.record_outcome(-5.0)
    risk.record_outcome(0.0)
    assert risk.state.consecutive_losses == 2
    assert risk.state.total_loss == 5.0

    risk.record_outcome(12.0)
    assert risk.state.consecutive_losses == 0
    assert risk.state.total_profit == 12.0
    assert risk.state.trades_count == 3


def test_risk_levels(risk) -> None:
    assert risk.risk_level() == "LOW"
    assert risk.get_status(900.0)["risk_level"] == "MEDIUM"

    risk.record_outcome(-1.0)
    risk.record_outcome(-1.0)
    assert risk.risk_level() == "MEDIUM"

    risk.record_outcome(-1.0)
    risk.record_outcome(-1.0)
    status = risk.get_status()
    assert status["risk_level"] == "HIGH"
    assert status["consecutive_losses"] == 4
    assert status["trades_remaining"] == 16
    assert status["loss_remaining"] == pytest.approx(146.0)
    assert "Consider taking a break from trading" in status["recommendations"]


def test_risk_report(risk) -> None:
    risk.record_outcome(-10.0)
    report = risk.risk_report()
    assert report.startswith("RISK REPORT")
    assert "Max daily trades: 20" in report
    assert "Total loss: $10.00" in report


def test_manual_session_never_rolls(risk) -> None:
    risk.record_outcome(-10.0)
    assert not risk.roll_session_if_due(date(2100, 1, 1), 990.0)
    assert risk.state.trades_count == 1


def test_daily_session_rolls_on_new_day(cfg) -> None:
    daily = cfg.model_copy(update={"risk_session_reset": "daily"})
    risk = RiskManager(starting_balance=1000.0, channels=ChannelRegistry(overrides={}, cfg=daily), cfg=daily)
    risk.start_session(1000.0, today=date(2026, 1, 1))
    risk.record_outcome(-10.0)

    assert not risk.roll_session_if_due(date(2026, 1, 1), 990.0)
    assert risk.roll_session_if_due(date(2026, 1, 2), 990.0)
    assert risk.state.trades_count == 0
    assert risk.state.starting_balance == 990.0
    assert risk.state.peak_balance == 990.0


def test_explicit_loss_cap() -> None:
    cfg = LaunchTradeSettings(_env_file=None, max_daily_loss_usd=40.0, channel_profiles={})
    risk = RiskManager(starting_balance=1000.0, cfg=cfg)
    assert risk.max_daily_loss == 40.0
