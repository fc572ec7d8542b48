"""Risk gating, channel profiles and portfolio metrics."""
