"""Persistence for simulator state."""
