"""Venue interface and the simulated paper venue."""
