"""Core types, event bus and scheduling primitives."""
