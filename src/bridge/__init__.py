"""Typed, session-scoped message channel between controller and runtime."""
