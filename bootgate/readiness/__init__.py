"""Readiness gating — retry a probe with backoff until it passes or a deadline hits."""
