"""Execution metrics, per-command learning and adaptive retry queue."""
