"""Logging helpers for run-once guards."""
