"""Utility helpers shared across the monitor runner."""
