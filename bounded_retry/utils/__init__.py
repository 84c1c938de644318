"""Utility helpers for bounded_retry."""
