"""Shared helpers for the procurement kernel."""
