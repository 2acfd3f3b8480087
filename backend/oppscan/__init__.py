"""Trigger-based opportunity scanner with per-payer coverage verification."""

__version__ = "0.1.0"
