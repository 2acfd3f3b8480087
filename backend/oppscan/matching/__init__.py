"""Trigger keyword matching."""
