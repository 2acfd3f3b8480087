"""Opportunity generation, lifecycle and deduplication."""
