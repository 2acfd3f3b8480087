"""Opportunity data-quality gate."""
