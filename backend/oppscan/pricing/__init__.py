"""Claim profit normalization."""
