"""Logging and Prometheus metrics for scan runs."""
