"""Operational status API."""
