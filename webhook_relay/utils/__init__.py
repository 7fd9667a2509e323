"""Logging and metrics helpers."""
