"""Shared models, errors and logging."""
