"""Shared error types for callgate."""


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""
