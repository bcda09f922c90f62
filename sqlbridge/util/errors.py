"""Contains general errors that extend Python's base errors."""
from __future__ import annotations


class StateError(RuntimeError):
    """Indicates that an object is not in the right state to perform an operation.

    Typical examples are statements on a closed connection, checkouts from a closed pool or nested transactions.
    """
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
