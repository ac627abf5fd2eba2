"""Error taxonomy shared by the store and the services.

Nothing here is allowed to escape a public service operation: services
catch these at their boundary and turn them into ``None``/``False``/``[]``.
"""

from __future__ import annotations


class RewardsError(Exception):
    pass


class StorageError(RewardsError):
    """The document store failed or did not answer within the timeout."""


class ConcurrencyConflict(StorageError):
    """A versioned write found a different version than it expected."""

    def __init__(self, collection: str, key: str, expected: int, found: int) -> None:
        super().__init__(
            f"{collection}/{key}: expected version {expected}, found {found}"
        )
        self.collection = collection
        self.key = key
        self.expected = expected
        self.found = found


class ValidationError(RewardsError, ValueError):
    """Malformed input (bad game result, non-positive amount, ...)."""
