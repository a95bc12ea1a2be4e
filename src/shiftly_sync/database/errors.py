"""Exceptions raised by the store layer."""


class StoreError(Exception):
    """Base exception for store operations."""


class ConnectivityError(StoreError):
    """A store could not be reached (network down, login timeout, ...)."""

    def __init__(self, store: str, message: str = ""):
        self.store = store
        super().__init__(f"{store} unreachable: {message}" if message
                         else f"{store} unreachable")


class UnknownTableError(StoreError):
    """The table is not part of the synchronized catalog."""


class SchemaError(StoreError):
    """The table catalog is inconsistent (unknown or cyclic references)."""
