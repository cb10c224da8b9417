"""Exception hierarchy shared by the capture pipeline and the read path."""

from __future__ import annotations


class TattletaleError(RuntimeError):
    """Base class for errors raised by this package."""


class CaptureError(TattletaleError):
    """Raised when a capture session cannot be set up or read from."""


class MappingError(TattletaleError):
    """Raised when a captured packet cannot be turned into a stored record."""

    def __init__(self, message: str, packet=None) -> None:
        super().__init__(message)
        self.packet = packet


class StorageError(TattletaleError):
    """Raised when the packet store fails to read or write."""


class ConfigError(TattletaleError):
    """Raised for invalid configuration values."""


class QueueClosed(TattletaleError):
    """Raised when pushing to, or reading from, a closed and drained queue."""


__all__ = [
    "TattletaleError",
    "CaptureError",
    "MappingError",
    "StorageError",
    "ConfigError",
    "QueueClosed",
]
