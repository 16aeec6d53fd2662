"""Atelier REST transport and the virtual filesystem built on it."""

from testing_manager.atelier.client import AtelierClient, AtelierError
from testing_manager.atelier.filesystem import (
    RemoteFileError,
    RemoteFileNotFoundError,
    RemoteFileSystem,
)

__all__ = [
    "AtelierClient",
    "AtelierError",
    "RemoteFileError",
    "RemoteFileNotFoundError",
    "RemoteFileSystem",
]
