"""Lookup of launcher plugins registered as entry points."""

from importlib.metadata import entry_points
from typing import Any

from testing_manager.launchers.manifest import LauncherManifest

ENTRY_POINT_GROUP = "testing_manager.launchers"


class LauncherNotFoundError(Exception):
    """Raised when no usable launcher is registered under a key."""


def load_launcher_manifest(key: str) -> LauncherManifest[Any]:
    """Load the manifest of the launcher registered as `key` (e.g. "shell").

    Raises:
        LauncherNotFoundError: If `key` is not registered, or names something
            other than a launcher manifest

    """
    entries = entry_points(group=ENTRY_POINT_GROUP)
    matches = entries.select(name=key)
    if not matches:
        available = sorted(entries.names)
        raise LauncherNotFoundError(
            f"Launcher '{key}' not found. Available launchers: {available}"
        )

    entry = next(iter(matches))
    manifest = entry.load()
    if not isinstance(manifest, LauncherManifest):
        raise LauncherNotFoundError(
            f"Launcher '{key}' points at {entry.value}, which is not a launcher manifest"
        )
    return manifest
