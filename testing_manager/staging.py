"""Staging of test classes into the server's unit test root."""

import logging
from collections.abc import Mapping
from pathlib import Path

import aiohttp

from testing_manager.atelier.client import AtelierClient, AtelierError
from testing_manager.atelier.filesystem import RemoteFileError, RemoteFileSystem
from testing_manager.cancellation import CancellationToken
from testing_manager.models.node import ResourceUri, TestNode
from testing_manager.recorder import RunRecorder

log = logging.getLogger(__name__)

WEB_APPLICATION = "/_vscode"
SUPPORT_PACKAGE = "vscode.dc.testingmanager"
COVERAGE_LIST = "coverage.list"

STAGING_ERRORS = (RemoteFileError, AtelierError, aiohttp.ClientError, OSError)


def staging_root(server: str, namespace: str, username: str) -> ResourceUri:
    """Per-user folder of the web application that tests are staged into.

    The web application belongs to `%SYS`; the namespace's `^UnitTestRoot` is
    expected to point at its `<NAMESPACE>/UnitTestRoot` subfolder.
    """
    return ResourceUri(
        scheme="isfs",
        authority=server,
        path=f"{WEB_APPLICATION}/{namespace.upper()}/UnitTestRoot/{username}",
        query="csp&ns=%SYS",
    )


async def clear_staging_root(fs: RemoteFileSystem, root: ResourceUri) -> None:
    """Delete previously staged files. Failures are logged and ignored."""
    try:
        await fs.delete(root, recursive=True)
    except STAGING_ERRORS as exc:
        log.warning("Could not clear %s: %s", root, exc)


async def discover_coverage_lists(
    fs: RemoteFileSystem,
    classes: Mapping[str, TestNode],
    cancellation: CancellationToken,
) -> Mapping[ResourceUri, str]:
    """Find `coverage.list` files in the folders above each local class.

    Walks from a class's own folder up to the test root, stopping at the first
    folder already checked for an earlier class. Server-resident classes are
    skipped since only local trees can hold these files.

    Returns:
        Each found file mapped to its folder path relative to the test root

    """
    checked: dict[ResourceUri, str | None] = {}
    for key, class_node in classes.items():
        uri = class_node.uri
        if uri is None or not uri.is_local or not uri.path.endswith(key):
            continue
        base = uri.path[: len(uri.path) - len(key)].rstrip("/")
        parts = key.split("/")[:-1]
        while True:
            relative = "/".join(parts)
            marker = uri.with_path(f"{base}/{relative}/{COVERAGE_LIST}".replace("//", "/"))
            if marker in checked:
                break
            if cancellation.is_cancellation_requested:
                break
            try:
                found = await fs.exists(marker)
            except STAGING_ERRORS as exc:
                log.warning("Error checking for %s: %s", marker, exc)
                found = False
            checked[marker] = relative if found else None
            if not parts:
                break
            parts.pop()
    return {marker: relative for marker, relative in checked.items() if relative is not None}


async def copy_coverage_lists(
    fs: RemoteFileSystem,
    found: Mapping[ResourceUri, str],
    root: ResourceUri,
    cancellation: CancellationToken,
) -> None:
    """Copy found `coverage.list` files to the same place beneath `root`."""
    for marker, relative in found.items():
        if cancellation.is_cancellation_requested:
            break
        destination = root.join(relative, COVERAGE_LIST)
        try:
            await fs.copy(marker, destination)
        except STAGING_ERRORS as exc:
            log.warning("Error copying %s: %s", marker, exc)


async def stage_classes(
    fs: RemoteFileSystem,
    classes: Mapping[str, TestNode],
    root: ResourceUri,
    recorder: RunRecorder,
    cancellation: CancellationToken,
) -> int:
    """Copy class sources beneath `root`, keeping their package folders.

    A class that fails to copy is reported as errored and skipped.

    Returns:
        Number of classes staged

    """
    staged = 0
    for key, class_node in classes.items():
        if cancellation.is_cancellation_requested:
            break
        if class_node.uri is None:
            continue
        try:
            await fs.copy(class_node.uri, root.join(key))
        except STAGING_ERRORS as exc:
            log.error("Failed to stage %s: %s", class_node.id, exc)
            recorder.errored(class_node, str(exc))
            continue
        staged += 1
    log.info("Staged %d of %d class(es) in %s", staged, len(classes), root)
    return staged


async def upload_support_classes(
    client: AtelierClient, directory: Path, namespace: str
) -> None:
    """Load and compile the server-side helper classes. Failures are logged."""
    names: list[str] = []
    try:
        for path in sorted(directory.glob("*.cls")):
            name = f"{SUPPORT_PACKAGE}.{path.stem}.cls"
            await client.put_doc(namespace, name, path.read_text(encoding="utf-8").splitlines())
            names.append(name)
        if names:
            await client.compile_docs(namespace, names)
    except STAGING_ERRORS as exc:
        log.warning("Could not load support classes into %s: %s", namespace, exc)
