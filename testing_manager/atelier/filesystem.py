"""Virtual filesystem over local files and server documents.

`file` URIs address the local disk. `isfs` and `isfs-readonly` URIs address
documents of a server namespace: the authority is `server:namespace`, and a
`csp` query flag switches from class/routine names to web-application paths
(with `ns=` naming the namespace that owns the web application).
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from testing_manager.atelier.client import AtelierClient
from testing_manager.models.node import ResourceUri

log = logging.getLogger(__name__)

LIST_DOCS_QUERY = "SELECT Name FROM %Library.RoutineMgr_StudioOpenDialog(?,1,1,1,1,0,1)"


class RemoteFileError(Exception):
    """Raised when a virtual file operation fails."""


class RemoteFileNotFoundError(RemoteFileError):
    """Raised when a virtual file does not exist."""


@dataclass(frozen=True, kw_only=True)
class ServerLocation:
    """Namespace and document name a server URI resolves to."""

    namespace: str
    name: str
    csp: bool


def server_location(uri: ResourceUri) -> ServerLocation:
    """Resolve a server URI to the namespace and document name it addresses."""
    params = uri.query_params
    _, _, authority_namespace = uri.authority.partition(":")
    namespace = (params.get("ns") or authority_namespace).upper()
    if not namespace:
        raise RemoteFileError(f"No namespace in {uri}")
    if "csp" in params:
        return ServerLocation(namespace=namespace, name=uri.path, csp=True)
    return ServerLocation(
        namespace=namespace, name=uri.path.strip("/").replace("/", "."), csp=False
    )


@dataclass(frozen=True, kw_only=True)
class RemoteFileSystem:
    """File operations addressed by `scheme://authority/path` URIs."""

    client: AtelierClient | None = field(default=None, repr=False)

    def _client_for(self, uri: ResourceUri) -> AtelierClient:
        if self.client is None:
            raise RemoteFileError(f"No server connection for {uri}")
        return self.client

    async def exists(self, uri: ResourceUri) -> bool:
        """Check whether a file exists."""
        if uri.is_local:
            return Path(uri.path).is_file()
        location = server_location(uri)
        return await self._client_for(uri).doc_exists(location.namespace, location.name)

    async def read_lines(self, uri: ResourceUri) -> Sequence[str]:
        """Read a file as lines without line terminators."""
        if uri.is_local:
            path = Path(uri.path)
            if not path.is_file():
                raise RemoteFileNotFoundError(f"File not found: {uri}")
            return path.read_text(encoding="utf-8").splitlines()
        if not uri.is_server:
            raise RemoteFileError(f"Unsupported scheme: {uri.scheme}")
        location = server_location(uri)
        client = self._client_for(uri)
        if not await client.doc_exists(location.namespace, location.name):
            raise RemoteFileNotFoundError(f"File not found: {uri}")
        return await client.get_doc(location.namespace, location.name)

    async def write_lines(self, uri: ResourceUri, lines: Sequence[str]) -> None:
        """Create or overwrite a server file."""
        if uri.scheme != "isfs":
            raise RemoteFileError(f"Cannot write to {uri}")
        location = server_location(uri)
        await self._client_for(uri).put_doc(location.namespace, location.name, lines)

    async def copy(self, source: ResourceUri, destination: ResourceUri) -> None:
        """Copy a file, overwriting the destination."""
        log.debug("Copying %s to %s", source, destination)
        lines = await self.read_lines(source)
        await self.write_lines(destination, lines)

    async def delete(self, uri: ResourceUri, *, recursive: bool = True) -> int:
        """Delete the files of a web-application folder.

        Only files are removed; emptied folders stay behind. Returns the number
        of files deleted.
        """
        location = server_location(uri)
        if not location.csp:
            raise RemoteFileError(f"Only web-application folders can be deleted: {uri}")
        client = self._client_for(uri)
        folder = location.name.rstrip("/")
        spec = f"{folder}/*" if recursive else f"{folder}/*.*"
        rows = await client.query(location.namespace, LIST_DOCS_QUERY, [spec])
        names = [
            name if name.startswith("/") else f"{folder}/{name}"
            for name in (str(row.get("Name", "")) for row in rows)
            if name and not name.endswith("/")
        ]
        if names:
            await client.delete_docs(location.namespace, names)
        log.debug("Deleted %d file(s) beneath %s", len(names), uri)
        return len(names)
