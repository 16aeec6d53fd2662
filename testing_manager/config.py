"""Configuration for the testing manager."""

import json
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, SecretStr

from testing_manager.models.base import Model
from testing_manager.models.node import ResourceUri

DEFAULT_RELATIVE_TEST_ROOT = "internal/testing/unit_tests"


class ServerSpec(Model):
    """Connection details of one named server."""

    name: str
    host: str
    port: int
    scheme: Literal["http", "https"] = "http"
    path_prefix: str = ""
    username: str | None = None
    password: SecretStr | None = None

    @property
    def base_url(self) -> str:
        prefix = self.path_prefix.strip("/")
        root = f"{self.scheme}://{self.host}:{self.port}"
        return f"{root}/{prefix}" if prefix else root

    @property
    def effective_username(self) -> str:
        """Lower-cased username used to scope staging folders."""
        return (self.username or "UnknownUser").lower()

    @classmethod
    def from_connection(cls, connection: Mapping[str, Any]) -> "ServerSpec":
        """Convert a loosely-typed connection mapping at the boundary.

        Accepts the shape other editor extensions hand out, with the web
        server details either flat or nested under `webServer`.
        """
        web_server = connection.get("webServer") or connection
        return cls(
            name=connection.get("serverName") or connection.get("name") or "",
            host=web_server["host"],
            port=int(web_server["port"]),
            scheme=web_server.get("scheme") or "http",
            path_prefix=web_server.get("pathPrefix") or "",
            username=connection.get("username"),
            password=connection.get("password"),
        )


class ExportSettings(Model):
    """How server documents map onto files of a workspace folder."""

    folder: str = "src"
    add_category: bool = False
    map: Mapping[str, str] = Field(default_factory=dict)


class WorkspaceFolder(Model):
    """A local workspace folder connected to a server namespace."""

    name: str
    index: int = 0
    path: Path
    server: str
    namespace: str
    relative_test_root: str = DEFAULT_RELATIVE_TEST_ROOT
    multiline_method_args: bool = False
    export: ExportSettings = Field(default_factory=ExportSettings)

    @property
    def uri(self) -> ResourceUri:
        return ResourceUri.file(self.path.as_posix())

    @property
    def test_root_uri(self) -> ResourceUri:
        return self.uri.join(self.relative_test_root)

    @property
    def authority(self) -> str:
        """Execution-context key of files edited in this folder."""
        return f"{self.server}:{self.namespace.lower()}"


class LauncherSettings(Model):
    """Which launcher plugin runs tests, and its options."""

    key: str = "shell"
    options: Mapping[str, Any] = Field(default_factory=dict)


class ManagerConfig(Model):
    """Top-level configuration document."""

    mode: Literal["local", "server"] = "local"
    servers: Mapping[str, ServerSpec] = Field(default_factory=dict)
    folders: Sequence[WorkspaceFolder] = Field(default_factory=list)
    launcher: LauncherSettings = Field(default_factory=LauncherSettings)
    support_classes_dir: Path | None = None

    @classmethod
    def load(cls, path: Path) -> "ManagerConfig":
        """Load configuration from a JSON file."""
        return cls.model_validate(json.loads(path.read_text()))

    def server_for(self, folder: WorkspaceFolder) -> ServerSpec | None:
        return self.servers.get(folder.server)

    def folder_for(self, uri: ResourceUri) -> WorkspaceFolder | None:
        """Find the workspace folder a URI belongs to.

        `file` URIs match on the longest containing folder path, server URIs on
        their `server:namespace` authority.
        """
        if uri.is_local:
            best: WorkspaceFolder | None = None
            for folder in self.folders:
                root = folder.path.as_posix().rstrip("/")
                if uri.path == root or uri.path.startswith(f"{root}/"):
                    if best is None or len(root) > len(best.path.as_posix()):
                        best = folder
            return best
        server, _, namespace = uri.authority.partition(":")
        for folder in self.folders:
            if folder.server == server and folder.namespace.lower() == namespace.lower():
                return folder
        return None
