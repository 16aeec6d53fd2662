"""Tests for configuration models."""

import json
from pathlib import Path

from testing_manager.config import ManagerConfig, ServerSpec, WorkspaceFolder
from testing_manager.models.node import ResourceUri
from testing_manager.testing.factories import ServerSpecFactory


class TestServerSpec:
    """Tests for ServerSpec."""

    def test_base_url_with_prefix(self) -> None:
        spec = ServerSpecFactory.build(scheme="https", port=443, path_prefix="/iris/")

        assert spec.base_url == "https://iris.example.com:443/iris"

    def test_effective_username(self) -> None:
        """Usernames are lower-cased and default to UnknownUser."""
        assert ServerSpecFactory.build(username="_SYSTEM").effective_username == "_system"
        assert ServerSpecFactory.build(username=None).effective_username == "unknownuser"

    def test_from_connection_nested_web_server(self) -> None:
        """Web server details may be nested."""
        spec = ServerSpec.from_connection(
            {
                "serverName": "iris",
                "webServer": {"host": "localhost", "port": "52773", "pathPrefix": "iris"},
                "username": "Admin",
                "password": "secret",
            }
        )

        assert spec.name == "iris"
        assert spec.base_url == "http://localhost:52773/iris"
        assert spec.password is not None
        assert spec.password.get_secret_value() == "secret"

    def test_from_connection_flat(self) -> None:
        spec = ServerSpec.from_connection({"name": "dev", "host": "dev", "port": 80})

        assert spec.name == "dev"
        assert spec.username is None


class TestManagerConfig:
    """Tests for ManagerConfig."""

    def make_config(self) -> ManagerConfig:
        return ManagerConfig(
            servers={"iris": ServerSpecFactory.build()},
            folders=[
                WorkspaceFolder(
                    name="app", path=Path("/work/app"), server="iris", namespace="USER"
                ),
                WorkspaceFolder(
                    name="nested",
                    index=1,
                    path=Path("/work/app/nested"),
                    server="iris",
                    namespace="SAMPLES",
                ),
            ],
        )

    def test_folder_for_local_uri_prefers_longest_path(self) -> None:
        """Nested folders win over their parents."""
        config = self.make_config()

        nested = config.folder_for(ResourceUri.file("/work/app/nested/pkg/Test.cls"))
        outer = config.folder_for(ResourceUri.file("/work/app/pkg/Test.cls"))

        assert nested is not None and nested.name == "nested"
        assert outer is not None and outer.name == "app"
        assert config.folder_for(ResourceUri.file("/work/application/Test.cls")) is None

    def test_folder_for_server_uri_matches_authority(self) -> None:
        """Server URIs match on server and namespace, case-insensitively."""
        config = self.make_config()

        folder = config.folder_for(ResourceUri.parse("isfs-readonly://iris:samples/pkg/T.cls"))

        assert folder is not None and folder.name == "nested"
        assert config.folder_for(ResourceUri.parse("isfs://other:user/T.cls")) is None

    def test_folder_test_root_and_authority(self) -> None:
        folder = self.make_config().folders[0]

        assert str(folder.test_root_uri) == "file:///work/app/internal/testing/unit_tests"
        assert folder.authority == "iris:user"

    def test_load(self, tmp_path: Path) -> None:
        """Configuration loads from JSON."""
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "mode": "server",
                    "servers": {
                        "iris": {"name": "iris", "host": "localhost", "port": 52773}
                    },
                    "folders": [
                        {
                            "name": "app",
                            "path": "/work/app",
                            "server": "iris",
                            "namespace": "USER",
                        }
                    ],
                    "launcher": {"key": "shell", "options": {"stdin": None}},
                }
            )
        )

        config = ManagerConfig.load(path)

        assert config.mode == "server"
        assert config.server_for(config.folders[0]) == config.servers["iris"]
        assert config.launcher.options == {"stdin": None}
