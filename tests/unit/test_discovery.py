"""Tests for test tree discovery."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from testing_manager.config import WorkspaceFolder
from testing_manager.discovery import (
    LocalTestResolver,
    TreeResolver,
    find_node,
    scan_test_methods,
)
from testing_manager.models.node import ResourceUri, TestNode
from testing_manager.testing.payloads import class_source


def test_scan_test_methods_finds_test_prefixed_methods() -> None:
    """Only `Test*` methods are found, with 0-based lines."""
    lines = class_source("pkg.Test", ["Add", "Sub"])

    methods = scan_test_methods(lines)

    assert [m.name for m in methods] == ["Add", "Sub"]
    assert lines[methods[0].line].startswith("Method TestAdd(")


def test_scan_test_methods_ignores_other_classes() -> None:
    """Classes not extending the test case class have no tests."""
    lines = [
        "Class pkg.Util Extends %RegisteredObject",
        "{",
        "Method TestAdd()",
        "{",
        "}",
        "}",
    ]

    assert scan_test_methods(lines) == []


@pytest.fixture
def folder(tmp_path: Path) -> WorkspaceFolder:
    """Create a workspace folder with a small test tree."""
    root = tmp_path / "tests"
    (root / "pkg" / "sub").mkdir(parents=True)
    (root / "pkg" / "Math.cls").write_text("\n".join(class_source("pkg.Math", ["Add"])))
    (root / "pkg" / "sub" / "Strings.cls").write_text(
        "\n".join(class_source("pkg.sub.Strings", ["Upper", "Lower"]))
    )
    (root / "pkg" / "Empty.cls").write_text("\n".join(class_source("pkg.Empty", [])))
    (root / "pkg" / "notes.txt").write_text("not a class")
    return WorkspaceFolder(
        name="app",
        path=tmp_path,
        server="iris",
        namespace="user",
        relative_test_root="tests",
    )


class TestLocalTestResolver:
    """Tests for LocalTestResolver."""

    def test_root(self, folder: WorkspaceFolder) -> None:
        root = LocalTestResolver(folder=folder).root()

        assert root.id == "0:iris:USER:"
        assert root.can_resolve_children
        assert root.uri == folder.test_root_uri

    async def test_resolves_folders_then_classes(self, folder: WorkspaceFolder) -> None:
        """Folders come before classes and non-class files are skipped."""
        resolver = LocalTestResolver(folder=folder)
        root = resolver.root()
        await resolver(root)
        pkg = root.children["0:iris:USER:pkg."]

        await resolver(pkg)

        assert list(pkg.children) == [
            "0:iris:USER:pkg.sub.",
            "0:iris:USER:pkg.Empty",
            "0:iris:USER:pkg.Math",
        ]
        assert not root.can_resolve_children

    async def test_resolves_methods_of_class(self, folder: WorkspaceFolder) -> None:
        """Class files resolve to their test methods."""
        resolver = LocalTestResolver(folder=folder, supports_coverage=False)

        strings = await find_node(
            [resolver.root()], resolver, "0:iris:USER:pkg.sub.Strings:TestLower"
        )

        assert strings is not None
        assert strings.label == "Lower"
        assert not strings.supports_coverage

    async def test_class_without_tests_loses_coverage(self, folder: WorkspaceFolder) -> None:
        resolver = LocalTestResolver(folder=folder)

        empty = await find_node([resolver.root()], resolver, "0:iris:USER:pkg.Empty")
        assert empty is not None
        await resolver(empty)

        assert empty.children == {}
        assert not empty.supports_coverage

    async def test_unreadable_class_records_error(self, folder: WorkspaceFolder) -> None:
        """Undecodable class files are marked with an error."""
        path = folder.test_root_uri.join("Bad.cls").path
        Path(path).write_bytes(b"\xff\xfe\xfa")
        node = TestNode(id="0:iris:USER:Bad", label="Bad.cls", uri=ResourceUri.file(path))

        await LocalTestResolver(folder=folder)(node)

        assert node.error is not None
        assert node.error.startswith("UnicodeDecodeError")
        assert node.children == {}


class TestTreeResolver:
    """Tests for TreeResolver."""

    async def test_dispatches_by_id_prefix(self) -> None:
        local, server = AsyncMock(), AsyncMock()
        resolver = TreeResolver(resolvers={"0:iris:USER": local, "1:iris:SAMPLES": server})
        node = TestNode(id="1:iris:SAMPLES", label="iris:SAMPLES", can_resolve_children=True)

        await resolver(node)

        server.assert_awaited_once_with(node)
        local.assert_not_called()

    async def test_unknown_root_stops_resolving(self) -> None:
        resolver = TreeResolver(resolvers={})
        node = TestNode(id="5:other:USER:", label="other", can_resolve_children=True)

        await resolver(node)

        assert not node.can_resolve_children


async def test_find_node_missing_id(folder: WorkspaceFolder) -> None:
    """Ids not in the tree are not found."""
    resolver = LocalTestResolver(folder=folder)

    assert await find_node([resolver.root()], resolver, "0:iris:USER:pkg.Nope") is None
    assert await find_node([resolver.root()], resolver, "0:other:USER:pkg.Math") is None
