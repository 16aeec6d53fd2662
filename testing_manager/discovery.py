"""Resolvers that populate the test tree lazily."""

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import aiohttp

from testing_manager.atelier.client import AtelierClient, AtelierError
from testing_manager.config import ServerSpec, WorkspaceFolder
from testing_manager.models.node import NodeId, ResourceUri, TestNode

log = logging.getLogger(__name__)

TEST_CASE_SUPERCLASS = "%UnitTest.TestCase"
TEST_METHOD = re.compile(r"^Method Test(.+?)\(")


class ChildResolver(Protocol):
    """Populates the children of a node marked as resolvable."""

    async def __call__(self, node: TestNode) -> None: ...


@dataclass(frozen=True, kw_only=True)
class TestMethodDeclaration:
    """A `Test*` method found in class source."""

    __test__ = False

    name: str
    line: int


def scan_test_methods(lines: Sequence[str]) -> Sequence[TestMethodDeclaration]:
    """Find the test methods of a class definition.

    Returns nothing when the class does not extend the unit test case class.
    Line numbers are 0-based.
    """
    methods: list[TestMethodDeclaration] = []
    for index, text in enumerate(lines):
        if text.startswith("Class ") and TEST_CASE_SUPERCLASS not in text:
            break
        if match := TEST_METHOD.match(text):
            methods.append(TestMethodDeclaration(name=match[1], line=index))
    return methods


@dataclass(frozen=True, kw_only=True)
class LocalTestResolver:
    """Test tree of classes under a workspace folder's test root."""

    folder: WorkspaceFolder
    supports_coverage: bool = True

    def root(self) -> TestNode:
        folder = self.folder
        return TestNode(
            id=f"{folder.index}:{folder.server}:{folder.namespace.upper()}:",
            label=folder.name,
            uri=folder.test_root_uri,
            can_resolve_children=True,
            supports_coverage=self.supports_coverage,
            description=folder.relative_test_root,
        )

    async def __call__(self, node: TestNode) -> None:
        if node.uri is None:
            return
        path = Path(node.uri.path)
        node.can_resolve_children = False
        if path.is_dir():
            self._add_entries(node, path)
        elif path.suffix == ".cls":
            try:
                lines = path.read_text(encoding="utf-8").splitlines()
            except (OSError, UnicodeDecodeError) as exc:
                node.error = f"{type(exc).__name__} - {exc}"
                log.warning("Can't read %s: %s", path, exc)
                return
            _add_methods(node, scan_test_methods(lines))

    def _add_entries(self, node: TestNode, path: Path) -> None:
        entries = sorted(path.iterdir())
        for entry in entries:
            if entry.is_dir():
                node.add_child(
                    TestNode(
                        id=f"{node.id}{entry.name}.",
                        label=entry.name,
                        uri=node.uri.join(entry.name) if node.uri else None,
                        can_resolve_children=True,
                        supports_coverage=node.supports_coverage,
                    )
                )
        for entry in entries:
            if entry.is_file() and entry.suffix == ".cls":
                node.add_child(
                    TestNode(
                        id=f"{node.id}{entry.stem}",
                        label=entry.name,
                        uri=node.uri.join(entry.name) if node.uri else None,
                        can_resolve_children=True,
                        supports_coverage=node.supports_coverage,
                    )
                )


def _add_methods(node: TestNode, methods: Sequence[TestMethodDeclaration]) -> None:
    for method in methods:
        node.add_child(
            TestNode(
                id=f"{node.id}:Test{method.name}",
                label=method.name,
                uri=node.uri,
                line=method.line,
                supports_coverage=node.supports_coverage,
            )
        )
    if not methods:
        node.supports_coverage = False


@dataclass(frozen=True, kw_only=True)
class ServerTestResolver:
    """Test tree of the test case classes compiled in a server namespace."""

    client: AtelierClient = field(repr=False)
    namespace: str
    index: int = 0
    supports_coverage: bool = False

    @property
    def server(self) -> ServerSpec:
        return self.client.spec

    def root(self) -> TestNode:
        namespace = self.namespace.upper()
        return TestNode(
            id=f"{self.index}:{self.server.name}:{namespace}",
            label=f"{self.server.name}:{namespace}",
            uri=ResourceUri(
                scheme="isfs-readonly",
                authority=f"{self.server.name}:{namespace.lower()}",
            ),
            can_resolve_children=True,
            supports_coverage=self.supports_coverage,
        )

    async def __call__(self, node: TestNode) -> None:
        if NodeId.parse(node.id).class_path or node.uri is None:
            return
        node.can_resolve_children = False
        namespace = self.namespace.upper()
        scope = "" if namespace == "%SYS" else "@"
        try:
            rows = await self.client.query(
                namespace,
                f"CALL %Dictionary.ClassDefinition_SubclassOf('{TEST_CASE_SUPERCLASS}', '{scope}')",
            )
        except (AtelierError, aiohttp.ClientError) as exc:
            node.error = str(exc)
            log.warning("Can't list test classes in %s: %s", namespace, exc)
            return

        for row in rows:
            class_name = str(row["Name"])
            try:
                lines = await self.client.get_doc(namespace, f"{class_name}.cls")
            except (AtelierError, aiohttp.ClientError) as exc:
                log.warning("Can't read %s: %s", class_name, exc)
                continue
            methods = scan_test_methods(lines)
            if not methods:
                continue
            class_node = TestNode(
                id=f"{node.id}:{class_name}",
                label=class_name,
                uri=node.uri.with_path("/" + class_name.replace(".", "/") + ".cls"),
                supports_coverage=node.supports_coverage,
            )
            _add_methods(class_node, methods)
            node.add_child(class_node)


@dataclass(frozen=True, kw_only=True)
class TreeResolver:
    """Dispatches child resolution to the resolver owning a node's root."""

    resolvers: Mapping[str, ChildResolver]

    async def __call__(self, node: TestNode) -> None:
        resolver = self.resolvers.get(NodeId.parse(node.id).id_prefix)
        if resolver is None:
            log.warning("No resolver for %s", node.id)
            node.can_resolve_children = False
            return
        await resolver(node)


def _leads_to(node: TestNode, node_id: str) -> bool:
    if node_id == node.id:
        return True
    if node.id.endswith((".", ":")):
        return node_id.startswith(node.id)
    return node_id.startswith(f"{node.id}:")


async def find_node(
    roots: Sequence[TestNode], resolve: ChildResolver, node_id: str
) -> TestNode | None:
    """Find a node by id, resolving children along the way as needed."""
    candidates = list(roots)
    while candidates:
        node = next((n for n in candidates if _leads_to(n, node_id)), None)
        if node is None:
            return None
        if node.id == node_id:
            return node
        if node.can_resolve_children and not node.children:
            await resolve(node)
        candidates = list(node.children.values())
    return None
