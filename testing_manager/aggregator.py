"""Grouping of requested test nodes into per-server batches."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from testing_manager.cancellation import CancellationToken
from testing_manager.config import WorkspaceFolder
from testing_manager.discovery import ChildResolver
from testing_manager.models.node import NodeId, ResourceUri, TestNode
from testing_manager.models.request import RunRequest

log = logging.getLogger(__name__)

type FolderLookup = Callable[[ResourceUri], WorkspaceFolder | None]


@dataclass(kw_only=True)
class AuthorityBatch:
    """Test classes to stage and run in one `server:namespace` context.

    `classes` maps each class's path relative to the test root to its node, in
    the order classes were found.
    """

    authority: str
    classes: dict[str, TestNode] = field(default_factory=dict)

    @property
    def first_class(self) -> TestNode:
        return next(iter(self.classes.values()))

    def methods(self, target: TestNode | None = None) -> Sequence[TestNode]:
        """Method nodes of the batch, or just `target` when one was requested."""
        return [
            method
            for class_node in self.classes.values()
            for method in class_node.children.values()
            if target is None or method.id == target.id
        ]


@dataclass(kw_only=True)
class Aggregation:
    """Batches keyed by authority, in the order they were first seen."""

    batches: dict[str, AuthorityBatch] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.batches)

    def batch_for(self, authority: str) -> AuthorityBatch:
        return self.batches.setdefault(authority, AuthorityBatch(authority=authority))


def class_key(
    node: TestNode, uri: ResourceUri, folders: FolderLookup
) -> tuple[str, str]:
    """Execution-context key and class-path key of a leaf node.

    Server URIs carry their context as authority. Locally edited files take
    it from the workspace folder's connection, and their class path becomes
    relative to the folder's test root.
    """
    authority = uri.authority
    key = uri.path
    if uri.is_local:
        folder = folders(uri)
        if folder is None:
            return "", key
        authority = folder.authority
        root = folder.test_root_uri.path.rstrip("/")
        if key.startswith(f"{root}/"):
            key = key[len(root) + 1 :]
    return authority, key


def _class_of(node: TestNode) -> TestNode:
    if NodeId.parse(node.id).is_method and node.parent is not None:
        return node.parent
    return node


def initial_queue(request: RunRequest, roots: Sequence[TestNode]) -> Sequence[TestNode]:
    """Nodes a traversal starts from: the included ones, or all roots."""
    return [
        node
        for node in (request.include if request.include is not None else roots)
        if not request.coverage or node.supports_coverage
    ]


async def aggregate(
    request: RunRequest,
    roots: Sequence[TestNode],
    resolve: ChildResolver,
    folders: FolderLookup,
    cancellation: CancellationToken,
) -> Aggregation | None:
    """Walk the requested nodes and group their classes by authority.

    Returns None when cancelled part-way; the partial result is dropped.
    """
    excluded = {node.id for node in request.exclude}
    queue = list(initial_queue(request, roots))
    aggregation = Aggregation()

    while queue and not cancellation.is_cancellation_requested:
        node = queue.pop()

        if node.id in excluded:
            continue
        if request.coverage and not node.supports_coverage:
            continue

        if node.can_resolve_children and not node.children:
            await resolve(node)
            if cancellation.is_cancellation_requested:
                break

        if node.is_leaf and node.uri is not None and NodeId.parse(node.id).class_name:
            authority, key = class_key(node, node.uri, folders)
            if not authority:
                log.warning("No server connection for %s", node.uri)
            else:
                batch = aggregation.batch_for(authority)
                if key not in batch.classes:
                    batch.classes[key] = _class_of(node)

        queue.extend(node.children.values())

    if cancellation.is_cancellation_requested:
        log.info("Cancelled while gathering tests")
        return None

    log.info(
        "Gathered %d class(es) in %d batch(es)",
        sum(len(batch.classes) for batch in aggregation.batches.values()),
        len(aggregation.batches),
    )
    return aggregation
