"""Test factories for generating test data."""

from collections.abc import Sequence

from polyfactory.factories import DataclassFactory
from polyfactory.factories.pydantic_factory import ModelFactory
from pydantic import SecretStr

from testing_manager.config import ServerSpec
from testing_manager.models.node import ResourceUri, TestNode
from testing_manager.models.result import TestResult


class TestResultFactory(DataclassFactory[TestResult]):
    """Factory for TestResult."""

    __model__ = TestResult

    duration_ms = None
    messages = ()


class ServerSpecFactory(ModelFactory[ServerSpec]):
    """Factory for ServerSpec."""

    name = "iris"
    host = "iris.example.com"
    port = 52773
    scheme = "http"
    path_prefix = ""
    username = "_SYSTEM"
    password = SecretStr("SYS")


def class_node(
    parent: TestNode,
    class_name: str,
    methods: Sequence[str] = (),
    *,
    uri: ResourceUri | None = None,
) -> TestNode:
    """Attach a class node with `Test<name>` method children to `parent`.

    Local roots end their id with `:`, so the separator is only added for
    server roots.
    """
    separator = "" if parent.id.endswith((":", ".")) else ":"
    node = parent.add_child(
        TestNode(
            id=f"{parent.id}{separator}{class_name}",
            label=class_name,
            uri=uri,
        )
    )
    for line, method in enumerate(methods, start=1):
        node.add_child(
            TestNode(id=f"{node.id}:Test{method}", label=method, uri=uri, line=line)
        )
    return node
