"""Browsing of recent test results stored on the server."""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from pydantic import Field
from yarl import URL

from testing_manager.atelier.client import AtelierClient, AtelierError, ClientFactory
from testing_manager.config import ServerSpec
from testing_manager.models.base import WireModel

log = logging.getLogger(__name__)

INSTANCES_QUERY = (
    "SELECT TOP 10 InstanceIndex, DateTime, Duration "
    "FROM %UnitTest_Result.TestInstance ORDER BY DateTime DESC"
)
SUITES_QUERY = (
    "SELECT ID, Name, Duration, Status, ErrorDescription "
    "FROM %UnitTest_Result.TestSuite WHERE TestInstance = ?"
)
CASES_QUERY = (
    "SELECT ID, Name, Duration, Status, ErrorDescription "
    "FROM %UnitTest_Result.TestCase WHERE TestSuite = ?"
)
METHODS_QUERY = (
    "SELECT ID, Name, Duration, Status, ErrorDescription "
    "FROM %UnitTest_Result.TestMethod WHERE TestCase = ?"
)
ASSERTS_QUERY = (
    "SELECT ID, Counter, Action, Status, Description "
    "FROM %UnitTest_Result.TestAssert WHERE TestMethod = ? ORDER BY Counter"
)


class TestInstance(WireModel):
    """One recorded execution of the test manager."""

    __test__ = False

    instance_index: int = Field(alias="InstanceIndex")
    date_time: str = Field(alias="DateTime")
    duration: float | None = Field(default=None, alias="Duration")


class ResultEntry(WireModel):
    """A suite, case or method result."""

    id: str = Field(alias="ID")
    name: str = Field(alias="Name")
    duration: float | None = Field(default=None, alias="Duration")
    status: int = Field(default=0, alias="Status")
    error_description: str | None = Field(default=None, alias="ErrorDescription")

    @property
    def passed(self) -> bool:
        return self.status == 1


class AssertEntry(WireModel):
    """One assertion made by a test method."""

    id: str = Field(alias="ID")
    counter: int = Field(alias="Counter")
    action: str = Field(alias="Action")
    status: int = Field(default=0, alias="Status")
    description: str = Field(default="", alias="Description")


def portal_url(spec: ServerSpec, namespace: str, instance_index: int) -> str:
    """Link to a test instance in the server's unit test portal."""
    url = URL(spec.base_url) / "csp/sys/%UnitTest.Portal.Indices.cls"
    return str(url.with_query({"Index": str(instance_index), "$NAMESPACE": namespace}))


@dataclass(kw_only=True)
class HistoryExplorer:
    """Recent test history per server namespace, with drill-down queries."""

    servers: Mapping[str, ServerSpec]
    client_factory: ClientFactory = field(default=AtelierClient.from_spec, repr=False)
    _instances: dict[tuple[str, str], Sequence[TestInstance]] = field(
        default_factory=dict, repr=False
    )

    async def _query(
        self, server: str, namespace: str, sql: str, parameters: Sequence[Any] = ()
    ) -> Sequence[dict[str, Any]]:
        spec = self.servers.get(server)
        if spec is None:
            log.error("No server named %s", server)
            return []
        try:
            async with self.client_factory(spec) as client:
                return await client.query(namespace, sql, parameters)
        except (AtelierError, aiohttp.ClientError) as exc:
            log.warning("History query on %s:%s failed: %s", server, namespace, exc)
            return []

    async def recent_instances(
        self, server: str, namespace: str
    ) -> Sequence[TestInstance]:
        """The ten most recent test instances, cached until refreshed."""
        key = (server, namespace.upper())
        if key not in self._instances:
            rows = await self._query(server, namespace, INSTANCES_QUERY)
            self._instances[key] = [TestInstance.model_validate(row) for row in rows]
        return self._instances[key]

    async def refresh(self, server: str, namespace: str) -> None:
        """Drop cached instances of a namespace and fetch them again."""
        self._instances.pop((server, namespace.upper()), None)
        await self.recent_instances(server, namespace)

    async def suites(
        self, server: str, namespace: str, instance_index: int
    ) -> Sequence[ResultEntry]:
        rows = await self._query(server, namespace, SUITES_QUERY, [instance_index])
        return [ResultEntry.model_validate(row) for row in rows]

    async def cases(self, server: str, namespace: str, suite_id: str) -> Sequence[ResultEntry]:
        rows = await self._query(server, namespace, CASES_QUERY, [suite_id])
        return [ResultEntry.model_validate(row) for row in rows]

    async def methods(
        self, server: str, namespace: str, case_id: str
    ) -> Sequence[ResultEntry]:
        rows = await self._query(server, namespace, METHODS_QUERY, [case_id])
        return [ResultEntry.model_validate(row) for row in rows]

    async def asserts(
        self, server: str, namespace: str, method_id: str
    ) -> Sequence[AssertEntry]:
        rows = await self._query(server, namespace, ASSERTS_QUERY, [method_id])
        return [AssertEntry.model_validate(row) for row in rows]
