"""Collection of coverage results for a finished run session."""

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from testing_manager.atelier.client import AtelierClient, AtelierError, ClientFactory
from testing_manager.atelier.filesystem import RemoteFileError, RemoteFileSystem
from testing_manager.config import ServerSpec, WorkspaceFolder
from testing_manager.coverage.decoder import (
    decode_declarations,
    decode_statements,
    method_offsets,
)
from testing_manager.coverage.support import SQL_FN_INT8BITSTRING, SQL_SCHEMA
from testing_manager.models.coverage import (
    CoverageCount,
    CoverageDetail,
    CoverageRecord,
    MethodMarker,
)
from testing_manager.models.node import NodeId, ResourceUri, TestNode
from testing_manager.session import RunSession

log = logging.getLogger(__name__)

ALL_TESTS = "all tests"

AGGREGATE_QUERY = (
    "SELECT cu.Hash Hash, cu.Name Name, cu.Type, abcu.ExecutableLines, "
    "abcu.CoveredLines, ExecutableMethods, CoveredMethods, TestPath "
    "FROM TestCoverage_Data_Aggregate.ByCodeUnit abcu, TestCoverage_Data.CodeUnit cu, "
    "TestCoverage_Data.Coverage cov "
    "WHERE cov.CoveredLines IS NOT NULL AND abcu.CodeUnit = cu.Hash AND cov.Hash = cu.Hash "
    "AND abcu.Run = ? AND cov.Run = abcu.Run ORDER BY Hash"
)

BITMAPS_QUERY = (
    f"SELECT {SQL_SCHEMA}.{SQL_FN_INT8BITSTRING}(cu.ExecutableLines) i8bsExecutableLines, "
    f"{SQL_SCHEMA}.{SQL_FN_INT8BITSTRING}(cov.CoveredLines) i8bsCoveredLines "
    "FROM TestCoverage_Data.CodeUnit cu, TestCoverage_Data.Coverage cov "
    "WHERE cu.Hash = cov.Hash AND cov.Run = ? AND cu.Hash = ? AND cov.TestPath = ?"
)

MARKERS_QUERY = (
    "SELECT element_key Line, LineToMethodMap Method "
    "FROM TestCoverage_Data.CodeUnit_LineToMethodMap WHERE CodeUnit = ? ORDER BY Line"
)


def suite_for(username: str, class_name: str) -> str:
    """Suite a staged class runs in: the user folder plus its package path."""
    package = class_name.split(".")[:-1]
    return "\\".join([username, *package])


def coverage_test_path(node: TestNode | None, username: str) -> str:
    """Coverage test path selecting the contribution of one class or method."""
    if node is None:
        return ALL_TESTS
    node_id = NodeId.parse(node.id)
    if not node_id.class_name:
        return ALL_TESTS
    path = f"{suite_for(username, node_id.class_name)}:{node_id.class_name}"
    return f"{path}:{node_id.method}" if node_id.method else path


def code_unit_uri(
    name: str,
    file_type: str,
    *,
    folder: WorkspaceFolder | None,
    server: str,
    namespace: str,
) -> ResourceUri:
    """Map a code unit to the file that holds its source."""
    file_type = file_type.lower()
    if folder is None:
        return ResourceUri(
            scheme="isfs-readonly",
            authority=f"{server}:{namespace.lower()}",
            path=f"/{name.replace('.', '/')}.{file_type}",
        )

    prefix = ""
    if folder.export.folder:
        prefix = "/" + folder.export.folder.strip("/")
    if folder.export.add_category:
        prefix += f"/{file_type}"
    for pattern, replacement in folder.export.map.items():
        if re.fullmatch(pattern, name):
            name = re.sub(f"^{pattern}$", replacement, name)
            break
    return folder.uri.join(f"{prefix}/{name.replace('.', '/')}.{file_type}")


def _bitmap(value: Any) -> bytes:
    if not value:
        return b""
    return str(value).encode("latin-1")


@dataclass(frozen=True, kw_only=True)
class DetailLoader:
    """Fetches detailed coverage of a record from the session's server."""

    client_factory: ClientFactory = field(repr=False)
    server: ServerSpec
    namespace: str
    username: str
    folder: WorkspaceFolder | None = None

    async def __call__(
        self, record: CoverageRecord, for_test: TestNode | None = None
    ) -> CoverageDetail:
        test_path = coverage_test_path(for_test, self.username)
        log.debug(
            "Loading coverage detail for %s (%s), test path %s",
            record.code_unit,
            record.uri,
            test_path,
        )
        async with self.client_factory(self.server) as client:
            rows = await client.query(
                self.namespace,
                BITMAPS_QUERY,
                [record.coverage_index, record.code_unit, test_path],
            )
            marker_rows = await client.query(
                self.namespace, MARKERS_QUERY, [record.code_unit]
            )
            offsets = await self._offsets(client, record.uri)

        executable = _bitmap(rows[0].get("i8bsExecutableLines")) if rows else b""
        covered = _bitmap(rows[0].get("i8bsCoveredLines")) if rows else b""
        markers = [
            MethodMarker(line=int(row["Line"]), method=str(row["Method"]))
            for row in marker_rows
        ]
        return CoverageDetail(
            executable_lines=executable,
            covered_lines=covered,
            statements=decode_statements(executable, covered, markers, offsets),
            declarations=decode_declarations(markers, covered, offsets),
        )

    async def _offsets(
        self, client: AtelierClient, uri: ResourceUri
    ) -> Mapping[str, int] | None:
        if self.folder is None or not self.folder.multiline_method_args:
            return None
        try:
            lines = await RemoteFileSystem(client=client).read_lines(uri)
        except RemoteFileError as exc:
            log.warning("Can't read %s to align coverage: %s", uri, exc)
            return None
        return method_offsets(lines)


@dataclass(frozen=True, kw_only=True)
class CoverageLoader:
    """Builds coverage records for a session that captured a coverage index."""

    client_factory: ClientFactory = field(default=AtelierClient.from_spec, repr=False)

    async def collect(self, session: RunSession) -> Sequence[CoverageRecord]:
        """Query aggregate coverage of the session's coverage run.

        Query failures are logged and yield no records.
        """
        if session.coverage_index is None:
            return []
        try:
            async with self.client_factory(session.server) as client:
                rows = await client.query(
                    session.namespace, AGGREGATE_QUERY, [session.coverage_index]
                )
        except (AtelierError, aiohttp.ClientError) as exc:
            log.warning(
                "Coverage query for run %s failed: %s", session.coverage_index, exc
            )
            return []

        records = self.build_records(session, rows)
        if records:
            log.info(
                "Coverage run %s covers %d code unit(s)",
                session.coverage_index,
                len(records),
            )
        else:
            log.info("No coverage results found for run %s", session.coverage_index)
        return records

    def build_records(
        self, session: RunSession, rows: Sequence[Mapping[str, Any]]
    ) -> Sequence[CoverageRecord]:
        """Group aggregate rows by code unit into records."""
        if session.coverage_index is None:
            return []
        classes = {
            node_id.class_name: node
            for node in session.nodes.values()
            if (node_id := NodeId.parse(node.id)).is_class
        }
        loader = DetailLoader(
            client_factory=self.client_factory,
            server=session.server,
            namespace=session.namespace,
            username=session.server.effective_username,
            folder=session.folder,
        )

        first_rows: dict[str, Mapping[str, Any]] = {}
        includes: dict[str, list[TestNode]] = {}
        for row in rows:
            code_unit = str(row["Hash"])
            first_rows.setdefault(code_unit, row)
            tests = includes.setdefault(code_unit, [])
            test_path = row.get("TestPath") or ALL_TESTS
            if test_path == ALL_TESTS:
                continue
            pieces = str(test_path).split(":")
            node = classes.get(pieces[1]) if len(pieces) > 1 else None
            if node is not None and node not in tests:
                tests.append(node)

        return [
            CoverageRecord(
                uri=code_unit_uri(
                    str(row["Name"]),
                    str(row["Type"]),
                    folder=session.folder,
                    server=session.server.name,
                    namespace=session.namespace,
                ),
                code_unit=code_unit,
                coverage_index=session.coverage_index,
                statement_coverage=CoverageCount(
                    covered=int(row.get("CoveredLines") or 0),
                    total=int(row.get("ExecutableLines") or 0),
                ),
                declaration_coverage=CoverageCount(
                    covered=int(row.get("CoveredMethods") or 0),
                    total=int(row.get("ExecutableMethods") or 0),
                ),
                includes_tests=tuple(includes[code_unit]),
                detail_loader=loader,
            )
            for code_unit, row in first_rows.items()
        ]
