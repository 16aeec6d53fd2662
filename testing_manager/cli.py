"""CLI entry point for running server-side unit tests."""

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from collections.abc import Sequence
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any

import aiohttp

from testing_manager.atelier.client import AtelierClient, AtelierError, ClientFactory
from testing_manager.cancellation import CancellationToken
from testing_manager.config import ManagerConfig
from testing_manager.coverage.loader import CoverageLoader
from testing_manager.coverage.support import supports_coverage
from testing_manager.discovery import (
    ChildResolver,
    LocalTestResolver,
    ServerTestResolver,
    TreeResolver,
    find_node,
)
from testing_manager.history import HistoryExplorer
from testing_manager.launchers.loading import load_launcher_manifest
from testing_manager.models.coverage import CoverageRecord
from testing_manager.models.node import NodeId, TestNode
from testing_manager.models.request import RunRequest
from testing_manager.models.result import TestResult
from testing_manager.orchestrator import BatchOutcome, TestOrchestrator
from testing_manager.recorder import CollectingRunRecorder
from testing_manager.session import SessionRegistry
from testing_manager.tracker import SessionTrackerFactory

STATUS_SYMBOLS = {
    "passed": "✅",
    "failed": "❌",
    "errored": "❗",
    "skipped": "⏭️",
}


def log_results_summary(
    log: logging.Logger,
    results: Sequence[TestResult],
    outcomes: Sequence[BatchOutcome],
) -> None:
    """Log a formatted summary of test results and batch errors."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for result in results:
        symbol = STATUS_SYMBOLS.get(result.status, "?")
        if result.duration_ms is not None:
            log.info(
                "%s %s: %s (%.0fms)", symbol, result.node_id, result.status, result.duration_ms
            )
        else:
            log.info("%s %s: %s", symbol, result.node_id, result.status)
        for message in result.messages:
            log.info("  Message: %s", message)

    for outcome in outcomes:
        if outcome.error:
            log.info("%s %s: %s", STATUS_SYMBOLS["errored"], outcome.authority, outcome.error)


async def coverage_summary(
    records: Sequence[CoverageRecord], for_test: TestNode | None = None
) -> list[dict[str, Any]]:
    """Describe each coverage record, with line and method detail where it loads.

    Detail is narrowed to `for_test` when a single test was run.
    """
    log = logging.getLogger(__name__)
    summary: list[dict[str, Any]] = []
    for record in records:
        entry: dict[str, Any] = {
            "uri": str(record.uri),
            "code_unit": record.code_unit,
            "statements": {
                "covered": record.statement_coverage.covered,
                "total": record.statement_coverage.total,
            },
            "declarations": {
                "covered": record.declaration_coverage.covered,
                "total": record.declaration_coverage.total,
            },
            "tests": [node.id for node in record.includes_tests],
        }
        try:
            detail = await record.load_details(for_test)
        except (AtelierError, aiohttp.ClientError) as exc:
            log.warning("Can't load coverage detail of %s: %s", record.uri, exc)
            detail = None
        if detail is not None:
            entry["covered_lines"] = [s.line for s in detail.statements if s.covered]
            entry["uncovered_lines"] = [s.line for s in detail.statements if not s.covered]
            entry["methods"] = [
                {
                    "name": declaration.name,
                    "start_line": declaration.start_line,
                    "end_line": declaration.end_line,
                    "covered": declaration.covered,
                }
                for declaration in detail.declarations
            ]
        log.info(
            "Coverage of %s: %d/%d lines",
            record.uri,
            record.statement_coverage.covered,
            record.statement_coverage.total,
        )
        summary.append(entry)
    return summary


async def build_tree(
    config: ManagerConfig, stack: AsyncExitStack, client_factory: ClientFactory
) -> tuple[Sequence[TestNode], ChildResolver]:
    """Create a root and resolver for every configured workspace folder.

    Clients of server-mode resolvers stay open until `stack` closes.
    """
    roots: list[TestNode] = []
    resolvers: dict[str, ChildResolver] = {}
    for folder in config.folders:
        spec = config.server_for(folder)
        if spec is None:
            logging.getLogger(__name__).warning(
                "Folder %s names unknown server %s", folder.name, folder.server
            )
            continue
        client = await stack.enter_async_context(client_factory(spec))
        coverage = await supports_coverage(client, folder.namespace.upper())
        resolver: LocalTestResolver | ServerTestResolver
        if config.mode == "local":
            resolver = LocalTestResolver(folder=folder, supports_coverage=coverage)
        else:
            resolver = ServerTestResolver(
                client=client,
                namespace=folder.namespace,
                index=folder.index,
                supports_coverage=coverage,
            )
        root = resolver.root()
        roots.append(root)
        resolvers[NodeId.parse(root.id).id_prefix] = resolver
    return roots, TreeResolver(resolvers=resolvers)


async def select_nodes(
    roots: Sequence[TestNode], resolve: ChildResolver, node_ids: Sequence[str]
) -> Sequence[TestNode]:
    """Look up requested node ids, skipping ones that don't exist."""
    log = logging.getLogger(__name__)
    nodes: list[TestNode] = []
    for node_id in node_ids:
        node = await find_node(roots, resolve, node_id)
        if node is None:
            log.warning("No test node with id %s", node_id)
        else:
            nodes.append(node)
    return nodes


async def run(
    config_path: Path,
    include: Sequence[str] = (),
    exclude: Sequence[str] = (),
    profile: str = "run",
    client_factory: ClientFactory = AtelierClient.from_spec,
) -> int:
    """Run the selected tests and return exit code."""
    log = logging.getLogger("testing_manager")

    config = ManagerConfig.load(config_path)

    log.info("Loading launcher: %s", config.launcher.key)
    manifest = load_launcher_manifest(config.launcher.key)

    registry = SessionRegistry()
    tracker_factory = SessionTrackerFactory(
        registry=registry,
        coverage=CoverageLoader(client_factory=client_factory),
        history=HistoryExplorer(servers=config.servers, client_factory=client_factory),
    )
    launcher = manifest.create(config.launcher.options, tracker_factory)

    recorders: list[CollectingRunRecorder] = []

    def recorder_factory(name: str) -> CollectingRunRecorder:
        recorder = CollectingRunRecorder(name=name)
        recorders.append(recorder)
        return recorder

    cancellation = CancellationToken()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, cancellation.cancel)

    async with AsyncExitStack() as stack:
        roots, resolve = await build_tree(config, stack, client_factory)
        request = RunRequest(
            include=await select_nodes(roots, resolve, include) if include else None,
            exclude=await select_nodes(roots, resolve, exclude),
            profile=profile,  # type: ignore[arg-type]
        )

        orchestrator = TestOrchestrator(
            config=config,
            launcher=launcher,
            registry=registry,
            recorder_factory=recorder_factory,
            client_factory=client_factory,
        )
        log.info("Running tests (profile=%s)...", profile)
        outcomes = await orchestrator.run_tests(request, roots, resolve, cancellation)
        await registry.wait_all()

    results = [result for recorder in recorders for result in recorder.results()]
    log_results_summary(log, results, outcomes)

    coverage = None
    if request.coverage:
        records = [record for recorder in recorders for record in recorder.coverage]
        coverage = await coverage_summary(records, request.method_target)

    output = format_output(results, outcomes, coverage)
    print(json.dumps(output, indent=2))

    has_failures = output["failed"] > 0 or output["errored"] > 0
    return 1 if has_failures else 0


def format_output(
    results: Sequence[TestResult],
    outcomes: Sequence[BatchOutcome],
    coverage: Sequence[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Format test results for JSON output.

    A `coverage` section is only added for coverage runs.
    """
    all_results = [
        {
            "id": result.node_id,
            "status": result.status,
            "duration_ms": result.duration_ms,
            "messages": list(result.messages),
        }
        for result in results
    ]
    batch_errors = [
        {"authority": outcome.authority, "error": outcome.error}
        for outcome in outcomes
        if outcome.error
    ]

    output: dict[str, Any] = {
        "total": len(all_results),
        "passed": sum(1 for r in all_results if r["status"] == "passed"),
        "failed": sum(1 for r in all_results if r["status"] == "failed"),
        "errored": sum(1 for r in all_results if r["status"] == "errored")
        + len(batch_errors),
        "skipped": sum(1 for r in all_results if r["status"] == "skipped"),
        "results": all_results,
        "batch_errors": batch_errors,
    }
    if coverage is not None:
        output["coverage"] = list(coverage)
    return output


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Run InterSystems %UnitTest tests")
    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to the JSON configuration file",
    )
    parser.add_argument(
        "--include",
        action="append",
        default=[],
        help="Id of a test node to run (repeatable; default: everything)",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="Id of a test node to leave out (repeatable)",
    )
    parser.add_argument(
        "--profile",
        choices=["run", "debug", "coverage"],
        default="run",
        help="How to run the tests",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(
        run(
            config_path=args.config,
            include=args.include,
            exclude=args.exclude,
            profile=args.profile,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
