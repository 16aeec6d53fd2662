"""Test orchestrator for staging and launching batches of server-side tests."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import aiohttp

from testing_manager.aggregator import AuthorityBatch, aggregate, initial_queue
from testing_manager.atelier.client import AtelierClient, AtelierError, ClientFactory
from testing_manager.atelier.filesystem import RemoteFileSystem
from testing_manager.cancellation import CancellationToken
from testing_manager.config import ManagerConfig, ServerSpec, WorkspaceFolder
from testing_manager.coverage.loader import suite_for
from testing_manager.discovery import ChildResolver
from testing_manager.launchers.base import LaunchDescriptor, LaunchError, ProcessLauncher
from testing_manager.models.node import NodeId, TestNode
from testing_manager.models.request import RunRequest
from testing_manager.recorder import LoggingNotifier, Notifier, RecorderFactory, RunRecorder
from testing_manager.session import RunSession, SessionRegistry, index_nodes
from testing_manager.staging import (
    SUPPORT_PACKAGE,
    WEB_APPLICATION,
    clear_staging_root,
    copy_coverage_lists,
    discover_coverage_lists,
    stage_classes,
    staging_root,
    upload_support_classes,
)

log = logging.getLogger(__name__)

RESULTS_NAME = "Test Results"
INSTRUCTIONS_ACTION = "Instructions"
INSTRUCTIONS_URL = (
    "https://docs.intersystems.com/components/csp/docbook/DocBook.UI.Page.cls"
    "?KEY=GVSCO_serverflow#GVSCO_serverflow_folderspec"
)
COVERAGE_TOOL_MISSING = (
    "[Test Coverage Tool](https://openexchange.intersystems.com/package/Test-Coverage-Tool)"
    " not found."
)
EMPTY_RUN = "Empty test run."
PRELOAD_QUALIFIERS = "/nodisplay/load/debug/norun/nodelete"


@dataclass(frozen=True, kw_only=True)
class BatchOutcome:
    """What became of one authority batch of a request."""

    authority: str
    session: RunSession | None = None
    error: str | None = None


def unit_test_spec(username: str, target: TestNode | None) -> str:
    """The `%UnitTest.Manager` test spec selecting a user's staged tests.

    A single requested method narrows it to `suite:Class:TestMethod`.
    """
    if target is None:
        return username
    node_id = NodeId.parse(target.id)
    return f"{suite_for(username, node_id.class_path)}:{node_id.class_path}:{node_id.method}"


def run_program(
    test_spec: str, qualifiers: str, *, coverage: bool, multiline_method_args: bool
) -> str:
    """ObjectScript command line that runs a test spec through a support manager."""
    manager = "CoverageManager" if coverage else "StandardManager"
    user_param = 1 if multiline_method_args else 0
    return (
        f'##class({SUPPORT_PACKAGE}.{manager}).RunTest("{test_spec}","{qualifiers}",{user_param})'
    )


def preload_program(test_spec: str) -> str:
    """ObjectScript command line that loads and compiles tests without running them."""
    return f'##class(%UnitTest.Manager).RunTest("{test_spec}","{PRELOAD_QUALIFIERS}")'


@dataclass(frozen=True, kw_only=True)
class TestOrchestrator:
    """Stages the requested test classes and launches one run per batch.

    Batches are handled one after another. A failure in one batch is reported
    and does not stop the batches after it.
    """

    __test__ = False

    config: ManagerConfig
    launcher: ProcessLauncher
    registry: SessionRegistry
    recorder_factory: RecorderFactory
    notifier: Notifier = field(default_factory=LoggingNotifier)
    client_factory: ClientFactory = field(default=AtelierClient.from_spec, repr=False)

    @property
    def client_side(self) -> bool:
        """Whether tests are edited locally and loaded onto the server to run."""
        return self.config.mode == "local"

    async def run_tests(
        self,
        request: RunRequest,
        roots: Sequence[TestNode],
        resolve: ChildResolver,
        cancellation: CancellationToken,
    ) -> Sequence[BatchOutcome]:
        """Run the tests a request selects.

        Args:
            request: Nodes to include and exclude, and the run profile
            roots: Roots of the test tree, used when nothing is included
            resolve: Resolves children of nodes not yet expanded
            cancellation: Signalled when the user cancels the request

        Returns:
            One outcome per batch that was attempted

        """
        if request.coverage and not initial_queue(request, roots):
            await self.notifier.show_error(COVERAGE_TOOL_MISSING)
            return []

        aggregation = await aggregate(
            request, roots, resolve, self.config.folder_for, cancellation
        )
        if aggregation is None:
            return []
        if not aggregation:
            await self.notifier.show_error(EMPTY_RUN, modal=True)
            return []

        sessions: list[RunSession] = []
        cancellation.on_cancellation_requested(lambda: self._terminate(sessions))

        outcomes: list[BatchOutcome] = []
        for batch in aggregation.batches.values():
            if cancellation.is_cancellation_requested:
                log.info("Run cancelled before batch %s", batch.authority)
                break
            recorder = self.recorder_factory(RESULTS_NAME)
            try:
                outcome = await self._run_batch(batch, request, recorder, cancellation)
            except Exception as exc:
                log.error("Batch %s failed: %s", batch.authority, exc, exc_info=exc)
                recorder.end()
                outcome = BatchOutcome(authority=batch.authority, error=str(exc))
            if outcome.session is not None:
                sessions.append(outcome.session)
            outcomes.append(outcome)
        return outcomes

    def _terminate(self, sessions: Sequence[RunSession]) -> None:
        for session in sessions:
            if session.handle is not None and session.handle.running:
                log.info("Terminating run session %s", session.name)
                session.handle.terminate()

    def _server_for(self, authority: str) -> ServerSpec | None:
        server, _, _ = authority.partition(":")
        return self.config.servers.get(server)

    async def _has_web_application(self, client: AtelierClient) -> bool:
        try:
            return WEB_APPLICATION in await client.csp_apps("%SYS")
        except (AtelierError, aiohttp.ClientError) as exc:
            log.warning("Can't list web applications of %s: %s", client.spec.name, exc)
            return False

    async def _fail_batch(
        self,
        batch: AuthorityBatch,
        recorder: RunRecorder,
        message: str,
        *,
        modal: bool = True,
        actions: Sequence[str] = (),
    ) -> BatchOutcome:
        recorder.end()
        reply = await self.notifier.show_error(message, modal=modal, actions=actions)
        if reply == INSTRUCTIONS_ACTION:
            await self.notifier.open_external(INSTRUCTIONS_URL)
        return BatchOutcome(authority=batch.authority, error=message)

    async def _run_batch(
        self,
        batch: AuthorityBatch,
        request: RunRequest,
        recorder: RunRecorder,
        cancellation: CancellationToken,
    ) -> BatchOutcome:
        target = request.method_target
        for method in batch.methods(target):
            recorder.enqueued(method)

        spec = self._server_for(batch.authority)
        if spec is None:
            return await self._fail_batch(
                batch, recorder, f"No server connection for {batch.authority}"
            )
        first_class = batch.first_class
        folder = (
            self.config.folder_for(first_class.uri) if first_class.uri is not None else None
        )
        namespace = batch.authority.partition(":")[2].upper()

        async with self.client_factory(spec) as client:
            if not await self._has_web_application(client):
                message = (
                    f"'{WEB_APPLICATION}' web application is not configured for "
                    f"server '{spec.name}'. Test runs require it."
                )
                return await self._fail_batch(
                    batch, recorder, message, actions=[INSTRUCTIONS_ACTION]
                )

            username = spec.effective_username
            test_spec = unit_test_spec(username, target)
            if cancellation.is_cancellation_requested:
                recorder.end()
                return BatchOutcome(authority=batch.authority)

            await self._stage(client, batch, namespace, username, recorder, cancellation)

        return await self._launch(
            batch,
            request,
            recorder,
            cancellation,
            spec=spec,
            folder=folder,
            namespace=namespace,
            username=username,
            test_spec=test_spec,
        )

    async def _stage(
        self,
        client: AtelierClient,
        batch: AuthorityBatch,
        namespace: str,
        username: str,
        recorder: RunRecorder,
        cancellation: CancellationToken,
    ) -> None:
        fs = RemoteFileSystem(client=client)
        if self.config.support_classes_dir is not None:
            await upload_support_classes(client, self.config.support_classes_dir, namespace)

        root = staging_root(client.spec.name, namespace, username)
        await clear_staging_root(fs, root)
        if cancellation.is_cancellation_requested:
            return
        found = await discover_coverage_lists(fs, batch.classes, cancellation)
        await copy_coverage_lists(fs, found, root, cancellation)
        await stage_classes(fs, batch.classes, root, recorder, cancellation)

    async def _launch(
        self,
        batch: AuthorityBatch,
        request: RunRequest,
        recorder: RunRecorder,
        cancellation: CancellationToken,
        *,
        spec: ServerSpec,
        folder: WorkspaceFolder | None,
        namespace: str,
        username: str,
        test_spec: str,
    ) -> BatchOutcome:
        if not self.client_side:
            qualifiers = "/noload/nodelete"
        elif request.debug:
            qualifiers = "/noload"
        else:
            qualifiers = ""
        program = run_program(
            test_spec,
            qualifiers,
            coverage=request.coverage,
            multiline_method_args=folder is not None and folder.multiline_method_args,
        )

        if self.client_side and request.debug and not cancellation.is_cancellation_requested:
            preload = LaunchDescriptor(
                name="LocalTests.Preload",
                program=preload_program(test_spec),
                server=spec.name,
                namespace=namespace,
            )
            try:
                await self.launcher.run_to_completion(preload)
            except LaunchError as exc:
                log.error("Preload for %s failed: %s", batch.authority, exc)
                return await self._fail_batch(
                    batch,
                    recorder,
                    "Failed to preload client-side test classes for debugging",
                )

        first_id = NodeId.parse(batch.first_class.id)
        kind = "Local" if self.client_side else "Server"
        session = RunSession(
            name=f"{kind}Tests:{spec.name}:{namespace}:{username}",
            recorder=recorder,
            server=spec,
            namespace=namespace,
            id_prefix=first_id.id_prefix,
            suite=test_spec,
            nodes=index_nodes(batch.classes.values()),
            folder=folder,
            coverage=request.coverage,
        )
        slot_index = self.registry.allocate(session)
        descriptor = LaunchDescriptor(
            name=session.name,
            program=program,
            server=spec.name,
            namespace=namespace,
            slot_index=slot_index,
            id_prefix=session.id_prefix,
            debug=request.debug,
            cwd=folder.path if folder is not None else None,
        )

        error: str | None = None
        if cancellation.is_cancellation_requested:
            error = "cancelled"
        else:
            try:
                session.handle = await self.launcher.launch(descriptor)
            except LaunchError as exc:
                log.error("Launch of %s failed: %s", session.name, exc)
                error = str(exc)
            except Exception as exc:
                log.error("Launch of %s failed: %s", session.name, exc, exc_info=exc)
                error = str(exc) or type(exc).__name__
            if error is not None and not cancellation.is_cancellation_requested:
                await self.notifier.show_error("Failed to launch testing", modal=True)

        if error is not None:
            session.close()
            self.registry.clear(slot_index)
            return BatchOutcome(authority=batch.authority, error=error)

        log.info("Launched %s in slot %d", session.name, slot_index)
        return BatchOutcome(authority=batch.authority, session=session)
