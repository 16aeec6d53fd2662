"""Run recorder and user notification contracts, with in-process implementations."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol

from testing_manager.models.coverage import CoverageRecord
from testing_manager.models.node import TestNode
from testing_manager.models.result import TestResult

log = logging.getLogger(__name__)

type EventKind = Literal[
    "enqueued", "started", "passed", "failed", "errored", "skipped"
]


class RunRecorder(Protocol):
    """Sink for the lifecycle events of one test run."""

    def enqueued(self, node: TestNode) -> None: ...

    def started(self, node: TestNode) -> None: ...

    def passed(self, node: TestNode, duration_ms: float | None = None) -> None: ...

    def failed(
        self,
        node: TestNode,
        messages: Sequence[str],
        duration_ms: float | None = None,
    ) -> None: ...

    def errored(self, node: TestNode, message: str) -> None: ...

    def skipped(self, node: TestNode) -> None: ...

    def append_output(self, text: str) -> None: ...

    def add_coverage(self, record: CoverageRecord) -> None: ...

    def end(self) -> None: ...


class RecorderFactory(Protocol):
    """Creates the recorder for one batch of a request."""

    def __call__(self, name: str) -> RunRecorder: ...


class Notifier(Protocol):
    """Surfaces errors to the user."""

    async def show_error(
        self, message: str, *, modal: bool = False, actions: Sequence[str] = ()
    ) -> str | None:
        """Show an error and return the action the user picked, if any."""
        ...

    async def open_external(self, url: str) -> None: ...


@dataclass(frozen=True, kw_only=True)
class RecordedEvent:
    """One lifecycle event as received by a `CollectingRunRecorder`."""

    kind: EventKind
    node: TestNode
    duration_ms: float | None = None
    messages: Sequence[str] = field(default_factory=tuple)


@dataclass(kw_only=True)
class CollectingRunRecorder:
    """Recorder that keeps every event in memory and logs progress."""

    name: str = "Test Results"
    events: list[RecordedEvent] = field(default_factory=list)
    output: list[str] = field(default_factory=list)
    coverage: list[CoverageRecord] = field(default_factory=list)
    ended: bool = False

    def _record(self, event: RecordedEvent) -> None:
        log.debug("%s: %s %s", self.name, event.kind, event.node.id)
        self.events.append(event)

    def enqueued(self, node: TestNode) -> None:
        self._record(RecordedEvent(kind="enqueued", node=node))

    def started(self, node: TestNode) -> None:
        self._record(RecordedEvent(kind="started", node=node))

    def passed(self, node: TestNode, duration_ms: float | None = None) -> None:
        self._record(RecordedEvent(kind="passed", node=node, duration_ms=duration_ms))

    def failed(
        self,
        node: TestNode,
        messages: Sequence[str],
        duration_ms: float | None = None,
    ) -> None:
        self._record(
            RecordedEvent(
                kind="failed",
                node=node,
                duration_ms=duration_ms,
                messages=tuple(messages),
            )
        )

    def errored(self, node: TestNode, message: str) -> None:
        self._record(RecordedEvent(kind="errored", node=node, messages=(message,)))

    def skipped(self, node: TestNode) -> None:
        self._record(RecordedEvent(kind="skipped", node=node))

    def append_output(self, text: str) -> None:
        self.output.append(text)

    def add_coverage(self, record: CoverageRecord) -> None:
        self.coverage.append(record)

    def end(self) -> None:
        self.ended = True
        log.info("%s ended with %d event(s)", self.name, len(self.events))

    def results(self) -> Sequence[TestResult]:
        """Final outcome per node, in the order outcomes were reported."""
        outcomes: dict[str, TestResult] = {}
        for event in self.events:
            if event.kind in {"passed", "failed", "errored", "skipped"}:
                outcomes[event.node.id] = TestResult(
                    node_id=event.node.id,
                    status=event.kind,  # type: ignore[arg-type]
                    duration_ms=event.duration_ms,
                    messages=event.messages,
                )
        return list(outcomes.values())


class LoggingNotifier:
    """Notifier for non-interactive use: errors go to the log."""

    async def show_error(
        self, message: str, *, modal: bool = False, actions: Sequence[str] = ()
    ) -> str | None:
        log.error("%s", message)
        return None

    async def open_external(self, url: str) -> None:
        log.info("See %s", url)
