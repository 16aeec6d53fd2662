"""Observers that follow launched test processes back to their sessions."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from testing_manager.launchers.base import LaunchDescriptor
from testing_manager.models.coverage import CoverageRecord
from testing_manager.parser import ProtocolParser
from testing_manager.session import RunSession, SessionRegistry

log = logging.getLogger(__name__)


class CoverageCollector(Protocol):
    """Produces the coverage records of a finished session."""

    async def collect(self, session: RunSession) -> Sequence[CoverageRecord]: ...


class HistoryRefresher(Protocol):
    """Refreshes cached run history of one server namespace."""

    async def refresh(self, server: str, namespace: str) -> None: ...


@dataclass(kw_only=True)
class SessionTracker:
    """Feeds a process's output to its session parser and ends the session."""

    session: RunSession
    registry: SessionRegistry
    parser: ProtocolParser
    coverage: CoverageCollector | None = None
    history: HistoryRefresher | None = None

    async def on_output(self, line: str) -> None:
        self.parser.feed(line)

    async def on_exit(self, exit_code: int) -> None:
        """Collect coverage if a run was captured, then close the session."""
        session = self.session
        log.info("Run session %s terminated with code %d", session.name, exit_code)
        try:
            if session.coverage_index is not None and self.coverage is not None:
                for record in await self.coverage.collect(session):
                    session.recorder.add_coverage(record)
        finally:
            session.close()
            if session.slot_index is not None:
                self.registry.clear(session.slot_index)
            if self.history is not None:
                await self.history.refresh(session.server.name, session.namespace)


@dataclass(frozen=True, kw_only=True)
class SessionTrackerFactory:
    """Creates a tracker for each tracked launch, keyed by its slot index."""

    registry: SessionRegistry
    coverage: CoverageCollector | None = None
    history: HistoryRefresher | None = field(default=None)

    def __call__(self, descriptor: LaunchDescriptor) -> SessionTracker | None:
        if descriptor.slot_index is None:
            return None
        session = self.registry.get(descriptor.slot_index)
        if session is None:
            log.warning("No run session in slot %d", descriptor.slot_index)
            return None
        return SessionTracker(
            session=session,
            registry=self.registry,
            parser=ProtocolParser(session=session),
            coverage=self.coverage,
            history=self.history,
        )
