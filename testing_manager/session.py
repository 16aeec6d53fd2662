"""Run sessions and the slot registry that correlates them with processes."""

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from testing_manager.config import ServerSpec, WorkspaceFolder
from testing_manager.launchers.base import ProcessHandle
from testing_manager.models.node import TestNode
from testing_manager.recorder import RunRecorder

log = logging.getLogger(__name__)


def index_nodes(class_nodes: Iterable[TestNode]) -> Mapping[str, TestNode]:
    """Flatten class nodes and their descendants into an id to node map."""
    return {node.id: node for class_node in class_nodes for node in class_node.walk()}


@dataclass(kw_only=True)
class RunSession:
    """One execution of a batch of tests by an external process."""

    name: str
    recorder: RunRecorder
    server: ServerSpec
    namespace: str
    id_prefix: str
    suite: str
    nodes: Mapping[str, TestNode] = field(default_factory=dict, repr=False)
    folder: WorkspaceFolder | None = None
    coverage: bool = False
    slot_index: int | None = None
    handle: ProcessHandle | None = field(default=None, repr=False)
    coverage_index: int | None = None
    output: list[str] = field(default_factory=list, repr=False)
    _pending: list[str] = field(default_factory=list, repr=False)
    _closed: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def append_output(self, line: str) -> None:
        """Buffer one line of process output."""
        self.output.append(line)
        self._pending.append(line)

    def flush_output(self) -> None:
        """Hand buffered output to the recorder."""
        if self._pending:
            self.recorder.append_output("".join(f"{line}\r\n" for line in self._pending))
            self._pending.clear()

    def close(self) -> None:
        """Flush remaining output and end the recorder's run."""
        if self.closed:
            return
        self.flush_output()
        self.recorder.end()
        self._closed.set()
        log.info("Run session %s closed", self.name)

    async def wait_closed(self) -> None:
        await self._closed.wait()


@dataclass(kw_only=True)
class SessionRegistry:
    """Append-only slot array of run sessions.

    A slot index stays valid for the life of the registry; clearing a slot
    never shifts others, and cleared slots are not reused.
    """

    _slots: list[RunSession | None] = field(default_factory=list)

    def allocate(self, session: RunSession) -> int:
        """Store a session in a new slot and return the slot index."""
        self._slots.append(session)
        session.slot_index = len(self._slots) - 1
        return session.slot_index

    def get(self, slot_index: int) -> RunSession | None:
        if 0 <= slot_index < len(self._slots):
            return self._slots[slot_index]
        return None

    def clear(self, slot_index: int) -> None:
        if 0 <= slot_index < len(self._slots):
            self._slots[slot_index] = None

    def active(self) -> Sequence[RunSession]:
        return [session for session in self._slots if session is not None]

    async def wait_all(self) -> None:
        """Wait until every session currently registered has closed."""
        await asyncio.gather(*(session.wait_closed() for session in self.active()))
