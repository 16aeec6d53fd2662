"""Abstract base for launchers of external test processes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


class LaunchError(RuntimeError):
    """Raised when an external test process can't be started."""


@dataclass(frozen=True, kw_only=True)
class LaunchDescriptor:
    """Everything a launcher needs to start one external test process.

    `slot_index` is the only link from the process back to its run session; it
    is None for untracked runs such as the debug preload.
    """

    name: str
    program: str
    server: str
    namespace: str
    slot_index: int | None = None
    id_prefix: str = ""
    debug: bool = False
    cwd: Path | None = None


class ProcessObserver(Protocol):
    """Receives the output stream and termination of one process."""

    async def on_output(self, line: str) -> None: ...

    async def on_exit(self, exit_code: int) -> None: ...


class TrackerFactory(Protocol):
    """Returns the observer for a launch, or None when it isn't tracked."""

    def __call__(self, descriptor: LaunchDescriptor) -> ProcessObserver | None: ...


class ProcessHandle(ABC):
    """A running external process."""

    @property
    @abstractmethod
    def running(self) -> bool:
        """Whether the process has yet to terminate."""

    @abstractmethod
    async def wait(self) -> int:
        """Wait for termination and return the exit code."""

    @abstractmethod
    def terminate(self) -> None:
        """Request termination. Best effort; returns immediately."""


@dataclass(frozen=True, kw_only=True)
class ProcessLauncher(ABC):
    """Abstract base for launchers.

    Launchers start the process and wire its output to the observer the
    tracker factory supplies for the descriptor.
    """

    @abstractmethod
    async def launch(self, descriptor: LaunchDescriptor) -> ProcessHandle:
        """Start a process.

        Args:
            descriptor: What to run and how to correlate it

        Returns:
            Handle of the started process

        Raises:
            LaunchError: If the process could not be started

        """

    async def run_to_completion(self, descriptor: LaunchDescriptor) -> int:
        """Start a process and wait for its completion signal.

        Returns:
            The process exit code

        """
        handle = await self.launch(descriptor)
        return await handle.wait()
