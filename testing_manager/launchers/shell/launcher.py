"""Launcher running tests through a local command such as a terminal session."""

import asyncio
import logging
import os
from dataclasses import dataclass, field

from testing_manager.launchers.base import (
    LaunchDescriptor,
    LaunchError,
    ProcessHandle,
    ProcessLauncher,
    ProcessObserver,
    TrackerFactory,
)
from testing_manager.launchers.shell.config import ShellLauncherConfig

log = logging.getLogger(__name__)


@dataclass(kw_only=True)
class ShellProcessHandle(ProcessHandle):
    """Handle of a subprocess whose output is being pumped to an observer."""

    process: asyncio.subprocess.Process
    pump: asyncio.Task[int]

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    async def wait(self) -> int:
        return await self.pump

    def terminate(self) -> None:
        if self.running:
            log.info("Terminating process %s", self.process.pid)
            try:
                self.process.terminate()
            except ProcessLookupError:
                pass


@dataclass(frozen=True, kw_only=True)
class ShellLauncher(ProcessLauncher):
    """Runs a configured command and streams its stdout line by line."""

    config: ShellLauncherConfig
    tracker_factory: TrackerFactory | None = None
    _pumps: set[asyncio.Task[int]] = field(default_factory=set, repr=False)

    @classmethod
    def from_config(
        cls, config: ShellLauncherConfig, tracker_factory: TrackerFactory
    ) -> "ShellLauncher":
        return cls(config=config, tracker_factory=tracker_factory)

    def _fields(self, descriptor: LaunchDescriptor) -> dict[str, str]:
        return {
            "program": descriptor.program,
            "namespace": descriptor.namespace,
            "server": descriptor.server,
            "name": descriptor.name,
        }

    def _environment(self, descriptor: LaunchDescriptor) -> dict[str, str]:
        env = {**os.environ, **self.config.env}
        env["TESTING_RUN_NAME"] = descriptor.name
        env["TESTING_DEBUG"] = "1" if descriptor.debug else "0"
        if descriptor.slot_index is not None:
            env["TESTING_RUN_INDEX"] = str(descriptor.slot_index)
            env["TESTING_ID_BASE"] = descriptor.id_prefix
        return env

    async def launch(self, descriptor: LaunchDescriptor) -> ProcessHandle:
        """Start the command and begin pumping its output."""
        fields = self._fields(descriptor)
        try:
            argv = [part.format(**fields) for part in self.config.command]
            stdin_text = self.config.stdin.format(**fields) if self.config.stdin else None
        except (KeyError, IndexError, ValueError) as exc:
            raise LaunchError(
                f"Invalid command template for {descriptor.name}: {exc!r}"
            ) from exc

        log.info("Launching %s: %s", descriptor.name, argv)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if stdin_text else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=descriptor.cwd,
                env=self._environment(descriptor),
            )
        except OSError as exc:
            raise LaunchError(f"Failed to launch {descriptor.name}: {exc}") from exc

        if stdin_text and process.stdin is not None:
            try:
                process.stdin.write(stdin_text.encode())
                await process.stdin.drain()
                process.stdin.close()
            except OSError as exc:
                if process.returncode is None:
                    process.terminate()
                await process.wait()
                raise LaunchError(
                    f"Failed to send program to {descriptor.name}: {exc}"
                ) from exc

        observer = self.tracker_factory(descriptor) if self.tracker_factory else None
        pump = asyncio.create_task(
            self._pump(process, observer), name=f"pump:{descriptor.name}"
        )
        self._pumps.add(pump)
        pump.add_done_callback(self._pumps.discard)
        return ShellProcessHandle(process=process, pump=pump)

    async def _pump(
        self, process: asyncio.subprocess.Process, observer: ProcessObserver | None
    ) -> int:
        exit_code = -1
        try:
            if process.stdout is not None:
                async for raw in process.stdout:
                    line = raw.decode(errors="replace").rstrip("\r\n")
                    if observer is not None:
                        await observer.on_output(line)
            exit_code = await process.wait()
        finally:
            if observer is not None:
                await observer.on_exit(exit_code)
        log.info("Process %s exited with code %d", process.pid, exit_code)
        return exit_code
