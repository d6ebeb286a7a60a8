"""
Managed dev server process.

Spawns the preset's dev server command through the shell, streams its
stdout/stderr into a ProcessOutputCollector and records lifecycle events.
The orchestrator that spawned it is the only owner allowed to terminate it.
"""

import asyncio
import logging
import os
from typing import Awaitable, Callable, List, Mapping, Optional

import psutil

from .diagnostics import DiagnosticEventLog, ProcessOutputCollector
from .models import DiagnosticEventType

logger = logging.getLogger(__name__)

DEV_SERVER_STREAM_NAME = "devServer"
READ_CHUNK_SIZE = 4096
DEFAULT_TERMINATE_TIMEOUT_S = 5.0


class DevServerProcess:
    """Handle on a spawned dev server and its output collector."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: str,
        collector: ProcessOutputCollector,
        event_log: Optional[DiagnosticEventLog] = None,
    ):
        self.process = process
        self.command = command
        self.collector = collector
        self.event_log = event_log
        self._pump_tasks: List[asyncio.Task] = []
        self._exit_task: Optional[asyncio.Task] = None

    @classmethod
    async def spawn(
        cls,
        command: str,
        cwd: str,
        line_limit: int = 160,
        event_log: Optional[DiagnosticEventLog] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "DevServerProcess":
        """
        Start ``command`` in a shell rooted at ``cwd``.

        Args:
            command: Shell command line
            cwd: Working directory (the project root)
            line_limit: Lines kept per output stream
            event_log: Launch event log receiving process events
            env: Process environment (default: inherit os.environ)

        Returns:
            A DevServerProcess with output pumps running
        """
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            env=dict(os.environ if env is None else env),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        collector = ProcessOutputCollector(
            name=DEV_SERVER_STREAM_NAME,
            command=command,
            pid=process.pid,
            line_limit=line_limit,
        )
        server = cls(process, command, collector, event_log)
        server.bind()

        logger.info(f"Spawned dev server (pid={process.pid}): {command}")
        server._add_event(f"Spawned dev server: {command}", {"pid": process.pid})
        return server

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    def bind(self) -> None:
        """Start copying stdout/stderr into the collector and watch for exit."""
        if self.process.stdout is not None:
            self._pump_tasks.append(
                asyncio.create_task(self._pump(self.process.stdout, self.collector.push_stdout))
            )
        if self.process.stderr is not None:
            self._pump_tasks.append(
                asyncio.create_task(self._pump(self.process.stderr, self.collector.push_stderr))
            )
        self._exit_task = asyncio.create_task(self._watch_exit())

    def unbind(self) -> None:
        """Stop feeding the collector. Already captured lines are kept."""
        for task in self._pump_tasks:
            task.cancel()
        self._pump_tasks = []

    async def terminate(self, timeout_s: float = DEFAULT_TERMINATE_TIMEOUT_S) -> Optional[int]:
        """
        Terminate the shell and any processes it started.

        Sends SIGTERM, then SIGKILL to whatever is still running after
        ``timeout_s``.

        Returns:
            The shell's return code
        """
        if not self.running:
            return self.returncode

        children = self._child_processes()
        logger.warning(f"Terminating dev server (pid={self.pid}, children={len(children)})")

        for child in children:
            try:
                child.terminate()
            except psutil.NoSuchProcess:
                pass
        try:
            self.process.terminate()
        except ProcessLookupError:
            pass

        try:
            await asyncio.wait_for(self.process.wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"Dev server did not exit within {timeout_s}s, killing")
            try:
                self.process.kill()
            except ProcessLookupError:
                pass
            await self.process.wait()

        if not children:
            return self.returncode
        _, alive = await asyncio.to_thread(psutil.wait_procs, children, timeout=timeout_s)
        for child in alive:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass

        return self.returncode

    def _child_processes(self) -> List[psutil.Process]:
        if self.pid is None:
            return []
        try:
            return psutil.Process(self.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            return []

    async def _pump(self, stream: asyncio.StreamReader, push: Callable[[bytes], None]) -> None:
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            push(chunk)

    async def _watch_exit(self) -> None:
        returncode = await self.process.wait()
        logger.info(f"Dev server (pid={self.pid}) exited with code {returncode}")
        self._add_event("Dev server process exited.", {"code": returncode})

    def _add_event(self, message: str, data: dict) -> None:
        if self.event_log is not None:
            self.event_log.add(DiagnosticEventType.PROCESS, message, data)


DevServerSpawner = Callable[..., Awaitable[DevServerProcess]]
