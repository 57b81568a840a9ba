"""Subprocess session speaking the optimizer line protocol.

Protocol (optimizer stdout, one frame per line):

    START <name>   handshake, must come first
    GRAPH          ready for the next instance
    {...}          one compact JSON graph (may repeat; the last one counts)
    DONE           end of the current batch

Anything else is logged as a warning and ignored. The harness answers each
GRAPH request with exactly one JSON graph line on the optimizer's stdin.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
import time
from contextlib import suppress
from typing import Any

from pipeline.graph import Graph
from pipeline.io.codec import GraphDecodeError, decode_graph, encode_graph

from .types import (
    Done,
    GraphRequest,
    GraphResult,
    OptimizerCrashed,
    OptimizerMessage,
    PipeIOError,
    ProcessExited,
    ProtocolError,
    ProtocolErrorKind,
    SolveResult,
    SpawnError,
    Start,
)

# Graph lines for large instances easily exceed asyncio's 64 KiB default.
STREAM_LIMIT = 64 * 1024 * 1024


class OptimizerSession:
    """Owns one optimizer child process and its three pipes."""

    def __init__(
        self,
        command: str,
        ident: str | int,
        logger: logging.Logger | None = None,
        *,
        reap_timeout: float = 5.0,
        shutdown_timeout: float = 2.0,
        exit_poll: float = 0.05,
        stream_limit: int = STREAM_LIMIT,
    ) -> None:
        self.command = command
        self.ident = str(ident)
        self.logger = logger or logging.getLogger("processes.optimizer")
        self.stderr_logger = self.logger.getChild("stderr")
        self.reap_timeout = reap_timeout
        self.shutdown_timeout = shutdown_timeout
        self.exit_poll = exit_poll
        self.stream_limit = stream_limit
        self.name: str | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._drain_tasks: set[asyncio.Task[None]] = set()
        self._reapers: set[asyncio.Task[None]] = set()
        self._started = False
        self._pending_request = False
        self._last_line = ""

    @classmethod
    async def open(cls, command: str, ident: str | int, **kwargs: Any) -> OptimizerSession:
        session = cls(command, ident, **kwargs)
        await session.spawn()
        return session

    @property
    def label(self) -> str:
        return self.name or self.ident

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    # lifecycle

    async def spawn(self) -> None:
        try:
            argv = shlex.split(self.command, posix=os.name != "nt")
        except ValueError as e:
            raise SpawnError(self.command, e) from e
        if not argv:
            raise SpawnError(self.command, "empty command line")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.stream_limit,
            )
        except OSError as e:
            raise SpawnError(self.command, e) from e
        self._process = proc
        self._started = False
        self._pending_request = False
        self.name = None
        assert proc.stderr is not None
        drain = asyncio.create_task(self._drain_stderr(proc.stderr))
        self._drain_tasks.add(drain)
        drain.add_done_callback(self._drain_tasks.discard)
        self.logger.info(
            json.dumps(
                {"event": "optimizer_spawned", "ident": self.ident, "pid": proc.pid, "command": self.command}
            )
        )

    async def _drain_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                self.stderr_logger.warning("[Optimizer %s] stderr line exceeded reader limit, dropped", self.ident)
                continue
            if not raw:
                return
            self.stderr_logger.info("[Optimizer %s] %s", self.ident, raw.decode("utf-8", "replace").rstrip("\r\n"))

    async def restart(self) -> None:
        """Replace the process with a fresh one built from the same command.

        The old process gets its stdin closed and a kill; a background task
        reaps it. The new process must send START again.
        """
        old = self._process
        if old is not None:
            if old.stdin is not None and not old.stdin.is_closing():
                old.stdin.close()
            if old.returncode is None:
                with suppress(ProcessLookupError):
                    old.kill()
            task = asyncio.create_task(self._reap(old))
            self._reapers.add(task)
            task.add_done_callback(self._reapers.discard)
            self.logger.info(
                json.dumps({"event": "optimizer_restart", "ident": self.ident, "old_pid": old.pid})
            )
        await self.spawn()

    async def _reap(self, proc: asyncio.subprocess.Process) -> None:
        try:
            status = await asyncio.wait_for(proc.wait(), self.reap_timeout)
        except asyncio.TimeoutError:
            self.logger.warning(
                json.dumps(
                    {"event": "optimizer_reap_timeout", "ident": self.ident, "pid": proc.pid, "timeout_s": self.reap_timeout}
                )
            )
            return
        self.logger.debug(
            json.dumps({"event": "optimizer_reaped", "ident": self.ident, "pid": proc.pid, "status": status})
        )

    async def close(self) -> None:
        proc = self._process
        if proc is None:
            return
        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()
        if proc.returncode is None:
            try:
                await asyncio.wait_for(proc.wait(), self.shutdown_timeout)
            except asyncio.TimeoutError:
                with suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
        tasks = [*self._drain_tasks, *self._reapers]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.shutdown_timeout)
            for task in pending:
                # a grandchild can keep stderr open after the optimizer exits
                task.cancel()
        self._drain_tasks.clear()

    async def __aenter__(self) -> OptimizerSession:
        if self._process is None:
            await self.spawn()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # protocol

    def _require_process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise RuntimeError(f"optimizer {self.ident} has not been spawned")
        return self._process

    async def _read_line(self) -> str | None:
        """Next stdout line, or None once stdout is closed and the process has exited."""
        proc = self._require_process()
        assert proc.stdout is not None
        while True:
            try:
                raw = await proc.stdout.readline()
            except ValueError as e:
                raise ProtocolError(
                    self.ident, ProtocolErrorKind.MALFORMED_GRAPH, reason=f"line exceeds {self.stream_limit} bytes"
                ) from e
            except ConnectionError as e:
                raise PipeIOError(self.ident, "read", e) from e
            if raw:
                return raw.decode("utf-8", "replace").rstrip("\r\n")
            if proc.returncode is not None:
                return None
            try:
                await asyncio.wait_for(proc.wait(), self.exit_poll)
            except asyncio.TimeoutError:
                continue
            return None

    async def read_message(self) -> OptimizerMessage:
        while True:
            line = await self._read_line()
            if line is None:
                return ProcessExited(self.returncode)
            text = line.strip()
            if not text:
                continue
            self._last_line = text
            if text.startswith("START"):
                return Start(text[len("START"):].strip())
            if text.startswith("GRAPH"):
                return GraphRequest()
            if text.startswith("{"):
                try:
                    return GraphResult(decode_graph(text))
                except GraphDecodeError as e:
                    raise ProtocolError(self.ident, ProtocolErrorKind.MALFORMED_GRAPH, text, str(e)) from e
            if text == "DONE":
                return Done()
            self.logger.warning("[Optimizer %s] unrecognised output: %s", self.ident, text)

    async def read_start(self) -> str:
        msg = await self.read_message()
        if isinstance(msg, Start):
            self.name = msg.name
            self._started = True
            self.logger.info("[Optimizer %s] started as %r", self.ident, msg.name)
            return msg.name
        if isinstance(msg, ProcessExited):
            raise OptimizerCrashed(self.ident, msg.status, "handshake")
        raise ProtocolError(self.ident, ProtocolErrorKind.MISSING_HANDSHAKE, self._last_line, "expected START")

    async def write_graph(self, graph: Graph) -> bool:
        """Send one graph line. Returns False if the process is already gone."""
        proc = self._require_process()
        assert proc.stdin is not None
        try:
            proc.stdin.write(encode_graph(graph).encode("utf-8") + b"\n")
            await proc.stdin.drain()
        except ConnectionError as e:
            if await self._has_exited():
                return False
            raise PipeIOError(self.ident, "write", e) from e
        return True

    async def _has_exited(self) -> bool:
        proc = self._require_process()
        if proc.returncode is not None:
            return True
        try:
            await asyncio.wait_for(proc.wait(), self.exit_poll)
        except asyncio.TimeoutError:
            return False
        return True

    async def solve(self, graph: Graph) -> SolveResult | ProcessExited:
        """Run one pull-protocol exchange for `graph`.

        Returns the batch of graphs produced, or ProcessExited when the
        process died before producing any. An exit before the graph was
        written comes back with `dispatched=False`, so the caller can restart
        and send the same graph again.
        """
        if not self._started:
            await self.read_start()
        if self._pending_request:
            self._pending_request = False
        else:
            msg = await self.read_message()
            if isinstance(msg, ProcessExited):
                return ProcessExited(msg.status, dispatched=False)
            if not isinstance(msg, GraphRequest):
                raise ProtocolError(
                    self.ident, ProtocolErrorKind.UNEXPECTED_MESSAGE, self._last_line, "expected GRAPH request"
                )

        started = time.perf_counter()
        if not await self.write_graph(graph):
            return ProcessExited(self.returncode, dispatched=False)

        result = SolveResult()
        while True:
            msg = await self.read_message()
            if isinstance(msg, GraphResult):
                result.graphs.append(msg.graph)
                result.duration_ms = int((time.perf_counter() - started) * 1000)
            elif isinstance(msg, Done):
                break
            elif isinstance(msg, GraphRequest):
                self._pending_request = True
                break
            elif isinstance(msg, ProcessExited):
                if not result.graphs:
                    return msg
                result.exited = msg
                break
            else:
                raise ProtocolError(
                    self.ident, ProtocolErrorKind.UNEXPECTED_MESSAGE, self._last_line, "expected graph or DONE"
                )
        if not result.graphs:
            raise ProtocolError(self.ident, ProtocolErrorKind.EMPTY_RESULT, self._last_line, "batch ended without a graph")
        return result
