from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from pipeline.graph import Graph


class ErrorCodes(str, Enum):
    SPAWN_FAILED = "SPAWN_FAILED"
    PIPE_IO = "PIPE_IO"
    PROTOCOL_VIOLATION = "PROTOCOL_VIOLATION"
    PROCESS_EXITED = "PROCESS_EXITED"


class ProtocolErrorKind(str, Enum):
    MISSING_HANDSHAKE = "MISSING_HANDSHAKE"
    MALFORMED_GRAPH = "MALFORMED_GRAPH"
    UNEXPECTED_MESSAGE = "UNEXPECTED_MESSAGE"
    EMPTY_RESULT = "EMPTY_RESULT"


class OptimizerError(Exception):
    def __init__(
        self,
        code: ErrorCodes,
        message: str,
        user_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.user_message = user_message or message
        self.details = details or {}


class SpawnError(OptimizerError):
    def __init__(self, command: str, cause: BaseException | str) -> None:
        super().__init__(
            ErrorCodes.SPAWN_FAILED,
            f"failed to spawn optimizer {command!r}: {cause}",
            details={"command": command},
        )


class PipeIOError(OptimizerError):
    def __init__(self, ident: str, stage: str, cause: BaseException) -> None:
        super().__init__(
            ErrorCodes.PIPE_IO,
            f"optimizer {ident}: pipe error during {stage}: {cause}",
            details={"ident": ident, "stage": stage},
        )


class ProtocolError(OptimizerError):
    """A confused optimizer. Carries the offending line, truncated for display."""

    def __init__(self, ident: str, kind: ProtocolErrorKind, raw_line: str = "", reason: str = "") -> None:
        shown = raw_line if len(raw_line) <= 200 else raw_line[:200] + "..."
        message = f"optimizer {ident}: protocol violation {kind.value}"
        if reason:
            message += f" ({reason})"
        if shown:
            message += f": {shown!r}"
        super().__init__(
            ErrorCodes.PROTOCOL_VIOLATION,
            message,
            details={"ident": ident, "kind": kind.value},
        )
        self.kind = kind
        self.raw_line = raw_line


class OptimizerCrashed(OptimizerError):
    def __init__(self, ident: str, status: int | None, stage: str) -> None:
        super().__init__(
            ErrorCodes.PROCESS_EXITED,
            f"optimizer {ident} exited with status {status} during {stage}",
            details={"ident": ident, "status": status, "stage": stage},
        )
        self.status = status


# Inbound protocol messages


@dataclass(frozen=True)
class Start:
    name: str


@dataclass(frozen=True)
class GraphRequest:
    pass


@dataclass(frozen=True)
class GraphResult:
    graph: Graph


@dataclass(frozen=True)
class Done:
    pass


@dataclass(frozen=True)
class ProcessExited:
    """End of stdout. `dispatched` is False when the graph never reached the process."""

    status: int | None
    dispatched: bool = True


OptimizerMessage = Union[Start, GraphRequest, GraphResult, Done, ProcessExited]


@dataclass
class SolveResult:
    """Graphs produced for one request; the last one is the optimizer's answer."""

    graphs: list[Graph] = field(default_factory=list)
    duration_ms: int = 0
    exited: ProcessExited | None = None

    @property
    def final(self) -> Graph:
        return self.graphs[-1]
