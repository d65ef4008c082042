"""
Session state owned by the controller, and the actions it asks the runner to perform
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from monitor.usage_limit import UsageLimitInfo
from utils.errors import (
    ClaudiaError,
    DocumentReadError,
    ExitCode,
    MaxContinueExceeded,
    SpawnError,
    StreamError,
)


class Phase(Enum):
    STARTING = "starting"
    RUNNING = "running"
    WAITING_LIMIT = "waiting_limit"
    COMPLETED = "completed"
    ABORTED = "aborted"
    USER_INTERRUPTED = "user_interrupted"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.COMPLETED, Phase.ABORTED, Phase.USER_INTERRUPTED)


class AbortReason(Enum):
    MAX_CONTINUE_EXCEEDED = "max_continue_exceeded"
    DOCUMENT_ERROR = "document_error"
    STREAM_ERROR = "stream_error"
    AGENT_EXITED = "agent_exited"
    SPAWN_ERROR = "spawn_error"


# Each abort reason ends the session with its error type's exit code
ABORT_ERRORS = {
    AbortReason.MAX_CONTINUE_EXCEEDED: MaxContinueExceeded,
    AbortReason.DOCUMENT_ERROR: DocumentReadError,
    AbortReason.STREAM_ERROR: StreamError,
    AbortReason.AGENT_EXITED: ClaudiaError,
    AbortReason.SPAWN_ERROR: SpawnError,
}


@dataclass
class SessionState:
    max_continue: int = 50
    continue_count: int = 0
    phase: Phase = Phase.STARTING
    started_at: float = field(default_factory=time.time)
    ended_at: Optional[float] = None
    last_meaningful_output_at: float = field(default_factory=time.time)
    reset_at: Optional[datetime] = None
    abort_reason: Optional[AbortReason] = None
    detail: str = ""
    limit_waits: int = 0
    loops_detected: int = 0
    permission_prompts_accepted: int = 0
    user_line_length: int = 0
    last_user_input_at: Optional[float] = None
    agent_started: bool = False
    prompt_sent: bool = False
    last_served_reset_at: Optional[datetime] = None
    state_changes: List[Tuple[float, Phase]] = field(default_factory=list)

    @property
    def duration(self) -> float:
        end = self.ended_at or time.time()
        return end - self.started_at

    @property
    def user_line_pending(self) -> bool:
        return self.user_line_length > 0

    @property
    def budget_left(self) -> int:
        return max(0, self.max_continue - self.continue_count)

    @property
    def exit_code(self) -> ExitCode:
        if self.phase == Phase.COMPLETED:
            return ExitCode.SUCCESS
        if self.phase == Phase.USER_INTERRUPTED:
            return ExitCode.USER_INTERRUPTED
        if self.phase == Phase.ABORTED and self.abort_reason is not None:
            return ABORT_ERRORS[self.abort_reason].exit_code
        return ExitCode.RUNTIME_ERROR


# Actions

@dataclass(frozen=True)
class SendInput:
    """Type into the session; ``submit`` appends Enter after a short pause"""
    text: str = ""
    data: bytes = b""
    submit: bool = True
    reason: str = ""


@dataclass(frozen=True)
class StartCountdown:
    info: UsageLimitInfo


@dataclass(frozen=True)
class Notify:
    message: str
    level: str = "info"


@dataclass(frozen=True)
class ResetClassifier:
    """Begin a fresh nudge cycle"""


@dataclass(frozen=True)
class Terminate:
    exit_code: ExitCode
    message: str = ""
