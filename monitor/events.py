"""
Events consumed by the session controller.

Classifier events describe what the agent's output means; session events
come from the runner (process lifecycle, timers, user input, signals).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from .usage_limit import UsageLimitInfo


# Classifier events

@dataclass(frozen=True)
class Output:
    """Plain output; only refreshes the idle timer"""
    text: str = ""


@dataclass(frozen=True)
class Idle:
    """Agent stopped working (reason: 'marker' or 'silence')"""
    reason: str = "silence"


@dataclass(frozen=True)
class UsageLimitHit:
    info: UsageLimitInfo


@dataclass(frozen=True)
class LoopDetected:
    """Same normalized output repeated beyond the threshold"""
    sample: str = ""
    count: int = 0


@dataclass(frozen=True)
class PermissionPrompt:
    """Agent shows the bypass-permissions confirmation"""


# Session events

@dataclass(frozen=True)
class Started:
    pid: Optional[int] = None


@dataclass(frozen=True)
class LimitExpired:
    reset_at: Optional[datetime] = None


@dataclass(frozen=True)
class UserInput:
    data: bytes = field(default=b"")


@dataclass(frozen=True)
class Interrupted:
    source: str = "signal"


@dataclass(frozen=True)
class ProcessExited:
    returncode: Optional[int] = None


@dataclass(frozen=True)
class StreamFailed:
    error: str = ""


ClassifierEvent = Union[Output, Idle, UsageLimitHit, LoopDetected, PermissionPrompt]
SessionEvent = Union[
    ClassifierEvent, Started, LimitExpired, UserInput, Interrupted, ProcessExited, StreamFailed
]
