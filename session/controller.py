"""
Session controller: the supervisor's decision state machine.

The controller never touches a process or a terminal. The runner feeds it
one event at a time through ``handle`` and executes the returned actions,
so every phase transition happens inside ``handle`` and can be tested by
replaying a scripted event sequence.

    STARTING --Started--> RUNNING (initial prompt)
    STARTING --UsageLimitHit--> WAITING_LIMIT; the initial prompt waits for the reset
    RUNNING --Idle/LoopDetected--> RUNNING (Continue), COMPLETED or ABORTED
    RUNNING --UsageLimitHit--> WAITING_LIMIT --LimitExpired--> RUNNING (resume)
    any --Interrupted--> USER_INTERRUPTED
"""

import logging
import time
from typing import Callable, List, Optional

from monitor.events import (
    Idle,
    Interrupted,
    LimitExpired,
    LoopDetected,
    Output,
    PermissionPrompt,
    ProcessExited,
    Started,
    StreamFailed,
    UsageLimitHit,
    UserInput,
)
from taskfile.document import TaskDocumentTracker
from utils.errors import DocumentReadError, ExitCode

from .state import (
    AbortReason,
    Notify,
    Phase,
    ResetClassifier,
    SendInput,
    SessionState,
    StartCountdown,
    Terminate,
)

logger = logging.getLogger(__name__)

ACCEPT_PERMISSIONS_ANSWER = "2"
LINE_ENDINGS = (0x0D, 0x0A)
KILL_LINE = 0x15
ERASE_KEYS = (0x7F, 0x08)


class SessionController:
    """Consumes events, owns SessionState, decides what to type or when to stop"""

    def __init__(
        self,
        tracker: TaskDocumentTracker,
        initial_prompt: str,
        continue_text: str = "Continue",
        max_continue: int = 50,
        typing_timeout: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.tracker = tracker
        self.initial_prompt = initial_prompt
        self.continue_text = continue_text
        self.typing_timeout = typing_timeout
        self.clock = clock or time.time
        self.state = SessionState(max_continue=max_continue, started_at=self.clock())
        self.state.last_meaningful_output_at = self.state.started_at

    @property
    def phase(self) -> Phase:
        return self.state.phase

    def handle(self, event) -> List:
        """Apply one event; return the actions for the runner"""
        if self.state.phase.is_terminal:
            return []

        if isinstance(event, Interrupted):
            return self._finish(Phase.USER_INTERRUPTED, f"Interrupted by user ({event.source}). Exiting...")
        if isinstance(event, StreamFailed):
            return self._abort(AbortReason.STREAM_ERROR, f"Session terminal failed: {event.error}")
        if isinstance(event, ProcessExited):
            return self._on_process_exited(event)
        if isinstance(event, UserInput):
            return self._on_user_input(event)
        if isinstance(event, Started):
            return self._on_started(event)
        if isinstance(event, Output):
            self.state.last_meaningful_output_at = self.clock()
            return []
        if isinstance(event, UsageLimitHit):
            return self._on_usage_limit(event)
        if isinstance(event, LimitExpired):
            return self._on_limit_expired(event)
        if isinstance(event, PermissionPrompt):
            return self._on_permission_prompt()
        if isinstance(event, LoopDetected):
            if self.state.phase != Phase.RUNNING:
                return []
            self.state.loops_detected += 1
            return self._nudge(f"repeated output detected ({event.count}x)")
        if isinstance(event, Idle):
            if self.state.phase != Phase.RUNNING:
                return []
            return self._nudge("no new output" if event.reason == "silence" else "waiting for input")

        logger.debug(f"Ignoring unknown event {event!r}")
        return []

    def spawn_failed(self, error: Exception) -> List:
        """The agent never started; end the session before any event arrives"""
        return self._abort(AbortReason.SPAWN_ERROR, str(error))

    # Event handlers

    def _on_started(self, event: Started) -> List:
        if self.state.agent_started:
            return []
        self.state.agent_started = True
        logger.info(f"Agent started (pid {event.pid})")

        if self.state.phase == Phase.WAITING_LIMIT:
            logger.info("Initial prompt held until the usage limit resets")
            return []
        if self.state.phase != Phase.STARTING:
            return []
        self._set_phase(Phase.RUNNING)
        return self._send_initial_prompt()

    def _send_initial_prompt(self) -> List:
        self.state.prompt_sent = True
        return [
            Notify("Sending initial prompt to Claude..."),
            SendInput(text=self.initial_prompt, reason="initial prompt"),
            ResetClassifier(),
            Notify("Claude is working..."),
        ]

    def _on_usage_limit(self, event: UsageLimitHit) -> List:
        if self.state.phase not in (Phase.STARTING, Phase.RUNNING):
            return []

        info = event.info
        served = self.state.last_served_reset_at
        if served is not None and info.reset_at <= served and info.remaining() <= 0:
            logger.debug("Ignoring stale usage limit message for an already served reset time")
            return []

        self.state.reset_at = info.reset_at
        self.state.limit_waits += 1
        self._set_phase(Phase.WAITING_LIMIT)

        when = info.reset_at.strftime("%-I:%M%p").lower()
        if info.explicit:
            message = f"Usage limit reached. Waiting until {when} to continue..."
        else:
            message = f"Usage limit reached without a reset time. Backing off until {when}..."
        return [Notify(message, "warning"), StartCountdown(info=info)]

    def _on_limit_expired(self, event: LimitExpired) -> List:
        if self.state.phase != Phase.WAITING_LIMIT:
            return []

        self.state.last_served_reset_at = self.state.reset_at
        self.state.reset_at = None

        if not self.state.agent_started:
            # Limit seen during startup; Started will send the initial prompt
            self._set_phase(Phase.STARTING)
            return [Notify("Usage limit reset. Waiting for Claude to start...")]

        self._set_phase(Phase.RUNNING)

        completed = self._completion_actions()
        if completed is not None:
            return completed

        if not self.state.prompt_sent:
            return [Notify("Usage limit reset.")] + self._send_initial_prompt()

        return [
            Notify("Usage limit reset. Resuming session..."),
            SendInput(text=self.continue_text, reason="resume after usage limit"),
            ResetClassifier(),
            Notify("Claude is working..."),
        ]

    def _on_permission_prompt(self) -> List:
        if self.state.phase not in (Phase.STARTING, Phase.RUNNING):
            return []
        self.state.permission_prompts_accepted += 1
        return [
            Notify("Detected bypass permissions prompt, accepting..."),
            SendInput(text=ACCEPT_PERMISSIONS_ANSWER, reason="accept bypass permissions"),
            ResetClassifier(),
        ]

    def _on_user_input(self, event: UserInput) -> List:
        self.state.user_line_length = self._line_length_after(self.state.user_line_length, event.data)
        self.state.last_user_input_at = self.clock()
        return [SendInput(data=event.data, submit=False, reason="user input")]

    def _on_process_exited(self, event: ProcessExited) -> List:
        completed = self._completion_actions()
        if completed is not None:
            return completed
        return self._abort(
            AbortReason.AGENT_EXITED,
            f"Claude process exited with status {event.returncode} before all tasks were completed",
        )

    # Decisions

    def _nudge(self, reason: str) -> List:
        completed = self._completion_actions()
        if completed is not None:
            return completed

        if self._user_is_typing():
            logger.debug(f"Continue deferred ({reason}): user is typing")
            return []

        if self.state.continue_count >= self.state.max_continue:
            done, total = self.tracker.progress()
            return self._abort(
                AbortReason.MAX_CONTINUE_EXCEEDED,
                f"Sent {self.state.max_continue} Continue commands without finishing "
                f"({done}/{total} tasks checked). Something may be wrong. Exiting.",
            )

        self.state.continue_count += 1
        count = self.state.continue_count
        logger.info(f"Auto-continue #{count}: {reason}")
        return [
            Notify(f"Claude stopped ({reason}). Sending Continue #{count}..."),
            SendInput(text=self.continue_text, reason=reason),
            ResetClassifier(),
            Notify("Claude is working..."),
        ]

    def _completion_actions(self) -> Optional[List]:
        """Terminal actions when the task file is complete or unreadable, else None"""
        try:
            complete = self.tracker.is_complete()
        except DocumentReadError as e:
            return self._abort(AbortReason.DOCUMENT_ERROR, str(e))
        if complete:
            return self._finish(Phase.COMPLETED, "All tasks completed! Exiting...")
        return None

    def _abort(self, reason: AbortReason, detail: str) -> List:
        self.state.abort_reason = reason
        return self._finish(Phase.ABORTED, detail, level="error")

    def _finish(self, phase: Phase, message: str, level: Optional[str] = None) -> List:
        self.state.detail = message
        self.state.ended_at = self.clock()
        self._set_phase(phase)
        exit_code = self.state.exit_code
        return [
            Notify(message, level or ("info" if exit_code == ExitCode.SUCCESS else "warning")),
            Terminate(exit_code=exit_code, message=message),
        ]

    def _set_phase(self, phase: Phase):
        old = self.state.phase
        self.state.phase = phase
        self.state.state_changes.append((self.clock(), phase))
        logger.info(f"State changed from {old.value} to {phase.value}")

    def _user_is_typing(self) -> bool:
        """A typed line defers nudges until it is submitted, erased or abandoned"""
        if not self.state.user_line_pending:
            return False
        idle_for = self.clock() - (self.state.last_user_input_at or self.state.started_at)
        if idle_for < self.typing_timeout:
            return True
        logger.info(f"Typed line untouched for {idle_for:.0f}s; no longer holding back Continue")
        self.state.user_line_length = 0
        return False

    @staticmethod
    def _line_length_after(length: int, data: bytes) -> int:
        """Characters left on the user's unsubmitted line after ``data``"""
        in_escape = False
        for byte in data:
            if in_escape:
                # Escape sequences (arrows, function keys) end at a letter or '~'
                if chr(byte).isalpha() or byte == ord("~"):
                    in_escape = False
                continue
            if byte == 0x1B:
                in_escape = True
            elif byte in LINE_ENDINGS or byte == KILL_LINE:
                length = 0
            elif byte in ERASE_KEYS:
                length = max(0, length - 1)
            elif byte >= 0x20 and not 0x80 <= byte < 0xC0:
                # UTF-8 continuation bytes belong to the previous character
                length += 1
        return length
