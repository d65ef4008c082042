"""
Output classifier: maps the agent's raw output stream to semantic events.

``classify(chunk)`` returns exactly one event per chunk, checking in fixed
priority order: usage limit > permission prompt > loop > idle marker >
plain output. Silence is not visible in any single chunk, so it is a
separate query, ``check_silence(now)``.
"""

import logging
import re
import time
from typing import Optional

from utils.config import ClaudiaConfig

from .events import ClassifierEvent, Idle, LoopDetected, Output, PermissionPrompt, UsageLimitHit
from .loop_detector import LoopDetector, normalize_chunk, strip_ansi
from .usage_limit import compile_patterns, detect_usage_limit, local_now

logger = logging.getLogger(__name__)

TAIL_SIZE = 2000
BUSY_WINDOW = 200
BUSY_MARKER = "esc to interrupt"


class PatternMatcher:
    """Case-insensitive pattern groups for the agent's terminal UI"""

    def __init__(self, config: ClaudiaConfig):
        self.limit_patterns = compile_patterns(config.limit_patterns)
        self.idle_patterns = compile_patterns(config.idle_markers)
        self.permission_patterns = [
            (re.compile(r"bypass permissions mode", re.IGNORECASE),
             re.compile(r"1\.\s*no,\s*exit", re.IGNORECASE),
             re.compile(r"2\.\s*yes,\s*i\s*accept", re.IGNORECASE)),
        ]

    def is_permission_prompt(self, text: str) -> bool:
        for warning, decline, accept in self.permission_patterns:
            if warning.search(text) and (decline.search(text) or accept.search(text)):
                return True
        return False

    def is_idle_marker(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self.idle_patterns)

    @staticmethod
    def is_busy(text: str) -> bool:
        return BUSY_MARKER in text[-BUSY_WINDOW:].lower()


class OutputClassifier:
    """Stateful classifier over the agent's output stream.

    Holds the rolling text tail used for signature matching across chunk
    boundaries and the loop detector window. Only this class mutates them.
    """

    def __init__(self, config: ClaudiaConfig, clock=None):
        self.config = config
        self.clock = clock or time.monotonic
        self.matcher = PatternMatcher(config)
        self.loop_detector = LoopDetector(
            window=config.loop_window,
            threshold=config.loop_threshold,
            min_length=config.min_chunk_length,
        )
        self.tail = ""
        self.last_output_at = self.clock()
        self.idle_armed = True
        self.silence_reported = False

    def classify(self, chunk: str, now=None) -> ClassifierEvent:
        """Classify one chunk of decoded output"""
        plain = strip_ansi(chunk)
        self.tail = (self.tail + plain)[-TAIL_SIZE:]
        if plain.strip():
            self.touch()

        info = detect_usage_limit(
            self.tail,
            self.matcher.limit_patterns,
            self.config.default_backoff,
            now=now or local_now(),
        )
        if info is not None:
            logger.debug(f"Usage limit detected, reset at {info.reset_at.isoformat()}")
            self.tail = ""
            return UsageLimitHit(info=info)

        if self.matcher.is_permission_prompt(self.tail):
            logger.debug("Bypass permissions prompt detected")
            self.tail = ""
            return PermissionPrompt()

        normalized = normalize_chunk(plain)
        if BUSY_MARKER not in normalized and self.loop_detector.feed(plain, normalized):
            detector = self.loop_detector
            logger.debug(f"Loop detected: {detector.last_count}x '{detector.last_sample}'")
            return LoopDetected(sample=detector.last_sample, count=detector.last_count)

        if self.idle_armed and self.matcher.is_idle_marker(plain):
            self.idle_armed = False
            return Idle(reason="marker")

        return Output(text=chunk)

    def check_silence(self) -> Optional[Idle]:
        """Idle once per silence period of ``idle_timeout`` while not busy"""
        if self.silence_reported:
            return None
        if self.seconds_until_idle() > 0:
            return None
        if self.matcher.is_busy(self.tail):
            return None
        self.silence_reported = True
        return Idle(reason="silence")

    def seconds_until_idle(self) -> float:
        return max(0.0, self.last_output_at + self.config.idle_timeout - self.clock())

    def touch(self):
        """Record activity: output or user typing restarts the silence window"""
        self.last_output_at = self.clock()
        self.silence_reported = False

    def reset(self):
        """Start a fresh nudge cycle after an injection"""
        self.tail = ""
        self.loop_detector.reset()
        self.idle_armed = True
        self.touch()
