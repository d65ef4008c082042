"""
Sliding-window duplicate-output detector.

Chunks are normalized before comparison so that output differing only in
colors, spinner frames, clock times or counters still collides.
"""

import hashlib
import re
from collections import Counter, deque
from typing import Deque, Optional

ANSI_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"        # CSI sequences
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC sequences
    r"|\x1b[@-Z\\-_]"                  # two-byte escapes
)
CONTROL_RE = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
# Braille spinners, star/asterisk spinners, box drawing and block elements
DECORATION_RE = re.compile(r"[⠀-⣿─-▟✢-✽·∙⋅●○◐-◓]")
CLOCK_RE = re.compile(r"\b\d{1,2}:\d{2}(?::\d{2})?(?:\s*[ap]\.?m\.?)?", re.IGNORECASE)
DIGITS_RE = re.compile(r"\d+")
WHITESPACE_RE = re.compile(r"\s+")


def strip_ansi(text: str) -> str:
    return ANSI_RE.sub("", text)


def normalize_chunk(text: str) -> str:
    """Reduce a chunk to its semantic content for comparison"""
    text = strip_ansi(text)
    text = CONTROL_RE.sub(" ", text)
    text = DECORATION_RE.sub(" ", text)
    text = CLOCK_RE.sub(" ", text)
    text = DIGITS_RE.sub("#", text)
    return WHITESPACE_RE.sub(" ", text).strip().lower()


class LoopDetector:
    """Counts normalized chunk repeats within the last ``window`` entries.

    ``feed`` returns True when a chunk's count within the window exceeds
    ``threshold``; the window is then cleared, so one burst of repeats
    yields one detection.
    """

    def __init__(self, window: int = 20, threshold: int = 3, min_length: int = 10):
        self.window = window
        self.threshold = threshold
        self.min_length = min_length
        self.entries: Deque[str] = deque(maxlen=window)
        self.last_sample = ""
        self.last_count = 0

    @staticmethod
    def key(normalized: str) -> str:
        return hashlib.sha1(normalized.encode("utf-8")).hexdigest()

    def feed(self, chunk: str, normalized: Optional[str] = None) -> bool:
        if normalized is None:
            normalized = normalize_chunk(chunk)
        if len(normalized) < self.min_length:
            return False

        key = self.key(normalized)
        self.entries.append(key)

        count = Counter(self.entries)[key]
        if count > self.threshold:
            self.last_sample = normalized[:120]
            self.last_count = count
            self.entries.clear()
            return True
        return False

    def reset(self):
        self.entries.clear()
