"""
Task document parsing, checkbox normalization and completion tracking.

A task document is a Markdown file whose list items are the tasks. Every
list item carries a checkbox token right after its marker:

    - [ ] open task
    * [x] finished task
    1. [X] finished numbered task

Normalization inserts ``[ ]`` into list items that have no checkbox and
leaves every other byte of the file untouched.
"""

import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from utils.errors import DocumentReadError

logger = logging.getLogger(__name__)

# Marker, whitespace, then a checkbox token (whitespace before the box is optional)
CHECKBOX_ITEM_RE = re.compile(
    r"^(?P<indent>[ \t]*)(?P<marker>[-*+]|\d{1,9}[.)])(?P<space>[ \t]*)\[(?P<state>[ xX])\]"
)
# Marker, mandatory whitespace, then some text
PLAIN_ITEM_RE = re.compile(
    r"^(?P<indent>[ \t]*)(?P<marker>[-*+]|\d{1,9}[.)])(?P<space>[ \t]+)(?P<rest>\S.*)$",
    re.DOTALL,
)
THEMATIC_BREAK_RE = re.compile(r"^[ \t]*([-*_])([ \t]*\1){2,}[ \t]*$")
FENCE_RE = re.compile(r"^[ \t]*(```|~~~)")
# One physical line: up to and including "\n", or a final unterminated line
LINE_RE = re.compile(r"[^\n]*\n|[^\n]+")

UNCHECKED_TOKEN = "[ ] "


@dataclass(frozen=True)
class TaskLine:
    """One physical line of the task document, line ending included"""
    raw_text: str
    is_list_item: bool = False
    checked: Optional[bool] = None

    @property
    def has_checkbox(self) -> bool:
        return self.checked is not None


@dataclass(frozen=True)
class TaskDocument:
    """Ordered lines of a task document"""
    lines: Tuple[TaskLine, ...]

    @property
    def text(self) -> str:
        return "".join(line.raw_text for line in self.lines)

    @property
    def items(self) -> List[TaskLine]:
        return [line for line in self.lines if line.is_list_item]

    def progress(self) -> Tuple[int, int]:
        """Return (checked, total) over list items"""
        items = self.items
        return sum(1 for item in items if item.checked), len(items)


def _split_ending(raw: str) -> Tuple[str, str]:
    body = raw.rstrip("\r\n")
    return body, raw[len(body):]


def _classify_line(raw: str) -> TaskLine:
    body, _ = _split_ending(raw)

    if THEMATIC_BREAK_RE.match(body):
        return TaskLine(raw_text=raw)

    match = CHECKBOX_ITEM_RE.match(body)
    if match:
        return TaskLine(raw_text=raw, is_list_item=True, checked=match.group("state") in "xX")

    if PLAIN_ITEM_RE.match(body):
        return TaskLine(raw_text=raw, is_list_item=True, checked=None)

    return TaskLine(raw_text=raw)


def parse(text: str) -> TaskDocument:
    """Parse document text into lines; fenced code blocks hold no tasks"""
    lines = []
    fence: Optional[str] = None

    for raw in LINE_RE.findall(text):
        body, _ = _split_ending(raw)
        fence_match = FENCE_RE.match(body)

        if fence is not None:
            if fence_match and fence_match.group(1) == fence:
                fence = None
            lines.append(TaskLine(raw_text=raw))
            continue

        if fence_match:
            fence = fence_match.group(1)
            lines.append(TaskLine(raw_text=raw))
            continue

        lines.append(_classify_line(raw))

    return TaskDocument(lines=tuple(lines))


def normalize(document: TaskDocument) -> TaskDocument:
    """Insert an unchecked checkbox into every list item that lacks one"""
    lines = []
    for line in document.lines:
        if line.is_list_item and not line.has_checkbox:
            body, ending = _split_ending(line.raw_text)
            match = PLAIN_ITEM_RE.match(body)
            new_body = (
                match.group("indent")
                + match.group("marker")
                + match.group("space")
                + UNCHECKED_TOKEN
                + match.group("rest")
            )
            lines.append(TaskLine(raw_text=new_body + ending, is_list_item=True, checked=False))
        else:
            lines.append(line)
    return TaskDocument(lines=tuple(lines))


def is_complete(document: TaskDocument) -> bool:
    """True when no list item is unchecked.

    A document without list items is vacuously complete; callers decide
    whether to accept that.
    """
    return all(item.checked for item in document.items)


class TaskDocumentTracker:
    """File-backed task document; the single source of truth for completion"""

    def __init__(self, path: Path, read_retries: int = 3, retry_delay: float = 0.5):
        self.path = Path(path)
        self.read_retries = read_retries
        self.retry_delay = retry_delay
        self.last_document: Optional[TaskDocument] = None

    def load(self) -> TaskDocument:
        """Read and parse the task file"""
        try:
            # Decoded from bytes so CRLF endings survive a rewrite
            text = self.path.read_bytes().decode("utf-8")
        except FileNotFoundError as e:
            raise DocumentReadError(f"Task file '{self.path}' not found") from e
        except (OSError, UnicodeDecodeError) as e:
            raise DocumentReadError(f"Cannot read task file '{self.path}': {e}") from e

        document = parse(text)
        self.last_document = document
        return document

    def normalize_file(self) -> Tuple[TaskDocument, bool]:
        """Add missing checkboxes and persist them. Returns (document, changed)."""
        document = self.load()
        normalized = normalize(document)
        changed = normalized.text != document.text

        if changed:
            self._write(normalized.text)
            added = sum(
                1 for before, after in zip(document.lines, normalized.lines)
                if before.raw_text != after.raw_text
            )
            logger.info(f"Added {added} checkbox(es) to {self.path}")

        self.last_document = normalized
        return normalized, changed

    def reload(self) -> TaskDocument:
        """Re-read during a session, retrying transient failures"""
        attempt = 0
        while True:
            try:
                return self.load()
            except DocumentReadError as e:
                attempt += 1
                if attempt > self.read_retries:
                    raise
                logger.debug(f"Task file read failed (attempt {attempt}/{self.read_retries}): {e}")
                time.sleep(self.retry_delay)

    def is_complete(self) -> bool:
        return is_complete(self.reload())

    def progress(self) -> Tuple[int, int]:
        """Progress of the last document seen, without touching the disk"""
        if self.last_document is None:
            return 0, 0
        return self.last_document.progress()

    def _write(self, text: str):
        # Write beside the target, then rename, so the file is never half written
        directory = self.path.resolve().parent
        try:
            fd, temp_path = tempfile.mkstemp(dir=directory, prefix=".claudia_", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                    f.write(text)
                if self.path.exists():
                    os.chmod(temp_path, self.path.stat().st_mode & 0o7777)
                os.replace(temp_path, self.path)
            except BaseException:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except OSError as e:
            raise DocumentReadError(f"Cannot write task file '{self.path}': {e}") from e
