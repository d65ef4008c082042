"""
Interactive passthrough: relays the user's keystrokes and terminal resizes
to the supervised session while the supervisor runs.
"""

import logging
import os
import select
import signal
import sys
import termios
import threading
import tty
from typing import Callable, Optional

logger = logging.getLogger(__name__)

CTRL_C = b'\x03'


class InteractivePassthrough:
    """Forwards raw stdin to the session via callbacks.

    Keystrokes are read on a daemon thread in raw mode and handed to
    ``on_input`` on the event loop thread; Ctrl+C calls ``on_interrupt``
    instead of reaching the child. Nothing here writes to the PTY directly.
    """

    def __init__(self,
                 loop,
                 on_input: Callable[[bytes], None],
                 on_interrupt: Callable[[], None],
                 on_resize: Optional[Callable[[], None]] = None,
                 stdin=None):
        self.loop = loop
        self.on_input = on_input
        self.on_interrupt = on_interrupt
        self.on_resize = on_resize
        self.stdin = stdin or sys.stdin

        self.thread: Optional[threading.Thread] = None
        self.stop_event = threading.Event()
        self.old_settings = None
        self.resize_installed = False

    @property
    def interactive(self) -> bool:
        try:
            return self.stdin.isatty()
        except (AttributeError, ValueError):
            return False

    def start(self):
        if self.on_resize is not None:
            try:
                self.loop.add_signal_handler(signal.SIGWINCH, self.on_resize)
                self.resize_installed = True
            except (NotImplementedError, RuntimeError) as e:
                logger.debug(f"Resize forwarding unavailable: {e}")

        # Only relay keystrokes when attached to a terminal
        if not self.interactive:
            return

        fd = self.stdin.fileno()
        try:
            self.old_settings = termios.tcgetattr(fd)
            tty.setraw(fd)
            # Keep output newline translation so supervisor messages start at column 0
            attrs = termios.tcgetattr(fd)
            attrs[1] |= termios.OPOST
            termios.tcsetattr(fd, termios.TCSANOW, attrs)
        except termios.error as e:
            logger.warning(f"Could not enable raw mode: {e}")
            self.old_settings = None

        self.thread = threading.Thread(target=self._forward, args=(fd,), name='stdin-relay', daemon=True)
        self.thread.start()

    def _forward(self, fd: int):
        while not self.stop_event.is_set():
            try:
                ready, _, _ = select.select([fd], [], [], 0.1)
                if not ready:
                    continue
                data = os.read(fd, 1024)
            except InterruptedError:
                continue
            except OSError as e:
                logger.debug(f"Stdin relay stopped: {e}")
                break

            if not data:
                break
            if CTRL_C in data:
                self.loop.call_soon_threadsafe(self.on_interrupt)
                break
            self.loop.call_soon_threadsafe(self.on_input, data)

    def stop(self):
        self.stop_event.set()
        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=1.0)

        if self.old_settings is not None:
            try:
                termios.tcsetattr(self.stdin.fileno(), termios.TCSADRAIN, self.old_settings)
            except termios.error as e:
                logger.debug(f"Could not restore terminal settings: {e}")
            self.old_settings = None

        if self.resize_installed:
            self.loop.remove_signal_handler(signal.SIGWINCH)
            self.resize_installed = False
