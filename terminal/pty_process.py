"""
Child process attached to a pseudo-terminal.

Capability used by the session runner: spawn, non-blocking read, serialized
write, resize and graceful-then-forced termination.
"""

import asyncio
import errno
import fcntl
import logging
import os
import pty
import shutil
import signal
import struct
import sys
import termios
from typing import List, Optional, Tuple

from utils.errors import SpawnError, StreamError

logger = logging.getLogger(__name__)

READ_SIZE = 4096
SUBMIT_DELAY = 0.05


def detect_terminal_size(fallback_rows: int = 40, fallback_cols: int = 120) -> Tuple[int, int]:
    """Return (rows, cols) of the controlling terminal, or the fallback"""
    for stream in (sys.stdout, sys.stderr, sys.stdin):
        try:
            cols, rows = os.get_terminal_size(stream.fileno())
            if cols and rows:
                return rows, cols
        except (OSError, ValueError, AttributeError):
            continue

    try:
        cols = int(os.environ.get('COLUMNS', 0))
        rows = int(os.environ.get('LINES', 0))
        if cols and rows:
            return rows, cols
    except ValueError:
        pass

    return fallback_rows, fallback_cols


def set_winsize(fd: int, rows: int, cols: int):
    winsize = struct.pack('HHHH', rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def _acquire_controlling_tty():
    # Runs in the child: new session, with the PTY slave on fd 0 as its terminal
    os.setsid()
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class PtyProcess:
    """An agent process whose stdin/stdout/stderr are a PTY slave"""

    def __init__(self,
                 command: List[str],
                 cwd: Optional[str] = None,
                 rows: int = 40,
                 cols: int = 120,
                 stream_retries: int = 3):
        self.command = command
        self.cwd = cwd
        self.rows = rows
        self.cols = cols
        self.stream_retries = stream_retries

        self.process: Optional[asyncio.subprocess.Process] = None
        self.master_fd: Optional[int] = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode if self.process else None

    async def spawn(self):
        binary = shutil.which(self.command[0])
        if binary is None:
            raise SpawnError(
                f"{self.command[0]} command not found. Please ensure it is installed and in PATH."
            )

        master_fd, slave_fd = pty.openpty()
        try:
            set_winsize(slave_fd, self.rows, self.cols)
        except OSError as e:
            logger.warning(f"Failed to set terminal size: {e}")

        env = dict(os.environ)
        env.setdefault('TERM', 'xterm-256color')

        try:
            self.process = await asyncio.create_subprocess_exec(
                binary, *self.command[1:],
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=self.cwd,
                env=env,
                preexec_fn=_acquire_controlling_tty,
            )
        except OSError as e:
            os.close(master_fd)
            raise SpawnError(f"Failed to spawn {self.command[0]}: {e}") from e
        finally:
            # The child holds its own copy; keeping ours would hide EOF
            os.close(slave_fd)

        os.set_blocking(master_fd, False)
        self.master_fd = master_fd
        logger.info(f"Started {' '.join(self.command)} (pid {self.process.pid}) in {self.cwd} at {self.cols}x{self.rows}")

    def read(self) -> Optional[bytes]:
        """Read what is available. b"" means EOF, None means nothing to read yet."""
        if self.master_fd is None:
            return b""
        try:
            return os.read(self.master_fd, READ_SIZE)
        except (BlockingIOError, InterruptedError):
            return None
        except OSError as e:
            # Linux reports a closed slave side as EIO
            if e.errno == errno.EIO:
                return b""
            raise StreamError(f"PTY read error: {e}") from e

    async def write(self, data: bytes):
        failures = 0
        view = memoryview(data)
        while view:
            if self.master_fd is None:
                raise StreamError("PTY is closed")
            try:
                written = os.write(self.master_fd, view)
                view = view[written:]
            except (BlockingIOError, InterruptedError):
                await asyncio.sleep(0.01)
            except OSError as e:
                failures += 1
                if failures > self.stream_retries:
                    raise StreamError(f"PTY write error: {e}") from e
                logger.debug(f"PTY write failed (attempt {failures}/{self.stream_retries}): {e}")
                await asyncio.sleep(0.1)

    async def send_text(self, text: str, submit: bool = True):
        """Type text, then press Enter after a short pause so the TUI sees a keypress"""
        await self.write(text.encode('utf-8'))
        if submit:
            await asyncio.sleep(SUBMIT_DELAY)
            await self.write(b'\r')

    def resize(self, rows: int, cols: int):
        if self.master_fd is None:
            return
        self.rows, self.cols = rows, cols
        # The kernel delivers SIGWINCH to the child's foreground group
        set_winsize(self.master_fd, rows, cols)

    async def wait(self) -> int:
        return await self.process.wait()

    async def terminate(self, grace_period: float = 5.0):
        """SIGTERM the process group, then SIGKILL after the grace period"""
        if self.process is None or self.process.returncode is not None:
            return

        self._signal_group(signal.SIGTERM)
        try:
            await asyncio.wait_for(self.process.wait(), timeout=grace_period)
            return
        except asyncio.TimeoutError:
            logger.warning(f"Process {self.process.pid} ignored SIGTERM for {grace_period}s, killing")

        self._signal_group(signal.SIGKILL)
        await self.process.wait()

    def _signal_group(self, sig: int):
        try:
            os.killpg(self.process.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            self.process.send_signal(sig)

    def close(self):
        if self.master_fd is not None:
            try:
                os.close(self.master_fd)
            except OSError:
                pass
            self.master_fd = None
