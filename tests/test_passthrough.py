"""
Tests for the interactive keystroke relay
"""

import asyncio
import io
import os
import pty
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from terminal.passthrough import InteractivePassthrough


@pytest.mark.asyncio
async def test_keystrokes_forwarded_and_ctrl_c_interrupts():
    """Test raw keystroke relay from a terminal and Ctrl+C handling"""
    master, slave = pty.openpty()
    stdin = os.fdopen(slave, 'rb', buffering=0)
    loop = asyncio.get_running_loop()
    received = []
    interrupted = asyncio.Event()

    relay = InteractivePassthrough(loop, received.append, interrupted.set, stdin=stdin)
    relay.start()
    try:
        os.write(master, b"ls")
        for _ in range(200):
            if received:
                break
            await asyncio.sleep(0.01)

        os.write(master, b"\x03")
        await asyncio.wait_for(interrupted.wait(), timeout=2.0)
    finally:
        relay.stop()
        stdin.close()
        os.close(master)

    assert b"".join(received) == b"ls"
    assert relay.old_settings is None


@pytest.mark.asyncio
async def test_non_terminal_stdin_is_not_relayed():
    """Test that piped input starts no relay thread"""
    relay = InteractivePassthrough(asyncio.get_running_loop(), lambda data: None, lambda: None, stdin=io.StringIO())
    relay.start()
    assert relay.thread is None
    relay.stop()
