"""
Tests for the PTY process capability against real short-lived commands
"""

import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from terminal.pty_process import PtyProcess, detect_terminal_size
from utils.errors import SpawnError


async def read_until_eof(process: PtyProcess, timeout: float = 5.0) -> bytes:
    output = b""
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        data = process.read()
        if data == b"":
            break
        if data:
            output += data
        else:
            await asyncio.sleep(0.01)
    return output


@pytest.mark.asyncio
async def test_missing_binary_is_spawn_error():
    """Test that an unknown command fails before a PTY is opened"""
    process = PtyProcess(["definitely-not-a-real-agent-binary"])
    with pytest.raises(SpawnError):
        await process.spawn()


@pytest.mark.asyncio
async def test_output_is_read_from_pty(tmp_path):
    """Test spawning in a directory and reading the child's terminal output"""
    process = PtyProcess(["sh", "-c", "pwd -P; printf 'hello from pty'"], cwd=str(tmp_path), rows=24, cols=80)
    await process.spawn()
    try:
        output = await read_until_eof(process)
        assert await process.wait() == 0
    finally:
        process.close()

    assert b"hello from pty" in output
    assert str(tmp_path.resolve()).encode() in output


@pytest.mark.asyncio
async def test_child_sees_terminal_size():
    """Test that the PTY window size reaches the child"""
    process = PtyProcess(["stty", "size"], rows=33, cols=101)
    await process.spawn()
    try:
        output = await read_until_eof(process)
        await process.wait()
    finally:
        process.close()

    assert b"33 101" in output


@pytest.mark.asyncio
async def test_send_text_submits_line():
    """Test that typed text followed by Enter reaches the child as a line"""
    process = PtyProcess(["sh", "-c", "read line; printf 'got:%s' \"$line\""])
    await process.spawn()
    try:
        await process.send_text("Continue")
        output = await read_until_eof(process)
        await process.wait()
    finally:
        process.close()

    assert b"got:Continue" in output


@pytest.mark.asyncio
async def test_terminate_stops_process_group():
    """Test SIGTERM delivery to a running child"""
    process = PtyProcess(["sleep", "30"])
    await process.spawn()
    try:
        await process.terminate(grace_period=2.0)
    finally:
        process.close()

    assert process.returncode is not None
    assert process.returncode != 0


def test_terminal_size_falls_back(monkeypatch):
    """Test the fallback chain when no stream is a terminal"""
    def no_terminal(fd):
        raise OSError("not a terminal")

    monkeypatch.setattr("terminal.pty_process.os.get_terminal_size", no_terminal)
    monkeypatch.setenv("COLUMNS", "132")
    monkeypatch.setenv("LINES", "50")
    assert detect_terminal_size(40, 120) == (50, 132)

    monkeypatch.delenv("COLUMNS")
    assert detect_terminal_size(40, 120) == (40, 120)
