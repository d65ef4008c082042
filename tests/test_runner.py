"""
End-to-end tests for the session runner against a scripted fake agent
"""

import asyncio
import io
import json
import os
import sys
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from agents.claude_code_agent import ClaudeCodeAgent
from monitor.events import Idle, Interrupted, Started
from session.runner import SessionRunner
from session.state import AbortReason, Phase, SendInput
from taskfile.document import TaskDocumentTracker
from utils.errors import ExitCode, SpawnError, StreamError

PERMISSION_SCREEN = (
    "WARNING: Claude Code running in Bypass Permissions mode\r\n"
    "❯ 1. No, exit\r\n"
    "  2. Yes, I accept\r\n"
)


class FakeAgentProcess:
    """PTY process stand-in backed by a pipe.

    ``on_send(process, text)`` scripts the agent's reaction to each
    submitted input; output is produced with ``emit``.
    """

    def __init__(self, on_send=None, spawn_error=None, fail_reads=False):
        self.on_send = on_send
        self.spawn_error = spawn_error
        self.fail_reads = fail_reads

        self.read_fd, self.write_fd = os.pipe()
        os.set_blocking(self.read_fd, False)
        self.master_fd = None
        self.pid = 4242
        self.returncode = None
        self.exited = None

        self.sent = []
        self.written = []
        self.terminated = False
        self.closed = False

    async def spawn(self):
        if self.spawn_error:
            raise self.spawn_error
        self.exited = asyncio.Event()
        self.master_fd = self.read_fd

    def emit(self, text):
        os.write(self.write_fd, text.encode("utf-8"))

    def exit(self, code=0):
        self.returncode = code
        self.exited.set()

    def read(self):
        if self.fail_reads:
            raise StreamError("PTY read error: [Errno 5] Input/output error")
        try:
            return os.read(self.read_fd, 4096)
        except BlockingIOError:
            return None

    async def write(self, data):
        self.written.append(data)

    async def send_text(self, text, submit=True):
        self.sent.append(text)
        if self.on_send:
            self.on_send(self, text)

    def resize(self, rows, cols):
        pass

    async def wait(self):
        await self.exited.wait()
        return self.returncode

    async def terminate(self, grace_period=5.0):
        self.terminated = True
        if self.exited is not None and not self.exited.is_set():
            self.exit(-15)

    def close(self):
        if not self.closed:
            os.close(self.read_fd)
            os.close(self.write_fd)
            self.closed = True


def check_next(path: Path) -> int:
    """Check the first open task; return how many are checked now"""
    text = path.read_text(encoding="utf-8").replace("[ ]", "[x]", 1)
    path.write_text(text, encoding="utf-8")
    return text.count("[x]")


def check_all(path: Path):
    path.write_text(path.read_text(encoding="utf-8").replace("[ ]", "[x]"), encoding="utf-8")


def make_runner(task_file, config, process):
    tracker = TaskDocumentTracker(task_file, retry_delay=0)
    tracker.normalize_file()
    agent = ClaudeCodeAgent(working_directory=str(task_file.parent))
    interface = MagicMock()
    runner = SessionRunner(
        agent,
        task_file,
        tracker,
        config,
        interface,
        process=process,
        output=io.BytesIO(),
        stdin=io.StringIO(),
        handle_signals=False,
    )
    return runner, interface


async def run_session(runner, timeout=10):
    return await asyncio.wait_for(runner.run(), timeout=timeout)


@pytest.mark.asyncio
async def test_three_tasks_completed_with_continues(task_file, fast_config):
    """Test a full session: normalize, nudge twice, finish on the next idle check"""

    def agent(process, text):
        done = check_next(task_file)
        process.emit(f"Finished task {done}\r\n")

    process = FakeAgentProcess(on_send=agent)
    runner, interface = make_runner(task_file, fast_config, process)
    assert task_file.read_text(encoding="utf-8").count("[ ]") == 3

    exit_code = await run_session(runner)

    assert exit_code == ExitCode.SUCCESS
    assert runner.state.phase == Phase.COMPLETED
    assert process.sent == [runner.agent.initial_prompt(task_file), "Continue", "Continue"]
    assert runner.state.continue_count == 2
    assert task_file.read_text(encoding="utf-8").count("[x]") == 3
    assert b"Finished task 3" in runner.output.getvalue()
    assert process.terminated and process.closed
    interface.summary.assert_called_once()


@pytest.mark.asyncio
async def test_repeated_output_sends_one_continue(task_file, fast_config):
    """Test that 5 identical chunks with R=3 and W=10 produce one Continue"""
    config = fast_config.model_copy(update={'loop_window': 10, 'loop_threshold': 3, 'idle_timeout': 0.5})

    def agent(process, text):
        if text == "Continue":
            check_all(task_file)
            return
        loop = asyncio.get_running_loop()
        for i in range(1, 6):
            loop.call_later(0.05 * i, process.emit, "Retrying the failing build step now\r\n")

    process = FakeAgentProcess(on_send=agent)
    runner, _ = make_runner(task_file, config, process)

    exit_code = await run_session(runner)

    assert exit_code == ExitCode.SUCCESS
    assert runner.state.loops_detected == 1
    assert runner.state.continue_count == 1
    assert process.sent.count("Continue") == 1


@pytest.mark.asyncio
async def test_usage_limit_countdown_then_single_resume(task_file, fast_config):
    """Test waiting out a usage limit and resuming exactly once"""

    def agent(process, text):
        if text == "Continue":
            check_all(task_file)
            process.emit("Picking up where I left off\r\n")
        else:
            process.emit(f"Claude AI usage limit reached|{int(time.time()) + 2}\r\n")

    process = FakeAgentProcess(on_send=agent)
    runner, interface = make_runner(task_file, fast_config, process)

    exit_code = await run_session(runner)

    assert exit_code == ExitCode.SUCCESS
    assert process.sent == [runner.agent.initial_prompt(task_file), "Continue"]
    assert runner.state.limit_waits == 1
    assert runner.state.continue_count == 0
    assert interface.countdown_tick.called


@pytest.mark.asyncio
async def test_permission_prompt_accepted(task_file, fast_config):
    """Test that the bypass-permissions prompt is answered with 2"""

    def agent(process, text):
        if text == "2":
            check_all(task_file)
            process.emit("Thanks, continuing\r\n")
        else:
            process.emit(PERMISSION_SCREEN)

    process = FakeAgentProcess(on_send=agent)
    runner, _ = make_runner(task_file, fast_config, process)

    exit_code = await run_session(runner)

    assert exit_code == ExitCode.SUCCESS
    assert process.sent[1] == "2"
    assert runner.state.permission_prompts_accepted == 1
    assert runner.state.continue_count == 0


@pytest.mark.asyncio
async def test_interrupt_terminates_child(task_file, fast_config):
    """Test that an interrupt stops the session with exit 130"""
    holder = {}

    def agent(process, text):
        holder['runner'].queue.put_nowait(Interrupted(source="keyboard"))

    process = FakeAgentProcess(on_send=agent)
    runner, _ = make_runner(task_file, fast_config, process)
    holder['runner'] = runner

    exit_code = await run_session(runner)

    assert exit_code == ExitCode.USER_INTERRUPTED
    assert runner.state.phase == Phase.USER_INTERRUPTED
    assert process.terminated is True


@pytest.mark.asyncio
async def test_agent_exiting_early_is_an_error(task_file, fast_config):
    """Test that the agent quitting with open tasks aborts"""
    process = FakeAgentProcess(on_send=lambda process, text: process.exit(1))
    runner, _ = make_runner(task_file, fast_config, process)

    exit_code = await run_session(runner)

    assert exit_code == ExitCode.RUNTIME_ERROR
    assert runner.state.abort_reason == AbortReason.AGENT_EXITED


@pytest.mark.asyncio
async def test_spawn_failure(task_file, fast_config):
    """Test that a missing agent binary exits with the spawn code"""
    process = FakeAgentProcess(spawn_error=SpawnError("claude command not found"))
    runner, interface = make_runner(task_file, fast_config, process)

    exit_code = await run_session(runner)

    assert exit_code == ExitCode.SPAWN_ERROR
    assert runner.state.abort_reason == AbortReason.SPAWN_ERROR
    interface.summary.assert_called_once()
    process.close()


@pytest.mark.asyncio
async def test_persistent_read_errors_abort(task_file, fast_config):
    """Test that read errors beyond the retry count end the session"""
    process = FakeAgentProcess(fail_reads=True)
    process.emit("data that can never be read")
    runner, _ = make_runner(task_file, fast_config, process)

    exit_code = await run_session(runner)

    assert exit_code == ExitCode.RUNTIME_ERROR
    assert runner.state.abort_reason == AbortReason.STREAM_ERROR


@pytest.mark.asyncio
async def test_report_written(task_file, fast_config, tmp_path):
    """Test the JSON session report"""
    report_file = tmp_path / "reports" / "session.json"
    config = fast_config.model_copy(update={'report_file': str(report_file)})
    process = FakeAgentProcess(on_send=lambda process, text: check_all(task_file))
    runner, _ = make_runner(task_file, config, process)

    exit_code = await run_session(runner)

    assert exit_code == ExitCode.SUCCESS
    report = json.loads(report_file.read_text(encoding="utf-8"))
    assert report['final_state'] == "completed"
    assert report['exit_code'] == 0
    assert report['progress'] == {'tasks_completed': 3, 'tasks_total': 3}
    assert report['command'] == "claude --dangerously-skip-permissions"
    assert report['agent'] == "claude_coder"


@pytest.mark.asyncio
async def test_task_file_retries_do_not_block_the_loop(task_file, fast_config):
    """Test that a slow task file re-read leaves the event loop serving other work"""
    process = FakeAgentProcess()
    runner, _ = make_runner(task_file, fast_config, process)
    runner.loop = asyncio.get_running_loop()
    runner.controller.handle(Started(pid=process.pid))

    def slow_check():
        time.sleep(0.3)
        return False

    runner.tracker.is_complete = slow_check
    ticks = []

    async def ticker():
        while True:
            ticks.append(time.monotonic())
            await asyncio.sleep(0.01)

    task = asyncio.create_task(ticker())
    try:
        actions = await runner._decide(Idle())
    finally:
        task.cancel()
        process.close()

    assert [action.text for action in actions if isinstance(action, SendInput)] == ["Continue"]
    assert len(ticks) >= 5


@pytest.mark.asyncio
async def test_nudge_text_comes_from_the_agent(task_file, fast_config):
    """Test that the agent's own continue text is what gets typed"""
    def on_send(process, text):
        if text == "Keep going":
            check_all(task_file)

    process = FakeAgentProcess(on_send=on_send)
    tracker = TaskDocumentTracker(task_file, retry_delay=0)
    tracker.normalize_file()
    agent = ClaudeCodeAgent(working_directory=str(task_file.parent), continue_text="Keep going")
    runner = SessionRunner(
        agent,
        task_file,
        tracker,
        fast_config,
        MagicMock(),
        process=process,
        output=io.BytesIO(),
        stdin=io.StringIO(),
        handle_signals=False,
    )

    exit_code = await run_session(runner)

    assert exit_code == ExitCode.SUCCESS
    assert process.sent[1:] == ["Keep going"]
