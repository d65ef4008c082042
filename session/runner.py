"""
Session runner: drives one supervised agent session on an asyncio loop.

The runner owns every side effect. PTY output arrives through a reader
callback, keystrokes through the passthrough thread, and timers run as
tasks; each of them only posts events to one queue. A single consumer
hands the events to the controller and carries out the returned actions,
so injected text and user keystrokes are written by one coroutine only.
"""

import asyncio
import codecs
import json
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from agents.base_agent import BaseAgent
from monitor.classifier import OutputClassifier
from monitor.events import (
    Idle,
    Interrupted,
    LimitExpired,
    LoopDetected,
    ProcessExited,
    Started,
    StreamFailed,
    UserInput,
)
from monitor.usage_limit import UsageLimitTimer
from taskfile.document import TaskDocumentTracker
from terminal.passthrough import InteractivePassthrough
from terminal.pty_process import PtyProcess, detect_terminal_size
from utils.config import ClaudiaConfig
from utils.errors import DocumentReadError, ExitCode, SpawnError, StreamError

from .controller import SessionController
from .state import Notify, ResetClassifier, SendInput, StartCountdown, Terminate

logger = logging.getLogger(__name__)

# Events whose handling may re-read the task file, with retry pauses
DOCUMENT_EVENTS = (Idle, LoopDetected, LimitExpired, ProcessExited)


class SessionRunner:
    """Runs the agent in a PTY until the controller reaches a terminal phase"""

    def __init__(self,
                 agent: BaseAgent,
                 task_file: Path,
                 tracker: TaskDocumentTracker,
                 config: ClaudiaConfig,
                 interface,
                 process=None,
                 output=None,
                 stdin=None,
                 handle_signals: bool = True):
        self.agent = agent
        self.task_file = task_file
        self.tracker = tracker
        self.config = config
        self.interface = interface
        self.output = output if output is not None else sys.stdout.buffer
        self.stdin = stdin
        self.handle_signals = handle_signals

        self.process = process
        self.classifier = OutputClassifier(config)
        self.controller = SessionController(
            tracker,
            initial_prompt=agent.initial_prompt(task_file),
            continue_text=agent.continue_text,
            max_continue=config.max_continue,
            typing_timeout=config.idle_timeout,
        )
        self.decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.queue: Optional[asyncio.Queue] = None
        self.passthrough: Optional[InteractivePassthrough] = None
        self.countdown_task: Optional[asyncio.Task] = None
        self.tasks = []
        self.reader_fd: Optional[int] = None
        self.read_failures = 0
        self.signals_installed = []
        self.report_path: Optional[str] = None

    @property
    def state(self):
        return self.controller.state

    async def run(self) -> ExitCode:
        """Run the session and return its exit code"""
        self.loop = asyncio.get_running_loop()
        self.queue = asyncio.Queue()

        if self.process is None:
            rows, cols = detect_terminal_size(self.config.terminal_height, self.config.terminal_width)
            self.process = PtyProcess(
                self.agent.build_command(),
                cwd=self.agent.working_directory,
                rows=rows,
                cols=cols,
                stream_retries=self.config.stream_retries,
            )

        logger.info(f"Launching {self.agent.name} ({self.agent.agent_id}): {' '.join(self.agent.build_command())}")
        try:
            await self.process.spawn()
        except SpawnError as e:
            logger.error(f"Spawn failed: {e}")
            exit_code = await self._execute_all(self.controller.spawn_failed(e))
            self._finish_report()
            return exit_code

        exit_code = ExitCode.RUNTIME_ERROR
        try:
            self._start_io()
            exit_code = await self._consume()
        finally:
            await self._shutdown()
            self._finish_report()

        return exit_code

    # Producers

    def _post(self, event):
        self.queue.put_nowait(event)

    def _start_io(self):
        self.reader_fd = self.process.master_fd
        self.loop.add_reader(self.reader_fd, self._on_readable)

        if self.handle_signals:
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    self.loop.add_signal_handler(sig, self._post, Interrupted(source="signal"))
                    self.signals_installed.append(sig)
                except (NotImplementedError, RuntimeError, ValueError) as e:
                    logger.debug(f"Could not install handler for {sig}: {e}")

        self.passthrough = InteractivePassthrough(
            self.loop,
            on_input=lambda data: self._post(UserInput(data=data)),
            on_interrupt=lambda: self._post(Interrupted(source="keyboard")),
            on_resize=self._on_resize if self.handle_signals else None,
            stdin=self.stdin,
        )
        self.passthrough.start()

        self.tasks = [
            asyncio.create_task(self._announce_start(), name='startup'),
            asyncio.create_task(self._wait_for_exit(), name='process_wait'),
            asyncio.create_task(self._watch_silence(), name='silence_watchdog'),
        ]

    def _on_readable(self):
        try:
            data = self.process.read()
        except StreamError as e:
            self.read_failures += 1
            if self.read_failures > self.config.stream_retries:
                self._stop_reader()
                self._post(StreamFailed(error=str(e)))
            else:
                logger.debug(f"Transient read error ({self.read_failures}/{self.config.stream_retries}): {e}")
            return

        if data is None:
            return
        if not data:
            # EOF; the exit itself is reported by the process wait task
            self._stop_reader()
            return

        self.read_failures = 0
        self.output.write(data)
        self.output.flush()

        text = self.decoder.decode(data)
        if text:
            self._post(self.classifier.classify(text))

    def _stop_reader(self):
        if self.reader_fd is not None:
            self.loop.remove_reader(self.reader_fd)
            self.reader_fd = None

    def _on_resize(self):
        rows, cols = detect_terminal_size(self.config.terminal_height, self.config.terminal_width)
        try:
            self.process.resize(rows, cols)
            logger.debug(f"Resized session terminal to {cols}x{rows}")
        except OSError as e:
            logger.warning(f"Resize error: {e}")

    async def _announce_start(self):
        await asyncio.sleep(self.config.startup_delay)
        self._post(Started(pid=self.process.pid))

    async def _wait_for_exit(self):
        returncode = await self.process.wait()
        logger.info(f"Process completed with code {returncode}")
        self._post(ProcessExited(returncode=returncode))

    async def _watch_silence(self):
        while True:
            delay = self.classifier.seconds_until_idle()
            if delay <= 0:
                event = self.classifier.check_silence()
                if event is not None:
                    self._post(event)
                delay = self.classifier.seconds_until_idle() or self.config.idle_timeout
            await asyncio.sleep(delay)

    def _start_countdown(self, info):
        self._cancel_countdown()
        timer = UsageLimitTimer(info.reset_at, interval=self.config.countdown_interval)

        def on_tick(remaining: float):
            self.interface.countdown_tick(remaining, info.reset_at)

        def on_expire():
            self.interface.countdown_stop()
            self._post(LimitExpired(reset_at=info.reset_at))

        self.countdown_task = asyncio.create_task(timer.run(on_tick, on_expire), name='countdown')

    def _cancel_countdown(self):
        if self.countdown_task is not None and not self.countdown_task.done():
            self.countdown_task.cancel()
        self.countdown_task = None
        self.interface.countdown_stop()

    # Consumer

    async def _consume(self) -> ExitCode:
        while True:
            event = await self.queue.get()
            if isinstance(event, UserInput):
                self.classifier.touch()
            logger.debug(f"Event: {event!r}")

            exit_code = await self._execute_all(await self._decide(event))
            if exit_code is not None:
                return exit_code

    async def _decide(self, event):
        """Controller actions for one event; task file reads run off the loop thread"""
        if isinstance(event, DOCUMENT_EVENTS):
            return await self.loop.run_in_executor(None, self.controller.handle, event)
        return self.controller.handle(event)

    async def _execute_all(self, actions) -> Optional[ExitCode]:
        for action in actions:
            try:
                exit_code = await self._execute(action)
            except StreamError as e:
                # Remaining actions are dropped; the controller decides on the failure
                self._post(StreamFailed(error=str(e)))
                return None
            if exit_code is not None:
                return exit_code
        return None

    async def _execute(self, action) -> Optional[ExitCode]:
        if isinstance(action, SendInput):
            if action.data:
                await self.process.write(action.data)
            else:
                logger.info(f"Sending {action.text!r} ({action.reason})")
                await self.process.send_text(action.text, submit=action.submit)
        elif isinstance(action, ResetClassifier):
            self.classifier.reset()
        elif isinstance(action, Notify):
            self.interface.notify(action.message, action.level)
        elif isinstance(action, StartCountdown):
            self._start_countdown(action.info)
        elif isinstance(action, Terminate):
            return action.exit_code
        else:
            logger.warning(f"Unknown action {action!r}")
        return None

    # Shutdown

    async def _shutdown(self):
        self._stop_reader()

        if self.passthrough is not None:
            self.passthrough.stop()

        for sig in self.signals_installed:
            self.loop.remove_signal_handler(sig)
        self.signals_installed = []

        self._cancel_countdown()
        for task in self.tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)

        try:
            await self.process.terminate(self.config.grace_period)
        finally:
            self.process.close()

    def _finish_report(self):
        try:
            progress = self.tracker.progress()
        except DocumentReadError:
            progress = (0, 0)

        if self.config.report_file:
            self.report_path = self.generate_report(self.config.report_file, progress)

        self.interface.summary(self.state, progress, self.report_path)

    def generate_report(self, report_file: str, progress) -> Optional[str]:
        """Write the JSON session report"""
        state = self.state
        done, total = progress
        report = {
            'task_file': str(self.task_file),
            'agent': self.agent.agent_id,
            'command': ' '.join(self.agent.build_command()),
            'start_time': datetime.fromtimestamp(state.started_at).isoformat(),
            'end_time': datetime.fromtimestamp(state.ended_at or state.started_at).isoformat(),
            'duration_seconds': state.duration,
            'final_state': state.phase.value,
            'abort_reason': state.abort_reason.value if state.abort_reason else None,
            'detail': state.detail,
            'exit_code': int(state.exit_code),
            'metrics': {
                'continues_sent': state.continue_count,
                'max_continue': state.max_continue,
                'limit_waits': state.limit_waits,
                'loops_detected': state.loops_detected,
                'permission_prompts_accepted': state.permission_prompts_accepted,
            },
            'progress': {
                'tasks_completed': done,
                'tasks_total': total,
            },
            'state_timeline': [
                {'time': t, 'state': s.value}
                for t, s in state.state_changes
            ],
        }

        try:
            path = Path(report_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(report, f, indent=2)
        except OSError as e:
            logger.error(f"Could not write report {report_file}: {e}")
            return None

        return str(path)
