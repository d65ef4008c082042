"""
Main CLI for the task supervisor
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from agents.claude_code_agent import ClaudeCodeAgent
from session.runner import SessionRunner
from taskfile.document import TaskDocumentTracker, is_complete
from utils.config import default_config_path, load_config
from utils.errors import ClaudiaError, DocumentReadError, ExitCode
from utils.logging import setup_logging

from .interface import SessionInterface

__version__ = "0.3.0"

logger = logging.getLogger(__name__)


def _stdin_is_tty() -> bool:
    try:
        return sys.stdin.isatty()
    except (AttributeError, ValueError):
        return False


def run_session(task_file: Path, config_file: Optional[str], debug: bool, interface: SessionInterface) -> ExitCode:
    """Prepare the task file and run one supervised session"""
    overrides = {'log_level': 'DEBUG'} if debug else None
    config = load_config(config_file or str(default_config_path(task_file)), overrides)
    setup_logging(config.log_level, config.log_file)

    tracker = TaskDocumentTracker(
        task_file,
        read_retries=config.document_read_retries,
        retry_delay=config.document_retry_delay,
    )
    document, changed = tracker.normalize_file()
    if changed:
        interface.notify(f"Added missing checkboxes to {task_file.name}")

    if not document.items:
        if not _stdin_is_tty() or not interface.confirm_empty(task_file):
            raise DocumentReadError(f"{task_file} contains no list items to work on")
    elif is_complete(document):
        interface.notify("All tasks are already checked. Nothing to do.")
        return ExitCode.SUCCESS

    agent = ClaudeCodeAgent.for_task_file(task_file, config)
    interface.banner(task_file.resolve(), ' '.join(agent.build_command()), document.progress(), config.max_continue)

    runner = SessionRunner(agent, task_file, tracker, config, interface)
    return asyncio.run(runner.run())


@click.command(context_settings={'help_option_names': ['-h', '--help']})
@click.version_option(__version__, '-V', '--version', prog_name='claudia')
@click.option('--debug', '-d', is_flag=True, help='Enable debug logging')
@click.option('--config', '-c', 'config_file', default=None, type=click.Path(exists=True, dir_okay=False),
              help='JSON config file (default: .claudia.json beside the task file)')
@click.argument('task_file', type=click.Path(path_type=Path))
def main(task_file, debug, config_file):
    """Keep Claude Code working until every checkbox in TASK_FILE is checked"""
    interface = SessionInterface(Console(stderr=True))

    try:
        exit_code = run_session(task_file, config_file, debug, interface)
    except ClaudiaError as e:
        logger.debug("Session failed", exc_info=True)
        interface.error(str(e))
        sys.exit(int(e.exit_code))

    sys.exit(int(exit_code))


if __name__ == '__main__':
    main()
