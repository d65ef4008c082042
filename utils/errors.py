"""
Error types and process exit codes for the task supervisor
"""

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes"""
    SUCCESS = 0
    RUNTIME_ERROR = 1
    DOCUMENT_ERROR = 3
    SPAWN_ERROR = 4
    MAX_CONTINUE_EXCEEDED = 5
    USER_INTERRUPTED = 130


class ClaudiaError(Exception):
    """Base class for errors that end a session with a diagnostic"""

    exit_code = ExitCode.RUNTIME_ERROR


class DocumentReadError(ClaudiaError):
    """Task file is missing, unreadable or cannot be written back"""

    exit_code = ExitCode.DOCUMENT_ERROR


class SpawnError(ClaudiaError):
    """Agent binary not found or failed to launch"""

    exit_code = ExitCode.SPAWN_ERROR


class StreamError(ClaudiaError):
    """Reading from or writing to the session terminal failed"""

    exit_code = ExitCode.RUNTIME_ERROR


class MaxContinueExceeded(ClaudiaError):
    """Continue budget exhausted while tasks remain unchecked"""

    exit_code = ExitCode.MAX_CONTINUE_EXCEEDED


class ConfigError(ClaudiaError):
    """Invalid configuration file or environment override"""

    exit_code = ExitCode.RUNTIME_ERROR
