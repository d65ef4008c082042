"""
Utility modules for the task supervisor
"""

from .logging import setup_logging
from .config import ClaudiaConfig, load_config, default_config_path
from .errors import (
    ExitCode,
    ClaudiaError,
    DocumentReadError,
    SpawnError,
    StreamError,
    MaxContinueExceeded,
    ConfigError,
)

__all__ = [
    'setup_logging',
    'ClaudiaConfig',
    'load_config',
    'default_config_path',
    'ExitCode',
    'ClaudiaError',
    'DocumentReadError',
    'SpawnError',
    'StreamError',
    'MaxContinueExceeded',
    'ConfigError',
]
