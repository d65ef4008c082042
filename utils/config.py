"""
Configuration utilities for the task supervisor
"""

import json
import os
from pathlib import Path
from typing import Dict, Any, List, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError


DEFAULT_CONFIG_NAME = ".claudia.json"


class ClaudiaConfig(BaseModel):
    """Settings for one supervised session."""
    # Nudging
    max_continue: int = Field(default=50, ge=0, description="Maximum number of Continue injections per session")
    continue_text: str = Field(default="Continue", description="Text typed into the session to nudge the agent")
    idle_timeout: float = Field(default=60.0, gt=0, description="Seconds of silence before the agent counts as idle")
    idle_markers: List[str] = Field(
        default=[
            r"Would you like me to (continue|proceed)",
            r"Should I (continue|proceed)",
            r"Do you want me to (continue|proceed)",
            r"waiting for (user|your) (input|response)",
        ],
        description="Regular expressions that mark the agent as waiting for input",
    )

    # Loop detection
    loop_window: int = Field(default=20, ge=2, description="Number of recent output chunks compared for repeats")
    loop_threshold: int = Field(default=3, ge=1, description="A chunk seen more often than this within the window is a loop")
    min_chunk_length: int = Field(default=10, ge=0, description="Normalized chunks shorter than this are not compared")

    # Usage limits
    limit_patterns: List[str] = Field(
        default=[
            r"usage limit reached",
            r"you(?:'|\u2019)ve hit your (usage )?limit",
            r"you have hit your (usage )?limit",
            r"rate limit (reached|exceeded)",
            r"limit will reset",
            r"\d+-hour limit reached",
            r"usage limit\|\d{9,}",
        ],
        description="Regular expressions that identify a usage-limit message",
    )
    default_backoff: float = Field(default=3600.0, gt=0, description="Seconds to wait when a limit message has no reset time")
    countdown_interval: float = Field(default=30.0, gt=0, description="Seconds between countdown refreshes")

    # Process handling
    agent_command: str = Field(default="claude", description="Agent executable, resolved through PATH")
    agent_args: List[str] = Field(default=["--dangerously-skip-permissions"], description="Fixed launch arguments")
    startup_delay: float = Field(default=1.0, ge=0, description="Seconds to let the agent start before typing")
    grace_period: float = Field(default=5.0, ge=0, description="Seconds to wait after SIGTERM before SIGKILL")
    terminal_width: int = Field(default=120, gt=0, description="Fallback PTY width")
    terminal_height: int = Field(default=40, gt=0, description="Fallback PTY height")
    stream_retries: int = Field(default=3, ge=0, description="Retries for transient terminal read/write errors")

    # Task document
    document_read_retries: int = Field(default=3, ge=0, description="Retries for re-reading the task file")
    document_retry_delay: float = Field(default=0.5, ge=0, description="Seconds between task file read retries")

    # Output
    log_level: str = Field(default="WARNING", description="Log level for the supervisor logger")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")
    report_file: Optional[str] = Field(default=None, description="Optional JSON session report path")


def load_config(config_file: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> ClaudiaConfig:
    """Load configuration from defaults, a JSON file and CLAUDIA_* environment variables"""
    file_config: Dict[str, Any] = {}

    if config_file:
        config_path = Path(config_file)
        if config_path.exists():
            try:
                with open(config_path, 'r', encoding='utf-8') as f:
                    file_config = json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                raise ConfigError(f"Could not load config file {config_file}: {e}") from e
            if not isinstance(file_config, dict):
                raise ConfigError(f"Config file {config_file} must contain a JSON object")

    merged = merge_configs(file_config, get_env_config(), overrides or {})

    try:
        return ClaudiaConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def default_config_path(task_file: Path) -> Path:
    """Config file looked up beside the task file"""
    return task_file.resolve().parent / DEFAULT_CONFIG_NAME


def get_env_config() -> Dict[str, Any]:
    """Get configuration from environment variables"""
    env_config = {}

    # Map environment variables to config keys
    env_mapping = {
        "CLAUDIA_MAX_CONTINUE": "max_continue",
        "CLAUDIA_IDLE_TIMEOUT": "idle_timeout",
        "CLAUDIA_LOOP_WINDOW": "loop_window",
        "CLAUDIA_LOOP_THRESHOLD": "loop_threshold",
        "CLAUDIA_DEFAULT_BACKOFF": "default_backoff",
        "CLAUDIA_AGENT_COMMAND": "agent_command",
        "CLAUDIA_GRACE_PERIOD": "grace_period",
        "CLAUDIA_LOG_LEVEL": "log_level",
        "CLAUDIA_LOG_FILE": "log_file",
        "CLAUDIA_REPORT_FILE": "report_file",
    }

    for env_var, config_key in env_mapping.items():
        value = os.getenv(env_var)
        if value is not None:
            # pydantic coerces numeric strings during validation
            env_config[config_key] = value

    return env_config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple configuration dictionaries"""
    merged = {}

    for config in configs:
        if config:
            merged.update(config)

    return merged
