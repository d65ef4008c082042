"""
Shared fixtures for the supervisor tests
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from utils.config import ClaudiaConfig


@pytest.fixture
def task_file(tmp_path):
    """Three unchecked tasks, written without checkboxes"""
    path = tmp_path / "TODO.md"
    path.write_text(
        "# Release checklist\n"
        "\n"
        "- Write the changelog\n"
        "- Bump the version\n"
        "- Tag the release\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def fast_config():
    """Session settings with short timers for end-to-end runs"""
    return ClaudiaConfig(
        idle_timeout=0.3,
        startup_delay=0,
        grace_period=0.1,
        countdown_interval=0.2,
        document_retry_delay=0,
    )
