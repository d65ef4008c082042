"""
Agent launch contracts for the task supervisor
"""

from .base_agent import BaseAgent
from .claude_code_agent import ClaudeCodeAgent

__all__ = [
    'BaseAgent',
    'ClaudeCodeAgent',
]
