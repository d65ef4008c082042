"""
CLI for the task supervisor
"""

from .main_cli import main, run_session
from .interface import SessionInterface

__all__ = ['main', 'run_session', 'SessionInterface']
