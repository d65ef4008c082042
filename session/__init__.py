"""
Supervised session: state, controller and the asyncio runner
"""

from .state import Phase, AbortReason, SessionState
from .controller import SessionController
from .runner import SessionRunner

__all__ = ['Phase', 'AbortReason', 'SessionState', 'SessionController', 'SessionRunner']
