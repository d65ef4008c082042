"""
Pseudo-terminal process handling and interactive passthrough
"""

from .pty_process import PtyProcess, detect_terminal_size
from .passthrough import InteractivePassthrough

__all__ = ['PtyProcess', 'detect_terminal_size', 'InteractivePassthrough']
