"""
Output monitoring: classifier, loop detector and usage-limit handling
"""

from .classifier import OutputClassifier, PatternMatcher
from .loop_detector import LoopDetector, normalize_chunk
from .usage_limit import UsageLimitInfo, UsageLimitTimer, detect_usage_limit, parse_reset_time
from .events import (
    Output,
    Idle,
    UsageLimitHit,
    LoopDetected,
    PermissionPrompt,
    Started,
    LimitExpired,
    UserInput,
    Interrupted,
    ProcessExited,
    StreamFailed,
)

__all__ = [
    'OutputClassifier',
    'PatternMatcher',
    'LoopDetector',
    'normalize_chunk',
    'UsageLimitInfo',
    'UsageLimitTimer',
    'detect_usage_limit',
    'parse_reset_time',
    'Output',
    'Idle',
    'UsageLimitHit',
    'LoopDetected',
    'PermissionPrompt',
    'Started',
    'LimitExpired',
    'UserInput',
    'Interrupted',
    'ProcessExited',
    'StreamFailed',
]
