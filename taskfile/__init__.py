"""
Task document tracking for the supervisor
"""

from .document import TaskLine, TaskDocument, TaskDocumentTracker, parse, normalize, is_complete

__all__ = ['TaskLine', 'TaskDocument', 'TaskDocumentTracker', 'parse', 'normalize', 'is_complete']
