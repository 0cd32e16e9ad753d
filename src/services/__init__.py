"""
Service functions used by the trigger processor.

This package contains configuration loading, participant selection, the
contact directory, S3 access, task text templates and the task sink.
"""

__all__ = ['contacts', 'participants', 's3', 'settings', 'task_sink', 'templates']
