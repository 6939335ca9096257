"""
Service layer: in-process job management.
"""

from .job_manager import JobManager

__all__ = [
    'JobManager'
]
