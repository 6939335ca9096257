"""
Crawl job models, progress publication and the radius crawl orchestrator.
"""

from .models import CrawlConfig, JobRecord, JobStatus, JobPhase, ProgressSnapshot
from .progress import ProgressTracker
from .orchestrator import DumpOrchestrator

__all__ = [
    'CrawlConfig',
    'JobRecord',
    'JobStatus',
    'JobPhase',
    'ProgressSnapshot',
    'ProgressTracker',
    'DumpOrchestrator'
]
