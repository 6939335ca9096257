"""
In-process registry of crawl jobs.

One JobManager per process owns the shared clients and runs every job as an
asyncio task on the caller's event loop.
"""

import asyncio
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

from config import CrawlSettings
from wikidata_radius_dump.clients.query_client import QueryClient
from wikidata_radius_dump.clients.search_client import InstanceEnumerator
from wikidata_radius_dump.crawl.models import CrawlConfig, JobRecord, JobStatus, ProgressSnapshot, utcnow
from wikidata_radius_dump.crawl.orchestrator import DumpOrchestrator
from wikidata_radius_dump.data.serializer import TurtleConverter
from wikidata_radius_dump.data.storage import DumpStorage, OUTPUT_FORMATS
from wikidata_radius_dump.utils.errors import JobAbortedError, ValidationError
from wikidata_radius_dump.utils.logging import get_structured_logger


class JobManager:
    """Starts, tracks and aborts crawl jobs."""

    def __init__(self,
                 query_client: QueryClient,
                 enumerator: InstanceEnumerator,
                 storage: Optional[DumpStorage] = None,
                 settings: Optional[CrawlSettings] = None,
                 converter: Optional[TurtleConverter] = None):
        self.query_client = query_client
        self.enumerator = enumerator
        self.settings = settings or CrawlSettings()
        self.storage = storage or DumpStorage(self.settings.dumps_dir)
        self.converter = converter or TurtleConverter()

        self._orchestrators: Dict[str, DumpOrchestrator] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self.logger = get_structured_logger(__name__)

    def start_crawl(self, config: CrawlConfig) -> str:
        """
        Schedule a crawl on the running event loop.

        Returns:
            The new job id; the job runs in the background
        """
        orchestrator = DumpOrchestrator(
            config=config,
            query_client=self.query_client,
            enumerator=self.enumerator,
            storage=self.storage,
            settings=self.settings,
            converter=self.converter,
        )
        job_id = orchestrator.job.job_id

        self._orchestrators[job_id] = orchestrator
        task = asyncio.get_running_loop().create_task(orchestrator.execute(), name=f"crawl-{job_id}")
        task.add_done_callback(lambda t: self._on_job_done(job_id, t))
        self._tasks[job_id] = task

        self.logger.info("job_started", job_id=job_id, class_id=config.class_id,
                         radius=config.radius, max_instances=config.max_instances)
        return job_id

    def _on_job_done(self, job_id: str, task: asyncio.Task) -> None:
        if task.cancelled():
            self.logger.warning("job_cancelled", job_id=job_id)
            return

        error = task.exception()
        if error is None:
            self.logger.info("job_completed", job_id=job_id)
        elif isinstance(error, JobAbortedError):
            self.logger.info("job_aborted", job_id=job_id)
        else:
            self.logger.error("job_failed", job_id=job_id,
                              error_type=type(error).__name__, error=str(error))

    def _require(self, job_id: str) -> DumpOrchestrator:
        orchestrator = self._orchestrators.get(job_id)
        if orchestrator is None:
            raise ValidationError("Job not found", {"job_id": job_id})
        return orchestrator

    def subscribe_progress(self, job_id: str,
                           listener: Callable[[ProgressSnapshot], None]) -> Callable[[], None]:
        """
        Register a progress listener for a job.

        The listener immediately receives the latest snapshot, then every
        subsequent one. Returns a callable that unsubscribes it.
        """
        tracker = self._require(job_id).tracker
        unsubscribe = tracker.subscribe(listener)
        listener(tracker.snapshot)
        return unsubscribe

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        """Return a copy of the job record, or None for an unknown id."""
        orchestrator = self._orchestrators.get(job_id)
        if orchestrator is None:
            return None
        return _copy_record(orchestrator.job)

    def list_jobs(self) -> List[JobRecord]:
        return [_copy_record(o.job) for o in self._orchestrators.values()]

    def abort(self, job_id: str) -> bool:
        """
        Request a running job to stop.

        Returns:
            True if the request was delivered, False for unknown or finished jobs
        """
        orchestrator = self._orchestrators.get(job_id)
        if orchestrator is None or orchestrator.job.status.is_terminal:
            return False

        orchestrator.abort()
        self.logger.info("job_abort_requested", job_id=job_id)
        return True

    async def wait(self, job_id: str) -> JobRecord:
        """Wait for a job to finish (in any terminal state) and return its record."""
        self._require(job_id)
        task = self._tasks[job_id]
        # Failures are already recorded on the job record
        await asyncio.gather(task, return_exceptions=True)
        return self.get_job(job_id)

    def get_output_file(self, job_id: str, fmt: str) -> Optional[Path]:
        """
        Path of a completed job's artifact.

        Returns:
            The path, or None while the job is not completed

        Raises:
            ValidationError: For an unknown job or format
        """
        if fmt not in OUTPUT_FORMATS:
            raise ValidationError('Invalid format. Use "nt" or "ttl"', {"format": fmt})

        job = self._require(job_id).job
        if job.status is not JobStatus.COMPLETED:
            return None

        path = job.output_files.nt if fmt == "nt" else job.output_files.ttl
        return Path(path) if path else None

    def cleanup_completed_jobs(self, older_than_seconds: float = 3600) -> int:
        """
        Forget finished jobs that ended more than ``older_than_seconds`` ago.

        Dump directories stay on disk. Returns the number of jobs removed.
        """
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        expired = [
            job_id for job_id, orchestrator in self._orchestrators.items()
            if orchestrator.job.status.is_terminal
            and orchestrator.job.ended_at is not None
            and orchestrator.job.ended_at < cutoff
        ]

        for job_id in expired:
            del self._orchestrators[job_id]
            self._tasks.pop(job_id, None)

        if expired:
            self.logger.info("jobs_cleaned_up", count=len(expired))
        return len(expired)


def _copy_record(job: JobRecord) -> JobRecord:
    return replace(job, output_files=replace(job.output_files))
