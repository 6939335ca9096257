"""
Progress publication for crawl jobs.
"""

from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional

from wikidata_radius_dump.crawl.models import ProgressSnapshot, InitializingProgress, utcnow
from wikidata_radius_dump.utils.logging import get_business_logger


logger = get_business_logger('jobs')

ProgressListener = Callable[[ProgressSnapshot], None]

# Display-only percentage bands per phase
FETCH_BAND = (20.0, 90.0)
ENRICH_BAND = (90.0, 97.0)


def format_eta(seconds: float) -> str:
    """Render a duration as a short human string (e.g. '42s', '3m', '2h 5m')."""
    if seconds < 60:
        return f"{round(seconds)}s"
    if seconds < 3600:
        return f"{round(seconds / 60)}m"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h {round((seconds % 3600) / 60)}m"
    return f"{int(seconds // 86400)}d {round((seconds % 86400) / 3600)}h"


def calculate_eta(done: int, total: int, started_at: datetime,
                  now: Optional[datetime] = None) -> Optional[str]:
    """Linear ETA from the rate observed since ``started_at``."""
    if done <= 0 or total <= 0 or done >= total:
        return None

    elapsed = ((now or utcnow()) - started_at).total_seconds()
    if elapsed <= 0:
        return None

    remaining = (total - done) * (elapsed / done)
    return format_eta(remaining)


def fetch_percent(hop: int, radius: int, batches_done: int, batch_count: int) -> float:
    """Percentage inside the fetch band: hops share the band equally."""
    low, high = FETCH_BAND
    within_hop = batches_done / batch_count if batch_count else 1.0
    return low + (high - low) * ((hop - 1) + within_hop) / radius


def enrich_percent(batches_done: int, batch_count: int) -> float:
    low, high = ENRICH_BAND
    within = batches_done / batch_count if batch_count else 1.0
    return low + (high - low) * within


class ProgressTracker:
    """
    Holds the latest progress snapshot of a job and fans it out to listeners.

    Snapshots are immutable and swapped in whole, so a reader never observes a
    half-updated snapshot. ``percent`` never decreases across publications.
    """

    def __init__(self, initial: Optional[ProgressSnapshot] = None):
        self._snapshot: ProgressSnapshot = initial or InitializingProgress()
        self._listeners: List[ProgressListener] = []

    @property
    def snapshot(self) -> ProgressSnapshot:
        return self._snapshot

    def publish(self, snapshot: ProgressSnapshot) -> ProgressSnapshot:
        """Publish a snapshot and notify every listener; returns what was published."""
        if snapshot.percent < self._snapshot.percent:
            snapshot = replace(snapshot, percent=self._snapshot.percent)

        self._snapshot = snapshot

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Progress listener failed: {e}")

        return snapshot

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a listener; the returned callable unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
