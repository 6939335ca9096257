"""
Data models for crawl jobs: configuration, phases, progress snapshots and
the job record.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional

from wikidata_radius_dump.queries.builders import ITEM_ID_PATTERN, LANGUAGE_PATTERN
from wikidata_radius_dump.utils.errors import ValidationError


MAX_RADIUS = 3
MAX_INSTANCES = 100000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobPhase(Enum):
    """Crawl phases, in execution order."""
    INITIALIZING = "initializing"
    EXPANDING_SUBCLASSES = "expanding-subclasses"
    ENUMERATING_INSTANCES = "enumerating-instances"
    ESTIMATING_TRIPLES = "estimating-triples"
    FETCHING_HOP = "fetching-hop"
    ENRICHING_PROPERTIES = "enriching-properties"
    CONVERTING_OUTPUT = "converting-output"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(Enum):
    """Job lifecycle status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.ABORTED)


@dataclass(frozen=True)
class CrawlConfig:
    """Immutable input of one crawl job."""
    class_id: str
    radius: int = 2
    max_instances: int = 10000
    language: str = "en"
    include_subclasses: bool = True
    include_property_metadata: bool = True

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.validate()

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ValidationError: If configuration is invalid
        """
        errors = []

        if not isinstance(self.class_id, str) or not ITEM_ID_PATTERN.fullmatch(self.class_id):
            errors.append("class_id must be a valid QID (e.g., Q3305213)")

        if not isinstance(self.radius, int) or not (1 <= self.radius <= MAX_RADIUS):
            errors.append(f"radius must be between 1 and {MAX_RADIUS}")

        if not isinstance(self.max_instances, int) or not (1 <= self.max_instances <= MAX_INSTANCES):
            errors.append(f"max_instances must be between 1 and {MAX_INSTANCES}")

        if (not isinstance(self.language, str) or not (2 <= len(self.language) <= 10)
                or not LANGUAGE_PATTERN.fullmatch(self.language)):
            errors.append("language must be a language tag of 2 to 10 characters")

        if errors:
            raise ValidationError(
                "Crawl configuration validation failed",
                {"errors": errors}
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlConfig":
        """Build a config from its JSON form (camelCase or snake_case keys)."""
        aliases = {
            "classQid": "class_id",
            "maxInstances": "max_instances",
            "includeSubclasses": "include_subclasses",
            "includePropertyMetadata": "include_property_metadata",
        }
        normalized = {aliases.get(key, key): value for key, value in data.items()}
        known = {"class_id", "radius", "max_instances", "language",
                 "include_subclasses", "include_property_metadata"}
        unknown = set(normalized) - known
        if unknown:
            raise ValidationError("Unknown crawl configuration keys", {"keys": sorted(unknown)})
        return cls(**normalized)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ProgressSnapshot:
    """
    Base of the per-phase progress variants.

    Every variant is a frozen dataclass carrying only the fields that mean
    something in its phase, plus ``percent`` (monotonic across a job) and an
    optional human readable ``message``.
    """

    phase: ClassVar[JobPhase]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        data["emitted_at"] = data["emitted_at"].isoformat()
        return data


@dataclass(frozen=True)
class InitializingProgress(ProgressSnapshot):
    phase: ClassVar[JobPhase] = JobPhase.INITIALIZING
    percent: float = 0.0
    message: Optional[str] = None
    emitted_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ExpandingSubclassesProgress(ProgressSnapshot):
    phase: ClassVar[JobPhase] = JobPhase.EXPANDING_SUBCLASSES
    class_id: str = ""
    classes_found: Optional[int] = None
    percent: float = 0.0
    message: Optional[str] = None
    emitted_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class EnumeratingInstancesProgress(ProgressSnapshot):
    phase: ClassVar[JobPhase] = JobPhase.ENUMERATING_INSTANCES
    class_count: int = 0
    items_seen: int = 0
    percent: float = 0.0
    message: Optional[str] = None
    emitted_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class EstimatingTriplesProgress(ProgressSnapshot):
    phase: ClassVar[JobPhase] = JobPhase.ESTIMATING_TRIPLES
    total_items: int = 0
    estimated_triples: Optional[int] = None
    percent: float = 0.0
    message: Optional[str] = None
    emitted_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class FetchingHopProgress(ProgressSnapshot):
    phase: ClassVar[JobPhase] = JobPhase.FETCHING_HOP
    hop: int = 1
    radius: int = 1
    batch_index: int = 0
    batch_count: int = 0
    items_seen: int = 0
    triples_written: int = 0
    total_items: int = 0
    estimated_triples: int = 0
    eta: Optional[str] = None
    percent: float = 0.0
    message: Optional[str] = None
    emitted_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class EnrichingPropertiesProgress(ProgressSnapshot):
    phase: ClassVar[JobPhase] = JobPhase.ENRICHING_PROPERTIES
    property_count: int = 0
    batch_index: int = 0
    batch_count: int = 0
    failed_batches: int = 0
    triples_written: int = 0
    percent: float = 0.0
    message: Optional[str] = None
    emitted_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ConvertingOutputProgress(ProgressSnapshot):
    phase: ClassVar[JobPhase] = JobPhase.CONVERTING_OUTPUT
    triples_written: int = 0
    percent: float = 0.0
    message: Optional[str] = None
    emitted_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class CompletedProgress(ProgressSnapshot):
    phase: ClassVar[JobPhase] = JobPhase.COMPLETED
    items_seen: int = 0
    triples_written: int = 0
    statements: int = 0
    skipped_lines: int = 0
    percent: float = 100.0
    message: Optional[str] = None
    emitted_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class FailedProgress(ProgressSnapshot):
    phase: ClassVar[JobPhase] = JobPhase.FAILED
    error: str = ""
    aborted: bool = False
    failed_in: Optional[str] = None
    percent: float = 0.0
    message: Optional[str] = None
    emitted_at: datetime = field(default_factory=utcnow)


@dataclass
class OutputFiles:
    """Artifacts of a completed job."""
    nt: Optional[str] = None
    ttl: Optional[str] = None


@dataclass
class JobRecord:
    """
    State of one crawl job.

    Only the job's orchestrator writes to its record; readers get copies
    from JobManager.get_job().
    """
    job_id: str
    config: CrawlConfig
    status: JobStatus = JobStatus.PENDING
    phase: JobPhase = JobPhase.INITIALIZING
    progress: ProgressSnapshot = field(default_factory=InitializingProgress)
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
    dump_dir: Optional[str] = None
    output_files: OutputFiles = field(default_factory=OutputFiles)
    items_seen: int = 0
    triples_written: int = 0
    estimated_triples: Optional[int] = None
    skipped_lines: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """JSON form used for metadata.json."""
        return {
            "id": self.job_id,
            "timestamp": utcnow().isoformat(),
            "config": self.config.to_dict(),
            "status": self.status.value,
            "phase": self.phase.value,
            "startTime": self.started_at.isoformat(),
            "endTime": self.ended_at.isoformat() if self.ended_at else None,
            "progress": self.progress.to_dict(),
            "outputFiles": asdict(self.output_files),
            "error": self.error,
            "counts": {
                "itemsSeen": self.items_seen,
                "triplesWritten": self.triples_written,
                "estimatedTriples": self.estimated_triples,
                "skippedLines": self.skipped_lines,
            },
        }
