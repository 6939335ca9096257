"""
Radius-bounded crawl orchestrator.

One orchestrator drives one job through its phases:

    initializing -> expanding-subclasses -> enumerating-instances
    -> estimating-triples -> fetching-hop (1..radius)
    -> enriching-properties -> converting-output -> completed

with ``failed`` reachable from anywhere. All network calls of a job are
issued one after the other; jobs share the query client's rate limiter.
"""

import asyncio
import threading
import uuid
from pathlib import Path
from typing import List, Optional, Set

from config import CrawlSettings
from wikidata_radius_dump.clients.query_client import QueryClient
from wikidata_radius_dump.clients.search_client import InstanceEnumerator
from wikidata_radius_dump.crawl.models import (
    CrawlConfig,
    JobRecord,
    JobStatus,
    ExpandingSubclassesProgress,
    EnumeratingInstancesProgress,
    EstimatingTriplesProgress,
    FetchingHopProgress,
    EnrichingPropertiesProgress,
    ConvertingOutputProgress,
    CompletedProgress,
    FailedProgress,
    ProgressSnapshot,
    utcnow,
)
from wikidata_radius_dump.crawl.progress import (
    ProgressTracker,
    calculate_eta,
    fetch_percent,
    enrich_percent,
)
from wikidata_radius_dump.data.serializer import TurtleConverter, ConversionResult
from wikidata_radius_dump.data.storage import DumpStorage, TripleStreamWriter
from wikidata_radius_dump.queries.builders import (
    build_edge_batch_query,
    build_estimate_query,
    build_property_metadata_query,
    chunk,
    count_triple_lines,
    extract_neighbors,
    extract_property_ids,
)
from wikidata_radius_dump.queries.subclasses import expand_subclasses
from wikidata_radius_dump.utils.errors import (
    JobAbortedError,
    SearchApiError,
    TransportError,
)
from wikidata_radius_dump.utils.logging import get_business_logger
from wikidata_radius_dump.utils.results import PhaseResult


logger = get_business_logger('crawler')


class DumpOrchestrator:
    """Runs one crawl job from subclass expansion to Turtle conversion."""

    def __init__(self,
                 config: CrawlConfig,
                 query_client: QueryClient,
                 enumerator: InstanceEnumerator,
                 storage: DumpStorage,
                 settings: Optional[CrawlSettings] = None,
                 converter: Optional[TurtleConverter] = None,
                 job_id: Optional[str] = None):
        """
        Initialize the orchestrator.

        Args:
            config: Job input
            query_client: Shared, rate-limited query transport
            enumerator: Instance enumerator on the search API
            storage: Where the job directory is created
            settings: Batch sizes, sample size and estimation fallback
            converter: N-Triples to Turtle converter
            job_id: Job identifier (a UUID4 is generated when omitted)
        """
        self.config = config
        self.query_client = query_client
        self.enumerator = enumerator
        self.storage = storage
        self.settings = settings or CrawlSettings()
        self.converter = converter or TurtleConverter()

        self.job = JobRecord(job_id=job_id or str(uuid.uuid4()), config=config)
        self.tracker = ProgressTracker()
        self.visited: Set[str] = set()
        self._abort_event = threading.Event()

    # ------------------------------------------------------------------ #
    # Control surface
    # ------------------------------------------------------------------ #

    def abort(self) -> None:
        """Request the job to stop before its next unit of work."""
        self._abort_event.set()

    @property
    def aborted(self) -> bool:
        return self._abort_event.is_set()

    def _check_aborted(self) -> None:
        if self._abort_event.is_set():
            raise JobAbortedError("Job aborted", {"job_id": self.job.job_id})

    def _publish(self, snapshot: ProgressSnapshot) -> None:
        published = self.tracker.publish(snapshot)
        self.job.progress = published
        self.job.phase = published.phase

    def _save_metadata(self) -> None:
        if self.job.dump_dir:
            self.storage.write_metadata(Path(self.job.dump_dir), self.job.to_dict())

    # ------------------------------------------------------------------ #
    # Main flow
    # ------------------------------------------------------------------ #

    async def execute(self) -> JobRecord:
        """
        Execute the job.

        Returns:
            The completed job record

        Raises:
            JobAbortedError: If abort() was called; partial output stays on disk
            Exception: Whatever made the job fail (record status is FAILED)
        """
        self.job.status = JobStatus.RUNNING
        self.job.started_at = utcnow()
        logger.info(f"Starting job {self.job.job_id} for {self.config.class_id} "
                    f"(radius={self.config.radius}, max_instances={self.config.max_instances})")

        try:
            job_dir = self.storage.create_job_dir(self.config.class_id, self.job.job_id)
            self.job.dump_dir = str(job_dir)
            nt_file = self.storage.nt_path(job_dir)
            ttl_file = self.storage.ttl_path(job_dir)
            self._save_metadata()

            class_ids = await self._expand_phase()
            instances = await self._enumerate_phase(class_ids)
            await self._estimate_phase(instances)

            with TripleStreamWriter(nt_file).open(truncate=True) as writer:
                await self._fetch_hops(instances, writer)

            if self.config.include_property_metadata:
                enrichment = await self._enrich_phase(nt_file)
                if enrichment.is_degraded:
                    logger.warning(f"Property metadata is incomplete for job {self.job.job_id}: "
                                   f"{enrichment.error}")

            result = await self._convert_phase(nt_file, ttl_file)

            self.job.status = JobStatus.COMPLETED
            self.job.ended_at = utcnow()
            self.job.skipped_lines = result.skipped_lines
            self.job.output_files.nt = str(nt_file)
            self.job.output_files.ttl = str(ttl_file)
            self._publish(CompletedProgress(
                items_seen=self.job.items_seen,
                triples_written=self.job.triples_written,
                statements=result.statements,
                skipped_lines=result.skipped_lines,
                message=f"Dump completed! {self.job.triples_written} triples written."
            ))
            self._save_metadata()

            logger.info(f"Job {self.job.job_id} completed: {len(self.visited)} entities, "
                        f"{self.job.triples_written} triples")
            return self.job

        except JobAbortedError as e:
            failed_in = self._finish_unsuccessfully(JobStatus.ABORTED, e)
            logger.info(f"Job {self.job.job_id} aborted during {failed_in}")
            raise
        except Exception as e:
            failed_in = self._finish_unsuccessfully(JobStatus.FAILED, e)
            logger.error(f"Job {self.job.job_id} failed during {failed_in}: {e}")
            raise

    def _finish_unsuccessfully(self, status: JobStatus, error: Exception) -> str:
        failed_in = self.job.phase.value
        self.job.status = status
        self.job.error = str(error) or type(error).__name__
        self.job.ended_at = utcnow()
        self._publish(FailedProgress(
            error=self.job.error,
            aborted=status is JobStatus.ABORTED,
            failed_in=failed_in,
            message=f"Job {status.value}: {self.job.error}"
        ))
        try:
            self._save_metadata()
        except OSError as e:
            logger.error(f"Failed to save final metadata for job {self.job.job_id}: {e}")
        return failed_in

    # ------------------------------------------------------------------ #
    # Phase A: subclass expansion (best effort)
    # ------------------------------------------------------------------ #

    async def _expand_phase(self) -> List[str]:
        class_id = self.config.class_id
        if not self.config.include_subclasses:
            return [class_id]

        self._check_aborted()
        self._publish(ExpandingSubclassesProgress(
            class_id=class_id, percent=2.0, message="Expanding subclasses..."
        ))

        result = await expand_subclasses(self.query_client, class_id)
        classes = result.value
        message = (f"Subclass expansion failed, continuing with {class_id} only"
                   if result.is_degraded else f"Found {len(classes)} classes")
        self._publish(ExpandingSubclassesProgress(
            class_id=class_id, classes_found=len(classes), percent=4.0, message=message
        ))
        return classes

    # ------------------------------------------------------------------ #
    # Phase B: instance enumeration (fatal on failure)
    # ------------------------------------------------------------------ #

    async def _enumerate_phase(self, class_ids: List[str]) -> List[str]:
        self._publish(EnumeratingInstancesProgress(
            class_count=len(class_ids), percent=5.0, message="Enumerating instances..."
        ))

        instances = (await self._enumerate_instances(class_ids)).unwrap()

        self.job.items_seen = len(instances)
        self._publish(EnumeratingInstancesProgress(
            class_count=len(class_ids),
            items_seen=len(instances),
            percent=15.0,
            message=f"Found {len(instances)} total instances"
        ))
        return instances

    async def _enumerate_instances(self, class_ids: List[str]) -> PhaseResult[List[str]]:
        found: List[str] = []
        cursor = self.enumerator.start(class_ids, self.config.max_instances)

        try:
            while cursor is not None:
                self._check_aborted()
                page = await self.enumerator.next_page(cursor)
                found.extend(page.items)
                cursor = page.next_cursor

                self._publish(EnumeratingInstancesProgress(
                    class_count=len(class_ids),
                    items_seen=len(found),
                    percent=5.0 + 10.0 * min(1.0, len(found) / self.config.max_instances),
                    message=f"Found {len(found)} instances..."
                ))
        except (SearchApiError, TransportError) as e:
            return PhaseResult.fatal(e)

        return PhaseResult.success(found)

    # ------------------------------------------------------------------ #
    # Phase C: triple estimation (best effort)
    # ------------------------------------------------------------------ #

    async def _estimate_phase(self, instances: List[str]) -> int:
        self._check_aborted()
        self._publish(EstimatingTriplesProgress(
            total_items=len(instances), percent=16.0, message="Estimating triples..."
        ))

        sample = instances[:self.settings.sample_size]
        if not sample:
            estimate = 0
        else:
            sample_total = (await self._estimate_sample(sample)).value
            estimate = round(sample_total / len(sample) * len(instances))

        self.job.estimated_triples = estimate
        self._publish(EstimatingTriplesProgress(
            total_items=len(instances),
            estimated_triples=estimate,
            percent=18.0,
            message=f"Estimated ~{estimate} triples"
        ))
        return estimate

    async def _estimate_sample(self, sample: List[str]) -> PhaseResult[int]:
        """Sum of truthy edge counts of the sample; degrades to a fixed per-instance guess."""
        try:
            response = await self.query_client.select(build_estimate_query(sample))
            total = sum(int(binding["count"]["value"])
                        for binding in response["results"]["bindings"])
            return PhaseResult.success(total)
        except (TransportError, KeyError, TypeError, ValueError) as e:
            fallback = len(sample) * self.settings.fallback_triples_per_instance
            logger.warning(f"Failed to estimate triples, using fallback {fallback}: {e}")
            return PhaseResult.degraded(fallback, e)

    # ------------------------------------------------------------------ #
    # Phase D: hop-by-hop fetching (fatal on failure)
    # ------------------------------------------------------------------ #

    async def _fetch_hops(self, instances: List[str], writer: TripleStreamWriter) -> None:
        radius = self.config.radius
        frontier: Set[str] = set(instances)

        for hop in range(1, radius + 1):
            if not frontier:
                self._publish(self._hop_progress(
                    hop, 0, 0, message=f"No new entities to process at radius {hop}"
                ))
                break

            to_fetch = sorted(frontier - self.visited, key=_numeric_id)
            if not to_fetch:
                self._publish(self._hop_progress(
                    hop, 0, 0, message=f"All entities at radius {hop} already visited"
                ))
                frontier = set()
                continue

            # Marked before fetching: a failed batch is never re-queued by a later hop
            self.visited.update(to_fetch)

            frontier = (await self._fetch_hop(hop, to_fetch, writer)).unwrap()

            if hop < radius and frontier:
                logger.info(f"Found {len(frontier)} new neighbors for radius {hop + 1}")

        logger.info(f"Completed radius crawling: {len(self.visited)} unique entities, "
                    f"{self.job.triples_written} triples")

    async def _fetch_hop(self, hop: int, entities: List[str],
                         writer: TripleStreamWriter) -> PhaseResult[Set[str]]:
        """Fetch one hop batch by batch; returns the next frontier."""
        collect_neighbors = hop < self.config.radius
        next_frontier: Set[str] = set()
        batches = chunk(entities, self.settings.batch_size)
        hop_started_at = utcnow()

        self._publish(self._hop_progress(
            hop, 0, len(batches),
            message=f"Fetching radius {hop} data ({len(entities)} entities)..."
        ))

        for index, batch in enumerate(batches):
            self._check_aborted()

            try:
                ntriples = await self.query_client.construct(
                    build_edge_batch_query(batch, self.config.language)
                )
            except TransportError as e:
                return PhaseResult.fatal(e)

            writer.write(ntriples)
            self.job.triples_written += count_triple_lines(ntriples)

            if collect_neighbors:
                next_frontier.update(extract_neighbors(ntriples) - self.visited)

            self.job.items_seen = len(self.visited)
            self._publish(self._hop_progress(
                hop, index + 1, len(batches),
                eta=calculate_eta(index + 1, len(batches), hop_started_at),
                message=(f"R{hop}: Batch {index + 1}/{len(batches)} "
                         f"({len(self.visited)} entities processed)")
            ))

        return PhaseResult.success(next_frontier)

    def _hop_progress(self, hop: int, batches_done: int, batch_count: int,
                      eta: Optional[str] = None, message: Optional[str] = None) -> FetchingHopProgress:
        return FetchingHopProgress(
            hop=hop,
            radius=self.config.radius,
            batch_index=batches_done,
            batch_count=batch_count,
            items_seen=len(self.visited),
            triples_written=self.job.triples_written,
            total_items=self.job.items_seen,
            estimated_triples=self.job.estimated_triples or 0,
            eta=eta,
            percent=fetch_percent(hop, self.config.radius, batches_done, batch_count),
            message=message,
        )

    # ------------------------------------------------------------------ #
    # Phase E: property metadata (best effort, per batch)
    # ------------------------------------------------------------------ #

    async def _enrich_phase(self, nt_file: Path) -> PhaseResult[int]:
        """Enrich with property metadata; any failure other than an abort degrades."""
        try:
            return await self._enrich_properties(nt_file)
        except JobAbortedError:
            raise
        except Exception as e:
            return PhaseResult.degraded(0, e)

    async def _enrich_properties(self, nt_file: Path) -> PhaseResult[int]:
        self._check_aborted()
        self._publish(EnrichingPropertiesProgress(
            triples_written=self.job.triples_written,
            percent=90.0,
            message="Fetching property metadata..."
        ))

        property_ids: Set[str] = set()
        with open(nt_file, 'r', encoding='utf-8', errors='replace') as f:
            for line in f:
                property_ids.update(extract_property_ids(line))

        if not property_ids:
            logger.info("No properties found for enrichment")
            return PhaseResult.success(0)

        ordered = sorted(property_ids, key=_numeric_id)
        logger.info(f"Found {len(ordered)} unique properties: {', '.join(ordered[:10])}")

        batches = chunk(ordered, self.settings.property_batch_size)
        failed_batches = 0
        last_error: Optional[Exception] = None

        with TripleStreamWriter(nt_file).open() as writer:
            for index, batch in enumerate(batches):
                self._check_aborted()

                try:
                    ntriples = await self.query_client.construct(
                        build_property_metadata_query(batch, self.config.language)
                    )
                except TransportError as e:
                    failed_batches += 1
                    last_error = e
                    logger.warning(f"Property metadata batch {index + 1}/{len(batches)} failed: {e}")
                else:
                    writer.write(ntriples)
                    self.job.triples_written += count_triple_lines(ntriples)

                self._publish(EnrichingPropertiesProgress(
                    property_count=len(ordered),
                    batch_index=index + 1,
                    batch_count=len(batches),
                    failed_batches=failed_batches,
                    triples_written=self.job.triples_written,
                    percent=enrich_percent(index + 1, len(batches)),
                    message=f"Fetching property metadata {index + 1}/{len(batches)}..."
                ))

        self._publish(EnrichingPropertiesProgress(
            property_count=len(ordered),
            batch_index=len(batches),
            batch_count=len(batches),
            failed_batches=failed_batches,
            triples_written=self.job.triples_written,
            percent=97.0,
            message=f"Enriched {len(ordered)} properties with metadata"
        ))

        if failed_batches:
            return PhaseResult.degraded(len(ordered), last_error)
        return PhaseResult.success(len(ordered))

    # ------------------------------------------------------------------ #
    # Phase F: Turtle conversion
    # ------------------------------------------------------------------ #

    async def _convert_phase(self, nt_file: Path, ttl_file: Path) -> ConversionResult:
        self._check_aborted()
        self._publish(ConvertingOutputProgress(
            triples_written=self.job.triples_written,
            percent=98.0,
            message="Converting to Turtle format..."
        ))
        # rdflib parsing is CPU bound; keep the event loop free for other jobs
        return await asyncio.to_thread(self.converter.convert, nt_file, ttl_file)

    def get_job(self) -> JobRecord:
        return self.job


def _numeric_id(entity_id: str) -> int:
    return int(entity_id[1:])
