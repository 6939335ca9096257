"""
Integration tests for the job manager: concurrent jobs over shared clients.
"""

import asyncio
import re
from pathlib import Path

import pytest

from config import CrawlSettings, SearchApiConfig
from wikidata_radius_dump.clients.search_client import InstanceEnumerator, SearchPage
from wikidata_radius_dump.crawl.models import CrawlConfig, JobStatus, JobPhase, InitializingProgress
from wikidata_radius_dump.data.storage import DumpStorage
from wikidata_radius_dump.services.job_manager import JobManager
from wikidata_radius_dump.utils.errors import TransportError, TransportErrorKind, ValidationError


ENTITY = "http://www.wikidata.org/entity/"
DIRECT = "http://www.wikidata.org/prop/direct/"


class SharedWikidata:
    """Query client double shared by every job of a test."""

    def __init__(self, fail_fetch=False):
        self.fail_fetch = fail_fetch
        self.fetched = []
        self.before_fetch = None

    async def select(self, query):
        await asyncio.sleep(0)
        return {"results": {"bindings": []}}

    async def construct(self, query):
        await asyncio.sleep(0)
        if "VALUES ?prop" in query:
            return ""
        ids = re.findall(r"wd:(Q\d+)", re.search(r"VALUES \?s \{ (.*?) \}", query).group(1))
        self.fetched.extend(ids)
        if self.before_fetch:
            self.before_fetch()
        if self.fail_fetch:
            raise TransportError(TransportErrorKind.NETWORK_ERROR, "Network error: reset")
        return "".join(f"<{ENTITY}{q}> <{DIRECT}P31> <{ENTITY}Q5> .\n" for q in ids)


class StaticSearch:

    def __init__(self, index):
        self.index = index
        self.config = SearchApiConfig(page_size=2, page_delay=0.0)

    async def sleep(self, seconds):
        await asyncio.sleep(0)

    async def search_has_statement(self, property_id, value, offset=None):
        hits = self.index.get(value, [])
        start = offset or 0
        end = start + self.config.page_size
        return SearchPage(ids=hits[start:end], total_hits=len(hits),
                          next_offset=end if end < len(hits) else None)


def make_manager(dumps_dir, wikidata, index=None, batch_size=200):
    index = index or {"Q100": ["Q1", "Q2", "Q3"], "Q200": ["Q7", "Q8"]}
    return JobManager(
        query_client=wikidata,
        enumerator=InstanceEnumerator(StaticSearch(index)),
        storage=DumpStorage(str(dumps_dir)),
        settings=CrawlSettings(batch_size=batch_size),
    )


def crawl_config(class_id="Q100", **kwargs):
    kwargs.setdefault("radius", 1)
    kwargs.setdefault("include_subclasses", False)
    return CrawlConfig(class_id=class_id, **kwargs)


class TestJobManagerIntegration:

    def test_concurrent_jobs_complete_independently(self, dumps_dir):
        wikidata = SharedWikidata()
        manager = make_manager(dumps_dir, wikidata)

        async def scenario():
            first = manager.start_crawl(crawl_config("Q100"))
            second = manager.start_crawl(crawl_config("Q200", include_property_metadata=False))
            return await manager.wait(first), await manager.wait(second)

        first, second = asyncio.run(scenario())

        assert first.status is JobStatus.COMPLETED
        assert second.status is JobStatus.COMPLETED
        assert first.dump_dir != second.dump_dir
        assert first.triples_written == 3
        assert second.triples_written == 2
        assert sorted(wikidata.fetched) == ["Q1", "Q2", "Q3", "Q7", "Q8"]
        assert {job.job_id for job in manager.list_jobs()} == {first.job_id, second.job_id}

    def test_progress_subscription_and_output_files(self, dumps_dir):
        manager = make_manager(dumps_dir, SharedWikidata())
        received = []

        async def scenario():
            job_id = manager.start_crawl(crawl_config())
            unsubscribe = manager.subscribe_progress(job_id, received.append)
            job = await manager.wait(job_id)
            unsubscribe()
            return job

        job = asyncio.run(scenario())

        # The current snapshot is delivered on subscription
        assert isinstance(received[0], InitializingProgress)
        assert received[-1].phase is JobPhase.COMPLETED
        assert [s.percent for s in received] == sorted(s.percent for s in received)

        ttl = manager.get_output_file(job.job_id, "ttl")
        nt = manager.get_output_file(job.job_id, "nt")
        assert ttl == Path(job.output_files.ttl) and ttl.exists()
        assert nt == Path(job.output_files.nt) and nt.exists()

        with pytest.raises(ValidationError):
            manager.get_output_file(job.job_id, "json")

    def test_get_job_returns_a_copy(self, dumps_dir):
        manager = make_manager(dumps_dir, SharedWikidata())

        async def scenario():
            job_id = manager.start_crawl(crawl_config())
            await manager.wait(job_id)
            return job_id

        job_id = asyncio.run(scenario())

        copy = manager.get_job(job_id)
        copy.status = JobStatus.FAILED
        copy.output_files.nt = "elsewhere.nt"

        fresh = manager.get_job(job_id)
        assert fresh.status is JobStatus.COMPLETED
        assert fresh.output_files.nt != "elsewhere.nt"
        assert manager.get_job("no-such-job") is None

    def test_abort_running_job(self, dumps_dir):
        wikidata = SharedWikidata()
        manager = make_manager(dumps_dir, wikidata, batch_size=1)

        async def scenario():
            job_id = manager.start_crawl(crawl_config())
            wikidata.before_fetch = lambda: manager.abort(job_id)
            return await manager.wait(job_id)

        job = asyncio.run(scenario())

        assert job.status is JobStatus.ABORTED
        assert wikidata.fetched == ["Q1"]
        assert manager.get_output_file(job.job_id, "ttl") is None
        assert manager.abort(job.job_id) is False
        assert manager.abort("no-such-job") is False

    def test_failed_job_is_recorded(self, dumps_dir):
        manager = make_manager(dumps_dir, SharedWikidata(fail_fetch=True))

        async def scenario():
            job_id = manager.start_crawl(crawl_config())
            return await manager.wait(job_id)

        job = asyncio.run(scenario())

        assert job.status is JobStatus.FAILED
        assert "Network error" in job.error
        assert manager.get_output_file(job.job_id, "nt") is None

    def test_cleanup_forgets_finished_jobs(self, dumps_dir):
        manager = make_manager(dumps_dir, SharedWikidata())

        async def scenario():
            job_id = manager.start_crawl(crawl_config())
            await manager.wait(job_id)
            return job_id

        job_id = asyncio.run(scenario())
        dump_dir = Path(manager.get_job(job_id).dump_dir)

        assert manager.cleanup_completed_jobs(older_than_seconds=3600) == 0
        assert manager.cleanup_completed_jobs(older_than_seconds=0) == 1
        assert manager.get_job(job_id) is None
        assert manager.list_jobs() == []
        # Artifacts stay on disk
        assert (dump_dir / "dump.ttl").exists()

    def test_unknown_job_subscription_rejected(self, dumps_dir):
        manager = make_manager(dumps_dir, SharedWikidata())

        with pytest.raises(ValidationError):
            manager.subscribe_progress("no-such-job", lambda snapshot: None)
