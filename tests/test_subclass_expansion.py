"""
Tests for best-effort subclass expansion.
"""

import asyncio

from wikidata_radius_dump.queries.subclasses import expand_subclasses, get_direct_subclasses
from wikidata_radius_dump.utils.errors import TransportError, TransportErrorKind
from wikidata_radius_dump.utils.results import PhaseOutcome


ENTITY = "http://www.wikidata.org/entity/"


class StubQueryClient:

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.queries = []

    async def select(self, query):
        self.queries.append(query)
        if self.error:
            raise self.error
        return self.response


def bindings(*qids):
    return {"results": {"bindings": [{"class": {"type": "uri", "value": ENTITY + q}} for q in qids]}}


class TestSubclassExpansion:

    def test_root_first_and_deduplicated(self):
        client = StubQueryClient(bindings("Q2", "Q1", "Q3", "Q2"))

        result = asyncio.run(expand_subclasses(client, "Q1"))

        assert result.outcome is PhaseOutcome.SUCCESS
        assert result.value == ["Q1", "Q2", "Q3"]
        assert "wdt:P279* wd:Q1" in client.queries[0]

    def test_root_added_when_endpoint_omits_it(self):
        result = asyncio.run(expand_subclasses(StubQueryClient(bindings("Q9")), "Q1"))

        assert result.value == ["Q1", "Q9"]

    def test_transport_failure_degrades_to_root_class(self):
        error = TransportError(TransportErrorKind.TIMEOUT, "Query timeout after 55s")
        result = asyncio.run(expand_subclasses(StubQueryClient(error=error), "Q3305213"))

        assert result.is_degraded
        assert result.value == ["Q3305213"]
        assert result.error is error
        assert result.unwrap() == ["Q3305213"]

    def test_malformed_response_degrades_to_root_class(self):
        result = asyncio.run(expand_subclasses(StubQueryClient({"head": {}}), "Q5"))

        assert result.is_degraded
        assert result.value == ["Q5"]

    def test_direct_subclasses_exclude_root(self):
        client = StubQueryClient(bindings("Q5", "Q15632617", "Q5"))

        result = asyncio.run(get_direct_subclasses(client, "Q5"))

        assert result.outcome is PhaseOutcome.SUCCESS
        assert result.value == ["Q15632617"]
        assert "wdt:P279 wd:Q5" in client.queries[0]
        assert "wdt:P279*" not in client.queries[0]
        assert "LIMIT 100" in client.queries[0]

    def test_direct_subclasses_degrade_to_empty(self):
        error = TransportError(TransportErrorKind.SERVER_ERROR, "Query service error 502")

        result = asyncio.run(get_direct_subclasses(StubQueryClient(error=error), "Q5"))

        assert result.is_degraded
        assert result.value == []
