"""
MediaWiki search client and cursor-driven instance enumeration.

Instances are enumerated with ``haswbstatement`` searches rather than SPARQL
OFFSET/LIMIT paging: the search index hands back a continuation offset per
page, which stays cheap for very large classes.
"""

import asyncio
from dataclasses import dataclass, field, replace
from typing import AsyncIterator, FrozenSet, List, Optional, Sequence, Any, Dict

import requests

from config import SearchApiConfig
from wikidata_radius_dump.queries.builders import ITEM_ID_PATTERN, validate_item_ids
from wikidata_radius_dump.utils.logging import get_business_logger
from wikidata_radius_dump.utils.errors import SearchApiError, ValidationError, async_retry_on_error


logger = get_business_logger('search_client')


@dataclass(frozen=True)
class SearchPage:
    """One page of search hits."""
    ids: List[str]
    total_hits: int
    next_offset: Optional[int] = None


@dataclass(frozen=True)
class EnumerationCursor:
    """
    Position of an enumeration.

    Attributes:
        class_ids: Classes to enumerate, in order
        max_instances: Cap on ids across all classes (None = unbounded)
        class_index: Index of the class being enumerated
        search_offset: Continuation offset inside the current class (None = first page)
        seen: Distinct ids handed out so far across all classes
    """
    class_ids: Sequence[str]
    max_instances: Optional[int] = None
    class_index: int = 0
    search_offset: Optional[int] = None
    seen: FrozenSet[str] = frozenset()

    @property
    def yielded(self) -> int:
        return len(self.seen)

    @property
    def cap_reached(self) -> bool:
        return self.max_instances is not None and self.yielded >= self.max_instances


@dataclass(frozen=True)
class EnumerationPage:
    """Ids admitted from one search page, plus where to continue (None when done)."""
    items: List[str] = field(default_factory=list)
    next_cursor: Optional[EnumerationCursor] = None


class SearchClient:
    """Client for the MediaWiki ``list=search`` API."""

    def __init__(self, config: Optional[SearchApiConfig] = None,
                 session: Optional[requests.Session] = None,
                 sleep=asyncio.sleep):
        self.config = config or SearchApiConfig()
        if not self.config.agent_name or not self.config.agent_name.strip():
            raise ValidationError("A client identification (agent name) is required for every request")
        self.session = session or requests.Session()
        self.sleep = sleep

        self._fetch = async_retry_on_error(
            max_attempts=self.config.retry_attempts,
            delay=self.config.retry_base_delay,
            backoff_factor=2.0,
            exceptions=(SearchApiError,),
            sleep=sleep
        )(self._fetch_once)

    async def search_has_statement(self, property_id: str, value: str,
                                   offset: Optional[int] = None) -> SearchPage:
        """
        Search items carrying the statement ``property_id = value``.

        Args:
            property_id: Property of the statement (e.g. 'P31')
            value: Item value of the statement (e.g. 'Q5')
            offset: Continuation offset returned by the previous page

        Returns:
            The page of matching item ids

        Raises:
            SearchApiError: If the request keeps failing after retries
        """
        params = {
            'action': 'query',
            'list': 'search',
            'srsearch': f'haswbstatement:{property_id}={value}',
            'srnamespace': '0',
            'srlimit': str(self.config.page_size),
            'format': 'json',
            'formatversion': '2',
        }
        if offset is not None:
            params['sroffset'] = str(offset)

        data = await self._fetch(params)
        return self._parse_page(data)

    async def _fetch_once(self, params: Dict[str, str]) -> Dict[str, Any]:
        headers = {
            'User-Agent': self.config.agent_name,
            'Api-User-Agent': self.config.agent_name,
        }
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.session.get,
                    self.config.endpoint,
                    params=params,
                    headers=headers,
                    timeout=self.config.request_timeout,
                ),
                timeout=self.config.request_timeout,
            )
        except (asyncio.TimeoutError, requests.exceptions.RequestException) as e:
            logger.warning(f"Search request failed: {e!r}")
            raise SearchApiError(f"Search request failed: {e!r}", {"srsearch": params.get('srsearch')})

        if not 200 <= response.status_code < 300:
            logger.warning(f"Search API error: {response.status_code}")
            raise SearchApiError(
                f"MediaWiki API error: {response.status_code}",
                {"status_code": response.status_code, "srsearch": params.get('srsearch')}
            )

        try:
            return response.json()
        except ValueError as e:
            raise SearchApiError(f"Malformed search response: {e}")

    @staticmethod
    def _parse_page(data: Dict[str, Any]) -> SearchPage:
        query = data.get('query') or {}
        hits = query.get('search')
        if not hits:
            return SearchPage(ids=[], total_hits=0)

        ids = [hit.get('title', '') for hit in hits]
        total_hits = (query.get('searchinfo') or {}).get('totalhits', 0)

        next_offset = None
        if data.get('continue') and 'sroffset' in data['continue']:
            next_offset = int(data['continue']['sroffset'])

        return SearchPage(ids=ids, total_hits=total_hits, next_offset=next_offset)

    def close(self) -> None:
        """Close the HTTP session."""
        if self.session:
            self.session.close()


class InstanceEnumerator:
    """Enumerates direct instances (wdt:P31) of one or more classes."""

    INSTANCE_OF = "P31"

    def __init__(self, search_client: SearchClient):
        self.search_client = search_client

    def start(self, class_ids: Sequence[str], max_instances: Optional[int] = None) -> EnumerationCursor:
        """Create the cursor for a fresh enumeration."""
        class_ids = validate_item_ids(class_ids)
        if max_instances is not None and max_instances < 0:
            raise ValidationError("max_instances must not be negative", {"max_instances": max_instances})
        return EnumerationCursor(class_ids=tuple(class_ids), max_instances=max_instances)

    async def next_page(self, cursor: EnumerationCursor) -> EnumerationPage:
        """
        Fetch the page at ``cursor``.

        Classes are walked one after the other. An id already handed out for an
        earlier class is skipped and does not count toward the cap. The cap is
        checked before each id is admitted, so a page may be cut short and the
        enumeration can end in the middle of a class.
        """
        if cursor.cap_reached or cursor.class_index >= len(cursor.class_ids):
            return EnumerationPage()

        class_id = cursor.class_ids[cursor.class_index]
        if cursor.search_offset is not None:
            # Courtesy delay between continuation pages
            await self.search_client.sleep(self.search_client.config.page_delay)
        else:
            logger.info(f"Enumerating instances of {class_id}...")

        page = await self.search_client.search_has_statement(
            self.INSTANCE_OF, class_id, cursor.search_offset
        )

        items = []
        seen = set(cursor.seen)
        for title in page.ids:
            if cursor.max_instances is not None and len(seen) >= cursor.max_instances:
                break
            if not ITEM_ID_PATTERN.fullmatch(title):
                logger.debug(f"Skipping non-item search hit: {title}")
                continue
            if title in seen:
                continue
            items.append(title)
            seen.add(title)

        seen = frozenset(seen)
        if cursor.max_instances is not None and len(seen) >= cursor.max_instances:
            next_cursor = None
        elif page.next_offset is not None:
            next_cursor = replace(cursor, search_offset=page.next_offset, seen=seen)
        elif cursor.class_index + 1 < len(cursor.class_ids):
            next_cursor = replace(cursor, class_index=cursor.class_index + 1,
                                  search_offset=None, seen=seen)
        else:
            next_cursor = None

        return EnumerationPage(items=items, next_cursor=next_cursor)

    async def iter_instances(self, class_ids: Sequence[str],
                             max_instances: Optional[int] = None) -> AsyncIterator[str]:
        """Iterate instance ids lazily, page by page."""
        cursor: Optional[EnumerationCursor] = self.start(class_ids, max_instances)
        while cursor is not None:
            page = await self.next_page(cursor)
            for item in page.items:
                yield item
            cursor = page.next_cursor

    async def count_instances(self, class_ids: Sequence[str]) -> int:
        """Sum the search index hit counts of every class."""
        total = 0
        for class_id in validate_item_ids(class_ids):
            page = await self.search_client.search_has_statement(self.INSTANCE_OF, class_id)
            total += page.total_hits
            logger.info(f"Class {class_id}: {page.total_hits} instances")
        return total
