"""
Clients for the Wikidata query service and the MediaWiki search API.
"""

from .query_client import QueryClient, RateLimiter, ResponseFormat, parse_retry_after
from .search_client import (
    SearchClient,
    SearchPage,
    InstanceEnumerator,
    EnumerationCursor,
    EnumerationPage
)

__all__ = [
    'QueryClient',
    'RateLimiter',
    'ResponseFormat',
    'parse_retry_after',
    'SearchClient',
    'SearchPage',
    'InstanceEnumerator',
    'EnumerationCursor',
    'EnumerationPage'
]
