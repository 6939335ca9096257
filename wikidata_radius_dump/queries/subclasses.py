"""
Subclass expansion through the query service.
"""

from typing import List

from wikidata_radius_dump.queries.builders import build_subclass_query, item_id_from_uri
from wikidata_radius_dump.utils.errors import TransportError
from wikidata_radius_dump.utils.logging import get_business_logger
from wikidata_radius_dump.utils.results import PhaseResult


logger = get_business_logger('crawler')

TRANSITIVE_LIMIT = 1000
DIRECT_LIMIT = 100


def _class_ids_from_bindings(response) -> List[str]:
    classes = []
    for binding in response["results"]["bindings"]:
        qid = item_id_from_uri(binding["class"]["value"])
        if qid and qid not in classes:
            classes.append(qid)
    return classes


async def expand_subclasses(client, class_id: str) -> PhaseResult[List[str]]:
    """
    Expand a class to itself plus all transitive subclasses (wdt:P279*).

    Expansion is best effort: any failure degrades to ``[class_id]``.

    Args:
        client: QueryClient used for the SELECT
        class_id: Root class Q-id

    Returns:
        success([class_id, *subclasses]) or degraded([class_id])
    """
    query = build_subclass_query(class_id, transitive=True, limit=TRANSITIVE_LIMIT)

    try:
        logger.info(f"Expanding subclasses of {class_id}...")
        response = await client.select(query)
        classes = _class_ids_from_bindings(response)
    except (TransportError, KeyError, TypeError) as e:
        logger.warning(f"Failed to expand subclasses of {class_id}: {e}")
        return PhaseResult.degraded([class_id], e)

    # The root class comes first even when the endpoint omits or reorders it
    classes = [class_id] + [c for c in classes if c != class_id]
    logger.info(f"Found {len(classes)} classes (including {class_id})")
    return PhaseResult.success(classes)


async def get_direct_subclasses(client, class_id: str) -> PhaseResult[List[str]]:
    """Direct (one level, wdt:P279) subclasses of a class; degrades to []."""
    query = build_subclass_query(class_id, transitive=False, limit=DIRECT_LIMIT)

    try:
        response = await client.select(query)
        classes = _class_ids_from_bindings(response)
    except (TransportError, KeyError, TypeError) as e:
        logger.warning(f"Failed to fetch direct subclasses of {class_id}: {e}")
        return PhaseResult.degraded([], e)

    return PhaseResult.success([c for c in classes if c != class_id])
