"""
SPARQL query builders and N-Triples helpers.

Builders are pure functions: the same ids and language always produce the
same query text. Identifiers and language tags are validated before they are
embedded, and ids only ever appear as ``wd:`` prefixed names inside a
``VALUES`` list.
"""

import re
from typing import Iterable, List, Set

from wikidata_radius_dump.utils.errors import ValidationError


ENTITY_NS = "http://www.wikidata.org/entity/"
DIRECT_NS = "http://www.wikidata.org/prop/direct/"
CLAIM_NS = "http://www.wikidata.org/prop/"

ITEM_ID_PATTERN = re.compile(r"^Q\d+$")
PROPERTY_ID_PATTERN = re.compile(r"^P\d+$")
LANGUAGE_PATTERN = re.compile(r"^[a-z]{2,3}(-[a-z0-9]{1,8})*$")

# Object position of an N-Triples line pointing at an item
_NEIGHBOR_PATTERN = re.compile(
    r"^\s*\S+\s+\S+\s+<http://www\.wikidata\.org/entity/(Q\d+)>\s*\.\s*$"
)

_PROPERTY_URI_PATTERNS = [
    re.compile(r"http://www\.wikidata\.org/prop/direct/(P\d+)"),
    re.compile(r"http://www\.wikidata\.org/entity/(P\d+)"),
    re.compile(r"http://www\.wikidata\.org/prop/(P\d+)"),
]

_ITEM_URI_PATTERN = re.compile(r"/(Q\d+)$")

_PREFIXES = {
    "wd": ENTITY_NS,
    "wdt": DIRECT_NS,
    "rdf": "http://www.w3.org/1999/02/22-rdf-syntax-ns#",
    "rdfs": "http://www.w3.org/2000/01/rdf-schema#",
    "schema": "http://schema.org/",
    "skos": "http://www.w3.org/2004/02/skos/core#",
    "wikibase": "http://wikiba.se/ontology#",
    "bd": "http://www.bigdata.com/rdf#",
}


def validate_item_ids(ids: Iterable[str]) -> List[str]:
    """
    Validate item identifiers (Q-ids).

    Returns:
        The ids as a list, in input order

    Raises:
        ValidationError: If the batch is empty or any id is malformed
    """
    return _validate_ids(ids, ITEM_ID_PATTERN, "item")


def validate_property_ids(ids: Iterable[str]) -> List[str]:
    """Validate property identifiers (P-ids); see validate_item_ids."""
    return _validate_ids(ids, PROPERTY_ID_PATTERN, "property")


def _validate_ids(ids: Iterable[str], pattern: re.Pattern, kind: str) -> List[str]:
    id_list = list(ids)
    if not id_list:
        raise ValidationError(f"Empty {kind} id batch")

    invalid = [i for i in id_list if not isinstance(i, str) or not pattern.fullmatch(i)]
    if invalid:
        raise ValidationError(
            f"Invalid {kind} ids",
            {"invalid_ids": invalid[:10], "invalid_count": len(invalid)}
        )
    return id_list


def validate_language(language: str) -> str:
    """Validate a label language tag such as 'en' or 'pt-br'."""
    if not isinstance(language, str) or len(language) > 10 or not LANGUAGE_PATTERN.fullmatch(language):
        raise ValidationError("Invalid language tag", {"language": language})
    return language


def _prefix_block(*names: str) -> str:
    return "\n".join(f"PREFIX {name}: <{_PREFIXES[name]}>" for name in names)


def _values_clause(ids: List[str]) -> str:
    return " ".join(f"wd:{entity_id}" for entity_id in ids)


def build_edge_batch_query(ids: Iterable[str], language: str = "en") -> str:
    """
    Build the CONSTRUCT query fetching every truthy edge of a batch.

    The query returns all outgoing ``wdt:`` edges of each subject, maps
    ``wdt:P31`` to ``rdf:type`` and adds labels for subjects, predicates,
    objects and classes in the requested language.
    """
    id_list = validate_item_ids(ids)
    language = validate_language(language)

    return f"""
{_prefix_block("wd", "wdt", "rdf", "rdfs", "wikibase", "bd")}

CONSTRUCT {{
  ?s ?p ?o .
  ?s rdf:type ?class .
  ?s rdfs:label ?sLabel .
  ?p rdfs:label ?pLabel .
  ?o rdfs:label ?oLabel .
  ?class rdfs:label ?classLabel .
}}
WHERE {{
  VALUES ?s {{ {_values_clause(id_list)} }}

  {{
    ?s ?p ?o .
    FILTER(STRSTARTS(STR(?p), STR(wdt:)))
  }}
  UNION {{
    ?s wdt:P31 ?class .
  }}

  SERVICE wikibase:label {{
    bd:serviceParam wikibase:language "{language}" .
  }}
}}
"""


def build_estimate_query(ids: Iterable[str]) -> str:
    """Build the SELECT query counting truthy edges per subject."""
    id_list = validate_item_ids(ids)

    return f"""
{_prefix_block("wd", "wdt")}

SELECT ?s (COUNT(?p) AS ?count)
WHERE {{
  VALUES ?s {{ {_values_clause(id_list)} }}
  ?s ?p ?o .
  FILTER(STRSTARTS(STR(?p), STR(wdt:)))
}}
GROUP BY ?s
"""


def build_property_metadata_query(property_ids: Iterable[str], language: str = "en") -> str:
    """
    Build the CONSTRUCT query fetching metadata for a batch of properties.

    Returns labels, descriptions, alternate labels (requested language or
    English), the property type, and links between the property entity
    (``wd:P31``) and its direct-claim predicate (``wdt:P31``) in both
    directions. The direct-claim predicate also gets the property's label.
    """
    id_list = validate_property_ids(property_ids)
    language = validate_language(language)

    return f"""
{_prefix_block("wd", "wdt", "rdfs", "schema", "wikibase", "skos", "bd")}

CONSTRUCT {{
  ?prop rdfs:label ?propLabel .
  ?prop schema:description ?propDesc .
  ?prop wikibase:propertyType ?propType .
  ?prop skos:altLabel ?propAltLabel .
  ?prop wikibase:directClaim ?directClaim .
  ?directClaim wikibase:property ?prop .
  ?directClaim rdfs:label ?directClaimLabel .
}}
WHERE {{
  VALUES ?prop {{ {_values_clause(id_list)} }}

  ?prop wikibase:directClaim ?directClaim .

  SERVICE wikibase:label {{
    bd:serviceParam wikibase:language "{language},en" .
    ?prop rdfs:label ?propLabel .
    ?prop schema:description ?propDesc .
  }}

  OPTIONAL {{
    ?prop skos:altLabel ?propAltLabel .
    FILTER(LANG(?propAltLabel) = "{language}" || LANG(?propAltLabel) = "en")
  }}

  BIND(?propLabel AS ?directClaimLabel)

  OPTIONAL {{
    ?prop wikibase:propertyType ?propType
  }}
}}
"""


def build_subclass_query(class_id: str, transitive: bool = True, limit: int = 1000) -> str:
    """Build the SELECT query listing subclasses of a class (wdt:P279, optionally transitive)."""
    validate_item_ids([class_id])
    path = "wdt:P279*" if transitive else "wdt:P279"

    return f"""
{_prefix_block("wd", "wdt")}

SELECT DISTINCT ?class WHERE {{
  ?class {path} wd:{class_id} .
}}
LIMIT {int(limit)}
"""


def item_id_from_uri(uri: str):
    """Return the Q-id at the end of an entity URI, or None."""
    match = _ITEM_URI_PATTERN.search(uri)
    return match.group(1) if match else None


def extract_neighbors(ntriples: str) -> Set[str]:
    """Collect item ids appearing in object position of N-Triples lines."""
    neighbors = set()
    for line in ntriples.splitlines():
        match = _NEIGHBOR_PATTERN.match(line)
        if match:
            neighbors.add(match.group(1))
    return neighbors


def extract_property_ids(ntriples: str) -> Set[str]:
    """Collect property ids referenced anywhere in N-Triples text."""
    property_ids = set()
    for line in ntriples.splitlines():
        if not line.strip():
            continue
        for pattern in _PROPERTY_URI_PATTERNS:
            property_ids.update(pattern.findall(line))
    return property_ids


def count_triple_lines(ntriples: str) -> int:
    """Approximate triple count: number of non-empty lines."""
    return sum(1 for line in ntriples.splitlines() if line.strip())


def chunk(items: List, size: int) -> List[List]:
    """Split a list into consecutive chunks of at most ``size`` elements."""
    if size < 1:
        raise ValidationError("Chunk size must be positive", {"size": size})
    return [items[i:i + size] for i in range(0, len(items), size)]
