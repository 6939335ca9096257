"""
SPARQL query builders and subclass expansion.
"""

from .builders import (
    build_edge_batch_query,
    build_estimate_query,
    build_property_metadata_query,
    build_subclass_query,
    extract_neighbors,
    extract_property_ids,
    validate_item_ids,
    validate_property_ids,
    validate_language
)
from .subclasses import expand_subclasses, get_direct_subclasses

__all__ = [
    'build_edge_batch_query',
    'build_estimate_query',
    'build_property_metadata_query',
    'build_subclass_query',
    'extract_neighbors',
    'extract_property_ids',
    'validate_item_ids',
    'validate_property_ids',
    'validate_language',
    'expand_subclasses',
    'get_direct_subclasses'
]
