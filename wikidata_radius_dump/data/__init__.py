"""
Dump directory storage and RDF serialization.
"""

from .storage import DumpStorage, TripleStreamWriter
from .serializer import TurtleConverter, ConversionResult, TURTLE_PREFIXES

__all__ = [
    'DumpStorage',
    'TripleStreamWriter',
    'TurtleConverter',
    'ConversionResult',
    'TURTLE_PREFIXES'
]
