"""
N-Triples to Turtle conversion.

The stream is parsed line by line so one malformed line costs only that
line. All statements are held in an rdflib Graph before writing, because
Turtle groups statements by subject and the stream is in arbitrary order.
"""

from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Iterable, Union

from rdflib import Graph, Literal, URIRef
from rdflib.exceptions import ParserError
from rdflib.plugins.parsers.ntriples import (
    W3CNTriplesParser,
    NTGraphSink,
    r_literal,
    unquote,
    uriquote,
)
from rdflib.plugins.serializers.turtle import TurtleSerializer

from wikidata_radius_dump.utils.logging import get_business_logger, log_duration
from wikidata_radius_dump.utils.errors import SerializationError


logger = get_business_logger('serializer')

TURTLE_PREFIXES = {
    "wd": "http://www.wikidata.org/entity/",
    "wdt": "http://www.wikidata.org/prop/direct/",
    "rdf": "http://www.w3.org/1999/02/22-rdf-syntax-ns#",
    "rdfs": "http://www.w3.org/2000/01/rdf-schema#",
    "schema": "http://schema.org/",
    "skos": "http://www.w3.org/2004/02/skos/core#",
    "wikibase": "http://wikiba.se/ontology#",
    "xsd": "http://www.w3.org/2001/XMLSchema#",
}

_PREVIEW_CHARS = 200


class LexicalNTriplesParser(W3CNTriplesParser):
    """
    N-Triples parser that keeps literal lexical forms exactly as written.

    Wikidata writes quantities as ``"+3677472"^^xsd:decimal`` and dates as
    ``"+1950-00-00T00:00:00Z"^^xsd:dateTime``; rdflib would otherwise
    normalize them to a different lexical form.
    """

    def literal(self):
        if not self.peek('"'):
            return False

        lexical, lang, datatype = self.eat(r_literal).groups()
        if lang and datatype:
            raise ParserError("Can't have both a language and a datatype")
        if datatype:
            datatype = URIRef(uriquote(unquote(datatype)))

        return Literal(unquote(lexical), lang or None, datatype or None, normalize=False)


class LexicalTurtleSerializer(TurtleSerializer):
    """Turtle serializer writing typed literals in full ``"lexical"^^datatype`` form."""

    def label(self, node, position):
        if isinstance(node, Literal):
            return node._literal_n3(
                use_plain=False,
                qname_callback=lambda dt: self.get_pname(dt, False),
            )
        return super().label(node, position)


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of a conversion."""
    statements: int
    skipped_lines: int


class TurtleConverter:
    """Converts an N-Triples stream into prefixed Turtle."""

    def parse_lines(self, lines: Iterable[str]) -> "tuple[Graph, int]":
        """
        Parse N-Triples lines into a graph.

        Returns:
            The graph and the number of skipped (unparseable) lines
        """
        graph = Graph()
        parser = LexicalNTriplesParser(NTGraphSink(graph))
        skipped = 0

        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                parser.parsestring(line)
            except (ParserError, ValueError) as e:
                skipped += 1
                logger.warning(f"Line {line_number} parse error: {e}")
                logger.debug(f"  Problematic line: {line[:_PREVIEW_CHARS]}")

        if skipped:
            logger.info(f"Skipped {skipped} lines during Turtle conversion")

        return graph, skipped

    def serialize(self, graph: Graph) -> str:
        """Serialize a graph as Turtle using the fixed prefix table."""
        for prefix, namespace in TURTLE_PREFIXES.items():
            graph.bind(prefix, namespace, override=True, replace=True)
        stream = BytesIO()
        LexicalTurtleSerializer(graph).serialize(stream, encoding="utf-8")
        return stream.getvalue().decode("utf-8")

    def convert_text(self, ntriples: str) -> "tuple[str, ConversionResult]":
        """Convert N-Triples text to Turtle text."""
        graph, skipped = self.parse_lines(ntriples.splitlines())
        return self.serialize(graph), ConversionResult(statements=len(graph), skipped_lines=skipped)

    def convert(self, nt_path: Union[str, Path], ttl_path: Union[str, Path]) -> ConversionResult:
        """
        Convert an N-Triples file into a Turtle file.

        Raises:
            SerializationError: If the input cannot be read or the output written
        """
        with log_duration(logger, f"Turtle conversion of {nt_path}"):
            try:
                with open(nt_path, 'r', encoding='utf-8', errors='replace') as f:
                    graph, skipped = self.parse_lines(f)
                turtle = self.serialize(graph)
                with open(ttl_path, 'w', encoding='utf-8') as f:
                    f.write(turtle)
            except OSError as e:
                raise SerializationError(
                    f"Turtle conversion failed: {e}",
                    {"nt_path": str(nt_path), "ttl_path": str(ttl_path)}
                )

        return ConversionResult(statements=len(graph), skipped_lines=skipped)
