"""
Property-based tests for N-Triples to Turtle conversion.

**Property: Malformed lines are skipped without losing valid statements**
"""

import pytest
from hypothesis import given, strategies as st, settings
import rdflib
from rdflib import Graph, Literal, URIRef
from rdflib.compare import isomorphic

from wikidata_radius_dump.data.serializer import TurtleConverter, TURTLE_PREFIXES
from wikidata_radius_dump.utils.errors import SerializationError


ENTITY = "http://www.wikidata.org/entity/"
DIRECT = "http://www.wikidata.org/prop/direct/"
LABEL = "http://www.w3.org/2000/01/rdf-schema#label"
XSD = "http://www.w3.org/2001/XMLSchema#"

MALFORMED_LINES = [
    "this is not a triple",
    "<http://www.wikidata.org/entity/Q1> <http://www.wikidata.org/prop/direct/P31> .",
    "<http://www.wikidata.org/entity/Q1> <http://www.wikidata.org/prop/direct/P31> <http://www.wikidata.org/entity/Q5>",
    '<http://www.wikidata.org/entity/Q1> <http://www.w3.org/2000/01/rdf-schema#label> "unterminated .',
    "<not a uri> <http://www.wikidata.org/prop/direct/P31> <http://www.wikidata.org/entity/Q5> .",
]


def edge_line(subject: int, prop: int, obj: int) -> str:
    return f"<{ENTITY}Q{subject}> <{DIRECT}P{prop}> <{ENTITY}Q{obj}> ."


def label_line(subject: int, text: str) -> str:
    return f'<{ENTITY}Q{subject}> <{LABEL}> "{text}"@en .'


edges = st.tuples(
    st.integers(min_value=1, max_value=10**6),
    st.integers(min_value=1, max_value=5000),
    st.integers(min_value=1, max_value=10**6),
)


class TestTurtleConversionProperties:

    @given(good=st.lists(edges, min_size=0, max_size=40, unique=True),
           bad=st.lists(st.sampled_from(MALFORMED_LINES), min_size=0, max_size=10),
           data=st.data())
    @settings(max_examples=30, deadline=None)
    def test_malformed_lines_skipped(self, good, bad, data):
        """
        **Property: Malformed lines are skipped without losing valid statements**

        With N distinct valid lines and M malformed lines in any order, the
        Turtle output holds exactly the N statements and M lines are reported
        as skipped.
        """
        lines = [edge_line(*edge) for edge in good] + list(bad)
        lines = data.draw(st.permutations(lines))

        turtle, result = TurtleConverter().convert_text("\n".join(lines) + "\n")

        assert result.statements == len(good)
        assert result.skipped_lines == len(bad)

        reparsed = Graph().parse(data=turtle, format="turtle")
        assert len(reparsed) == len(good)
        for subject, prop, obj in good:
            assert (URIRef(f"{ENTITY}Q{subject}"), URIRef(f"{DIRECT}P{prop}"), URIRef(f"{ENTITY}Q{obj}")) in reparsed

    def test_output_uses_wikidata_prefixes(self):
        ntriples = "\n".join([
            edge_line(1, 31, 5),
            label_line(1, "Mona Lisa"),
        ])

        turtle, result = TurtleConverter().convert_text(ntriples)

        assert f"@prefix wd: <{TURTLE_PREFIXES['wd']}>" in turtle
        assert f"@prefix wdt: <{TURTLE_PREFIXES['wdt']}>" in turtle
        assert "wd:Q1" in turtle
        assert "wdt:P31 wd:Q5" in turtle
        assert result.statements == 2
        assert result.skipped_lines == 0

    def test_round_trip_is_isomorphic(self):
        ntriples = "\n".join([
            edge_line(1, 31, 5),
            edge_line(1, 170, 762),
            label_line(762, "Leonardo da Vinci"),
            f'<{ENTITY}Q1> <{DIRECT}P2048> "77"^^<http://www.w3.org/2001/XMLSchema#integer> .',
            f'<{ENTITY}Q1> <{DIRECT}P1476> "La Gioconda \\u00e8"@it .',
        ]) + "\n"

        turtle, _ = TurtleConverter().convert_text(ntriples)

        expected = Graph().parse(data=ntriples, format="nt")
        actual = Graph().parse(data=turtle, format="turtle")
        assert isomorphic(expected, actual)

    def test_wikidata_literals_keep_their_lexical_form(self, monkeypatch):
        """
        **Property: Converted Turtle holds exactly the statements of the N-Triples input**

        Quantities and dates are written the way Wikidata writes them, so the
        lexical form must survive the conversion unchanged.
        """
        ntriples = "\n".join([
            f'<{ENTITY}Q64> <{DIRECT}P1082> "+3677472"^^<{XSD}decimal> .',
            f'<{ENTITY}Q64> <{DIRECT}P2046> "+891.12"^^<{XSD}decimal> .',
            f'<{ENTITY}Q64> <{DIRECT}P571> "+1237-00-00T00:00:00Z"^^<{XSD}dateTime> .',
            f'<{ENTITY}Q64> <{DIRECT}P1128> "0012"^^<{XSD}integer> .',
        ]) + "\n"
        converter = TurtleConverter()

        turtle, result = converter.convert_text(ntriples)

        assert result.statements == 4
        assert '"+3677472"^^xsd:decimal' in turtle
        assert '"+891.12"^^xsd:decimal' in turtle
        assert '"+1237-00-00T00:00:00Z"^^xsd:dateTime' in turtle
        assert '"0012"^^xsd:integer' in turtle

        monkeypatch.setattr(rdflib, "NORMALIZE_LITERALS", False)
        expected, _ = converter.parse_lines(ntriples.splitlines())
        reparsed = Graph().parse(data=turtle, format="turtle")

        assert set(reparsed) == set(expected)
        population = reparsed.value(URIRef(f"{ENTITY}Q64"), URIRef(f"{DIRECT}P1082"))
        assert isinstance(population, Literal)
        assert str(population) == "+3677472"
        assert population.datatype == URIRef(f"{XSD}decimal")

    def test_blank_nodes_shared_across_lines(self):
        lines = [
            f"_:b0 <{DIRECT}P1> <{ENTITY}Q1> .",
            f"_:b0 <{DIRECT}P2> <{ENTITY}Q2> .",
            f"<{ENTITY}Q3> <{DIRECT}P3> _:b0 .",
        ]

        graph, skipped = TurtleConverter().parse_lines(lines)

        assert skipped == 0
        assert len(graph) == 3
        blank_subjects = {s for s in graph.subjects() if not isinstance(s, URIRef)}
        assert len(blank_subjects) == 1

    def test_blank_lines_are_not_counted_as_skipped(self):
        turtle, result = TurtleConverter().convert_text("\n\n" + edge_line(1, 31, 5) + "\n   \n")

        assert result.statements == 1
        assert result.skipped_lines == 0

    def test_convert_files(self, tmp_path):
        nt_path = tmp_path / "dump.nt"
        ttl_path = tmp_path / "dump.ttl"
        nt_path.write_text(edge_line(1, 31, 5) + "\n" + MALFORMED_LINES[0] + "\n", encoding="utf-8")

        result = TurtleConverter().convert(nt_path, ttl_path)

        assert result.statements == 1
        assert result.skipped_lines == 1
        assert len(Graph().parse(str(ttl_path), format="turtle")) == 1

    def test_missing_input_raises_serialization_error(self, tmp_path):
        with pytest.raises(SerializationError):
            TurtleConverter().convert(tmp_path / "absent.nt", tmp_path / "out.ttl")
