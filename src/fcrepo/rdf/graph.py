import logging
from typing import Optional, Iterable, Iterator, Container

from rdflib import Graph, URIRef
from rdflib.term import Node

logger = logging.getLogger(__name__)

Triple = tuple[Node, Node, Node]

ANY = None
"""Wildcard marker. As a predicate set passed to `filter_triples()`, it
matches every predicate; as a term passed to `TripleStore.find()`, it
matches every value in that position."""


def media_type(content_type: str) -> str:
    """Strip any parameters from a Content-Type header value.

    ```pycon
    >>> media_type('text/turtle;charset=utf-8')
    'text/turtle'
    ```
    """
    return content_type.split(';')[0].strip()


def parse_triples(data: str | bytes, content_type: str, base_uri: str = None) -> Iterator[Triple]:
    """Lazily parse the RDF `data`, serialized as `content_type`, and yield
    its triples. Relative URIs are resolved against `base_uri`. Nothing is
    parsed until the first triple is requested, and the returned iterator
    can only be consumed once."""
    graph = Graph()
    graph.parse(data=data, format=media_type(content_type), publicID=base_uri)
    yield from graph


class TripleStore(Graph):
    """An in-memory set of triples. Triples are only ever added to a store;
    a resource that needs a new set of triples gets a new store.

    The order of the results from `find()` is not specified."""

    def find(self, subject: Node = ANY, predicate: Node = ANY, obj: Node = ANY) -> Iterator[Triple]:
        """Return the triples matching the given pattern. Any term left as
        `ANY` matches all values."""
        return self.triples((subject, predicate, obj))

    def first(self, subject: Node = ANY, predicate: Node = ANY) -> Optional[Node]:
        """Return the object of the first triple matching `subject` and
        `predicate`, or `None` if there are none."""
        for _, _, obj in self.find(subject, predicate):
            return obj
        return None

    def has(self, subject: Node = ANY, predicate: Node = ANY, obj: Node = ANY) -> bool:
        """Whether any triple matches the given pattern."""
        return (subject, predicate, obj) in self


def filter_triples(triples: Iterable[Triple], predicates: Optional[Container[URIRef]] = ANY) -> TripleStore:
    """Build a new `TripleStore` from `triples`, keeping only those whose
    predicate is in `predicates`. If `predicates` is `ANY`, keep every triple.

    The input is drained completely, even when nothing matches, and the
    store is only returned once the whole input has been consumed. If the
    input raises partway through, the exception propagates and the partial
    store is discarded."""
    store = TripleStore()
    kept = 0
    seen = 0
    for triple in triples:
        seen += 1
        if predicates is ANY or triple[1] in predicates:
            store.add(triple)
            kept += 1
    logger.debug(f'Kept {kept} of {seen} triples')
    return store
