import logging
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from http import HTTPStatus
from io import BytesIO
from typing import TYPE_CHECKING, BinaryIO, Iterator, Optional

from rdflib import Graph, Literal, URIRef
from rdflib.term import Node

from fcrepo.client import (
    ACCEPT_RDF,
    EMBED_RESOURCES,
    FCR_FIXITY,
    FCR_TOMBSTONE,
    Content,
    FixityError,
    HttpHelper,
    check_response,
)
from fcrepo.namespaces import (
    BINARY_MIXINS,
    BINARY_TYPES,
    CONTAINS,
    CREATED_DATE,
    DESCRIBES,
    DIGEST,
    HAS_EVENT_OUTCOME,
    HAS_MIME_TYPE,
    HAS_MIXIN_TYPE,
    HAS_ORIGINAL_NAME,
    HAS_SIZE,
    LAST_MODIFIED_DATE,
    WRITABLE,
    rdf,
)
from fcrepo.rdf.graph import Triple, TripleStore, filter_triples, parse_triples

if TYPE_CHECKING:
    from fcrepo.repo import Repository

logger = logging.getLogger(__name__)

DATE_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'


class ResourceKind(Enum):
    """The two kinds of repository nodes."""
    CONTAINER = 'container'
    BINARY = 'binary'


def classify(graph: Graph, subject: Node) -> ResourceKind:
    """Determine the kind of the resource `subject` from what `graph` says
    about it. A resource is a binary if it has a binary mixin type
    (e.g., "fedora:datastream") or a binary `rdf:type`; otherwise, it is
    a container."""
    if any(str(mixin) in BINARY_MIXINS for mixin in graph.objects(subject, HAS_MIXIN_TYPE)):
        return ResourceKind.BINARY
    if any(rdf_type in BINARY_TYPES for rdf_type in graph.objects(subject, rdf.type)):
        return ResourceKind.BINARY
    return ResourceKind.CONTAINER


def parse_date(value: Optional[Node]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, Literal) and isinstance(value.toPython(), datetime):
        return value.toPython()
    try:
        return datetime.strptime(str(value), DATE_FORMAT)
    except ValueError:
        logger.debug(f'Invalid date format: {value}')
        return None


def parent_path(path: str) -> str:
    """Path of the parent of `path`.

    ```pycon
    >>> parent_path('/obj/ds/fcr:metadata')
    '/obj/ds'

    >>> parent_path('/obj/')
    ''
    ```
    """
    return path.rstrip('/').rsplit('/', 1)[0]


class Resource:
    """A node in the repository, and the graph of its properties as last
    loaded from the repository."""

    kind: ResourceKind
    prefer: Optional[str] = None
    """`Prefer` header value to send when loading properties"""

    def __init__(self, repo: 'Repository', path: str):
        self.repo = repo
        self.path = path
        self.graph: TripleStore = TripleStore()
        self.etag: Optional[str] = None

    def __str__(self):
        return self.path

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.path}>'

    @property
    def helper(self) -> HttpHelper:
        return self.repo.helper

    @property
    def uri(self) -> URIRef:
        """Subject URI of this resource in its graph"""
        return URIRef(self.helper.endpoint.url_for(self.path))

    @property
    def properties_path(self) -> str:
        """Path to send requests for the RDF description of this resource to."""
        return self.path

    @property
    def node_path(self) -> str:
        """Path to send requests that act on the resource as a whole to
        (delete, copy, move)."""
        return self.path

    @property
    def properties_subject(self) -> URIRef:
        """Subject of the server-managed properties (dates, mixins, writability)"""
        return self.uri

    @property
    def name(self) -> str:
        return self.path.rstrip('/').split('/')[-1]

    @property
    def created(self) -> Optional[datetime]:
        return parse_date(self.graph.first(self.properties_subject, CREATED_DATE))

    @property
    def last_modified(self) -> Optional[datetime]:
        return parse_date(self.graph.first(self.properties_subject, LAST_MODIFIED_DATE))

    @property
    def mixins(self) -> set[str]:
        return {str(mixin) for mixin in self.graph.objects(self.properties_subject, HAS_MIXIN_TYPE)}

    @property
    def properties(self) -> Iterator[Triple]:
        return self.graph.find()

    @property
    def size(self) -> int:
        """Number of triples in this resource's graph"""
        return len(self.graph)

    @property
    def writable(self) -> bool:
        value = self.graph.first(self.properties_subject, WRITABLE)
        if value is None:
            return False
        if isinstance(value, Literal) and isinstance(value.toPython(), bool):
            return value.toPython()
        return str(value).lower() == 'true'

    @property
    def has_content(self) -> bool:
        return self.graph.has(self.uri, DESCRIBES)

    def reload(self):
        """Replace the graph of this resource with its current description
        from the repository. Returns the resource itself."""
        return self.helper.load_properties(self)

    def update_properties(self, sparql_update: str):
        """Apply a SPARQL Update to the description of this resource, then
        reload it."""
        request = self.helper.build_patch(self.properties_path, sparql_update)
        response = self.helper.execute(request)
        check_response(
            response,
            request.url,
            expected=(HTTPStatus.NO_CONTENT, HTTPStatus.OK),
            action='update properties of',
        )
        logger.info(f'Updated properties of {self}')
        return self.reload()

    def replace_properties(self, body: BinaryIO | bytes | str, content_type: str):
        """Replace the description of this resource with the RDF in `body`,
        serialized as `content_type`, then reload it."""
        request = self.helper.build_triples_put(self.properties_path, body, content_type)
        response = self.helper.execute(request)
        check_response(
            response,
            request.url,
            expected=(HTTPStatus.NO_CONTENT, HTTPStatus.CREATED, HTTPStatus.OK),
            action='replace properties of',
        )
        logger.info(f'Replaced properties of {self}')
        return self.reload()

    def delete(self):
        request = self.helper.build_delete(self.node_path)
        response = self.helper.execute(request)
        check_response(response, request.url, expected=(HTTPStatus.NO_CONTENT, HTTPStatus.OK), action='delete')
        logger.info(f'Deleted resource {request.url}')

    def delete_tombstone(self):
        request = self.helper.build_delete(self.node_path.rstrip('/') + '/' + FCR_TOMBSTONE)
        response = self.helper.execute(request)
        check_response(response, request.url, expected=(HTTPStatus.NO_CONTENT,), action='delete')
        logger.info(f'Deleted tombstone {request.url}')

    def force_delete(self):
        """Delete this resource and the tombstone it leaves behind, so that
        its path can be reused."""
        self.delete()
        self.delete_tombstone()

    def copy(self, destination: str) -> 'Resource':
        """Copy this resource (and everything it contains) to the
        `destination` path, and return the copy."""
        destination = self.repo.transaction_path(destination)
        request = self.helper.build_copy(self.node_path, destination)
        response = self.helper.execute(request)
        check_response(response, request.url, expected=(HTTPStatus.CREATED, HTTPStatus.NO_CONTENT), action='copy')
        logger.info(f'Copied {self} to {destination}')
        return self.repo.get_resource(destination, self.kind)

    def move(self, destination: str) -> 'Resource':
        """Move this resource to the `destination` path, and return it as
        loaded from its new location. The repository leaves a tombstone at
        the old path."""
        destination = self.repo.transaction_path(destination)
        request = self.helper.build_move(self.node_path, destination)
        response = self.helper.execute(request)
        check_response(response, request.url, expected=(HTTPStatus.CREATED, HTTPStatus.NO_CONTENT), action='move')
        logger.info(f'Moved {self} to {destination}')
        return self.repo.get_resource(destination, self.kind)

    def force_move(self, destination: str) -> 'Resource':
        """Move this resource, then delete the tombstone at its old path."""
        moved = self.move(destination)
        self.delete_tombstone()
        return moved


class Container(Resource):
    """A resource that can contain other resources."""

    kind = ResourceKind.CONTAINER
    prefer = EMBED_RESOURCES

    def get_children(self, mixin: str = None) -> set[Resource]:
        """Load the resources contained by this container. If `mixin` is given,
        only children with that mixin type are included. Each child is loaded
        as a `Binary` or a `Container`, according to its kind."""
        children = set()
        for _, _, child in self.graph.find(self.uri, CONTAINS):
            if mixin is not None and mixin not in {str(m) for m in self.graph.objects(child, HAS_MIXIN_TYPE)}:
                continue
            path = self.helper.endpoint.repo_path(str(child))
            children.add(self.repo.get_resource(path, classify(self.graph, child)))
        return children

    def create_object(self, slug: str = None) -> 'Container':
        """Create a new container inside this one, at a path chosen by the
        repository."""
        return self.repo.create_resource(self.path, slug=slug)


class Binary(Resource):
    """A resource holding binary content. Its path addresses the description
    of the content; the content itself is at the parent path, which is also
    the subject of the content properties."""

    kind = ResourceKind.BINARY

    @property
    def content_path(self) -> str:
        return parent_path(self.path)

    @property
    def content_subject(self) -> URIRef:
        return URIRef(self.helper.endpoint.url_for(self.content_path))

    @property
    def node_path(self) -> str:
        return self.content_path

    @property
    def properties_subject(self) -> URIRef:
        return self.content_subject

    @property
    def name(self) -> str:
        return self.content_path.rstrip('/').split('/')[-1]

    def _content_value(self, predicate: URIRef) -> Optional[Node]:
        if not self.has_content:
            return None
        return self.graph.first(self.content_subject, predicate)

    @property
    def content_digest(self) -> Optional[str]:
        value = self._content_value(DIGEST)
        return str(value) if value is not None else None

    @property
    def content_size(self) -> Optional[int]:
        value = self._content_value(HAS_SIZE)
        return int(value) if value is not None else None

    @property
    def filename(self) -> Optional[str]:
        value = self._content_value(HAS_ORIGINAL_NAME)
        return str(value) if value is not None else None

    @property
    def content_type(self) -> Optional[str]:
        value = self._content_value(HAS_MIME_TYPE)
        return str(value) if value is not None else None

    def get_object(self) -> Container:
        """Load the container this binary belongs to."""
        return self.repo.get_object(parent_path(self.content_path))

    def get_content(self) -> BinaryIO:
        """Request the content of this binary, and return it as a `BytesIO` object.
        The whole content is read into memory before this returns."""
        request = self.helper.build_get(self.content_path)
        response = self.helper.execute(request)
        check_response(response, request.url, action='retrieve content of')
        return BytesIO(response.content)

    @contextmanager
    def open(self):
        """Context manager version of `get_content()`."""
        content = self.get_content()
        try:
            yield content
        finally:
            content.close()

    def update_content(self, content: Content):
        """Replace the content of this binary, then reload its description.
        If `content` has a checksum that does not match what the repository
        receives, raises a `ConflictError`."""
        request = self.helper.build_content_put(self.content_path, content)
        response = self.helper.execute(request)
        check_response(
            response,
            request.url,
            expected=(HTTPStatus.CREATED, HTTPStatus.NO_CONTENT),
            action='update content of',
        )
        logger.debug(f'Content updated successfully for resource {request.url}')
        return self.reload()

    def check_fixity(self) -> set[str]:
        """Ask the repository to recompute the digest of the stored content.
        Returns the set of outcomes reported. Raises a `FixityError` unless
        every outcome is "SUCCESS"."""
        request = self.helper.build_get(
            self.content_path.rstrip('/') + '/' + FCR_FIXITY,
            headers={'Accept': ACCEPT_RDF},
        )
        response = self.helper.execute(request)
        check_response(response, request.url, action='check fixity of')
        results = filter_triples(
            parse_triples(response.content, response.headers.get('Content-Type', ACCEPT_RDF), base_uri=request.url),
            {HAS_EVENT_OUTCOME},
        )
        outcomes = {str(outcome) for _, _, outcome in results.find()}
        if outcomes != {'SUCCESS'}:
            logger.error(f'Fixity check failed for {self.content_subject}: {", ".join(sorted(outcomes))}')
            raise FixityError(f'Fixity check failed for {self.content_subject}', response=response)
        return outcomes
