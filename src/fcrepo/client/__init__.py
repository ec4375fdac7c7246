import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, BinaryIO, Collection, Mapping, Optional, Type
from urllib.parse import quote_plus

from requests import Request, Response, Session
from requests.adapters import HTTPAdapter
from requests.auth import AuthBase
from requests.exceptions import RequestException
from urlobject import URLObject

from fcrepo.rdf.graph import ANY, filter_triples, parse_triples

logger = logging.getLogger(__name__)

ACCEPT_RDF = 'application/n-triples'
SPARQL_UPDATE = 'application/sparql-update'
EMBED_RESOURCES = 'return=representation; include="http://fedora.info/definitions/v4/repository#EmbedResources"'

TX_MARKER = 'tx:'
FCR_TX = 'fcr:tx'
FCR_COMMIT = 'fcr:commit'
FCR_ROLLBACK = 'fcr:rollback'
FCR_METADATA = 'fcr:metadata'
FCR_TOMBSTONE = 'fcr:tombstone'
FCR_FIXITY = 'fcr:fixity'

MUTATING_METHODS = {'copy', 'delete', 'move', 'patch', 'post', 'put'}
DEFAULT_POOL_SIZE = 10


def reason_phrase(response: Response) -> str:
    """The reason phrase of `response`. If the response does not have one,
    use the standard phrase for its status code, if there is one."""
    if response.reason:
        return response.reason
    try:
        return HTTPStatus(response.status_code).phrase
    except ValueError:
        return ''


def unquote_etag(value: str) -> str:
    """Remove the surrounding double quotes from an ETag header value.

    ```pycon
    >>> unquote_etag('"2a0e84efa8a39de57ebbc5ed3bc7e454a1a768de"')
    '2a0e84efa8a39de57ebbc5ed3bc7e454a1a768de'

    >>> unquote_etag('2a0e84efa8a39de57ebbc5ed3bc7e454a1a768de')
    '2a0e84efa8a39de57ebbc5ed3bc7e454a1a768de'
    ```
    """
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def query_string(params: Optional[Mapping[str, Any]] = None) -> str:
    """Build a query string from `params`. Each value is converted to a string
    and URL-encoded, and a name with a list of values is repeated once per
    value. The result starts with "?", unless there are no parameters, in
    which case it is the empty string.

    ```pycon
    >>> query_string({'checksum': 'urn:sha1:abc'})
    '?checksum=urn:sha1:abc'

    >>> query_string({'a': ['1', '2'], 'b': 'x y'})
    '?a=1&a=2&b=x+y'

    >>> query_string({'limit': 5})
    '?limit=5'

    >>> query_string({})
    ''
    ```
    """
    if not params:
        return ''
    pairs = []
    for name, values in params.items():
        if not isinstance(values, (list, tuple, set, frozenset)):
            values = [values]
        for value in values:
            pairs.append(f'{name}={quote_plus(str(value), safe=":")}')
    return '?' + '&'.join(pairs) if pairs else ''


class RepositoryError(Exception):
    """Base class for all errors raised by this library."""

    retryable: bool = False
    """Whether the same call might succeed if the caller tries it again."""

    def __init__(self, *args, response: Response = None):
        super().__init__(*args)
        self.response = response
        """HTTP response that triggered this error."""


class TransportError(RepositoryError):
    """Raised when a request could not be sent, or no response was received."""
    retryable = True


class ParseError(RepositoryError):
    """Raised when a response body cannot be parsed as RDF."""


class ValidationError(RepositoryError):
    """Raised when a request cannot be built from the given arguments. No
    request has been sent when this is raised."""


class ReadOnlyError(RepositoryError):
    """Raised when a mutating request is attempted using a read-only
    repository. No request has been sent when this is raised."""


class TransactionError(RepositoryError):
    """Raised when a transaction cannot be started, committed, or rolled back
    in the current state."""


class FixityError(RepositoryError):
    """Raised when the repository reports that the stored content of a binary
    does not match its recorded digest."""


class ClientError(RepositoryError):
    """Raised when the repository sends an HTTP error response (4xx or 5xx)
    that is not covered by a more specific subclass."""

    def __init__(self, response: Response, *args):
        super().__init__(*args, response=response)

        self.status_code: int = response.status_code
        """The numeric HTTP status code (e.g., 404) for the failed request."""

        self.reason: str = reason_phrase(response)
        """The reason phrase (e.g., "Not Found") for the failed request. If
        the `response` does not have a reason phrase, use the standard phrase
        from the built-in `HTTPStatus` enumeration corresponding to the
        `status_code`."""

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500

    def __str__(self):
        message = super().__str__()
        if message:
            return f'{message}: {self.status_code} {self.reason}'
        return f'{self.status_code} {self.reason}'


class BadRequestError(ClientError):
    """Raised on a 400 Bad Request response; usually, the repository does not
    accept the format of the representation that was sent or requested."""


class ForbiddenError(ClientError):
    """Raised on a 403 Forbidden response."""


class NotFoundError(ClientError):
    """Raised on a 404 Not Found response."""


class ConflictError(ClientError):
    """Raised on a 409 Conflict response, e.g. a checksum mismatch or a lock."""


class AlreadyExistsError(ConflictError):
    """Raised on a 409 Conflict response to a request to create a resource."""


STATUS_ERRORS: dict[int, Type[ClientError]] = {
    HTTPStatus.BAD_REQUEST: BadRequestError,
    HTTPStatus.FORBIDDEN: ForbiddenError,
    HTTPStatus.NOT_FOUND: NotFoundError,
    HTTPStatus.CONFLICT: ConflictError,
}


def check_response(
        response: Response,
        url: str,
        expected: Collection[int] = (HTTPStatus.OK,),
        action: str = 'retrieve',
        conflict: Type[ConflictError] = ConflictError,
) -> Response:
    """Return `response` if its status code is one of the `expected` codes.
    Otherwise, log and raise the error matching the status code:

    * 400 raises `BadRequestError`
    * 403 raises `ForbiddenError`
    * 404 raises `NotFoundError`
    * 409 raises the `conflict` class (`AlreadyExistsError` when creating)
    * anything else raises `ClientError`

    The `action` is a verb phrase describing the request, used in the error
    message."""
    if response.status_code in expected:
        return response

    if response.status_code == HTTPStatus.CONFLICT:
        error_class = conflict
    else:
        error_class = STATUS_ERRORS.get(response.status_code, ClientError)

    if error_class is ForbiddenError:
        message = f'Request to {action} {url} is not authorized'
    elif error_class is NotFoundError:
        message = f'Resource {url} does not exist, cannot {action}'
    elif error_class is AlreadyExistsError:
        message = f'Resource {url} already exists'
    else:
        message = f'Unable to {action} {url}'
    logger.error(f'{message}: {response.status_code} {reason_phrase(response)}')
    raise error_class(response, message)


class Endpoint:
    """Conceptual entry point for a repository."""

    def __init__(self, url: str):
        self.url = URLObject(url)
        """Base URL of the repository REST API"""

    def __str__(self):
        return str(self.url)

    def __contains__(self, item):
        return self.contains(item)

    def contains(self, uri: str) -> bool:
        """
        Returns `True` if the given URI string is contained within this
        repository, `False` otherwise. You may also use the builtin operator
        `in` to do this same check:

        ```pycon
        >>> endpoint = Endpoint(url='http://localhost:8080/rest')

        >>> 'http://localhost:8080/rest/123' in endpoint
        True

        >>> 'http://example.com/123' in endpoint
        False
        ```
        """
        base = self.url.rstrip('/')
        return uri == base or uri.startswith(base + '/')

    def url_for(self, path: str) -> str:
        """
        Returns the absolute URL for a repository path. Exactly one slash
        separates the base URL from the path, whether or not either of them
        has one:

        ```pycon
        >>> endpoint = Endpoint(url='http://localhost:8080/rest/')

        >>> endpoint.url_for('/obj/123')
        'http://localhost:8080/rest/obj/123'

        >>> endpoint.url_for('obj/123')
        'http://localhost:8080/rest/obj/123'

        >>> endpoint.url_for('')
        'http://localhost:8080/rest/'
        ```
        """
        if not path:
            return str(self.url)
        return self.url.rstrip('/') + '/' + path.lstrip('/')

    def repo_path(self, uri: Optional[str]) -> Optional[str]:
        """
        Returns the repository path for the given resource URI, i.e. the
        URI with the base URL removed. The path always starts with a slash.
        URIs outside of this repository are returned unchanged.

        ```pycon
        >>> endpoint = Endpoint(url='http://localhost:8080/rest')

        >>> endpoint.repo_path('http://localhost:8080/rest/obj/123')
        '/obj/123'
        ```
        """
        if uri is None:
            return None
        if not self.contains(uri):
            return uri
        return '/' + uri[len(self.url.rstrip('/')):].lstrip('/')

    @property
    def transaction_path(self) -> str:
        """Send an HTTP POST request to this path to create a new transaction."""
        return '/' + FCR_TX


@dataclass
class Content:
    """Binary content to send to the repository, with its optional
    descriptive metadata."""

    content: Optional[BinaryIO] = None
    """Stream of bytes. It is read once, while the request is sent."""

    content_type: Optional[str] = None
    """MIME type, e.g. "image/jpeg" """

    filename: Optional[str] = None
    """Original filename, sent in a `Content-Disposition` header"""

    checksum: Optional[str] = None
    """Expected digest, as a URI, e.g. "urn:sha1:187ff331acaea139c8dc1eb77da8be32bd81ac7d".
    The repository rejects the content if it does not match."""


class SessionHeaderAttribute:
    """Descriptor that maps an attribute to a session header name. Requires
    the instance to have a `session` attribute with a `headers` attribute whose
    value is a mapping that supports the methods `get()` and `update()`, plus
    the `del` operator."""

    def __init__(self, header_name: str):
        self.header_name = header_name
        """The HTTP header name"""

    def __set_name__(self, owner, name):
        self.name = name

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return instance.session.headers.get(self.header_name, None)

    def __set__(self, instance, value):
        if value is not None:
            instance.session.headers.update({self.header_name: str(value)})

    def __delete__(self, instance):
        try:
            del instance.session.headers[self.header_name]
        except KeyError:
            pass


class HttpHelper:
    """Builds and sends the HTTP requests for repository operations. This is
    the only place that knows how repository paths become URLs, how payloads
    become request bodies, and which methods modify the repository.

    When `read_only` is true, mutating requests are rejected with a
    `ReadOnlyError` before they are sent."""

    ua_string = SessionHeaderAttribute('User-Agent')
    """`User-Agent` header value"""
    session: Session
    """Underlying Requests library `Session` object, or a subclass thereof"""

    def __init__(
        self,
        endpoint: Endpoint,
        session: Session = None,
        auth: AuthBase = None,
        server_cert: str = None,
        ua_string: str = None,
        read_only: bool = False,
        pool_size: int = DEFAULT_POOL_SIZE,
    ):
        self.endpoint: Endpoint = endpoint
        """Repository endpoint"""
        self.read_only: bool = read_only

        if session is None:
            self.session = Session()
            # no automatic retries; a failed request is reported once
            adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0)
            self.session.mount('http://', adapter)
            self.session.mount('https://', adapter)
        else:
            # otherwise, use the session object as is
            self.session = session

        if auth is not None:
            self.session.auth = auth
        if server_cert is not None:
            self.session.verify = server_cert
        self.ua_string = ua_string

    def url(self, path: str, params: Optional[Mapping[str, Any]] = None) -> str:
        """Absolute URL, with query string, for the repository `path`."""
        return self.endpoint.url_for(path) + query_string(params)

    def build_head(self, path: str) -> Request:
        return Request('HEAD', self.url(path))

    def build_get(self, path: str, params: Mapping[str, Any] = None, headers: Mapping[str, str] = None) -> Request:
        return Request('GET', self.url(path, params), headers=dict(headers or {}))

    def build_delete(self, path: str) -> Request:
        return Request('DELETE', self.url(path))

    def build_post(self, path: str, params: Mapping[str, Any] = None, slug: str = None) -> Request:
        """Build a POST request. The `slug` is sent as a hint for the path
        segment of a resource created by this request."""
        headers = {}
        if slug is not None:
            headers['Slug'] = slug
        return Request('POST', self.url(path, params), headers=headers)

    def build_put(self, path: str, params: Mapping[str, Any] = None) -> Request:
        return Request('PUT', self.url(path, params))

    def build_patch(self, path: str, sparql_update: str) -> Request:
        """Build a PATCH request carrying a SPARQL Update. Raises a
        `ValidationError` if `sparql_update` is blank."""
        if sparql_update is None or not sparql_update.strip():
            raise ValidationError('SPARQL Update command must not be blank')
        return Request(
            'PATCH',
            self.url(path),
            headers={'Content-Type': SPARQL_UPDATE},
            data=sparql_update.encode(),
        )

    def build_content_put(self, path: str, content: Content = None, params: Mapping[str, Any] = None) -> Request:
        """Build a PUT request that sends binary content to `path`. The
        checksum, filename, and content type of the `content` become a
        `checksum` query parameter, a `Content-Disposition` header, and a
        `Content-Type` header, respectively. The content stream is passed
        through to the transport without being read here."""
        headers = {}
        body = None
        query = {}
        if content is not None:
            if content.checksum is not None:
                query['checksum'] = content.checksum
            if content.filename is not None:
                headers['Content-Disposition'] = f'attachment; filename="{content.filename}"'
            if content.content_type is not None:
                headers['Content-Type'] = content.content_type
            body = content.content
        query.update(params or {})
        return Request('PUT', self.url(path, query), headers=headers, data=body)

    def build_triples_put(self, path: str, body: BinaryIO | bytes | str, content_type: str) -> Request:
        """Build a PUT request that replaces the RDF description at `path`.
        Raises a `ValidationError` if there is no `body` or `content_type`."""
        if body is None:
            raise ValidationError('RDF body must not be empty')
        if content_type is None or not content_type.strip():
            raise ValidationError('Content type must not be blank')
        return Request('PUT', self.url(path), headers={'Content-Type': content_type}, data=body)

    def build_copy(self, source_path: str, destination_path: str) -> Request:
        return Request('COPY', self.url(source_path), headers={'Destination': self.url(destination_path)})

    def build_move(self, source_path: str, destination_path: str) -> Request:
        return Request('MOVE', self.url(source_path), headers={'Destination': self.url(destination_path)})

    def execute(self, request: Request, stream: bool = False) -> Response:
        """Send `request` using the configured `session`, and return the
        response, whatever its status code.

        Raises a `ReadOnlyError` without sending anything if this helper is
        read-only and the request method can modify the repository. Raises a
        `TransportError` if the request cannot be sent or no response arrives."""
        if self.read_only and request.method.lower() in MUTATING_METHODS:
            logger.warning(f'Write operation attempted using read-only repository: {request.method} {request.url}')
            raise ReadOnlyError(f'Cannot send {request.method.upper()} {request.url} to a read-only repository')

        logger.debug(f'{request.method} {request.url}')
        try:
            response = self.session.send(self.session.prepare_request(request), stream=stream)
        except RequestException as e:
            message = ' '.join(str(arg) for arg in e.args)
            logger.error(message)
            raise TransportError(f'Unable to {request.method} {request.url}: {message}') from e
        logger.debug(f'{response.status_code} {reason_phrase(response)}')
        return response

    def load_properties(self, resource):
        """Fetch the RDF description of `resource` and replace its graph with
        the parsed triples. Also records the ETag, if the repository sends
        one. Returns the `resource`.

        Raises a `ClientError` (or subclass) if the repository does not send
        a 200 OK response, and a `ParseError` if the response body is not
        parseable RDF."""
        headers = {'Accept': ACCEPT_RDF}
        if resource.prefer is not None:
            headers['Prefer'] = resource.prefer
        request = self.build_get(resource.properties_path, headers=headers)
        response = self.execute(request)
        check_response(response, request.url, action='retrieve')

        etag = response.headers.get('ETag')
        if etag is not None:
            resource.etag = unquote_etag(etag)

        content_type = response.headers.get('Content-Type', ACCEPT_RDF)
        try:
            graph = filter_triples(parse_triples(response.content, content_type, base_uri=request.url), ANY)
        except Exception as e:
            logger.error(f'Unable to parse {content_type} description of {request.url}: {e}')
            raise ParseError(f'Unable to parse description of {request.url}', response=response) from e

        resource.graph = graph
        logger.debug(f'Updated properties for resource {request.url}')
        return resource
