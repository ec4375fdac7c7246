from io import BytesIO
from unittest.mock import MagicMock

import pytest
from rdflib import Graph, Literal, URIRef
from requests import ConnectionError, Session

from fcrepo.client import (
    EMBED_RESOURCES,
    Content,
    HttpHelper,
    NotFoundError,
    ParseError,
    ReadOnlyError,
    TransportError,
    ValidationError,
    query_string,
)
from fcrepo.namespaces import fedora
from fcrepo.repo.resources import Binary, Container

OBJ_URI = URIRef('http://localhost:8080/rest/obj')


@pytest.mark.parametrize(
    ('params', 'expected'),
    [
        (None, ''),
        ({}, ''),
        ({'checksum': 'urn:sha1:abc'}, '?checksum=urn:sha1:abc'),
        ({'a': ['1', '2']}, '?a=1&a=2'),
        ({'q': 'x y&z'}, '?q=x+y%26z'),
        ({'a': []}, ''),
        ({'limit': 5}, '?limit=5'),
        ({'ids': (1, 2)}, '?ids=1&ids=2'),
    ]
)
def test_query_string(params, expected):
    assert query_string(params) == expected


def test_build_get(helper):
    request = helper.build_get('/obj', params={'x': '1'}, headers={'Accept': 'text/turtle'})
    assert request.method == 'GET'
    assert request.url == 'http://localhost:8080/rest/obj?x=1'
    assert request.headers['Accept'] == 'text/turtle'


def test_build_post_with_slug(helper):
    request = helper.build_post('/obj', slug='child')
    assert request.method == 'POST'
    assert request.headers['Slug'] == 'child'


def test_build_post_without_slug(helper):
    assert 'Slug' not in helper.build_post('/obj').headers


def test_build_patch(helper):
    request = helper.build_patch('/obj', 'INSERT DATA { <> <http://purl.org/dc/terms/title> "Foo" }')
    assert request.method == 'PATCH'
    assert request.headers['Content-Type'] == 'application/sparql-update'
    assert request.data.startswith(b'INSERT DATA')


@pytest.mark.parametrize('sparql_update', [None, '', '   \n'])
def test_build_patch_blank(helper, sparql_update):
    with pytest.raises(ValidationError):
        helper.build_patch('/obj', sparql_update)


def test_build_content_put(helper):
    stream = BytesIO(b'abc')
    request = helper.build_content_put(
        '/obj/ds',
        Content(content=stream, content_type='text/plain', filename='foo.txt', checksum='urn:sha1:abc'),
    )
    assert request.method == 'PUT'
    assert request.url.endswith('/obj/ds?checksum=urn:sha1:abc')
    assert request.headers['Content-Type'] == 'text/plain'
    assert request.headers['Content-Disposition'] == 'attachment; filename="foo.txt"'
    # the stream is passed along unread
    assert request.data is stream
    assert stream.tell() == 0


def test_build_content_put_without_content(helper):
    request = helper.build_content_put('/obj/ds')
    assert request.url == 'http://localhost:8080/rest/obj/ds'
    assert request.headers == {}
    assert not request.data


def test_build_content_put_checksum_first(helper):
    request = helper.build_content_put('/obj/ds', Content(checksum='urn:sha1:abc'), params={'x': '1'})
    assert request.url == 'http://localhost:8080/rest/obj/ds?checksum=urn:sha1:abc&x=1'


def test_build_triples_put(helper):
    request = helper.build_triples_put('/obj', b'<> <http://purl.org/dc/terms/title> "Foo" .', 'text/turtle')
    assert request.method == 'PUT'
    assert request.headers['Content-Type'] == 'text/turtle'


@pytest.mark.parametrize(
    ('body', 'content_type'),
    [
        (None, 'text/turtle'),
        (b'', None),
        (b'', ' '),
    ]
)
def test_build_triples_put_invalid(helper, body, content_type):
    with pytest.raises(ValidationError):
        helper.build_triples_put('/obj', body, content_type)


@pytest.mark.parametrize('method', ['copy', 'move'])
def test_build_copy_and_move(helper, method):
    request = getattr(helper, f'build_{method}')('/obj', '/other')
    assert request.method == method.upper()
    assert request.url == 'http://localhost:8080/rest/obj'
    assert request.headers['Destination'] == 'http://localhost:8080/rest/other'


@pytest.mark.parametrize('method', ['PUT', 'put', 'POST', 'PATCH', 'DELETE', 'COPY', 'MOVE'])
def test_read_only_rejects_mutating_request(endpoint, method):
    session = MagicMock(spec=Session)
    helper = HttpHelper(endpoint=endpoint, session=session, read_only=True)
    request = helper.build_head('/obj')
    request.method = method

    with pytest.raises(ReadOnlyError):
        helper.execute(request)

    session.send.assert_not_called()


@pytest.mark.parametrize('method', ['GET', 'HEAD', 'OPTIONS'])
def test_read_only_allows_reading(endpoint, method):
    session = MagicMock(spec=Session)
    session.send.return_value = MagicMock(status_code=200, reason='OK')
    helper = HttpHelper(endpoint=endpoint, session=session, read_only=True)
    request = helper.build_get('/obj')
    request.method = method

    response = helper.execute(request)

    assert response.status_code == 200
    session.send.assert_called_once()


def test_execute_connection_failure(endpoint):
    session = MagicMock(spec=Session)
    session.send.side_effect = ConnectionError('Connection refused')
    helper = HttpHelper(endpoint=endpoint, session=session)

    with pytest.raises(TransportError) as e:
        helper.execute(helper.build_get('/obj'))

    assert e.value.retryable is True
    assert isinstance(e.value.__cause__, ConnectionError)


def test_execute_returns_error_responses(helper, mock_send, make_response):
    mock_send(make_response(500))
    assert helper.execute(helper.build_get('/obj')).status_code == 500


def test_load_properties(repo, mock_send, rdf_response):
    graph = Graph()
    graph.add((OBJ_URI, fedora.created, Literal('2014-08-14T15:11:30.118Z')))
    graph.add((OBJ_URI, fedora.mixinTypes, Literal('fedora:object')))
    sent = mock_send(rdf_response(graph, headers={'ETag': '"abc123"'}))

    resource = Container(repo=repo, path='/obj')
    assert repo.helper.load_properties(resource) is resource

    assert resource.etag == 'abc123'
    assert len(resource.graph) == 2
    assert sent[0].method == 'GET'
    assert sent[0].headers['Accept'] == 'application/n-triples'
    assert sent[0].headers['Prefer'] == EMBED_RESOURCES


def test_load_properties_binary_description(repo, mock_send, rdf_response):
    sent = mock_send(rdf_response(Graph()))

    resource = Binary(repo=repo, path='/obj/ds/fcr:metadata')
    repo.helper.load_properties(resource)

    assert sent[0].url == 'http://localhost:8080/rest/obj/ds/fcr:metadata'
    assert 'Prefer' not in sent[0].headers
    assert resource.etag is None


def test_load_properties_not_found(repo, mock_send, make_response):
    mock_send(make_response(404))
    resource = Container(repo=repo, path='/obj')

    with pytest.raises(NotFoundError):
        repo.helper.load_properties(resource)


def test_load_properties_unparseable(repo, mock_send, make_response):
    mock_send(make_response(200, headers={'Content-Type': 'text/turtle'}, content=b'this is not turtle'))
    resource = Container(repo=repo, path='/obj')

    with pytest.raises(ParseError) as e:
        repo.helper.load_properties(resource)

    assert e.value.response.status_code == 200
    assert len(resource.graph) == 0
