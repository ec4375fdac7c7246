"""Common test fixtures"""

from typing import Callable, Mapping

import pytest
import requests
from rdflib import Graph
from requests import Response
from requests.structures import CaseInsensitiveDict

from fcrepo.client import Endpoint, HttpHelper
from fcrepo.repo import Repository

REPO_URL = 'http://localhost:8080/rest'


@pytest.fixture()
def endpoint():
    return Endpoint(url=REPO_URL)


@pytest.fixture()
def helper(endpoint):
    return HttpHelper(endpoint=endpoint)


@pytest.fixture()
def read_only_helper(endpoint):
    return HttpHelper(endpoint=endpoint, read_only=True)


@pytest.fixture()
def repo(helper):
    return Repository(helper=helper)


@pytest.fixture()
def make_response() -> Callable[..., Response]:
    """Build a `requests.Response` object without making a request."""
    def _make_response(
            status_code: int = 200,
            reason: str = None,
            headers: Mapping[str, str] = None,
            content: bytes = b'',
    ) -> Response:
        response = Response()
        response.status_code = status_code
        response.reason = reason
        response.headers = CaseInsensitiveDict(headers or {})
        response._content = content
        return response
    return _make_response


@pytest.fixture()
def rdf_response(make_response) -> Callable[..., Response]:
    """Build a 200 OK response whose body is `graph` serialized as N-Triples."""
    def _rdf_response(graph: Graph, headers: Mapping[str, str] = None) -> Response:
        return make_response(
            headers={'Content-Type': 'application/n-triples', **(headers or {})},
            content=graph.serialize(format='nt').encode(),
        )
    return _rdf_response


@pytest.fixture
def mock_send(monkeypatch):
    """Replace `requests.Session.send` with a function that records each
    prepared request and returns the given responses in order. Once only
    one response is left, it is returned for every following request.

    Returns the list that the sent requests are appended to."""
    def _mock_send(*responses: Response) -> list[requests.PreparedRequest]:
        sent = []
        queue = list(responses)

        def _send(_session, request, **_kwargs):
            sent.append(request)
            return queue.pop(0) if len(queue) > 1 else queue[0]

        monkeypatch.setattr(requests.Session, 'send', _send)
        return sent
    return _mock_send
