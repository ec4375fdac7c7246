import logging
from contextlib import contextmanager
from http import HTTPStatus
from typing import Any, Iterator, Mapping, Optional

import yaml
from requests.auth import AuthBase

from fcrepo.client import (
    FCR_COMMIT,
    FCR_METADATA,
    FCR_ROLLBACK,
    FCR_TX,
    TX_MARKER,
    AlreadyExistsError,
    Content,
    Endpoint,
    HttpHelper,
    NotFoundError,
    RepositoryError,
    TransactionError,
    check_response,
)
from fcrepo.client.auth import get_authenticator
from fcrepo.repo.resources import Binary, Container, Resource, ResourceKind

logger = logging.getLogger(__name__)


def datastream_path(path: str) -> str:
    """Path of the description of the binary at `path`. Paths that already
    address a description are returned as-is.

    ```pycon
    >>> datastream_path('/obj/ds')
    '/obj/ds/fcr:metadata'

    >>> datastream_path('/obj/ds/fcr:metadata')
    '/obj/ds/fcr:metadata'
    ```
    """
    path = path.rstrip('/')
    if path.endswith('/' + FCR_METADATA):
        return path
    return path + '/' + FCR_METADATA


class Transaction:
    """A server-side transaction, identified by a path segment (the token)."""

    def __init__(self, token: str):
        self.token: str = token.strip('/')
        """Transaction identifier, e.g. "tx:83ad1f0b-8b3f-4c32-b0b0-4e6e1c5d0ec2" """
        self.active: bool = True

    def __str__(self):
        return self.token

    @property
    def commit_path(self) -> str:
        """Send a POST request to this path to commit the transaction."""
        return f'/{self.token}/{FCR_TX}/{FCR_COMMIT}'

    @property
    def rollback_path(self) -> str:
        """Send a POST request to this path to roll back the transaction."""
        return f'/{self.token}/{FCR_TX}/{FCR_ROLLBACK}'

    def prefix(self, path: str) -> str:
        """
        Insert the token at the start of `path`, keeping the leading slash
        if there is one. Paths that already contain a transaction token are
        returned as-is.

        ```pycon
        >>> tx = Transaction('tx:123')

        >>> tx.prefix('/obj')
        '/tx:123/obj'

        >>> tx.prefix('obj')
        'tx:123/obj'

        >>> tx.prefix('/tx:123/obj')
        '/tx:123/obj'
        ```
        """
        if TX_MARKER in path:
            return path
        if path.startswith('/'):
            return '/' + self.token + path
        return self.token + '/' + path


class Repository:
    """Entry point for reading and writing repository resources.

    A `Repository` is either unscoped, or scoped to a single transaction
    (see `start_transaction()` and `transaction()`). Every path a scoped
    repository sends a request for is rewritten to include the transaction
    token. Resources remember the repository they were loaded through, so
    operations on them stay in the same transaction."""

    writable: bool = True

    @classmethod
    def from_config_file(cls, filename: str) -> 'Repository':
        """Configure a repository from the `REPOSITORY` section of a YAML file."""
        with open(filename) as file:
            return cls.from_config(config=yaml.safe_load(file).get('REPOSITORY', {}))

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'Repository':
        """Configure a repository from a mapping. `REST_ENDPOINT` is required.
        If `READ_ONLY` is true, a `ReadOnlyRepository` is returned. See
        `fcrepo.client.auth.get_authenticator()` for the authentication keys."""
        repo_class = ReadOnlyRepository if config.get('READ_ONLY', False) else cls
        helper = HttpHelper(
            endpoint=Endpoint(url=config['REST_ENDPOINT']),
            auth=get_authenticator(config),
            server_cert=config.get('SERVER_CERT', None),
            ua_string=config.get('USER_AGENT', None),
            read_only=not repo_class.writable,
        )
        return repo_class(helper=helper)

    @classmethod
    def from_url(cls, url: str, auth: AuthBase = None) -> 'Repository':
        return cls(helper=HttpHelper(endpoint=Endpoint(url=url), auth=auth, read_only=not cls.writable))

    def __init__(self, helper: HttpHelper, tx: Transaction = None):
        if helper.read_only and self.writable:
            raise ValueError(f'{self.__class__.__name__} requires a writable HttpHelper')
        self.helper = helper
        self.tx: Optional[Transaction] = tx
        """The transaction this repository is scoped to, if any"""

    @property
    def endpoint(self) -> Endpoint:
        return self.helper.endpoint

    @property
    def url(self) -> str:
        """Base URL of the repository"""
        return str(self.endpoint.url)

    def transaction_path(self, path: str) -> str:
        """Rewrite `path` to include the transaction token, if this repository
        is scoped to a transaction. Otherwise, return `path` unchanged."""
        if self.tx is None:
            return path
        return self.tx.prefix(path)

    def exists(self, path: str) -> bool:
        """Whether there is a resource at `path`. Raises a `ForbiddenError`
        on 403 Forbidden, and a `ClientError` for any response other than
        200 OK or 404 Not Found."""
        request = self.helper.build_head(self.transaction_path(path))
        response = self.helper.execute(request)
        if response.status_code == HTTPStatus.NOT_FOUND:
            return False
        check_response(response, request.url, action='check')
        return True

    def get_resource(self, path: str, kind: ResourceKind = ResourceKind.CONTAINER) -> Resource:
        """Load the resource at `path` as a `Container` or a `Binary`,
        according to `kind`."""
        loaders = {
            ResourceKind.CONTAINER: self.get_object,
            ResourceKind.BINARY: self.get_datastream,
        }
        return loaders[kind](path)

    def get_datastream(self, path: str) -> Binary:
        """Load the binary at `path`. Raises a `NotFoundError` if there is none."""
        return self.helper.load_properties(Binary(repo=self, path=self.transaction_path(datastream_path(path))))

    def get_object(self, path: str) -> Container:
        """Load the container at `path`. Raises a `NotFoundError` if there is none."""
        return self.helper.load_properties(Container(repo=self, path=self.transaction_path(path)))

    def create_datastream(self, path: str, content: Content = None) -> Binary:
        """Create a binary at `path` with the given `content`, and return it.
        Raises an `AlreadyExistsError` if there is already a resource there."""
        request = self.helper.build_content_put(self.transaction_path(path), content)
        response = self.helper.execute(request)
        check_response(
            response,
            request.url,
            expected=(HTTPStatus.CREATED,),
            action='create resource',
            conflict=AlreadyExistsError,
        )
        logger.info(f'Created binary {request.url}')
        return self.get_datastream(path)

    def create_or_update_redirect_datastream(self, path: str, url: str) -> Binary:
        """Create or replace the binary at `path` so that its content is the
        resource at `url`, instead of stored bytes."""
        request = self.helper.build_content_put(
            self.transaction_path(path),
            Content(content_type=f'message/external-body; access-type=URL; URL="{url}"'),
        )
        response = self.helper.execute(request)
        check_response(
            response,
            request.url,
            expected=(HTTPStatus.CREATED, HTTPStatus.NO_CONTENT),
            action='create resource',
        )
        logger.info(f'Created redirect binary {request.url} to {url}')
        return self.get_datastream(path)

    def create_object(self, path: str) -> Container:
        """Create a container at `path`, and return it. Raises an
        `AlreadyExistsError` if there is already a resource there."""
        request = self.helper.build_put(self.transaction_path(path))
        response = self.helper.execute(request)
        check_response(
            response,
            request.url,
            expected=(HTTPStatus.CREATED,),
            action='create resource',
            conflict=AlreadyExistsError,
        )
        logger.info(f'Created container {request.url}')
        return self.get_object(path)

    def create_resource(self, container_path: str = None, slug: str = None) -> Container:
        """Create a container inside the container at `container_path` (or at
        the repository root, if it is `None`). The repository chooses the new
        path, optionally guided by `slug`."""
        request = self.helper.build_post(self.transaction_path(container_path or ''), slug=slug)
        response = self.helper.execute(request)
        check_response(response, request.url, expected=(HTTPStatus.CREATED,), action='create resource in')
        location = response.headers.get('Location')
        if location is None:
            logger.warning('No Location header in response')
            raise RepositoryError(f'No Location header in response to POST {request.url}', response=response)
        logger.info(f'Created container {location}')
        return self.get_object(self.endpoint.repo_path(location))

    def find_or_create_datastream(self, path: str) -> Binary:
        """Load the binary at `path`, creating an empty one if there is none."""
        try:
            return self.get_datastream(path)
        except NotFoundError:
            logger.debug(f'{path} not found, creating it')
        try:
            return self.create_datastream(path)
        except AlreadyExistsError:
            logger.warning(f'{path} was created by another client after it was not found; loading it')
            return self.get_datastream(path)

    def find_or_create_object(self, path: str) -> Container:
        """Load the container at `path`, creating it if there is none."""
        try:
            return self.get_object(path)
        except NotFoundError:
            logger.debug(f'{path} not found, creating it')
        try:
            return self.create_object(path)
        except AlreadyExistsError:
            logger.warning(f'{path} was created by another client after it was not found; loading it')
            return self.get_object(path)

    def start_transaction(self) -> 'Repository':
        """Start a new transaction, and return a repository scoped to it. This
        repository is not affected. Raises a `TransactionError` if this
        repository is already scoped to a transaction."""
        if self.tx is not None:
            raise TransactionError('Cannot nest transactions')

        request = self.helper.build_post(self.endpoint.transaction_path)
        response = self.helper.execute(request)
        check_response(response, request.url, expected=(HTTPStatus.CREATED,), action='start a transaction at')
        location = response.headers.get('Location')
        if location is None:
            logger.warning('No Location header in response')
            raise TransactionError(f'No transaction location in response to POST {request.url}')

        tx = Transaction(self.endpoint.repo_path(location))
        logger.info(f'Started transaction {tx}')
        return self.__class__(helper=self.helper, tx=tx)

    def _active_transaction(self) -> Transaction:
        if self.tx is None or not self.tx.active:
            raise TransactionError('No active transaction')
        return self.tx

    def commit_transaction(self):
        """Commit the transaction this repository is scoped to. Afterward,
        this repository is no longer scoped to it, even if the commit failed."""
        tx = self._active_transaction()
        request = self.helper.build_post(tx.commit_path)
        try:
            response = self.helper.execute(request)
            check_response(response, request.url, expected=(HTTPStatus.NO_CONTENT,), action='commit transaction')
            logger.info(f'Committed transaction {tx}')
        finally:
            tx.active = False
            self.tx = None

    def rollback_transaction(self):
        """Roll back the transaction this repository is scoped to. Afterward,
        this repository is no longer scoped to it, even if the rollback failed."""
        tx = self._active_transaction()
        request = self.helper.build_post(tx.rollback_path)
        try:
            response = self.helper.execute(request)
            check_response(response, request.url, expected=(HTTPStatus.NO_CONTENT,), action='roll back transaction')
            logger.info(f'Rolled back transaction {tx}')
        finally:
            tx.active = False
            self.tx = None

    @contextmanager
    def transaction(self) -> Iterator['Repository']:
        """Run a block of operations in a transaction:

        ```python
        with repo.transaction() as txn_repo:
            txn_repo.create_object('/foo')
            txn_repo.create_object('/foo/bar')
        ```

        The transaction is committed when the block finishes, or rolled back
        if the block raises an exception (which is then re-raised)."""
        txn_repo = self.start_transaction()
        try:
            yield txn_repo
        except Exception:
            if txn_repo.tx is not None:
                txn_repo.rollback_transaction()
            raise
        else:
            if txn_repo.tx is not None:
                txn_repo.commit_transaction()


class ReadOnlyRepository(Repository):
    """A repository that can only be read. Every operation that would modify
    it raises a `ReadOnlyError` before anything is sent."""

    writable = False

    def __init__(self, helper: HttpHelper, tx: Transaction = None):
        if not helper.read_only:
            raise ValueError(f'{self.__class__.__name__} requires a read-only HttpHelper')
        super().__init__(helper=helper, tx=tx)
