from typing import Mapping, Any, Optional

from requests import PreparedRequest
from requests.auth import AuthBase, HTTPBasicAuth
from requests_jwtauth import HTTPBearerAuth, JWTSecretAuth

DEFAULT_JWT_CLAIMS = {
    'sub': 'fcrepo-client',
    'iss': 'fcrepo-client',
    'role': 'fedoraAdmin',
}


class ClientCertAuth(AuthBase):
    """Authenticate with a TLS client certificate and its private key."""

    def __init__(self, cert: str, key: str):
        self.cert = cert
        self.key = key

    def __call__(self, request: PreparedRequest) -> PreparedRequest:
        request.cert = (self.cert, self.key)
        return request


def get_authenticator(config: Mapping[str, Any]) -> Optional[AuthBase]:
    """Build the authenticator described by the repository `config`. The
    first of these that is configured wins:

    1. `AUTH_TOKEN`: a bearer token
    2. `JWT_SECRET`: a secret used to sign a JWT with the claims in
       `JWT_CLAIMS` (defaults to `DEFAULT_JWT_CLAIMS`)
    3. `CLIENT_CERT` and `CLIENT_KEY`: a TLS client certificate
    4. `FEDORA_USER` and `FEDORA_PASSWORD`: HTTP Basic credentials, sent
       with every request without waiting for a challenge

    Returns `None` if none of them are configured."""
    if 'AUTH_TOKEN' in config:
        return HTTPBearerAuth(token=config['AUTH_TOKEN'])
    elif 'JWT_SECRET' in config:
        return JWTSecretAuth(
            secret=config['JWT_SECRET'],
            claims=config.get('JWT_CLAIMS', DEFAULT_JWT_CLAIMS),
        )
    elif 'CLIENT_CERT' in config and 'CLIENT_KEY' in config:
        return ClientCertAuth(
            cert=config['CLIENT_CERT'],
            key=config['CLIENT_KEY'],
        )
    elif config.get('FEDORA_USER') and config.get('FEDORA_PASSWORD'):
        return HTTPBasicAuth(
            username=config['FEDORA_USER'],
            password=config['FEDORA_PASSWORD'],
        )
    else:
        return None
