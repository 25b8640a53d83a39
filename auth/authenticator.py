from auth.token_store import ACCESS_TOKEN, CredentialStore
from http_transport import ApiRequest


class RequestAuthenticator:
    """Attach the stored access token to an outgoing request.

    Returns a copy carrying ``Authorization: Bearer <token>``, or the request
    itself when no token is stored; the server is left to reject it.
    """

    def __init__(self, store: CredentialStore):
        self._store = store

    def __call__(self, request: ApiRequest) -> ApiRequest:
        token = self._store.get(ACCESS_TOKEN)
        if not token:
            return request
        return request.with_bearer(token)
