"""
Token endpoint calls: authorization_code grant and refresh_token grant, each narrowed to
exactly one declared resource (RFC 8707) and authenticated with a client assertion.
"""
import logging

import httpx

from resource_indicators.errors import TokenEndpointError, TokenRequestError
from resource_indicators.models import (
    AuthorizationResult,
    AuthorizationServerMetadata,
    ClientAssertion,
    ResourceSet,
    TokenSet,
)

logger = logging.getLogger(__name__)


def _error_from_response(r: httpx.Response) -> TokenEndpointError:
    """OAuth error body (RFC 6749 §5.2) if there is one, else the HTTP status."""
    err = {}
    if r.headers.get("content-type", "").startswith("application/json"):
        try:
            body = r.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            err = body
    return TokenEndpointError(
        error=err.get("error") or f"http_{r.status_code}",
        description=err.get("error_description"),
        status_code=r.status_code,
    )


class TokenExchangeEngine:
    def __init__(
        self,
        metadata: AuthorizationServerMetadata,
        client_id: str,
        redirect_uri: str,
        resources: ResourceSet,
        http_client: httpx.Client,
    ):
        self.metadata = metadata
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.resources = resources
        self._http = http_client
        self._sent_assertions: set[str] = set()

    def exchange_code(
        self,
        authorization: AuthorizationResult,
        resource: str,
        client_assertion: ClientAssertion,
        *,
        code_verifier: str,
    ) -> TokenSet:
        """Exchange the authorization code for tokens whose audience is resource."""
        data = {
            "grant_type": "authorization_code",
            "code": authorization.code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": code_verifier,
        }
        return self._request(data, resource, client_assertion)

    def exchange_refresh(self, refresh_token: str, resource: str, client_assertion: ClientAssertion) -> TokenSet:
        """Use the refresh token to get an access token whose audience is resource."""
        if not refresh_token:
            raise ValueError("refresh_token is required for the refresh_token grant")
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return self._request(data, resource, client_assertion)

    def _request(self, data: dict, resource: str, client_assertion: ClientAssertion) -> TokenSet:
        self.resources.require(resource)
        if client_assertion.jti in self._sent_assertions:
            raise ValueError("Client assertion already used; build a new one per token request")
        self._sent_assertions.add(client_assertion.jti)

        data = {
            **data,
            "resource": resource,
            "client_id": self.client_id,
            "client_assertion_type": client_assertion.type,
            "client_assertion": client_assertion.value,
        }
        grant_type = data["grant_type"]
        logger.info("Requesting %s grant for resource %s", grant_type, resource)
        try:
            r = self._http.post(
                self.metadata.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TokenRequestError(f"Token request to {self.metadata.token_endpoint} failed: {e}") from e

        if r.status_code != 200:
            error = _error_from_response(r)
            logger.warning("Token endpoint rejected %s grant for %s: %s", grant_type, resource, error)
            raise error
        try:
            body = r.json()
        except ValueError:
            raise TokenEndpointError("invalid_response", "Token response is not JSON", r.status_code) from None
        if not isinstance(body, dict):
            raise TokenEndpointError("invalid_response", "Token response is not a JSON object", r.status_code)
        if body.get("error"):
            raise TokenEndpointError(body["error"], body.get("error_description"), r.status_code)

        tokens = TokenSet.from_response(body, resource=resource)
        logger.info(
            "Received access token for %s (expires_in=%s, refresh token: %s)",
            resource,
            tokens.expires_in,
            "yes" if tokens.refresh_token else "no",
        )
        return tokens
