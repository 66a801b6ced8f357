"""
OpenID Connect discovery: read authorization and token endpoints from the issuer's
/.well-known/openid-configuration. Fetched once per run; any failure aborts the run.
"""
import logging
from urllib.parse import urlsplit

import httpx

from resource_indicators.config import LOOPBACK_HOSTS
from resource_indicators.errors import DiscoveryError
from resource_indicators.models import AuthorizationServerMetadata

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


def _check_endpoint(name: str, value) -> str:
    """Endpoints must be absolute HTTPS URLs (plain HTTP only on loopback)."""
    if not value or not isinstance(value, str):
        raise DiscoveryError(f"Discovery document has no {name}")
    parts = urlsplit(value)
    if not parts.netloc:
        raise DiscoveryError(f"{name} is not an absolute URL: {value}")
    if parts.scheme == "https":
        return value
    if parts.scheme == "http" and parts.hostname in LOOPBACK_HOSTS:
        return value
    raise DiscoveryError(f"{name} must use https: {value}")


def fetch_metadata(
    issuer: str,
    http_client: httpx.Client,
    validate_issuer_name: bool = True,
) -> AuthorizationServerMetadata:
    """
    GET <issuer>/.well-known/openid-configuration and return the endpoints we use.
    Raises DiscoveryError on transport errors, non-200, bad JSON, missing or insecure endpoints,
    or (when validate_issuer_name) an issuer that differs from the one requested.
    """
    issuer = issuer.rstrip("/")
    _check_endpoint("issuer", issuer)
    url = f"{issuer}{WELL_KNOWN_PATH}"
    try:
        r = http_client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as e:
        raise DiscoveryError(f"Discovery request to {url} failed: {e}") from e
    if r.status_code != 200:
        raise DiscoveryError(f"Discovery request to {url} returned HTTP {r.status_code}")
    try:
        data = r.json()
    except ValueError as e:
        raise DiscoveryError(f"Discovery document at {url} is not JSON") from e
    if not isinstance(data, dict):
        raise DiscoveryError(f"Discovery document at {url} is not a JSON object")

    reported_issuer = str(data.get("issuer") or "").rstrip("/")
    if validate_issuer_name and reported_issuer != issuer:
        raise DiscoveryError(f"Issuer name mismatch: expected {issuer}, discovery reports {reported_issuer or '(none)'}")

    jwks_uri = data.get("jwks_uri")
    metadata = AuthorizationServerMetadata(
        issuer=reported_issuer or issuer,
        authorization_endpoint=_check_endpoint("authorization_endpoint", data.get("authorization_endpoint")),
        token_endpoint=_check_endpoint("token_endpoint", data.get("token_endpoint")),
        jwks_uri=_check_endpoint("jwks_uri", jwks_uri) if jwks_uri else None,
    )
    logger.info("Discovered endpoints for %s (token endpoint %s)", issuer, metadata.token_endpoint)
    return metadata
