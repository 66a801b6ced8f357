"""
Per-login secrets (state, nonce, PKCE S256 pair) and the /authorize URL that names every
resource of the login.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from urllib.parse import parse_qsl, urlencode, urlsplit

# 32 random bytes -> 43 base64url characters, inside the 43-128 range RFC 7636 allows for a verifier
_TOKEN_BYTES = 32


def generate_state() -> str:
    """Value echoed back on the redirect; compared before the code is accepted."""
    return secrets.token_urlsafe(_TOKEN_BYTES)


def generate_nonce() -> str:
    """Value the STS copies into the ID token; only sent when the scope includes openid."""
    return secrets.token_urlsafe(_TOKEN_BYTES)


def generate_pkce() -> tuple[str, str]:
    """(code_verifier, code_challenge): the verifier stays here, the S256 challenge goes to /authorize."""
    verifier = secrets.token_urlsafe(_TOKEN_BYTES)
    challenge = urlsafe_b64encode(hashlib.sha256(verifier.encode("ascii")).digest()).rstrip(b"=")
    return verifier, challenge.decode("ascii")


def build_authorize_url(
    *,
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    code_challenge: str,
    resources: tuple[str, ...] | list[str],
    nonce: str | None = None,
) -> str:
    """Build the /authorize URL; one resource parameter per declared resource, in order."""
    params = [
        ("response_type", "code"),
        ("client_id", client_id),
        ("redirect_uri", redirect_uri),
        ("scope", scope),
        ("state", state),
        ("code_challenge", code_challenge),
        ("code_challenge_method", "S256"),
    ]
    params.extend(("resource", r) for r in resources)
    if nonce:
        params.append(("nonce", nonce))
    separator = "&" if "?" in authorization_endpoint else "?"
    return f"{authorization_endpoint}{separator}{urlencode(params)}"


def resources_in_url(url: str) -> tuple[str, ...]:
    """Resource parameters carried by an authorization URL, in order."""
    return tuple(v for k, v in parse_qsl(urlsplit(url).query, keep_blank_values=True) if k == "resource")
