"""
Data carried between the steps of the flow: metadata, resource set, authorization state, tokens.
Nothing here is persisted; every object lives for one run.
"""
import time
from dataclasses import dataclass, field
from typing import Any

from resource_indicators.errors import ResourceNotDeclaredError, TokenEndpointError

JWT_BEARER_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


@dataclass(frozen=True)
class AuthorizationServerMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str | None = None


@dataclass(frozen=True)
class ClientIdentity:
    client_id: str
    key_provider: Any


@dataclass(frozen=True)
class ResourceSet:
    """
    Resources declared at /authorize, in request order. Never mutated; token requests
    may only narrow to one member.
    """

    values: tuple[str, ...]

    def __post_init__(self):
        values = tuple(self.values)
        if not values:
            raise ValueError("At least one resource must be declared")
        if any(not v or not v.strip() for v in values):
            raise ValueError("Resource identifiers must be non-empty")
        if len(set(values)) != len(values):
            raise ValueError("Resource identifiers must be unique")
        object.__setattr__(self, "values", values)

    def __contains__(self, resource: object) -> bool:
        return resource in self.values

    def __iter__(self):
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def require(self, resource: str) -> str:
        """Return resource if declared; raise ResourceNotDeclaredError otherwise."""
        if resource not in self.values:
            raise ResourceNotDeclaredError(resource, self.values)
        return resource


@dataclass
class AuthorizationState:
    state: str
    code_verifier: str
    code_challenge: str
    nonce: str
    redirect_uri: str
    resources: ResourceSet
    authorization_url: str
    _consumed: bool = field(default=False, repr=False)

    def consume(self) -> None:
        """Mark as used for a callback round-trip. A second call raises RuntimeError."""
        if self._consumed:
            raise RuntimeError("Authorization state already used; start a new authorization")
        self._consumed = True


@dataclass(frozen=True)
class CallbackResult:
    """Raw query parameters captured at the redirect path."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    session_state: str | None = None


@dataclass(frozen=True)
class AuthorizationResult:
    code: str
    state: str
    session_state: str | None = None


@dataclass(frozen=True)
class ClientAssertion:
    value: str
    jti: str
    issued_at: int
    expires_at: int
    type: str = JWT_BEARER_ASSERTION_TYPE


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    token_type: str
    expires_in: int | None
    resource: str
    issued_at: float
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str = ""

    @property
    def expires_at(self) -> float | None:
        """None when the token endpoint did not say how long the token lives."""
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in

    @classmethod
    def from_response(cls, data: dict, resource: str, issued_at: float | None = None) -> "TokenSet":
        """Build from a successful token endpoint JSON body."""
        access_token = data.get("access_token")
        if not access_token:
            raise TokenEndpointError("invalid_response", "Token response carried no access_token")
        expires_in = data.get("expires_in")
        try:
            expires_in = None if expires_in is None else int(expires_in)
        except (TypeError, ValueError):
            raise TokenEndpointError("invalid_response", "expires_in is not a number") from None
        return cls(
            access_token=access_token,
            token_type=data.get("token_type", "Bearer"),
            expires_in=expires_in,
            resource=resource,
            issued_at=time.time() if issued_at is None else issued_at,
            refresh_token=data.get("refresh_token") or None,
            id_token=data.get("id_token") or None,
            scope=data.get("scope", ""),
        )


def loopback_base_url(host: str, port: int) -> str:
    """http://host:port, with IPv6 literals in brackets (RFC 3986 section 3.2.2)."""
    if ":" in host:
        host = f"[{host}]"
    return f"http://{host}:{port}"


@dataclass(frozen=True)
class ListenerConfig:
    """
    Where the callback listener binds. The redirect URI is sent to the authorization server
    before the listener starts, so the port must be fixed: 0 (any free port) is rejected.
    """

    host: str
    port: int
    redirect_path: str = "/callback"
    start_path: str = "/start"

    def __post_init__(self):
        if not 0 < self.port < 65536:
            raise ValueError(f"Listener port must be 1-65535, not {self.port}")

    @property
    def redirect_uri(self) -> str:
        return f"{loopback_base_url(self.host, self.port)}{self.redirect_path}"

    @property
    def start_url(self) -> str:
        return f"{loopback_base_url(self.host, self.port)}{self.start_path}"
