"""
Error taxonomy for the resource indicators flow.
Every component raises; only main turns an error into output. Nothing here is retried.
"""


class ResourceIndicatorsError(Exception):
    """Base class for all flow failures."""


class DiscoveryError(ResourceIndicatorsError):
    """Discovery document could not be fetched or is unusable."""


class SigningError(ResourceIndicatorsError):
    """Client assertion key is missing/malformed or the signature operation failed."""


class ListenerStartError(ResourceIndicatorsError):
    """The loopback callback listener could not be started."""


class CallbackTimeout(ResourceIndicatorsError):
    """No redirect reached the callback listener in time."""

    def __init__(self, timeout: float):
        super().__init__(f"No authorization callback received within {timeout:g} seconds")
        self.timeout = timeout


class CallbackError(ResourceIndicatorsError):
    """The authorization server redirected back with an error."""

    def __init__(self, code: str, description: str | None = None):
        super().__init__(f"{code}: {description}" if description else code)
        self.code = code
        self.description = description

    def to_payload(self) -> dict[str, str]:
        payload = {"error": self.code}
        if self.description:
            payload["error_description"] = self.description
        return payload


class StateMismatch(ResourceIndicatorsError):
    """Callback state does not match the state sent with the authorization request (CSRF)."""


class TokenEndpointError(ResourceIndicatorsError):
    """The token endpoint answered with an OAuth error (RFC 6749 §5.2)."""

    def __init__(self, error: str, description: str | None = None, status_code: int | None = None):
        super().__init__(f"{error}: {description}" if description else error)
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_payload(self) -> dict[str, str]:
        payload = {"error": self.error}
        if self.description:
            payload["error_description"] = self.description
        return payload


class TokenRequestError(ResourceIndicatorsError):
    """The token request did not complete (connection error, timeout)."""


class IdTokenError(ResourceIndicatorsError):
    """ID token returned by the code exchange failed validation."""


class ResourceNotDeclaredError(ResourceIndicatorsError, ValueError):
    """A token request named a resource outside the set declared at /authorize."""

    def __init__(self, resource: str, declared: tuple[str, ...]):
        super().__init__(f"Resource {resource!r} was not declared at authorization time (declared: {', '.join(declared)})")
        self.resource = resource
        self.declared = declared
