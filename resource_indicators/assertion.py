"""
Client assertion (RFC 7523, private_key_jwt) proving the client's identity to the token endpoint.
Built fresh for every token request: unique jti, iat = now, exp <= now + 60s.
"""
import json
import logging
import secrets
import time
from typing import Callable

from jwt.utils import base64url_encode

from resource_indicators.config import ASSERTION_LIFETIME
from resource_indicators.errors import SigningError
from resource_indicators.keys import KeyProvider
from resource_indicators.models import ClientAssertion

logger = logging.getLogger(__name__)

MAX_ASSERTION_LIFETIME = 60


def _b64_json(obj: dict) -> bytes:
    return base64url_encode(json.dumps(obj, separators=(",", ":")).encode("utf-8"))


class ClientAssertionSigner:
    def __init__(
        self,
        key_provider: KeyProvider,
        lifetime: int = ASSERTION_LIFETIME,
        clock: Callable[[], float] = time.time,
    ):
        if not 0 < lifetime <= MAX_ASSERTION_LIFETIME:
            raise ValueError(f"Assertion lifetime must be 1-{MAX_ASSERTION_LIFETIME} seconds")
        self._key_provider = key_provider
        self._lifetime = lifetime
        self._clock = clock

    def build(self, client_id: str, token_endpoint: str) -> ClientAssertion:
        """
        Sign a new assertion with iss = sub = client_id and aud = token_endpoint.
        Raises SigningError if the key provider cannot produce a signature.
        """
        now = int(self._clock())
        jti = secrets.token_hex(16)
        claims = {
            "iss": client_id,
            "sub": client_id,
            "aud": token_endpoint,
            "jti": jti,
            "iat": now,
            "nbf": now,
            "exp": now + self._lifetime,
        }
        header = {"alg": self._key_provider.algorithm, "typ": "JWT"}
        if self._key_provider.key_id:
            header["kid"] = self._key_provider.key_id

        signing_input = _b64_json(header) + b"." + _b64_json(claims)
        try:
            signature = self._key_provider.sign(signing_input)
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(f"Could not sign client assertion: {e}") from e
        if not signature:
            raise SigningError("Key provider returned an empty signature")

        value = (signing_input + b"." + base64url_encode(signature)).decode("ascii")
        logger.debug("Built client assertion for %s (aud=%s, exp=%s)", client_id, token_endpoint, claims["exp"])
        return ClientAssertion(value=value, jti=jti, issued_at=now, expires_at=claims["exp"])
