"""
Key providers for the client assertion signature.
The private key is never part of the source: it is loaded from a file, the environment, or
kept in a remote key-management service that signs on our behalf.
"""
import json
import logging
from pathlib import Path
from typing import Protocol

import httpx
import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt.algorithms import ECAlgorithm, RSAAlgorithm
from jwt.utils import base64url_decode, base64url_encode

from resource_indicators.errors import SigningError

logger = logging.getLogger(__name__)


class KeyProvider(Protocol):
    """Anything that can sign a JWS signing input and expose the matching public key."""

    algorithm: str
    key_id: str | None

    def sign(self, payload: bytes) -> bytes: ...

    def public_key(self): ...


def _algorithm_for(private_key) -> tuple[str, object]:
    """Return (JWS alg name, PyJWT algorithm) for a private key object."""
    if isinstance(private_key, rsa.RSAPrivateKey):
        return "RS256", RSAAlgorithm(RSAAlgorithm.SHA256)
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        if not isinstance(private_key.curve, ec.SECP256R1):
            raise SigningError(f"Unsupported EC curve {private_key.curve.name}; use P-256")
        return "ES256", ECAlgorithm(ECAlgorithm.SHA256)
    raise SigningError(f"Unsupported private key type {type(private_key).__name__}; use RSA or EC P-256")


class InMemoryKeyProvider:
    """RSA or EC P-256 private key held in process memory."""

    def __init__(self, private_key, key_id: str | None = None):
        self.algorithm, self._impl = _algorithm_for(private_key)
        self._private_key = private_key
        self.key_id = key_id

    @classmethod
    def from_pem(cls, pem: bytes | str, key_id: str | None = None) -> "InMemoryKeyProvider":
        if isinstance(pem, str):
            pem = pem.encode("utf-8")
        try:
            key = serialization.load_pem_private_key(pem, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Malformed PEM private key: {e}") from e
        return cls(key, key_id=key_id)

    @classmethod
    def from_jwk(cls, jwk: str | dict, key_id: str | None = None) -> "InMemoryKeyProvider":
        """Load a private JWK (RSA or EC). kid is taken from the JWK unless key_id is given."""
        try:
            data = json.loads(jwk) if isinstance(jwk, str) else dict(jwk)
        except ValueError as e:
            raise SigningError(f"Malformed JWK: {e}") from e
        if "d" not in data:
            raise SigningError("JWK does not contain a private key")
        kty = data.get("kty")
        try:
            if kty == "RSA":
                key = RSAAlgorithm.from_jwk(data)
            elif kty == "EC":
                key = ECAlgorithm.from_jwk(data)
            else:
                raise SigningError(f"Unsupported JWK key type {kty!r}")
        except (jwt.InvalidKeyError, ValueError, KeyError) as e:
            raise SigningError(f"Malformed JWK: {e}") from e
        return cls(key, key_id=key_id or data.get("kid"))

    def sign(self, payload: bytes) -> bytes:
        try:
            return self._impl.sign(payload, self._private_key)
        except Exception as e:
            raise SigningError(f"Signature operation failed: {e}") from e

    def public_key(self):
        return self._private_key.public_key()


class FileKeyProvider(InMemoryKeyProvider):
    """Private key read once from a PEM or JWK JSON file."""

    def __init__(self, path: str | Path, key_id: str | None = None):
        p = Path(path)
        try:
            raw = p.read_bytes()
        except OSError as e:
            raise SigningError(f"Cannot read signing key from {p}: {e}") from e
        if raw.lstrip().startswith(b"{"):
            loaded = InMemoryKeyProvider.from_jwk(raw.decode("utf-8"), key_id=key_id)
        else:
            loaded = InMemoryKeyProvider.from_pem(raw, key_id=key_id)
        super().__init__(loaded._private_key, key_id=loaded.key_id)
        self.path = p
        logger.info("Loaded client assertion key from %s (alg=%s)", p, self.algorithm)


class RemoteKeyProvider:
    """
    Signing delegated to a key-management service; the private key never leaves it.
    POST {"kid", "alg", "payload": base64url(signing input)} -> {"signature": base64url}.
    The public key is resolved from the service's JWKS by kid.
    """

    def __init__(
        self,
        sign_url: str,
        jwks_uri: str,
        key_id: str,
        algorithm: str = "RS256",
        http_client: httpx.Client | None = None,
        jwks_client: jwt.PyJWKClient | None = None,
    ):
        self.sign_url = sign_url
        self.jwks_uri = jwks_uri
        self.key_id = key_id
        self.algorithm = algorithm
        self._http = http_client or httpx.Client(timeout=10.0)
        self._jwks_client = jwks_client

    def sign(self, payload: bytes) -> bytes:
        body = {
            "kid": self.key_id,
            "alg": self.algorithm,
            "payload": base64url_encode(payload).decode("ascii"),
        }
        try:
            r = self._http.post(self.sign_url, json=body, headers={"Accept": "application/json"})
            r.raise_for_status()
            signature = r.json()["signature"]
            return base64url_decode(signature.encode("ascii"))
        except httpx.HTTPError as e:
            raise SigningError(f"Remote signer request failed: {e}") from e
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise SigningError(f"Remote signer returned an unusable response: {e}") from e

    def public_key(self):
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(uri=self.jwks_uri, cache_jwk_set=True, lifespan=300)
        try:
            return self._jwks_client.get_signing_key(self.key_id).key
        except jwt.PyJWKClientError as e:
            raise SigningError(f"Cannot resolve public key {self.key_id!r} from {self.jwks_uri}: {e}") from e


def load_key_provider(http_client: httpx.Client | None = None) -> KeyProvider:
    """
    Pick the key provider from configuration: remote signer, else key file, else PEM in environment.
    Raises SigningError when no source is configured.
    """
    from resource_indicators import config

    if config.REMOTE_SIGNER_URL:
        if not config.REMOTE_SIGNER_JWKS_URI or not config.SIGNING_KEY_ID:
            raise SigningError("RI_REMOTE_SIGNER_URL requires RI_REMOTE_SIGNER_JWKS_URI and RI_SIGNING_KEY_ID")
        logger.info("Using remote signer at %s (kid=%s)", config.REMOTE_SIGNER_URL, config.SIGNING_KEY_ID)
        return RemoteKeyProvider(
            config.REMOTE_SIGNER_URL,
            config.REMOTE_SIGNER_JWKS_URI,
            config.SIGNING_KEY_ID,
            http_client=http_client,
        )
    if config.SIGNING_KEY_PATH:
        return FileKeyProvider(config.SIGNING_KEY_PATH, key_id=config.SIGNING_KEY_ID)
    if config.SIGNING_KEY_PEM:
        return InMemoryKeyProvider.from_pem(config.SIGNING_KEY_PEM, key_id=config.SIGNING_KEY_ID)
    raise SigningError(
        "No client assertion key configured; set RI_SIGNING_KEY_PATH, RI_SIGNING_KEY_PEM or RI_REMOTE_SIGNER_URL"
    )
