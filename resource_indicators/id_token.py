"""
ID token validation for the code exchange response: signature via the issuer's JWKS,
iss, aud (our client_id), exp and the nonce sent with the authorization request.
"""
import hmac
import logging

import jwt
from jwt import PyJWKClient

from resource_indicators.errors import IdTokenError

logger = logging.getLogger(__name__)

ALLOWED_ALGORITHMS = ["RS256", "PS256", "ES256"]


class IdTokenValidator:
    def __init__(
        self,
        jwks_uri: str,
        issuer: str,
        client_id: str,
        jwks_client: PyJWKClient | None = None,
        leeway: int = 30,
    ):
        self.issuer = issuer
        self.client_id = client_id
        self.leeway = leeway
        self._jwks_client = jwks_client or PyJWKClient(uri=jwks_uri, cache_jwk_set=True, lifespan=300)

    def validate(self, id_token: str, nonce: str) -> dict:
        """Return the verified claims. Raises IdTokenError on any failure."""
        try:
            signing_key = self._jwks_client.get_signing_key_from_jwt(id_token)
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=ALLOWED_ALGORITHMS,
                audience=self.client_id,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": ["iss", "aud", "exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise IdTokenError("ID token expired") from e
        except jwt.InvalidAudienceError as e:
            raise IdTokenError("ID token audience is not this client") from e
        except jwt.InvalidIssuerError as e:
            raise IdTokenError("ID token issuer does not match discovery") from e
        except jwt.PyJWTError as e:
            logger.debug("ID token verification failed: %s", e)
            raise IdTokenError(f"ID token verification failed: {e}") from e

        received = claims.get("nonce")
        if not received or not hmac.compare_digest(str(received).encode("utf-8"), nonce.encode("utf-8")):
            raise IdTokenError("ID token nonce does not match the authorization request")
        logger.info("ID token validated (sub=%s)", claims.get("sub"))
        return claims
