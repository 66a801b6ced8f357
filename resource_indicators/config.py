"""
Resource indicators client configuration. Defaults target the HelseID test STS.
No key material in this file; the client assertion key comes from a file, the environment or a remote signer.
"""
import os

# Authorization Server (issuer); discovery is read from <issuer>/.well-known/openid-configuration
ISSUER = os.environ.get("RI_ISSUER", "https://helseid-sts.test.nhn.no").rstrip("/")

# Our client_id (must be registered at the STS together with the assertion public key)
CLIENT_ID = os.environ.get("RI_CLIENT_ID", "ro-demo")

# Hosts the callback listener may bind to; plain http endpoints are only accepted on these
LOOPBACK_HOSTS = {"127.0.0.1", "localhost", "::1"}

# Loopback listener for the start page and the redirect callback
LOCAL_HOST = os.environ.get("RI_LOCAL_HOST", "localhost")
LOCAL_PORT = int(os.environ.get("RI_LOCAL_PORT", "8089"))
REDIRECT_PATH = os.environ.get("RI_REDIRECT_PATH", "/callback")
START_PATH = os.environ.get("RI_START_PATH", "/start")

# Scopes for both APIs; offline_access so the code exchange returns a refresh token
SCOPE = os.environ.get(
    "RI_SCOPE",
    "openid profile offline_access e-helse:sfm.api/sfm.api https://ehelse.no/kjernejournal/kj_api",
)

# Resource indicators declared at /authorize, comma-separated. The first two are exchanged in order.
RESOURCES = tuple(
    r.strip() for r in os.environ.get("RI_RESOURCES", "e-helse:sfm.api,kjernejournal.api").split(",") if r.strip()
)

# Seconds to wait for the user to finish logging in
CALLBACK_TIMEOUT = float(os.environ.get("RI_CALLBACK_TIMEOUT", "300"))

# Per-request timeout for discovery, token and remote signer calls
HTTP_TIMEOUT = float(os.environ.get("RI_HTTP_TIMEOUT", "10"))

# Client assertion lifetime (seconds); the STS rejects assertions valid for longer than 60s
ASSERTION_LIFETIME = 60

# Signing key sources, checked in order: remote signer, key file (PEM or JWK), PEM in environment
REMOTE_SIGNER_URL = os.environ.get("RI_REMOTE_SIGNER_URL", "").strip() or None
REMOTE_SIGNER_JWKS_URI = os.environ.get("RI_REMOTE_SIGNER_JWKS_URI", "").strip() or None
SIGNING_KEY_PATH = os.environ.get("RI_SIGNING_KEY_PATH", "").strip() or None
SIGNING_KEY_PEM = os.environ.get("RI_SIGNING_KEY_PEM", "").strip() or None
SIGNING_KEY_ID = os.environ.get("RI_SIGNING_KEY_ID", "").strip() or None

# Require the discovery document's issuer to equal ISSUER
VALIDATE_ISSUER_NAME = os.environ.get("RI_VALIDATE_ISSUER_NAME", "true").strip().lower() not in ("0", "false", "no")

LOG_LEVEL = os.environ.get("RI_LOG_LEVEL", "INFO").upper()
