"""
Browser-based authorization step: build the /authorize request declaring every resource,
serve it as an auto-submitting POST form from the loopback listener, open the browser and
wait for the redirect carrying the authorization code.
"""
import html
import logging
import webbrowser
from typing import Callable
from urllib.parse import parse_qsl, urlsplit, urlunsplit

from resource_indicators.callback_listener import CallbackListener
from resource_indicators.models import (
    AuthorizationResult,
    AuthorizationServerMetadata,
    AuthorizationState,
    ListenerConfig,
    ResourceSet,
)
from resource_indicators.pkce import (
    build_authorize_url,
    generate_nonce,
    generate_pkce,
    generate_state,
    resources_in_url,
)

logger = logging.getLogger(__name__)


def open_browser(url: str) -> bool:
    """Open url in the system browser; if none can be launched, tell the user where to go."""
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as e:
        logger.debug("webbrowser failed: %s", e)
        opened = False
    if not opened:
        logger.warning("Could not open a browser. Open this URL to log in: %s", url)
    return opened


def render_authorization_request_as_form(url: str) -> str:
    """
    Turn an authorization URL into an HTML page that POSTs the same parameters to the same
    endpoint on load. The URL with every resource indicator may be too long for the browser
    to navigate to directly; a form body has no such limit.
    """
    parts = urlsplit(url)
    action = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    fields = parse_qsl(parts.query, keep_blank_values=True)
    inputs = "\n".join(
        f'    <input type="hidden" name="{html.escape(name)}" value="{html.escape(value)}">'
        for name, value in fields
    )
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Redirecting to login</title></head>
<body onload="document.forms[0].submit()">
  <form method="post" action="{html.escape(action)}">
{inputs}
    <noscript><button type="submit">Continue to login</button></noscript>
  </form>
</body>
</html>"""


class AuthorizationFlowCoordinator:
    def __init__(
        self,
        metadata: AuthorizationServerMetadata,
        client_id: str,
        scope: str,
        resources: ResourceSet,
        redirect_uri: str,
        browser: Callable[[str], bool] = open_browser,
    ):
        self.metadata = metadata
        self.client_id = client_id
        self.scope = scope
        self.resources = resources
        self.redirect_uri = redirect_uri
        self._browser = browser

    def prepare(self) -> AuthorizationState:
        """Generate state, nonce and PKCE pair; build the authorization URL declaring every resource."""
        state = generate_state()
        nonce = generate_nonce()
        code_verifier, code_challenge = generate_pkce()
        url = build_authorize_url(
            authorization_endpoint=self.metadata.authorization_endpoint,
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scope=self.scope,
            state=state,
            code_challenge=code_challenge,
            resources=self.resources.values,
            nonce=nonce if "openid" in self.scope.split() else None,
        )
        declared = resources_in_url(url)
        if declared != self.resources.values:
            raise ValueError(f"Authorization request declares {declared}, expected {self.resources.values}")
        logger.info(
            "Prepared authorization request for %d resource(s): %s (url length %d)",
            len(self.resources),
            ", ".join(self.resources),
            len(url),
        )
        return AuthorizationState(
            state=state,
            code_verifier=code_verifier,
            code_challenge=code_challenge,
            nonce=nonce,
            redirect_uri=self.redirect_uri,
            resources=self.resources,
            authorization_url=url,
        )

    def launch_and_wait(
        self,
        auth_state: AuthorizationState,
        listener_config: ListenerConfig,
        timeout: float,
    ) -> AuthorizationResult:
        """
        Serve the authorization form at the listener's start path, open the browser on it and
        block until the callback arrives. The listener is stopped on every exit path.
        """
        if listener_config.redirect_uri != auth_state.redirect_uri:
            raise ValueError(
                f"Listener redirect URI {listener_config.redirect_uri} differs from the requested {auth_state.redirect_uri}"
            )
        if auth_state.resources != self.resources:
            raise ValueError("Authorization state was prepared for a different resource set")
        auth_state.consume()

        start_page = render_authorization_request_as_form(auth_state.authorization_url)
        listener = CallbackListener(
            listener_config.host,
            listener_config.port,
            listener_config.redirect_path,
            routes={listener_config.start_path: lambda: start_page},
        )
        with listener:
            start_url = listener_config.start_url
            logger.info("Opening browser at %s", start_url)
            self._browser(start_url)
            result = listener.await_callback(auth_state.state, timeout)
        logger.info("Authorization code received")
        return result
