"""
Loopback HTTP listener for one authorization round-trip.
Serves the start page, captures exactly one redirect to the callback path, then is stopped.
FastAPI app served by uvicorn on a daemon thread; the captured query is handed to the
waiting caller through a one-shot Future.
"""
import hmac
import html
import logging
import socket
import threading
import time
from concurrent import futures
from typing import Callable, Mapping

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from resource_indicators.config import LOOPBACK_HOSTS
from resource_indicators.errors import CallbackError, CallbackTimeout, ListenerStartError, StateMismatch
from resource_indicators.models import AuthorizationResult, CallbackResult, loopback_base_url

logger = logging.getLogger(__name__)

# Seconds to wait for uvicorn to report it is serving
_STARTUP_TIMEOUT = 5.0
# Seconds to wait for the server thread to finish on stop
_SHUTDOWN_TIMEOUT = 5.0


def _page(title: str, heading: str, message: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body style="font-family: sans-serif; text-align: center; padding: 50px;">
  <h1>{html.escape(heading)}</h1>
  <p>{html.escape(message)}</p>
</body>
</html>"""


def build_callback_app(
    redirect_path: str,
    routes: Mapping[str, Callable[[], str]],
    deliver: Callable[[CallbackResult], bool],
) -> FastAPI:
    """
    App with one GET route per entry in routes (path -> HTML producer) plus the redirect path.
    deliver(result) returns False when a callback was already captured.
    """
    app = FastAPI(title="Authorization callback", docs_url=None, redoc_url=None, openapi_url=None)

    def _route(producer: Callable[[], str]):
        def endpoint():
            return HTMLResponse(producer())

        return endpoint

    for path, producer in routes.items():
        if path == redirect_path:
            raise ValueError(f"Route {path} collides with the redirect path")
        app.add_api_route(path, _route(producer), methods=["GET"], response_class=HTMLResponse)

    async def callback(request: Request):
        params = request.query_params
        result = CallbackResult(
            code=params.get("code"),
            state=params.get("state"),
            error=params.get("error"),
            error_description=params.get("error_description"),
            session_state=params.get("session_state"),
        )
        if not deliver(result):
            return HTMLResponse(
                _page("Already completed", "Already completed", "This login has already been processed."),
                status_code=409,
            )
        if result.error:
            return HTMLResponse(
                _page(
                    "Authorization failed",
                    "Authorization failed",
                    result.error_description or result.error,
                ),
                status_code=400,
            )
        return HTMLResponse(
            _page(
                "Authorization received",
                "Authorization received",
                "You can close this window and return to the terminal.",
            )
        )

    app.add_api_route(redirect_path, callback, methods=["GET"], response_class=HTMLResponse)
    return app


class CallbackListener:
    """
    Single-use loopback listener. Use as a context manager so the port is always released:

        with CallbackListener("127.0.0.1", 8089, "/callback", {"/start": render}) as listener:
            result = listener.await_callback(expected_state, timeout=300)
    """

    def __init__(
        self,
        host: str,
        port: int,
        redirect_path: str = "/callback",
        routes: Mapping[str, Callable[[], str]] | None = None,
    ):
        if host not in LOOPBACK_HOSTS:
            raise ValueError(f"Callback listener must bind to a loopback host, not {host!r}")
        if not redirect_path.startswith("/"):
            raise ValueError("redirect_path must start with '/'")
        self.host = host
        self.port = port
        self.redirect_path = redirect_path
        self._routes = dict(routes or {})
        self._future: futures.Future = futures.Future()
        self._consumed = False
        self._started = False
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def base_url(self) -> str:
        return loopback_base_url(self.host, self.port)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _deliver(self, result: CallbackResult) -> bool:
        if self._future.done():
            logger.warning("Ignoring repeated callback to %s", self.redirect_path)
            return False
        try:
            self._future.set_result(result)
        except futures.InvalidStateError:
            logger.warning("Ignoring repeated callback to %s", self.redirect_path)
            return False
        logger.info("Authorization callback received")
        return True

    def start(self) -> "CallbackListener":
        if self._started:
            raise RuntimeError("Callback listener is single-use")
        self._started = True

        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        try:
            self._socket = socket.create_server((self.host, self.port), family=family)
        except OSError as e:
            raise ListenerStartError(f"Cannot bind {self.host}:{self.port}: {e}") from e
        self.port = self._socket.getsockname()[1]

        app = build_callback_app(self.redirect_path, self._routes, self._deliver)
        config = uvicorn.Config(
            app,
            log_level="warning",
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=2,
        )
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._server.run,
            kwargs={"sockets": [self._socket]},
            name="callback-listener",
            daemon=True,
        )
        self._thread.start()

        deadline = time.monotonic() + _STARTUP_TIMEOUT
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                self.stop()
                raise ListenerStartError(f"Callback listener on {self.base_url} did not start")
            time.sleep(0.01)
        logger.info("Callback listener on %s%s", self.base_url, self.redirect_path)
        return self

    def await_callback(self, expected_state: str, timeout: float) -> AuthorizationResult:
        """
        Block until the redirect path is hit or timeout seconds elapse.
        Raises CallbackTimeout, CallbackError (error redirect or missing code) or StateMismatch.
        """
        if self._consumed:
            raise RuntimeError("Callback already consumed")
        try:
            result: CallbackResult = self._future.result(timeout=max(timeout, 0))
        except futures.TimeoutError:
            logger.warning("No authorization callback within %ss", timeout)
            raise CallbackTimeout(timeout) from None
        self._consumed = True

        if result.error:
            raise CallbackError(result.error, result.error_description)
        if not result.state or not hmac.compare_digest(result.state.encode("utf-8"), expected_state.encode("utf-8")):
            raise StateMismatch("Callback state does not match the state sent with the authorization request")
        if not result.code:
            raise CallbackError("invalid_request", "Callback carried no authorization code")
        return AuthorizationResult(code=result.code, state=result.state, session_state=result.session_state)

    def stop(self) -> None:
        """Shut the server down and release the port. Safe to call more than once."""
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=_SHUTDOWN_TIMEOUT)
            if self._thread.is_alive():
                logger.warning("Callback listener thread did not stop within %ss", _SHUTDOWN_TIMEOUT)
            self._thread = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None
            logger.debug("Callback listener on %s stopped", self.base_url)

    def __enter__(self) -> "CallbackListener":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
