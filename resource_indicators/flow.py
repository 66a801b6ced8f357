"""
Run-once orchestration of the resource indicators flow:
discovery -> authorize (all resources) -> code exchange (resource 1) -> refresh exchange (resource 2).
Any failure moves the flow to FAILED and is re-raised; nothing is retried.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import httpx

from resource_indicators.assertion import ClientAssertionSigner
from resource_indicators.authorize import AuthorizationFlowCoordinator, open_browser
from resource_indicators.discovery import fetch_metadata
from resource_indicators.errors import TokenEndpointError
from resource_indicators.id_token import IdTokenValidator
from resource_indicators.keys import KeyProvider
from resource_indicators.models import ClientIdentity, ListenerConfig, ResourceSet, TokenSet
from resource_indicators.token_endpoint import TokenExchangeEngine

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    INIT = "init"
    DISCOVERED = "discovered"
    AUTHORIZING = "authorizing"
    AUTHORIZED = "authorized"
    EXCHANGED_RESOURCE_1 = "exchanged_resource_1"
    EXCHANGED_RESOURCE_2 = "exchanged_resource_2"
    DONE = "done"
    FAILED = "failed"


# Each state has exactly one successor; FAILED is reachable from any non-terminal state
_NEXT_STATE = {
    FlowState.INIT: FlowState.DISCOVERED,
    FlowState.DISCOVERED: FlowState.AUTHORIZING,
    FlowState.AUTHORIZING: FlowState.AUTHORIZED,
    FlowState.AUTHORIZED: FlowState.EXCHANGED_RESOURCE_1,
    FlowState.EXCHANGED_RESOURCE_1: FlowState.EXCHANGED_RESOURCE_2,
    FlowState.EXCHANGED_RESOURCE_2: FlowState.DONE,
}


@dataclass(frozen=True)
class FlowConfig:
    issuer: str
    client_id: str
    scope: str
    resources: ResourceSet
    listener: ListenerConfig
    callback_timeout: float = 300.0
    http_timeout: float = 10.0
    validate_issuer_name: bool = True
    targets: tuple[str, str] | None = None

    def __post_init__(self):
        if self.targets is None:
            if len(self.resources) < 2:
                raise ValueError("Two resources are needed: one for the code exchange, one for the refresh exchange")
            object.__setattr__(self, "targets", tuple(self.resources.values[:2]))
        first, second = self.targets
        self.resources.require(first)
        self.resources.require(second)
        if first == second:
            raise ValueError("The two target resources must differ")


@dataclass(frozen=True)
class ResourceTokens:
    resource: str
    tokens: TokenSet


@dataclass(frozen=True)
class FlowReport:
    first: ResourceTokens
    second: ResourceTokens


class ResourceIndicatorsFlow:
    def __init__(
        self,
        config: FlowConfig,
        key_provider: KeyProvider,
        *,
        http_client: httpx.Client | None = None,
        browser: Callable[[str], bool] = open_browser,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.identity = ClientIdentity(client_id=config.client_id, key_provider=key_provider)
        self._http = http_client
        self._browser = browser
        self._signer = ClientAssertionSigner(key_provider, clock=clock)
        self.state = FlowState.INIT
        self.failure: BaseException | None = None

    def _advance(self, new_state: FlowState) -> None:
        expected = _NEXT_STATE.get(self.state)
        if new_state is not expected:
            raise RuntimeError(f"Invalid flow transition {self.state.value} -> {new_state.value}")
        logger.debug("Flow %s -> %s", self.state.value, new_state.value)
        self.state = new_state

    def run(self) -> FlowReport:
        if self.state is not FlowState.INIT:
            raise RuntimeError("Flow has already run; start a new process for a new login")
        owns_client = self._http is None
        http = self._http or httpx.Client(timeout=self.config.http_timeout)
        try:
            return self._run(http)
        except BaseException as e:
            self.failure = e
            self.state = FlowState.FAILED
            logger.error("Flow failed: %s: %s", type(e).__name__, e)
            raise
        finally:
            if owns_client:
                http.close()

    def _run(self, http: httpx.Client) -> FlowReport:
        cfg = self.config
        client_id = self.identity.client_id
        first_resource, second_resource = cfg.targets

        metadata = fetch_metadata(cfg.issuer, http, validate_issuer_name=cfg.validate_issuer_name)
        self._advance(FlowState.DISCOVERED)

        coordinator = AuthorizationFlowCoordinator(
            metadata,
            client_id,
            cfg.scope,
            cfg.resources,
            cfg.listener.redirect_uri,
            browser=self._browser,
        )
        auth_state = coordinator.prepare()
        self._advance(FlowState.AUTHORIZING)
        authorization = coordinator.launch_and_wait(auth_state, cfg.listener, cfg.callback_timeout)
        self._advance(FlowState.AUTHORIZED)

        engine = TokenExchangeEngine(metadata, client_id, cfg.listener.redirect_uri, cfg.resources, http)
        first = engine.exchange_code(
            authorization,
            first_resource,
            self._signer.build(client_id, metadata.token_endpoint),
            code_verifier=auth_state.code_verifier,
        )
        if first.id_token and metadata.jwks_uri:
            IdTokenValidator(metadata.jwks_uri, metadata.issuer, client_id).validate(first.id_token, auth_state.nonce)
        if not first.refresh_token:
            raise TokenEndpointError(
                "missing_refresh_token",
                "Code exchange returned no refresh token; request the offline_access scope",
            )
        self._advance(FlowState.EXCHANGED_RESOURCE_1)

        second = engine.exchange_refresh(
            first.refresh_token,
            second_resource,
            self._signer.build(client_id, metadata.token_endpoint),
        )
        self._advance(FlowState.EXCHANGED_RESOURCE_2)

        report = FlowReport(
            first=ResourceTokens(first_resource, first),
            second=ResourceTokens(second_resource, second),
        )
        self._advance(FlowState.DONE)
        return report
