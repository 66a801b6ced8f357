"""Tests for the token exchange engine: code grant, refresh grant, resource narrowing, errors."""
import random
import time
from urllib.parse import parse_qs

import httpx
import pytest

from resource_indicators.assertion import ClientAssertionSigner
from resource_indicators.errors import ResourceNotDeclaredError, TokenEndpointError, TokenRequestError
from resource_indicators.models import AuthorizationResult, JWT_BEARER_ASSERTION_TYPE, ResourceSet
from resource_indicators.token_endpoint import TokenExchangeEngine

REDIRECT_URI = "http://localhost:8089/callback"


class RecordingTokenEndpoint:
    """httpx transport handler that records form bodies and replays canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[dict[str, list[str]]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(parse_qs(request.content.decode("ascii")))
        return self.responses.pop(0)


def _engine(metadata, resources, endpoint) -> TokenExchangeEngine:
    http = httpx.Client(transport=httpx.MockTransport(endpoint))
    return TokenExchangeEngine(metadata, "ro-demo", REDIRECT_URI, resources, http)


@pytest.fixture
def signer(key_provider):
    return ClientAssertionSigner(key_provider)


def _ok(**extra):
    body = {"access_token": "AT", "token_type": "Bearer", "expires_in": 300}
    body.update(extra)
    return httpx.Response(200, json=body)


def test_exchange_code_request(metadata, resources, signer):
    endpoint = RecordingTokenEndpoint(_ok(access_token="AT1", refresh_token="RT1"))
    engine = _engine(metadata, resources, endpoint)
    assertion = signer.build("ro-demo", metadata.token_endpoint)
    before = time.time()
    tokens = engine.exchange_code(
        AuthorizationResult(code="abc123", state="s"), "res1", assertion, code_verifier="verifier"
    )
    assert tokens.access_token == "AT1"
    assert tokens.refresh_token == "RT1"
    assert tokens.resource == "res1"
    assert tokens.expires_at >= before + 300

    body = endpoint.requests[0]
    assert body["grant_type"] == ["authorization_code"]
    assert body["code"] == ["abc123"]
    assert body["redirect_uri"] == [REDIRECT_URI]
    assert body["code_verifier"] == ["verifier"]
    assert body["resource"] == ["res1"]
    assert body["client_id"] == ["ro-demo"]
    assert body["client_assertion_type"] == [JWT_BEARER_ASSERTION_TYPE]
    assert body["client_assertion"] == [assertion.value]


def test_exchange_refresh_request(metadata, resources, signer):
    endpoint = RecordingTokenEndpoint(_ok(access_token="AT2", refresh_token="RT2"))
    engine = _engine(metadata, resources, endpoint)
    tokens = engine.exchange_refresh("RT1", "res2", signer.build("ro-demo", metadata.token_endpoint))
    assert tokens.access_token == "AT2"
    assert tokens.resource == "res2"
    body = endpoint.requests[0]
    assert body["grant_type"] == ["refresh_token"]
    assert body["refresh_token"] == ["RT1"]
    assert body["resource"] == ["res2"]
    assert "code" not in body
    assert "code_verifier" not in body


def test_refresh_token_required(metadata, resources, signer):
    endpoint = RecordingTokenEndpoint()
    with pytest.raises(ValueError):
        _engine(metadata, resources, endpoint).exchange_refresh("", "res2", signer.build("c", "t"))
    assert endpoint.requests == []


def _random_resource_sets(count: int):
    rng = random.Random(8707)
    for _ in range(count):
        pool = [f"urn:api:{rng.randrange(10_000)}" for _ in range(rng.randint(1, 6))]
        declared = tuple(dict.fromkeys(pool))
        outsiders = [f"https://other.example/{rng.randrange(10_000)}" for _ in range(3)]
        yield declared, outsiders


@pytest.mark.parametrize("declared,outsiders", list(_random_resource_sets(25)))
def test_every_request_names_exactly_one_declared_resource(metadata, signer, declared, outsiders):
    resources = ResourceSet(declared)
    endpoint = RecordingTokenEndpoint(*[_ok(refresh_token="RT") for _ in declared])
    engine = _engine(metadata, resources, endpoint)

    for resource in declared:
        engine.exchange_refresh("RT", resource, signer.build("ro-demo", metadata.token_endpoint))
    for resource in outsiders:
        with pytest.raises(ResourceNotDeclaredError):
            engine.exchange_refresh("RT", resource, signer.build("ro-demo", metadata.token_endpoint))

    assert len(endpoint.requests) == len(declared)
    for body in endpoint.requests:
        assert len(body["resource"]) == 1
        assert body["resource"][0] in declared


def test_undeclared_resource_rejected_before_dispatch(metadata, resources, signer):
    endpoint = RecordingTokenEndpoint()
    engine = _engine(metadata, resources, endpoint)
    with pytest.raises(ResourceNotDeclaredError):
        engine.exchange_code(
            AuthorizationResult(code="c", state="s"),
            "res3",
            signer.build("ro-demo", metadata.token_endpoint),
            code_verifier="v",
        )
    assert endpoint.requests == []


def test_invalid_target_error(metadata, resources, signer):
    endpoint = RecordingTokenEndpoint(
        httpx.Response(400, json={"error": "invalid_target", "error_description": "Resource not allowed"})
    )
    engine = _engine(metadata, resources, endpoint)
    with pytest.raises(TokenEndpointError) as exc_info:
        engine.exchange_refresh("RT1", "res2", signer.build("ro-demo", metadata.token_endpoint))
    err = exc_info.value
    assert err.error == "invalid_target"
    assert err.description == "Resource not allowed"
    assert err.status_code == 400
    assert err.to_payload() == {"error": "invalid_target", "error_description": "Resource not allowed"}


def test_error_without_json_body(metadata, resources, signer):
    endpoint = RecordingTokenEndpoint(httpx.Response(502, text="Bad gateway"))
    with pytest.raises(TokenEndpointError) as exc_info:
        _engine(metadata, resources, endpoint).exchange_refresh("RT", "res1", signer.build("c", "t"))
    assert exc_info.value.error == "http_502"


def test_error_member_in_200_body(metadata, resources, signer):
    endpoint = RecordingTokenEndpoint(httpx.Response(200, json={"error": "invalid_grant"}))
    with pytest.raises(TokenEndpointError) as exc_info:
        _engine(metadata, resources, endpoint).exchange_refresh("RT", "res1", signer.build("c", "t"))
    assert exc_info.value.error == "invalid_grant"


def test_missing_access_token(metadata, resources, signer):
    endpoint = RecordingTokenEndpoint(httpx.Response(200, json={"token_type": "Bearer"}))
    with pytest.raises(TokenEndpointError) as exc_info:
        _engine(metadata, resources, endpoint).exchange_refresh("RT", "res1", signer.build("c", "t"))
    assert exc_info.value.error == "invalid_response"


def test_transport_error_not_retried(metadata, resources, signer):
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    engine = TokenExchangeEngine(
        metadata, "ro-demo", REDIRECT_URI, resources, httpx.Client(transport=httpx.MockTransport(handler))
    )
    with pytest.raises(TokenRequestError):
        engine.exchange_refresh("RT", "res1", signer.build("c", "t"))
    assert len(calls) == 1


def test_assertion_reuse_rejected(metadata, resources, signer):
    endpoint = RecordingTokenEndpoint(_ok(refresh_token="RT"))
    engine = _engine(metadata, resources, endpoint)
    assertion = signer.build("ro-demo", metadata.token_endpoint)
    engine.exchange_refresh("RT", "res1", assertion)
    with pytest.raises(ValueError, match="already used"):
        engine.exchange_refresh("RT", "res2", assertion)
    assert len(endpoint.requests) == 1
