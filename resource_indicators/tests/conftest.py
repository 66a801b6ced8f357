"""
Pytest fixtures for resource_indicators: throwaway signing key, STS metadata, resource set,
free loopback ports and an HTTP client that ignores proxy settings.
"""
import socket

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key

from resource_indicators.keys import InMemoryKeyProvider
from resource_indicators.models import AuthorizationServerMetadata, ResourceSet


def find_free_port() -> int:
    """Find an available loopback port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture(scope="session")
def rsa_key():
    return generate_private_key(65537, 2048)


@pytest.fixture
def key_provider(rsa_key):
    return InMemoryKeyProvider(rsa_key, key_id="test-key")


@pytest.fixture
def metadata():
    return AuthorizationServerMetadata(
        issuer="https://sts",
        authorization_endpoint="https://sts/authorize",
        token_endpoint="https://sts/token",
    )


@pytest.fixture
def resources():
    return ResourceSet(("res1", "res2"))


@pytest.fixture
def free_port():
    return find_free_port()


@pytest.fixture
def local_http():
    """Client for talking to the loopback listener; trust_env=False so no proxy gets in the way."""
    with httpx.Client(trust_env=False, timeout=5.0) as client:
        yield client
