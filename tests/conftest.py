"""Shared pytest fixtures for Inboxly tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from .fakes import InMemoryStore  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_oidc_jwks_cache():
    """Reset the module-level JWKS cache so keys never leak between tests."""
    import inboxly.api.auth as auth_module

    auth_module._jwks_cache = None
    auth_module._jwks_cache_time = 0
    yield
    auth_module._jwks_cache = None
    auth_module._jwks_cache_time = 0


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
