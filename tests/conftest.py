"""
Shared pytest fixtures for jobwatch tests.

Provides credential factories, identities and small async helpers used by the
request layer, session and tracking tests.
"""

import asyncio
from typing import Callable, Optional

import jwt
import pytest

from jobwatch.remote.models import Identity

SERVER_URL = "https://jobs.example.com"
API_URL = f"{SERVER_URL}/v1"
TOKEN_SECRET = "jobwatch-test-secret-0123456789abcdef"
FIXED_NOW = 1_700_000_000


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Factory for HS256 credentials with an optional ``exp`` claim."""

    def _make(exp: Optional[float] = None, subject: str = "user-1") -> str:
        payload = {"sub": subject, "iat": FIXED_NOW}
        if exp is not None:
            payload["exp"] = int(exp)
        return jwt.encode(payload, TOKEN_SECRET, algorithm="HS256")

    return _make


@pytest.fixture
def identity() -> Identity:
    return Identity(
        id="42",
        display_name="Ana Souza",
        email="ana@example.com",
        org_name="Acme Ltda",
        org_id="12.345.678/0001-90",
    )


@pytest.fixture
def login_body(identity):
    """Factory for ``POST /auth/login`` response bodies."""

    def _body(credential: str, expires_at=None):
        return {
            "accessToken": credential,
            "userId": identity.id,
            "username": identity.display_name,
            "email": identity.email,
            "companyName": identity.org_name,
            "companyDocument": identity.org_id,
            "expiresAt": expires_at,
        }

    return _body


@pytest.fixture
def wait_until():
    """Poll ``predicate`` on the running loop until it holds."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait
