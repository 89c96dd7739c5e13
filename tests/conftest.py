import asyncio
import inspect
import os
import sys
from pathlib import Path
from urllib.parse import parse_qs

# Environment defaults must be in place before any import initializes settings
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("APP_URL", "http://testserver")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-for-testing-only")
os.environ.setdefault("SCALEKIT_ENVIRONMENT_URL", "https://sso.example.test")
os.environ.setdefault("SCALEKIT_CLIENT_ID", "skc_test_client")
os.environ.setdefault("SCALEKIT_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import httpx  # noqa: E402

from springsso.service.passwords import PasswordHasher  # noqa: E402
from springsso.service.runtime import get_runtime, reset_runtime_for_tests  # noqa: E402
from springsso.service.scalekit import ScalekitClient  # noqa: E402


def fast_hasher() -> PasswordHasher:
    """Argon2 parameters small enough to keep the suite quick."""
    return PasswordHasher(time_cost=1, memory_cost=1024, parallelism=1)


class FakeScalekit:
    """Stands in for the Scalekit token and userinfo endpoints."""

    def __init__(self):
        self.token_status = 200
        self.token_body = {
            "access_token": "sk-access",
            "refresh_token": "sk-refresh",
            "id_token": "sk-id",
            "expires_in": 3600,
            "token_type": "Bearer",
        }
        self.userinfo_status = 200
        self.userinfo = {
            "id": "sk_user_1",
            "email": "dana@example.com",
            "username": "dana",
            "firstName": "Dana",
            "lastName": "Scully",
        }
        self.requests = []
        self.error = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if request.url.path == "/oauth2/token":
            return httpx.Response(self.token_status, json=self.token_body)
        if request.url.path == "/userinfo":
            return httpx.Response(self.userinfo_status, json=self.userinfo)
        return httpx.Response(404)

    def form(self, index: int = 0) -> dict:
        return {k: v[0] for k, v in parse_qs(self.requests[index].content.decode()).items()}

    def client(self, settings) -> ScalekitClient:
        return ScalekitClient(settings, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_scalekit():
    """Route the running app's provider calls to a ``FakeScalekit``."""
    fake = FakeScalekit()
    runtime = get_runtime()
    runtime.auth.scalekit = fake.client(runtime.settings)
    return fake


@pytest.fixture(autouse=True)
def reset_runtime_state():
    runtime = reset_runtime_for_tests()
    runtime.auth.hasher = fast_hasher()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def hasher() -> PasswordHasher:
    return fast_hasher()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
