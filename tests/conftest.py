import json

import httpx
import pytest

from config import ControlLayerSettings, Settings
from database import InMemoryOptionStore
from license_client import LicenseClient
from providers import LicenseProvider

API_URL = "https://license.example.com/license-api/"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingHandler:
    """MockTransport handler that records requests and replays a canned reply."""

    def __init__(self, status_code: int = 200, body=None, error: Exception = None):
        self.status_code = status_code
        self.body = body if body is not None else {"success": True, "status": "valid", "message": "ok"}
        self.error = error
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if isinstance(self.body, (dict, list)):
            return httpx.Response(self.status_code, json=self.body)
        return httpx.Response(self.status_code, text=self.body)

    @property
    def payloads(self):
        return [json.loads(r.content) for r in self.requests]


class FakeProvider(LicenseProvider):
    def __init__(self, status: str = "active", error: Exception = None):
        self.status = status
        self.error = error
        self.calls = []

    async def validate(self, license_key: str, variant_id: str) -> str:
        self.calls.append((license_key, variant_id))
        if self.error is not None:
            raise self.error
        return self.status


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryOptionStore()


@pytest.fixture
def client_settings():
    return Settings(
        LICENSE_API_URL=API_URL,
        SITE_URL="https://shop.example.com",
        SITE_ID="test-site",
        PLUGIN_ID="datalayer-manager",
        LICENSE_LOCAL_MODE=None,
        ENVIRONMENT_TYPE=None,
        DEBUG=False,
        LICENSE_TEST_MODE=False,
        STATUS_CACHE_TTL_SECONDS=86400,
    )


@pytest.fixture
def make_client(store, client_settings, clock):
    def _make(handler=None, config=None, **kwargs):
        transport = httpx.MockTransport(handler) if handler is not None else None
        return LicenseClient(
            store,
            config=config or client_settings,
            transport=transport,
            clock=clock,
            **kwargs
        )
    return _make


@pytest.fixture
def control_config():
    return ControlLayerSettings(
        LEMON_SQUEEZY_API_KEY="ls-test-key",
        PRODUCT_MAP={"datalayer-manager": "variant-123", "unconfigured-plugin": ""},
    )
