import json
import os
from typing import Any, Dict, List, Optional, Union

import httpx
import pytest

from tracebeam.config import ClientConfig
from tracebeam.constants import COMMON_RELEASE_ENVS, ENV_PREFIX


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without network access")


class FakeFetch:
    """
    Transport double recording every request.

    ``responses`` are returned (or raised, for exceptions) in order; the last
    one repeats once the list is exhausted.
    """

    def __init__(self, responses: Optional[List[Union[httpx.Response, Exception]]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def __call__(self, url, method, headers, content, timeout):
        payload = json.loads(content)
        self.calls.append(
            {
                "url": url,
                "method": method,
                "headers": headers,
                "payload": payload,
                "timeout": timeout,
            }
        )

        if not self.responses:
            return httpx.Response(200, json={"successes": [], "errors": []})

        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def aclose(self):
        self.closed = True

    @property
    def batches(self) -> List[List[Dict[str, Any]]]:
        return [call["payload"]["batch"] for call in self.calls]

    @property
    def sent_ids(self) -> List[str]:
        return [item["id"] for batch in self.batches for item in batch]


@pytest.fixture
def fake_fetch_factory():
    """
    Factory building FakeFetch transports.
    """
    return FakeFetch


@pytest.fixture
def fake_fetch() -> FakeFetch:
    """
    A FakeFetch answering 200 to every request.
    """
    return FakeFetch()


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """
    Keep the developer's environment and config.ini out of the tests.
    """
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key)
    for key in COMMON_RELEASE_ENVS:
        monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        "tracebeam.config.settings.CONFIG_FILE_USER", tmp_path / "missing" / "config.ini"
    )


@pytest.fixture
def config_factory():
    """
    Factory for test configurations that never wait between retries.
    """

    def _create(**overrides: Any) -> ClientConfig:
        settings = {
            "public_key": "pk-test",
            "secret_key": "sk-test",
            "base_url": "https://ingest.example.com",
            "flush_interval": 0,
            "fetch_retry_delay": 0,
            "fetch_retry_max_delay": 0,
        }
        settings.update(overrides)
        return ClientConfig(**settings)

    return _create
