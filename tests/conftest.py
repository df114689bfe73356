from __future__ import annotations

"""Pytest fixtures for the relay.

No test talks to a real destination: sinks are in-memory stubs (see
``tests/sink_stubs.py``) and the Mixpanel adapter is driven through
``httpx.MockTransport``.
"""

import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

# ---------------------------------------------------------------------------
# Runtime env for the application
# ---------------------------------------------------------------------------

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DESTINATIONS", "mixpanel")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Ensure project root on PYTHONPATH so `import relay` works when pytest is run
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from relay.main import create_app  # noqa: E402, WPS433
from relay.settings import Settings, load_settings  # noqa: E402, WPS433

TEST_ENV: Dict[str, str] = {"APP_ENV": "test", "DESTINATIONS": "mixpanel"}


def _make_settings(**overrides: Any) -> Settings:
    """Settings from ``TEST_ENV`` plus overrides (keys are env names, any case)."""
    env = dict(TEST_ENV)
    env.update({k: str(v) for k, v in overrides.items()})
    return load_settings(env)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def make_settings() -> Callable[..., Settings]:
    return _make_settings


@pytest.fixture()
def app_factory() -> Callable[..., FastAPI]:
    """Build an app around the given sinks; env overrides go through ``make_settings``."""

    def _factory(sinks: List[Any], settings: Optional[Settings] = None, **env: Any) -> FastAPI:
        return create_app(settings or _make_settings(**env), sinks=sinks)

    return _factory


@pytest.fixture()
def client_factory(app_factory) -> Callable[..., TestClient]:
    clients: List[TestClient] = []

    def _factory(sinks: List[Any], **kwargs: Any) -> TestClient:
        raise_server_exceptions = kwargs.pop("raise_server_exceptions", True)
        app = app_factory(sinks, **kwargs)
        app.state.limiter.reset()
        client = TestClient(app, raise_server_exceptions=raise_server_exceptions)
        clients.append(client)
        return client

    yield _factory
    for client in clients:
        client.close()
