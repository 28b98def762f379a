"""Shared test fixtures for the FLOW server tests."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure the project root is importable without installing
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from flow.config import Config
from flow.events import EventBus
from flow.store import BlobStore


class FakeClock:
    """Settable clock for time-window tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def cfg(tmp_path):
    c = Config(
        data_dir=str(tmp_path / "data"),
        app_dir=str(ROOT / "app"),
        openclaw_home=str(tmp_path / "openclaw"),
        openclaw_bin="flow-test-no-such-openclaw-binary",
        cli_timeout=1.0,
    )
    c.resolve_paths()
    return c


@pytest.fixture
def store(cfg):
    return BlobStore(cfg.data_dir)


@pytest.fixture
def bus(store):
    return EventBus(store)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(cfg):
    from flow_server import create_app
    application = create_app(cfg)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()
