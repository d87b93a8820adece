"""Shared fixtures for the panel-link test suite."""

import os
import tempfile
from datetime import datetime, timedelta, UTC
from pathlib import Path

# Keep the module-level app in panel_link.main away from the working directory
_TEST_DIR = Path(tempfile.mkdtemp(prefix="panel-link-test-"))
os.environ.setdefault("PANEL_LINK_DATABASE_PATH", str(_TEST_DIR / "import.db"))
os.environ.setdefault("PANEL_LINK_AUTH_ENABLED", "false")

import pytest

from panel_link.monitoring.metrics import MetricsCollector
from panel_link.persistence.database import LinkStore
from panel_link.schemas import ApiResult
from panel_link.security.vault import CredentialVault


TEST_API_KEY = "ptlc_" + "a" * 43


class FakeClock:
    """Settable datetime clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakePanelClient:
    """Stands in for PanelClient; behaviour is driven by the owning FakePanel."""

    def __init__(self, panel, base_url, api_key, timeout=15):
        self.panel = panel
        self.base_url = base_url
        self.api_key = api_key

    def _fail_if_down(self):
        if self.panel.down:
            return ApiResult.fail("Panel unreachable")
        return None

    def list_servers(self):
        if self.api_key not in self.panel.valid_keys:
            return ApiResult.fail("Invalid API key")
        return ApiResult.ok([{"id": sid, "name": sid} for sid in self.panel.servers])

    def get_server_details(self, server_id):
        return self._fail_if_down() or ApiResult.ok({
            "name": f"Server {server_id}",
            "identifier": server_id,
            "limits": {"memory": 1024, "disk": 2048},
        })

    def get_server_resources(self, server_id):
        return self._fail_if_down() or ApiResult.ok({
            "current_state": "running",
            "resources": {
                "cpu_absolute": 12.5,
                "memory_bytes": 512 * 1024 * 1024,
                "disk_bytes": 1024 * 1024 * 1024,
                "uptime": 3_600_000,
            },
        })

    def send_power_signal(self, server_id, signal):
        self.panel.power_calls.append((server_id, signal))
        return self._fail_if_down() or ApiResult.ok()

    def read_file(self, server_id, path):
        self.panel.reads.append((server_id, path))
        if server_id not in self.panel.files:
            return ApiResult.fail("File not found")
        return ApiResult.ok(self.panel.files[server_id])


class FakePanel:
    def __init__(self):
        self.valid_keys = {TEST_API_KEY}
        self.servers = ["abc123"]
        self.files = {}
        self.reads = []
        self.power_calls = []
        self.down = False

    def client_factory(self, base_url, api_key, timeout=15):
        return FakePanelClient(self, base_url, api_key, timeout)


@pytest.fixture
def vault():
    return CredentialVault("test-passphrase")


@pytest.fixture
def store(vault):
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    try:
        yield LinkStore(db_path, vault)
    finally:
        for suffix in ("", "-wal", "-shm"):
            Path(str(db_path) + suffix).unlink(missing_ok=True)


@pytest.fixture
def api_key():
    return TEST_API_KEY


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def panel():
    return FakePanel()


@pytest.fixture
def collector():
    return MetricsCollector()
