"""
Shared fixtures and fakes for scratch org CLI tests.

All external dependencies (dev hub HTTP calls, Azure credentials, DNS,
browser, terminal) are faked so tests run without any infrastructure.
"""
import sys
import pytest
from pathlib import Path
from unittest.mock import MagicMock
from datetime import datetime, timezone, timedelta

# Ensure the repo root is on sys.path
REPO_ROOT = Path(__file__).parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


# ---------------------------------------------------------------------------
# Environment variable fixtures
# ---------------------------------------------------------------------------

_ENV_VARS = (
    "DEVHUB_INSTANCE_URL",
    "DEVHUB_ACCESS_TOKEN",
    "DEVHUB_TOKEN_SCOPE",
    "SCRATCH_DOMAIN_RETRY",
    "SCRATCH_OPEN_PATH",
    "SCRATCH_CONTAINER_MODE",
    "SCRATCH_ORG_INSTANCE_URL",
)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Start every test from a clean configuration."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# Credential mock
# ---------------------------------------------------------------------------

class FakeAccessToken:
    """Mimics azure.core.credentials.AccessToken"""
    def __init__(self, token="fake-token-12345", expires_on=None):
        self.token = token
        self.expires_on = expires_on or (datetime.now(timezone.utc) + timedelta(hours=1)).timestamp()


@pytest.fixture
def mock_credential():
    """Return a mock credential that always succeeds."""
    cred = MagicMock()
    cred.get_token.return_value = FakeAccessToken()
    return cred


# ---------------------------------------------------------------------------
# Requests / HTTP mock helpers
# ---------------------------------------------------------------------------

class FakeResponse:
    """Minimal requests.Response stand-in."""
    def __init__(self, status_code=200, json_data=None, text=""):
        self.status_code = status_code
        self._json = json_data or {}
        self.text = text

    def json(self):
        return self._json


def scratch_org_info_record(status="New", org_id=None, username=None, login_url=None, error_code=None,
                            record_id="2SR000000000001"):
    """A ScratchOrgInfo record as the dev hub returns it."""
    return {
        "Id": record_id,
        "Status": status,
        "ScratchOrg": org_id,
        "SignupUsername": username,
        "LoginUrl": login_url,
        "ErrorCode": error_code,
    }


# ---------------------------------------------------------------------------
# Presentation fakes
# ---------------------------------------------------------------------------

class FakeStatusView:
    """Records renders and teardowns instead of drawing."""
    def __init__(self, base_url="https://hub.example.com"):
        self.base_url = base_url
        self.renders = []
        self.unmount_count = 0

    def render(self, event, error=None):
        self.renders.append((event, error))

    def unmount(self):
        self.unmount_count += 1


class FakeIndicator:
    def __init__(self, label=""):
        self.label = label
        self.show_count = 0
        self.clear_count = 0
        self.unmount_count = 0

    def show(self):
        self.show_count += 1

    def clear(self):
        self.clear_count += 1

    def unmount(self):
        self.unmount_count += 1


class FakeStatusSink:
    """Stands in for the spinner used by the readiness poller."""
    def __init__(self):
        self.starts = []
        self.stop_count = 0

    def start(self, message):
        self.starts.append(message)

    def stop(self):
        self.stop_count += 1


@pytest.fixture
def status_sink():
    return FakeStatusSink()
