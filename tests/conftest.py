import sys
from datetime import datetime
from pathlib import Path

import pytest
from freezegun import freeze_time

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from chaldduck_pricing.app.models.policy import PolicyCreateRequest  # noqa: E402
from chaldduck_pricing.engine.rules.store import RuleStore  # noqa: E402
from chaldduck_pricing.persistence.memory_policies import InMemoryPolicies  # noqa: E402

DEFAULT_ENV = {
    "AWS_ACCESS_KEY_ID": "test-access-key",
    "AWS_SECRET_ACCESS_KEY": "test-secret-key",
    "AWS_SESSION_TOKEN": "test-session",
    "AWS_DEFAULT_REGION": "us-east-1",
}


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    for key, value in DEFAULT_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.delenv("API_KEYS", raising=False)
    monkeypatch.delenv("POLICIES_TABLE", raising=False)
    monkeypatch.delenv("PRICING_CONFIG_PATH", raising=False)
    monkeypatch.delenv("CLOUDWATCH_METRICS_ENABLED", raising=False)
    yield


@pytest.fixture
def freezer():
    with freeze_time("2025-06-15T03:00:00Z") as frozen_datetime:
        yield frozen_datetime


@pytest.fixture
def store() -> RuleStore:
    return RuleStore(InMemoryPolicies(), timezone="Asia/Seoul")


@pytest.fixture
def year_window() -> PolicyCreateRequest:
    return PolicyCreateRequest(
        name="2025 정책",
        start_at=datetime(2025, 1, 1),
        end_at=datetime(2025, 12, 31, 23, 59, 59),
    )
