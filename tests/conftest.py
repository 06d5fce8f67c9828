import sys
from pathlib import Path

import pytest

# Ensure src/ is on sys.path for test imports
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for p in (SRC, ROOT):
    p_str = str(p)
    if p_str in sys.path:
        sys.path.remove(p_str)
    sys.path.insert(0, p_str)

from trustscan.policy import RiskPolicy, default_policy  # noqa: E402


@pytest.fixture()
def policy() -> RiskPolicy:
    """Built-in policy, independent of TRUSTSCAN_POLICY_PATH."""
    return RiskPolicy()


@pytest.fixture(autouse=True)
def _fresh_default_policy(monkeypatch):
    monkeypatch.delenv("TRUSTSCAN_POLICY_PATH", raising=False)
    default_policy.cache_clear()
    yield
    default_policy.cache_clear()
