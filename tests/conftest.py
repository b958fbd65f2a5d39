import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


_ENV_VARS = (
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "GEMINI_BASE_URL",
    "INSTRUMENTATOR_API_URL",
    "INSTRUMENTATOR_API_TIMEOUT",
    "INSTRUMENTATOR_PASSCODE",
    "INSTRUMENTATOR_PASSCODE_SHA256",
    "INSTRUMENTATOR_LLM_CONNECT_TIMEOUT",
    "INSTRUMENTATOR_LLM_READ_TIMEOUT",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep developer .env values and the real state file out of tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("INSTRUMENTATOR_STATE_PATH", str(tmp_path / "state.json"))
