import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from chatrelay.server.config import RelayConfig  # noqa: E402

_LEGACY_ENV = (
    "SERVER_PORT",
    "AZURE_OPENAI_ENDPOINT",
    "AZURE_OPENAI_API_KEY",
    "AZURE_OPENAI_DEPLOYMENT",
)


@pytest.fixture(autouse=True)
def isolated_relay_env(tmp_path, monkeypatch):
    """Keep tests away from the developer's config file, .env and variables."""

    import os

    for key in list(os.environ):
        if key.startswith("CHATRELAY_") or key in _LEGACY_ENV:
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CHATRELAY_CONFIG_FILE", str(tmp_path / "configs" / "chatrelay.toml"))
    monkeypatch.setenv("CHATRELAY_DOTENV", str(tmp_path / "missing.env"))
    yield


@pytest.fixture
def relay_cfg(tmp_path):
    return RelayConfig(
        upstream_endpoint="https://unit.openai.azure.com/",
        upstream_api_key="test-key-1234",
        upstream_deployment="gpt-unit",
        log_path=str(tmp_path / "logs" / "chatrelay.jsonl"),
    )
