import pytest

from chatrelay.server import config_loader
from chatrelay.server.config import ConfigError, RelayConfig
from chatrelay.server.transform import DEFAULT_SYSTEM_INSTRUCTION


def test_load_relay_config_creates_file_with_defaults(tmp_path, monkeypatch):
    config_path = tmp_path / "relay.toml"
    monkeypatch.setenv(config_loader.CONFIG_FILE_ENV, str(config_path))

    cfg = config_loader.load_relay_config()

    assert config_path.exists()
    assert cfg.port == 3000
    assert cfg.upstream_api_version == "2024-02-01"
    assert cfg.system_instruction == DEFAULT_SYSTEM_INSTRUCTION
    assert cfg.cors_allow_origins == ["*"]
    assert cfg.config_file_path == str(config_path)
    assert cfg.missing_required() == [
        "upstream_endpoint",
        "upstream_api_key",
        "upstream_deployment",
    ]


def test_file_values_are_read_by_section(tmp_path, monkeypatch):
    config_path = tmp_path / "relay.toml"
    config_path.write_text(
        "\n".join(
            [
                "[server]",
                "port = 8080",
                'cors_allow_origins = ["https://app.example"]',
                "[upstream]",
                'upstream_endpoint = "https://file.openai.azure.com"',
                'upstream_deployment = "gpt-file"',
                "stream_idle_timeout_ms = 0",
                "[logging]",
                "log_prompts = true",
            ]
        )
    )
    monkeypatch.setenv(config_loader.CONFIG_FILE_ENV, str(config_path))

    cfg = config_loader.load_relay_config()

    assert cfg.port == 8080
    assert cfg.cors_allow_origins == ["https://app.example"]
    assert cfg.upstream_endpoint == "https://file.openai.azure.com"
    assert cfg.upstream_deployment == "gpt-file"
    assert cfg.stream_idle_timeout_ms == 0
    assert cfg.log_prompts is True
    assert cfg.missing_required() == ["upstream_api_key"]


def test_env_overrides_take_precedence(tmp_path, monkeypatch):
    config_path = tmp_path / "relay.toml"
    monkeypatch.setenv(config_loader.CONFIG_FILE_ENV, str(config_path))
    config_loader.write_config(RelayConfig(port=8101), config_path)

    monkeypatch.setenv("CHATRELAY_PORT", "9010")
    monkeypatch.setenv("CHATRELAY_ENABLE_METRICS", "yes")
    monkeypatch.setenv("CHATRELAY_CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")

    cfg = config_loader.load_relay_config()
    file_cfg = config_loader.load_file_config()

    assert file_cfg["port"] == 8101
    assert cfg.port == 9010
    assert cfg.enable_metrics is True
    assert cfg.cors_allow_origins == ["https://a.example", "https://b.example"]


def test_unparseable_env_override_keeps_file_value(monkeypatch):
    monkeypatch.setenv("CHATRELAY_PORT", "not-a-port")
    assert config_loader.load_relay_config().port == 3000


def test_legacy_variable_names_are_honoured(monkeypatch):
    monkeypatch.setenv("SERVER_PORT", "4000")
    monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://legacy.openai.azure.com")
    monkeypatch.setenv("AZURE_OPENAI_API_KEY", "legacy-key")
    monkeypatch.setenv("AZURE_OPENAI_DEPLOYMENT", "gpt-legacy")
    monkeypatch.setenv("CHATRELAY_UPSTREAM_DEPLOYMENT", "gpt-new")

    cfg = config_loader.load_relay_config().validate()

    assert cfg.port == 4000
    assert cfg.upstream_endpoint == "https://legacy.openai.azure.com"
    assert cfg.upstream_api_key == "legacy-key"
    assert cfg.upstream_deployment == "gpt-new"


def test_dotenv_file_fills_in_under_real_environment(tmp_path, monkeypatch):
    dotenv = tmp_path / ".env"
    dotenv.write_text(
        "AZURE_OPENAI_ENDPOINT=https://dotenv.openai.azure.com\n"
        "AZURE_OPENAI_API_KEY=dotenv-secret-9999\n"
        "AZURE_OPENAI_DEPLOYMENT=gpt-dotenv\n"
    )
    monkeypatch.setenv(config_loader.DOTENV_FILE_ENV, str(dotenv))
    monkeypatch.setenv("AZURE_OPENAI_DEPLOYMENT", "gpt-env")

    cfg = config_loader.load_relay_config()

    assert cfg.upstream_endpoint == "https://dotenv.openai.azure.com"
    assert cfg.upstream_api_key == "dotenv-secret-9999"
    assert cfg.upstream_deployment == "gpt-env"
    overrides = config_loader.list_env_overrides()
    assert overrides["AZURE_OPENAI_API_KEY"] == "****9999"
    assert overrides["AZURE_OPENAI_DEPLOYMENT"] == "gpt-env"


def test_validate_reports_missing_fields():
    with pytest.raises(ConfigError) as info:
        RelayConfig(upstream_endpoint="https://x").validate()
    assert "upstream_api_key" in str(info.value)
    assert "upstream_deployment" in str(info.value)


def test_validate_rejects_bad_port(relay_cfg):
    relay_cfg.port = 70_000
    with pytest.raises(ConfigError):
        relay_cfg.validate()


def test_redacted_masks_api_key(relay_cfg):
    data = config_loader.redacted(relay_cfg)
    assert data["upstream_api_key"] == "****1234"
    assert data["upstream_deployment"] == "gpt-unit"
