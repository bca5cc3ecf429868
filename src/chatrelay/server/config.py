from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .transform import DEFAULT_SYSTEM_INSTRUCTION


class ConfigError(RuntimeError):
    """Raised at startup when required relay settings are missing or invalid."""


@dataclass
class RelayConfig:
    host: str = "127.0.0.1"
    port: int = 3000
    upstream_endpoint: str = ""
    upstream_api_key: str = ""
    upstream_deployment: str = ""
    upstream_api_version: str = "2024-02-01"
    system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION
    connect_timeout_ms: int = 10_000
    # 0 disables the idle timeout between upstream chunks
    stream_idle_timeout_ms: int = 60_000
    enable_metrics: bool = False
    log_path: str = "logs/chatrelay.jsonl"
    max_log_bytes: int = 25_000_000
    log_prompts: bool = False
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    config_file_path: Optional[str] = None

    @classmethod
    def load(cls) -> "RelayConfig":
        from .config_loader import load_relay_config

        return load_relay_config()

    def missing_required(self) -> list[str]:
        required = {
            "upstream_endpoint": self.upstream_endpoint,
            "upstream_api_key": self.upstream_api_key,
            "upstream_deployment": self.upstream_deployment,
        }
        return [name for name, value in required.items() if not str(value).strip()]

    def validate(self) -> "RelayConfig":
        missing = self.missing_required()
        if missing:
            raise ConfigError(
                "Missing required upstream configuration: "
                + ", ".join(missing)
                + ". Set them in the config file, a .env file or CHATRELAY_* variables."
            )
        if not 0 < self.port < 65536:
            raise ConfigError(f"Invalid port: {self.port}")
        if self.stream_idle_timeout_ms < 0 or self.connect_timeout_ms <= 0:
            raise ConfigError("Timeouts must be positive (idle timeout may be 0).")
        return self
