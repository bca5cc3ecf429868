from __future__ import annotations

import os
import tempfile
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable, Mapping, Union, get_args, get_type_hints

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from dotenv import dotenv_values

from .config import RelayConfig

CONFIG_FILE_ENV = "CHATRELAY_CONFIG_FILE"
DOTENV_FILE_ENV = "CHATRELAY_DOTENV"
ENV_PREFIX = "CHATRELAY_"
DEFAULT_CONFIG_PATH = Path("configs/chatrelay.toml")
DEFAULT_DOTENV_PATH = Path(".env")

_SECTION_MAP: dict[str, list[str]] = {
    "server": ["host", "port", "cors_allow_origins"],
    "upstream": [
        "upstream_endpoint",
        "upstream_api_key",
        "upstream_deployment",
        "upstream_api_version",
        "connect_timeout_ms",
        "stream_idle_timeout_ms",
    ],
    "relay": ["system_instruction", "enable_metrics"],
    "logging": ["log_path", "max_log_bytes", "log_prompts"],
}

# Older deployment variable names; CHATRELAY_* wins when both are set.
_LEGACY_ENV_NAMES: dict[str, str] = {
    "port": "SERVER_PORT",
    "upstream_endpoint": "AZURE_OPENAI_ENDPOINT",
    "upstream_api_key": "AZURE_OPENAI_API_KEY",
    "upstream_deployment": "AZURE_OPENAI_DEPLOYMENT",
}

_SECRET_FIELDS = {"upstream_api_key"}


def _field_types() -> dict[str, Any]:
    hints = get_type_hints(RelayConfig)
    return {f.name: hints[f.name] for f in fields(RelayConfig)}


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


def _coerce_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _coerce_list(value: Any) -> list[str]:
    if isinstance(value, str):
        parts = [item.strip() for item in value.split(",")]
        return [item for item in parts if item]
    return [str(item) for item in value]


def _coerce_optional(value: Any, caster: Callable[[Any], Any]) -> Any:
    if value in ("", None):
        return None
    return caster(value)


_CASTERS: dict[Any, Callable[[Any], Any]] = {
    bool: _coerce_bool,
    int: _coerce_int,
    str: _coerce_str,
}


def _coerce_value(field_type: Any, value: Any) -> Any:
    origin = getattr(field_type, "__origin__", None)
    if origin is None:
        caster = _CASTERS.get(field_type)
        if caster:
            return caster(value)
        return value

    if origin is list:
        return _coerce_list(value)

    if origin is Union:
        args = [arg for arg in get_args(field_type) if arg is not type(None)]
        if len(args) == 1:
            caster = _CASTERS.get(args[0])
            if caster:
                return _coerce_optional(value, caster)
    return value


def _config_path() -> Path:
    return Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_PATH)).expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    out: dict[str, Any] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = data.get(section, {})
        if not isinstance(section_values, dict):
            continue
        for key in keys:
            if key in section_values:
                out[key] = section_values[key]
    return out


def _read_dotenv() -> dict[str, str]:
    path = Path(os.environ.get(DOTENV_FILE_ENV, DEFAULT_DOTENV_PATH)).expanduser()
    if not path.is_file():
        return {}
    return {k: v for k, v in dotenv_values(path).items() if v is not None}


def _environment() -> dict[str, str]:
    """Merge the .env file under the real process environment."""

    merged = _read_dotenv()
    merged.update(os.environ)
    return merged


def _env_name(key: str) -> str:
    return f"{ENV_PREFIX}{key.upper()}"


def _apply_env_overrides(
    config: dict[str, Any], env: Mapping[str, str]
) -> dict[str, Any]:
    field_types = _field_types()
    for key in _default_config_dict():
        raw = env.get(_env_name(key))
        if raw is None and key in _LEGACY_ENV_NAMES:
            raw = env.get(_LEGACY_ENV_NAMES[key])
        if raw is None:
            continue
        try:
            config[key] = _coerce_value(field_types[key], raw)
        except ValueError:
            # Keep the file/default value when the override does not parse
            continue
    return config


def _default_config_dict() -> dict[str, Any]:
    data = asdict(RelayConfig())
    data.pop("config_file_path", None)
    return data


def _normalize(config: dict[str, Any]) -> dict[str, Any]:
    field_types = _field_types()
    normalized = {}
    for key, default_value in _default_config_dict().items():
        value = config.get(key, default_value)
        try:
            normalized[key] = _coerce_value(field_types[key], value)
        except (TypeError, ValueError):
            normalized[key] = default_value
    normalized["upstream_endpoint"] = normalized["upstream_endpoint"].strip()
    return normalized


def _ensure_config_file(path: Path) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    write_config(RelayConfig(), path)


def load_file_config() -> dict[str, Any]:
    path = _config_path()
    _ensure_config_file(path)
    base = _default_config_dict()
    base.update(_read_config_file(path))
    return _normalize(base)


def load_relay_config() -> RelayConfig:
    """Build the runtime config: defaults, then file, then .env, then environment.

    The result is not validated; callers that need a working upstream call
    :meth:`RelayConfig.validate`.
    """

    candidate = _config_path()
    _ensure_config_file(candidate)
    normalized = _normalize(_read_config_file(candidate))
    normalized = _apply_env_overrides(normalized, _environment())
    cfg = RelayConfig(**normalized)
    cfg.config_file_path = str(candidate)
    return cfg


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        inner = ", ".join(_format_value(item) for item in value)
        return f"[{inner}]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return '""'
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _ordered_sections(config: RelayConfig) -> dict[str, dict[str, Any]]:
    config_dict = asdict(config)
    config_dict.pop("config_file_path", None)
    sections: dict[str, dict[str, Any]] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = {key: config_dict[key] for key in keys if key in config_dict}
        if section_values:
            sections[section] = section_values
    return sections


def write_config(config: RelayConfig, path: Path | None = None) -> None:
    path = Path(path or _config_path()).expanduser()
    lines: list[str] = [
        "# chatrelay configuration.",
        "# Generated automatically. Secrets are better kept in .env or CHATRELAY_* variables.",
    ]
    for section, values in _ordered_sections(config).items():
        lines.append("")
        lines.append(f"[{section}]")
        for key, value in values.items():
            lines.append(f"{key} = {_format_value(value)}")

    tmp_fd, tmp_path = tempfile.mkstemp(
        prefix="chatrelay_config_", suffix=".toml", dir=str(path.parent)
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        Path(tmp_path).replace(path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def mask_secret(value: str | None) -> str:
    if not value:
        return ""
    if len(value) <= 4:
        return "****"
    return "****" + value[-4:]


def redacted(config: RelayConfig) -> dict[str, Any]:
    data = asdict(config)
    for key in _SECRET_FIELDS:
        data[key] = mask_secret(data.get(key))
    return data


def list_env_overrides() -> dict[str, str]:
    names = {_env_name(key) for key in _default_config_dict()}
    names.update(_LEGACY_ENV_NAMES.values())
    secret_names = {_env_name(key) for key in _SECRET_FIELDS}
    secret_names.update(_LEGACY_ENV_NAMES[k] for k in _SECRET_FIELDS)
    env = _environment()
    return {
        key: (mask_secret(value) if key in secret_names else value)
        for key, value in env.items()
        if key in names
    }
