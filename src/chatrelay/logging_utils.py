"""Process-wide logging for the relay server.

The root log file lives next to the JSONL request log (``log_path``'s
directory) unless ``CHATRELAY_LOG_DIR`` points elsewhere, and uvicorn's own
loggers are routed through the same handlers instead of uvicorn's defaults.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .server.config import RelayConfig

__all__ = ["configure_logging", "log_dir_for", "parse_level", "UVICORN_LOGGERS"]

LOG_DIR_ENV = "CHATRELAY_LOG_DIR"
UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

_MANAGED_HANDLER_FLAG = "_chatrelay_managed_handler"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def log_dir_for(cfg: Optional["RelayConfig"] = None) -> Path:
    """Directory shared by the root log and the request log."""

    env_override = os.environ.get(LOG_DIR_ENV)
    if env_override:
        return Path(env_override).expanduser()
    if cfg is not None and cfg.log_path:
        return Path(cfg.log_path).expanduser().parent
    return Path.cwd() / "logs"


def parse_level(value: str | int) -> int:
    """Translate ``"debug"``/``"INFO"``/``10`` style values into a logging level."""

    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value!r}")
    return level


def _adopt(name: str, level: int) -> None:
    """Strip a library logger's own handlers so records reach the root handlers."""

    lib_logger = logging.getLogger(name)
    for handler in list(lib_logger.handlers):
        lib_logger.removeHandler(handler)
    lib_logger.setLevel(level)
    lib_logger.propagate = True


def configure_logging(
    log_name: str,
    *,
    level: int = logging.INFO,
    cfg: Optional["RelayConfig"] = None,
    log_dir: Optional[Path] = None,
    include_console: bool = True,
    adopt_loggers: Iterable[str] = UVICORN_LOGGERS,
) -> Path:
    """Install managed file/console handlers on the root logger.

    Calling it again replaces the handlers from the previous call. Returns
    the path of the log file.
    """

    target_directory = Path(log_dir).expanduser() if log_dir else log_dir_for(cfg)
    target_directory.mkdir(parents=True, exist_ok=True)
    log_path = target_directory / f"{log_name}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        if getattr(handler, _MANAGED_HANDLER_FLAG, False):
            root_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if include_console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        setattr(handler, _MANAGED_HANDLER_FLAG, True)
        root_logger.addHandler(handler)

    for name in adopt_loggers:
        _adopt(name, level)

    logging.captureWarnings(True)
    return log_path
