import logging

import pytest

from chatrelay.logging_utils import (
    UVICORN_LOGGERS,
    configure_logging,
    log_dir_for,
    parse_level,
)
from chatrelay.server.config import RelayConfig


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    saved_root = (list(root.handlers), root.level)
    saved_libs = {}
    for name in UVICORN_LOGGERS:
        lib = logging.getLogger(name)
        saved_libs[name] = (list(lib.handlers), lib.level, lib.propagate)
    yield
    for handler in list(root.handlers):
        if handler not in saved_root[0]:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(saved_root[1])
    for name, (handlers, level, propagate) in saved_libs.items():
        lib = logging.getLogger(name)
        lib.handlers[:] = handlers
        lib.setLevel(level)
        lib.propagate = propagate


def test_log_dir_follows_request_log_location(tmp_path):
    cfg = RelayConfig(log_path=str(tmp_path / "var" / "requests.jsonl"))
    assert log_dir_for(cfg) == tmp_path / "var"


def test_log_dir_env_override_wins_over_config(monkeypatch, tmp_path):
    monkeypatch.setenv("CHATRELAY_LOG_DIR", str(tmp_path / "elsewhere"))
    cfg = RelayConfig(log_path=str(tmp_path / "var" / "requests.jsonl"))
    assert log_dir_for(cfg) == tmp_path / "elsewhere"


def test_root_log_sits_beside_request_log(tmp_path):
    cfg = RelayConfig(log_path=str(tmp_path / "var" / "requests.jsonl"))

    log_path = configure_logging("chatrelay", cfg=cfg, include_console=False)
    logging.getLogger("chatrelay.server.app").info("relay ready")

    assert log_path == tmp_path / "var" / "chatrelay.log"
    assert "relay ready" in log_path.read_text()


def test_uvicorn_loggers_write_through_managed_handlers(tmp_path):
    access = logging.getLogger("uvicorn.access")
    foreign = logging.StreamHandler()
    access.addHandler(foreign)
    access.propagate = False

    log_path = configure_logging(
        "chatrelay", log_dir=tmp_path, include_console=False
    )
    access.info('127.0.0.1 - "POST / HTTP/1.1" 200')
    logging.getLogger("uvicorn.error").warning("worker restarted")

    assert foreign not in access.handlers
    assert access.propagate is True
    text = log_path.read_text()
    assert "uvicorn.access" in text and '"POST / HTTP/1.1" 200' in text
    assert "worker restarted" in text


def test_level_applies_to_uvicorn_loggers(tmp_path):
    log_path = configure_logging(
        "chatrelay", level=logging.WARNING, log_dir=tmp_path, include_console=False
    )
    logging.getLogger("uvicorn.access").info("quiet access line")
    logging.getLogger("uvicorn.error").error("loud failure")

    assert logging.getLogger("uvicorn").level == logging.WARNING
    text = log_path.read_text()
    assert "quiet access line" not in text
    assert "loud failure" in text


def test_reconfiguring_moves_output_to_new_file(tmp_path):
    first = configure_logging("chatrelay", log_dir=tmp_path / "a", include_console=False)
    second = configure_logging("chatrelay", log_dir=tmp_path / "b", include_console=False)
    logging.getLogger("uvicorn.error").info("after move")

    assert "after move" in second.read_text()
    assert "after move" not in first.read_text()


def test_parse_level():
    assert parse_level("debug") == logging.DEBUG
    assert parse_level("WARNING") == logging.WARNING
    assert parse_level(logging.ERROR) == logging.ERROR
    with pytest.raises(ValueError):
        parse_level("chatty")
