import json
import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from houlog.config import LoggerConfig
from houlog.logging_config import (
    LOGGER_NAME,
    configure_from_env,
    disable_logging,
    enable_console_logging,
    enable_file_logging,
)


def test_defaults() -> None:
    config = LoggerConfig()

    assert config.host == "127.0.0.1"
    assert config.port == 9090
    assert config.container_path == "/obj/recordings"
    assert config.node_name == "recording"
    assert config.output_path is None


def test_from_env_overrides() -> None:
    config = LoggerConfig.from_env({
        "HOULOG_HOST": "10.0.0.5",
        "HOULOG_PORT": "9191",
        "HOULOG_NODE": "frames",
        "HOULOG_TIMEOUT": "0.5",
        "UNRELATED": "x",
    })

    assert config.host == "10.0.0.5"
    assert config.port == 9191
    assert config.node_name == "frames"
    assert config.timeout == 0.5
    assert config.container_path == "/obj/recordings"


def test_from_env_keeps_base_values() -> None:
    base = LoggerConfig(output_path="base.geo")
    config = LoggerConfig.from_env({"HOULOG_PORT": "1234"}, base=base)

    assert config.output_path == "base.geo"
    assert config.port == 1234


@pytest.mark.parametrize("data", [
    {"port": 70000},
    {"timeout": 0},
    {"container_path": "obj/recordings"},
    {"node_name": "a/b"},
    {"node_name": ""},
    {"colour": "red"},
])
def test_invalid_values_are_rejected(data) -> None:
    with pytest.raises(ValueError):
        LoggerConfig.from_dict(data)


def test_load_from_json(tmp_path) -> None:
    path = tmp_path / "houlog.json"
    path.write_text(json.dumps({"port": 9500, "output_path": "out.geo"}))

    config = LoggerConfig.load(path)
    assert config.port == 9500
    assert config.to_dict()["output_path"] == "out.geo"

    path.write_text("[1, 2]")
    with pytest.raises(ValueError):
        LoggerConfig.load(path)


@pytest.fixture()
def clean_logging():
    disable_logging()
    yield logging.getLogger(LOGGER_NAME)
    disable_logging()


def test_console_and_file_handlers(clean_logging, tmp_path) -> None:
    enable_console_logging(level="DEBUG")
    assert clean_logging.level == logging.DEBUG

    log_file = tmp_path / "logs" / "houlog.log"
    enable_file_logging(log_file, level="INFO")
    logging.getLogger("houlog.logger").info("hello file")

    for handler in clean_logging.handlers:
        handler.flush()
    assert "hello file" in log_file.read_text()

    disable_logging()
    assert all(isinstance(h, logging.NullHandler) for h in clean_logging.handlers)


def test_configure_from_env(clean_logging, monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("HOULOG_LOGGING", raising=False)
    configure_from_env()
    assert all(isinstance(h, logging.NullHandler) for h in clean_logging.handlers)

    monkeypatch.setenv("HOULOG_LOGGING", "WARNING")
    monkeypatch.setenv("HOULOG_LOG_FILE", str(tmp_path / "env.log"))
    configure_from_env()
    assert clean_logging.level == logging.WARNING
    assert any(
        type(h).__name__ == "RotatingFileHandler" for h in clean_logging.handlers
    )
