from pathlib import Path

import pytest

from hotrefresh.config import ConfigError, load_config

VALID = """
scheduler:
  debounce_ms: 150
monitor:
  poll_interval: 0.25
  include_patterns: ["*.class"]
  read_payload: true
scopes:
  - id: app
    paths: [build/classes]
    collapse_nested: true
  - id: scripts
    paths: [/opt/scripts]
    suffixes: [".py"]
handlers:
  - name: log
    module: hotrefresh.sample_handlers
    factory: LoggingRefreshHandler
    scopes: [app]
    options:
      level: DEBUG
"""


def write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "hotrefresh.yaml"
    path.write_text(text)
    return path


def test_load_valid_config(tmp_path):
    config = load_config(write(tmp_path, VALID))

    assert config.scheduler.debounce_window == pytest.approx(0.15)
    app, scripts = config.scopes
    assert app.paths == [(tmp_path / "build/classes").resolve()]
    assert app.suffixes == (".class",)
    assert app.collapse_nested is True
    assert scripts.suffixes == (".py",)
    assert config.monitor.read_payload is True
    assert config.monitor.roots == app.paths + scripts.paths
    assert config.handlers[0].factory == "LoggingRefreshHandler"
    assert config.handlers[0].options == {"level": "DEBUG"}


def test_defaults_when_sections_missing(tmp_path):
    config = load_config(write(tmp_path, "scopes:\n  - id: app\n    paths: [out]\n"))

    assert config.scheduler.debounce_window == pytest.approx(0.3)
    assert config.monitor.poll_interval == 0.5
    assert config.handlers == []


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "absent.yaml")


def test_invalid_yaml(tmp_path):
    with pytest.raises(ConfigError, match="Failed to parse"):
        load_config(write(tmp_path, "scopes: [unclosed"))


@pytest.mark.parametrize(
    "text, message",
    [
        ("- just a list\n", "root must be a mapping"),
        ("scopes: []\n", "non-empty list"),
        ("scopes:\n  - id: app\n", "at least one directory"),
        ("scopes:\n  - {id: a, paths: [x]}\n  - {id: a, paths: [y]}\n", "more than once"),
        ("scheduler: {debounce_ms: soon}\nscopes:\n  - {id: a, paths: [x]}\n", "debounce_ms must be numeric"),
        ("monitor: {poll_interval: 0}\nscopes:\n  - {id: a, paths: [x]}\n", "poll_interval must be positive"),
        (
            "scopes:\n  - {id: a, paths: [x]}\nhandlers:\n  - {module: m, factory: f, scopes: [b]}\n",
            "unknown scope",
        ),
        ("scopes:\n  - {id: a, paths: [x]}\nhandlers:\n  - {module: m}\n", "'module' and 'factory'"),
    ],
)
def test_invalid_values(tmp_path, text, message):
    with pytest.raises(ConfigError, match=message):
        load_config(write(tmp_path, text))
