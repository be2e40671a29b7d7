import importlib
import logging
import sys

import pytest

from hotrefresh.sample_handlers import LoggingRefreshHandler, ModuleReloadHandler, ShellCommandHandler
from hotrefresh.targets import Target


@pytest.fixture
def module_dir(tmp_path, monkeypatch):
    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.setattr(sys, "dont_write_bytecode", True)
    yield tmp_path
    sys.modules.pop("reload_probe", None)


def test_module_reload_picks_up_new_source(module_dir):
    source = module_dir / "reload_probe.py"
    source.write_text("VALUE = 1\n")
    importlib.invalidate_caches()
    module = importlib.import_module("reload_probe")
    assert module.VALUE == 1

    source.write_text("VALUE = 'second version'\n")
    handler = ModuleReloadHandler("reload")

    assert handler.on_refresh(Target("py", "reload_probe"), None) is True
    assert sys.modules["reload_probe"].VALUE == "second version"


def test_module_reload_skips_modules_not_imported():
    handler = ModuleReloadHandler("reload")

    assert handler.on_refresh(Target("py", "never_imported_probe"), None) is True
    assert "never_imported_probe" not in sys.modules


def test_module_remove_evicts_module(module_dir):
    (module_dir / "reload_probe.py").write_text("VALUE = 1\n")
    importlib.invalidate_caches()
    importlib.import_module("reload_probe")

    ModuleReloadHandler("reload").on_remove(Target("py", "reload_probe"))

    assert "reload_probe" not in sys.modules


def test_module_prefix_is_applied():
    handler = ModuleReloadHandler("reload", options={"module_prefix": "app."})

    assert handler.module_name(Target("py", "views")) == "app.views"


def test_logging_handler_logs_refresh(caplog):
    handler = LoggingRefreshHandler("log", options={"message": "Changed"})

    with caplog.at_level(logging.INFO, logger="hotrefresh.sample_handlers"):
        handler.on_refresh(Target("app", "A"), b"1234")
        handler.on_remove(Target("app", "A"))

    assert "Changed: refresh app:A (4 bytes)" in caplog.text
    assert "Changed: remove app:A" in caplog.text


def test_shell_handler_runs_templated_command(tmp_path):
    marker = tmp_path / "out.txt"
    handler = ShellCommandHandler("shell", options={"command": f"echo {{unit}} {{action}} > {marker}"})

    assert handler.on_refresh(Target("app", "com.acme.A"), None) is True
    assert marker.read_text().strip() == "com.acme.A refresh"
    assert not handler.handles_removal


def test_shell_handler_reports_failures():
    handler = ShellCommandHandler("shell", options={"command": "exit 3", "remove_command": "{missing}"})

    assert handler.handles_removal
    assert handler.on_refresh(Target("app", "A"), None) is False
    assert handler.on_remove(Target("app", "A")) is False


def test_shell_handler_requires_command():
    with pytest.raises(ValueError):
        ShellCommandHandler("shell")
