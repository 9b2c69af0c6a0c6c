from __future__ import annotations

import sys
import pytest
from flask import Flask

import run


@pytest.fixture(autouse=True)
def restore_sys_argv(monkeypatch):
    original = sys.argv[:]
    yield
    monkeypatch.setattr(sys, "argv", original, raising=False)


def test_parse_args_defaults(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["run.py"], raising=False)
    monkeypatch.setattr(run, "DEFAULT_CONFIG", run.ROOT / "missing-config.json")
    args = run.parse_args()
    assert args.host is None
    assert args.port is None
    assert args.debug is False
    assert args.config is None


def _capture(monkeypatch):
    created_app = Flask("test_app", static_folder=None)
    received = {}

    def fake_create_app(config: str | None):
        received["config"] = config
        return created_app

    def fake_run(self, host, port, debug):
        received["run"] = {"host": host, "port": port, "debug": debug}

    monkeypatch.setattr(run, "create_app", fake_create_app)
    monkeypatch.setattr(Flask, "run", fake_run, raising=False)
    return received


def test_main_uses_cli_arguments(tmp_path, monkeypatch):
    config_path = tmp_path / "config.json"
    config_path.write_text("{}")
    monkeypatch.setattr(sys, "argv", [
        "run.py",
        "--config",
        str(config_path),
        "--host",
        "127.0.0.1",
        "--port",
        "6000",
        "--debug",
    ], raising=False)
    received = _capture(monkeypatch)

    run.main()

    assert received["config"] == str(config_path)
    assert received["run"] == {"host": "127.0.0.1", "port": 6000, "debug": True}


def test_main_falls_back_to_config_server_section(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("server:\n  host: 10.0.0.5\n  port: 7700\n")
    monkeypatch.setattr(sys, "argv", ["run.py", "--config", str(config_path)], raising=False)
    received = _capture(monkeypatch)

    run.main()

    assert received["run"]["host"] == "10.0.0.5"
    assert received["run"]["port"] == 7700
