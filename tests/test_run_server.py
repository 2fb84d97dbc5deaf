from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import run_server
from src.live.config import ENV_ACCESS_CODE, ENV_CONFIG_FILE


def _patch_uvicorn(monkeypatch) -> Dict[str, Any]:
    seen: Dict[str, Any] = {}

    def _fake_run(app, **kwargs):
        seen["app"] = app
        seen.update(kwargs)

    monkeypatch.setattr(run_server.uvicorn, "run", _fake_run)
    return seen


def _parse(*argv: str):
    return run_server.build_parser().parse_args(list(argv))


def test_missing_access_code_exits_with_error(monkeypatch) -> None:
    monkeypatch.delenv(ENV_ACCESS_CODE, raising=False)
    monkeypatch.delenv(ENV_CONFIG_FILE, raising=False)
    seen = _patch_uvicorn(monkeypatch)

    assert run_server.run(_parse()) == 2
    assert seen == {}


def test_run_builds_app_and_binds(monkeypatch) -> None:
    monkeypatch.delenv(ENV_CONFIG_FILE, raising=False)
    monkeypatch.setenv(ENV_ACCESS_CODE, "secret")
    seen = _patch_uvicorn(monkeypatch)

    rc = run_server.run(_parse("-b", "127.0.0.1:9100", "-s", "50", "-m", "3", "--debug"))

    assert rc == 0
    assert seen["host"] == "127.0.0.1"
    assert seen["port"] == 9100
    app = seen["app"]
    assert app.state.config.access_code == "secret"
    assert app.state.config.minimum_ferries == 3
    assert app.state.config.debug is True
    assert app.state.model.segment_max_size == 50.0
    assert app.state.poller.running is False


def test_unmapped_terminal_is_refused(monkeypatch) -> None:
    monkeypatch.delenv(ENV_CONFIG_FILE, raising=False)
    seen = _patch_uvicorn(monkeypatch)

    assert run_server.run(_parse("-c", "secret", "-t", "1")) == 2
    assert seen == {}
    assert run_server.run(_parse("-c", "secret", "-t", "1", "--allow-unmapped-terminal")) == 0


def test_bad_route_file_exits_with_error(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv(ENV_CONFIG_FILE, raising=False)
    seen = _patch_uvicorn(monkeypatch)

    assert run_server.run(_parse("-c", "secret", "--route", str(tmp_path / "missing.csv"))) == 2
    assert seen == {}


def test_config_file_is_read(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv(ENV_ACCESS_CODE, raising=False)
    cfg = tmp_path / "ferrycaster.json"
    cfg.write_text(json.dumps({"access_code": "from-file", "bind": ":9200", "update_frequency": 20}), encoding="utf-8")
    seen = _patch_uvicorn(monkeypatch)

    assert run_server.run(_parse("--config", str(cfg), "-u", "5")) == 0
    assert seen["host"] == "0.0.0.0"
    assert seen["port"] == 9200
    assert seen["app"].state.config.access_code == "from-file"
    assert seen["app"].state.config.update_frequency == 5.0


def test_missing_named_config_file_exits_with_error(tmp_path: Path, monkeypatch) -> None:
    seen = _patch_uvicorn(monkeypatch)

    assert run_server.run(_parse("-c", "secret", "--config", str(tmp_path / "missing.json"))) == 2
    assert seen == {}


def test_missing_config_file_from_env_is_skipped(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv(ENV_CONFIG_FILE, str(tmp_path / "missing.json"))
    seen = _patch_uvicorn(monkeypatch)

    assert run_server.run(_parse("-c", "secret")) == 0
    assert seen["port"] == 8000


def test_malformed_route_file_exits_with_error(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv(ENV_CONFIG_FILE, raising=False)
    route = tmp_path / "empty.csv"
    route.write_text("", encoding="utf-8")
    seen = _patch_uvicorn(monkeypatch)

    assert run_server.run(_parse("-c", "secret", "--route", str(route))) == 2
    assert seen == {}
