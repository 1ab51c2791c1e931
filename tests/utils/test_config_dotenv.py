import importlib
import sys
import builtins
import types
import logging
import os
from pathlib import Path

import pytest


def _reload_config():
    sys.modules.pop("trailcrawl.config", None)
    return importlib.import_module("trailcrawl.config")


def test_missing_dotenv_logs_warning(monkeypatch, caplog):
    orig_import = builtins.__import__

    def fake_import(name, globals=None, locals=None, fromlist=(), level=0):
        if name == "dotenv" or name.startswith("dotenv."):
            raise ImportError
        return orig_import(name, globals, locals, fromlist, level)

    monkeypatch.setattr(builtins, "__import__", fake_import)
    caplog.set_level(logging.WARNING)
    cfg = _reload_config()
    assert "python-dotenv not available" in caplog.text

    # environment fallback works
    monkeypatch.setenv("TRAILCRAWL_AUDIT_LOG", "/var/log/audit.jsonl")
    cfg = _reload_config()
    assert cfg.get_str_env("TRAILCRAWL_AUDIT_LOG", "audit.jsonl") == "/var/log/audit.jsonl"


def test_dotenv_present_but_fails_to_load(monkeypatch, tmp_path):
    tmp_path.joinpath(".env").write_text("TRAILCRAWL_LOG_LEVEL=DEBUG")
    monkeypatch.chdir(tmp_path)

    fake = types.SimpleNamespace(load_dotenv=lambda: False)
    monkeypatch.setitem(sys.modules, "dotenv", fake)
    with pytest.raises(RuntimeError):
        _reload_config()


def test_dotenv_loads_sets_variables(monkeypatch, tmp_path):
    tmp_path.joinpath(".env").write_text("TRAILCRAWL_LOG_LEVEL=DEBUG")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("TRAILCRAWL_LOG_LEVEL", raising=False)

    def fake_load():
        # emulate dotenv behavior: read .env and set os.environ
        p = Path(".env")
        for line in p.read_text().splitlines():
            if "=" in line:
                k, v = line.split("=", 1)
                os.environ[k] = v
        return True

    fake = types.SimpleNamespace(load_dotenv=fake_load)
    monkeypatch.setitem(sys.modules, "dotenv", fake)
    cfg = _reload_config()
    assert cfg.LOG_LEVEL == "DEBUG"
    monkeypatch.delenv("TRAILCRAWL_LOG_LEVEL", raising=False)


def test_typed_helpers(monkeypatch):
    cfg = _reload_config()
    monkeypatch.setenv("X_INT", "12")
    monkeypatch.setenv("X_BAD_INT", "twelve")
    monkeypatch.setenv("X_FLOAT", "0.5")
    monkeypatch.setenv("X_BOOL", "off")
    monkeypatch.setenv("X_LIST", "403, 429,,503")
    assert cfg.get_int_env("X_INT", 1) == 12
    assert cfg.get_int_env("X_BAD_INT", 1) == 1
    assert cfg.get_optional_int_env("X_UNSET") is None
    assert cfg.get_float_env("X_FLOAT", 1.0) == 0.5
    assert cfg.get_bool_env("X_BOOL", True) is False
    assert cfg.get_list_env("X_LIST") == ("403", "429", "503")
    assert cfg.get_list_env("X_UNSET", (1,)) == (1,)
