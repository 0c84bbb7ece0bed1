"""
Brief: Tests for forward_domain.main (CLI wiring, uvicorn startup, SIGUSR1).

Inputs:
  - monkeypatch fixture

Outputs:
  - None
"""

import signal

import pytest
import uvicorn

import forward_domain.main as main_mod
from forward_domain.validation import ForwardDecision

_ENV_KEYS = (
    "BLACKLIST_HOSTS",
    "WHITELIST_HOSTS",
    "BLACKLIST_REDIRECT",
    "CACHE_EXPIRY_SECONDS",
    "HOME_DOMAIN",
    "DOH_URL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def fake_uvicorn(monkeypatch):
    """
    Brief: Replace uvicorn.Config/Server with recorders that never bind.

    Inputs:
      - monkeypatch

    Outputs:
      - dict: captured app, host, port and run flag
    """
    seen = {}

    class DummyConfig:
        def __init__(self, app, host, port, **kw):
            seen.update(app=app, host=host, port=port, kw=kw)

    class DummyServer:
        def __init__(self, config):
            seen["config"] = config

        def run(self):
            seen["ran"] = True

    monkeypatch.setattr(uvicorn, "Config", DummyConfig)
    monkeypatch.setattr(uvicorn, "Server", DummyServer)
    monkeypatch.setattr(main_mod, "init_logging", lambda cfg: seen.setdefault("logging", cfg))
    monkeypatch.setattr(main_mod, "install_cache_flush_signal", lambda app: True)
    return seen


def test_main_runs_uvicorn_with_config_listen(clean_env, fake_uvicorn, tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("home_domain: fwd.example\nlisten:\n  host: 127.0.0.1\n  port: 8080\n")
    assert main_mod.main(["--config", str(path)]) == 0
    assert fake_uvicorn["ran"] is True
    assert (fake_uvicorn["host"], fake_uvicorn["port"]) == ("127.0.0.1", 8080)
    assert fake_uvicorn["kw"]["log_config"] is None
    assert fake_uvicorn["app"].state.config.home_domain == "fwd.example"


def test_main_cli_overrides_listen(clean_env, fake_uvicorn):
    assert main_mod.main(["--host", "::1", "--port", "9000"]) == 0
    assert (fake_uvicorn["host"], fake_uvicorn["port"]) == ("::1", 9000)


def test_main_returns_one_on_bad_config(clean_env, fake_uvicorn, tmp_path, capsys):
    path = tmp_path / "config.yaml"
    path.write_text("cache_expiry_seconds: -1\n")
    assert main_mod.main(["--config", str(path)]) == 1
    assert "cache_expiry_seconds" in capsys.readouterr().out
    assert "ran" not in fake_uvicorn


def test_main_returns_one_on_missing_config(clean_env, fake_uvicorn, tmp_path):
    assert main_mod.main(["--config", str(tmp_path / "absent.yaml")]) == 1


@pytest.mark.skipif(not hasattr(signal, "SIGUSR1"), reason="SIGUSR1 unavailable")
def test_sigusr1_flushes_cache(monkeypatch):
    """
    Brief: The installed SIGUSR1 handler resets the whole forwarding cache.

    Inputs:
      - monkeypatch: capture the handler passed to signal.signal

    Outputs:
      - None: Asserts cache emptied after invoking the handler
    """
    from forward_domain.config import build_config
    from forward_domain.servers.webserver import build_app

    captured = {}

    def fake_signal(sig, handler):
        captured[sig] = handler

    monkeypatch.setattr(main_mod.signal, "signal", fake_signal)
    app = build_app(build_config({"home_domain": "fwd.example"}, environ={}))
    app.state.cache.set("a.example", ForwardDecision("https://d/", False, False, 0, 301))

    assert main_mod.install_cache_flush_signal(app) is True
    captured[signal.SIGUSR1](signal.SIGUSR1, None)
    assert len(app.state.cache) == 0
