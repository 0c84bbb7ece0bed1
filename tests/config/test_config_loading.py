"""Brief: Tests for forward_domain.config (YAML file, schema and environment).

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

from pathlib import Path

import pytest

from forward_domain.config import config_parser as cp
from forward_domain.config.config_schema import validate_config


def _write(tmp_path: Path, text: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


def test_defaults_without_file_or_environment() -> None:
    """Brief: build_config with nothing set yields the documented defaults.

    Inputs:
      - None.

    Outputs:
      - None; asserts default field values.
    """

    cfg = cp.build_config(environ={})
    assert cfg.blacklist_hosts == ""
    assert cfg.whitelist_hosts is None
    assert cfg.blacklist_redirect is None
    assert cfg.cache_expiry_seconds == 86400
    assert cfg.cache_max_entries == 10000
    assert cfg.home_domain is None
    assert cfg.doh_url == "https://dns.google/resolve"
    assert cfg.caa_issuer == "letsencrypt.org"
    assert (cfg.listen.host, cfg.listen.port) == ("0.0.0.0", 80)


def test_environment_variables_are_applied() -> None:
    cfg = cp.build_config(
        environ={
            "BLACKLIST_HOSTS": "bad.example,*.worse.example",
            "WHITELIST_HOSTS": "good.example",
            "BLACKLIST_REDIRECT": "https://notice.example/",
            "CACHE_EXPIRY_SECONDS": "120",
            "HOME_DOMAIN": " Fwd.Example ",
            "DOH_URL": "https://cloudflare-dns.com/dns-query",
            "UNRELATED": "x",
        }
    )
    assert cfg.blacklist_hosts == "bad.example,*.worse.example"
    assert cfg.whitelist_hosts == "good.example"
    assert cfg.blacklist_redirect == "https://notice.example/"
    assert cfg.cache_expiry_seconds == 120
    assert cfg.home_domain == "fwd.example"
    assert cfg.doh_url == "https://cloudflare-dns.com/dns-query"


@pytest.mark.parametrize("raw", ["", "soon", "-5", "0"])
def test_bad_cache_expiry_falls_back_to_default(raw: str) -> None:
    cfg = cp.build_config(environ={"CACHE_EXPIRY_SECONDS": raw})
    assert cfg.cache_expiry_seconds == 86400


def test_empty_whitelist_means_no_whitelist() -> None:
    assert cp.build_config(environ={"WHITELIST_HOSTS": ""}).whitelist_hosts is None
    assert cp.build_config({"whitelist_hosts": []}, environ={}).whitelist_hosts is None


def test_environment_overrides_yaml(tmp_path: Path) -> None:
    """Brief: Environment variables take precedence over file values.

    Inputs:
      - tmp_path: pytest temporary directory.

    Outputs:
      - None; asserts merged configuration.
    """

    path = _write(
        tmp_path,
        "blacklist_hosts:\n"
        "  - bad.example\n"
        "  - '*.worse.example'\n"
        "home_domain: yaml.example\n"
        "cache_expiry_seconds: 600\n"
        "listen:\n"
        "  port: 8080\n"
        "logging:\n"
        "  level: debug\n",
    )
    cfg = cp.load_config(path, environ={"HOME_DOMAIN": "env.example"})
    assert cfg.blacklist_hosts == "bad.example,*.worse.example"
    assert cfg.home_domain == "env.example"
    assert cfg.cache_expiry_seconds == 600
    assert cfg.listen.port == 8080
    assert cfg.logging == {"level": "debug"}


def test_empty_yaml_file_is_allowed(tmp_path: Path) -> None:
    cfg = cp.load_config(_write(tmp_path, ""), environ={})
    assert cfg.cache_expiry_seconds == 86400


def test_yaml_root_must_be_mapping(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="must be a mapping"):
        cp.load_config(_write(tmp_path, "- a\n- b\n"), environ={})


def test_yaml_syntax_error_is_value_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Cannot parse"):
        cp.load_config(_write(tmp_path, "listen: [unclosed\n"), environ={})


def test_schema_rejects_unknown_keys_and_names_file(tmp_path: Path) -> None:
    path = _write(tmp_path, "upstreams: []\ncache_expiry_seconds: 0\n")
    with pytest.raises(ValueError) as excinfo:
        cp.load_config(path, environ={})
    message = str(excinfo.value)
    assert path in message
    assert "cache_expiry_seconds" in message
    assert "upstreams" in message


def test_missing_file_raises_os_error(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        cp.load_config(str(tmp_path / "nope.yaml"), environ={})


def test_validate_config_reports_nested_paths() -> None:
    with pytest.raises(ValueError, match=r"listen\.port"):
        validate_config({"listen": {"port": 70000}})


def test_validate_config_accepts_host_list_forms() -> None:
    validate_config({"blacklist_hosts": "a.example,b.example"})
    validate_config({"blacklist_hosts": ["a.example"], "whitelist_hosts": None})


def test_build_config_rejects_invalid_values() -> None:
    with pytest.raises(ValueError, match="Invalid configuration"):
        cp.build_config({"cache_max_entries": 0}, environ={})
    with pytest.raises(ValueError, match="Invalid configuration"):
        cp.build_config({"not_a_field": True}, environ={})
