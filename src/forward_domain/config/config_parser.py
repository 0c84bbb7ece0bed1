"""Configuration loading for forward-domain.

Brief:
  Builds the single ForwardConfig object handed to every component at
  startup. Sources, lowest to highest precedence:
    - model defaults
    - an optional YAML file (schema-validated)
    - environment variables (BLACKLIST_HOSTS, WHITELIST_HOSTS,
      BLACKLIST_REDIRECT, CACHE_EXPIRY_SECONDS, HOME_DOMAIN, DOH_URL)

Inputs:
  - YAML config path and environment mapping.

Outputs:
  - ForwardConfig instance.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..dns_client import DEFAULT_DOH_URL
from ..validation import DEFAULT_CAA_ISSUER, DEFAULT_TTL_SECONDS
from .config_schema import validate_config

logger = logging.getLogger(__name__)

DEFAULT_CACHE_MAX_ENTRIES = 10000

# Environment variable -> ForwardConfig field.
ENV_FIELDS: Dict[str, str] = {
    "BLACKLIST_HOSTS": "blacklist_hosts",
    "WHITELIST_HOSTS": "whitelist_hosts",
    "BLACKLIST_REDIRECT": "blacklist_redirect",
    "CACHE_EXPIRY_SECONDS": "cache_expiry_seconds",
    "HOME_DOMAIN": "home_domain",
    "DOH_URL": "doh_url",
}


class ListenConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=80, ge=0, le=65535)


class ForwardConfig(BaseModel):
    """Brief: Typed runtime configuration shared by all components.

    Inputs:
      - blacklist_hosts: Comma separated blacklist entries.
      - whitelist_hosts: Optional comma separated whitelist; empty means
        "no whitelist".
      - blacklist_redirect: Optional notice URL for blacklisted hosts.
      - cache_expiry_seconds: Lifetime of validated decisions.
      - cache_max_entries: LRU capacity of the forwarding cache.
      - home_domain: Control-plane hostname serving /stat, /health,
        /flushcache.
      - doh_url / doh_timeout_ms: JSON DoH collaborator settings.
      - caa_issuer: Certificate authority identity CAA records must allow.
      - challenge_dir: Optional directory with ACME HTTP-01 token files.
      - listen: Bind address for the HTTP listener.
      - logging: Mapping passed to init_logging().

    Outputs:
      - ForwardConfig instance with normalized types.
    """

    blacklist_hosts: str = Field(default="")
    whitelist_hosts: Optional[str] = Field(default=None)
    blacklist_redirect: Optional[str] = Field(default=None)
    cache_expiry_seconds: int = Field(default=DEFAULT_TTL_SECONDS, ge=1)
    cache_max_entries: int = Field(default=DEFAULT_CACHE_MAX_ENTRIES, ge=1)
    home_domain: Optional[str] = Field(default=None)
    doh_url: str = Field(default=DEFAULT_DOH_URL)
    doh_timeout_ms: int = Field(default=5000, ge=1)
    caa_issuer: str = Field(default=DEFAULT_CAA_ISSUER)
    challenge_dir: Optional[str] = Field(default=None)
    listen: ListenConfig = Field(default_factory=ListenConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "forbid"


def _join_host_list(value: Union[str, List[str], None]) -> Optional[str]:
    """Brief: Accept YAML lists as well as CSV strings for host lists."""

    if value is None:
        return None
    if isinstance(value, list):
        return ",".join(str(v) for v in value)
    return str(value)


def parse_cache_expiry(raw: Optional[str]) -> int:
    """Brief: Parse CACHE_EXPIRY_SECONDS, falling back to the default.

    Example:
      >>> parse_cache_expiry("3600"), parse_cache_expiry("soon"), parse_cache_expiry("0")
      (3600, 86400, 86400)
    """

    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return DEFAULT_TTL_SECONDS
    return value if value > 0 else DEFAULT_TTL_SECONDS


def read_config_file(config_path: str) -> Dict[str, Any]:
    """Brief: Read and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML file.

    Outputs:
      - dict: Parsed mapping (empty file yields {}).

    Raises:
      - ValueError: When the root is not a mapping or validation fails.
    """

    with open(config_path, "r") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Cannot parse {config_path}: {exc}") from exc
    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")
    validate_config(cfg, config_path=config_path)
    return cfg


def apply_environment(cfg: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Brief: Overlay recognised environment variables onto cfg.

    Inputs:
      - cfg: Config mapping (not mutated).
      - environ: Environment mapping.

    Outputs:
      - dict: New mapping with environment values applied.

    Notes:
      - An empty WHITELIST_HOSTS disables the whitelist.
      - An unparsable or non-positive CACHE_EXPIRY_SECONDS becomes 86400.
    """

    merged = dict(cfg)
    for env_key, field in ENV_FIELDS.items():
        if env_key not in environ:
            continue
        raw = environ[env_key]
        if field == "cache_expiry_seconds":
            merged[field] = parse_cache_expiry(raw)
        elif field in ("whitelist_hosts", "blacklist_redirect", "home_domain"):
            merged[field] = raw or None
        else:
            merged[field] = raw
    return merged


def build_config(
    raw: Optional[Dict[str, Any]] = None, environ: Optional[Mapping[str, str]] = None
) -> ForwardConfig:
    """Brief: Construct ForwardConfig from a mapping plus environment.

    Inputs:
      - raw: Optional parsed YAML mapping.
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - ForwardConfig.

    Raises:
      - ValueError: When the merged values do not form a valid config.

    Example:
      >>> cfg = build_config({"home_domain": "fwd.example"}, environ={"CACHE_EXPIRY_SECONDS": "60"})
      >>> cfg.home_domain, cfg.cache_expiry_seconds
      ('fwd.example', 60)
    """

    data = dict(raw or {})
    for key in ("blacklist_hosts", "whitelist_hosts"):
        if key in data:
            data[key] = _join_host_list(data[key])
    if data.get("blacklist_hosts") is None:
        data.pop("blacklist_hosts", None)
    if not data.get("whitelist_hosts"):
        data["whitelist_hosts"] = None

    data = apply_environment(data, os.environ if environ is None else environ)
    if isinstance(data.get("home_domain"), str):
        data["home_domain"] = data["home_domain"].strip().lower() or None

    try:
        return ForwardConfig(**data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def load_config(
    config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> ForwardConfig:
    """Brief: Read an optional YAML file and build ForwardConfig from it."""

    raw: Dict[str, Any] = {}
    if config_path:
        raw = read_config_file(config_path)
        logger.debug("Read configuration file %s", config_path)
    return build_config(raw, environ=environ)
