"""JSON Schema-based validation for forward-domain YAML configuration.

The schema is kept in this module so that an installed package can validate
``config.yaml`` without locating data files on disk.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from jsonschema import Draft202012Validator

logger = logging.getLogger(__name__)

_HOST_LIST = {
    "description": "Comma separated host list, or a YAML list of hosts.",
    "oneOf": [
        {"type": "string"},
        {"type": "array", "items": {"type": "string"}},
        {"type": "null"},
    ],
}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "forward-domain configuration",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "blacklist_hosts": _HOST_LIST,
        "whitelist_hosts": _HOST_LIST,
        "blacklist_redirect": {"type": ["string", "null"], "pattern": "^https?://"},
        "home_domain": {"type": ["string", "null"]},
        "cache_expiry_seconds": {"type": "integer", "minimum": 1},
        "cache_max_entries": {"type": "integer", "minimum": 1},
        "doh_url": {"type": "string", "pattern": "^https?://"},
        "doh_timeout_ms": {"type": "integer", "minimum": 1},
        "caa_issuer": {"type": "string", "minLength": 1},
        "challenge_dir": {"type": ["string", "null"]},
        "listen": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "host": {"type": "string"},
                "port": {"type": "integer", "minimum": 0, "maximum": 65535},
            },
        },
        "logging": {
            "type": "object",
            "properties": {
                "level": {
                    "type": "string",
                    "enum": ["debug", "info", "warn", "warning", "error", "crit", "critical"],
                },
                "stderr": {"type": "boolean"},
                "file": {"type": ["string", "null"]},
                "syslog": {"type": ["boolean", "object"]},
                "access_log": {"type": "boolean"},
            },
        },
    },
}


def _format_error_path(path: List[Any]) -> str:
    return ".".join(str(p) for p in path) or "<root>"


def validate_config(cfg: Dict[str, Any], *, config_path: str | None = None) -> None:
    """Brief: Validate a parsed YAML mapping against CONFIG_SCHEMA.

    Inputs:
      - cfg: Parsed configuration mapping.
      - config_path: Optional path used in error messages.

    Outputs:
      - None.

    Raises:
      - ValueError: Listing every schema violation, separated by "; ".

    Example:
      >>> validate_config({"cache_expiry_seconds": 60})
      >>> validate_config({"cache_expiry_seconds": 0})
      Traceback (most recent call last):
      ...
      ValueError: Invalid configuration: cache_expiry_seconds: 0 is less than the minimum of 1
    """

    validator = Draft202012Validator(CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(cfg), key=lambda e: [str(p) for p in e.path])
    if not errors:
        return
    where = f" in {config_path}" if config_path else ""
    lines = [f"{_format_error_path(list(e.path))}: {e.message}" for e in errors]
    logger.debug("Configuration%s failed validation: %s", where, lines)
    raise ValueError(f"Invalid configuration{where}: " + "; ".join(lines))
