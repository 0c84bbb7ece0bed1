"""Configuration loading, schema validation and logging setup."""

from .config_parser import ForwardConfig, ListenConfig, build_config, load_config
from .logging_config import init_logging

__all__ = ["ForwardConfig", "ListenConfig", "build_config", "init_logging", "load_config"]
