"""Module exposing a FastAPI app instance for uvicorn.

Builds the application from environment variables alone so that
``uvicorn forward_domain.app:app`` works without a config file. The
``forward-domain`` CLI (forward_domain.main) is the richer entrypoint.
"""

from __future__ import annotations

from .config.config_parser import build_config
from .servers.webserver import build_app

config = build_config()
app = build_app(config)
