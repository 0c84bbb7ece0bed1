from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import List

from fastapi import FastAPI

from .config.config_parser import ForwardConfig, load_config
from .config.logging_config import init_logging
from .servers.webserver import build_app


def install_cache_flush_signal(app: FastAPI) -> bool:
    """Brief: Make SIGUSR1 flush the whole forwarding cache.

    Inputs:
      - app: FastAPI app built by build_app (its state carries the cache).

    Outputs:
      - bool: True when the handler was installed (platforms without
        SIGUSR1 return False).
    """

    if not hasattr(signal, "SIGUSR1"):
        return False
    pending = threading.Event()
    log = logging.getLogger("forward_domain.main")

    def _sigusr1_handler(_signum, _frame):
        # coalesce repeated signals
        if pending.is_set():
            return
        pending.set()
        try:
            dropped = app.state.cache.reset_all()
            log.info("SIGUSR1: forwarding cache flushed (%d entries)", dropped)
        finally:
            pending.clear()

    signal.signal(signal.SIGUSR1, _sigusr1_handler)
    return True


def _apply_cli_overrides(config: ForwardConfig, args: argparse.Namespace) -> ForwardConfig:
    updates = {}
    if args.host is not None:
        updates["host"] = args.host
    if args.port is not None:
        updates["port"] = args.port
    if not updates:
        return config
    listen = config.listen.model_copy(update=updates)
    return config.model_copy(update={"listen": listen})


def main(argv: List[str] | None = None) -> int:
    """
    Entry point for the forwarding server.
    Parses arguments, loads configuration, builds the app and runs uvicorn.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code.

    Example use:
        CLI:
            HOME_DOMAIN=fwd.example forward-domain --config config.yaml --port 8080
    """
    parser = argparse.ArgumentParser(
        description="Redirect hostnames to the URL published in their _.<host> TXT record"
    )
    parser.add_argument("--config", default=None, help="Path to optional YAML config")
    parser.add_argument("--host", default=None, help="Listen address (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Listen port (overrides config)")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        print(str(exc))
        return 1
    config = _apply_cli_overrides(config, args)

    init_logging(config.logging)
    logger = logging.getLogger("forward_domain.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)
    if not config.home_domain:
        logger.warning("HOME_DOMAIN is not set; control endpoints are disabled")

    app = build_app(config)
    install_cache_flush_signal(app)

    import uvicorn

    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=config.listen.host,
            port=config.listen.port,
            log_config=None,
            proxy_headers=False,
        )
    )
    logger.info("Listening on %s:%d", config.listen.host, config.listen.port)
    server.run()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
