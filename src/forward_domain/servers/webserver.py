"""HTTP front end for forward-domain: ACME challenges, control plane, redirects.

Every request lands on one catch-all FastAPI route and is dispatched in
order: ACME challenge paths, Host header presence, the control-plane domain
(/stat, /health, /flushcache, CORS preflight), and finally the redirect
resolver. Validation failures become 400 responses carrying their message;
failures without a message and DNS transport errors become 500.
"""

from __future__ import annotations

import logging
import re
import urllib.parse
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from ..cache import ForwardingCache
from ..certs import (
    ACME_CHALLENGE_PREFIX,
    CertificateProvider,
    NullCertificateProvider,
    build_certificate_provider,
)
from ..config.config_parser import ForwardConfig
from ..dns_client import DnsQueryError, DohJsonClient
from ..policy import PolicyMatcher
from ..resolver import RedirectOutcome, RedirectResolver
from ..validation import ValidationFailure, ValidationPipeline

logger = logging.getLogger("forward_domain.webserver")

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

MAX_FLUSH_BODY_BYTES = 10 * 1024

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "86400",
}

_PORT_SUFFIX_RE = re.compile(r":\d+$")
_FQDN_LABEL_RE = re.compile(r"^[a-z0-9\u00a1-\uffff-]{1,63}$", re.IGNORECASE)
_FQDN_TLD_RE = re.compile(
    r"^(?:[a-z\u00a1-\u00a8\u00aa-\ud7ff\uf900-\ufdcf\ufdf0-\uffef]{2,}|xn[a-z0-9-]{2,})$",
    re.IGNORECASE,
)


class _SuppressSuccessAccessFilter(logging.Filter):
    """Logging filter that drops uvicorn access records for 2xx and 3xx responses.

    Redirects are the normal output of this service, so only client and server
    errors are worth an access log line.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        status = getattr(record, "status_code", None)
        if status is None:
            args = getattr(record, "args", None)
            if isinstance(args, dict):
                status = args.get("status_code") or args.get("status")
            elif isinstance(args, (tuple, list)) and args:
                status = args[-1]
        try:
            code = int(status)
        except (TypeError, ValueError):
            return True
        return not (200 <= code <= 399)


def install_access_log_suppression() -> None:
    """Attach _SuppressSuccessAccessFilter to the uvicorn.access logger once."""

    access_logger = logging.getLogger("uvicorn.access")
    for f in getattr(access_logger, "filters", []):
        if isinstance(f, _SuppressSuccessAccessFilter):
            return
    access_logger.addFilter(_SuppressSuccessAccessFilter())


def normalize_host(raw_host: str) -> str:
    """Brief: Lowercase a Host header value and drop a trailing ``:port``.

    Example:
      >>> normalize_host("Shop.Example.com:8080")
      'shop.example.com'
    """

    return _PORT_SUFFIX_RE.sub("", raw_host.strip().lower())


def is_fqdn(value: str) -> bool:
    """Brief: Syntactic fully-qualified domain name check for flush requests.

    Inputs:
      - value: Candidate domain.

    Outputs:
      - bool: True when value has at least two labels, every label is 1-63
        letters/digits/hyphens not starting or ending with a hyphen, the TLD
        is alphabetic (or an ``xn--`` label) and the total length is <= 253.

    Example:
      >>> is_fqdn("shop.example.com"), is_fqdn("localhost"), is_fqdn("a_b.example.com")
      (True, False, False)
    """

    if not value or len(value) > 253 or value.endswith("."):
        return False
    labels = value.split(".")
    if len(labels) < 2 or not _FQDN_TLD_RE.match(labels[-1]):
        return False
    for label in labels:
        if not _FQDN_LABEL_RE.match(label):
            return False
        if label.startswith("-") or label.endswith("-"):
            return False
    return True


def request_target(request: Request) -> str:
    """Brief: The request target as sent on the wire (path plus query)."""

    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    query = request.scope.get("query_string") or b""
    if query:
        return f"{path}?{query.decode('latin-1')}"
    return path


async def read_limited_body(request: Request, limit: int = MAX_FLUSH_BODY_BYTES) -> Optional[bytes]:
    """Brief: Read the request body, giving up once it grows past limit.

    Outputs:
      - bytes, or None when the body exceeded limit (the rest is not read).
    """

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            return None
    return bytes(body)


def _outcome_response(outcome: RedirectOutcome) -> Response:
    if outcome.location is not None:
        return Response(status_code=outcome.status, headers={"Location": outcome.location})
    return PlainTextResponse(outcome.body, status_code=outcome.status)


def create_app(
    config: ForwardConfig,
    resolver: RedirectResolver,
    cache: ForwardingCache,
    certs: Optional[CertificateProvider] = None,
    dns_client: Optional[DohJsonClient] = None,
) -> FastAPI:
    """Create the FastAPI application serving every forwarded hostname.

    Inputs:
      - config: ForwardConfig (home_domain selects the control plane).
      - resolver: RedirectResolver producing redirect outcomes.
      - cache: ForwardingCache, invalidated by /flushcache.
      - certs: Optional certificate subsystem seam for ACME and /stat.
      - dns_client: Optional DohJsonClient closed on application shutdown.

    Outputs:
      - FastAPI application with a single catch-all route.

    Example:
      >>> from forward_domain.config import build_config
      >>> app = build_app(build_config({"home_domain": "fwd.example"}, environ={}))
      >>> app.state.config.home_domain
      'fwd.example'
    """

    certs = certs or NullCertificateProvider()
    home_domain = (config.home_domain or "").lower() or None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not config.logging.get("access_log", False):
            install_access_log_suppression()
        yield
        if dns_client is not None:
            await dns_client.aclose()

    app = FastAPI(
        title="forward-domain",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.resolver = resolver
    app.state.cache = cache
    app.state.certs = certs

    async def _flush_cache(request: Request) -> Response:
        if request.method != "POST":
            return PlainTextResponse(
                "Method Not Allowed", status_code=405, headers=CORS_HEADERS
            )
        body = await read_limited_body(request)
        if body is None:
            logger.warning(
                "Dropping /flushcache request larger than %d bytes", MAX_FLUSH_BODY_BYTES
            )
            return PlainTextResponse(
                "Request Entity Too Large",
                status_code=413,
                headers={**CORS_HEADERS, "Connection": "close"},
            )
        form = urllib.parse.parse_qs(body.decode("utf-8", errors="replace"))
        domain = (form.get("domain") or [""])[0].strip()
        if domain and is_fqdn(domain) and domain in cache:
            cache.invalidate(domain)
        return PlainTextResponse("Cache cleared", headers=CORS_HEADERS)

    async def _control_plane(request: Request) -> Optional[Response]:
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)
        path = request.url.path
        if path == "/stat":
            return JSONResponse(certs.get_stat(), headers=CORS_HEADERS)
        if path == "/health":
            return PlainTextResponse("ok", headers=CORS_HEADERS)
        if path == "/flushcache":
            return await _flush_cache(request)
        return None

    @app.api_route("/{path:path}", methods=ALL_METHODS)
    async def dispatch(request: Request) -> Response:
        """Route one request; see the module docstring for the order."""

        target = request_target(request)
        if target.startswith(ACME_CHALLENGE_PREFIX):
            payload = certs.challenge_response(target)
            if payload is None:
                return Response(status_code=404)
            return Response(content=payload, media_type="application/octet-stream")

        raw_host = request.headers.get("host") or ""
        host = normalize_host(raw_host)
        if not host:
            return PlainTextResponse("Host header is required", status_code=400)

        if home_domain is not None and host == home_domain:
            response = await _control_plane(request)
            if response is not None:
                return response

        try:
            outcome = await resolver.resolve(host, target, raw_host=raw_host)
        except DnsQueryError as exc:
            logger.warning("DNS lookup for %s failed: %s", host, exc)
            return PlainTextResponse("Unknown error", status_code=500)
        except Exception as exc:
            message = str(exc)
            if message:
                logger.info("Request for %s failed: %s", host, message)
                return PlainTextResponse(message, status_code=400)
            logger.exception("Unexpected error resolving %s", host)
            return PlainTextResponse("Unknown error", status_code=500)

        if isinstance(outcome, ValidationFailure):
            return PlainTextResponse(outcome.message, status_code=400)
        return _outcome_response(outcome)

    return app


def build_app(config: ForwardConfig) -> FastAPI:
    """Wire policy, DNS client, validation, cache and resolver into an app.

    Inputs:
      - config: ForwardConfig built at startup.

    Outputs:
      - FastAPI application; its state exposes cache/resolver/certs.
    """

    matcher = PolicyMatcher(config.blacklist_hosts, config.whitelist_hosts)
    cache = ForwardingCache(
        maxsize=config.cache_max_entries, ttl_seconds=config.cache_expiry_seconds
    )
    dns_client = DohJsonClient(config.doh_url, timeout_ms=config.doh_timeout_ms)
    pipeline = ValidationPipeline(
        dns_client,
        matcher,
        ttl_seconds=cache.ttl_seconds,
        caa_issuer=config.caa_issuer,
    )
    resolver = RedirectResolver(
        cache, pipeline, blacklist_redirect=config.blacklist_redirect
    )
    certs = build_certificate_provider(config.challenge_dir)
    return create_app(config, resolver, cache, certs=certs, dns_client=dns_client)
