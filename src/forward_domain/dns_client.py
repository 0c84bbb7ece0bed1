"""JSON DNS-over-HTTPS client used for CAA and TXT lookups.

Brief:
  Talks to a resolver exposing the JSON API popularised by dns.google
  (``GET /resolve?name=<name>&type=<TYPE>``). Only the ``Answer`` section is
  consumed; each answer is reduced to its numeric RR type and ``data`` string.

Inputs:
  - Resolver URL and timeout from ForwardConfig.

Outputs:
  - DohJsonClient.query() returning answers or None when no Answer section.
"""

from __future__ import annotations

import importlib.metadata
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import httpx

try:
    FORWARD_DOMAIN_VERSION = importlib.metadata.version("forward-domain")
except Exception:  # pragma: no cover - metadata may be unavailable in source checkouts
    FORWARD_DOMAIN_VERSION = "unknown"

logger = logging.getLogger(__name__)

DEFAULT_DOH_URL = "https://dns.google/resolve"

RR_TYPE_TXT = 16
RR_TYPE_CAA = 257


class DnsQueryError(Exception):
    """
    Brief: The DNS collaborator could not be reached or returned garbage.

    Inputs:
    - message: Description of the error

    Outputs:
    - Exception instance
    """


@dataclass(frozen=True)
class DnsAnswer:
    """One record from the ``Answer`` section of a JSON DoH response."""

    type: int
    data: str


class DnsResolver(Protocol):
    """Anything that can answer ``query(name, rtype)`` asynchronously."""

    async def query(self, name: str, rtype: str) -> Optional[List[DnsAnswer]]: ...


def parse_answers(payload: Dict[str, Any]) -> Optional[List[DnsAnswer]]:
    """
    Brief: Extract typed answers from a decoded JSON DoH response.

    Inputs:
    - payload: decoded JSON object

    Outputs:
    - list of DnsAnswer, or None when the response carries no Answer field

    Example:
        >>> parse_answers({"Status": 0, "Answer": [{"type": 16, "data": "a=b"}]})
        [DnsAnswer(type=16, data='a=b')]
        >>> parse_answers({"Status": 3}) is None
        True
    """
    answers = payload.get("Answer")
    if not answers:
        return None
    out: List[DnsAnswer] = []
    for item in answers:
        if not isinstance(item, dict):
            continue
        try:
            rtype = int(item.get("type"))
        except (TypeError, ValueError):
            continue
        data = item.get("data")
        if not isinstance(data, str):
            continue
        out.append(DnsAnswer(type=rtype, data=data))
    return out


class DohJsonClient:
    """Async JSON DoH client backed by httpx.

    Inputs (constructor):
      - url: Resolver endpoint (default https://dns.google/resolve).
      - timeout_ms: Total timeout per request.
      - headers: Optional extra request headers.
      - client: Optional pre-built httpx.AsyncClient (tests inject one with a
        MockTransport).

    Outputs:
      - DohJsonClient instance; call aclose() on shutdown.
    """

    def __init__(
        self,
        url: str = DEFAULT_DOH_URL,
        *,
        timeout_ms: int = 5000,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not url.startswith(("https://", "http://")):
            raise ValueError(f"Unsupported DoH URL: {url!r}")
        self.url = url
        hdrs = {"Accept": "application/dns-json", **(headers or {})}
        if not any(k.lower() == "user-agent" for k in hdrs):
            hdrs["User-Agent"] = f"forward-domain v{FORWARD_DOMAIN_VERSION}"
        self._client = client or httpx.AsyncClient(timeout=timeout_ms / 1000.0)
        self._headers = hdrs

    async def query(self, name: str, rtype: str) -> Optional[List[DnsAnswer]]:
        """
        Brief: Look up records of rtype ("TXT", "CAA", ...) at name.

        Inputs:
        - name: DNS name to query
        - rtype: record type mnemonic

        Outputs:
        - list of DnsAnswer, or None when the resolver returned no Answer

        Notes:
        - Raises DnsQueryError on transport errors, non-200 responses and
          bodies that are not JSON objects. Nothing is retried.
        """
        try:
            resp = await self._client.get(
                self.url, params={"name": name, "type": rtype}, headers=self._headers
            )
        except httpx.HTTPError as exc:
            raise DnsQueryError(f"DoH request for {name}/{rtype} failed: {exc}") from exc

        if resp.status_code != 200:
            raise DnsQueryError(
                f"DoH request for {name}/{rtype} returned HTTP {resp.status_code}"
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise DnsQueryError(f"DoH response for {name}/{rtype} is not JSON") from exc
        if not isinstance(payload, dict):
            raise DnsQueryError(f"DoH response for {name}/{rtype} is not an object")

        answers = parse_answers(payload)
        logger.debug(
            "DoH %s %s -> %d answers", rtype, name, len(answers) if answers else 0
        )
        return answers

    async def aclose(self) -> None:
        await self._client.aclose()
