"""Turn a request host into a redirect, validating and caching on the way.

Brief:
  RedirectResolver is the glue between ForwardingCache and
  ValidationPipeline: it serves fresh cached decisions, rebuilds missing or
  expired ones, and renders the decision as a RedirectOutcome (status,
  Location, body). Failed validations are returned unchanged and never cached.

Inputs:
  - ForwardingCache, ValidationPipeline, optional blacklist notice URL.

Outputs:
  - RedirectOutcome or ValidationFailure per request.
"""

from __future__ import annotations

import logging
import time
import urllib.parse
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .cache import ForwardingCache
from .validation import ForwardDecision, ValidationFailure, ValidationPipeline

logger = logging.getLogger(__name__)

# Characters JavaScript's encodeURIComponent leaves alone.
_URI_COMPONENT_SAFE = "-_.!~*'()"


@dataclass(frozen=True)
class RedirectOutcome:
    status: int
    location: Optional[str] = None
    body: str = ""


def combine_urls(base_url: str, relative_url: str) -> str:
    """Brief: Join a base URL and a request target with exactly one slash.

    Inputs:
      - base_url: Destination URL (trailing slashes are dropped).
      - relative_url: Request path and query (leading slashes are dropped).

    Outputs:
      - str: Joined URL, or base_url unchanged when relative_url is empty.

    Example:
      >>> combine_urls("https://dest.example/app/", "//x?y=1")
      'https://dest.example/app/x?y=1'
    """

    if not relative_url:
        return base_url
    return base_url.rstrip("/") + "/" + relative_url.lstrip("/")


def blacklist_notice_url(redirect_url: str, raw_host: str) -> str:
    """Brief: Notice URL carrying the original Host header as ``d=``."""

    return redirect_url + "?d=" + urllib.parse.quote(raw_host, safe=_URI_COMPONENT_SAFE)


class RedirectResolver:
    """Serve forwarding decisions from cache, rebuilding them on miss/expiry.

    Inputs (constructor):
      - cache: ForwardingCache shared with the control plane.
      - pipeline: ValidationPipeline used to build missing entries.
      - blacklist_redirect: Optional URL blacklisted hosts are sent to; when
        unset they receive 403.
      - clock_ms: Callable returning epoch milliseconds.

    Outputs:
      - RedirectResolver instance.
    """

    def __init__(
        self,
        cache: ForwardingCache,
        pipeline: ValidationPipeline,
        *,
        blacklist_redirect: Optional[str] = None,
        clock_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        self.cache = cache
        self.pipeline = pipeline
        self.blacklist_redirect = blacklist_redirect or None
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    async def lookup(self, host: str) -> Union[ForwardDecision, ValidationFailure]:
        """Brief: Cached decision for host, validating when absent or expired.

        Inputs:
          - host: Lowercased hostname without port.

        Outputs:
          - ForwardDecision (now cached) or ValidationFailure (not cached).
        """

        decision = self.cache.get(host)
        if decision is not None and not self.cache.is_expired(decision, self._clock_ms()):
            return decision

        logger.debug("Cache %s for %s", "expired" if decision else "miss", host)
        result = await self.pipeline.resolve(host)
        if isinstance(result, ValidationFailure):
            logger.info("Rejected %s: %s", host, result.message)
            return result
        self.cache.set(host, result)
        return result

    async def resolve(
        self, host: str, request_target: str = "", raw_host: Optional[str] = None
    ) -> Union[RedirectOutcome, ValidationFailure]:
        """Brief: Compute the response for a request to host.

        Inputs:
          - host: Lowercased hostname without port.
          - request_target: Original path plus query string.
          - raw_host: Host header as received (used in the blacklist notice).

        Outputs:
          - RedirectOutcome, or the ValidationFailure that prevented one.
        """

        result = await self.lookup(host)
        if isinstance(result, ValidationFailure):
            return result

        if result.blacklisted:
            if self.blacklist_redirect:
                return RedirectOutcome(
                    status=302,
                    location=blacklist_notice_url(
                        self.blacklist_redirect, raw_host if raw_host is not None else host
                    ),
                )
            return RedirectOutcome(status=403, body="Host is forbidden")

        if result.wildcard_expand:
            location = combine_urls(result.destination_url, request_target)
        else:
            location = result.destination_url
        return RedirectOutcome(status=result.redirect_status, location=location)
