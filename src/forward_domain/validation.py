"""Eligibility checks that turn a hostname into a ForwardDecision.

Brief:
  ValidationPipeline runs the ordered checks for a host that is not (or no
  longer) cached: address literal, host length, label count, CAA
  authorization, TXT record lookup at ``_.<host>``, destination URL shape and
  redirect status allow-list. The first failing check short-circuits and is
  returned as a ValidationFailure value; nothing is retried.

Inputs:
  - A DnsResolver (see forward_domain.dns_client) and a PolicyMatcher.

Outputs:
  - ForwardDecision on success, ValidationFailure otherwise.
"""

from __future__ import annotations

import enum
import ipaddress
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from .dns_client import RR_TYPE_CAA, RR_TYPE_TXT, DnsResolver
from .policy import PolicyMatcher

logger = logging.getLogger(__name__)

RECORD_PARAM_DEST_URL = "forward-domain"
RECORD_PARAM_HTTP_STATUS = "http-status"
DEFAULT_HTTP_STATUS = "301"
ALLOWED_HTTP_STATUSES = ("301", "302", "307", "308")

DEFAULT_CAA_ISSUER = "letsencrypt.org"
DEFAULT_TTL_SECONDS = 86400

MAX_HOST_LENGTH = 64
MAX_DOT_COUNT = 10


class FailureKind(str, enum.Enum):
    IP_LITERAL = "ip_literal"
    HOST_TOO_LONG = "host_too_long"
    TOO_MANY_LABELS = "too_many_labels"
    CAA_FORBIDDEN = "caa_forbidden"
    TXT_MISSING = "txt_missing"
    URL_NOT_ABSOLUTE = "url_not_absolute"
    STATUS_NOT_ALLOWED = "status_not_allowed"


@dataclass(frozen=True)
class ValidationFailure:
    """A host that cannot be forwarded, with a message fit for an HTTP body."""

    kind: FailureKind
    message: str


@dataclass(frozen=True)
class TxtRecordFields:
    forward_domain: str
    http_status: Optional[str] = None


@dataclass(frozen=True)
class ForwardDecision:
    """Validated forwarding decision stored in the ForwardingCache.

    Inputs:
      - destination_url: Absolute http(s) URL, trailing ``*`` already removed.
      - wildcard_expand: True when the request path is appended to the URL.
      - blacklisted: PolicyMatcher verdict at validation time.
      - expires_at_ms: Epoch milliseconds after which the entry is stale.
      - redirect_status: One of 301, 302, 307, 308.
    """

    destination_url: str
    wildcard_expand: bool
    blacklisted: bool
    expires_at_ms: int
    redirect_status: int


ValidationResult = Union[ForwardDecision, ValidationFailure]


def is_ip_address(host: str) -> bool:
    """Brief: True for IPv4/IPv6 literals (bracketed IPv6 accepted).

    Example:
      >>> is_ip_address("192.0.2.1"), is_ip_address("[2001:db8::1]"), is_ip_address("a.example")
      (True, True, False)
    """

    candidate = host[1:-1] if host.startswith("[") and host.endswith("]") else host
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return False
    return True


def exceeds_host_limit(host: str) -> bool:
    return len(host) > MAX_HOST_LENGTH


def exceeds_label_limit(host: str) -> bool:
    return host.count(".") >= MAX_DOT_COUNT


def is_http_code_allowed(code: str) -> bool:
    return str(code).strip() in ALLOWED_HTTP_STATUSES


def parse_txt_record_data(value: str) -> Dict[str, str]:
    """Brief: Parse ``key=value;key=value`` TXT data.

    Inputs:
      - value: Raw TXT record string.

    Outputs:
      - dict: key -> value. Segments without ``=`` or with an empty key are
        dropped; only the first ``=`` splits, so values may contain ``=``.

    Example:
      >>> parse_txt_record_data("forward-domain=https://x.example/?a=b;http-status=302")
      {'forward-domain': 'https://x.example/?a=b', 'http-status': '302'}
    """

    result: Dict[str, str] = {}
    for part in value.split(";"):
        key, sep, rest = part.partition("=")
        if key and sep:
            result[key] = rest
    return result


def build_caa_pattern(issuer: str = DEFAULT_CAA_ISSUER) -> "re.Pattern[str]":
    """Brief: Regex accepting ``0 issue "<issuer>[;validationmethods=http-01]"``.

    The quotes are optional but must be balanced; matching is case-sensitive.
    """

    return re.compile(
        r'^0 issue (")?' + re.escape(issuer) + r"(;validationmethods=http-01)?(?(1)\")$"
    )


async def validate_caa_records(
    dns: DnsResolver, host: str, pattern: "re.Pattern[str]"
) -> Optional[List[str]]:
    """Brief: Check whether CAA records at host allow the accepted issuer.

    Inputs:
      - dns: DnsResolver collaborator.
      - host: Hostname being validated.
      - pattern: Compiled build_caa_pattern() regex.

    Outputs:
      - None when issuance is authorized (no answer, no ``issue`` records, or
        one of them names the accepted issuer); otherwise the list of
        disqualifying ``issue`` records.
    """

    answers = await dns.query(host, "CAA")
    if not answers:
        return None
    issue_records = [
        a.data for a in answers if a.type == RR_TYPE_CAA and a.data.startswith("0 issue ")
    ]
    if not issue_records or any(pattern.match(r) for r in issue_records):
        return None
    return issue_records


async def find_txt_record(dns: DnsResolver, host: str) -> Optional[TxtRecordFields]:
    """Brief: Fetch the first forwarding TXT record published at ``_.<host>``."""

    answers = await dns.query(f"_.{host}", "TXT")
    if not answers:
        return None
    for answer in answers:
        if answer.type != RR_TYPE_TXT:
            continue
        fields = parse_txt_record_data(answer.data)
        url = fields.get(RECORD_PARAM_DEST_URL)
        if not url:
            continue
        return TxtRecordFields(
            forward_domain=url, http_status=fields.get(RECORD_PARAM_HTTP_STATUS)
        )
    return None


def _now_ms() -> int:
    return int(time.time() * 1000)


class ValidationPipeline:
    """Run the ordered eligibility checks for one host.

    Inputs (constructor):
      - dns: DnsResolver used for the CAA and TXT lookups.
      - matcher: PolicyMatcher consulted once the record is accepted.
      - ttl_seconds: Lifetime of produced decisions.
      - caa_issuer: Certificate authority identity that CAA records must allow.
      - clock_ms: Callable returning epoch milliseconds (tests pin it).

    Outputs:
      - ValidationPipeline instance; resolve(host) is a coroutine.

    Example:
      >>> import asyncio
      >>> from forward_domain.dns_client import DnsAnswer
      >>> class FakeDns:
      ...     async def query(self, name, rtype):
      ...         if rtype == "TXT":
      ...             return [DnsAnswer(16, "forward-domain=https://dest.example/")]
      ...         return None
      >>> pipeline = ValidationPipeline(FakeDns(), PolicyMatcher(), clock_ms=lambda: 0)
      >>> asyncio.run(pipeline.resolve("shop.example.com")).redirect_status
      301
    """

    def __init__(
        self,
        dns: DnsResolver,
        matcher: PolicyMatcher,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        caa_issuer: str = DEFAULT_CAA_ISSUER,
        clock_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        self.dns = dns
        self.matcher = matcher
        self.ttl_seconds = int(ttl_seconds)
        self.caa_issuer = caa_issuer
        self._caa_pattern = build_caa_pattern(caa_issuer)
        self._clock_ms = clock_ms or _now_ms

    async def resolve(self, host: str) -> ValidationResult:
        if is_ip_address(host):
            return ValidationFailure(
                FailureKind.IP_LITERAL, "unable to serve with direct IP address"
            )
        if exceeds_host_limit(host):
            return ValidationFailure(
                FailureKind.HOST_TOO_LONG,
                f"Host name is too long (Must no more than {MAX_HOST_LENGTH} char)",
            )
        if exceeds_label_limit(host):
            return ValidationFailure(
                FailureKind.TOO_MANY_LABELS,
                f"Host parts is too long (Must less than {MAX_DOT_COUNT} dots)",
            )

        caa_records = await validate_caa_records(self.dns, host, self._caa_pattern)
        if caa_records:
            return ValidationFailure(
                FailureKind.CAA_FORBIDDEN,
                f'CAA record is not "{self.caa_issuer}". '
                f"Records found: {','.join(caa_records)}.",
            )

        record = await find_txt_record(self.dns, host)
        if record is None:
            return ValidationFailure(
                FailureKind.TXT_MISSING, f'The TXT record data for "_.{host}" is missing'
            )

        url = record.forward_domain
        if not url.startswith(("http://", "https://")):
            return ValidationFailure(
                FailureKind.URL_NOT_ABSOLUTE,
                f'The TXT record data for "_.{host}" is not an absolute URL',
            )
        expand = False
        if url.endswith("*"):
            url = url[:-1]
            expand = True

        http_status = record.http_status
        if http_status is None:
            http_status = DEFAULT_HTTP_STATUS
        if not is_http_code_allowed(http_status):
            return ValidationFailure(
                FailureKind.STATUS_NOT_ALLOWED,
                f'The record "{url}" wants to use the http status code {http_status} '
                "which is not allowed (only 301, 302, 307 and 308)",
            )

        decision = ForwardDecision(
            destination_url=url,
            wildcard_expand=expand,
            blacklisted=self.matcher.is_blacklisted(host),
            expires_at_ms=self._clock_ms() + self.ttl_seconds * 1000,
            redirect_status=int(http_status),
        )
        logger.info(
            "Validated %s -> %s (%d%s%s)",
            host,
            decision.destination_url,
            decision.redirect_status,
            ", expand" if decision.wildcard_expand else "",
            ", blacklisted" if decision.blacklisted else "",
        )
        return decision
