"""Hierarchical blacklist/whitelist matching for forwarded hostnames.

Brief:
  Policy lists are comma separated host lists (``BLACKLIST_HOSTS`` and the
  optional ``WHITELIST_HOSTS``). Each list is compiled once into a suffix map
  keyed by dot-prefixed label suffixes (``.com``, ``.example.com``). The most
  specific suffix of an entry is terminal (True); shorter suffixes only say
  "keep looking" (False).

Inputs:
  - Comma separated host lists from ForwardConfig.

Outputs:
  - PolicyMatcher answering is_blacklisted(host).
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, Iterator, Optional

logger = logging.getLogger(__name__)

PolicyMap = Dict[str, bool]


class SuffixOutcome(enum.Enum):
    """Result of looking up one suffix in a PolicyMap."""

    MATCH = "match"
    CONTINUE = "continue"
    NO_ENTRY = "no_entry"


def _normalize_entry(host: str) -> str:
    """Brief: Lowercase an entry and anchor it with a leading dot.

    Inputs:
      - host: Raw list entry such as ``Example.com``, ``.example.com`` or
        ``*.example.com``.

    Outputs:
      - str: ``.example.com`` for all three forms, or "" for blank entries.
    """

    name = host.strip().lower().rstrip(".")
    if name.startswith("*"):
        name = name[1:]
    if not name.strip("."):
        return ""
    if not name.startswith("."):
        name = "." + name
    return name


def iter_suffixes(host: str) -> Iterator[str]:
    """Brief: Yield dot-prefixed suffixes of host, most specific first.

    Inputs:
      - host: Hostname (``a.b.example.com``).

    Outputs:
      - Iterator[str]: ``.a.b.example.com``, ``.b.example.com``,
        ``.example.com``, ``.com``.

    Example:
      >>> list(iter_suffixes("www.example.com"))
      ['.www.example.com', '.example.com', '.com']
    """

    name = _normalize_entry(host)
    pos = 0
    while pos != -1:
        yield name[pos:]
        pos = name.find(".", pos + 1)


def build_policy_map(csv_list: Optional[str]) -> PolicyMap:
    """Brief: Compile a comma separated host list into a PolicyMap.

    Inputs:
      - csv_list: ``"example.com, .bad.org"`` style string (None is empty).

    Outputs:
      - PolicyMap: suffix -> True when that suffix is an entry's boundary,
        False when it is only a parent of one.

    Notes:
      - An entry boundary stays True once written; a deeper entry listed
        later only adds suffixes, so list order never changes a verdict.

    Example:
      >>> build_policy_map("example.com")
      {'.com': False, '.example.com': True}
    """

    result: PolicyMap = {}
    for raw in (csv_list or "").split(","):
        name = _normalize_entry(raw)
        if not name:
            continue
        suffixes = list(iter_suffixes(name))
        # Walk from the TLD inwards; never downgrade another entry's boundary.
        for depth, suffix in enumerate(reversed(suffixes)):
            result[suffix] = result.get(suffix, False) or depth == len(suffixes) - 1
    return result


class PolicyMatcher:
    """Decide whether a hostname is blacklisted.

    Inputs (constructor):
      - blacklist: Comma separated blacklist entries.
      - whitelist: Optional comma separated whitelist entries. When given (and
        non-empty) the whitelist is authoritative and every host it does not
        match is treated as blacklisted.

    Outputs:
      - PolicyMatcher instance.

    Example:
      >>> m = PolicyMatcher(blacklist="bad.example")
      >>> m.is_blacklisted("www.bad.example"), m.is_blacklisted("good.example")
      (True, False)
    """

    def __init__(self, blacklist: Optional[str] = "", whitelist: Optional[str] = None) -> None:
        self.blacklist_map: PolicyMap = build_policy_map(blacklist)
        self.whitelist_map: Optional[PolicyMap] = (
            build_policy_map(whitelist) if whitelist else None
        )
        logger.debug(
            "Policy maps built: %d blacklist suffixes, whitelist %s",
            len(self.blacklist_map),
            "disabled" if self.whitelist_map is None else len(self.whitelist_map),
        )

    @staticmethod
    def lookup(policy_map: PolicyMap, suffix: str) -> SuffixOutcome:
        value = policy_map.get(suffix)
        if value is None:
            return SuffixOutcome.NO_ENTRY
        return SuffixOutcome.MATCH if value else SuffixOutcome.CONTINUE

    def matches(self, policy_map: PolicyMap, host: str) -> bool:
        """Brief: True when some suffix of host is a terminal entry of policy_map.

        Inputs:
          - policy_map: Compiled PolicyMap.
          - host: Hostname to test.

        Outputs:
          - bool: True on the first MATCH walking most specific first.
        """

        for suffix in iter_suffixes(host):
            if self.lookup(policy_map, suffix) is SuffixOutcome.MATCH:
                return True
        return False

    def is_blacklisted(self, host: str) -> bool:
        if self.whitelist_map is not None:
            return not self.matches(self.whitelist_map, host)
        return self.matches(self.blacklist_map, host)
