"""
Brief: Tests for forward_domain.policy suffix maps and blacklist/whitelist matching.

Inputs:
  - None

Outputs:
  - None
"""

import pytest

from forward_domain.policy import (
    PolicyMatcher,
    SuffixOutcome,
    build_policy_map,
    iter_suffixes,
)


def test_iter_suffixes_most_specific_first():
    assert list(iter_suffixes("a.b.example.com")) == [
        ".a.b.example.com",
        ".b.example.com",
        ".example.com",
        ".com",
    ]


def test_build_policy_map_marks_entry_boundary_terminal():
    m = build_policy_map(" Example.COM , ,bad.org")
    assert m == {
        ".com": False,
        ".example.com": True,
        ".org": False,
        ".bad.org": True,
    }


@pytest.mark.parametrize("entry", ["example.com", ".example.com", "*.example.com"])
def test_build_policy_map_entry_forms_are_equivalent(entry):
    assert build_policy_map(entry) == {".com": False, ".example.com": True}


def test_build_policy_map_empty_inputs():
    assert build_policy_map("") == {}
    assert build_policy_map(None) == {}


def test_lookup_outcomes_are_tagged():
    m = build_policy_map("example.com")
    assert PolicyMatcher.lookup(m, ".example.com") is SuffixOutcome.MATCH
    assert PolicyMatcher.lookup(m, ".com") is SuffixOutcome.CONTINUE
    assert PolicyMatcher.lookup(m, ".net") is SuffixOutcome.NO_ENTRY


@pytest.mark.parametrize(
    "host,expected",
    [
        ("bad.example", True),
        ("www.bad.example", True),
        ("a.b.bad.example", True),
        ("notbad.example", False),
        ("example", False),
        ("good.example", False),
        ("shop.example.com", False),
    ],
)
def test_blacklist_only(host, expected):
    matcher = PolicyMatcher(blacklist="bad.example")
    assert matcher.is_blacklisted(host) is expected


@pytest.mark.parametrize(
    "csv_list", ["deep.sub.example.com,example.com", "example.com,deep.sub.example.com"]
)
def test_build_policy_map_keeps_parent_boundary_in_any_order(csv_list):
    assert build_policy_map(csv_list) == {
        ".com": False,
        ".example.com": True,
        ".sub.example.com": False,
        ".deep.sub.example.com": True,
    }


@pytest.mark.parametrize(
    "csv_list", ["deep.sub.example.com,example.com", "example.com,deep.sub.example.com"]
)
def test_blacklist_parent_entry_covers_deeper_entries(csv_list):
    matcher = PolicyMatcher(blacklist=csv_list)
    assert matcher.is_blacklisted("other.example.com")
    assert matcher.is_blacklisted("example.com")
    assert matcher.is_blacklisted("x.deep.sub.example.com")
    assert not matcher.is_blacklisted("example.org")


@pytest.mark.parametrize(
    "csv_list", ["example.com,shop.example.com", "shop.example.com,example.com"]
)
def test_whitelist_parent_entry_allows_siblings(csv_list):
    matcher = PolicyMatcher(whitelist=csv_list)
    assert not matcher.is_blacklisted("www.example.com")
    assert not matcher.is_blacklisted("shop.example.com")
    assert matcher.is_blacklisted("example.org")


def test_no_blacklist_means_nothing_blocked():
    matcher = PolicyMatcher()
    assert not matcher.is_blacklisted("anything.example.com")


@pytest.mark.parametrize(
    "host,expected",
    [
        ("allowed.example", False),
        ("www.allowed.example", False),
        ("other.example", True),
        ("shop.example.com", True),
    ],
)
def test_whitelist_default_denies(host, expected):
    matcher = PolicyMatcher(blacklist="allowed.example", whitelist="allowed.example")
    assert matcher.is_blacklisted(host) is expected


def test_empty_whitelist_is_not_configured():
    matcher = PolicyMatcher(blacklist="", whitelist="")
    assert matcher.whitelist_map is None
    assert not matcher.is_blacklisted("shop.example.com")


def test_whitelist_overrides_blacklist_polarity():
    matcher = PolicyMatcher(blacklist="shop.example.com", whitelist="example.com")
    # With a whitelist configured only the whitelist is consulted.
    assert not matcher.is_blacklisted("shop.example.com")
