"""
Brief: Global pytest configuration: src on sys.path, per-test timeout and a
fake DNS collaborator shared by the pipeline/resolver/webserver tests.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import sys
from typing import Dict, List, Optional, Tuple

import pytest

# Ensure 'src' is on sys.path so 'forward_domain' is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from forward_domain.dns_client import DnsAnswer, DnsQueryError  # noqa: E402


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


class FakeDns:
    """
    Brief: In-memory DnsResolver recording every query.

    Inputs:
      - None; populate with txt()/caa() or set `fail` to raise DnsQueryError.

    Outputs:
      - Object whose async query(name, rtype) serves the configured answers.
    """

    def __init__(self) -> None:
        self.records: Dict[Tuple[str, str], Optional[List[DnsAnswer]]] = {}
        self.queries: List[Tuple[str, str]] = []
        self.fail: Optional[Exception] = None

    def txt(self, host: str, *values: str) -> "FakeDns":
        self.records[(f"_.{host}", "TXT")] = [DnsAnswer(16, v) for v in values]
        return self

    def caa(self, host: str, *values: str) -> "FakeDns":
        self.records[(host, "CAA")] = [DnsAnswer(257, v) for v in values]
        return self

    async def query(self, name, rtype):
        self.queries.append((name, rtype))
        if self.fail is not None:
            raise self.fail
        return self.records.get((name, rtype))


@pytest.fixture
def fake_dns() -> FakeDns:
    return FakeDns()


@pytest.fixture
def dns_error() -> DnsQueryError:
    return DnsQueryError("DoH request for _.x/TXT failed: connection refused")


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield
