"""Seam to the certificate subsystem (ACME challenges and status).

Brief:
  Certificate issuance and TLS termination live outside this package. The
  dispatcher only needs two things from them: the payload answering an
  HTTP-01 challenge, and a JSON-serializable status snapshot for ``/stat``.

Inputs:
  - Optional challenge directory from ForwardConfig.

Outputs:
  - CertificateProvider implementations.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

ACME_CHALLENGE_PREFIX = "/.well-known/acme-challenge/"

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class CertificateProvider(Protocol):
    def challenge_response(self, path: str) -> Optional[bytes]: ...

    def get_stat(self) -> Dict[str, Any]: ...


class NullCertificateProvider:
    """Provider used when no certificate subsystem is attached."""

    def challenge_response(self, path: str) -> Optional[bytes]:
        return None

    def get_stat(self) -> Dict[str, Any]:
        return {}


def challenge_token(path: str) -> Optional[str]:
    """Brief: Extract the ACME token from a challenge request path.

    Inputs:
      - path: Request path, e.g. ``/.well-known/acme-challenge/abc_DEF-1``.

    Outputs:
      - str token, or None when the path is not a well-formed challenge path.

    Example:
      >>> challenge_token("/.well-known/acme-challenge/abc_DEF-1")
      'abc_DEF-1'
      >>> challenge_token("/.well-known/acme-challenge/../etc/passwd") is None
      True
    """

    if not path.startswith(ACME_CHALLENGE_PREFIX):
        return None
    token = path[len(ACME_CHALLENGE_PREFIX):].split("?", 1)[0]
    if not _TOKEN_RE.match(token):
        return None
    return token


class DirectoryChallengeProvider:
    """Serve HTTP-01 key authorizations written to a webroot directory.

    Inputs (constructor):
      - challenge_dir: Directory where the ACME client drops one file per
        token (the usual ``--webroot`` layout without the well-known prefix).

    Outputs:
      - Provider whose get_stat() reports served/missing counters.
    """

    def __init__(self, challenge_dir: str) -> None:
        self.challenge_dir = os.path.abspath(os.path.expanduser(challenge_dir))
        self._lock = threading.Lock()
        self.challenges_served = 0
        self.challenges_missing = 0

    def challenge_response(self, path: str) -> Optional[bytes]:
        token = challenge_token(path)
        payload: Optional[bytes] = None
        if token is not None:
            candidate = os.path.join(self.challenge_dir, token)
            try:
                with open(candidate, "rb") as f:
                    payload = f.read()
            except FileNotFoundError:
                payload = None
            except OSError as exc:
                logger.warning("Cannot read ACME challenge %s: %s", candidate, exc)
                payload = None
        with self._lock:
            if payload is None:
                self.challenges_missing += 1
            else:
                self.challenges_served += 1
        return payload

    def get_stat(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "challenge_dir": self.challenge_dir,
                "challenges_served": self.challenges_served,
                "challenges_missing": self.challenges_missing,
            }


def build_certificate_provider(challenge_dir: Optional[str]) -> CertificateProvider:
    if challenge_dir:
        logger.info("Serving ACME challenges from %s", challenge_dir)
        return DirectoryChallengeProvider(challenge_dir)
    return NullCertificateProvider()
