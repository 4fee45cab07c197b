"""PKCE (Proof Key for Code Exchange) and CSRF state generation.

RFC 7636 - Proof Key for Code Exchange for OAuth 2.0 public clients.
Only the S256 challenge method is produced.
"""

from __future__ import annotations

import hashlib
import secrets

from base64 import urlsafe_b64encode
from dataclasses import dataclass


# RFC 7636 section 4.1: verifier is 43-128 characters
_MIN_VERIFIER_BYTES = 32
_MAX_VERIFIER_BYTES = 96


def s256_challenge(verifier: str) -> str:
    """Compute the S256 code challenge for ``verifier``.

    Parameters
    ----------
    verifier : str
        The code verifier.

    Returns
    -------
    str
        base64url(SHA-256(verifier)) without padding.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_state_token(nbytes: int = 32) -> str:
    """Generate an unguessable CSRF state token."""
    return secrets.token_urlsafe(nbytes)


@dataclass(frozen=True)
class PKCEChallenge:
    """PKCE code verifier and challenge pair.

    Attributes
    ----------
    verifier : str
        The code verifier (high-entropy random string).
    challenge : str
        The code challenge (base64url-encoded SHA-256 hash of verifier).
    method : str
        The challenge method, always "S256".
    """

    verifier: str
    challenge: str
    method: str = "S256"

    @classmethod
    def generate(cls, length: int = 64) -> PKCEChallenge:
        """Generate a new PKCE code verifier and challenge.

        Parameters
        ----------
        length : int
            Number of random bytes behind the verifier (default 64).
            Clamped so the encoded verifier stays within 43-128 characters.

        Returns
        -------
        PKCEChallenge
            A new PKCE challenge pair.
        """
        length = max(_MIN_VERIFIER_BYTES, min(length, _MAX_VERIFIER_BYTES))
        verifier = secrets.token_urlsafe(length)
        return cls(verifier=verifier, challenge=s256_challenge(verifier))
