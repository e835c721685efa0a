"""PKCE and CSRF secret generation (:rfc:`7636`).

Both the ``state`` parameter and the ``code_verifier`` are 32 random bytes
encoded as unpadded base64url, which gives a 43-character string inside the
RFC's 43-128 character range.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

TOKEN_BYTES = 32


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_token() -> str:
    """Return 32 cryptographically random bytes as unpadded base64url."""
    return _b64url(secrets.token_bytes(TOKEN_BYTES))


def derive_challenge(verifier: str) -> str:
    """Derive the S256 ``code_challenge`` for *verifier*."""
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return _b64url(digest)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    code_verifier = generate_token()
    return code_verifier, derive_challenge(code_verifier)
