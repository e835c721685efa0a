"""Unverified JWT payload decoding and client-side expiry checks.

Nothing in this module verifies signatures. The decoded claims are only
used to schedule refreshes and to label stored accounts; they are never a
trust decision.
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import time
from typing import Any, Optional

from devauth.exceptions import MalformedAccessTokenError

DEFAULT_EXPIRY_MARGIN = 60


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def decode_jwt_payload(token: str) -> dict[str, Any]:
    """Decode the payload segment of a JWT without checking its signature.

    Args:
        token: A compact-serialised JWT (``header.payload.signature``).

    Returns:
        The payload claims as a dict.

    Raises:
        MalformedAccessTokenError: If the token does not have exactly three
            segments, or the payload is not base64url-encoded UTF-8 JSON
            describing an object.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise MalformedAccessTokenError(
            f"Expected 3 dot-separated segments, got {len(parts)}"
        )

    segment = parts[1]
    padded = segment + "=" * (-len(segment) % 4)
    try:
        raw = base64.b64decode(padded, altchars=b"-_", validate=True)
        payload = json.loads(raw.decode("utf-8"), parse_constant=_reject_constant)
    except (binascii.Error, ValueError) as exc:
        # UnicodeDecodeError and JSONDecodeError are both ValueErrors.
        raise MalformedAccessTokenError(f"Undecodable JWT payload: {exc}") from exc

    if not isinstance(payload, dict):
        raise MalformedAccessTokenError("JWT payload is not a JSON object")
    return payload


def token_expiry(token: str) -> Optional[float]:
    """Return the ``exp`` claim (Unix seconds), or ``None`` if absent or unreadable."""
    try:
        payload = decode_jwt_payload(token)
    except MalformedAccessTokenError:
        return None
    exp = payload.get("exp")
    # bool is an int subclass; a boolean exp is not a timestamp.
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    try:
        value = float(exp)
    except OverflowError:
        return None
    if not math.isfinite(value):
        return None
    return value


def is_expired(
    access_token: str,
    margin: int = DEFAULT_EXPIRY_MARGIN,
    now: Optional[float] = None,
) -> bool:
    """Return True if *access_token* is expired or expires within *margin* seconds.

    Fail-closed: a token that is not a decodable JWT, or whose payload
    lacks a finite numeric ``exp`` claim, is reported as expired.

    Args:
        access_token: The JWT access token.
        margin: Safety margin in seconds.
        now: Current Unix time; defaults to :func:`time.time`.
    """
    exp = token_expiry(access_token)
    if exp is None:
        return True
    if now is None:
        now = time.time()
    return exp < now + margin


def unverified_claims(token: Optional[str]) -> dict[str, Any]:
    """Best-effort claim read for labelling; returns ``{}`` on any decode failure."""
    if not token:
        return {}
    try:
        return decode_jwt_payload(token)
    except MalformedAccessTokenError:
        return {}
