"""Account-level operations built on the OAuth orchestrator.

These functions are what a UI or the CLI calls: run a login and store the
resulting account, keep an account's tokens fresh, and export an account in
the ``auth.json`` shape other developer tools read.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from devauth.accounts.store import AccountStore, account_file_id
from devauth.config import atomic_write
from devauth.exceptions import AuthError, ConfigError, MissingRefreshTokenError
from devauth.models import AccountCredential, ProviderConfig, TokenRecord
from devauth.oauth.jwt import is_expired, token_expiry, unverified_claims
from devauth.oauth.orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

LoginCallback = Callable[[AccountCredential], object]


def _claim_account_id(claims: dict[str, Any], account_claim: Optional[str]) -> Optional[str]:
    if not account_claim:
        return None
    namespaced = claims.get(account_claim)
    if not isinstance(namespaced, dict):
        return None
    for key in ("chatgpt_account_id", "account_id"):
        value = namespaced.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def account_from_tokens(provider: ProviderConfig, record: TokenRecord) -> AccountCredential:
    """Build an :class:`AccountCredential` from a fresh token record.

    The ``id_token`` is decoded without verification to label the account
    with its email and provider-side account id.

    Raises:
        MissingRefreshTokenError: If *record* has no refresh token; such an
            account could not be kept alive past its first expiry.
    """
    if not record.refresh_token:
        raise MissingRefreshTokenError(provider.revoke_hint)

    id_claims = unverified_claims(record.id_token)
    access_claims = unverified_claims(record.access_token)

    email = id_claims.get("email")
    if not isinstance(email, str):
        email = None
    account_id = _claim_account_id(id_claims, provider.account_claim) or _claim_account_id(
        access_claims, provider.account_claim
    )
    subject = id_claims.get("sub") if isinstance(id_claims.get("sub"), str) else None

    key = account_id or subject or email
    if not key:
        raise AuthError("The id_token carries no account id, subject or email to identify the account")

    return AccountCredential(
        id=account_file_id(f"{provider.name}-{key}"),
        provider=provider.name,
        email=email,
        account_id=account_id,
        tokens=record,
    )


async def login_account(
    orchestrator: SessionOrchestrator,
    store: AccountStore,
    open_browser: Optional[Callable[[str], object]] = None,
    on_login: Optional[LoginCallback] = None,
) -> AccountCredential:
    """Run a login, store the resulting account and return it.

    An existing account with the same id keeps its ``created_at``. The
    optional *on_login* callback (for example a quota refresh) runs after
    the account is saved; if it raises, the failure is logged and the
    stored account is still returned.
    """
    record = await orchestrator.login(open_browser=open_browser)
    account = account_from_tokens(orchestrator.provider, record)

    if store.path_for(account.id).is_file():
        previous = store.load(account.id)
        account = account.model_copy(update={"created_at": previous.created_at})

    store.save(account)
    logger.info("Stored account %s for provider '%s'", account.id, account.provider)

    if on_login is not None:
        try:
            on_login(account)
        except Exception:
            logger.warning("Post-login callback failed for account %s", account.id, exc_info=True)
    return account


async def ensure_fresh(
    account: AccountCredential,
    orchestrator: SessionOrchestrator,
    store: AccountStore,
    force: bool = False,
) -> AccountCredential:
    """Refresh *account*'s tokens when they expire soon (or always with *force*).

    The account is saved, with ``last_refreshed_at`` stamped, only when the
    tokens actually changed.
    """
    if force:
        record = await orchestrator.refresh(account.tokens)
    else:
        record = await orchestrator.refresh_if_needed(account.tokens)
    if record == account.tokens:
        return account

    updated = account.model_copy(
        update={"tokens": record, "last_refreshed_at": datetime.now(timezone.utc)}
    )
    store.save(updated)
    logger.info("Refreshed tokens for account %s", account.id)
    return updated


def export_auth_payload(account: AccountCredential, margin: int = 0) -> dict[str, Any]:
    """Return the ``auth.json`` entry for *account*.

    Shape::

        {"type": "oauth", "access": "...", "refresh": "...",
         "expires": 1700000000000, "accountId": "..."}

    ``expires`` is in milliseconds. ``refresh``, ``expires`` and
    ``accountId`` are omitted when unknown.

    Raises:
        AuthError: If the access token is expired; refresh first.
    """
    tokens = account.tokens
    if is_expired(tokens.access_token, margin=margin):
        raise AuthError(
            f"The access token of account '{account.id}' is expired. "
            f"Run 'devauth accounts refresh {account.id}' first."
        )

    payload: dict[str, Any] = {"type": "oauth", "access": tokens.access_token}
    if tokens.refresh_token:
        payload["refresh"] = tokens.refresh_token
    exp = token_expiry(tokens.access_token)
    if exp is not None:
        payload["expires"] = int(exp) * 1000
    if account.account_id:
        payload["accountId"] = account.account_id
    return payload


def write_auth_file(account: AccountCredential, path: Path, key: str = "openai") -> None:
    """Replace the *key* entry of the ``auth.json`` at *path* with *account*'s payload.

    Other entries in the file are preserved. A missing file is created; a
    file whose top level is not an object is replaced.

    Raises:
        ConfigError: If the existing file is not valid JSON.
    """
    payload = export_auth_payload(account)
    content: dict[str, Any] = {}
    if path.is_file():
        try:
            existing = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Cannot parse {path}: {exc}") from exc
        if isinstance(existing, dict):
            content = existing
    content[key] = payload
    atomic_write(path, json.dumps(content, indent=2) + "\n", mode=0o600)
    logger.info("Updated '%s' entry in %s", key, path)
