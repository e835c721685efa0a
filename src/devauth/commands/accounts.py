"""Account commands -- list, inspect, refresh, remove and export stored accounts.

Tokens are never printed in full except by ``export``, whose whole purpose
is to hand them to another tool.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer

from devauth.output import format_response, info, print_table, success, suggest


accounts_app = typer.Typer(no_args_is_help=True)


def _redact(token: Optional[str]) -> str:
    if not token:
        return "-"
    return f"{token[:8]}..."


def _expiry_label(access_token: str) -> str:
    from devauth.oauth.jwt import is_expired, token_expiry

    exp = token_expiry(access_token)
    if exp is None:
        return "unknown"
    stamp = datetime.fromtimestamp(exp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    return f"{stamp} (expired)" if is_expired(access_token, margin=0) else stamp


def _summary(account: Any) -> dict[str, Any]:
    return {
        "id": account.id,
        "provider": account.provider,
        "email": account.email,
        "account_id": account.account_id,
        "access_token": _redact(account.tokens.access_token),
        "refresh_token": _redact(account.tokens.refresh_token),
        "expires": _expiry_label(account.tokens.access_token),
        "created_at": account.created_at.isoformat(),
        "last_refreshed_at": (
            account.last_refreshed_at.isoformat() if account.last_refreshed_at else None
        ),
    }


def _orchestrator_for(account: Any) -> Any:
    from devauth.config import load_global_config, load_provider
    from devauth.oauth import SessionOrchestrator

    config = load_global_config()
    return SessionOrchestrator(
        load_provider(account.provider),
        refresh_margin=config.refresh_margin_seconds,
    )


@accounts_app.command("list")
def accounts_list() -> None:
    """List stored accounts.

    Example::

        devauth accounts list
        devauth --json accounts list
    """
    from devauth.accounts import AccountStore

    accounts = AccountStore().list()
    if not accounts:
        info("No stored accounts.")
        suggest("Run 'devauth login' to add one.")
        return

    rows = [
        [
            account.id,
            account.provider,
            account.email or "-",
            _expiry_label(account.tokens.access_token),
        ]
        for account in accounts
    ]
    print_table(["ID", "Provider", "Email", "Expires"], rows, title="Accounts")


@accounts_app.command("show")
def accounts_show(
    account_key: str = typer.Argument(help="Account id or email."),
) -> None:
    """Show one stored account with its tokens redacted."""
    from devauth.accounts import AccountStore

    account = AccountStore().find(account_key)
    format_response(_summary(account))


@accounts_app.command("refresh")
def accounts_refresh(
    account_key: str = typer.Argument(help="Account id or email."),
    force: bool = typer.Option(
        False, "--force", help="Refresh even if the access token is still fresh."
    ),
) -> None:
    """Refresh an account's tokens when they are about to expire.

    Example::

        devauth accounts refresh codex-acct_123
        devauth accounts refresh me@example.com --force
    """
    from devauth.accounts import AccountStore, ensure_fresh
    from devauth.commands.login import run_flow

    store = AccountStore()
    account = store.find(account_key)
    orchestrator = _orchestrator_for(account)

    async def _refresh() -> Any:
        async with orchestrator:
            return await ensure_fresh(account, orchestrator, store, force=force)

    updated = run_flow(_refresh())
    if updated is account:
        info(f"Account '{account.id}' is still fresh; nothing to do.")
        return
    success(f"Refreshed account '{account.id}'.")
    info(f"Access token expires {_expiry_label(updated.tokens.access_token)}")


@accounts_app.command("remove")
def accounts_remove(
    ctx: typer.Context,
    account_key: str = typer.Argument(help="Account id or email."),
) -> None:
    """Delete a stored account. Asks for confirmation unless ``--force`` is active."""
    from devauth.accounts import AccountStore

    store = AccountStore()
    account = store.find(account_key)
    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm(f"Remove account '{account.id}'?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()
    store.delete(account.id)
    success(f"Removed account '{account.id}'.")


@accounts_app.command("export")
def accounts_export(
    account_key: str = typer.Argument(help="Account id or email."),
    write: Optional[Path] = typer.Option(
        None, "--write", help="Merge the entry into this auth.json instead of printing it."
    ),
    key: str = typer.Option("openai", "--key", help="Entry name inside auth.json."),
) -> None:
    """Export an account as an ``auth.json`` entry for other developer tools.

    Example::

        devauth accounts export codex-acct_123
        devauth accounts export codex-acct_123 --write ~/.local/share/opencode/auth.json
    """
    from devauth.accounts import AccountStore, export_auth_payload, write_auth_file

    account = AccountStore().find(account_key)
    if write is not None:
        write_auth_file(account, write.expanduser(), key=key)
        success(f"Wrote '{key}' entry for '{account.id}' to {write}.")
        return
    format_response(export_auth_payload(account))
