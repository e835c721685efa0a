"""Login commands -- run, print, or cancel an authorization flow.

* ``devauth login`` opens the browser and stores the resulting account.
* ``devauth url`` prints the authorization URL on stdout (for remote shells
  or scripts) and then waits for the redirect just like ``login``.
* ``devauth cancel`` wakes a listener that is still waiting, possibly in
  another process, and makes it release the callback port.
"""

from __future__ import annotations

import asyncio
import webbrowser
from typing import Any, Callable, Coroutine, Optional, TypeVar

import typer

from devauth.exceptions import LoginCancelledError
from devauth.output import debug, info, print_data, success, suggest, warning

T = TypeVar("T")


def run_flow(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion; Ctrl-C becomes :class:`LoginCancelledError`."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        raise LoginCancelledError("Login interrupted") from None


def build_orchestrator(ctx: typer.Context, port: Optional[int] = None) -> Any:
    """Create a :class:`~devauth.oauth.SessionOrchestrator` from config and CLI flags."""
    from devauth.config import load_global_config, resolve_provider
    from devauth.oauth import FlowHooks, SessionOrchestrator
    from devauth.oauth.hooks import CALLBACK_RECEIVED

    config = load_global_config()
    provider = resolve_provider(ctx.obj.get("provider") if ctx.obj else None, config)
    debug(f"Using provider '{provider.name}' at {provider.authorize_url}")

    hooks = FlowHooks()
    hooks.on(CALLBACK_RECEIVED, lambda event: info("Callback received, exchanging code..."))

    return SessionOrchestrator(
        provider,
        hooks=hooks,
        port=port,
        listener_timeout=config.listener.timeout_seconds,
        poll_interval=config.listener.poll_interval,
        refresh_margin=config.refresh_margin_seconds,
    )


def _run_login(ctx: typer.Context, port: Optional[int], announce: Callable[[str], None]) -> None:
    from devauth.accounts import AccountStore, login_account

    orchestrator = build_orchestrator(ctx, port)

    async def _flow() -> Any:
        async with orchestrator:
            return await login_account(orchestrator, AccountStore(), open_browser=announce)

    account = run_flow(_flow())
    label = account.email or account.account_id or account.id
    success(f"Logged in as {label} ({account.provider}).")
    suggest(f"Stored as account '{account.id}'. Run 'devauth accounts show {account.id}'.")


def login_command(
    ctx: typer.Context,
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the URL instead of opening a browser."
    ),
    port: Optional[int] = typer.Option(
        None, "--port", help="Callback port (defaults to the provider's)."
    ),
) -> None:
    """Log in through the browser and store the account.

    Example::

        devauth login
        devauth --provider acme login --no-browser
    """
    from devauth.config import load_global_config

    launch = load_global_config().open_browser and not no_browser

    def _announce(url: str) -> None:
        info("Open this URL to authorize devauth:")
        info(url)
        if launch and not webbrowser.open(url):
            warning("Could not open a browser; open the URL above by hand.")
        info("Waiting for the browser redirect...")

    _run_login(ctx, port, _announce)


def url_command(
    ctx: typer.Context,
    port: Optional[int] = typer.Option(
        None, "--port", help="Callback port (defaults to the provider's)."
    ),
) -> None:
    """Print the authorization URL on stdout, then wait for the redirect.

    Example::

        devauth url | xclip -selection clipboard
    """

    def _announce(url: str) -> None:
        print_data(url)
        info("Waiting for the browser redirect...")

    _run_login(ctx, port, _announce)


def cancel_command(
    ctx: typer.Context,
    port: Optional[int] = typer.Option(
        None, "--port", help="Callback port (defaults to the provider's)."
    ),
) -> None:
    """Stop a login that is still waiting for its redirect.

    Example::

        devauth cancel
    """
    from devauth.config import resolve_provider
    from devauth.oauth.listener import notify_cancel

    if port is None:
        port = resolve_provider(ctx.obj.get("provider") if ctx.obj else None).callback_port

    if notify_cancel(port):
        success(f"Cancelled the pending login on port {port}.")
    else:
        info(f"No pending login on port {port}.")
