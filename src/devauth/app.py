"""Typer application and CLI entry point for devauth.

This module wires together the top-level Typer application and registers the
built-in sub-commands (``login``, ``url``, ``cancel``, ``accounts``,
``config``, ``providers``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It registers commands and invokes the Typer app.
:class:`~devauth.exceptions.DevauthError` exits with the error's code;
anything else is written to a crash log under the data directory.

Ctrl-C during a flow is turned into a cancellation of the running coroutine
by ``asyncio.run``, so the loopback listener is stopped and its port released;
the command then raises :class:`~devauth.exceptions.LoginCancelledError`
(exit 130).
"""

from __future__ import annotations

import sys
import traceback
from datetime import datetime
from typing import Optional

import typer

from devauth import __version__
from devauth.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="devauth",
    help="Log in to developer-tool accounts with OAuth2 + PKCE and keep their tokens fresh.",
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"devauth {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    provider: Optional[str] = typer.Option(
        None, "--provider", "-p", help="Provider name to use."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output and log records."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Skip confirmations."
    ),
    output_file: Optional[str] = typer.Option(
        None, "-o", "--output", help="Output file path."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~devauth.output.OutputManager` and the
    Rich log handler from CLI flags, and stores shared options
    (``provider``, ``force``, ``verbose``) in ``ctx.obj``.
    """
    from devauth.output import OutputFormat, OutputManager, configure_logging, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
        output_file=output_file,
    )
    set_output(output)
    configure_logging(verbose=verbose, console=output.stderr_console)

    ctx.ensure_object(dict)
    ctx.obj["provider"] = provider
    ctx.obj["force"] = force
    ctx.obj["verbose"] = verbose


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from devauth.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def register_commands() -> None:
    """Attach the built-in sub-commands to :data:`app` (idempotent)."""
    if getattr(app, "_devauth_registered", False):
        return
    from devauth.commands.accounts import accounts_app
    from devauth.commands.config import config_app
    from devauth.commands.login import cancel_command, login_command, url_command
    from devauth.commands.providers import providers_app

    app.command("login")(login_command)
    app.command("url")(url_command)
    app.command("cancel")(cancel_command)
    app.add_typer(accounts_app, name="accounts", help="Stored account management.")
    app.add_typer(config_app, name="config", help="Configuration management.")
    app.add_typer(providers_app, name="providers", help="Identity provider definitions.")
    app._devauth_registered = True  # type: ignore[attr-defined]


def main() -> None:
    """CLI entry point invoked by the ``devauth`` console script.

    Unhandled :class:`~devauth.exceptions.DevauthError` instances cause a
    clean exit with the error's ``exit_code``. All other exceptions produce
    a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    try:
        register_commands()
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from devauth.exceptions import DevauthError
        from devauth.output import error

        if isinstance(exc, DevauthError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
