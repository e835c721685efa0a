"""Provider commands -- list and inspect identity provider definitions."""

from __future__ import annotations

import typer

from devauth.output import format_response, print_table


providers_app = typer.Typer(no_args_is_help=True)


@providers_app.command("list")
def providers_list() -> None:
    """List built-in and user-defined providers."""
    from devauth.config import BUILTIN_PROVIDERS, get_providers_dir, list_providers, load_provider

    providers_dir = get_providers_dir()
    rows = []
    for name in list_providers():
        provider = load_provider(name)
        source = "user" if (providers_dir / f"{name}.json").is_file() else "built-in"
        if source == "user" and name in BUILTIN_PROVIDERS:
            source = "user (overrides built-in)"
        rows.append([name, source, provider.authorize_url, str(provider.callback_port)])
    print_table(["Name", "Source", "Authorize URL", "Port"], rows, title="Providers")


@providers_app.command("show")
def providers_show(
    name: str = typer.Argument(help="Provider name."),
) -> None:
    """Show one provider definition, including its redirect URI."""
    from devauth.config import load_provider

    provider = load_provider(name)
    data = provider.model_dump(mode="json")
    data["redirect_uri"] = provider.redirect_uri
    format_response(data)
