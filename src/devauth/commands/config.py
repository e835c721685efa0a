"""Config commands -- view and modify global configuration.

Provides the ``devauth config`` sub-command group for reading, updating,
and resetting the user's global configuration file
(:class:`~devauth.models.GlobalConfig`). Settings control defaults such as
the active provider, browser launch, and listener timing.
"""

from __future__ import annotations

from typing import Any

import typer
from pydantic import ValidationError

from devauth.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)

_NULL_VALUES = ("", "none", "null")


def _coerce(current: Any, value: str) -> Any:
    """Coerce *value* to the type of the field's *current* value.

    Raises:
        ValueError: If the value cannot be converted.
    """
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if current is None and value.lower() in _NULL_VALUES:
        return None
    return value


@config_app.command("show")
def config_show() -> None:
    """Show current configuration.

    Example::

        devauth config show
        devauth --json config show
    """
    from devauth.config import get_config_dir, load_global_config

    config = load_global_config()
    info(f"Config directory: {get_config_dir()}")
    format_response(config.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'listener.timeout_seconds')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    Uses dot notation for nested keys. The value is coerced to the existing
    field's type (bool, int, float, or str; ``none`` clears an optional
    field) and validated against :class:`~devauth.models.GlobalConfig`
    before saving.

    Raises:
        typer.Exit: With code 2 if the key path is invalid, the value
            cannot be coerced, or validation fails.

    Example::

        devauth config set default_provider acme
        devauth config set open_browser false
        devauth config set listener.timeout_seconds 120
    """
    from devauth.config import load_global_config, save_global_config
    from devauth.models import GlobalConfig

    config = load_global_config()
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target or isinstance(target[final_key], dict):
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    try:
        coerced = _coerce(target[final_key], value)
    except ValueError:
        error(f"Invalid value for {key}: {value}")
        raise typer.Exit(code=2) from None
    target[final_key] = coerced

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_global_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(
    ctx: typer.Context,
) -> None:
    """Reset configuration to defaults. Asks for confirmation unless ``--force`` is active.

    Example::

        devauth config reset
        devauth --force config reset
    """
    from devauth.config import save_global_config
    from devauth.models import GlobalConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
