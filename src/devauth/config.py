"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for devauth:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.devauth/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_providers_dir`.
* **Global config** -- A single :class:`~devauth.models.GlobalConfig`
  JSON file storing defaults (provider, listener timing, browser launch).
* **Providers** -- Built-in :class:`~devauth.models.ProviderConfig`
  definitions plus one JSON file per user-defined provider. Managed via
  :func:`load_provider` and :func:`list_providers`.
* **Precedence resolution** -- :func:`resolve_provider` picks the active
  provider from the CLI flag, the environment, and the global config.
* **Credential resolution** -- :func:`resolve_credential` reads the client
  id from env vars or files.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so a crash never leaves a half-written file behind.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from devauth.exceptions import ConfigError
from devauth.models import GlobalConfig, ProviderConfig

_APP_NAME = "devauth"
_CONFIG_FILENAME = "config.json"
_DEFAULT_PROVIDER = "codex"

BUILTIN_PROVIDERS: dict[str, ProviderConfig] = {
    "codex": ProviderConfig(
        name="codex",
        client_id="app_EMoamEEZ73f0CkXaXp7hrann",
        authorize_url="https://auth.openai.com/oauth/authorize",
        token_url="https://auth.openai.com/oauth/token",
        scopes=["openid", "profile", "email", "offline_access"],
        callback_port=1455,
        callback_path="/auth/callback",
        extra_authorize_params={
            "id_token_add_organizations": "true",
            "codex_cli_simplified_flow": "true",
            "originator": "codex_vscode",
        },
        account_claim="https://api.openai.com/auth",
    ),
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/devauth/`` (default ``~/.config/devauth/``).
    On macOS/Windows: ``~/.devauth/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (accounts, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/devauth/`` (default ``~/.local/share/devauth/``).
    On macOS/Windows: ``~/.devauth/data/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_providers_dir() -> Path:
    """Return the user providers directory (``<config_dir>/providers/``), creating it if necessary."""
    path = get_config_dir() / "providers"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given the permissions are applied to the temp file
    before any content is written, so secrets are never briefly readable.

    Args:
        path: Destination file.
        data: Text content to write.
        mode: Optional permission bits (e.g. ``0o600``).
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the config directory.

    Returns:
        The deserialised :class:`~devauth.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Providers ---


def _provider_path(name: str) -> Path:
    return get_providers_dir() / f"{name}.json"


def list_providers() -> list[str]:
    """Return built-in and user-defined provider names, sorted alphabetically."""
    names = set(BUILTIN_PROVIDERS)
    names.update(p.stem for p in get_providers_dir().glob("*.json") if p.is_file())
    return sorted(names)


def load_provider(name: str) -> ProviderConfig:
    """Load a provider definition.

    A user file in the providers directory takes precedence over a
    built-in provider of the same name, so built-ins can be overridden
    (for example to point at a staging identity service).

    Args:
        name: Provider name.

    Returns:
        The :class:`~devauth.models.ProviderConfig`.

    Raises:
        ConfigError: If no provider has that name, or its file is invalid.
    """
    path = _provider_path(name)
    if path.is_file():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("top level must be a JSON object")
            data.setdefault("name", name)
            return ProviderConfig.model_validate(data)
        except (json.JSONDecodeError, ValueError) as exc:
            raise ConfigError(f"Invalid provider '{name}' at {path}: {exc}") from exc

    builtin = BUILTIN_PROVIDERS.get(name)
    if builtin is not None:
        return builtin.model_copy(deep=True)

    available = ", ".join(list_providers()) or "(none)"
    raise ConfigError(f"Unknown provider '{name}'. Available providers: {available}")


# --- Precedence resolution ---


def resolve_provider(
    cli_provider: Optional[str] = None,
    config: Optional[GlobalConfig] = None,
) -> ProviderConfig:
    """Resolve the active provider with the full precedence chain.

    Precedence (high to low):
        1. CLI flag (``--provider``)
        2. Environment variable ``DEVAUTH_PROVIDER``
        3. ``default_provider`` in the global config
        4. The built-in ``codex`` provider

    Returns:
        The loaded :class:`~devauth.models.ProviderConfig`.
    """
    if config is None:
        config = load_global_config()

    name = _DEFAULT_PROVIDER
    if config.default_provider:
        name = config.default_provider
    env_provider = os.environ.get("DEVAUTH_PROVIDER")
    if env_provider:
        name = env_provider
    if cli_provider:
        name = cli_provider

    return load_provider(name)


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    raise ConfigError(f"Unknown credential source format: {source}")


def resolve_client_id(provider: ProviderConfig) -> str:
    """Return the provider's client id, resolving ``client_id_source`` if needed.

    Raises:
        ConfigError: If neither ``client_id`` nor ``client_id_source`` is set.
    """
    if provider.client_id:
        return provider.client_id
    if provider.client_id_source:
        return resolve_credential(provider.client_id_source)
    raise ConfigError(
        f"Provider '{provider.name}' has neither 'client_id' nor 'client_id_source'"
    )
