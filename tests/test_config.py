"""Tests for devauth.config -- XDG paths, atomic writes, providers, precedence."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from devauth.config import (
    BUILTIN_PROVIDERS,
    atomic_write,
    get_config_dir,
    get_data_dir,
    get_providers_dir,
    list_providers,
    load_global_config,
    load_provider,
    resolve_client_id,
    resolve_credential,
    resolve_provider,
    save_global_config,
)
from devauth.exceptions import ConfigError
from devauth.models import GlobalConfig, ListenerConfig, ProviderConfig


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def _user_provider(name: str, **overrides: Any) -> None:
    data = {
        "authorize_url": f"https://{name}.example.test/authorize",
        "token_url": f"https://{name}.example.test/token",
        "client_id": f"{name}-client",
    }
    data.update(overrides)
    _write_json(get_providers_dir() / f"{name}.json", data)


class TestDirectories:
    def test_xdg_locations(self, isolated_config: Path) -> None:
        assert get_config_dir() == isolated_config / "config" / "devauth"
        assert get_data_dir() == isolated_config / "data" / "devauth"
        assert get_providers_dir() == isolated_config / "config" / "devauth" / "providers"
        assert get_providers_dir().is_dir()

    def test_fallback_locations(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("devauth.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))
        assert get_config_dir() == tmp_path / ".devauth"
        assert get_data_dir() == tmp_path / ".devauth" / "data"


class TestAtomicWrite:
    def test_creates_parents_and_content(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "file.json"
        atomic_write(target, '{"ok": true}')
        assert target.read_text() == '{"ok": true}'

    def test_no_temp_files_left(self, tmp_path: Path) -> None:
        target = tmp_path / "file.txt"
        atomic_write(target, "one")
        atomic_write(target, "two")
        assert [p.name for p in tmp_path.iterdir()] == ["file.txt"]
        assert target.read_text() == "two"


class TestGlobalConfig:
    def test_defaults_when_missing(self, isolated_config: Path) -> None:
        config = load_global_config()
        assert config == GlobalConfig()
        assert config.listener.timeout_seconds == 300.0
        assert config.open_browser is True

    def test_save_and_load(self, isolated_config: Path) -> None:
        config = GlobalConfig(default_provider="acme", listener=ListenerConfig(timeout_seconds=30))
        save_global_config(config)
        assert load_global_config() == config

    def test_invalid_json(self, isolated_config: Path) -> None:
        (get_config_dir() / "config.json").write_text("{nope")
        with pytest.raises(ConfigError, match="Invalid global config"):
            load_global_config()

    def test_invalid_schema(self, isolated_config: Path) -> None:
        _write_json(get_config_dir() / "config.json", {"open_browser": "sometimes"})
        with pytest.raises(ConfigError):
            load_global_config()


class TestProviders:
    def test_builtin_codex(self, isolated_config: Path) -> None:
        provider = load_provider("codex")
        assert provider.callback_port == 1455
        assert provider.redirect_uri == "http://localhost:1455/auth/callback"
        assert provider.extra_authorize_params["originator"] == "codex_vscode"
        # Callers get a copy.
        provider.scopes.append("extra")
        assert "extra" not in BUILTIN_PROVIDERS["codex"].scopes

    def test_user_provider(self, isolated_config: Path) -> None:
        _user_provider("acme", scopes=["openid"], callback_port=8123)
        provider = load_provider("acme")
        assert provider.name == "acme"
        assert provider.redirect_uri == "http://localhost:8123/auth/callback"
        assert list_providers() == ["acme", "codex"]

    def test_redirect_uri_for_bound_port(self, isolated_config: Path) -> None:
        provider = load_provider("codex")
        assert provider.redirect_uri_for(8080) == "http://localhost:8080/auth/callback"
        assert provider.redirect_uri == provider.redirect_uri_for(provider.callback_port)

    def test_user_file_overrides_builtin(self, isolated_config: Path) -> None:
        _user_provider("codex", authorize_url="https://staging.example.test/authorize")
        assert load_provider("codex").authorize_url == "https://staging.example.test/authorize"

    def test_unknown_provider_lists_available(self, isolated_config: Path) -> None:
        with pytest.raises(ConfigError, match="Available providers: codex"):
            load_provider("nope")

    @pytest.mark.parametrize("content", ["{bad", "[1, 2]", '{"name": "x"}'])
    def test_invalid_provider_file(self, isolated_config: Path, content: str) -> None:
        (get_providers_dir() / "broken.json").write_text(content)
        with pytest.raises(ConfigError, match="Invalid provider 'broken'"):
            load_provider("broken")


class TestResolveProvider:
    @pytest.fixture(autouse=True)
    def _providers(self, isolated_config: Path) -> None:
        _user_provider("from-config")
        _user_provider("from-env")
        _user_provider("from-cli")

    def test_default_is_codex(self) -> None:
        assert resolve_provider().name == "codex"

    def test_config_default(self) -> None:
        assert resolve_provider(config=GlobalConfig(default_provider="from-config")).name == "from-config"

    def test_env_beats_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEVAUTH_PROVIDER", "from-env")
        config = GlobalConfig(default_provider="from-config")
        assert resolve_provider(config=config).name == "from-env"

    def test_cli_beats_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEVAUTH_PROVIDER", "from-env")
        assert resolve_provider("from-cli").name == "from-cli"

    def test_reads_saved_config(self) -> None:
        save_global_config(GlobalConfig(default_provider="from-config"))
        assert resolve_provider().name == "from-config"


class TestClientId:
    def _provider(self, **kwargs: Any) -> ProviderConfig:
        return ProviderConfig(
            name="acme",
            authorize_url="https://a.example.test/authorize",
            token_url="https://a.example.test/token",
            **kwargs,
        )

    def test_literal(self) -> None:
        assert resolve_client_id(self._provider(client_id="cid")) == "cid"

    def test_env_source(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ACME_CLIENT_ID", "from-env")
        assert resolve_client_id(self._provider(client_id_source="env:ACME_CLIENT_ID")) == "from-env"

    def test_file_source(self, tmp_path: Path) -> None:
        secret = tmp_path / "client_id"
        secret.write_text("from-file\n")
        assert resolve_client_id(self._provider(client_id_source=f"file:{secret}")) == "from-file"

    def test_missing(self) -> None:
        with pytest.raises(ConfigError, match="neither 'client_id' nor 'client_id_source'"):
            resolve_client_id(self._provider())


class TestResolveCredential:
    def test_env_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DEVAUTH_TEST_UNSET", raising=False)
        with pytest.raises(ConfigError, match="DEVAUTH_TEST_UNSET"):
            resolve_credential("env:DEVAUTH_TEST_UNSET")

    def test_file_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            resolve_credential(f"file:{tmp_path / 'missing'}")

    def test_unknown_format(self) -> None:
        with pytest.raises(ConfigError, match="Unknown credential source"):
            resolve_credential("keyring:devauth")
