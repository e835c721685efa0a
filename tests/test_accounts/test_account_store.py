"""Tests for the on-disk account store."""

from __future__ import annotations

import os
import stat
import sys

import pytest

from devauth.accounts.store import AccountStore, account_file_id
from devauth.exceptions import AccountNotFoundError, ConfigError
from devauth.models import AccountCredential, TokenRecord


@pytest.fixture()
def store(tmp_path) -> AccountStore:
    return AccountStore(tmp_path / "accounts")


def _account(account_id: str = "acme-user-1", email: str | None = "user@example.com") -> AccountCredential:
    return AccountCredential(
        id=account_id,
        provider="acme",
        email=email,
        account_id="user-1",
        tokens=TokenRecord(id_token="id", access_token="access", refresh_token="refresh"),
    )


class TestAccountFileId:
    def test_keeps_safe_characters(self) -> None:
        assert account_file_id("codex-user@example.com") == "codex-user@example.com"

    def test_replaces_path_separators(self) -> None:
        assert account_file_id("acme-../../etc/passwd") == "acme-_etc_passwd"

    def test_rejects_empty(self) -> None:
        with pytest.raises(ConfigError):
            account_file_id("///")


class TestAccountStore:
    def test_default_directory(self, isolated_config) -> None:
        store = AccountStore()
        assert store.directory == isolated_config / "data" / "devauth" / "accounts"
        assert store.directory.is_dir()

    def test_save_and_load(self, store: AccountStore) -> None:
        account = _account()
        store.save(account)
        loaded = store.load(account.id)
        assert loaded == account

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_is_private(self, store: AccountStore) -> None:
        account = _account()
        store.save(account)
        mode = stat.S_IMODE(os.stat(store.path_for(account.id)).st_mode)
        assert mode == 0o600

    def test_load_missing(self, store: AccountStore) -> None:
        with pytest.raises(AccountNotFoundError):
            store.load("nobody")

    def test_load_corrupt(self, store: AccountStore) -> None:
        store.path_for("broken").write_text("{not json")
        with pytest.raises(ConfigError):
            store.load("broken")

    def test_list_sorted_and_skips_corrupt(self, store: AccountStore) -> None:
        store.save(_account("b-account"))
        store.save(_account("a-account"))
        store.path_for("c-broken").write_text("[]")
        assert [a.id for a in store.list()] == ["a-account", "b-account"]

    def test_find_by_id_or_email(self, store: AccountStore) -> None:
        store.save(_account("acme-1", email="First@Example.com"))
        assert store.find("acme-1").id == "acme-1"
        assert store.find("first@example.com").id == "acme-1"
        with pytest.raises(AccountNotFoundError):
            store.find("second@example.com")

    def test_delete(self, store: AccountStore) -> None:
        account = _account()
        store.save(account)
        store.delete(account.id)
        assert store.list() == []
        with pytest.raises(AccountNotFoundError):
            store.delete(account.id)
