"""Tests for account-level login, refresh and export."""

from __future__ import annotations

import base64
import json
import os
import stat
import sys
from datetime import datetime, timezone

import pytest

from devauth.accounts.service import (
    account_from_tokens,
    ensure_fresh,
    export_auth_payload,
    login_account,
    write_auth_file,
)
from devauth.accounts.store import AccountStore
from devauth.exceptions import AuthError, ConfigError, MissingRefreshTokenError
from devauth.models import AccountCredential, TokenRecord

CLAIM = "https://auth.example.test/claims"


class FakeOrchestrator:
    """Stands in for SessionOrchestrator: hands back canned token records."""

    def __init__(self, provider, login_record=None, refreshed=None) -> None:
        self.provider = provider
        self.login_record = login_record
        self.refreshed = refreshed
        self.calls: list[str] = []

    async def login(self, open_browser=None) -> TokenRecord:
        self.calls.append("login")
        if open_browser is not None:
            open_browser("https://auth.example.test/oauth/authorize?x=1")
        return self.login_record

    async def refresh_if_needed(self, record: TokenRecord) -> TokenRecord:
        self.calls.append("refresh_if_needed")
        return self.refreshed if self.refreshed is not None else record

    async def refresh(self, record: TokenRecord) -> TokenRecord:
        self.calls.append("refresh")
        return self.refreshed


@pytest.fixture()
def store(tmp_path) -> AccountStore:
    return AccountStore(tmp_path / "accounts")


@pytest.fixture()
def tokens(make_jwt) -> TokenRecord:
    return TokenRecord(
        id_token=make_jwt(sub="sub-1", email="dev@example.com", **{CLAIM: {"chatgpt_account_id": "acct-9"}}),
        access_token=make_jwt(exp_in=3600),
        refresh_token="refresh-1",
    )


class TestAccountFromTokens:
    def test_labels_from_id_token(self, provider, tokens) -> None:
        account = account_from_tokens(provider, tokens)
        assert account.id == "acme-acct-9"
        assert account.provider == "acme"
        assert account.email == "dev@example.com"
        assert account.account_id == "acct-9"
        assert account.tokens == tokens

    def test_account_id_from_access_token(self, provider, make_jwt) -> None:
        record = TokenRecord(
            id_token=make_jwt(email="dev@example.com"),
            access_token=make_jwt(**{CLAIM: {"account_id": "from-access"}}),
            refresh_token="r",
        )
        assert account_from_tokens(provider, record).account_id == "from-access"

    def test_falls_back_to_subject(self, provider, make_jwt) -> None:
        record = TokenRecord(id_token=make_jwt(sub="abc"), access_token="opaque", refresh_token="r")
        account = account_from_tokens(provider, record)
        assert account.id == "acme-abc"
        assert account.account_id is None
        assert account.email is None

    def test_requires_refresh_token(self, provider, tokens) -> None:
        provider = provider.model_copy(update={"revoke_hint": "https://auth.example.test/revoke"})
        record = tokens.model_copy(update={"refresh_token": None})
        with pytest.raises(MissingRefreshTokenError, match="https://auth.example.test/revoke"):
            account_from_tokens(provider, record)

    def test_unidentifiable(self, provider, make_jwt) -> None:
        record = TokenRecord(id_token=make_jwt(), access_token="opaque", refresh_token="r")
        with pytest.raises(AuthError, match="identify the account"):
            account_from_tokens(provider, record)


class TestLoginAccount:
    @pytest.mark.asyncio
    async def test_stores_account(self, provider, tokens, store) -> None:
        opened: list[str] = []
        orchestrator = FakeOrchestrator(provider, login_record=tokens)
        account = await login_account(orchestrator, store, open_browser=opened.append)
        assert store.load(account.id) == account
        assert len(opened) == 1

    @pytest.mark.asyncio
    async def test_relogin_keeps_created_at(self, provider, tokens, store) -> None:
        first_seen = datetime(2024, 1, 1, tzinfo=timezone.utc)
        existing = account_from_tokens(provider, tokens).model_copy(update={"created_at": first_seen})
        store.save(existing)

        account = await login_account(FakeOrchestrator(provider, login_record=tokens), store)
        assert account.created_at == first_seen

    @pytest.mark.asyncio
    async def test_failing_callback_still_returns(self, provider, tokens, store, caplog) -> None:
        def on_login(account: AccountCredential) -> None:
            raise RuntimeError("quota service down")

        account = await login_account(
            FakeOrchestrator(provider, login_record=tokens), store, on_login=on_login
        )
        assert store.load(account.id).id == account.id
        assert "Post-login callback failed" in caplog.text

    @pytest.mark.asyncio
    async def test_no_refresh_token_not_stored(self, provider, tokens, store) -> None:
        record = tokens.model_copy(update={"refresh_token": None})
        with pytest.raises(MissingRefreshTokenError):
            await login_account(FakeOrchestrator(provider, login_record=record), store)
        assert store.list() == []


class TestEnsureFresh:
    @pytest.mark.asyncio
    async def test_unchanged_is_not_saved(self, provider, tokens, store) -> None:
        account = account_from_tokens(provider, tokens)
        result = await ensure_fresh(account, FakeOrchestrator(provider), store)
        assert result is account
        assert store.list() == []

    @pytest.mark.asyncio
    async def test_refreshed_is_saved(self, provider, tokens, store, make_jwt) -> None:
        account = account_from_tokens(provider, tokens)
        new_tokens = TokenRecord(
            id_token=tokens.id_token, access_token=make_jwt(exp_in=7200), refresh_token="refresh-2"
        )
        orchestrator = FakeOrchestrator(provider, refreshed=new_tokens)
        result = await ensure_fresh(account, orchestrator, store)
        assert result.tokens == new_tokens
        assert result.last_refreshed_at is not None
        assert store.load(account.id).tokens.refresh_token == "refresh-2"
        assert orchestrator.calls == ["refresh_if_needed"]

    @pytest.mark.asyncio
    async def test_force(self, provider, tokens, store, make_jwt) -> None:
        account = account_from_tokens(provider, tokens)
        new_tokens = tokens.model_copy(update={"access_token": make_jwt(exp_in=7200)})
        orchestrator = FakeOrchestrator(provider, refreshed=new_tokens)
        await ensure_fresh(account, orchestrator, store, force=True)
        assert orchestrator.calls == ["refresh"]


class TestExport:
    def test_payload_shape(self, provider, tokens) -> None:
        account = account_from_tokens(provider, tokens)
        payload = export_auth_payload(account)
        assert payload["type"] == "oauth"
        assert payload["access"] == tokens.access_token
        assert payload["refresh"] == "refresh-1"
        assert payload["accountId"] == "acct-9"
        assert isinstance(payload["expires"], int)
        assert payload["expires"] > 10**12

    def test_optional_fields_omitted(self, provider, make_jwt) -> None:
        access = make_jwt(exp_in=3600)
        record = TokenRecord(id_token=make_jwt(sub="s"), access_token=access, refresh_token="r")
        account = account_from_tokens(provider, record).model_copy(
            update={"tokens": TokenRecord(id_token="i", access_token=access)}
        )
        payload = export_auth_payload(account)
        assert set(payload) == {"type", "access", "expires"}

    def test_token_without_exp_is_refused(self, provider, tokens, make_jwt) -> None:
        account = account_from_tokens(provider, tokens).model_copy(
            update={"tokens": tokens.model_copy(update={"access_token": make_jwt(exp_in=None)})}
        )
        with pytest.raises(AuthError):
            export_auth_payload(account)

    def test_expired_access_token(self, provider, tokens, make_jwt) -> None:
        account = account_from_tokens(provider, tokens).model_copy(
            update={"tokens": tokens.model_copy(update={"access_token": make_jwt(exp_in=-10)})}
        )
        with pytest.raises(AuthError, match="devauth accounts refresh"):
            export_auth_payload(account)

    def test_non_finite_exp_is_refused(self, provider, tokens) -> None:
        payload = base64.urlsafe_b64encode(b'{"exp": Infinity}').rstrip(b"=").decode("ascii")
        access = f"header.{payload}.sig"
        account = account_from_tokens(provider, tokens).model_copy(
            update={"tokens": tokens.model_copy(update={"access_token": access})}
        )
        with pytest.raises(AuthError):
            export_auth_payload(account)


class TestWriteAuthFile:
    def test_merges_existing_entries(self, provider, tokens, tmp_path) -> None:
        path = tmp_path / "auth.json"
        path.write_text(json.dumps({"anthropic": {"type": "api", "key": "k"}}))
        write_auth_file(account_from_tokens(provider, tokens), path)
        content = json.loads(path.read_text())
        assert content["anthropic"] == {"type": "api", "key": "k"}
        assert content["openai"]["access"] == tokens.access_token

    def test_custom_key_and_new_file(self, provider, tokens, tmp_path) -> None:
        path = tmp_path / "nested" / "auth.json"
        write_auth_file(account_from_tokens(provider, tokens), path, key="acme")
        assert list(json.loads(path.read_text())) == ["acme"]

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_file_is_private(self, provider, tokens, tmp_path) -> None:
        path = tmp_path / "auth.json"
        write_auth_file(account_from_tokens(provider, tokens), path)
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_invalid_json(self, provider, tokens, tmp_path) -> None:
        path = tmp_path / "auth.json"
        path.write_text("{broken")
        with pytest.raises(ConfigError):
            write_auth_file(account_from_tokens(provider, tokens), path)
        assert path.read_text() == "{broken"
