"""Canonical Pydantic models shared across all devauth modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`ProviderConfig`, :class:`ListenerConfig` and :class:`GlobalConfig`.

**Flow and credential models** -- produced by the OAuth core and consumed by
the account layer:
    :class:`FlowState`, :class:`TokenRecord`, :class:`AuthorizationRequest`,
    and :class:`AccountCredential`.

All models use Pydantic v2. Token-carrying models are frozen: a refresh
produces a new :class:`TokenRecord` rather than mutating the old one.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Provider config ---


class ProviderConfig(BaseModel):
    """Static description of an identity provider's authorization-code endpoints.

    Only the generic authorization-code + PKCE shape is modelled. Provider
    quirks (extra flags on the authorize URL) go into
    ``extra_authorize_params``.

    Example::

        ProviderConfig(
            name="acme",
            client_id="cli-123",
            authorize_url="https://auth.acme.dev/oauth/authorize",
            token_url="https://auth.acme.dev/oauth/token",
            scopes=["openid", "email", "offline_access"],
        )
    """

    model_config = ConfigDict(extra="allow")

    name: str = Field(description="Provider identifier used on the command line")
    client_id: Optional[str] = Field(
        default=None, description="OAuth client identifier (public client)"
    )
    client_id_source: Optional[str] = Field(
        default=None,
        description="Credential source for the client id: env:VAR or file:/path",
    )
    authorize_url: str = Field(description="Authorization endpoint")
    token_url: str = Field(description="Token endpoint")
    scopes: list[str] = Field(default_factory=list)
    callback_port: int = Field(
        default=1455, description="Fixed loopback port embedded in the redirect URI"
    )
    callback_path: str = Field(default="/auth/callback")
    redirect_host: str = Field(
        default="localhost", description="Host name used in the redirect URI"
    )
    extra_authorize_params: dict[str, str] = Field(
        default_factory=dict,
        description="Provider-specific flags appended to the authorization URL",
    )
    account_claim: Optional[str] = Field(
        default=None,
        description="Namespaced id_token claim holding the provider account id",
    )
    revoke_hint: Optional[str] = Field(
        default=None,
        description="URL where users revoke a prior grant (shown when no refresh token is issued)",
    )

    @property
    def redirect_uri(self) -> str:
        """The redirect URI registered for this provider's loopback listener."""
        return self.redirect_uri_for(self.callback_port)

    def redirect_uri_for(self, port: int) -> str:
        """The redirect URI for a listener actually bound to *port*."""
        return f"http://{self.redirect_host}:{port}{self.callback_path}"


# --- Global config ---


class ListenerConfig(BaseModel):
    """Timing for the loopback callback listener."""

    timeout_seconds: float = 300.0
    poll_interval: float = 0.1


class GlobalConfig(BaseModel):
    """Top-level user configuration stored in ``config.json``."""

    default_provider: Optional[str] = None
    open_browser: bool = True
    refresh_margin_seconds: int = 60
    listener: ListenerConfig = Field(default_factory=ListenerConfig)


# --- Flow models ---


class FlowState(str, enum.Enum):
    """Lifecycle of one authorization flow driven by the orchestrator."""

    IDLE = "idle"
    PREPARING = "preparing"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FlowState.COMPLETED, FlowState.CANCELLED, FlowState.FAILED)


class TokenRecord(BaseModel):
    """Tokens returned by a successful code or refresh exchange."""

    model_config = ConfigDict(frozen=True)

    id_token: str
    access_token: str
    refresh_token: Optional[str] = None


class AuthorizationRequest(BaseModel):
    """Everything the user's browser needs to start the provider's consent page."""

    model_config = ConfigDict(frozen=True)

    auth_url: str
    redirect_uri: str
    scope: str
    state: str
    code_challenge: str


# --- Accounts ---


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountCredential(BaseModel):
    """A provider account together with its current tokens.

    Attributes:
        id: Stable local identifier (derived from provider and account id).
        provider: Name of the :class:`ProviderConfig` that issued the tokens.
        email: Email claim from the ``id_token``, if present.
        account_id: Provider-side account identifier, if present.
        tokens: The latest :class:`TokenRecord`.
        created_at: When the account was first stored.
        last_refreshed_at: When the tokens were last renewed, if ever.
    """

    id: str
    provider: str
    email: Optional[str] = None
    account_id: Optional[str] = None
    tokens: TokenRecord
    created_at: datetime = Field(default_factory=_utcnow)
    last_refreshed_at: Optional[datetime] = None
