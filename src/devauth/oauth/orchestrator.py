"""Drives one authorization-code + PKCE flow from URL to tokens.

:class:`SessionOrchestrator` ties the pieces together::

    prepare()   bind listener -> secrets -> SessionStore.begin -> serve in a thread
    complete()  await the code -> exchange it -> clear the store
    cancel()    clear the store -> GET /cancel on the loopback port
    refresh_if_needed(record) / refresh(record)

Its ``state`` attribute follows :class:`~devauth.models.FlowState`::

    IDLE -> PREPARING -> AWAITING_CALLBACK -> EXCHANGING -> COMPLETED
                 \\______________/                 |
                  CANCELLED                     FAILED (from any non-terminal state)

The orchestrator is used from a single event loop; the listener loop is the
only code that runs on another thread, and it talks to the orchestrator only
through the :class:`~devauth.oauth.session.SessionStore` and the one-shot
completion channel.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Callable, Optional
from urllib.parse import quote, urlencode

from devauth.config import resolve_client_id
from devauth.exceptions import (
    AuthError,
    DevauthError,
    ListenerTimeoutError,
    LoginCancelledError,
    MissingRefreshTokenError,
    NoActiveSessionError,
)
from devauth.models import AuthorizationRequest, FlowState, ProviderConfig, TokenRecord
from devauth.oauth.exchange import TokenExchanger
from devauth.oauth.hooks import FLOW_CANCELLED, FLOW_COMPLETED, FLOW_FAILED, FlowEvent, FlowHooks
from devauth.oauth.jwt import DEFAULT_EXPIRY_MARGIN, is_expired
from devauth.oauth.listener import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TIMEOUT,
    CallbackListener,
    anotify_cancel,
    notify_cancel,
)
from devauth.oauth.pkce import generate_pkce_pair, generate_token
from devauth.oauth.session import Session, SessionStore, new_completion_channel

logger = logging.getLogger(__name__)

# Extra time complete() waits beyond the listener's own deadline, so the
# listener's timeout error wins over the orchestrator's.
COMPLETION_GRACE = 5.0


def build_authorize_url(
    provider: ProviderConfig,
    client_id: str,
    redirect_uri: str,
    code_challenge: str,
    state: str,
) -> str:
    """Build the provider authorization URL for one flow.

    Parameter order is ``response_type, client_id, redirect_uri, scope,
    code_challenge, code_challenge_method``, then the provider's extra
    flags, then ``state``. Every value is percent-encoded.
    """
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(provider.scopes),
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    params.update(provider.extra_authorize_params)
    params["state"] = state
    separator = "&" if "?" in provider.authorize_url else "?"
    return f"{provider.authorize_url}{separator}{urlencode(params, safe='', quote_via=quote)}"


class SessionOrchestrator:
    """State machine for one provider's login and refresh operations.

    Args:
        provider: The provider to authenticate against.
        store: Session store shared with the listener; a private one by default.
        exchanger: Token endpoint client; built from *provider* on first use.
        hooks: Optional flow notifications.
        port: Loopback port override; defaults to ``provider.callback_port``.
            ``0`` binds an ephemeral port (tests).
        listener_timeout: Seconds the listener waits for the redirect.
        poll_interval: Seconds between listener liveness checks.
        refresh_margin: Seconds before ``exp`` at which a token counts as expired.

    Example::

        orchestrator = SessionOrchestrator(load_provider("codex"))
        request = await orchestrator.prepare()
        webbrowser.open(request.auth_url)
        record = await orchestrator.complete()
    """

    def __init__(
        self,
        provider: ProviderConfig,
        store: Optional[SessionStore] = None,
        exchanger: Optional[TokenExchanger] = None,
        hooks: Optional[FlowHooks] = None,
        port: Optional[int] = None,
        listener_timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        refresh_margin: int = DEFAULT_EXPIRY_MARGIN,
    ) -> None:
        self.provider = provider
        self.store = store if store is not None else SessionStore()
        self.hooks = hooks
        self.port = provider.callback_port if port is None else port
        self.listener_timeout = listener_timeout
        self.poll_interval = poll_interval
        self.refresh_margin = refresh_margin
        self.state = FlowState.IDLE
        self._exchanger = exchanger
        self._listener: Optional[CallbackListener] = None
        self._listener_task: Optional[asyncio.Future[object]] = None
        self._receiver: Optional[concurrent.futures.Future[str]] = None
        self._flow_state: Optional[str] = None
        self._redirect_uri: Optional[str] = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> SessionOrchestrator:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop any running listener and close an owned token client."""
        if self._listener is not None:
            self._listener.stop()
        await self._join_listener()
        if self._exchanger is not None:
            await self._exchanger.aclose()

    @property
    def exchanger(self) -> TokenExchanger:
        if self._exchanger is None:
            self._exchanger = TokenExchanger(
                self.provider.token_url, resolve_client_id(self.provider)
            )
        return self._exchanger

    # ------------------------------------------------------------------ #
    # Authorization flow
    # ------------------------------------------------------------------ #

    async def prepare(self) -> AuthorizationRequest:
        """Start a flow and return the URL the user must open.

        Binds the loopback listener first, so a busy port fails before any
        URL is handed out. A flow already awaiting its callback is replaced.

        Raises:
            PortInUseError: If the callback port is bound by someone else.
            ListenerError: On other bind failures.
            ConfigError: If the provider's client id cannot be resolved.
        """
        await self._supersede_previous()
        self.state = FlowState.PREPARING
        try:
            client_id = resolve_client_id(self.provider)
            code_verifier, code_challenge = generate_pkce_pair()
            state = generate_token()
            listener = CallbackListener(
                self.store,
                state,
                self.port,
                callback_path=self.provider.callback_path,
                timeout=self.listener_timeout,
                poll_interval=self.poll_interval,
                hooks=self.hooks,
                provider=self.provider.name,
            )
            bound_port = listener.bind()
        except DevauthError as exc:
            self._fail(exc)
            raise

        redirect_uri = self.provider.redirect_uri_for(bound_port)
        sender, receiver = new_completion_channel()
        self.store.begin(Session(code_verifier, state, bound_port, sender))

        self._listener = listener
        self._receiver = receiver
        self._flow_state = state
        self._redirect_uri = redirect_uri
        self._listener_task = asyncio.ensure_future(asyncio.to_thread(listener.serve))
        self._listener_task.add_done_callback(_log_listener_exit)
        self.state = FlowState.AWAITING_CALLBACK
        logger.info("OAuth flow for '%s' awaiting callback on port %d", self.provider.name, bound_port)

        return AuthorizationRequest(
            auth_url=build_authorize_url(
                self.provider, client_id, redirect_uri, code_challenge, state
            ),
            redirect_uri=redirect_uri,
            scope=" ".join(self.provider.scopes),
            state=state,
            code_challenge=code_challenge,
        )

    async def complete(self) -> TokenRecord:
        """Wait for the callback and exchange the code for tokens.

        Raises:
            NoActiveSessionError: If :meth:`prepare` was not called.
            ListenerTimeoutError: If no callback arrived in time.
            LoginCancelledError: If the flow was cancelled or superseded.
            ProviderDeniedError: If the user denied consent.
            ExchangeRejectedError: If the token endpoint refused the code.
        """
        receiver = self._receiver
        flow_state = self._flow_state
        if receiver is None or flow_state is None:
            raise NoActiveSessionError("No login in progress; call prepare() first")

        try:
            code = await asyncio.wait_for(
                asyncio.wrap_future(receiver),
                timeout=self.listener_timeout + COMPLETION_GRACE,
            )
        except asyncio.TimeoutError:
            exc = ListenerTimeoutError(
                f"No authorization callback received within {self.listener_timeout:.0f} seconds"
            )
            self.store.clear_if_active(flow_state, exc)
            if self._flow_state == flow_state and self._listener is not None:
                self._listener.stop()
            self._fail(exc, flow_state)
            raise exc from None
        except LoginCancelledError:
            self._mark_cancelled(flow_state)
            raise
        except AuthError as exc:
            self._fail(exc, flow_state)
            raise

        view = self.store.current()
        if view is None or view.state != flow_state:
            exc = LoginCancelledError("Login was cancelled before the code could be exchanged")
            self._mark_cancelled(flow_state)
            raise exc

        self.state = FlowState.EXCHANGING
        try:
            record = await self.exchanger.exchange_code(code, view.code_verifier, self._redirect_uri or "")
        except DevauthError as exc:
            # The session stays in place so the caller can inspect or cancel it.
            self._fail(exc, flow_state)
            raise

        self.store.clear_if_active(flow_state)
        self._receiver = None
        await self._join_listener()
        self.state = FlowState.COMPLETED
        logger.info("OAuth flow for '%s' completed", self.provider.name)
        self._emit(FlowEvent(FLOW_COMPLETED, provider=self.provider.name, port=view.port))
        return record

    def cancel(self) -> None:
        """Abort the pending flow, if any. Safe to call at any time.

        Clears the store, then wakes the loopback listener with a request
        to its cancel endpoint. When nothing is pending the request still
        goes to the provider's well-known port, which stops a listener left
        behind by another process.
        """
        port = self._begin_cancel()
        if port:
            notify_cancel(port)
        if self._flow_state is not None:
            self._mark_cancelled(self._flow_state)

    async def acancel(self) -> None:
        """:meth:`cancel` for callers on the event loop; the loopback ping does not block it."""
        port = self._begin_cancel()
        if port:
            await anotify_cancel(port)
        if self._flow_state is not None:
            self._mark_cancelled(self._flow_state)

    def _begin_cancel(self) -> int:
        view = self.store.current()
        port = view.port if view is not None else self.port
        self.store.clear()
        if self._listener is not None:
            self._listener.stop()
        return port

    async def login(self, open_browser: Optional[Callable[[str], object]] = None) -> TokenRecord:
        """Run :meth:`prepare`, hand the URL to *open_browser*, then :meth:`complete`.

        A failing *open_browser* is logged; the user can still open the URL
        by hand while the listener waits.
        """
        request = await self.prepare()
        if open_browser is not None:
            try:
                open_browser(request.auth_url)
            except Exception:
                logger.warning("Could not open the browser", exc_info=True)
        return await self.complete()

    # ------------------------------------------------------------------ #
    # Refresh
    # ------------------------------------------------------------------ #

    async def refresh_if_needed(self, record: TokenRecord) -> TokenRecord:
        """Return *record* unchanged while its access token is fresh, else refresh it."""
        if not is_expired(record.access_token, margin=self.refresh_margin):
            return record
        logger.info("Access token for '%s' is expired or about to expire", self.provider.name)
        return await self.refresh(record)

    async def refresh(self, record: TokenRecord) -> TokenRecord:
        """Refresh unconditionally, keeping the old refresh token if none is rotated in.

        Raises:
            MissingRefreshTokenError: If *record* has no refresh token.
        """
        if not record.refresh_token:
            raise MissingRefreshTokenError(self.provider.revoke_hint)
        refreshed = await self.exchanger.refresh(record.refresh_token)
        if refreshed.refresh_token is None:
            refreshed = refreshed.model_copy(update={"refresh_token": record.refresh_token})
        return refreshed

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    async def _supersede_previous(self) -> None:
        previous_state = self._flow_state
        if self._listener is not None:
            self._listener.stop()
        await self._join_listener()
        if previous_state is not None and not self.state.is_terminal:
            # The fixed port is free again; the old waiter must not hang.
            self.store.clear_if_active(
                previous_state, LoginCancelledError("Superseded by a newer login")
            )
        self._listener = None
        self._receiver = None
        self._flow_state = None
        self._redirect_uri = None

    async def _join_listener(self) -> None:
        task = self._listener_task
        if task is None:
            return
        self._listener_task = None
        # Errors are reported by _log_listener_exit.
        await asyncio.wait([task])

    def _mark_cancelled(self, flow_state: str) -> None:
        if flow_state != self._flow_state or self.state.is_terminal:
            return
        self.state = FlowState.CANCELLED
        logger.info("OAuth flow for '%s' cancelled", self.provider.name)
        self._emit(FlowEvent(FLOW_CANCELLED, provider=self.provider.name))

    def _fail(self, exc: Exception, flow_state: Optional[str] = None) -> None:
        if flow_state is not None and flow_state != self._flow_state:
            return
        self.state = FlowState.FAILED
        logger.error("OAuth flow for '%s' failed: %s", self.provider.name, exc)
        self._emit(FlowEvent(FLOW_FAILED, provider=self.provider.name, error=exc))

    def _emit(self, event: FlowEvent) -> None:
        if self.hooks is not None:
            self.hooks.emit(event)


def _log_listener_exit(task: asyncio.Future[object]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Callback listener crashed", exc_info=exc)
