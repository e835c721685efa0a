"""Loopback HTTP listener that receives the provider's authorization redirect.

The OAuth provider can only redirect a browser to an HTTP(S) URL, so a
desktop client runs a short-lived server on ``127.0.0.1`` and waits for the
browser to land on ``/auth/callback?code=...&state=...``.

:class:`CallbackListener` is split in two phases:

1. :meth:`~CallbackListener.bind` -- synchronous, called before the
   authorization URL is handed out. A busy port raises
   :class:`~devauth.exceptions.PortInUseError`; the listener never picks a
   different port because the redirect URI must match the one embedded in
   the URL.
2. :meth:`~CallbackListener.serve` -- a blocking polling loop meant to run
   in a worker thread. Every poll (100 ms by default) it checks the stop
   flag, whether its session is still the active one in the
   :class:`~devauth.oauth.session.SessionStore`, and the overall deadline
   (5 minutes by default), then waits briefly for one request.

Routes::

    GET /auth/callback  state matches  -> 200, code delivered, loop ends
    GET /auth/callback  state differs  -> 400, keep listening
    GET /auth/callback  no code        -> 400, keep listening
    GET /auth/callback  session gone   -> 409, nothing delivered, loop ends
    GET /auth/callback  error=...      -> 200, flow denied, loop ends
    GET /cancel                        -> 200, session cleared, loop ends
    anything else                      -> 404, keep listening
"""

from __future__ import annotations

import enum
import errno
import logging
import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

import httpx

from devauth.exceptions import (
    ListenerError,
    ListenerTimeoutError,
    LoginCancelledError,
    PortInUseError,
    ProviderDeniedError,
    StateMismatchError,
)
from devauth.oauth import templates
from devauth.oauth.hooks import CALLBACK_RECEIVED, FlowEvent, FlowHooks
from devauth.oauth.session import SessionStore

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
CANCEL_PATH = "/cancel"
DEFAULT_TIMEOUT = 300.0
DEFAULT_POLL_INTERVAL = 0.1


class ListenerOutcome(str, enum.Enum):
    """Why the polling loop ended."""

    CODE = "code"
    DENIED = "denied"
    CANCELLED = "cancelled"
    SUPERSEDED = "superseded"
    STOPPED = "stopped"
    TIMEOUT = "timeout"


class _CallbackServer(HTTPServer):
    """HTTPServer that knows which listener it serves and logs handler errors."""

    listener: "CallbackListener"
    # Two listeners must never share the fixed callback port.
    allow_reuse_port = False

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.warning(
            "Error while handling callback request from %s", client_address, exc_info=True
        )


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer
    # A client that connects but never sends a request line must not stall the loop.
    timeout = 5

    def do_GET(self) -> None:
        listener = self.server.listener
        parsed = urlparse(self.path)

        if parsed.path == listener.callback_path:
            status, body, content_type = listener.handle_callback(parse_qs(parsed.query))
        elif parsed.path == CANCEL_PATH:
            status, body, content_type = listener.handle_cancel()
        else:
            status, body, content_type = 404, templates.NOT_FOUND_PAGE, "text/plain"

        payload = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", f"{content_type}; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("callback listener: " + format, *args)


class CallbackListener:
    """Single-use loopback listener for one authorization flow.

    Args:
        store: The shared session store.
        expected_state: CSRF state of the session this listener serves.
        port: Loopback port to bind; ``0`` picks an ephemeral port (tests).
        callback_path: Path the provider redirects to.
        timeout: Seconds to wait for a valid callback before giving up.
        poll_interval: Seconds between liveness checks.
        hooks: Optional notification hooks (``callback_received``).
        provider: Provider name, carried on emitted events.
    """

    def __init__(
        self,
        store: SessionStore,
        expected_state: str,
        port: int,
        callback_path: str = "/auth/callback",
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        hooks: Optional[FlowHooks] = None,
        provider: str = "",
    ) -> None:
        self._store = store
        self._state = expected_state
        self._requested_port = port
        self.callback_path = callback_path
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._hooks = hooks
        self._provider = provider
        self._server: Optional[_CallbackServer] = None
        self._stop = threading.Event()
        self._outcome: Optional[ListenerOutcome] = None

    @property
    def port(self) -> int:
        """The bound port (the requested one until :meth:`bind` succeeds)."""
        if self._server is not None:
            return self._server.server_address[1]
        return self._requested_port

    @property
    def outcome(self) -> Optional[ListenerOutcome]:
        return self._outcome

    def bind(self) -> int:
        """Bind the loopback socket and return the bound port.

        Raises:
            PortInUseError: If the port is already bound.
            ListenerError: On any other bind failure.
        """
        try:
            server = _CallbackServer((LOOPBACK_HOST, self._requested_port), _CallbackHandler)
        except OSError as exc:
            if exc.errno == errno.EADDRINUSE:
                raise PortInUseError(self._requested_port) from exc
            raise ListenerError(
                f"Cannot bind callback listener on port {self._requested_port}: {exc}"
            ) from exc
        server.listener = self
        server.timeout = self.poll_interval
        self._server = server
        logger.info("OAuth callback listener bound to %s:%d", LOOPBACK_HOST, self.port)
        return self.port

    def stop(self) -> None:
        """Ask the polling loop to exit at its next iteration."""
        self._stop.set()

    def close(self) -> None:
        """Release the socket without serving (used when ``prepare`` fails after bind)."""
        if self._server is not None:
            self._server.server_close()
            self._server = None

    def serve(self) -> ListenerOutcome:
        """Run the polling loop until a code arrives, the flow ends, or time runs out.

        Blocks the calling thread. The socket is closed before returning.

        Returns:
            The :class:`ListenerOutcome` that ended the loop.
        """
        if self._server is None:
            raise ListenerError("serve() called before bind()")
        server = self._server
        deadline = time.monotonic() + self.timeout
        try:
            while self._outcome is None:
                if self._stop.is_set():
                    self._outcome = ListenerOutcome.STOPPED
                elif not self._store.is_active(self._state):
                    logger.info("OAuth session was cancelled or replaced; stopping listener")
                    self._outcome = ListenerOutcome.SUPERSEDED
                elif time.monotonic() >= deadline:
                    logger.error("OAuth callback timed out after %.0f seconds", self.timeout)
                    self._store.clear_if_active(
                        self._state,
                        ListenerTimeoutError(
                            f"No authorization callback received within {self.timeout:.0f} seconds"
                        ),
                    )
                    self._outcome = ListenerOutcome.TIMEOUT
                else:
                    try:
                        server.handle_request()
                    except OSError:
                        logger.warning("Callback listener I/O error", exc_info=True)
        finally:
            server.server_close()
            self._server = None
        logger.debug("OAuth callback listener on port %d exited: %s", self._requested_port, self._outcome.value)
        return self._outcome

    # ------------------------------------------------------------------
    # Request handling (called from the handler, on the serving thread)
    # ------------------------------------------------------------------

    def handle_callback(self, params: dict[str, list[str]]) -> tuple[int, str, str]:
        """Validate a redirect and deliver its code. Returns ``(status, body, content_type)``."""
        received_state = params.get("state", [""])[0]
        try:
            self._check_state(received_state)
        except StateMismatchError:
            logger.warning("Ignoring OAuth callback with mismatched state")
            return 400, templates.STATE_MISMATCH_PAGE, "text/html"

        if "error" in params:
            error = params["error"][0]
            description = params.get("error_description", [""])[0]
            logger.error("Provider denied authorization: %s", error)
            sender = self._store.take_completion_sender(self._state)
            if sender is not None:
                sender.close(ProviderDeniedError(error, description))
            self._store.clear_if_active(self._state)
            self._outcome = ListenerOutcome.DENIED
            return 200, templates.denied_page(error, description), "text/html"

        code = params.get("code", [""])[0]
        if not code:
            logger.warning("OAuth callback carried no authorization code")
            return 400, templates.MISSING_CODE_PAGE, "text/html"

        sender = self._store.take_completion_sender(self._state)
        if sender is None or not sender.send(code):
            logger.warning("OAuth callback arrived after the session ended")
            self._outcome = ListenerOutcome.SUPERSEDED
            return 409, templates.NO_PENDING_LOGIN_PAGE, "text/html"
        self._outcome = ListenerOutcome.CODE
        logger.info("OAuth callback received on port %d", self.port)
        if self._hooks is not None:
            self._hooks.emit(FlowEvent(CALLBACK_RECEIVED, provider=self._provider, port=self.port))
        return 200, templates.SUCCESS_PAGE, "text/html"

    def handle_cancel(self) -> tuple[int, str, str]:
        self._store.clear_if_active(self._state, LoginCancelledError("Login was cancelled"))
        self._outcome = ListenerOutcome.CANCELLED
        logger.info("OAuth login cancelled through the loopback endpoint")
        return 200, templates.CANCELLED_PAGE, "text/plain"

    def _check_state(self, received: str) -> None:
        if received != self._state:
            raise StateMismatchError(self._state, received)


def notify_cancel(port: int, timeout: float = 2.0) -> bool:
    """Wake a listener on *port* by requesting its cancel endpoint.

    Best effort: a listener that already exited (connection refused) is
    not an error.

    Returns:
        ``True`` if a listener answered.
    """
    url = f"http://{LOOPBACK_HOST}:{port}{CANCEL_PATH}"
    try:
        httpx.get(url, timeout=timeout, trust_env=False)
    except httpx.HTTPError as exc:
        logger.debug("No callback listener answered on port %d: %s", port, exc)
        return False
    return True


async def anotify_cancel(port: int, timeout: float = 2.0) -> bool:
    """Async form of :func:`notify_cancel` for callers on an event loop."""
    url = f"http://{LOOPBACK_HOST}:{port}{CANCEL_PATH}"
    try:
        async with httpx.AsyncClient(timeout=timeout, trust_env=False) as client:
            await client.get(url)
    except httpx.HTTPError as exc:
        logger.debug("No callback listener answered on port %d: %s", port, exc)
        return False
    return True
