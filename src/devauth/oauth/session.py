"""Single-slot, lock-guarded storage for the in-flight authorization session.

Only one authorization flow can be pending at a time: the loopback
listener owns a fixed port and the provider redirects to exactly one
``redirect_uri``. :class:`SessionStore` holds that one :class:`Session`
and is shared by reference between the orchestrator (asyncio side) and the
listener's polling loop (worker thread side).

The store's lock is held only for the duration of a single method call and
never across network I/O.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from devauth.exceptions import AuthError, LoginCancelledError

logger = logging.getLogger(__name__)


class CompletionSender:
    """Sending half of the one-shot channel that carries the authorization code.

    Backed by a :class:`concurrent.futures.Future`, which is safe to resolve
    from the listener thread and can be awaited from asyncio via
    :func:`asyncio.wrap_future`. The channel resolves at most once; later
    ``send`` or ``close`` calls are ignored and return ``False``.
    """

    def __init__(self, future: concurrent.futures.Future[str]) -> None:
        self._future = future

    def send(self, code: str) -> bool:
        """Deliver the authorization code. Returns ``False`` if already resolved."""
        try:
            self._future.set_result(code)
        except concurrent.futures.InvalidStateError:
            return False
        return True

    def close(self, reason: AuthError) -> bool:
        """Resolve the channel without a code; the receiver raises *reason*."""
        try:
            self._future.set_exception(reason)
        except concurrent.futures.InvalidStateError:
            return False
        return True


def new_completion_channel() -> tuple[CompletionSender, concurrent.futures.Future[str]]:
    """Create a one-shot channel and return ``(sender, receiver)``."""
    future: concurrent.futures.Future[str] = concurrent.futures.Future()
    return CompletionSender(future), future


@dataclass(frozen=True)
class SessionView:
    """Read-only snapshot of a session, safe to use outside the lock."""

    code_verifier: str
    state: str
    port: int


@dataclass
class Session:
    """The in-flight authorization session.

    Attributes:
        code_verifier: PKCE secret proven at code exchange.
        state: CSRF token the callback must echo back.
        port: Loopback port the listener is bound to.
        sender: The completion sender; ``None`` once taken.
    """

    code_verifier: str
    state: str
    port: int
    sender: Optional[CompletionSender] = field(default=None, repr=False)

    def view(self) -> SessionView:
        return SessionView(self.code_verifier, self.state, self.port)


class SessionStore:
    """Mutex-guarded holder for at most one :class:`Session`.

    Example::

        store = SessionStore()
        sender, receiver = new_completion_channel()
        store.begin(Session("verifier", "state", 1455, sender))
        assert store.is_active("state")
        store.clear()
        assert store.current() is None
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._session: Optional[Session] = None

    def begin(self, session: Session) -> None:
        """Install *session*, replacing whatever the slot held.

        A replaced session's listener notices the state change on its next
        poll and exits. Its untaken sender is closed so a waiter on the old
        flow wakes up instead of hanging until the timeout.
        """
        with self._lock:
            previous = self._session
            self._session = session
        if previous is not None:
            logger.info("Replacing pending OAuth session on port %d", previous.port)
            _close_sender(previous, LoginCancelledError("Superseded by a newer login"))

    def current(self) -> Optional[SessionView]:
        """Return a snapshot of the active session, or ``None``."""
        with self._lock:
            if self._session is None:
                return None
            return self._session.view()

    def take_completion_sender(self, state: Optional[str] = None) -> Optional[CompletionSender]:
        """Remove and return the active session's sender.

        Returns ``None`` when there is no session, when *state* is given and
        does not match the active session, or when the sender was already
        taken. This guarantees at-most-once delivery of the code.
        """
        with self._lock:
            if self._session is None:
                return None
            if state is not None and self._session.state != state:
                return None
            sender = self._session.sender
            self._session.sender = None
            return sender

    def is_active(self, state: str) -> bool:
        """Return True if the active session's state equals *state*."""
        with self._lock:
            return self._session is not None and self._session.state == state

    def clear(self) -> None:
        """Empty the slot. No-op when already empty."""
        with self._lock:
            previous = self._session
            self._session = None
        if previous is not None:
            _close_sender(previous, LoginCancelledError("Login was cancelled"))

    def clear_if_active(self, state: str, reason: Optional[AuthError] = None) -> bool:
        """Clear the slot only if it still holds the session for *state*.

        Used by a listener that timed out, so it never clears a flow that
        replaced it in the meantime.

        Returns:
            ``True`` if the slot was cleared.
        """
        with self._lock:
            if self._session is None or self._session.state != state:
                return False
            previous = self._session
            self._session = None
        _close_sender(previous, reason or LoginCancelledError("Login was cancelled"))
        return True


def _close_sender(session: Session, reason: AuthError) -> None:
    sender = session.sender
    session.sender = None
    if sender is not None:
        sender.close(reason)
