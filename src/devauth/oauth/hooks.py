"""Flow notifications for UI and account-sync collaborators.

This module provides two components:

* :class:`FlowEvent` -- a dataclass describing one step of an authorization
  flow (which event, which port, and the error if the flow failed).
* :class:`FlowHooks` -- a registry of listeners keyed by event name that
  dispatches events in registration order.

Notifications are best effort: a listener that raises is logged and skipped
so that a broken UI callback can never abort a login. ``callback_received``
is emitted from the listener's worker thread; all other events are emitted
from the orchestrator's event loop.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

CALLBACK_RECEIVED = "callback_received"
FLOW_COMPLETED = "flow_completed"
FLOW_CANCELLED = "flow_cancelled"
FLOW_FAILED = "flow_failed"

EVENTS = (CALLBACK_RECEIVED, FLOW_COMPLETED, FLOW_CANCELLED, FLOW_FAILED)

FlowListener = Callable[["FlowEvent"], None]


@dataclass(frozen=True)
class FlowEvent:
    """A single flow notification.

    Attributes:
        name: One of :data:`EVENTS`.
        provider: Name of the provider the flow targets.
        port: Loopback port of the flow, when known.
        error: The failure, for ``flow_failed`` events.
    """

    name: str
    provider: str = ""
    port: Optional[int] = None
    error: Optional[Exception] = None


class FlowHooks:
    """Dispatches :class:`FlowEvent` objects to registered listeners.

    Example::

        hooks = FlowHooks()
        hooks.on(CALLBACK_RECEIVED, lambda event: print("redirect landed"))
        hooks.emit(FlowEvent(CALLBACK_RECEIVED, provider="codex", port=1455))
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[FlowListener]] = defaultdict(list)

    def on(self, event: str, listener: FlowListener) -> None:
        """Register *listener* for *event*.

        Raises:
            ValueError: If *event* is not one of :data:`EVENTS`.
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown flow event '{event}'. Expected one of {EVENTS}")
        self._listeners[event].append(listener)

    def emit(self, event: FlowEvent) -> None:
        """Call every listener registered for ``event.name``."""
        for listener in list(self._listeners.get(event.name, ())):
            try:
                listener(event)
            except Exception:
                logger.warning("Flow listener for '%s' failed", event.name, exc_info=True)
