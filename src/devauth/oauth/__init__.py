"""OAuth2 authorization-code + PKCE machinery for devauth.

The main entry points are:

- :class:`SessionOrchestrator` -- runs a flow end to end (``prepare``,
  ``complete``, ``cancel``) and refreshes tokens.
- :class:`SessionStore` -- the single-slot holder of the in-flight session,
  shared with the loopback listener.
- :class:`TokenExchanger` -- async client for the provider's token endpoint.
- :class:`FlowHooks` -- best-effort flow notifications.
- :func:`is_expired` -- fail-closed, unverified JWT expiry check.

Typical usage::

    from devauth.oauth import SessionOrchestrator

    async with SessionOrchestrator(provider) as orchestrator:
        record = await orchestrator.login(open_browser=webbrowser.open)
"""

from devauth.oauth.exchange import TokenExchanger
from devauth.oauth.hooks import FlowEvent, FlowHooks
from devauth.oauth.jwt import decode_jwt_payload, is_expired
from devauth.oauth.orchestrator import SessionOrchestrator, build_authorize_url
from devauth.oauth.session import SessionStore

__all__ = [
    "FlowEvent",
    "FlowHooks",
    "SessionOrchestrator",
    "SessionStore",
    "TokenExchanger",
    "build_authorize_url",
    "decode_jwt_payload",
    "is_expired",
]
