"""Token endpoint client: authorization-code and refresh-token grants.

:class:`TokenExchanger` wraps one :class:`httpx.AsyncClient` and maps every
outcome onto the :mod:`devauth.exceptions` taxonomy:

* transport failure (connect, DNS, timeout) -> :class:`ConnectionError_`
* non-2xx status -> :class:`ExchangeRejectedError` with status and body
* 2xx body that is not a JSON object, or lacks ``id_token`` /
  ``access_token`` -> :class:`MalformedTokenResponseError`

The exchanger never carries a refresh token forward on its own; when the
provider omits ``refresh_token`` the returned record holds ``None`` and the
caller decides what to keep.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from devauth.exceptions import (
    ConnectionError_,
    ExchangeRejectedError,
    MalformedTokenResponseError,
)
from devauth.models import TokenRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
_BODY_LOG_LIMIT = 200


class TokenExchanger:
    """Async client for a provider's token endpoint.

    Args:
        token_url: The provider's token endpoint.
        client_id: The public OAuth client id.
        client: Optional pre-built :class:`httpx.AsyncClient` (tests pass
            one backed by :class:`httpx.MockTransport`). When omitted the
            exchanger owns a client and closes it in :meth:`aclose`.
        timeout: Request timeout in seconds for an owned client.

    Example::

        async with TokenExchanger(provider.token_url, client_id) as exchanger:
            record = await exchanger.exchange_code(code, verifier, redirect_uri)
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> TokenExchanger:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying client if this exchanger created it."""
        if self._owns_client:
            await self._client.aclose()

    async def exchange_code(self, code: str, verifier: str, redirect_uri: str) -> TokenRecord:
        """Redeem an authorization code for tokens.

        Args:
            code: The code delivered to the loopback listener.
            verifier: The PKCE ``code_verifier`` of the session.
            redirect_uri: The exact redirect URI sent on the authorization URL.

        Returns:
            The issued :class:`~devauth.models.TokenRecord`.
        """
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
            "code_verifier": verifier,
        }
        data = await self._post(form, action="Token exchange")
        logger.info("Authorization code exchanged for tokens")
        return _token_record(data, action="Token exchange")

    async def refresh(self, refresh_token: str) -> TokenRecord:
        """Obtain fresh tokens with a refresh token.

        The returned record's ``refresh_token`` is ``None`` when the
        provider did not rotate it.
        """
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
        }
        data = await self._post(form, action="Token refresh")
        logger.info("Access token refreshed")
        return _token_record(data, action="Token refresh")

    async def _post(self, form: dict[str, str], action: str) -> dict[str, Any]:
        try:
            response = await self._client.post(
                self.token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as exc:
            raise ConnectionError_(f"{action} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ConnectionError_(f"{action} request failed: {exc}") from exc

        if not response.is_success:
            body = response.text
            logger.warning(
                "%s rejected with status %d: %s",
                action,
                response.status_code,
                body[:_BODY_LOG_LIMIT],
            )
            raise ExchangeRejectedError(response.status_code, body, action=action)

        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedTokenResponseError(
                f"{action} response is not valid JSON: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise MalformedTokenResponseError(f"{action} response is not a JSON object")
        return data


def _token_record(data: dict[str, Any], action: str) -> TokenRecord:
    for field in ("id_token", "access_token"):
        value = data.get(field)
        if not isinstance(value, str) or not value:
            raise MalformedTokenResponseError(f"{action} response missing '{field}' field")
    refresh_token = data.get("refresh_token")
    if not isinstance(refresh_token, str) or not refresh_token:
        refresh_token = None
    return TokenRecord(
        id_token=data["id_token"],
        access_token=data["access_token"],
        refresh_token=refresh_token,
    )
