"""Exception hierarchy for devauth.

All exceptions inherit from :class:`DevauthError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`devauth.exit_codes`.
The top-level error handler in :func:`devauth.app.main` catches
``DevauthError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    DevauthError (exit 1)
    +-- InvalidUsageError             (exit 2)
    +-- ConfigError                   (exit 1)
    +-- AccountNotFoundError          (exit 4)
    +-- ConnectionError_              (exit 6)
    +-- AuthError                     (exit 3)
        +-- PortInUseError            (exit 8)
        +-- ListenerError
        +-- ListenerTimeoutError      (exit 7)
        +-- LoginCancelledError       (exit 130)
        +-- ProviderDeniedError
        +-- NoActiveSessionError
        +-- StateMismatchError
        +-- ExchangeRejectedError     (exit 5)
        +-- MalformedTokenResponseError
        +-- MissingRefreshTokenError
        +-- MalformedAccessTokenError
"""

from __future__ import annotations

from devauth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_PORT_IN_USE,
    EXIT_PROVIDER_ERROR,
    EXIT_TIMEOUT,
)


class DevauthError(Exception):
    """Base exception for all devauth errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`devauth.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(DevauthError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(DevauthError):
    """Raised for configuration problems (unknown provider, invalid JSON, bad credential sources)."""

    exit_code = EXIT_GENERIC_FAILURE


class AccountNotFoundError(DevauthError):
    """Raised when an account id or email has no entry in the account store."""

    exit_code = EXIT_NOT_FOUND


class ConnectionError_(DevauthError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class AuthError(DevauthError):
    """Raised when the authorization flow or a token operation fails."""

    exit_code = EXIT_AUTH_FAILURE


# --- Loopback listener ---


class PortInUseError(AuthError):
    """The fixed callback port is already bound.

    The redirect URI embedded in the authorization URL names this exact
    port, so the listener never falls back to another one. The message
    tells the user how to free it.

    Attributes:
        port: The TCP port that could not be bound.
    """

    exit_code = EXIT_PORT_IN_USE

    def __init__(self, port: int):
        self.port = port
        super().__init__(
            f"Callback port {port} is already in use.\n"
            f"Another login may still be waiting for its redirect. Run "
            f"'devauth cancel' to stop it, or close the application that is "
            f"listening on 127.0.0.1:{port} and try again."
        )


class ListenerError(AuthError):
    """The callback listener could not be started for a reason other than a busy port."""


class ListenerTimeoutError(AuthError):
    """No valid authorization callback arrived before the listener timed out."""

    exit_code = EXIT_TIMEOUT


class LoginCancelledError(AuthError):
    """The pending flow was cancelled or replaced by a newer one."""

    exit_code = EXIT_CANCELLED


class ProviderDeniedError(AuthError):
    """The provider redirected back with an ``error`` instead of a ``code``.

    Attributes:
        error: The OAuth ``error`` value (e.g. ``access_denied``).
        description: The optional ``error_description`` value.
    """

    def __init__(self, error: str, description: str = ""):
        self.error = error
        self.description = description
        message = f"Authorization was denied by the provider: {error}"
        if description:
            message += f" - {description}"
        super().__init__(message)


class NoActiveSessionError(AuthError):
    """An operation needed the in-flight session but the store slot is empty."""


class StateMismatchError(AuthError):
    """A callback carried a ``state`` other than the one the listener expects.

    Handled inside the listener (answered with ``400``); it never reaches
    the caller of the flow.
    """

    def __init__(self, expected: str, received: str):
        self.expected = expected
        self.received = received
        super().__init__("OAuth state mismatch on callback")


# --- Token endpoint ---


class ExchangeRejectedError(AuthError):
    """The token endpoint answered with a non-2xx status.

    Attributes:
        status: HTTP status code returned by the provider.
        body: Response body, verbatim, for provider-specific diagnostics.
    """

    exit_code = EXIT_PROVIDER_ERROR

    def __init__(self, status: int, body: str, action: str = "Token exchange"):
        self.status = status
        self.body = body
        super().__init__(f"{action} failed with status {status}: {body}")


class MalformedTokenResponseError(AuthError):
    """The token endpoint answered 2xx but the body lacks a required token field."""


class MissingRefreshTokenError(AuthError):
    """No refresh token is available for an operation that needs one.

    Providers omit ``refresh_token`` when the user already granted consent
    to this client, so the message explains how to force a fresh grant.
    """

    def __init__(self, revoke_hint: str | None = None):
        lines = [
            "No refresh token was returned by the provider.",
            "",
            "This usually means the application was already authorized for this account.",
            "To fix it:",
        ]
        if revoke_hint:
            lines.append(f"  1. Open {revoke_hint}")
        else:
            lines.append("  1. Open the provider's connected-apps settings page")
        lines.append("  2. Revoke access for this application")
        lines.append("  3. Run 'devauth login' again")
        super().__init__("\n".join(lines))


class MalformedAccessTokenError(AuthError):
    """An access token is not a decodable JWT.

    :func:`devauth.oauth.jwt.is_expired` converts this into "expired"
    instead of letting it propagate.
    """
