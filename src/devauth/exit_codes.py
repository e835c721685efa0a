"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific failure category and is referenced by the
corresponding :class:`~devauth.exceptions.DevauthError` subclass.
Wrapper scripts (tray launchers, shell aliases) can inspect the exit code to
tell a busy callback port from a rejected token exchange without parsing
stderr.

Example::

    $ devauth login
    $ echo $?
    8   # EXIT_PORT_IN_USE -- another login is holding the callback port
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""The authorization flow failed."""

EXIT_NOT_FOUND = 4
"""The requested account does not exist in the local store."""

EXIT_PROVIDER_ERROR = 5
"""The provider's token endpoint rejected the request."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_TIMEOUT = 7
"""No authorization callback arrived before the listener timed out."""

EXIT_PORT_IN_USE = 8
"""The loopback callback port is already bound by another process."""

EXIT_CANCELLED = 130
"""The flow was cancelled (Ctrl-C, ``devauth cancel``, or a newer login)."""
