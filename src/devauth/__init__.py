"""devauth -- OAuth2 authorization-code + PKCE login manager for developer-tool accounts.

A desktop client cannot receive a browser redirect on its own, so devauth
runs a short-lived loopback listener, hands the user an authorization URL,
exchanges the returned code for tokens and keeps those tokens fresh.

Typical workflow::

    devauth login                 # open the browser, store the account
    devauth accounts list         # see stored accounts
    devauth accounts refresh ID   # renew an account's tokens

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: XDG-aware configuration and provider management.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting and Rich logging setup.
    oauth: The authorization-code flow (listener, session store, exchange).
    accounts: Stored accounts built on top of the flow.
"""

__version__ = "0.1.0"
