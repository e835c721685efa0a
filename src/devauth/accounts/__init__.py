"""Stored provider accounts.

- :class:`AccountStore` -- one JSON file per account in the data directory.
- :func:`login_account` -- run a login and store the account.
- :func:`ensure_fresh` -- refresh an account's tokens when needed.
- :func:`export_auth_payload` -- the ``auth.json`` entry other tools read.
"""

from devauth.accounts.service import (
    account_from_tokens,
    ensure_fresh,
    export_auth_payload,
    login_account,
    write_auth_file,
)
from devauth.accounts.store import AccountStore

__all__ = [
    "AccountStore",
    "account_from_tokens",
    "ensure_fresh",
    "export_auth_payload",
    "login_account",
    "write_auth_file",
]
