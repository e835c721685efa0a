"""Persistent account store.

Stores one :class:`~devauth.models.AccountCredential` per file in
``~/.local/share/devauth/accounts/<id>.json`` (XDG) or the
platform-equivalent directory. Files are written atomically with ``0o600``
permissions through :func:`devauth.config.atomic_write`, so tokens are never
world-readable, even momentarily.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Optional

from devauth.config import atomic_write, get_data_dir
from devauth.exceptions import AccountNotFoundError, ConfigError
from devauth.models import AccountCredential

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"[^A-Za-z0-9_.@-]+")


def account_file_id(raw: str) -> str:
    """Turn an arbitrary account key into a file-system safe id."""
    cleaned = _SAFE_ID.sub("_", raw).strip("._")
    if not cleaned:
        raise ConfigError(f"Cannot derive an account id from {raw!r}")
    return cleaned


class AccountStore:
    """Read/write stored accounts.

    Args:
        directory: Override for the accounts directory (defaults to
            ``<data_dir>/accounts``).

    Example::

        store = AccountStore()
        store.save(account)
        assert store.load(account.id).email == account.email
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._dir = directory if directory is not None else get_data_dir() / "accounts"
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, account_id: str) -> Path:
        return self._dir / f"{account_file_id(account_id)}.json"

    def save(self, account: AccountCredential) -> None:
        """Persist *account* atomically with ``0o600`` permissions."""
        data = account.model_dump(mode="json")
        atomic_write(self.path_for(account.id), json.dumps(data, indent=2) + "\n", mode=0o600)
        logger.debug("Saved account %s", account.id)

    def load(self, account_id: str) -> AccountCredential:
        """Load one account.

        Raises:
            AccountNotFoundError: If no file exists for *account_id*.
            ConfigError: If the file exists but cannot be parsed.
        """
        path = self.path_for(account_id)
        if not path.is_file():
            raise AccountNotFoundError(f"No stored account '{account_id}'")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return AccountCredential.model_validate(data)
        except (json.JSONDecodeError, ValueError) as exc:
            raise ConfigError(f"Invalid account file {path}: {exc}") from exc

    def list(self) -> list[AccountCredential]:
        """Return every readable account, sorted by id.

        Unreadable files are logged and skipped so one corrupt entry does
        not hide the others.
        """
        accounts = []
        for path in sorted(self._dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                accounts.append(AccountCredential.model_validate(data))
            except (json.JSONDecodeError, ValueError, OSError):
                logger.warning("Skipping unreadable account file %s", path, exc_info=True)
        return accounts

    def find(self, key: str) -> AccountCredential:
        """Look an account up by id, falling back to a case-insensitive email match.

        Raises:
            AccountNotFoundError: If nothing matches.
        """
        if self.path_for(key).is_file():
            return self.load(key)
        for account in self.list():
            if account.email and account.email.lower() == key.lower():
                return account
        raise AccountNotFoundError(f"No stored account with id or email '{key}'")

    def delete(self, account_id: str) -> None:
        """Remove an account file.

        Raises:
            AccountNotFoundError: If no file exists for *account_id*.
        """
        path = self.path_for(account_id)
        if not path.is_file():
            raise AccountNotFoundError(f"No stored account '{account_id}'")
        path.unlink()
        logger.info("Removed account %s", account_id)
