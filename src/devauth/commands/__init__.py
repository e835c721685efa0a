"""Built-in CLI sub-commands for devauth.

* :mod:`~devauth.commands.login` -- ``login``, ``url`` and ``cancel``.
* :mod:`~devauth.commands.accounts` -- manage stored accounts.
* :mod:`~devauth.commands.config` -- view and modify global settings.
* :mod:`~devauth.commands.providers` -- inspect provider definitions.

Each module exports either a :class:`typer.Typer` sub-application (for
multi-command groups) or plain callback functions registered directly on
the root app.
"""
