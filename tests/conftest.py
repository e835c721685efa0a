"""Shared test fixtures for devauth.

Provides isolated config environments, output and logging reset, JWT and
provider factories, a mock token endpoint, and the CLI runner. These
fixtures are discovered by pytest and available to all test modules.
"""

from __future__ import annotations

import base64
import json
import logging
import socket
import time
from typing import Any, Callable
from urllib.parse import parse_qsl

import httpx
import pytest

from devauth.models import ProviderConfig
from devauth.output import OutputFormat, OutputManager, reset_output, set_output

TOKEN_URL = "https://auth.example.test/oauth/token"
CLIENT_ID = "test-client"


# ---------------------------------------------------------------------------
# Auto-reset global output and logging state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager and the ``devauth`` logger after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time; CliRunner closes those streams when a test finishes.
    ``configure_logging`` also detaches the ``devauth`` logger from the
    root logger, which would hide records from ``caplog``.
    """
    yield
    reset_output()
    logger = logging.getLogger("devauth")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Isolate configuration and data to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path,
    clears DEVAUTH_* environment variables and changes the working
    directory to tmp_path.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("devauth.config._is_xdg_platform", lambda: True)
    monkeypatch.delenv("DEVAUTH_PROVIDER", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True, no_color=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Token and provider factories
# ---------------------------------------------------------------------------


def _segment(obj: Any) -> str:
    raw = json.dumps(obj).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def encode_jwt(claims: dict[str, Any]) -> str:
    """Build an unsigned compact JWT carrying *claims*."""
    return f"{_segment({'alg': 'none', 'typ': 'JWT'})}.{_segment(claims)}.signature"


@pytest.fixture
def make_jwt() -> Callable[..., str]:
    """Factory for unsigned JWTs; ``make_jwt(exp_in=3600, email=...)``."""

    def _make(exp_in: float | None = 3600, **claims: Any) -> str:
        if exp_in is not None:
            claims["exp"] = int(time.time() + exp_in)
        return encode_jwt(claims)

    return _make


@pytest.fixture
def provider() -> ProviderConfig:
    """A provider whose listener binds an ephemeral port."""
    return ProviderConfig(
        name="acme",
        client_id=CLIENT_ID,
        authorize_url="https://auth.example.test/oauth/authorize",
        token_url=TOKEN_URL,
        scopes=["openid", "profile", "email", "offline_access"],
        callback_port=0,
        extra_authorize_params={"originator": "devauth_tests"},
        account_claim="https://auth.example.test/claims",
    )


# ---------------------------------------------------------------------------
# Mock token endpoint
# ---------------------------------------------------------------------------


class TokenEndpoint:
    """Records form posts and answers with a configurable response."""

    def __init__(self) -> None:
        self.requests: list[dict[str, str]] = []
        self.status_code = 200
        self.payload: Any = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(dict(parse_qsl(request.content.decode("utf-8"))))
        if isinstance(self.payload, (dict, list)):
            return httpx.Response(self.status_code, json=self.payload)
        return httpx.Response(self.status_code, text=str(self.payload))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def token_endpoint() -> TokenEndpoint:
    return TokenEndpoint()


# ---------------------------------------------------------------------------
# Sockets
# ---------------------------------------------------------------------------


@pytest.fixture
def busy_port():
    """A loopback port held by a listening socket for the duration of the test."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(1)
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def closed_port() -> int:
    """A loopback port that nothing is listening on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


@pytest.fixture
def cli_app():
    """The root Typer app with all built-in commands registered."""
    from devauth.app import app, register_commands

    register_commands()
    return app
