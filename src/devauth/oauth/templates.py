"""HTML pages served by the loopback callback listener.

The pages are static apart from a short, HTML-escaped message slot. They
are shown in the user's browser tab after the provider redirects back.
"""

from __future__ import annotations

import html

_PAGE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>{title}</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
               display: flex; justify-content: center; align-items: center;
               height: 100vh; margin: 0; background: {background}; }}
        .container {{ text-align: center; color: white; }}
        h1 {{ font-size: 2.5rem; margin-bottom: 1rem; }}
        p {{ font-size: 1.2rem; opacity: 0.9; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>{heading}</h1>
        <p>{message}</p>
    </div>
</body>
</html>"""

_OK_BACKGROUND = "linear-gradient(135deg, #667eea 0%, #764ba2 100%)"
_ERROR_BACKGROUND = "linear-gradient(135deg, #e96443 0%, #904e95 100%)"


def _render(title: str, heading: str, message: str, background: str) -> str:
    return _PAGE.format(
        title=html.escape(title),
        heading=html.escape(heading),
        message=html.escape(message),
        background=background,
    )


SUCCESS_PAGE = _render(
    "Authorization successful",
    "Authorization successful",
    "You can close this window and return to the application.",
    _OK_BACKGROUND,
)

STATE_MISMATCH_PAGE = _render(
    "State mismatch",
    "State mismatch",
    "This redirect does not belong to the login in progress. "
    "Start the login again from the application.",
    _ERROR_BACKGROUND,
)

MISSING_CODE_PAGE = _render(
    "Missing authorization code",
    "Missing authorization code",
    "The redirect carried no authorization code. Start the login again from the application.",
    _ERROR_BACKGROUND,
)

NO_PENDING_LOGIN_PAGE = _render(
    "Login no longer pending",
    "Login no longer pending",
    "This login was cancelled or replaced before the redirect arrived. "
    "Start the login again from the application.",
    _ERROR_BACKGROUND,
)

CANCELLED_PAGE = "Login cancelled"

NOT_FOUND_PAGE = "Not Found"


def denied_page(error: str, description: str = "") -> str:
    """Page shown when the provider redirects back with an ``error``."""
    message = f"The provider returned: {error}"
    if description:
        message += f" - {description}"
    return _render("Authorization failed", "Authorization failed", message, _ERROR_BACKGROUND)
