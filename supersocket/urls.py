# =============================================================================
# SuperSocket -- URL Handling
# =============================================================================

from __future__ import annotations

from typing import Mapping
from urllib.parse import urlencode, urlsplit, urlunsplit

from .constants import ALLOWED_SCHEMES, SECURE_SCHEME
from .errors import InsecureSchemeError, InvalidUrlError


def build_url(
    url: str,
    query_params: Mapping[str, str] | None = None,
    *,
    secure_only: bool = True,
) -> str:
    """Validate *url* and append *query_params* to its query string.

    Raises:
        InvalidUrlError: Not a ``ws://`` / ``wss://`` URL with a host.
        InsecureSchemeError: ``ws://`` while *secure_only* is set.
    """
    try:
        parts = urlsplit(url)
        # Accessing .port validates it
        parts.port
    except (AttributeError, TypeError, ValueError) as exc:
        raise InvalidUrlError(f"Invalid base url: {url!r}") from exc

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES or not parts.hostname:
        raise InvalidUrlError(f"Invalid base url: {url!r}")

    if secure_only and scheme != SECURE_SCHEME:
        raise InsecureSchemeError(
            "Only secured (wss://) URLs are allowed. "
            "Set secure_only=False to allow unsecured connections"
        )

    query = parts.query
    if query_params:
        extra = urlencode(query_params)
        query = f"{query}&{extra}" if query else extra

    return urlunsplit((scheme, parts.netloc, parts.path or "/", query, ""))
