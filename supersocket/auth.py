# =============================================================================
# SuperSocket -- Auth Gate
# =============================================================================

from __future__ import annotations

import httpx

from ._logging import logger
from .errors import AuthRejectedError
from .types import AuthSpec


class AuthGate:
    """Single pre-connect POST that decides whether a connection may start.

    Only a response whose status equals ``spec.ok_status`` lets the
    connection proceed. There is no retry: a rejection is final.
    """

    def __init__(self, spec: AuthSpec, http: httpx.AsyncClient) -> None:
        self._spec = spec
        self._http = http

    async def check(self) -> None:
        """Run the auth call.

        Raises:
            AuthRejectedError: Unexpected status or failed HTTP call.
        """
        spec = self._spec
        try:
            response = await self._http.post(
                spec.endpoint,
                headers=spec.headers,
                json=spec.data,
                timeout=spec.timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("Auth call to %s failed: %s", spec.endpoint, exc)
            raise AuthRejectedError(f"Auth call failed: {exc}") from exc

        if response.status_code != spec.ok_status:
            logger.error(
                "User unauthorized (status %d from %s)",
                response.status_code,
                spec.endpoint,
            )
            raise AuthRejectedError(
                f"User unauthorized (status {response.status_code})",
                status=response.status_code,
            )

        logger.debug("Auth accepted by %s", spec.endpoint)
