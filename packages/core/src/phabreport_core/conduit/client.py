"""Async Conduit API client.

Conduit is plain RPC over HTTP: every procedure is a form-encoded POST to
``<api url><procedure>`` carrying ``api.token``, and every response is a JSON
envelope ``{"result": ..., "error_code": ..., "error_info": ...}``. The
client returns ``result`` as-is; it never retries and never paginates.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from phabreport_core.errors import TransportError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30.0


def _indexed(name: str, values) -> dict[str, Any]:
    """Encode a list the way PHP expects it: ``name[0]=a&name[1]=b``."""
    return {f"{name}[{i}]": value for i, value in enumerate(values)}


class ConduitClient:
    """One authenticated connection to a Conduit host.

    Use as an async context manager so the underlying HTTP connection pool
    is closed when the run ends.
    """

    def __init__(
        self,
        host: str,
        token: str,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.host = host if host.endswith("/") else host + "/"
        self._token = token
        self._http = httpx.AsyncClient(base_url=self.host, timeout=timeout, transport=transport)

    async def __aenter__(self) -> ConduitClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    async def call(self, method: str, params: dict | None = None) -> Any:
        """POST one Conduit procedure and return its ``result`` payload."""
        data = {**(params or {}), "api.token": self._token}
        logger.debug("Conduit call %s (%d param(s))", method, len(data) - 1)

        try:
            response = await self._http.post(method, data=data)
        except httpx.TimeoutException:
            raise TransportError(f"{method}: request timed out", method=method)
        except httpx.HTTPError as e:
            raise TransportError(f"{method}: request failed: {type(e).__name__}", method=method)

        if response.status_code != 200:
            raise TransportError(f"{method}: HTTP {response.status_code}", method=method)

        try:
            body = response.json()
        except ValueError:
            raise TransportError(f"{method}: response is not valid JSON", method=method)

        if not isinstance(body, dict):
            raise TransportError(f"{method}: expected a JSON object, got {type(body).__name__}", method=method)

        if body.get("error_code"):
            raise TransportError(f"{method}: {body['error_code']}: {body.get('error_info') or ''}".rstrip(), method=method)

        return body.get("result")

    # ------------------------------------------------------------------ #
    # Procedures                                                           #
    # ------------------------------------------------------------------ #

    async def whoami(self) -> dict:
        return await self.call("user.whoami")

    async def query_revisions(self, author_phid: str, params: dict | None = None) -> list[dict]:
        # Caller parameters first so the author filter can never be overridden.
        return await self.call("differential.query", {**(params or {}), **_indexed("authors", [author_phid])})

    async def query_diffs(self, revision_id: int) -> dict | list:
        return await self.call("differential.querydiffs", _indexed("revisionIDs", [revision_id]))

    async def get_commit_paths(self, revision_id: int) -> list[str]:
        return await self.call("differential.getcommitpaths", {"revision_id": revision_id})

    async def query_users(self, phids: list[str]) -> list[dict]:
        return await self.call("user.query", _indexed("phids", phids))

    async def query_repositories(self, phids: list[str]) -> list[dict]:
        return await self.call("repository.query", _indexed("phids", phids))
