"""HTTP probe — GET a URL and treat any non-error status as ready.

Chaining services (frontend waits on backend) is just an HTTP probe
pointed at the upstream's readiness endpoint.
"""

from __future__ import annotations

import asyncio

import httpx

from bootgate.probes.base import BaseProbe, DEFAULT_PROBE_TIMEOUT


class HTTPStatusError(Exception):
    """Endpoint answered, but with an error status."""


class HTTPProbe(BaseProbe):
    kind = "http"

    def __init__(
        self,
        target: str,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(target=target, timeout=timeout)
        self._transport = transport

    async def _attempt(self) -> bool:
        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self._transport,
        ) as client:
            try:
                resp = await client.get(self.target)
            except httpx.TimeoutException as e:
                raise asyncio.TimeoutError(str(e)) from e
        if resp.status_code >= 400:
            raise HTTPStatusError(f"HTTP {resp.status_code} from {self.target}")
        return True
