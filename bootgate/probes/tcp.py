"""TCP probe — can we open a socket to host:port?

Good enough for "is Postgres listening yet" without speaking its protocol.
"""

from __future__ import annotations

import asyncio

from bootgate.exceptions import ConfigInvalidError
from bootgate.probes.base import BaseProbe, DEFAULT_PROBE_TIMEOUT


def parse_host_port(target: str) -> tuple[str, int]:
    """Split ``host:port`` (IPv6 hosts in brackets: ``[::1]:5432``)."""
    host, sep, port = target.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ConfigInvalidError(f"tcp target must be 'host:port', got '{target}'")
    return host.strip("[]"), int(port)


class TCPProbe(BaseProbe):
    kind = "tcp"

    def __init__(self, target: str, timeout: float = DEFAULT_PROBE_TIMEOUT) -> None:
        super().__init__(target=target, timeout=timeout)
        self.host, self.port = parse_host_port(target)

    async def _attempt(self) -> bool:
        _reader, writer = await asyncio.open_connection(self.host, self.port)
        writer.close()
        await writer.wait_closed()
        return True
