"""Raw TCP reachability check for the MQTT broker."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_SECONDS = 5.0


@dataclass(slots=True)
class ProbeResult:
    host: str
    port: int
    ok: bool
    error: Optional[str] = None

    def describe(self) -> str:
        if self.ok:
            return f"MQTT connection SUCCESSFUL (port {self.port} on {self.host} is open)"
        return f"MQTT connection FAILED to {self.host}:{self.port}: {self.error}"


async def probe_broker(
    host: str, port: int, *, timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS
) -> ProbeResult:
    """Open and immediately close a TCP connection to ``host:port``."""

    LOGGER.debug("Probing %s:%s (timeout %.1fs)", host, port, timeout)
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except asyncio.TimeoutError:
        return ProbeResult(host, port, ok=False, error=f"timed out after {timeout:g}s")
    except OSError as exc:
        return ProbeResult(host, port, ok=False, error=str(exc) or repr(exc))

    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return ProbeResult(host, port, ok=True)
