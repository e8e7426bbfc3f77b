"""SmartThings REST adapter used to power-cycle camera switches."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from .. import constants

LOGGER = logging.getLogger(__name__)

SWITCH_CAPABILITY = "switch"
MAIN_COMPONENT = "main"
COMMAND_OFF = "off"
COMMAND_ON = "on"


class DeviceCommandError(RuntimeError):
    """Raised when a SmartThings request fails at the network or API level."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(slots=True, frozen=True)
class Device:
    device_id: str
    name: str
    label: str

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Device":
        return cls(
            device_id=str(payload.get("deviceId") or ""),
            name=str(payload.get("name") or ""),
            label=str(payload.get("label") or ""),
        )


def build_switch_command(command: str) -> Dict[str, Any]:
    """Return the request body for a single ``switch`` capability command."""

    return {
        "commands": [
            {
                "component": MAIN_COMPONENT,
                "capability": SWITCH_CAPABILITY,
                "command": command,
                "arguments": [],
            }
        ]
    }


class SmartThingsClient:
    """Thin async client over the SmartThings devices API.

    A single ``aiohttp.ClientSession`` is shared by every call; concurrent
    restarts for different devices may use it at the same time.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = constants.DEFAULT_SMARTTHINGS_URL,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = constants.DEFAULT_REQUEST_TIMEOUT_SECONDS,
        settle_seconds: float = constants.DEFAULT_SETTLE_SECONDS,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self.settle_seconds = settle_seconds

    async def __aenter__(self) -> "SmartThingsClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def base_url(self) -> str:
        return self._base_url

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def send_command(self, device_id: str, command: str) -> None:
        """Execute a ``switch`` command against ``device_id``."""

        url = f"{self._base_url}/devices/{device_id}/commands"
        session = self._ensure_session()
        LOGGER.debug("POST %s (command=%s)", url, command)

        try:
            async with session.post(
                url,
                json=build_switch_command(command),
                headers=self._headers(),
                timeout=self._timeout,
            ) as response:
                if response.status != 200:
                    detail = (await response.text()).strip()
                    raise DeviceCommandError(
                        f"SmartThings returned status {response.status} for "
                        f"'{command}' on device {device_id}: {detail}",
                        status=response.status,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DeviceCommandError(
                f"Network error sending '{command}' to device {device_id}: {exc!r}"
            ) from exc

    async def turn_off(self, device_id: str) -> None:
        await self.send_command(device_id, COMMAND_OFF)

    async def turn_on(self, device_id: str) -> None:
        await self.send_command(device_id, COMMAND_ON)

    async def restart_device(self, device_id: str) -> None:
        """Turn the switch off, wait for the settle period, then turn it on.

        If the off command fails the on command is never sent. If the on
        command fails the device is left off and the error propagates.
        """

        LOGGER.info("Turning OFF device %s", device_id)
        await self.turn_off(device_id)

        LOGGER.info(
            "Waiting %.0f seconds before turning device %s ON",
            self.settle_seconds,
            device_id,
        )
        await asyncio.sleep(self.settle_seconds)

        LOGGER.info("Turning ON device %s", device_id)
        await self.turn_on(device_id)

    async def list_devices(self) -> List[Device]:
        """Return every device visible to the configured token."""

        url = f"{self._base_url}/devices"
        session = self._ensure_session()

        try:
            async with session.get(
                url, headers=self._headers(), timeout=self._timeout
            ) as response:
                if response.status != 200:
                    detail = (await response.text()).strip()
                    raise DeviceCommandError(
                        f"SmartThings returned status {response.status} listing devices: {detail}",
                        status=response.status,
                    )
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DeviceCommandError(
                f"Network error listing devices: {exc!r}"
            ) from exc
        except ValueError as exc:
            raise DeviceCommandError(
                f"Failed to decode device listing: {exc}"
            ) from exc

        if not isinstance(payload, dict):
            raise DeviceCommandError("Device listing response is not a JSON object")

        items = payload.get("items") or []
        return [Device.from_payload(item) for item in items if isinstance(item, dict)]

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session
