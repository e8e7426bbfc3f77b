import asyncio
from pathlib import Path
from typing import Callable, List, Optional

import pytest


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingController:
    """Stand-in for SmartThingsClient that records restart calls."""

    def __init__(
        self,
        *,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.restarted: List[str] = []
        self.error = error
        self.gate = gate
        self.closed = False

    async def restart_device(self, device_id: str) -> None:
        if self.gate is not None:
            await self.gate.wait()
        self.restarted.append(device_id)
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def controller() -> RecordingController:
    return RecordingController()


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[[str], Path]:
    def _write(body: str) -> Path:
        path = tmp_path / "camera-observer.cfg"
        path.write_text(body.strip() + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_controller() -> Callable[..., RecordingController]:
    return RecordingController
