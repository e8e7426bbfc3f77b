"""Stalled-camera detection and throttled switch power-cycling."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Set

from .config import MissingMetricPolicy
from .constants import DEFAULT_COOLDOWN_SECONDS

LOGGER = logging.getLogger(__name__)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

__all__ = [
    "CameraObserver",
    "CameraStats",
    "CooldownRegistry",
    "MissingMetricPolicy",
    "RemediationDispatcher",
    "SnapshotDecodeError",
    "decode_snapshot",
]


class SnapshotDecodeError(ValueError):
    """Raised when a stats payload cannot be decoded into camera snapshots."""


class SwitchController(Protocol):
    async def restart_device(self, device_id: str) -> None:
        """Power-cycle ``device_id``."""


@dataclass(slots=True, frozen=True)
class CameraStats:
    camera_fps: float
    pid: int = 0

    @property
    def stalled(self) -> bool:
        return not self.camera_fps > 0


def decode_snapshot(
    payload: bytes | str,
    *,
    missing_metric: MissingMetricPolicy = MissingMetricPolicy.ZERO,
) -> Dict[str, CameraStats]:
    """Decode a ``frigate/stats`` message into per-camera stats.

    Unknown fields are ignored and a missing ``cameras`` object is an empty
    snapshot. ``null`` values decode as zero.
    """

    try:
        document = json.loads(payload, parse_constant=_reject_constant)
    except (TypeError, ValueError) as exc:
        raise SnapshotDecodeError(f"invalid JSON: {exc}") from exc

    if not isinstance(document, dict):
        raise SnapshotDecodeError("stats payload is not a JSON object")

    cameras = document.get("cameras")
    if cameras is None:
        return {}
    if not isinstance(cameras, dict):
        raise SnapshotDecodeError("'cameras' is not a JSON object")

    snapshot: Dict[str, CameraStats] = {}
    for camera_id, entry in cameras.items():
        if entry is None:
            entry = {}
        if not isinstance(entry, dict):
            raise SnapshotDecodeError(f"stats for camera {camera_id!r} is not an object")

        if "camera_fps" not in entry and missing_metric is MissingMetricPolicy.ERROR:
            raise SnapshotDecodeError(f"camera {camera_id!r} has no camera_fps")

        snapshot[camera_id] = CameraStats(
            camera_fps=_coerce_number(entry.get("camera_fps"), camera_id, "camera_fps"),
            pid=int(_coerce_number(entry.get("pid"), camera_id, "pid", integral=True)),
        )

    return snapshot


def _coerce_number(
    value: Any, camera_id: str, field_name: str, *, integral: bool = False
) -> float | int:
    if value is None:
        return 0 if integral else 0.0
    # bool is an int subclass but never a valid metric
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SnapshotDecodeError(
            f"{field_name} for camera {camera_id!r} is not a number: {value!r}"
        )

    if integral:
        if isinstance(value, float):
            if not value.is_integer():
                raise SnapshotDecodeError(
                    f"{field_name} for camera {camera_id!r} is not an integer: {value!r}"
                )
            value = int(value)
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise SnapshotDecodeError(
                f"{field_name} for camera {camera_id!r} is out of range"
            )
        return value

    try:
        number = float(value)
    except OverflowError as exc:
        raise SnapshotDecodeError(
            f"{field_name} for camera {camera_id!r} is out of range"
        ) from exc
    # 1e400 parses as inf
    if not math.isfinite(number):
        raise SnapshotDecodeError(
            f"{field_name} for camera {camera_id!r} is not finite: {number!r}"
        )
    return number


def _reject_constant(name: str) -> Any:
    raise SnapshotDecodeError(f"invalid JSON literal {name}")


class CooldownRegistry:
    """Per-camera record of the last remediation trigger."""

    def __init__(
        self,
        window_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._last_triggered: Dict[str, float] = {}
        self._lock = threading.Lock()

    def try_acquire(self, camera_id: str) -> Optional[float]:
        """Atomically check the cooldown and claim it for ``camera_id``.

        Returns ``None`` when the caller may proceed (the trigger time has been
        recorded), otherwise the seconds of suppression remaining.
        """

        with self._lock:
            now = self._clock()
            last = self._last_triggered.get(camera_id)
            if last is not None:
                elapsed = now - last
                if elapsed < self.window_seconds:
                    return self.window_seconds - elapsed
            if last is None or now > last:
                self._last_triggered[camera_id] = now
            return None

    def last_triggered(self, camera_id: str) -> Optional[float]:
        with self._lock:
            return self._last_triggered.get(camera_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_triggered)


class RemediationDispatcher:
    """Runs each restart sequence as its own asyncio task.

    Tasks are tracked until they finish so callers can await them with
    :meth:`wait_idle`. Failures are logged and never retried.
    """

    def __init__(self, controller: SwitchController) -> None:
        self._controller = controller
        self._tasks: Set[asyncio.Task[None]] = set()
        self.succeeded = 0
        self.failed = 0

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def dispatch(self, camera_id: str, device_id: str) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(
            self._remediate(camera_id, device_id),
            name=f"restart-{camera_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until every dispatched remediation has finished."""

        while self._tasks:
            pending = list(self._tasks)
            done, _ = await asyncio.wait(pending, timeout=timeout)
            if timeout is not None and len(done) < len(pending):
                raise asyncio.TimeoutError(
                    f"{len(pending) - len(done)} remediation(s) still running"
                )

    async def _remediate(self, camera_id: str, device_id: str) -> None:
        LOGGER.info(
            "Initiating restart sequence for camera '%s' (switch device %s)",
            camera_id,
            device_id,
        )
        try:
            await self._controller.restart_device(device_id)
        except asyncio.CancelledError:
            LOGGER.warning("Restart sequence for camera '%s' cancelled", camera_id)
            raise
        except Exception as exc:
            self.failed += 1
            LOGGER.error(
                "Failed to restart device %s for camera '%s': %s",
                device_id,
                camera_id,
                exc,
            )
        else:
            self.succeeded += 1
            LOGGER.info(
                "Completed restart sequence for camera '%s' (switch device %s)",
                camera_id,
                device_id,
            )


class CameraObserver:
    """Watches camera stats and power-cycles the switch behind stalled feeds."""

    def __init__(
        self,
        controller: SwitchController,
        mapping: Mapping[str, str],
        *,
        registry: Optional[CooldownRegistry] = None,
        dispatcher: Optional[RemediationDispatcher] = None,
        missing_metric: MissingMetricPolicy = MissingMetricPolicy.ZERO,
    ) -> None:
        self._mapping = mapping
        self.registry = registry if registry is not None else CooldownRegistry()
        self.dispatcher = (
            dispatcher
            if dispatcher is not None
            else RemediationDispatcher(controller)
        )
        self.missing_metric = missing_metric

    def handle(self, topic: str, payload: bytes) -> List[str]:
        """Evaluate one stats message; returns the cameras whose restart was dispatched.

        Never blocks on the restart itself; the sequence runs in a task owned
        by :attr:`dispatcher`.
        """

        try:
            snapshot = decode_snapshot(payload, missing_metric=self.missing_metric)
        except SnapshotDecodeError as exc:
            LOGGER.error("Failed to parse stats payload on %s: %s", topic, exc)
            return []

        LOGGER.debug("Received stats for %d cameras on %s", len(snapshot), topic)

        dispatched: List[str] = []
        for camera_id, stats in snapshot.items():
            if not stats.stalled:
                continue

            LOGGER.warning(
                "Detected stalled feed (0 FPS) for camera %s (pid %d)",
                camera_id,
                stats.pid,
            )

            device_id = self._mapping.get(camera_id)
            if device_id is None:
                LOGGER.debug("No switch mapped for camera %s", camera_id)
                continue

            remaining = self.registry.try_acquire(camera_id)
            if remaining is not None:
                LOGGER.info(
                    "Skipped restart for %s: on cooldown for another %.0fs",
                    camera_id,
                    remaining,
                )
                continue

            self.dispatcher.dispatch(camera_id, device_id)
            dispatched.append(camera_id)

        return dispatched
