"""Resource monitor.

Samples process-host memory, CPU and battery on a fixed interval and turns
the readings into an :class:`OperatingTier`. Downgrades apply on the sample
that triggers them; upgrades need several consecutive favourable samples so
noisy readings cannot make the tier oscillate.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import psutil

from sentinel_engine.errors import ResourceMonitorUnavailableError
from sentinel_engine.logging import get_logger
from sentinel_engine.models import OperatingTier

log = get_logger("sentinel_engine.resources.monitor")

TierListener = Callable[[OperatingTier, OperatingTier], None]


@dataclass(frozen=True)
class ResourceSnapshot:
    """One resource reading; all fractions are in [0, 1].

    ``power_fraction`` is the remaining power budget: battery charge when
    discharging, 1.0 on mains power or when no battery is present.
    """

    memory_fraction: float
    cpu_fraction: float
    power_fraction: float = 1.0
    on_battery: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class MonitorStats:
    samples: int = 0
    failed_samples: int = 0
    tier_changes: int = 0
    last_snapshot: ResourceSnapshot | None = None
    last_error: str | None = None


class ResourceMonitor:
    """Periodic resource sampler with hysteretic tier selection."""

    def __init__(
        self,
        *,
        interval_seconds: float = 5.0,
        high_water: float = 0.8,
        low_water: float = 0.5,
        power_critical: float = 0.2,
        upgrade_samples: int = 2,
        initial_tier: OperatingTier = OperatingTier.BALANCED,
    ) -> None:
        self._interval = interval_seconds
        self._high_water = high_water
        self._low_water = low_water
        self._power_critical = power_critical
        self._upgrade_samples = upgrade_samples
        self._tier = initial_tier
        self._pending_upgrades: list[OperatingTier] = []
        self._listeners: list[TierListener] = []
        self._stats = MonitorStats()
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def current_tier(self) -> OperatingTier:
        """The tier in effect; a single atomic read."""
        return self._tier

    @property
    def stats(self) -> MonitorStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._running

    def add_listener(self, listener: TierListener) -> None:
        """Register a callback invoked as ``listener(old, new)`` on tier changes."""
        self._listeners.append(listener)

    def sample(self) -> ResourceSnapshot:
        """Read current resource usage.

        Raises:
            ResourceMonitorUnavailableError: If telemetry cannot be read.
        """
        try:
            memory = psutil.virtual_memory().percent / 100
            cpu = psutil.cpu_percent(interval=None) / 100
            battery = psutil.sensors_battery() if hasattr(psutil, "sensors_battery") else None
        except (psutil.Error, OSError, RuntimeError) as e:
            raise ResourceMonitorUnavailableError(f"resource sampling failed: {e}") from e

        on_battery = battery is not None and not battery.power_plugged
        power = battery.percent / 100 if on_battery else 1.0
        return ResourceSnapshot(
            memory_fraction=min(1.0, max(0.0, memory)),
            cpu_fraction=min(1.0, max(0.0, cpu)),
            power_fraction=min(1.0, max(0.0, power)),
            on_battery=on_battery,
        )

    def select_tier(self, snapshot: ResourceSnapshot) -> OperatingTier:
        """Target tier for a single snapshot, without hysteresis."""
        if (
            snapshot.memory_fraction > self._high_water
            or snapshot.cpu_fraction > self._high_water
            or snapshot.power_fraction < self._power_critical
        ):
            return OperatingTier.CONSERVING
        if (
            snapshot.memory_fraction < self._low_water
            and snapshot.cpu_fraction < self._low_water
            and snapshot.power_fraction > 0.5
        ):
            return OperatingTier.FULL
        return OperatingTier.BALANCED

    def observe(self, snapshot: ResourceSnapshot) -> OperatingTier:
        """Feed one snapshot through tier selection and hysteresis."""
        self._stats.samples += 1
        self._stats.last_snapshot = snapshot
        return self._apply_target(self.select_tier(snapshot))

    def refresh(self) -> OperatingTier:
        """Sample and observe once; telemetry failure assumes ``balanced``."""
        try:
            snapshot = self.sample()
        except ResourceMonitorUnavailableError as e:
            self._stats.failed_samples += 1
            self._stats.last_error = str(e)
            log.warning("resource_telemetry_degraded", error=str(e))
            return self._apply_target(OperatingTier.BALANCED)
        return self.observe(snapshot)

    def _apply_target(self, target: OperatingTier) -> OperatingTier:
        current = self._tier
        if target.rank < current.rank:
            self._pending_upgrades.clear()
            self._set_tier(target)
        elif target.rank > current.rank:
            self._pending_upgrades.append(target)
            if len(self._pending_upgrades) >= self._upgrade_samples:
                recent = self._pending_upgrades[-self._upgrade_samples :]
                self._pending_upgrades.clear()
                self._set_tier(min(recent, key=lambda t: t.rank))
        else:
            self._pending_upgrades.clear()
        return self._tier

    def _set_tier(self, tier: OperatingTier) -> None:
        old = self._tier
        if tier == old:
            return
        self._tier = tier
        self._stats.tier_changes += 1
        log.info("operating_tier_changed", old_tier=old.value, new_tier=tier.value)
        for listener in self._listeners:
            try:
                listener(old, tier)
            except Exception as e:
                log.error("tier_listener_failed", error=str(e))

    async def start(self) -> None:
        """Start the sampling loop."""
        if self._running:
            log.warning("resource_monitor_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        log.info("resource_monitor_started", interval=self._interval)

    async def stop(self) -> None:
        """Stop the sampling loop."""
        self._running = False
        task = self._task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            self._task = None
        log.info("resource_monitor_stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                self.refresh()
            except Exception as e:
                log.error("resource_monitor_error", error=str(e))
                self._stats.last_error = str(e)
            await asyncio.sleep(self._interval)
