"""
System Pressure Probes

Provides the two OS-level signals used by the admission controller:

- CPU busy-percentage, derived from two time-spaced snapshots of the
  kernel's cumulative per-state CPU counters:

      usage = 100 * delta(active) / (delta(active) + delta(idle + iowait))

  where active = user + nice + system + irq + softirq + steal + guest +
  guest_nice. Only the aggregate row drives admission; per-core rows are
  reported for observability.

- The 1-minute load average.

A sampling pair with no elapsed ticks yields None ("usage unknown") rather
than a division fault. A failed load probe is reported with ok=False instead
of raising.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Callable, NamedTuple, Optional, Tuple
import logging
import time

import psutil


logger = logging.getLogger(__name__)

# Wait between the two CPU counter snapshots of one sampling round.
DEFAULT_SAMPLE_INTERVAL_SEC = 0.8


@dataclass(frozen=True)
class CpuTicks:
    """
    Cumulative CPU time per scheduler state for one CPU (or the aggregate).

    Values are whatever unit the OS source reports (psutil reports seconds);
    only ratios of deltas are ever used. States the platform does not expose
    are 0.
    """
    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0

    @classmethod
    def from_times(cls, times: object) -> "CpuTicks":
        """Build from a psutil ``scputimes`` tuple (or any object with matching attributes)."""
        return cls(**{f.name: float(getattr(times, f.name, 0.0)) for f in fields(cls)})

    @property
    def active(self) -> float:
        return (
            self.user + self.nice + self.system + self.irq + self.softirq
            + self.steal + self.guest + self.guest_nice
        )

    @property
    def idle_all(self) -> float:
        return self.idle + self.iowait


@dataclass(frozen=True)
class CpuSnapshot:
    """
    Immutable capture of all CPU counters at one point in time.

    Attributes:
        timestamp: Monotonic clock reading at capture time.
        total: Aggregate counters across all CPUs.
        cores: Per-core counters, in OS order.
    """
    timestamp: float
    total: CpuTicks
    cores: Tuple[CpuTicks, ...] = ()


@dataclass(frozen=True)
class CpuUsage:
    """
    Busy-percentages derived from a pair of snapshots.

    Attributes:
        total: Aggregate busy-percentage, or None when unknown.
        per_core: Busy-percentage of each core, None where unknown.
    """
    total: Optional[float]
    per_core: Tuple[Optional[float], ...] = ()

    @property
    def known(self) -> bool:
        return self.total is not None


class LoadReading(NamedTuple):
    """1-minute load average and whether the OS probe succeeded."""
    value: float
    ok: bool


def read_cpu_snapshot() -> CpuSnapshot:
    """
    Capture the current CPU counters via psutil.

    Raises:
        OSError: If the OS counter source cannot be read.
    """
    total = CpuTicks.from_times(psutil.cpu_times())
    cores = tuple(CpuTicks.from_times(t) for t in psutil.cpu_times(percpu=True))
    return CpuSnapshot(timestamp=time.monotonic(), total=total, cores=cores)


def compute_usage(before: CpuTicks, after: CpuTicks) -> Optional[float]:
    """
    Compute the busy-percentage between two counter records.

    Args:
        before: Counters captured first.
        after: Counters captured later.

    Returns:
        Busy-percentage in [0, 100], or None if no ticks elapsed.
    """
    busy = max(0.0, after.active - before.active)
    idle = max(0.0, after.idle_all - before.idle_all)
    total = busy + idle
    if total <= 0:
        return None
    return max(0.0, min(100.0, 100.0 * busy / total))


def usage_between(first: CpuSnapshot, second: CpuSnapshot) -> CpuUsage:
    """Derive aggregate and per-core usage from two snapshots."""
    per_core = tuple(
        compute_usage(before, after)
        for before, after in zip(first.cores, second.cores)
    )
    return CpuUsage(total=compute_usage(first.total, second.total), per_core=per_core)


class CpuSampler:
    """
    Measures CPU busy-percentage over a fixed real-time interval.

    Each call to measure() blocks for the sampling interval; this is the
    dominant latency of one admission round.

    Example:
        sampler = CpuSampler()
        usage = sampler.measure()
        if usage.known:
            print(f"{usage.total:.1f}%")
    """

    def __init__(
        self,
        interval_sec: float = DEFAULT_SAMPLE_INTERVAL_SEC,
        reader: Optional[Callable[[], CpuSnapshot]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the sampler.

        Args:
            interval_sec: Wait between the two snapshots.
            reader: Snapshot source. Defaults to psutil counters.
            sleep: Function used to wait between snapshots.
        """
        self.interval_sec = interval_sec
        self._reader = reader or read_cpu_snapshot
        self._sleep = sleep

    def _capture(self) -> Optional[CpuSnapshot]:
        try:
            return self._reader()
        except OSError as e:
            logger.warning(f"Warning: could not read CPU counters: {e}")
            return None

    def measure(self) -> CpuUsage:
        """
        Take two snapshots separated by the sampling interval.

        Returns:
            CpuUsage whose total is None if the counters could not be read
            or did not advance.
        """
        first = self._capture()
        self._sleep(self.interval_sec)
        second = self._capture()

        if first is None or second is None:
            return CpuUsage(total=None)

        usage = usage_between(first, second)
        if logger.isEnabledFor(logging.DEBUG):
            for core, value in enumerate(usage.per_core):
                shown = "unknown" if value is None else f"{value:.1f}%"
                logger.debug(f"CPU core {core}: {shown}")
        return usage


class LoadProbe:
    """Reads the 1-minute load average without ever raising."""

    def __init__(self, getloadavg: Optional[Callable[[], Tuple[float, float, float]]] = None):
        self._getloadavg = getloadavg or psutil.getloadavg

    def measure(self) -> LoadReading:
        """
        Query the OS load average.

        Returns:
            LoadReading(value, True) on success, LoadReading(0.0, False) if
            the OS primitive failed.
        """
        try:
            return LoadReading(float(self._getloadavg()[0]), True)
        except OSError as e:
            logger.debug(f"getloadavg failed: {e}")
            return LoadReading(0.0, False)
