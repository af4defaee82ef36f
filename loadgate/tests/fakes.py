"""Test doubles for the admission controller's collaborators."""

from threading import Event, Lock
from typing import Iterable, List, Optional

from loadgate.metrics import CpuUsage, LoadReading
from loadgate.spawner import Spawner


class ScriptedSampler:
    """Returns CPU readings from a script; repeats the last one when exhausted."""

    def __init__(self, readings: Iterable[Optional[float]]):
        self._readings = list(readings)
        self.calls = 0

    def measure(self) -> CpuUsage:
        index = min(self.calls, len(self._readings) - 1)
        self.calls += 1
        return CpuUsage(total=self._readings[index])


class ScriptedLoadProbe:
    """Returns load readings from a script; repeats the last one when exhausted."""

    def __init__(self, readings: Iterable[LoadReading]):
        self._readings = list(readings)
        self.calls = 0

    def measure(self) -> LoadReading:
        index = min(self.calls, len(self._readings) - 1)
        self.calls += 1
        return self._readings[index]


class RecordingSpawner(Spawner):
    """Records launched commands instead of running them."""

    def __init__(self, release: Optional[Event] = None, status: int = 0):
        self.commands: List[str] = []
        self._lock = Lock()
        self._release = release
        self._status = status

    def run(self, command: str) -> int:
        with self._lock:
            self.commands.append(command)
        if self._release is not None:
            self._release.wait(timeout=10.0)
        return self._status


class FailingSpawner(Spawner):
    """Simulates a command that cannot be started."""

    def run(self, command: str) -> int:
        raise OSError(f"cannot execute {command}")


class RecordingSleep:
    """Stand-in for time.sleep that records requested durations."""

    def __init__(self, on_sleep=None):
        self.calls: List[float] = []
        self._on_sleep = on_sleep

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._on_sleep is not None:
            self._on_sleep()
