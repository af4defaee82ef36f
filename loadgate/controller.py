"""
Admission Controller

Core of loadgate: takes commands one at a time and launches each only when
three independent gates pass:

    gate_load = load_1min <= max_load
    gate_cpu  = cpu_usage is unknown or cpu_usage <= max_cpu_percent
    gate_jobs = running_jobs < max_concurrent_jobs

A command that fails any gate stays pending; the controller sleeps for the
polling interval and samples again. It never looks ahead, so commands are
launched in strict input order. Launched commands run on detached threads
that are joined only once the input is exhausted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from threading import Thread
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging
import math
import time

from loadgate.errors import ConfigurationError
from loadgate.metrics import (
    DEFAULT_SAMPLE_INTERVAL_SEC,
    CpuSampler,
    CpuUsage,
    LoadProbe,
    LoadReading,
)
from loadgate.spawner import ShellSpawner, Spawner, run_job
from loadgate.tracker import JobTracker


logger = logging.getLogger(__name__)

MIN_LOAD = 0.5
MIN_CPU_PERCENT = 1.0
MAX_CPU_PERCENT = 100.0
MAX_LAUNCH_DELAY_SEC = 30.0


def _as_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
    if math.isnan(result):
        raise ConfigurationError(f"{name} must not be NaN")
    return result


def _as_int(name: str, value: Any) -> int:
    number = _as_float(name, value)
    if math.isinf(number) or number != int(number):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    return int(number)


@dataclass(frozen=True)
class ThresholdConfig:
    """
    Resource thresholds, fixed for the lifetime of a run.

    Out-of-range values are clamped rather than rejected, the way the
    command line has always treated them; only values that are not numbers
    at all raise ConfigurationError.

    Attributes:
        max_load: Maximum 1-minute load average. Values <= 0 become 0.5.
        max_cpu_percent: Maximum CPU busy-percentage, clamped to [1, 100].
        max_concurrent_jobs: Maximum commands running at once, at least 1.
    """
    max_load: float
    max_cpu_percent: float = 90.0
    max_concurrent_jobs: int = 1

    def __post_init__(self):
        max_load = _as_float("max_load", self.max_load)
        if max_load <= 0:
            max_load = MIN_LOAD
        max_cpu = _as_float("max_cpu_percent", self.max_cpu_percent)
        max_cpu = max(MIN_CPU_PERCENT, min(MAX_CPU_PERCENT, max_cpu))
        max_jobs = max(1, _as_int("max_concurrent_jobs", self.max_concurrent_jobs))

        object.__setattr__(self, "max_load", max_load)
        object.__setattr__(self, "max_cpu_percent", max_cpu)
        object.__setattr__(self, "max_concurrent_jobs", max_jobs)


@dataclass
class ControllerConfig:
    """
    Timing parameters of the admission loop.

    Attributes:
        poll_interval_sec: Sleep before re-sampling a deferred command.
        launch_delay_sec: Extra pause after each launch, clamped to [0, 30].
        cpu_sample_interval_sec: Wait between the two CPU counter snapshots.
    """
    poll_interval_sec: float = 10.0
    launch_delay_sec: float = 0.0
    cpu_sample_interval_sec: float = DEFAULT_SAMPLE_INTERVAL_SEC

    def __post_init__(self):
        self.poll_interval_sec = _as_float("poll_interval_sec", self.poll_interval_sec)
        if self.poll_interval_sec < 0:
            raise ConfigurationError("poll_interval_sec must be >= 0")
        self.cpu_sample_interval_sec = _as_float(
            "cpu_sample_interval_sec", self.cpu_sample_interval_sec
        )
        if self.cpu_sample_interval_sec < 0:
            raise ConfigurationError("cpu_sample_interval_sec must be >= 0")
        delay = _as_float("launch_delay_sec", self.launch_delay_sec)
        self.launch_delay_sec = max(0.0, min(MAX_LAUNCH_DELAY_SEC, delay))


class ControllerPhase(Enum):
    """States of the admission loop."""

    AWAITING_COMMAND = "awaiting_command"
    SAMPLING = "sampling"
    DECIDING = "deciding"
    LAUNCHING = "launching"
    DEFERRED = "deferred"
    DRAINING = "draining"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class GateResult:
    """
    Outcome of a single threshold comparison.

    Attributes:
        name: Gate name ("load", "cpu" or "jobs").
        value: Measured value, None if it could not be measured.
        threshold: Configured limit.
        passed: Whether this gate allows a launch.
        note: Extra context, e.g. that the reading is suspect.
    """
    name: str
    value: Optional[float]
    threshold: float
    passed: bool
    note: str = ""

    def describe(self) -> str:
        verdict = "ok" if self.passed else "over"
        if self.name == "jobs":
            measured, limit = f"{int(self.value)}", f"{int(self.threshold)}"
        elif self.name == "cpu":
            measured = "unknown" if self.value is None else f"{self.value:.1f}%"
            limit = f"{self.threshold:.1f}%"
        else:
            measured, limit = f"{self.value:.2f}", f"{self.threshold:.2f}"
        text = f"{self.name} {measured} (max {limit}) {verdict}"
        if self.note:
            text += f" [{self.note}]"
        return text


@dataclass(frozen=True)
class AdmissionDecision:
    """Per-gate results of one sampling round and the overall verdict."""

    load: GateResult
    cpu: GateResult
    jobs: GateResult

    @property
    def gates(self) -> Tuple[GateResult, GateResult, GateResult]:
        return (self.load, self.cpu, self.jobs)

    @property
    def admit(self) -> bool:
        return all(gate.passed for gate in self.gates)

    @property
    def blocking(self) -> List[str]:
        """Names of the gates that failed."""
        return [gate.name for gate in self.gates if not gate.passed]

    def describe(self) -> str:
        return ", ".join(gate.describe() for gate in self.gates)


def evaluate_gates(
    thresholds: ThresholdConfig,
    load: float,
    cpu_percent: Optional[float],
    running_jobs: int,
    load_ok: bool = True,
) -> AdmissionDecision:
    """
    Apply the three threshold comparisons.

    Args:
        thresholds: Configured limits.
        load: 1-minute load average (used even if load_ok is False).
        cpu_percent: CPU busy-percentage, None if unknown.
        running_jobs: Commands launched and still running.
        load_ok: Whether the load probe succeeded.

    Returns:
        AdmissionDecision; an unknown CPU reading never blocks admission.
    """
    load_gate = GateResult(
        name="load",
        value=load,
        threshold=thresholds.max_load,
        passed=load <= thresholds.max_load,
        note="" if load_ok else "suspect: getloadavg failed",
    )
    cpu_gate = GateResult(
        name="cpu",
        value=cpu_percent,
        threshold=thresholds.max_cpu_percent,
        passed=cpu_percent is None or cpu_percent <= thresholds.max_cpu_percent,
        note="no ticks elapsed" if cpu_percent is None else "",
    )
    jobs_gate = GateResult(
        name="jobs",
        value=running_jobs,
        threshold=thresholds.max_concurrent_jobs,
        passed=running_jobs < thresholds.max_concurrent_jobs,
    )
    return AdmissionDecision(load=load_gate, cpu=cpu_gate, jobs=jobs_gate)


@dataclass
class ControllerState:
    """
    Runtime record of the admission loop.

    Attributes:
        rounds: Number of sampling rounds taken.
        launched_count: Commands launched.
        deferred_count: Rounds that ended in a deferral.
        decision_history: One entry per sampling round.
    """
    rounds: int = 0
    launched_count: int = 0
    deferred_count: int = 0
    decision_history: List[Dict[str, Any]] = field(default_factory=list)

    def record_decision(
        self,
        timestamp: float,
        command: str,
        decision: AdmissionDecision,
        load_ok: bool,
    ) -> None:
        """
        Record a sampling round for later inspection.

        Args:
            timestamp: Time of the decision.
            command: The pending command.
            decision: Gate results of the round.
            load_ok: Whether the load probe succeeded.
        """
        self.rounds += 1
        if decision.admit:
            self.launched_count += 1
        else:
            self.deferred_count += 1
        self.decision_history.append({
            "timestamp": timestamp,
            "command": command,
            "load": decision.load.value,
            "load_ok": load_ok,
            "cpu_percent": decision.cpu.value,
            "running_jobs": decision.jobs.value,
            "admit": decision.admit,
            "blocking": decision.blocking,
        })


class AdmissionController:
    """
    Sequential launcher gated on load, CPU usage and running job count.

    Example:
        controller = AdmissionController(ThresholdConfig(max_load=4.0))
        controller.run(["make -C a", "make -C b"])

    Attributes:
        thresholds: Gate limits.
        config: Loop timing parameters.
    """

    def __init__(
        self,
        thresholds: ThresholdConfig,
        config: Optional[ControllerConfig] = None,
        spawner: Optional[Spawner] = None,
        sampler: Optional[CpuSampler] = None,
        load_probe: Optional[LoadProbe] = None,
        tracker: Optional[JobTracker] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the controller.

        Args:
            thresholds: Gate limits.
            config: Loop timing. Uses defaults if None.
            spawner: Command runner. Defaults to the system shell.
            sampler: CPU sampler. Defaults to psutil counters.
            load_probe: Load probe. Defaults to psutil.getloadavg.
            tracker: Slot table. A fresh one is created if None.
            sleep: Function used for deferral and post-launch waits.
        """
        self.thresholds = thresholds
        self.config = config or ControllerConfig()
        self._spawner = spawner or ShellSpawner()
        self._sampler = sampler or CpuSampler(self.config.cpu_sample_interval_sec)
        self._load_probe = load_probe or LoadProbe()
        self._tracker = tracker if tracker is not None else JobTracker()
        self._sleep = sleep

        self._state = ControllerState()
        self._phase = ControllerPhase.AWAITING_COMMAND
        self._threads: List[Thread] = []

    @property
    def phase(self) -> ControllerPhase:
        return self._phase

    @property
    def tracker(self) -> JobTracker:
        return self._tracker

    def _enter(self, phase: ControllerPhase) -> None:
        self._phase = phase
        logger.debug(f"Controller phase: {phase.value}")

    def sample(self) -> Tuple[LoadReading, CpuUsage, int]:
        """Measure load, CPU usage and running jobs."""
        self._enter(ControllerPhase.SAMPLING)
        usage = self._sampler.measure()
        load = self._load_probe.measure()
        if not load.ok:
            logger.warning(
                f"Warning: getloadavg failed, treating load {load.value:.2f} as suspect"
            )
        running = self._tracker.running_count()
        return load, usage, running

    def decide(self, command: str) -> AdmissionDecision:
        """
        Run one sampling round for the pending command.

        Args:
            command: The command waiting to be launched.

        Returns:
            The gate results; every gate is logged whatever the verdict.
        """
        load, usage, running = self.sample()

        self._enter(ControllerPhase.DECIDING)
        decision = evaluate_gates(
            self.thresholds, load.value, usage.total, running, load_ok=load.ok
        )
        self._state.record_decision(time.time(), command, decision, load.ok)
        logger.info(decision.describe())
        return decision

    def launch(self, command: str) -> Optional[int]:
        """
        Register a slot and start the command on a detached thread.

        Returns:
            Index of the registered slot, or None if the thread could not
            be started. The slot is released in that case.
        """
        self._enter(ControllerPhase.LAUNCHING)
        index = self._tracker.register(command)
        thread = Thread(
            target=run_job,
            args=(self._spawner, self._tracker, index, command),
            name=f"loadgate-job-{index}",
        )
        try:
            thread.start()
        except RuntimeError as e:
            self._tracker.mark_finished(index)
            logger.warning(f"Warning: could not start command {index}: {e}: {command}")
            return None
        self._threads.append(thread)
        logger.info(f"Starting command {index}: {command}")
        return index

    def run(self, commands: Iterable[str]) -> int:
        """
        Admit every command in order, then wait for all of them to finish.

        Args:
            commands: Command texts; consumed lazily, one per admission.

        Returns:
            Number of commands launched.
        """
        pending = iter(commands)
        launched = 0

        self._enter(ControllerPhase.AWAITING_COMMAND)
        command = next(pending, None)
        while command is not None:
            decision = self.decide(command)
            if decision.admit:
                if self.launch(command) is not None:
                    launched += 1
                if self.config.launch_delay_sec > 0:
                    self._sleep(self.config.launch_delay_sec)
                self._enter(ControllerPhase.AWAITING_COMMAND)
                command = next(pending, None)
            else:
                self._enter(ControllerPhase.DEFERRED)
                logger.info(
                    f"Deferring ({', '.join(decision.blocking)} over threshold), "
                    f"retrying in {self.config.poll_interval_sec:g}s: {command}"
                )
                self._sleep(self.config.poll_interval_sec)

        self.drain()
        return launched

    def drain(self) -> None:
        """Join every launched thread."""
        self._enter(ControllerPhase.DRAINING)
        running = self._tracker.running_count()
        if running:
            logger.info(f"Input exhausted, waiting for {running} running command(s)")
        for thread in self._threads:
            thread.join()
        self._threads.clear()
        self._enter(ControllerPhase.TERMINATED)

    def get_decision_history(self) -> List[Dict[str, Any]]:
        """List of all sampling rounds taken so far."""
        return list(self._state.decision_history)

    def get_metrics(self) -> Dict[str, Any]:
        """
        Get a summary of the run so far.

        Returns:
            Dictionary with thresholds, round counters and running jobs.
        """
        return {
            "max_load": self.thresholds.max_load,
            "max_cpu_percent": self.thresholds.max_cpu_percent,
            "max_concurrent_jobs": self.thresholds.max_concurrent_jobs,
            "rounds": self._state.rounds,
            "launched": self._state.launched_count,
            "deferred": self._state.deferred_count,
            "running_jobs": self._tracker.running_count(),
            "phase": self._phase.value,
        }
