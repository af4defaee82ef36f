"""
loadgate: Admission-Controlled Command Dispatcher

Reads shell commands one at a time and launches each as an independent
process, but only while the machine has headroom. Three gates decide whether
the next command may start:

- 1-minute load average at or below max_load
- CPU busy-percentage (two counter snapshots 0.8s apart) at or below
  max_cpu_percent; an unmeasurable reading never blocks
- fewer than max_concurrent_jobs of its own commands still running

A command that does not pass waits and is re-evaluated; later commands never
overtake it. Once input ends, loadgate waits for every launched command.

Example:
    from loadgate import AdmissionController, ThresholdConfig

    controller = AdmissionController(ThresholdConfig(max_load=4.0, max_concurrent_jobs=2))
    controller.run(["./build.sh a", "./build.sh b", "./build.sh c"])
"""

from __future__ import annotations

__version__ = "0.2.0"

from loadgate.controller import (
    AdmissionController,
    AdmissionDecision,
    ControllerConfig,
    ControllerPhase,
    ControllerState,
    GateResult,
    ThresholdConfig,
    evaluate_gates,
)
from loadgate.errors import ConfigurationError, LoadgateError
from loadgate.metrics import (
    CpuSampler,
    CpuSnapshot,
    CpuTicks,
    CpuUsage,
    LoadProbe,
    LoadReading,
    compute_usage,
)
from loadgate.spawner import ShellSpawner, Spawner
from loadgate.tracker import JobSlot, JobTracker

__all__ = [
    # Admission control
    "AdmissionController",
    "AdmissionDecision",
    "ControllerConfig",
    "ControllerPhase",
    "ControllerState",
    "GateResult",
    "ThresholdConfig",
    "evaluate_gates",
    # Probes
    "CpuSampler",
    "CpuSnapshot",
    "CpuTicks",
    "CpuUsage",
    "LoadProbe",
    "LoadReading",
    "compute_usage",
    # Jobs
    "JobSlot",
    "JobTracker",
    "ShellSpawner",
    "Spawner",
    # Errors
    "ConfigurationError",
    "LoadgateError",
]
