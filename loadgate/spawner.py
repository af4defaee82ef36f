"""
Process Spawner

Runs one command string through the OS shell. Each launch runs on its own
thread, synchronously from that thread's point of view; the command's exit
status is not inspected by the controller, only logged at DEBUG.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
import subprocess
import time

from loadgate.tracker import JobTracker


logger = logging.getLogger(__name__)


class Spawner(ABC):
    """Capability to execute a command and return its exit status."""

    @abstractmethod
    def run(self, command: str) -> int:
        """Run the command to completion and return its exit status."""


class ShellSpawner(Spawner):
    """
    Executes commands with the system shell.

    The child inherits stdin/stdout/stderr of this process, so command output
    interleaves with loadgate's own progress lines.
    """

    def run(self, command: str) -> int:
        return subprocess.run(command, shell=True).returncode


def run_job(spawner: Spawner, tracker: JobTracker, index: int, command: str) -> None:
    """
    Thread target for one launched command.

    The slot is marked finished whatever happens to the command: normal exit,
    non-zero exit, or failure to start.

    Args:
        spawner: Executes the command.
        tracker: Owner of the slot to release.
        index: Slot registered for this launch.
        command: Command text.
    """
    start = time.time()
    try:
        status = spawner.run(command)
        logger.debug(
            f"Job {index} exited with status {status} "
            f"after {time.time() - start:.1f}s: {command}"
        )
    except (OSError, ValueError) as e:
        logger.debug(f"Job {index} failed to start: {e}")
    finally:
        tracker.mark_finished(index)
