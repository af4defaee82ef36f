"""
Job Tracker

Slot table of launched commands. The controller thread registers a slot per
launch and polls the running count; each spawner thread marks its own slot
finished. All three operations share one lock.
"""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import List


@dataclass
class JobSlot:
    """
    One launched command.

    Attributes:
        index: Sequential launch number, never reused.
        command: Command text as read from input.
        finished: Set once by the spawner when the command returns.
    """
    index: int
    command: str
    finished: bool = False


class JobTracker:
    """
    Thread-safe table of launched-but-not-yet-finished commands.

    Example:
        tracker = JobTracker()
        slot = tracker.register("sleep 5")
        tracker.running_count()   # 1
        tracker.mark_finished(slot)
        tracker.running_count()   # 0
    """

    def __init__(self):
        self._slots: List[JobSlot] = []
        self._lock = Lock()

    def register(self, command: str) -> int:
        """
        Append a new unfinished slot.

        Args:
            command: Command text being launched.

        Returns:
            The slot's stable index.
        """
        with self._lock:
            index = len(self._slots)
            self._slots.append(JobSlot(index=index, command=command))
            return index

    def mark_finished(self, index: int) -> None:
        """
        Mark a slot finished. Marking an already finished slot is a no-op.

        Raises:
            IndexError: If no slot with this index was registered.
        """
        with self._lock:
            if index < 0 or index >= len(self._slots):
                raise IndexError(f"no job slot {index}")
            self._slots[index].finished = True

    def running_count(self) -> int:
        """Count slots that have not finished yet."""
        with self._lock:
            return sum(1 for slot in self._slots if not slot.finished)

    def slots(self) -> List[JobSlot]:
        """Copy of the slot table for reporting."""
        with self._lock:
            return [JobSlot(s.index, s.command, s.finished) for s in self._slots]

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)
