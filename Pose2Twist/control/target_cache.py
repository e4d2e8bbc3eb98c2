"""Latest-wins target pose slot shared between a pose source and the loop."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

from .pose import PoseStamped


@dataclass(frozen=True, slots=True)
class CachedPose:
    pose: PoseStamped
    # Arrival time on the tracker clock, not the message stamp.
    received_at: float


class TargetPoseCache:
    """Holds one immutable (pose, received_at) snapshot, swapped whole."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entry: Optional[CachedPose] = None

    def update(self, pose: PoseStamped, received_at: float) -> None:
        entry = CachedPose(pose=pose, received_at=float(received_at))
        with self._lock:
            self._entry = entry

    def snapshot(self) -> Optional[CachedPose]:
        with self._lock:
            return self._entry

    def roll_back(self, received_at: float) -> None:
        """Mark the cached pose as received at ``received_at`` (keeps the pose)."""
        with self._lock:
            if self._entry is not None:
                self._entry = CachedPose(pose=self._entry.pose, received_at=float(received_at))

    def clear(self) -> None:
        with self._lock:
            self._entry = None

    def is_fresh(self, now: float, timeout: float) -> bool:
        entry = self.snapshot()
        if entry is None:
            return False
        return (now - entry.received_at) < timeout
