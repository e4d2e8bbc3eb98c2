"""Interfaces for the tracker's pose and command collaborators."""

from __future__ import annotations

from typing import Callable, Optional

from .pose import PoseStamped, TwistStamped

PoseCallback = Callable[[PoseStamped], None]


class TransformProvider:
    """Pull source for the current end-effector pose.

    Implementations may be simulated or fed by a robot driver bridge.
    """

    def get_current_pose(self) -> Optional[PoseStamped]:
        """Return the end-effector pose in the tracking frame, or None when
        no new sample is available."""
        raise NotImplementedError

    def close(self) -> None:
        pass


class CommandSink:
    """Fire-and-forget consumer of one twist per control cycle."""

    def send(self, twist: TwistStamped) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class TargetPoseSource:
    """Push source for target poses; delivers each update to a callback."""

    def start(self, on_pose: PoseCallback) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass
