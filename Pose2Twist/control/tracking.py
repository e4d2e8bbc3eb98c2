"""Closed-loop Cartesian pose tracking.

Each cycle the loop:
- checks whether the goal tolerance is satisfied (success)
- refreshes the end-effector pose and aborts if it went stale
- honors a pending cancellation
- turns the pose error into a twist and hands it to the command sink

Target poses arrive on their own thread through ``target_pose_callback``.
Every exit path ends with the post-motion reset so no integral state leaks
into the next invocation.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

import numpy as np

from .command import CommandSynthesizer
from .error_model import PoseError, compute_pose_error
from .frame_lookup import FrameLookup
from .pid import AxisPidBank, PidErrors
from .pose import PoseStamped, TwistStamped, transform_pose, zero_twist
from .pose_provider import CommandSink, TransformProvider
from .target_cache import TargetPoseCache

logger = logging.getLogger(__name__)


class TrackingStatus(Enum):
    SUCCESS = 0
    NO_RECENT_TARGET_POSE = 1
    NO_RECENT_END_EFFECTOR_POSE = 2
    CANCELLED = 3


class TrackingState(Enum):
    IDLE = "idle"
    WAITING_FOR_FRESH_INPUT = "waiting_for_fresh_input"
    TRACKING = "tracking"
    SUCCEEDED = "succeeded"
    ABORTED_NO_TARGET = "aborted_no_target"
    ABORTED_NO_CURRENT_POSE = "aborted_no_current_pose"
    ABORTED_CANCELLED = "aborted_cancelled"


@dataclass(frozen=True)
class TrackingSettings:
    planning_frame: str
    move_group_name: str = ""
    publish_period: float = 0.01
    pose_timeout: float = 0.1
    startup_timeout: float = 0.1
    startup_poll_period: float = 0.001


@dataclass(frozen=True, slots=True)
class TrackingFrame:
    """Per-cycle snapshot handed to observers (displays, loggers)."""

    cycle: int
    state: TrackingState
    position_error: np.ndarray
    angular_error: float
    twist: TwistStamped


class LoopRate:
    """Sleeps to the next nominal deadline; re-bases after an overrun."""

    def __init__(self, period: float, clock: Callable[[], float], sleep: Callable[[float], None]):
        self.period = float(period)
        self._clock = clock
        self._sleep = sleep
        self._deadline = 0.0

    def reset(self) -> None:
        self._deadline = self._clock() + self.period

    def sleep(self) -> bool:
        """Return False when the cycle overran its deadline."""
        now = self._clock()
        remaining = self._deadline - now
        if remaining > 0.0:
            self._sleep(remaining)
            self._deadline += self.period
            return True
        self._deadline = now + self.period
        return False


class PoseTracker:
    def __init__(
        self,
        settings: TrackingSettings,
        pids: AxisPidBank,
        transform_provider: TransformProvider,
        command_sink: CommandSink,
        frame_lookup: Optional[FrameLookup] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        on_cycle: Optional[Callable[[TrackingFrame], None]] = None,
    ):
        self.settings = settings
        self.pids = pids
        self.synthesizer = CommandSynthesizer(pids)
        self.transform_provider = transform_provider
        self.command_sink = command_sink
        self.frame_lookup = frame_lookup
        self.on_cycle = on_cycle

        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._rate = LoopRate(settings.publish_period, self._clock, self._sleep)

        self._target = TargetPoseCache()
        self._stop_requested = threading.Event()
        self._current_pose: Optional[PoseStamped] = None
        self._current_pose_stamp = -math.inf
        self._angular_error = 0.0
        self._state = TrackingState.IDLE

        logger.info(
            "[TRACK] tracker ready (frame=%s, group=%s, period=%.4fs, pose_timeout=%.3fs)",
            settings.planning_frame,
            settings.move_group_name,
            settings.publish_period,
            settings.pose_timeout,
        )

    @property
    def state(self) -> TrackingState:
        return self._state

    @property
    def angular_error(self) -> float:
        return self._angular_error

    def get_pid_errors(self) -> PidErrors:
        return self.pids.errors()

    def target_pose(self) -> Optional[PoseStamped]:
        entry = self._target.snapshot()
        return None if entry is None else entry.pose

    def target_pose_callback(self, pose: PoseStamped) -> None:
        """Cache a new target pose, re-expressed in the tracking frame.

        A pose whose frame cannot be resolved is dropped and the previous
        target is kept.
        """
        planning_frame = self.settings.planning_frame
        if pose.frame_id and pose.frame_id != planning_frame:
            if self.frame_lookup is None:
                logger.debug(
                    "[TARGET] dropping pose in frame %s: no frame lookup configured",
                    pose.frame_id,
                )
                return
            try:
                tf = self.frame_lookup.lookup_transform(planning_frame, pose.frame_id)
            except LookupError as exc:
                logger.debug("[TARGET] dropping pose in frame %s: %s", pose.frame_id, exc)
                return
            pose = transform_pose(pose, tf, planning_frame)
        elif not pose.frame_id:
            pose = PoseStamped(
                position=pose.position,
                quaternion=pose.quaternion,
                frame_id=planning_frame,
                stamp=pose.stamp,
            )
        self._target.update(pose, self._clock())

    def reset_target_pose(self) -> None:
        self._target.clear()

    def cancel(self) -> None:
        self._stop_requested.set()

    def stop_motion(self) -> None:
        """Cancel tracking and command zero velocity right away."""
        self.cancel()
        self.command_sink.send(zero_twist(self.settings.planning_frame, self._clock()))

    def track_to_pose(
        self,
        positional_tolerance: Sequence[float],
        angular_tolerance: float,
    ) -> TrackingStatus:
        tol = np.asarray(positional_tolerance, dtype=np.float64).reshape(3)
        try:
            return self._track(tol, float(angular_tolerance))
        except KeyboardInterrupt:
            logger.warning("[TRACK] interrupted, commanding zero velocity")
            self._state = TrackingState.ABORTED_CANCELLED
            self.command_sink.send(zero_twist(self.settings.planning_frame, self._clock()))
            raise
        finally:
            self._do_post_motion_reset()

    def _track(self, tol: np.ndarray, angular_tolerance: float) -> TrackingStatus:
        s = self.settings

        self._state = TrackingState.WAITING_FOR_FRESH_INPUT
        # Force a wait for a target newer than this call.
        self._target.roll_back(self._clock() - 2.0 * s.pose_timeout)

        start = self._clock()
        while (not self._have_recent_target_pose() or not self._have_recent_end_effector_pose()) and (
            self._clock() - start
        ) < s.startup_timeout:
            self._update_current_pose()
            self._sleep(s.startup_poll_period)

        if not self._have_recent_target_pose():
            logger.error("[TRACK] The target pose was not updated recently. Aborting.")
            return self._finish(TrackingState.ABORTED_NO_TARGET, TrackingStatus.NO_RECENT_TARGET_POSE)

        self._state = TrackingState.TRACKING
        self._rate.reset()
        cycle = 0
        while True:
            if self._satisfies_pose_tolerance(tol, angular_tolerance):
                logger.info("[TRACK] goal tolerance satisfied after %d cycles", cycle)
                return self._finish(TrackingState.SUCCEEDED, TrackingStatus.SUCCESS)

            self._update_current_pose()
            if not self._have_recent_end_effector_pose():
                logger.error("[TRACK] The end effector pose was not updated in time. Aborting.")
                return self._finish(
                    TrackingState.ABORTED_NO_CURRENT_POSE,
                    TrackingStatus.NO_RECENT_END_EFFECTOR_POSE,
                )
            if self._stop_requested.is_set():
                logger.info("[TRACK] Halting motion, a stop was requested.")
                return self._finish(TrackingState.ABORTED_CANCELLED, TrackingStatus.CANCELLED)

            error = self._current_error()
            if error is None:
                logger.error("[TRACK] The target pose was cleared while tracking. Aborting.")
                return self._finish(TrackingState.ABORTED_NO_TARGET, TrackingStatus.NO_RECENT_TARGET_POSE)

            cycle += 1
            twist = self._calculate_twist_command(error)
            self.command_sink.send(twist)
            if self.on_cycle is not None:
                self.on_cycle(
                    TrackingFrame(
                        cycle=cycle,
                        state=self._state,
                        position_error=error.position,
                        angular_error=error.angular_error,
                        twist=twist,
                    )
                )

            if not self._rate.sleep():
                logger.debug("[TRACK] cycle %d overran the %.4fs period", cycle, s.publish_period)

    def _finish(self, state: TrackingState, status: TrackingStatus) -> TrackingStatus:
        self._state = state
        return status

    def _do_post_motion_reset(self) -> None:
        self._stop_requested.clear()
        self._angular_error = 0.0
        self.pids.reset()

    def _have_recent_target_pose(self) -> bool:
        return self._target.is_fresh(self._clock(), self.settings.pose_timeout)

    def _have_recent_end_effector_pose(self) -> bool:
        return (self._clock() - self._current_pose_stamp) < self.settings.pose_timeout

    def _update_current_pose(self) -> None:
        pose = self.transform_provider.get_current_pose()
        if pose is not None:
            self._current_pose = pose
            self._current_pose_stamp = self._clock()

    def _current_error(self) -> Optional[PoseError]:
        entry = self._target.snapshot()
        if entry is None or self._current_pose is None:
            return None
        return compute_pose_error(entry.pose, self._current_pose)

    def _satisfies_pose_tolerance(self, positional_tolerance: np.ndarray, angular_tolerance: float) -> bool:
        error = self._current_error()
        if error is None:
            return False
        # Cache the angular error for tolerance reporting.
        self._angular_error = error.angular_error
        return bool(np.all(np.abs(error.position) < positional_tolerance)) and (
            abs(self._angular_error) < angular_tolerance
        )

    def _calculate_twist_command(self, error: PoseError) -> TwistStamped:
        self._angular_error = error.angular_error
        return self.synthesizer.calculate_twist(
            error,
            self.settings.publish_period,
            frame_id=self.settings.planning_frame,
            stamp=self._clock(),
        )
