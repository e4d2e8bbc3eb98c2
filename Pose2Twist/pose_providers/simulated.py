"""In-process stand-ins for a robot: a kinematic end effector and a fixed target."""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, Optional

import numpy as np

from ..control.pose import PoseStamped, TwistStamped, identity_pose
from ..control.pose_provider import CommandSink, PoseCallback, TargetPoseSource, TransformProvider
from ..math3d.quaternion import axis_angle_to_q, q_mul, q_normalize, rpy_to_q

logger = logging.getLogger(__name__)


class SimulatedEndEffector(TransformProvider, CommandSink):
    """First-order Cartesian kinematics: each twist is integrated over ``dt``.

    Angular velocity is expressed in the tracking frame, so rotation
    increments are applied on the left: q <- dq * q.
    """

    def __init__(
        self,
        frame_id: str,
        dt: float,
        initial_pose: Optional[PoseStamped] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.frame_id = str(frame_id)
        self.dt = float(dt)
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        start = initial_pose or identity_pose(self.frame_id)
        self._position = np.asarray(start.position, dtype=np.float64).reshape(3).copy()
        self._quaternion = q_normalize(start.quaternion)
        self._commands = 0

        logger.info(
            "[SIM] end effector at [%.3f, %.3f, %.3f] in %s (dt=%.4fs)",
            self._position[0],
            self._position[1],
            self._position[2],
            self.frame_id,
            self.dt,
        )

    @property
    def command_count(self) -> int:
        return self._commands

    def get_current_pose(self) -> Optional[PoseStamped]:
        with self._lock:
            return PoseStamped(
                position=self._position.copy(),
                quaternion=self._quaternion.copy(),
                frame_id=self.frame_id,
                stamp=self._clock(),
            )

    def send(self, twist: TwistStamped) -> None:
        if twist.frame_id and twist.frame_id != self.frame_id:
            logger.warning("[SIM] ignoring twist in frame %s (expected %s)", twist.frame_id, self.frame_id)
            return
        v = np.asarray(twist.linear, dtype=np.float64).reshape(3)
        w = np.asarray(twist.angular, dtype=np.float64).reshape(3)
        rate = float(np.linalg.norm(w))
        with self._lock:
            self._position = self._position + v * self.dt
            if rate > 1e-12:
                dq = axis_angle_to_q(w / rate, rate * self.dt)
                self._quaternion = q_normalize(q_mul(dq, self._quaternion))
            self._commands += 1


class FixedTargetPoseSource(TargetPoseSource):
    """Republishes one pose at a fixed rate so the target never goes stale."""

    def __init__(self, pose: PoseStamped, rate_hz: float = 50.0):
        self.pose = pose
        self.period = 1.0 / max(float(rate_hz), 1e-3)
        self._closed = threading.Event()
        self._thread: Optional[threading.Thread] = None

        p = pose.position
        logger.info(
            "[TARGET] provider=fixed [%.3f, %.3f, %.3f] in %s at %.1f Hz",
            p[0],
            p[1],
            p[2],
            pose.frame_id,
            1.0 / self.period,
        )

    def start(self, on_pose: PoseCallback) -> None:
        if self._thread is not None:
            raise RuntimeError("target pose source already started")
        on_pose(self.pose)
        self._thread = threading.Thread(
            target=self._run, args=(on_pose,), name="fixed-target-pose", daemon=True
        )
        self._thread.start()

    def _run(self, on_pose: PoseCallback) -> None:
        while not self._closed.wait(self.period):
            on_pose(self.pose)

    def close(self) -> None:
        self._closed.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)


def target_from_rpy_deg(
    frame_id: str,
    xyz: tuple[float, float, float],
    rpy_deg: tuple[float, float, float],
) -> PoseStamped:
    return PoseStamped(
        position=np.array(xyz, dtype=np.float64),
        quaternion=rpy_to_q(*(math.radians(a) for a in rpy_deg)),
        frame_id=frame_id,
    )
