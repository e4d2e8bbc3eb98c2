"""Twist command synthesis from pose error and the PID bank."""

from __future__ import annotations

import numpy as np

from .error_model import PoseError
from .pid import AxisPidBank
from .pose import TwistStamped


class CommandSynthesizer:
    """Turns one cycle's pose error into a twist.

    Not pure: every call advances the integral/derivative state of the bank.
    A single scalar PID drives the rotation rate; its output is applied along
    the error axis.
    """

    def __init__(self, pids: AxisPidBank):
        self.pids = pids

    def calculate_twist(
        self,
        error: PoseError,
        dt: float,
        frame_id: str,
        stamp: float = 0.0,
    ) -> TwistStamped:
        p = error.position
        linear = np.array(
            [
                self.pids.x.compute(float(p[0]), dt),
                self.pids.y.compute(float(p[1]), dt),
                self.pids.z.compute(float(p[2]), dt),
            ],
            dtype=np.float64,
        )

        ang_vel_magnitude = self.pids.angular.compute(error.angular_error, dt)
        angular = ang_vel_magnitude * np.asarray(error.axis, dtype=np.float64).reshape(3)

        return TwistStamped(frame_id=frame_id, linear=linear, angular=angular, stamp=stamp)
