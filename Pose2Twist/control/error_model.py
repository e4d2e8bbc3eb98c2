"""Position and orientation error between a target and the current pose.

Orientation algorithm:
- q_error = q_desired * q_current^-1
- the axis-angle of q_error gives the rotation still to be performed;
  its angle is the scalar angular error in [0, pi].
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..math3d.quaternion import q_inverse, q_mul, q_normalize, q_to_axis_angle
from .pose import PoseStamped


@dataclass(frozen=True, slots=True)
class PoseError:
    position: np.ndarray
    angular_error: float
    axis: np.ndarray


def orientation_error(q_desired: np.ndarray, q_current: np.ndarray) -> tuple[np.ndarray, float, np.ndarray]:
    """Return (q_error, angle, axis). The axis is arbitrary when angle == 0."""
    q_d = q_normalize(q_desired)
    q_c = q_normalize(q_current)
    q_err = q_mul(q_d, q_inverse(q_c))
    axis, angle = q_to_axis_angle(q_err)
    return q_err, angle, axis


def compute_pose_error(target: PoseStamped, current: PoseStamped) -> PoseError:
    """Error of ``current`` relative to ``target``; both must share a frame."""
    position = np.asarray(target.position, dtype=np.float64).reshape(3) - np.asarray(
        current.position, dtype=np.float64
    ).reshape(3)
    _, angle, axis = orientation_error(target.quaternion, current.quaternion)
    return PoseError(position=position, angular_error=angle, axis=axis)
