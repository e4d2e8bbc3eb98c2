"""Pose and twist data structures for Cartesian tracking."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..math3d.quaternion import q_identity
from ..math3d.transform import RigidTransform, transform_orientation, transform_point


@dataclass(frozen=True, slots=True)
class PoseStamped:
    """End-effector or target pose.

    position:
      3D translation [x, y, z], meters, in ``frame_id``.
    quaternion:
      Orientation quaternion [w, x, y, z], unit length.
    stamp:
      Seconds on the producer's clock. Freshness never relies on it.
    """

    position: np.ndarray
    quaternion: np.ndarray
    frame_id: str = ""
    stamp: float = 0.0


@dataclass(frozen=True, slots=True)
class TwistStamped:
    """Cartesian velocity command: linear m/s, angular rad/s."""

    frame_id: str
    linear: np.ndarray
    angular: np.ndarray
    stamp: float = 0.0


def identity_pose(frame_id: str = "", stamp: float = 0.0) -> PoseStamped:
    return PoseStamped(
        position=np.zeros(3, dtype=np.float64),
        quaternion=q_identity(),
        frame_id=frame_id,
        stamp=stamp,
    )


def zero_twist(frame_id: str, stamp: float = 0.0) -> TwistStamped:
    return TwistStamped(
        frame_id=frame_id,
        linear=np.zeros(3, dtype=np.float64),
        angular=np.zeros(3, dtype=np.float64),
        stamp=stamp,
    )


def transform_pose(pose: PoseStamped, tf: RigidTransform, frame_id: str) -> PoseStamped:
    """Re-express ``pose`` through ``tf`` (which maps pose.frame_id into frame_id)."""
    return PoseStamped(
        position=transform_point(tf, pose.position),
        quaternion=transform_orientation(tf, pose.quaternion),
        frame_id=frame_id,
        stamp=pose.stamp,
    )
