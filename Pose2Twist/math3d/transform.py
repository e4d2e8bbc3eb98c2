"""Rigid transform helpers.

A transform ``T_a_b`` maps coordinates expressed in frame ``b`` into frame
``a``: p_a = R_a_b * p_b + t_a_b.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .quaternion import q_conj, q_identity, q_mul, q_normalize, q_rotate_vec


@dataclass(frozen=True, slots=True)
class RigidTransform:
    translation: np.ndarray
    quaternion: np.ndarray


def identity_transform() -> RigidTransform:
    return RigidTransform(translation=np.zeros(3, dtype=np.float64), quaternion=q_identity())


def make_transform(translation, quaternion) -> RigidTransform:
    t = np.asarray(translation, dtype=np.float64).reshape(3)
    q = q_normalize(np.asarray(quaternion, dtype=np.float64).reshape(4))
    return RigidTransform(translation=t.copy(), quaternion=q)


def transform_point(tf: RigidTransform, p: np.ndarray) -> np.ndarray:
    return q_rotate_vec(tf.quaternion, p) + tf.translation


def transform_orientation(tf: RigidTransform, q: np.ndarray) -> np.ndarray:
    return q_normalize(q_mul(tf.quaternion, q))


def compose_transforms(a: RigidTransform, b: RigidTransform) -> RigidTransform:
    """T_x_z = T_x_y * T_y_z."""
    return RigidTransform(
        translation=transform_point(a, b.translation),
        quaternion=transform_orientation(a, b.quaternion),
    )


def invert_transform(tf: RigidTransform) -> RigidTransform:
    q_inv = q_conj(q_normalize(tf.quaternion))
    return RigidTransform(
        translation=-q_rotate_vec(q_inv, tf.translation),
        quaternion=q_inv,
    )
