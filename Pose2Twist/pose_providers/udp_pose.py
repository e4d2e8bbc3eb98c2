"""Pose streams over localhost UDP JSON.

This module intentionally avoids robot middleware bindings. A bridge process
(robot driver, mocap, teleop UI) owns device access and sends pose packets.

Expected JSON packet schema:
{
  "frame_id": "base_link",
  "stamp": 12.5,
  "tracked": true,
  "position_m": [x, y, z],
  "quaternion_wxyz": [w, x, y, z]
}
``rotation_matrix`` (3x3, row-major) is accepted in place of the quaternion.
"""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
from typing import Optional

import numpy as np

from ..control.pose import PoseStamped
from ..control.pose_provider import PoseCallback, TargetPoseSource, TransformProvider
from ..math3d.quaternion import q_normalize, rotmat_to_q

logger = logging.getLogger(__name__)


def _parse_pose_payload(payload: dict) -> Optional[PoseStamped]:
    if not bool(payload.get("tracked", True)):
        return None
    position = payload.get("position_m", payload.get("position"))
    quaternion = payload.get("quaternion_wxyz", payload.get("quaternion"))
    rotation = payload.get("rotation_matrix")
    if position is None or (quaternion is None and rotation is None):
        return None

    try:
        p = np.asarray(position, dtype=np.float64).reshape(-1)
        if quaternion is not None:
            q = np.asarray(quaternion, dtype=np.float64).reshape(-1)
        else:
            R = np.asarray(rotation, dtype=np.float64)
            if R.shape != (3, 3) or not np.isfinite(R).all():
                return None
            q = rotmat_to_q(R)
        stamp = float(payload.get("stamp", 0.0))
    except (TypeError, ValueError):
        return None
    if p.size != 3 or q.size != 4:
        return None
    if not np.isfinite(p).all() or not np.isfinite(q).all():
        return None
    if float(np.dot(q, q)) < 1e-12:
        return None

    frame_id = payload.get("frame_id", "")
    return PoseStamped(
        position=p,
        quaternion=q_normalize(q),
        frame_id="" if frame_id is None else str(frame_id),
        stamp=stamp,
    )


def _parse_pose_packet(data: bytes) -> Optional[PoseStamped]:
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    return _parse_pose_payload(payload)


class _UdpPoseReceiver:
    def __init__(self, host: str, port: int):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind((host, int(port)))
        self.sock.setblocking(False)

    def recv_latest(self) -> Optional[PoseStamped]:
        latest = None
        while True:
            try:
                data, _ = self.sock.recvfrom(65535)
            except BlockingIOError:
                break
            except OSError:
                logger.debug("[UDP] receive failed", exc_info=True)
                break
            parsed = _parse_pose_packet(data)
            if parsed is not None:
                latest = parsed
        return latest

    def close(self) -> None:
        self.sock.close()


class UdpTargetPoseSource(TargetPoseSource):
    """Background reader that pushes the newest target pose per poll."""

    def __init__(self, host: str = "127.0.0.1", port: int = 24567, poll_ms: float = 2.0):
        self.host = str(host)
        self.port = int(port)
        self.poll_s = max(0.0005, float(poll_ms) / 1000.0)
        self._receiver = _UdpPoseReceiver(self.host, self.port)
        self._closed = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._recv_count = 0

        logger.info("[TARGET] provider=udp (host=%s, port=%s)", self.host, self.port)

    def start(self, on_pose: PoseCallback) -> None:
        if self._thread is not None:
            raise RuntimeError("target pose source already started")
        self._thread = threading.Thread(
            target=self._run, args=(on_pose,), name="udp-target-pose", daemon=True
        )
        self._thread.start()

    def _run(self, on_pose: PoseCallback) -> None:
        while not self._closed.is_set():
            pose = self._receiver.recv_latest()
            if pose is not None:
                self._recv_count += 1
                if self._recv_count == 1:
                    logger.info("[TARGET] first target packet received on %s:%s", self.host, self.port)
                on_pose(pose)
            self._closed.wait(self.poll_s)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
        try:
            self._receiver.close()
        except OSError:
            pass


class UdpEndEffectorPoseProvider(TransformProvider):
    """End-effector pose pulled from a driver bridge.

    Packets must already be expressed in ``frame_id``; others are dropped.
    """

    def __init__(self, frame_id: str, host: str = "127.0.0.1", port: int = 24568):
        self.frame_id = str(frame_id)
        self.host = str(host)
        self.port = int(port)
        self._receiver = _UdpPoseReceiver(self.host, self.port)
        self._last_warn_t = 0.0
        self._closed = False

        logger.info("[POSE] provider=udp (host=%s, port=%s, frame=%s)", self.host, self.port, self.frame_id)

    def get_current_pose(self) -> Optional[PoseStamped]:
        pose = self._receiver.recv_latest()
        if pose is None:
            return None
        if pose.frame_id and pose.frame_id != self.frame_id:
            now = time.monotonic()
            if (now - self._last_warn_t) > 2.0:
                logger.warning(
                    "[POSE] dropping end-effector pose in frame %s (expected %s)",
                    pose.frame_id,
                    self.frame_id,
                )
                self._last_warn_t = now
            return None
        return PoseStamped(
            position=pose.position,
            quaternion=pose.quaternion,
            frame_id=self.frame_id,
            stamp=pose.stamp,
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._receiver.close()
        except OSError:
            pass
