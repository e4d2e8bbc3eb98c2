"""Twist command sink that forwards each command as a UDP JSON datagram.

Packet schema:
{
  "frame_id": "base_link",
  "stamp": 12.5,
  "linear": [vx, vy, vz],
  "angular": [wx, wy, wz]
}
"""

from __future__ import annotations

import json
import logging
import socket

from ..control.pose import TwistStamped
from ..control.pose_provider import CommandSink

logger = logging.getLogger(__name__)


def encode_twist_packet(twist: TwistStamped) -> bytes:
    payload = {
        "frame_id": twist.frame_id,
        "stamp": float(twist.stamp),
        "linear": [float(v) for v in twist.linear],
        "angular": [float(v) for v in twist.angular],
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


class UdpTwistCommandSink(CommandSink):
    def __init__(self, host: str = "127.0.0.1", port: int = 24569):
        self.host = str(host)
        self.port = int(port)
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._send_errors = 0
        self._closed = False
        logger.info("[CMD] sink=udp (host=%s, port=%s)", self.host, self.port)

    def send(self, twist: TwistStamped) -> None:
        try:
            self.sock.sendto(encode_twist_packet(twist), (self.host, self.port))
        except OSError as exc:
            self._send_errors += 1
            if self._send_errors == 1 or self._send_errors % 100 == 0:
                logger.warning("[CMD] twist send failed (%d so far): %s", self._send_errors, exc)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.close()
        except OSError:
            pass
