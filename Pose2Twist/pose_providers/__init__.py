"""Pose source, end-effector and command sink implementations."""

from .simulated import FixedTargetPoseSource, SimulatedEndEffector
from .udp_pose import UdpEndEffectorPoseProvider, UdpTargetPoseSource
from .udp_twist_sink import UdpTwistCommandSink

__all__ = [
    "FixedTargetPoseSource",
    "SimulatedEndEffector",
    "UdpEndEffectorPoseProvider",
    "UdpTargetPoseSource",
    "UdpTwistCommandSink",
]
