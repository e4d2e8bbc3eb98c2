"""Pose2Twist: drive an end effector to a target pose with Cartesian twist commands."""

__version__ = "0.1.0"
