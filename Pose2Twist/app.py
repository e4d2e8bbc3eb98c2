"""
Cartesian pose tracking demo:
- Target pose from a UDP JSON stream or a fixed pose (--target-source)
- Target poses in foreign frames re-expressed via static transforms
- End-effector pose pulled each cycle from a kinematic sim or UDP bridge
- PID bank (x, y, z, orientation magnitude) -> twist command per cycle
- Twist commands to the sim or out over UDP (--backend)
- Exit code reflects the tracking outcome

Deps:
  pip install numpy PyYAML
"""

from __future__ import annotations

import logging
import sys

from .config import AppConfig, parse_args, parse_static_transform
from .control.display_provider import DisplayProvider, NullDisplayProvider, TuiDisplayProvider
from .control.frame_lookup import StaticTransformBuffer
from .control.pid import AxisPidBank, PidConfig
from .control.pose_provider import CommandSink, TargetPoseSource, TransformProvider
from .control.tracking import PoseTracker, TrackingSettings, TrackingStatus
from .pose_providers.simulated import FixedTargetPoseSource, SimulatedEndEffector, target_from_rpy_deg
from .pose_providers.udp_pose import UdpEndEffectorPoseProvider, UdpTargetPoseSource
from .pose_providers.udp_twist_sink import UdpTwistCommandSink

logger = logging.getLogger(__name__)

EXIT_CODES = {
    TrackingStatus.SUCCESS: 0,
    TrackingStatus.NO_RECENT_TARGET_POSE: 2,
    TrackingStatus.NO_RECENT_END_EFFECTOR_POSE: 3,
    TrackingStatus.CANCELLED: 4,
}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_pid_bank(cfg: AppConfig) -> AxisPidBank:
    def axis(name: str) -> PidConfig:
        return PidConfig(
            k_p=getattr(cfg, f"{name}_proportional_gain"),
            k_i=getattr(cfg, f"{name}_integral_gain"),
            k_d=getattr(cfg, f"{name}_derivative_gain"),
            windup_limit=cfg.windup_limit,
            anti_windup=cfg.anti_windup,
        )

    return AxisPidBank(x=axis("x"), y=axis("y"), z=axis("z"), angular=axis("angular"))


def build_tracking_settings(cfg: AppConfig) -> TrackingSettings:
    return TrackingSettings(
        planning_frame=cfg.planning_frame,
        move_group_name=cfg.move_group_name,
        publish_period=cfg.publish_period,
        pose_timeout=cfg.pose_timeout,
        startup_timeout=cfg.startup_timeout,
        startup_poll_period=cfg.startup_poll_ms / 1000.0,
    )


def build_frame_lookup(cfg: AppConfig) -> StaticTransformBuffer:
    buffer = StaticTransformBuffer()
    for spec in cfg.static_transform:
        parent, child, tf = parse_static_transform(spec)
        buffer.set_transform(parent, child, tf)
    logger.info(
        "[FRAMES] %d static transform(s) registered, frames: %s",
        len(cfg.static_transform),
        ", ".join(sorted(buffer.frames())) or "-",
    )
    return buffer


def build_backend(cfg: AppConfig) -> tuple[TransformProvider, CommandSink]:
    if cfg.backend == "sim":
        sim = SimulatedEndEffector(frame_id=cfg.planning_frame, dt=cfg.publish_period)
        return sim, sim
    if cfg.backend == "udp":
        provider = UdpEndEffectorPoseProvider(
            frame_id=cfg.planning_frame,
            host=cfg.ee_bridge_host,
            port=cfg.ee_bridge_port,
        )
        try:
            sink = UdpTwistCommandSink(host=cfg.command_host, port=cfg.command_port)
        except OSError:
            provider.close()
            raise
        return provider, sink
    raise RuntimeError(f"Unsupported backend: {cfg.backend}")


def build_target_source(cfg: AppConfig) -> TargetPoseSource:
    if cfg.target_source == "udp":
        return UdpTargetPoseSource(host=cfg.target_bridge_host, port=cfg.target_bridge_port)
    if cfg.target_source == "fixed":
        pose = target_from_rpy_deg(
            cfg.planning_frame,
            (cfg.target_x, cfg.target_y, cfg.target_z),
            (cfg.target_roll, cfg.target_pitch, cfg.target_yaw),
        )
        return FixedTargetPoseSource(pose, rate_hz=cfg.target_rate_hz)
    raise RuntimeError(f"Unsupported target source: {cfg.target_source}")


def build_display_provider(cfg: AppConfig) -> DisplayProvider:
    if cfg.display_hz <= 0.0:
        return NullDisplayProvider()
    return TuiDisplayProvider(cli_output=cfg.cli_output, display_hz=cfg.display_hz)


def run(cfg: AppConfig) -> TrackingStatus:
    provider, sink = build_backend(cfg)
    display = build_display_provider(cfg)
    tracker = PoseTracker(
        settings=build_tracking_settings(cfg),
        pids=build_pid_bank(cfg),
        transform_provider=provider,
        command_sink=sink,
        frame_lookup=build_frame_lookup(cfg),
        on_cycle=display.update,
    )

    target_source = None
    try:
        target_source = build_target_source(cfg)
        target_source.start(tracker.target_pose_callback)
        status = tracker.track_to_pose(
            (
                cfg.positional_tolerance_x,
                cfg.positional_tolerance_y,
                cfg.positional_tolerance_z,
            ),
            cfg.angular_tolerance,
        )
    except KeyboardInterrupt:
        status = TrackingStatus.CANCELLED
    finally:
        try:
            if target_source is not None:
                target_source.close()
        finally:
            display.close()
            provider.close()
            if sink is not provider:
                sink.close()

    logger.info("[TRACK] finished with status %s", status.name)
    return status


def main(argv=None) -> int:
    cfg = parse_args(argv)
    configure_logging(cfg.log_level)
    logger.info(
        "[CONFIG] frame=%s target_source=%s backend=%s period=%.4fs tol=(%.4f, %.4f, %.4f, %.4f)",
        cfg.planning_frame,
        cfg.target_source,
        cfg.backend,
        cfg.publish_period,
        cfg.positional_tolerance_x,
        cfg.positional_tolerance_y,
        cfg.positional_tolerance_z,
        cfg.angular_tolerance,
    )
    return EXIT_CODES[run(cfg)]


if __name__ == "__main__":
    sys.exit(main())
