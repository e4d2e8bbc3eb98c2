"""CLI config and defaults."""

from __future__ import annotations

import argparse
import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from .math3d.transform import RigidTransform, make_transform


@dataclass(frozen=True)
class AppConfig:
    planning_frame: str = "base_link"
    move_group_name: str = "manipulator"
    publish_period: float = 0.01
    windup_limit: float = 0.05
    anti_windup: bool = True
    x_proportional_gain: float = 1.5
    y_proportional_gain: float = 1.5
    z_proportional_gain: float = 1.5
    x_integral_gain: float = 0.0
    y_integral_gain: float = 0.0
    z_integral_gain: float = 0.0
    x_derivative_gain: float = 0.0
    y_derivative_gain: float = 0.0
    z_derivative_gain: float = 0.0
    angular_proportional_gain: float = 0.5
    angular_integral_gain: float = 0.0
    angular_derivative_gain: float = 0.0
    pose_timeout: float = 0.1
    startup_timeout: float = 0.1
    startup_poll_ms: float = 1.0
    positional_tolerance_x: float = 0.01
    positional_tolerance_y: float = 0.01
    positional_tolerance_z: float = 0.01
    angular_tolerance: float = 0.01
    target_source: str = "udp"
    target_bridge_host: str = "127.0.0.1"
    target_bridge_port: int = 24567
    target_x: float = 0.0
    target_y: float = 0.0
    target_z: float = 0.0
    target_roll: float = 0.0
    target_pitch: float = 0.0
    target_yaw: float = 0.0
    target_rate_hz: float = 50.0
    backend: str = "sim"
    ee_bridge_host: str = "127.0.0.1"
    ee_bridge_port: int = 24568
    command_host: str = "127.0.0.1"
    command_port: int = 24569
    static_transform: tuple[str, ...] = ()
    display_hz: float = 5.0
    cli_output: str = "live"
    log_level: str = "info"


_APP_CONFIG_FIELDS = {f.name for f in fields(AppConfig)}
_BOOL_FIELDS = {"anti_windup"}
_INT_FIELDS = {
    "target_bridge_port",
    "ee_bridge_port",
    "command_port",
}
_FLOAT_FIELDS = {
    "publish_period",
    "windup_limit",
    "x_proportional_gain",
    "y_proportional_gain",
    "z_proportional_gain",
    "x_integral_gain",
    "y_integral_gain",
    "z_integral_gain",
    "x_derivative_gain",
    "y_derivative_gain",
    "z_derivative_gain",
    "angular_proportional_gain",
    "angular_integral_gain",
    "angular_derivative_gain",
    "pose_timeout",
    "startup_timeout",
    "startup_poll_ms",
    "positional_tolerance_x",
    "positional_tolerance_y",
    "positional_tolerance_z",
    "angular_tolerance",
    "target_x",
    "target_y",
    "target_z",
    "target_roll",
    "target_pitch",
    "target_yaw",
    "target_rate_hz",
    "display_hz",
}
_STRING_FIELDS = {
    "planning_frame",
    "move_group_name",
    "target_source",
    "target_bridge_host",
    "backend",
    "ee_bridge_host",
    "command_host",
    "cli_output",
    "log_level",
}
_STRING_LIST_FIELDS = {"static_transform"}
_KEY_ALIASES = {
    "static_transforms": "static_transform",
}
_GAIN_FIELDS = tuple(
    f"{axis}_{kind}_gain"
    for axis in ("x", "y", "z", "angular")
    for kind in ("proportional", "integral", "derivative")
)


def _parse_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        s = value.strip().lower()
        if s in {"1", "true", "yes", "on"}:
            return True
        if s in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"config key '{key}' expects a bool, got {value!r}")


def _coerce_config_value(key: str, value: Any) -> Any:
    try:
        if key in _BOOL_FIELDS:
            return _parse_bool(value, key)
        if key in _INT_FIELDS:
            return int(value)
        if key in _FLOAT_FIELDS:
            return float(value)
        if key in _STRING_FIELDS:
            return "" if value is None else str(value)
        if key in _STRING_LIST_FIELDS:
            if value is None:
                return []
            if isinstance(value, str):
                return [value]
            return [str(v) for v in value]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid value for config key '{key}': {value!r}") from exc
    raise ValueError(f"unsupported config key '{key}'")


def _normalize_config_key(raw_key: Any) -> str:
    if not isinstance(raw_key, str):
        raise ValueError(f"config key must be string, got {type(raw_key).__name__}")
    key = raw_key.strip().replace("-", "_")
    if not key:
        raise ValueError("config key cannot be empty")
    return _KEY_ALIASES.get(key, key)


def _load_yaml_config(path: str) -> dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise ValueError(f"--config file not found: {p}")
    if not p.is_file():
        raise ValueError(f"--config must point to a file: {p}")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"failed to read --config file {p}: {exc}") from exc
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to parse YAML config {p}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"--config root must be a mapping/object, got {type(loaded).__name__}")

    normalized: dict[str, Any] = {}
    for raw_key, raw_value in loaded.items():
        key = _normalize_config_key(raw_key)
        if key == "no_anti_windup":
            normalized["anti_windup"] = not _parse_bool(raw_value, key)
            continue
        if key not in _APP_CONFIG_FIELDS:
            raise ValueError(f"unknown config key in {p}: {raw_key!r}")
        normalized[key] = _coerce_config_value(key, raw_value)
    return normalized


def _yaml_defaults_to_argparse_defaults(cfg: dict[str, Any]) -> dict[str, Any]:
    defaults: dict[str, Any] = {}
    for key, value in cfg.items():
        if key == "anti_windup":
            defaults["no_anti_windup"] = not bool(value)
        else:
            defaults[key] = value
    return defaults


def parse_static_transform(spec: str) -> tuple[str, str, RigidTransform]:
    """Parse ``"parent child x y z qw qx qy qz"``."""
    parts = str(spec).split()
    if len(parts) != 9:
        raise ValueError(
            f"--static-transform expects 'parent child x y z qw qx qy qz', got {spec!r}"
        )
    parent, child = parts[0], parts[1]
    try:
        values = [float(v) for v in parts[2:]]
    except ValueError as exc:
        raise ValueError(f"--static-transform has a non-numeric value: {spec!r}") from exc
    if not all(math.isfinite(v) for v in values):
        raise ValueError(f"--static-transform values must be finite: {spec!r}")
    if sum(v * v for v in values[3:]) < 1e-12:
        raise ValueError(f"--static-transform quaternion must be non-zero: {spec!r}")
    if parent == child:
        raise ValueError(f"--static-transform parent and child must differ: {spec!r}")
    return parent, child, make_transform(values[:3], values[3:])


def _flag(key: str) -> str:
    return "--" + key.replace("_", "-")


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="pose2twist",
        description="Drive an end effector to a target pose with Cartesian twist commands.",
    )
    ap.add_argument(
        "--config",
        type=str,
        default="",
        help="YAML config file path. CLI args override YAML values.",
    )

    ap.add_argument("--planning-frame", type=str, default="base_link", help="Tracking frame.")
    ap.add_argument(
        "--move-group-name",
        type=str,
        default="manipulator",
        help="Actuator group the commands are meant for.",
    )
    ap.add_argument(
        "--publish-period",
        type=float,
        default=0.01,
        help="Nominal control cycle period in seconds.",
    )
    ap.add_argument(
        "--windup-limit",
        type=float,
        default=0.05,
        help="Symmetric clamp on every PID integral accumulator.",
    )
    ap.add_argument(
        "--no-anti-windup",
        action="store_true",
        help="Disable integral clamping.",
    )
    for key in _GAIN_FIELDS:
        ap.add_argument(_flag(key), type=float, default=getattr(AppConfig, key))

    ap.add_argument(
        "--pose-timeout",
        type=float,
        default=0.1,
        help="Poses older than this (s) are stale.",
    )
    ap.add_argument(
        "--startup-timeout",
        type=float,
        default=0.1,
        help="How long (s) to wait for fresh target and end-effector poses.",
    )
    ap.add_argument(
        "--startup-poll-ms",
        type=float,
        default=1.0,
        help="Sleep between startup polls in milliseconds.",
    )
    ap.add_argument("--positional-tolerance-x", type=float, default=0.01, help="meters")
    ap.add_argument("--positional-tolerance-y", type=float, default=0.01, help="meters")
    ap.add_argument("--positional-tolerance-z", type=float, default=0.01, help="meters")
    ap.add_argument("--angular-tolerance", type=float, default=0.01, help="radians")

    ap.add_argument(
        "--target-source",
        choices=["udp", "fixed"],
        default="udp",
        help="Target pose backend: UDP JSON stream or a fixed pose from --target-*.",
    )
    ap.add_argument("--target-bridge-host", type=str, default="127.0.0.1")
    ap.add_argument("--target-bridge-port", type=int, default=24567)
    ap.add_argument("--target-x", type=float, default=0.0, help="Fixed target x (m).")
    ap.add_argument("--target-y", type=float, default=0.0, help="Fixed target y (m).")
    ap.add_argument("--target-z", type=float, default=0.0, help="Fixed target z (m).")
    ap.add_argument("--target-roll", type=float, default=0.0, help="Fixed target roll (deg).")
    ap.add_argument("--target-pitch", type=float, default=0.0, help="Fixed target pitch (deg).")
    ap.add_argument("--target-yaw", type=float, default=0.0, help="Fixed target yaw (deg).")
    ap.add_argument(
        "--target-rate-hz",
        type=float,
        default=50.0,
        help="Republish rate for --target-source fixed.",
    )

    ap.add_argument(
        "--backend",
        choices=["sim", "udp"],
        default="sim",
        help="End-effector backend: in-process kinematic sim or UDP driver bridge.",
    )
    ap.add_argument("--ee-bridge-host", type=str, default="127.0.0.1")
    ap.add_argument("--ee-bridge-port", type=int, default=24568)
    ap.add_argument("--command-host", type=str, default="127.0.0.1")
    ap.add_argument("--command-port", type=int, default=24569)
    ap.add_argument(
        "--static-transform",
        action="append",
        default=[],
        metavar="'PARENT CHILD X Y Z QW QX QY QZ'",
        help="Static frame transform for re-expressing target poses. Repeatable.",
    )

    ap.add_argument(
        "--display-hz",
        type=float,
        default=5.0,
        help="Display refresh rate in Hz (0 disables display updates).",
    )
    ap.add_argument(
        "--cli-output",
        choices=["live", "scroll"],
        default="live",
        help="TUI output mode: in-place live panel or scrolling logs.",
    )
    ap.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Global log level.",
    )

    return ap


def _check_port(flag: str, port: int) -> None:
    if not (1 <= port <= 65535):
        raise ValueError(f"{flag} must be in [1,65535], got {port}")


def validate_config(cfg: AppConfig) -> None:
    if not cfg.planning_frame.strip():
        raise ValueError("--planning-frame must be non-empty")
    if not cfg.move_group_name.strip():
        raise ValueError("--move-group-name must be non-empty")
    if not (math.isfinite(cfg.publish_period) and cfg.publish_period > 0.0):
        raise ValueError(f"--publish-period must be > 0, got {cfg.publish_period}")
    if not (math.isfinite(cfg.windup_limit) and cfg.windup_limit >= 0.0):
        raise ValueError(f"--windup-limit must be >= 0, got {cfg.windup_limit}")
    for key in _GAIN_FIELDS:
        value = getattr(cfg, key)
        if not (math.isfinite(value) and value >= 0.0):
            raise ValueError(f"{_flag(key)} must be >= 0, got {value}")
    if cfg.pose_timeout <= 0.0:
        raise ValueError(f"--pose-timeout must be > 0, got {cfg.pose_timeout}")
    if cfg.startup_timeout < 0.0:
        raise ValueError(f"--startup-timeout must be >= 0, got {cfg.startup_timeout}")
    if cfg.startup_poll_ms <= 0.0:
        raise ValueError(f"--startup-poll-ms must be > 0, got {cfg.startup_poll_ms}")
    for axis in ("x", "y", "z"):
        value = getattr(cfg, f"positional_tolerance_{axis}")
        if not value > 0.0:
            raise ValueError(f"--positional-tolerance-{axis} must be > 0, got {value}")
    if not (0.0 < cfg.angular_tolerance <= math.pi):
        raise ValueError(f"--angular-tolerance must be in (0,pi], got {cfg.angular_tolerance}")

    if cfg.target_source not in {"udp", "fixed"}:
        raise ValueError(f"--target-source must be one of udp|fixed, got {cfg.target_source}")
    if not cfg.target_bridge_host.strip():
        raise ValueError("--target-bridge-host must be non-empty")
    _check_port("--target-bridge-port", cfg.target_bridge_port)
    target = (
        cfg.target_x,
        cfg.target_y,
        cfg.target_z,
        cfg.target_roll,
        cfg.target_pitch,
        cfg.target_yaw,
    )
    if not all(math.isfinite(v) for v in target):
        raise ValueError("--target-x/y/z and --target-roll/pitch/yaw must be finite numbers")
    if cfg.target_rate_hz <= 0.0:
        raise ValueError(f"--target-rate-hz must be > 0, got {cfg.target_rate_hz}")

    if cfg.backend not in {"sim", "udp"}:
        raise ValueError(f"--backend must be one of sim|udp, got {cfg.backend}")
    if not cfg.ee_bridge_host.strip():
        raise ValueError("--ee-bridge-host must be non-empty")
    _check_port("--ee-bridge-port", cfg.ee_bridge_port)
    if not cfg.command_host.strip():
        raise ValueError("--command-host must be non-empty")
    _check_port("--command-port", cfg.command_port)
    for spec in cfg.static_transform:
        parse_static_transform(spec)

    if cfg.display_hz < 0.0:
        raise ValueError(f"--display-hz must be >= 0, got {cfg.display_hz}")
    if cfg.cli_output not in {"live", "scroll"}:
        raise ValueError(f"--cli-output must be live|scroll, got {cfg.cli_output}")
    if cfg.log_level not in {"debug", "info", "warning", "error"}:
        raise ValueError(f"--log-level must be debug|info|warning|error, got {cfg.log_level}")


def parse_args(argv=None) -> AppConfig:
    bootstrap = argparse.ArgumentParser(add_help=False)
    bootstrap.add_argument("--config", type=str, default="")
    bootstrap_ns, _ = bootstrap.parse_known_args(argv)

    yaml_cfg: dict[str, Any] = {}
    yaml_error: Optional[str] = None
    if bootstrap_ns.config:
        try:
            yaml_cfg = _load_yaml_config(bootstrap_ns.config)
        except ValueError as exc:
            yaml_error = str(exc)

    ap = build_arg_parser()
    if yaml_error is not None:
        ap.error(yaml_error)
    if yaml_cfg:
        ap.set_defaults(**_yaml_defaults_to_argparse_defaults(yaml_cfg))
    args = ap.parse_args(argv)

    values = {
        key: getattr(args, key)
        for key in _APP_CONFIG_FIELDS
        if key not in {"anti_windup", "static_transform"}
    }
    cfg = AppConfig(
        anti_windup=not args.no_anti_windup,
        static_transform=tuple(args.static_transform or ()),
        **values,
    )
    try:
        validate_config(cfg)
    except ValueError as exc:
        ap.error(str(exc))
    return cfg
