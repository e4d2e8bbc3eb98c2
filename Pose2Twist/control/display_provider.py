"""Display providers for rendering tracking progress."""

from __future__ import annotations

import logging
import sys
import time
from typing import Callable, Optional

from .tracking import TrackingFrame

logger = logging.getLogger(__name__)


class DisplayProvider:
    """Base display provider interface."""

    def update(self, frame: TrackingFrame) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class NullDisplayProvider(DisplayProvider):
    def update(self, frame: TrackingFrame) -> None:  # noqa: ARG002
        return


def _status_lines(frame: TrackingFrame) -> list[str]:
    e = frame.position_error
    v = frame.twist.linear
    w = frame.twist.angular
    return [
        "Pose2Twist Live Tracking",
        f"cycle           = {frame.cycle}  ({frame.state.value})",
        f"position error  = [{e[0]: .4f}, {e[1]: .4f}, {e[2]: .4f}] m",
        f"angular error   = {frame.angular_error: .4f} rad",
        f"linear cmd      = [{v[0]: .4f}, {v[1]: .4f}, {v[2]: .4f}] m/s",
        f"angular cmd     = [{w[0]: .4f}, {w[1]: .4f}, {w[2]: .4f}] rad/s",
        f"command frame   = {frame.twist.frame_id}",
    ]


class _CliStatsSink:
    def __init__(self, mode: str):
        self.mode = "live" if mode == "live" else "scroll"
        self._is_tty = bool(getattr(sys.stderr, "isatty", lambda: False)())
        self._live_enabled = self.mode == "live" and self._is_tty
        self._line_count = 0

    def emit(self, lines: list[str], scroll_line: str) -> None:
        if not self._live_enabled:
            logger.info(scroll_line)
            return

        out = sys.stderr
        if self._line_count > 0:
            out.write(f"\x1b[{self._line_count}F")

        max_lines = max(self._line_count, len(lines))
        for i in range(max_lines):
            line = lines[i] if i < len(lines) else ""
            out.write("\x1b[2K")
            out.write(line)
            out.write("\n")
        out.flush()
        self._line_count = len(lines)


class TuiDisplayProvider(DisplayProvider):
    """Terminal panel (TTY) or scrolling log lines, throttled to ``display_hz``."""

    def __init__(
        self,
        cli_output: str = "live",
        display_hz: float = 5.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.cli_sink = _CliStatsSink(cli_output)
        self.display_interval = (1.0 / display_hz) if display_hz > 0.0 else 0.0
        self._clock = clock or time.monotonic
        self._last_display_t: Optional[float] = None

    def update(self, frame: TrackingFrame) -> None:
        if self.display_interval <= 0.0:
            return
        now = self._clock()
        if self._last_display_t is not None and (now - self._last_display_t) < self.display_interval:
            return
        self._last_display_t = now

        e = frame.position_error
        w = frame.twist.angular
        v = frame.twist.linear
        self.cli_sink.emit(
            lines=_status_lines(frame),
            scroll_line=(
                "[TRACK] cycle=%d err_xyz=(%.4f, %.4f, %.4f) err_ang=%.4f "
                "v=(%.4f, %.4f, %.4f) w=(%.4f, %.4f, %.4f)"
                % (
                    frame.cycle,
                    e[0],
                    e[1],
                    e[2],
                    frame.angular_error,
                    v[0],
                    v[1],
                    v[2],
                    w[0],
                    w[1],
                    w[2],
                )
            ),
        )
