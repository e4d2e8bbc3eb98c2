"""PID controllers for Cartesian tracking.

One scalar PID per linear axis plus one for the orientation-error magnitude.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PidConfig:
    k_p: float = 1.0
    k_i: float = 0.0
    k_d: float = 0.0
    windup_limit: float = 0.1
    anti_windup: bool = True


class Pid:
    """
    u = k_p*e + k_i*I + k_d*(e - e_prev)/dt,  I += e*dt
    With anti-windup enabled I is clamped to [-windup_limit, windup_limit].
    """

    def __init__(self, config: PidConfig):
        self.config = config
        self._integral = 0.0
        self._prev_error = 0.0

    @property
    def integral(self) -> float:
        return self._integral

    @property
    def previous_error(self) -> float:
        return self._prev_error

    def reset(self) -> None:
        self._integral = 0.0
        self._prev_error = 0.0

    def compute(self, error: float, dt: float) -> float:
        if dt <= 0.0:
            return 0.0
        error = float(error)
        cfg = self.config

        self._integral += error * dt
        if cfg.anti_windup:
            limit = abs(cfg.windup_limit)
            self._integral = max(-limit, min(limit, self._integral))

        derivative = (error - self._prev_error) / dt
        self._prev_error = error
        return cfg.k_p * error + cfg.k_i * self._integral + cfg.k_d * derivative


@dataclass(frozen=True, slots=True)
class PidErrors:
    x: float
    y: float
    z: float
    angular: float


class AxisPidBank:
    """Fixed set of four controllers: x, y, z and orientation magnitude."""

    def __init__(self, x: PidConfig, y: PidConfig, z: PidConfig, angular: PidConfig):
        self.x = Pid(x)
        self.y = Pid(y)
        self.z = Pid(z)
        self.angular = Pid(angular)

    def reset(self) -> None:
        self.x.reset()
        self.y.reset()
        self.z.reset()
        self.angular.reset()

    def errors(self) -> PidErrors:
        return PidErrors(
            x=self.x.previous_error,
            y=self.y.previous_error,
            z=self.z.previous_error,
            angular=self.angular.previous_error,
        )
