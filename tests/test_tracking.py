import math

import numpy as np
import pytest

from Pose2Twist.control.frame_lookup import StaticTransformBuffer
from Pose2Twist.control.pid import AxisPidBank, PidConfig
from Pose2Twist.control.pose import PoseStamped
from Pose2Twist.control.pose_provider import CommandSink, TransformProvider
from Pose2Twist.control.tracking import (
    LoopRate,
    PoseTracker,
    TrackingSettings,
    TrackingState,
    TrackingStatus,
)
from Pose2Twist.math3d.quaternion import axis_angle_to_q
from Pose2Twist.math3d.transform import make_transform
from Pose2Twist.pose_providers.simulated import SimulatedEndEffector


class _FakeClock:
    """Deterministic time: sleeping advances the clock and runs hooks."""

    def __init__(self, t: float = 100.0):
        self.t = t
        self.on_sleep = []

    def now(self) -> float:
        return self.t

    def sleep(self, dt: float) -> None:
        self.t += max(0.0, dt)
        for hook in list(self.on_sleep):
            hook()


class _DummyTransformProvider(TransformProvider):
    def __init__(self, pose):
        self.pose = pose
        self.available = True

    def get_current_pose(self):
        return self.pose if self.available else None


class _RecordingSink(CommandSink):
    def __init__(self):
        self.twists = []
        self.on_send = None

    def send(self, twist) -> None:
        self.twists.append(twist)
        if self.on_send is not None:
            self.on_send(len(self.twists))


def _pose(xyz, q=(1.0, 0.0, 0.0, 0.0), frame_id: str = "base_link", stamp: float = 0.0) -> PoseStamped:
    return PoseStamped(
        position=np.asarray(xyz, dtype=np.float64),
        quaternion=np.asarray(q, dtype=np.float64),
        frame_id=frame_id,
        stamp=stamp,
    )


def _bank(k_p: float = 1.0, k_i: float = 0.5) -> AxisPidBank:
    cfg = PidConfig(k_p=k_p, k_i=k_i, k_d=0.0, windup_limit=0.05)
    return AxisPidBank(x=cfg, y=cfg, z=cfg, angular=cfg)


def _tracker(
    clock: _FakeClock,
    provider: TransformProvider,
    sink: CommandSink,
    publish_period: float = 0.01,
    pose_timeout: float = 0.1,
    startup_timeout: float = 0.1,
    pids: AxisPidBank = None,
    frame_lookup=None,
    on_cycle=None,
) -> PoseTracker:
    settings = TrackingSettings(
        planning_frame="base_link",
        move_group_name="manipulator",
        publish_period=publish_period,
        pose_timeout=pose_timeout,
        startup_timeout=startup_timeout,
        startup_poll_period=0.001,
    )
    return PoseTracker(
        settings=settings,
        pids=pids or _bank(),
        transform_provider=provider,
        command_sink=sink,
        frame_lookup=frame_lookup,
        clock=clock.now,
        sleep=clock.sleep,
        on_cycle=on_cycle,
    )


def _publish_while_sleeping(clock: _FakeClock, tracker: PoseTracker, pose: PoseStamped, enabled=None):
    def hook():
        if enabled is None or enabled[0]:
            tracker.target_pose_callback(pose)

    clock.on_sleep.append(hook)


def test_zero_error_succeeds_on_first_cycle_without_commands():
    clock = _FakeClock()
    pose = _pose([0.3, 0.0, 0.5], axis_angle_to_q(np.array([0.0, 0.0, 1.0]), 0.7))
    sink = _RecordingSink()
    tracker = _tracker(clock, _DummyTransformProvider(pose), sink)
    _publish_while_sleeping(clock, tracker, pose)

    status = tracker.track_to_pose([0.01, 0.01, 0.01], 0.01)

    assert status is TrackingStatus.SUCCESS
    assert sink.twists == []
    assert tracker.state is TrackingState.SUCCEEDED


def test_stale_target_at_entry_aborts_without_commands():
    clock = _FakeClock()
    sink = _RecordingSink()
    tracker = _tracker(clock, _DummyTransformProvider(_pose([0.0, 0.0, 0.0])), sink)
    tracker.target_pose_callback(_pose([0.2, 0.0, 0.0]))
    clock.t += 1.0

    status = tracker.track_to_pose([0.01, 0.01, 0.01], 0.01)

    assert status is TrackingStatus.NO_RECENT_TARGET_POSE
    assert sink.twists == []
    assert tracker.state is TrackingState.ABORTED_NO_TARGET


def test_startup_abort_resets_pid_state():
    clock = _FakeClock()
    pids = _bank()
    tracker = _tracker(clock, _DummyTransformProvider(_pose([0.0, 0.0, 0.0])), _RecordingSink(), pids=pids)
    for pid in (pids.x, pids.y, pids.z, pids.angular):
        pid.compute(0.3, 0.01)
        assert pid.integral != 0.0

    status = tracker.track_to_pose([0.01, 0.01, 0.01], 0.01)

    assert status is TrackingStatus.NO_RECENT_TARGET_POSE
    for pid in (pids.x, pids.y, pids.z, pids.angular):
        assert pid.integral == 0.0
        assert pid.previous_error == 0.0
    assert tracker.angular_error == 0.0


def test_orientation_error_alone_blocks_success():
    clock = _FakeClock()
    sink = _RecordingSink()
    tracker = _tracker(clock, _DummyTransformProvider(_pose([0.2, 0.1, 0.3])), sink)
    target = _pose([0.2, 0.1, 0.3], axis_angle_to_q(np.array([0.0, 0.0, 1.0]), 0.5))
    _publish_while_sleeping(clock, tracker, target)

    def on_send(n):
        if n == 3:
            tracker.cancel()

    sink.on_send = on_send

    status = tracker.track_to_pose([0.01, 0.01, 0.01], 0.01)

    assert status is TrackingStatus.CANCELLED
    assert len(sink.twists) == 3
    for twist in sink.twists:
        np.testing.assert_allclose(twist.linear, np.zeros(3), atol=1e-12)
        assert twist.angular[2] > 0.0


def test_error_equal_to_tolerance_is_not_success():
    clock = _FakeClock()
    sink = _RecordingSink()
    tracker = _tracker(clock, _DummyTransformProvider(_pose([0.0, 0.0, 0.0])), sink)
    _publish_while_sleeping(clock, tracker, _pose([0.5, 0.0, 0.0]))

    def on_send(n):
        if n == 1:
            tracker.cancel()

    sink.on_send = on_send

    status = tracker.track_to_pose([0.5, 0.5, 0.5], 0.5)

    assert status is TrackingStatus.CANCELLED
    assert len(sink.twists) == 1


def test_interrupt_sends_zero_twist_and_resets():
    clock = _FakeClock()
    sink = _RecordingSink()
    pids = _bank()
    tracker = _tracker(clock, _DummyTransformProvider(_pose([0.0, 0.0, 0.0])), sink, pids=pids)
    _publish_while_sleeping(clock, tracker, _pose([0.5, 0.0, 0.0]))

    def on_send(n):
        if n == 3:
            raise KeyboardInterrupt

    sink.on_send = on_send

    with pytest.raises(KeyboardInterrupt):
        tracker.track_to_pose([0.01, 0.01, 0.01], 0.01)

    assert len(sink.twists) == 4
    np.testing.assert_allclose(sink.twists[-1].linear, np.zeros(3))
    np.testing.assert_allclose(sink.twists[-1].angular, np.zeros(3))
    assert tracker.state is TrackingState.ABORTED_CANCELLED
    assert pids.x.integral == 0.0
    assert tracker.angular_error == 0.0

    sink.on_send = lambda n: tracker.cancel() if n == 6 else None
    assert tracker.track_to_pose([0.01, 0.01, 0.01], 0.01) is TrackingStatus.CANCELLED
    assert len(sink.twists) == 6


def test_target_cached_before_the_call_does_not_count_as_fresh():
    clock = _FakeClock()
    pose = _pose([0.0, 0.0, 0.0])
    sink = _RecordingSink()
    tracker = _tracker(clock, _DummyTransformProvider(pose), sink)
    # Equal to the current pose: would succeed at once if it were trusted.
    tracker.target_pose_callback(pose)

    status = tracker.track_to_pose([0.01, 0.01, 0.01], 0.01)

    assert status is TrackingStatus.NO_RECENT_TARGET_POSE
    assert sink.twists == []


def test_current_pose_going_stale_mid_track_aborts():
    clock = _FakeClock()
    provider = _DummyTransformProvider(_pose([0.0, 0.0, 0.0]))
    sink = _RecordingSink()
    tracker = _tracker(clock, provider, sink, publish_period=0.1, pose_timeout=0.05)
    _publish_while_sleeping(clock, tracker, _pose([1.0, 0.0, 0.0]))

    def on_send(n):
        if n == 3:
            provider.available = False

    sink.on_send = on_send

    status = tracker.track_to_pose([0.01, 0.01, 0.01], 0.01)

    assert status is TrackingStatus.NO_RECENT_END_EFFECTOR_POSE
    assert len(sink.twists) == 3
    assert tracker.state is TrackingState.ABORTED_NO_CURRENT_POSE


def test_no_current_pose_ever_aborts_without_commands():
    clock = _FakeClock()
    provider = _DummyTransformProvider(None)
    sink = _RecordingSink()
    tracker = _tracker(clock, provider, sink)
    _publish_while_sleeping(clock, tracker, _pose([0.0, 0.0, 0.0]))

    status = tracker.track_to_pose([0.01, 0.01, 0.01], 0.01)

    assert status is TrackingStatus.NO_RECENT_END_EFFECTOR_POSE
    assert sink.twists == []


def test_cancellation_mid_track_stops_on_next_cycle_and_resets_pids():
    clock = _FakeClock()
    sink = _RecordingSink()
    pids = _bank()
    tracker = _tracker(clock, _DummyTransformProvider(_pose([0.0, 0.0, 0.0])), sink, pids=pids)
    _publish_while_sleeping(clock, tracker, _pose([0.5, -0.5, 0.2]))
    integrals = []

    def on_send(n):
        if n == 5:
            integrals.append(pids.x.integral)
            tracker.cancel()

    sink.on_send = on_send

    status = tracker.track_to_pose([0.01, 0.01, 0.01], 0.01)

    assert status is TrackingStatus.CANCELLED
    assert len(sink.twists) == 5
    assert integrals[0] != 0.0
    for pid in (pids.x, pids.y, pids.z, pids.angular):
        assert pid.integral == 0.0
        assert pid.previous_error == 0.0
    assert tracker.angular_error == 0.0
    assert tracker.state is TrackingState.ABORTED_CANCELLED


def test_cancellation_does_not_leak_into_next_invocation():
    clock = _FakeClock()
    sink = _RecordingSink()
    tracker = _tracker(clock, _DummyTransformProvider(_pose([0.0, 0.0, 0.0])), sink)
    _publish_while_sleeping(clock, tracker, _pose([0.5, 0.0, 0.0]))
    cancel_at = [2]

    def on_send(n):
        if n == cancel_at[0]:
            tracker.cancel()

    sink.on_send = on_send
    assert tracker.track_to_pose([0.01, 0.01, 0.01], 0.01) is TrackingStatus.CANCELLED
    cancel_at[0] = 6
    assert tracker.track_to_pose([0.01, 0.01, 0.01], 0.01) is TrackingStatus.CANCELLED
    assert len(sink.twists) == 6


def test_stop_motion_sends_zero_twist_and_cancels():
    clock = _FakeClock()
    sink = _RecordingSink()
    tracker = _tracker(clock, _DummyTransformProvider(_pose([0.0, 0.0, 0.0])), sink)
    _publish_while_sleeping(clock, tracker, _pose([0.5, 0.0, 0.0]))

    tracker.stop_motion()

    assert len(sink.twists) == 1
    assert sink.twists[0].frame_id == "base_link"
    np.testing.assert_allclose(sink.twists[0].linear, np.zeros(3))
    np.testing.assert_allclose(sink.twists[0].angular, np.zeros(3))
    assert tracker.track_to_pose([0.01, 0.01, 0.01], 0.01) is TrackingStatus.CANCELLED
    assert len(sink.twists) == 1


def test_target_cleared_mid_track_aborts():
    clock = _FakeClock()
    sink = _RecordingSink()
    tracker = _tracker(clock, _DummyTransformProvider(_pose([0.0, 0.0, 0.0])), sink)
    publishing = [True]
    _publish_while_sleeping(clock, tracker, _pose([0.5, 0.0, 0.0]), enabled=publishing)

    def on_send(n):
        if n == 2:
            publishing[0] = False
            tracker.reset_target_pose()

    sink.on_send = on_send

    status = tracker.track_to_pose([0.01, 0.01, 0.01], 0.01)

    assert status is TrackingStatus.NO_RECENT_TARGET_POSE
    assert len(sink.twists) == 2


def test_converges_on_simulated_end_effector():
    clock = _FakeClock()
    sim = SimulatedEndEffector(frame_id="base_link", dt=0.01, clock=clock.now)
    frames = []

    def on_cycle(frame):
        frames.append(frame)
        if frame.cycle > 5000:
            tracker.cancel()

    tracker = _tracker(clock, sim, sim, pids=_bank(k_p=5.0, k_i=0.0), on_cycle=on_cycle)
    target = _pose([0.05, -0.03, 0.02], axis_angle_to_q(np.array([0.0, 0.0, 1.0]), 0.3))
    _publish_while_sleeping(clock, tracker, target)

    status = tracker.track_to_pose([0.001, 0.001, 0.001], 0.01)

    assert status is TrackingStatus.SUCCESS
    assert 0 < sim.command_count < 5000
    assert len(frames) == sim.command_count
    assert frames[-1].state is TrackingState.TRACKING
    final = sim.get_current_pose()
    np.testing.assert_allclose(final.position, target.position, atol=0.001)


def test_pid_errors_report_last_cycle_error():
    clock = _FakeClock()
    sink = _RecordingSink()
    tracker = _tracker(clock, _DummyTransformProvider(_pose([0.0, 0.0, 0.0])), sink)
    _publish_while_sleeping(clock, tracker, _pose([0.4, -0.2, 0.1]))
    seen = []

    def on_send(n):
        seen.append(tracker.get_pid_errors())
        if n == 1:
            tracker.cancel()

    sink.on_send = on_send
    tracker.track_to_pose([0.01, 0.01, 0.01], 0.01)

    errors = seen[0]
    assert math.isclose(errors.x, 0.4)
    assert math.isclose(errors.y, -0.2)
    assert math.isclose(errors.z, 0.1)
    assert errors.angular == 0.0


def test_target_callback_stamps_arrival_time_not_message_time():
    clock = _FakeClock(t=50.0)
    tracker = _tracker(clock, _DummyTransformProvider(None), _RecordingSink())
    tracker.target_pose_callback(_pose([0.1, 0.2, 0.3], stamp=-1000.0))
    entry = tracker._target.snapshot()
    assert entry.received_at == 50.0
    assert entry.pose.stamp == -1000.0


def test_target_callback_latest_wins():
    clock = _FakeClock()
    tracker = _tracker(clock, _DummyTransformProvider(None), _RecordingSink())
    for x in (0.1, 0.9, 0.4):
        tracker.target_pose_callback(_pose([x, 0.0, 0.0]))
    np.testing.assert_allclose(tracker.target_pose().position, [0.4, 0.0, 0.0])


def test_target_in_other_frame_is_reexpressed():
    clock = _FakeClock()
    frames = StaticTransformBuffer()
    frames.set_transform(
        "base_link",
        "camera",
        make_transform([1.0, 0.0, 0.0], axis_angle_to_q(np.array([0.0, 0.0, 1.0]), math.pi / 2.0)),
    )
    tracker = _tracker(clock, _DummyTransformProvider(None), _RecordingSink(), frame_lookup=frames)

    tracker.target_pose_callback(_pose([0.5, 0.0, 0.0], frame_id="camera"))

    target = tracker.target_pose()
    assert target.frame_id == "base_link"
    np.testing.assert_allclose(target.position, [1.0, 0.5, 0.0], atol=1e-9)


def test_target_with_unknown_frame_keeps_previous_target():
    clock = _FakeClock()
    tracker = _tracker(
        clock,
        _DummyTransformProvider(None),
        _RecordingSink(),
        frame_lookup=StaticTransformBuffer(),
    )
    tracker.target_pose_callback(_pose([0.2, 0.0, 0.0]))
    before = tracker._target.snapshot()
    clock.t += 0.5

    tracker.target_pose_callback(_pose([9.0, 9.0, 9.0], frame_id="unknown"))

    assert tracker._target.snapshot() is before


def test_target_without_frame_is_taken_as_tracking_frame():
    clock = _FakeClock()
    tracker = _tracker(clock, _DummyTransformProvider(None), _RecordingSink())
    tracker.target_pose_callback(_pose([0.2, 0.0, 0.0], frame_id=""))
    assert tracker.target_pose().frame_id == "base_link"


def test_loop_rate_sleeps_to_deadline_and_rebases_after_overrun():
    clock = _FakeClock(t=0.0)
    sleeps = []

    def sleep(dt):
        sleeps.append(dt)
        clock.t += dt

    rate = LoopRate(0.1, clock.now, sleep)
    rate.reset()
    clock.t += 0.03
    assert rate.sleep() is True
    assert math.isclose(sleeps[-1], 0.07)

    clock.t += 0.25
    assert rate.sleep() is False
    assert len(sleeps) == 1

    clock.t += 0.02
    assert rate.sleep() is True
    assert math.isclose(sleeps[-1], 0.08)
