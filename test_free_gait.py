"""
test_free_gait.py - Tests for leg descriptions, leg state and step scheduling.

Tests validate:
- Quadruped leg construction from body proportions
- ConfigurationFault on invalid leg descriptions
- Swing arc shape (rise then fall, peak = step height, ends on the line)
- Desired target stride push along the motion direction
- Step trigger gates: distance, speed, cooldown (with floor), group permission
- Non-interruption of a step in flight and planting on completion
- Runtime config edits apply on the next call
"""

import math
import random
import numpy as np
import pytest

from body_motion import BodyPose
from config_manager import AnimatorConfig, LayoutConfig
from free_gait import (ConfigurationFault, Leg, LegConfig, LegState, StepScheduler,
                       create_quadruped_legs, desired_foot_target, swing_arc_position,
                       validate_leg_config, LEG_NAMES)
from gait_engine import GROUP_A, GROUP_B, GaitCoordinator
from kinematics import WORLD_UP

# ============================================================================
# Test Utilities
# ============================================================================

def make_leg(index: int = 0, planted=(0.0, 0.0, 0.0)) -> Leg:
    cfg = validate_leg_config(create_quadruped_legs()[index])
    leg = Leg(index=index, config=cfg)
    leg.reset(np.array(planted, dtype=float))
    return leg


def make_scheduler(config=None):
    config = config if config is not None else AnimatorConfig()
    coordinator = GaitCoordinator(config, random.Random(1))
    return StepScheduler(config, coordinator), coordinator


# ============================================================================
# Leg Construction
# ============================================================================

def test_create_quadruped_legs():
    legs = create_quadruped_legs()
    assert [leg.name for leg in legs] == LEG_NAMES
    for leg in legs:
        assert leg.upper_length == pytest.approx(0.5)
        assert leg.lower_length == pytest.approx(0.5)
        assert leg.rest_local_target[1] == pytest.approx(-0.8)
        # Rest foot sits outward from the hip
        outward = leg.rest_local_target - leg.root_offset
        assert float(np.dot(outward[[0, 2]], leg.root_offset[[0, 2]])) > 0.0

    valid = [validate_leg_config(leg) for leg in legs]
    assert [leg.group for leg in valid] == [GROUP_A, GROUP_B, GROUP_B, GROUP_A]


def test_layout_proportions():
    layout = LayoutConfig(leg_length=1.2, hip_ratio=0.6, body_height=0.9)
    leg = create_quadruped_legs(layout)[0]
    assert leg.upper_length == pytest.approx(0.72)
    assert leg.lower_length == pytest.approx(0.48)
    assert LayoutConfig(hip_ratio=1.5).hip_ratio == pytest.approx(0.95)


def test_validate_normalises_hint():
    raw = create_quadruped_legs()[1]
    raw.bend_hint = raw.bend_hint * 3.0
    cfg = validate_leg_config(raw)
    assert np.linalg.norm(cfg.bend_hint) == pytest.approx(1.0)


def test_invalid_leg_configs():
    def broken(**changes):
        cfg = create_quadruped_legs()[0]
        for k, v in changes.items():
            setattr(cfg, k, v)
        return cfg

    bad = [
        broken(root_offset=None),
        broken(rest_local_target=[0.0, math.nan, 0.0]),
        broken(bend_hint=[0.0, 0.0]),
        broken(bend_hint=[0.0, 0.0, 0.0]),
        broken(upper_length=0.0),
        broken(lower_length=-0.5),
        broken(rest_local_target=[-0.3, -3.0, 0.3]),   # out of reach
        broken(rest_local_target=[-0.3, 0.0, 0.3]),    # on the hip
        broken(bend_hint=[0.0, -1.0, 0.0], rest_local_target=[-0.3, -0.8, 0.3]),  # parallel
    ]
    for cfg in bad:
        with pytest.raises(ConfigurationFault):
            validate_leg_config(cfg)


# ============================================================================
# Swing Arc
# ============================================================================

def test_swing_arc_shape():
    start = np.array([0.0, 0.0, 0.0])
    target = np.array([0.0, 0.0, 0.6])
    height = 0.15
    samples = np.linspace(0.0, 1.0, 41)
    ys = [swing_arc_position(start, target, p, WORLD_UP, height)[1] for p in samples]

    rising = [y for p, y in zip(samples, ys) if p < 0.5]
    falling = [y for p, y in zip(samples, ys) if p > 0.5]
    assert all(b > a for a, b in zip(rising, rising[1:]))
    assert all(b < a for a, b in zip(falling, falling[1:]))

    peak = max(ys)
    assert peak == pytest.approx(height)
    assert 0.1 <= peak <= 0.3

    np.testing.assert_allclose(swing_arc_position(start, target, 0.0, WORLD_UP, height), start, atol=1e-12)
    np.testing.assert_allclose(swing_arc_position(start, target, 1.0, WORLD_UP, height), target, atol=1e-12)


def test_desired_target_stride_push():
    cfg = create_quadruped_legs()[0]
    body = BodyPose(position=[0.0, 0.8, 0.0])
    rest_world = body.transform_point(cfg.rest_local_target)

    still = desired_foot_target(body, cfg, np.zeros(3), 0.1, 0.2)
    np.testing.assert_allclose(still, rest_world + body.forward * 0.1)

    velocity = np.array([0.5, 0.0, 0.0])
    moving = desired_foot_target(body, cfg, velocity, 0.1, 0.2)
    np.testing.assert_allclose(moving, rest_world + np.array([1.0, 0.0, 0.0]) * (0.1 + 0.5 * 0.2))


# ============================================================================
# Step Scheduling
# ============================================================================

def test_step_triggers_same_tick_and_is_not_interrupted():
    scheduler, coordinator = make_scheduler()
    leg = make_leg()
    legs = [leg]
    desired = np.array([0.0, 0.0, 0.65])

    coordinator.begin_tick(legs, 1.0)
    scheduler.update(leg, legs, desired, 0.5, 1.0, 0.01)
    coordinator.end_tick()
    assert leg.is_stepping
    assert leg.state == LegState.STEPPING
    np.testing.assert_allclose(leg.step_start, [0.0, 0.0, 0.0])
    np.testing.assert_allclose(leg.step_target, desired)
    assert leg.step_progress == pytest.approx(0.05)

    # A new far-away desire does not restart the step
    coordinator.begin_tick(legs, 1.01)
    foot = scheduler.update(leg, legs, np.array([2.0, 0.0, 2.0]), 0.5, 1.01, 0.01)
    coordinator.end_tick()
    assert leg.is_stepping
    np.testing.assert_allclose(leg.step_target, desired)
    assert leg.step_progress == pytest.approx(0.10)
    assert foot[1] > 0.0


def test_step_completes_and_plants():
    scheduler, coordinator = make_scheduler()
    leg = make_leg()
    legs = [leg]
    desired = np.array([0.1, 0.0, 0.7])
    now = 0.0
    for _ in range(30):
        now += 0.02
        coordinator.begin_tick(legs, now)
        scheduler.update(leg, legs, desired, 0.5, now, 0.02)
        coordinator.end_tick()
        if not leg.is_stepping:
            break
    assert leg.state == LegState.PLANTED
    np.testing.assert_allclose(leg.foot, desired)
    np.testing.assert_allclose(leg.last_planted, desired)
    assert leg.last_step_time == pytest.approx(now)
    assert leg.step_progress == 0.0


def test_no_step_below_threshold_or_speed():
    scheduler, coordinator = make_scheduler()
    leg = make_leg()
    legs = [leg]
    # Drift below threshold
    scheduler.update(leg, legs, np.array([0.0, 0.0, 0.55]), 0.5, 1.0, 0.01)
    assert not leg.is_stepping
    # Height difference does not count as drift
    scheduler.update(leg, legs, np.array([0.0, 0.9, 0.3]), 0.5, 1.0, 0.01)
    assert not leg.is_stepping
    # Far away but body too slow
    foot = scheduler.update(leg, legs, np.array([0.0, 0.0, 0.9]), 0.04, 1.0, 0.01)
    assert not leg.is_stepping
    np.testing.assert_allclose(foot, leg.last_planted)


def test_cooldown_and_floor():
    config = AnimatorConfig()
    scheduler, _ = make_scheduler(config)
    leg = make_leg()
    leg.last_step_time = 1.0
    desired = np.array([0.0, 0.0, 0.7])

    assert not scheduler.should_step(leg, desired, 0.5, 1.2)
    assert leg.rate_limited
    assert scheduler.should_step(leg, desired, 0.5, 1.3)
    assert not leg.rate_limited

    # Runtime edit below the floor is held at 0.1 s
    config.min_step_interval = 0.01
    assert scheduler.step_interval() == pytest.approx(0.1)
    assert not scheduler.should_step(leg, desired, 0.5, 1.05)
    assert scheduler.should_step(leg, desired, 0.5, 1.11)


def test_group_gating_defers_step():
    scheduler, coordinator = make_scheduler()
    a = make_leg(0)                                  # group A
    b = make_leg(1, planted=(1.0, 0.0, 0.0))         # group B
    legs = [a, b]
    coordinator.begin_tick(legs, 1.0)
    scheduler.update(a, legs, np.array([0.0, 0.0, 0.7]), 0.5, 1.0, 0.01)
    scheduler.update(b, legs, np.array([1.0, 0.0, 0.7]), 0.5, 1.0, 0.01)
    coordinator.end_tick()
    assert a.is_stepping
    assert not b.is_stepping
    assert coordinator.deferred_groups == {GROUP_B}


def test_runtime_threshold_change():
    config = AnimatorConfig()
    scheduler, _ = make_scheduler(config)
    leg = make_leg()
    desired = np.array([0.0, 0.0, 0.65])
    assert scheduler.should_step(leg, desired, 0.5, 1.0)
    config.step_threshold = 0.7
    assert not scheduler.should_step(leg, desired, 0.5, 1.0)


def test_leg_reset_and_status():
    leg = make_leg()
    leg.begin_step(np.array([0.0, 0.0, 0.7]))
    leg.step_progress = 0.5
    assert "STEPPING" in leg.status_string()
    leg.reset(np.array([1.0, 0.0, 1.0]))
    assert leg.state == LegState.PLANTED
    assert leg.last_step_time == float('-inf')
    np.testing.assert_allclose(leg.last_planted, [1.0, 0.0, 1.0])
    assert leg.status_string() == "FL[A]:PLANTED"

    excluded = Leg(index=2, config=LegConfig("BL", None, 0.5, 0.5, None, None), excluded=True)
    assert excluded.status_string() == "BL:EXCLUDED"


# ============================================================================
# Main
# ============================================================================

def run_all_tests():
    tests = [
        test_create_quadruped_legs,
        test_layout_proportions,
        test_validate_normalises_hint,
        test_invalid_leg_configs,
        test_swing_arc_shape,
        test_desired_target_stride_push,
        test_step_triggers_same_tick_and_is_not_interrupted,
        test_step_completes_and_plants,
        test_no_step_below_threshold_or_speed,
        test_cooldown_and_floor,
        test_group_gating_defers_step,
        test_runtime_threshold_change,
        test_leg_reset_and_status,
    ]
    for test in tests:
        test()
        print(f"  [✓] {test.__name__}")
    print("ALL TESTS PASSED ✓")


if __name__ == "__main__":
    run_all_tests()
