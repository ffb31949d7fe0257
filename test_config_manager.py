"""
test_config_manager.py - Tests for animator.ini loading, clamping and saving.

Tests validate:
- Defaults match the documented values
- Out-of-domain values are clamped (including the step interval floor)
- Missing file / sections fall back to defaults
- Values load from every section, bad values do not raise
- Save functions write back to the loaded file
"""

import os
import tempfile

import pytest

import config_manager
from config_manager import (AnimatorConfig, LayoutConfig, load_config, save_gait_settings,
                            save_walking_settings)

# ============================================================================
# Test Utilities
# ============================================================================

SAMPLE_INI = """
[walking]
step_threshold = 0.7
step_height = 0.2
step_speed = 6.0
stride_forward = 0.1

[gait]
step_stagger = 0.4
stagger_jitter = 0.02
min_step_interval = 0.3

[reach]
max_reach = 0.9

[ground]
search_up = 2.0
search_depth = 4.0

[layout]
leg_length = 1.2
hip_ratio = 0.6
"""


def write_ini(directory: str, text: str) -> str:
    path = os.path.join(directory, "animator.ini")
    with open(path, "w") as f:
        f.write(text)
    return path


# ============================================================================
# Defaults and Clamping
# ============================================================================

def test_defaults():
    cfg = AnimatorConfig()
    assert cfg.step_threshold == 0.6
    assert cfg.step_height == 0.15
    assert cfg.step_speed == 5.0
    assert cfg.step_stagger == 0.3
    assert cfg.stagger_jitter == 0.06
    assert cfg.max_reach == 1.2
    assert cfg.min_move_speed == 0.05
    assert cfg.min_step_interval == 0.25
    assert cfg.layout.upper_length == pytest.approx(0.5)
    assert cfg.layout.lower_length == pytest.approx(0.5)
    assert cfg.clamp() == []


def test_clamp_into_domain():
    cfg = AnimatorConfig(step_threshold=2.0, step_height=0.01, step_speed=1.0,
                         step_stagger=0.9, min_step_interval=0.01)
    assert cfg.step_threshold == 1.0
    assert cfg.step_height == 0.1
    assert cfg.step_speed == 3.0
    assert cfg.step_stagger == 0.5
    assert cfg.min_step_interval == pytest.approx(0.1)

    cfg.step_speed = 9.0
    assert cfg.clamp() == ["step_speed"]
    assert cfg.step_speed == 7.0


def test_layout_lower_length_floor():
    layout = LayoutConfig(leg_length=0.0)
    assert layout.lower_length == pytest.approx(0.01)


# ============================================================================
# Loading
# ============================================================================

def test_load_missing_file_uses_defaults():
    with tempfile.TemporaryDirectory() as d:
        cfg = load_config(os.path.join(d, "missing.ini"))
    assert cfg == AnimatorConfig()


def test_load_values():
    with tempfile.TemporaryDirectory() as d:
        cfg = load_config(write_ini(d, SAMPLE_INI))
    assert cfg.step_threshold == pytest.approx(0.7)
    assert cfg.step_height == pytest.approx(0.2)
    assert cfg.step_speed == pytest.approx(6.0)
    assert cfg.stride_forward == pytest.approx(0.1)
    assert cfg.step_stagger == pytest.approx(0.4)
    assert cfg.stagger_jitter == pytest.approx(0.02)
    assert cfg.min_step_interval == pytest.approx(0.3)
    assert cfg.max_reach == pytest.approx(0.9)
    assert cfg.probe.search_up == pytest.approx(2.0)
    assert cfg.probe.search_depth == pytest.approx(4.0)
    assert cfg.probe.wall_angle_deg == pytest.approx(45.0)
    assert cfg.layout.leg_length == pytest.approx(1.2)
    assert cfg.layout.upper_length == pytest.approx(0.72)
    # Untouched keys keep defaults
    assert cfg.min_move_speed == pytest.approx(0.05)
    assert cfg.layout.body_height == pytest.approx(0.8)


def test_load_clamps_out_of_range():
    text = "[walking]\nstep_threshold = 3.0\nstep_height = 0.5\n[gait]\nmin_step_interval = 0.0\n"
    with tempfile.TemporaryDirectory() as d:
        cfg = load_config(write_ini(d, text))
    assert cfg.step_threshold == 1.0
    assert cfg.step_height == 0.3
    assert cfg.min_step_interval == pytest.approx(0.1)


def test_load_bad_value_does_not_raise():
    with tempfile.TemporaryDirectory() as d:
        cfg = load_config(write_ini(d, "[walking]\nstep_threshold = fast\n"))
    assert cfg.step_threshold == 0.6


# ============================================================================
# Saving
# ============================================================================

def test_save_round_trip():
    with tempfile.TemporaryDirectory() as d:
        path = write_ini(d, SAMPLE_INI)
        load_config(path)
        assert save_walking_settings(0.8, 0.25, step_speed=4.0)
        assert save_gait_settings(0.35, stagger_jitter=0.05, min_step_interval=0.2)
        cfg = load_config(path)
    assert cfg.step_threshold == pytest.approx(0.8)
    assert cfg.step_height == pytest.approx(0.25)
    assert cfg.step_speed == pytest.approx(4.0)
    assert cfg.step_stagger == pytest.approx(0.35)
    assert cfg.stagger_jitter == pytest.approx(0.05)
    assert cfg.min_step_interval == pytest.approx(0.2)
    # Sections not saved are preserved
    assert cfg.max_reach == pytest.approx(0.9)


def test_save_without_load_fails():
    saved = (config_manager._cfg, config_manager._cfg_path)
    try:
        config_manager._cfg = None
        config_manager._cfg_path = None
        assert not save_walking_settings(0.6, 0.15)
        assert not save_gait_settings(0.3)
    finally:
        config_manager._cfg, config_manager._cfg_path = saved


def test_sample_ini_loads_defaults():
    path = os.path.join(os.path.dirname(os.path.abspath(__file__)), "animator.ini")
    assert load_config(path) == AnimatorConfig()


# ============================================================================
# Main
# ============================================================================

def run_all_tests():
    tests = [
        test_defaults,
        test_clamp_into_domain,
        test_layout_lower_length_floor,
        test_load_missing_file_uses_defaults,
        test_load_values,
        test_load_clamps_out_of_range,
        test_load_bad_value_does_not_raise,
        test_save_round_trip,
        test_save_without_load_fails,
        test_sample_ini_loads_defaults,
    ]
    for test in tests:
        test()
        print(f"  [✓] {test.__name__}")
    print("ALL TESTS PASSED ✓")


if __name__ == "__main__":
    run_all_tests()
