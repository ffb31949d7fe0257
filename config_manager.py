"""
config_manager.py — Configuration loading and persistence for the leg animator.

Handles animator.ini parsing, defaults, domain clamping and save functions.
The animator keeps a reference to the AnimatorConfig it was built with and
reads it every tick, so edits to the object (or a reload) take effect on the
next tick.
"""

from __future__ import annotations
import os
import logging
import configparser
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Tuple

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Configuration file path (module-level state shared by the save functions)
# -----------------------------------------------------------------------------
_cfg: Optional[configparser.ConfigParser] = None
_cfg_path: Optional[str] = None


def _get_config_path() -> str:
    """Return path to animator.ini relative to this module."""
    if '__file__' in globals():
        return os.path.join(os.path.dirname(__file__), 'animator.ini')
    return 'animator.ini'


# -----------------------------------------------------------------------------
# Parameter domains
# -----------------------------------------------------------------------------

# (min, max) per AnimatorConfig field; None = unbounded on that side
PARAM_LIMITS: Dict[str, Tuple[Optional[float], Optional[float]]] = {
    'step_threshold': (0.4, 1.0),
    'step_height': (0.1, 0.3),
    'step_speed': (3.0, 7.0),
    'step_stagger': (0.2, 0.5),
    'stagger_jitter': (0.0, 0.1),
    'max_reach': (0.05, None),
    'min_move_speed': (0.0, None),
    'min_step_interval': (0.1, None),  # hard floor on step frequency
    'stride_forward': (0.0, 1.5),
    'stride_velocity_scale': (0.0, 1.5),
    'velocity_smoothing': (0.1, 60.0),
}

MIN_STEP_INTERVAL_FLOOR = PARAM_LIMITS['min_step_interval'][0]


# -----------------------------------------------------------------------------
# Default configuration values
# -----------------------------------------------------------------------------
@dataclass
class ProbeConfig:
    search_up: float = 1.5       # probe start above the query point
    search_depth: float = 3.0    # probe reach below the query point
    wall_angle_deg: float = 45.0  # ground/wall/ceiling split


@dataclass
class LayoutConfig:
    """Body proportions used to build the four legs."""
    leg_length: float = 1.0     # hip -> foot total
    hip_ratio: float = 0.5      # share of leg_length in the upper segment
    hip_distance: float = 0.3   # hip offset from body centre along X and Z
    rest_spread: float = 0.35   # outward offset of the rest foot from the hip
    body_height: float = 0.8    # rest drop of the foot below the hip

    def __post_init__(self):
        """Clamp hip_ratio so neither segment vanishes."""
        self.hip_ratio = max(0.05, min(0.95, self.hip_ratio))

    @property
    def upper_length(self) -> float:
        return self.leg_length * self.hip_ratio

    @property
    def lower_length(self) -> float:
        return max(self.leg_length - self.upper_length, 0.01)


@dataclass
class AnimatorConfig:
    """Master configuration container for the leg animator."""
    # Walking
    step_threshold: float = 0.6     # horizontal drift that triggers a step
    step_height: float = 0.15       # swing arc peak
    step_speed: float = 5.0         # progress per second
    # Gait
    step_stagger: float = 0.3       # delay between diagonal groups (s)
    stagger_jitter: float = 0.06    # +/- random jitter on the stagger (s)
    min_step_interval: float = 0.25  # per-leg cooldown after planting (s)
    # Reach
    max_reach: float = 1.2          # absolute reach cap
    # Motion
    min_move_speed: float = 0.05    # below this speed no step starts
    stride_forward: float = 0.0     # fixed push of the target along motion
    stride_velocity_scale: float = 0.2  # extra push per unit speed
    velocity_smoothing: float = 5.0  # body velocity blend rate (1/s)

    probe: ProbeConfig = field(default_factory=ProbeConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)

    def __post_init__(self):
        self.clamp()

    def clamp(self) -> List[str]:
        """Clamp every parameter into its domain. Returns the names changed."""
        changed = []
        for name, (lo, hi) in PARAM_LIMITS.items():
            value = getattr(self, name)
            clamped = value
            if lo is not None and clamped < lo:
                clamped = lo
            if hi is not None and clamped > hi:
                clamped = hi
            if clamped != value:
                logger.warning("%s=%s out of range, clamped to %s", name, value, clamped)
                setattr(self, name, clamped)
                changed.append(name)
        return changed


# -----------------------------------------------------------------------------
# Load configuration
# -----------------------------------------------------------------------------
def load_config(config_path: Optional[str] = None) -> AnimatorConfig:
    """Load configuration from animator.ini file.

    Returns an AnimatorConfig dataclass with all values populated.
    Missing file, sections or keys use defaults.
    """
    global _cfg, _cfg_path

    cfg = AnimatorConfig()

    if config_path is None:
        config_path = _get_config_path()

    _cfg_path = config_path
    _cfg = configparser.ConfigParser()

    try:
        _cfg.read(config_path)
    except (configparser.Error, OSError, UnicodeDecodeError) as e:
        logger.warning("Config read error: %s", e)
        return cfg

    try:
        # Walking section
        if 'walking' in _cfg:
            cfg.step_threshold = _cfg.getfloat('walking', 'step_threshold', fallback=cfg.step_threshold)
            cfg.step_height = _cfg.getfloat('walking', 'step_height', fallback=cfg.step_height)
            cfg.step_speed = _cfg.getfloat('walking', 'step_speed', fallback=cfg.step_speed)
            cfg.stride_forward = _cfg.getfloat('walking', 'stride_forward', fallback=cfg.stride_forward)
            cfg.stride_velocity_scale = _cfg.getfloat('walking', 'stride_velocity_scale',
                                                      fallback=cfg.stride_velocity_scale)
            cfg.min_move_speed = _cfg.getfloat('walking', 'min_move_speed', fallback=cfg.min_move_speed)
            cfg.velocity_smoothing = _cfg.getfloat('walking', 'velocity_smoothing',
                                                   fallback=cfg.velocity_smoothing)

        # Gait section
        if 'gait' in _cfg:
            cfg.step_stagger = _cfg.getfloat('gait', 'step_stagger', fallback=cfg.step_stagger)
            cfg.stagger_jitter = _cfg.getfloat('gait', 'stagger_jitter', fallback=cfg.stagger_jitter)
            cfg.min_step_interval = _cfg.getfloat('gait', 'min_step_interval',
                                                  fallback=cfg.min_step_interval)

        # Reach section
        if 'reach' in _cfg:
            cfg.max_reach = _cfg.getfloat('reach', 'max_reach', fallback=cfg.max_reach)

        # Ground section
        if 'ground' in _cfg:
            cfg.probe.search_up = _cfg.getfloat('ground', 'search_up', fallback=cfg.probe.search_up)
            cfg.probe.search_depth = _cfg.getfloat('ground', 'search_depth',
                                                   fallback=cfg.probe.search_depth)
            cfg.probe.wall_angle_deg = _cfg.getfloat('ground', 'wall_angle_deg',
                                                     fallback=cfg.probe.wall_angle_deg)

        # Layout section
        if 'layout' in _cfg:
            cfg.layout = LayoutConfig(
                leg_length=_cfg.getfloat('layout', 'leg_length', fallback=cfg.layout.leg_length),
                hip_ratio=_cfg.getfloat('layout', 'hip_ratio', fallback=cfg.layout.hip_ratio),
                hip_distance=_cfg.getfloat('layout', 'hip_distance', fallback=cfg.layout.hip_distance),
                rest_spread=_cfg.getfloat('layout', 'rest_spread', fallback=cfg.layout.rest_spread),
                body_height=_cfg.getfloat('layout', 'body_height', fallback=cfg.layout.body_height),
            )

    except (configparser.Error, ValueError, KeyError) as e:
        logger.warning("Config parse error (using defaults): %s", e)

    cfg.clamp()
    return cfg


# -----------------------------------------------------------------------------
# Save functions
# -----------------------------------------------------------------------------
def save_walking_settings(step_threshold: float, step_height: float,
                          step_speed: Optional[float] = None) -> bool:
    """Save walking parameters to animator.ini [walking] section."""
    global _cfg, _cfg_path
    if _cfg is None or _cfg_path is None:
        return False
    try:
        if 'walking' not in _cfg:
            _cfg.add_section('walking')
        _cfg.set('walking', 'step_threshold', f'{step_threshold:.3f}')
        _cfg.set('walking', 'step_height', f'{step_height:.3f}')
        if step_speed is not None:
            _cfg.set('walking', 'step_speed', f'{step_speed:.2f}')
        with open(_cfg_path, 'w') as f:
            _cfg.write(f)
        return True
    except (IOError, OSError, configparser.Error) as e:
        logger.error("Failed to save walking settings: %s", e)
        return False


def save_gait_settings(step_stagger: float, stagger_jitter: Optional[float] = None,
                       min_step_interval: Optional[float] = None) -> bool:
    """Save gait timing to animator.ini [gait] section."""
    global _cfg, _cfg_path
    if _cfg is None or _cfg_path is None:
        return False
    try:
        if 'gait' not in _cfg:
            _cfg.add_section('gait')
        _cfg.set('gait', 'step_stagger', f'{step_stagger:.3f}')
        if stagger_jitter is not None:
            _cfg.set('gait', 'stagger_jitter', f'{stagger_jitter:.3f}')
        if min_step_interval is not None:
            _cfg.set('gait', 'min_step_interval', f'{min_step_interval:.3f}')
        with open(_cfg_path, 'w') as f:
            _cfg.write(f)
        return True
    except (IOError, OSError, configparser.Error) as e:
        logger.error("Failed to save gait settings: %s", e)
        return False
