"""Free Gait — Per-leg state and event-driven step scheduling

Each leg owns a small state machine and decides for itself when it has
drifted far enough from where it wants to be to take a step. A central
GaitCoordinator (gait_engine.py) grants the actual permission so that
diagonal groups never step at the same time.

Architecture:
    LegConfig (×4, statically declared by create_quadruped_legs)
        ├── Root offset, segment lengths, bend hint, rest target (body frame)
        └── Diagonal group, fixed at construction

    Leg (runtime record, one per LegConfig)
        ├── State machine: PLANTED → STEPPING → PLANTED
        └── Step start/target, progress, last planted position, timers

    StepScheduler
        ├── Trigger: drift > step_threshold, speed > min_move_speed,
        │   cooldown elapsed, group permitted
        └── Advances the swing arc and plants the foot at progress 1

Swing arc:
    foot(p) = lerp(start, target, p) + up × sin(p·π) × step_height
    Symmetric about p = 0.5, on the straight line at p ∈ {0, 1}.
"""

import math
import logging
import numpy as np
from enum import Enum, Flag, auto
from dataclasses import dataclass, field
from typing import Optional, List, Sequence

from config_manager import LayoutConfig, MIN_STEP_INTERVAL_FLOOR
from gait_engine import assign_diagonal_group, group_name
from kinematics import (WORLD_UP, as_vec3, horizontal_distance, is_finite, lerp,
                        reach_limits, safe_normalize)
from terrain import SurfaceType

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

# Leg indices
LEG_FL = 0  # Front Left
LEG_FR = 1  # Front Right
LEG_BL = 2  # Back Left
LEG_BR = 3  # Back Right

LEG_NAMES = ["FL", "FR", "BL", "BR"]

# (x, z) sign of each hip on the body
LEG_SIGNS = [(-1.0, 1.0), (1.0, 1.0), (-1.0, -1.0), (1.0, -1.0)]

# Minimum |sin| between bend hint and hip->rest axis
BEND_HINT_MIN_SIN = 1e-3


class ConfigurationFault(ValueError):
    """Raised when a leg's geometry description is missing or invalid."""


class LegState(Enum):
    """Ground-contact lifecycle of a leg.

    Transitions:
        PLANTED → STEPPING: Scheduler trigger + coordinator permission
        STEPPING → PLANTED: step_progress reaches 1.0
    """
    PLANTED = auto()   # Foot locked at last_planted
    STEPPING = auto()  # Foot following the swing arc


class LegFault(Flag):
    """Per-leg diagnostic flags for the current tick."""
    NONE = 0
    GEOMETRY = auto()       # IK failed, rest pose substituted
    GROUND_MISS = auto()    # Probe found nothing, fallback position used
    CONFIGURATION = auto()  # Leg excluded for the session
    RATE_LIMITED = auto()   # Step wanted but cooldown not elapsed
    REACH_CLAMPED = auto()  # Target outside reach, foot pulled onto the reach envelope


# -----------------------------------------------------------------------------
# Leg configuration
# -----------------------------------------------------------------------------

@dataclass
class LegConfig:
    """Static description of one leg (body frame).

    Attributes:
        name: Human-readable name ("FL", "FR", ...)
        root_offset: Hip attachment point relative to the body
        upper_length: Hip -> knee length
        lower_length: Knee -> foot length
        bend_hint: Direction the knee bows toward
        rest_local_target: Foot position at rest
        group: Diagonal group; assigned from root_offset if None
    """
    name: str
    root_offset: Optional[np.ndarray]
    upper_length: float
    lower_length: float
    bend_hint: Optional[np.ndarray]
    rest_local_target: Optional[np.ndarray]
    group: Optional[int] = None


def _checked_vec(value, what: str, name: str) -> np.ndarray:
    if value is None:
        raise ConfigurationFault(f"{name}: missing {what}")
    try:
        v = as_vec3(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationFault(f"{name}: invalid {what} ({e})") from e
    if not is_finite(v):
        raise ConfigurationFault(f"{name}: non-finite {what}")
    return v


def validate_leg_config(cfg: LegConfig, max_reach: Optional[float] = None) -> LegConfig:
    """
    Check a leg description and return a normalised copy.

    Raises ConfigurationFault if a vector is missing or non-finite, a segment
    length is not positive, the rest target is outside the reach envelope,
    or the bend hint is parallel to the hip -> rest axis.
    """
    root = _checked_vec(cfg.root_offset, "root offset", cfg.name)
    rest = _checked_vec(cfg.rest_local_target, "rest target", cfg.name)
    hint = _checked_vec(cfg.bend_hint, "bend hint", cfg.name)

    for what, length in (("upper length", cfg.upper_length), ("lower length", cfg.lower_length)):
        if length is None or not math.isfinite(length) or length <= 0.0:
            raise ConfigurationFault(f"{cfg.name}: {what} must be > 0 (got {length})")

    hint_unit = safe_normalize(hint)
    if hint_unit is None:
        raise ConfigurationFault(f"{cfg.name}: zero-length bend hint")

    axis = rest - root
    axis_unit = safe_normalize(axis)
    if axis_unit is None:
        raise ConfigurationFault(f"{cfg.name}: rest target coincides with hip")

    min_r, max_r = reach_limits(cfg.upper_length, cfg.lower_length, max_reach)
    dist = float(np.linalg.norm(axis))
    if dist < min_r - 1e-9 or dist > max_r + 1e-9:
        raise ConfigurationFault(
            f"{cfg.name}: rest distance {dist:.3f} outside reach [{min_r:.3f}, {max_r:.3f}]")

    if np.linalg.norm(np.cross(hint_unit, axis_unit)) < BEND_HINT_MIN_SIN:
        raise ConfigurationFault(f"{cfg.name}: bend hint parallel to leg axis")

    group = cfg.group if cfg.group is not None else assign_diagonal_group(root)
    if group < 0:
        raise ConfigurationFault(f"{cfg.name}: invalid group {group}")

    return LegConfig(name=cfg.name, root_offset=root, upper_length=float(cfg.upper_length),
                     lower_length=float(cfg.lower_length), bend_hint=hint_unit,
                     rest_local_target=rest, group=group)


def create_quadruped_legs(layout: Optional[LayoutConfig] = None) -> List[LegConfig]:
    """Build the four leg descriptions (FL, FR, BL, BR) from body proportions.

    Hips sit at (±hip_distance, 0, ±hip_distance). Each rest foot is
    rest_spread outward from its hip (away from the body centre) and
    body_height below it; the knee bows outward.
    """
    if layout is None:
        layout = LayoutConfig()
    legs = []
    for i, (sx, sz) in enumerate(LEG_SIGNS):
        root = np.array([sx * layout.hip_distance, 0.0, sz * layout.hip_distance])
        outward = np.array([sx, 0.0, sz]) / math.sqrt(2.0)
        rest = root + outward * layout.rest_spread + np.array([0.0, -layout.body_height, 0.0])
        legs.append(LegConfig(
            name=LEG_NAMES[i],
            root_offset=root,
            upper_length=layout.upper_length,
            lower_length=layout.lower_length,
            bend_hint=outward.copy(),
            rest_local_target=rest,
        ))
    return legs


# -----------------------------------------------------------------------------
# Runtime leg state
# -----------------------------------------------------------------------------

@dataclass
class Leg:
    """Runtime state of one leg (world frame positions).

    Attributes:
        index: Leg index in the animator
        config: Validated LegConfig (or the raw one if excluded)
        state: PLANTED or STEPPING
        foot: Current foot target
        step_start: Foot position when the step began
        step_target: Ground contact the step lands on
        step_progress: 0.0-1.0 through the step (0 while planted)
        last_planted: Most recent grounded foot position
        last_step_time: Time the last step completed (-inf before any)
        contact_normal / surface: Ground under the last planted position
        faults: Diagnostic flags from the last tick
        rate_limited: Step currently held back by the cooldown
        excluded: True if the leg failed validation (never solved)
    """
    index: int
    config: LegConfig
    state: LegState = LegState.PLANTED
    foot: np.ndarray = field(default_factory=lambda: np.zeros(3))
    step_start: np.ndarray = field(default_factory=lambda: np.zeros(3))
    step_target: np.ndarray = field(default_factory=lambda: np.zeros(3))
    step_progress: float = 0.0
    last_planted: Optional[np.ndarray] = None
    last_step_time: float = float('-inf')
    contact_normal: np.ndarray = field(default_factory=lambda: WORLD_UP.copy())
    surface: SurfaceType = SurfaceType.NONE
    faults: LegFault = LegFault.NONE
    rate_limited: bool = False
    excluded: bool = False

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def group(self) -> Optional[int]:
        return self.config.group

    @property
    def is_stepping(self) -> bool:
        return self.state == LegState.STEPPING

    def _transition_to(self, new_state: LegState) -> None:
        if new_state != self.state:
            logger.debug("%s: %s -> %s", self.name, self.state.name, new_state.name)
            self.state = new_state

    def plant_at(self, position: np.ndarray, now: Optional[float] = None) -> None:
        """Ground the foot at position. Records now as the step completion time."""
        self.foot = as_vec3(position)
        self.last_planted = self.foot.copy()
        self.step_progress = 0.0
        if now is not None:
            self.last_step_time = now
        self._transition_to(LegState.PLANTED)

    def begin_step(self, target: np.ndarray) -> None:
        """Start a step from the planted position toward target."""
        self.step_start = self.last_planted.copy()
        self.step_target = as_vec3(target)
        self.step_progress = 0.0
        self._transition_to(LegState.STEPPING)

    def reset(self, position: np.ndarray) -> None:
        """Re-plant at position with timers cleared (teleport / re-init)."""
        self.plant_at(position)
        self.last_step_time = float('-inf')
        self.rate_limited = False
        self.faults = LegFault.NONE

    def status_string(self) -> str:
        """Short status for logging/display."""
        if self.excluded:
            return f"{self.name}:EXCLUDED"
        s = f"{self.name}[{group_name(self.group)}]:{self.state.name}"
        if self.is_stepping:
            s += f"({self.step_progress:.0%})"
        return s

    def __repr__(self) -> str:
        return f"Leg({self.status_string()})"


# -----------------------------------------------------------------------------
# Step scheduling
# -----------------------------------------------------------------------------

def swing_arc_position(start: np.ndarray, target: np.ndarray, progress: float,
                       up: np.ndarray, step_height: float) -> np.ndarray:
    """Foot position along the swing arc at progress (0-1)."""
    return lerp(start, target, progress) + up * (math.sin(progress * math.pi) * step_height)


def desired_foot_target(body, config: LegConfig, velocity: np.ndarray,
                        stride_forward: float, stride_velocity_scale: float) -> np.ndarray:
    """
    Where the foot wants to be this tick (world frame, before ground probing).

    The rest target is pushed along the motion direction (body forward when
    nearly stationary) by stride_forward + speed × stride_velocity_scale so
    that planted feet do not trail behind a moving body.
    """
    desired = body.transform_point(config.rest_local_target)
    speed = float(np.linalg.norm(velocity))
    move_dir = velocity / speed if speed > 0.01 else body.forward
    return desired + move_dir * (stride_forward + speed * stride_velocity_scale)


class StepScheduler:
    """Decides when each leg steps and advances steps in flight.

    Reads its parameters from config on every call so runtime edits apply
    on the next tick.

    Args:
        config: AnimatorConfig
        coordinator: GaitCoordinator granting group permission
    """

    def __init__(self, config, coordinator):
        self.config = config
        self.coordinator = coordinator

    def step_interval(self) -> float:
        return max(self.config.min_step_interval, MIN_STEP_INTERVAL_FLOOR)

    def should_step(self, leg: Leg, desired: np.ndarray, speed: float, now: float,
                    up: np.ndarray = WORLD_UP) -> bool:
        """Distance, speed and cooldown gates (group permission is separate)."""
        cfg = self.config
        if leg.is_stepping or leg.last_planted is None:
            return False

        drift = horizontal_distance(leg.last_planted, desired, up)
        if drift <= cfg.step_threshold or speed <= cfg.min_move_speed:
            leg.rate_limited = False
            return False

        since = now - leg.last_step_time
        if since <= self.step_interval():
            if not leg.rate_limited:
                logger.warning("%s: step suppressed, %.3fs since last step (min %.3fs)",
                               leg.name, since, self.step_interval())
            leg.rate_limited = True
            return False

        leg.rate_limited = False
        return True

    def update(self, leg: Leg, legs: Sequence[Leg], desired: np.ndarray, speed: float,
               now: float, dt: float, up: np.ndarray = WORLD_UP) -> np.ndarray:
        """
        Run one tick of the leg's state machine.

        Args:
            leg: Leg to update
            legs: All participating legs (for the coordinator)
            desired: Ground-resolved desired foot position
            speed: Body speed
            now: Simulation time (s)
            dt: Tick duration (s)
            up: Lift direction for the swing arc

        Returns:
            Foot position for this tick.
        """
        cfg = self.config

        if (not leg.is_stepping and self.should_step(leg, desired, speed, now)
                and self.coordinator.request_step(leg, legs, now)):
            leg.begin_step(desired)
            logger.debug("%s: step %s -> %s", leg.name,
                         np.round(leg.step_start, 3), np.round(leg.step_target, 3))

        if leg.is_stepping:
            leg.step_progress = min(1.0, leg.step_progress + cfg.step_speed * dt)
            if leg.step_progress >= 1.0:
                leg.plant_at(leg.step_target, now)
            else:
                leg.foot = swing_arc_position(leg.step_start, leg.step_target,
                                              leg.step_progress, up, cfg.step_height)

        return leg.foot.copy()
