"""
leg_animator.py — Per-tick procedural leg animation for a four-legged body.

LegAnimator ties the pieces together once per simulation tick:

    body pose + velocity
        → desired foot target per leg (rest target + stride push, ground probed)
        → StepScheduler / GaitCoordinator (planted or stepping, swing arc)
        → solve_two_bone_ik (hip, knee, foot)
        → LegOutput per leg (positions, orientations, fault flags)

Faults stay local to the leg that raised them:
    GEOMETRY       IK failed → cached rest pose for this tick (logged once per episode)
    GROUND_MISS    probe miss → last planted / straight-down fallback (logged once per episode)
    RATE_LIMITED   step held by the cooldown (logged by the scheduler)
    REACH_CLAMPED  target out of reach → foot pulled onto the reach envelope (logged once per episode)
    CONFIGURATION  leg failed validation → excluded for the session (logged at construction)

Usage:
    animator = LegAnimator(BodyPose(position=[0, 0.8, 0]), config, FlatGround())
    while running:
        outputs = animator.tick(body_pose, dt)
        for out in outputs:
            draw(out.hip, out.knee, out.foot)
"""

import random
import logging
import numpy as np
from dataclasses import dataclass
from typing import Optional, List, Dict, Sequence

from body_motion import BodyPose, BodyMotionEstimator
from config_manager import AnimatorConfig
from free_gait import (ConfigurationFault, Leg, LegConfig, LegFault, StepScheduler,
                       create_quadruped_legs, desired_foot_target, validate_leg_config)
from gait_engine import GaitCoordinator, check_support
from kinematics import (GeometryFault, IKResult, WORLD_UP, as_vec3, look_rotation,
                        reach_limits, solve_two_bone_ik)
from terrain import FlatGround, GroundContact, GroundProbe, SurfaceType, find_step_ground

logger = logging.getLogger(__name__)


@dataclass
class LegOutput:
    """Pose and diagnostics for one leg after a tick (world frame).

    hip/knee/foot and the rotations are None for an excluded leg.
    Rotations are 3x3 matrices whose +Z column points down the bone.
    """
    name: str
    hip: Optional[np.ndarray]
    knee: Optional[np.ndarray]
    foot: Optional[np.ndarray]
    hip_rotation: Optional[np.ndarray]
    knee_rotation: Optional[np.ndarray]
    stepping: bool
    progress: float
    group: Optional[int]
    faults: LegFault
    surface: SurfaceType
    normal: np.ndarray


class LegAnimator:
    """Orchestrates stepping and IK for every leg of one body.

    Args:
        body_pose: Initial body transform (legs are planted at rest under it)
        config: AnimatorConfig, read every tick (default: AnimatorConfig())
        probe: GroundProbe (default: flat ground at Y = 0)
        leg_configs: Leg descriptions (default: create_quadruped_legs(config.layout))
        rng: Seeded random source for the gait stagger jitter
    """

    def __init__(self, body_pose: BodyPose, config: Optional[AnimatorConfig] = None,
                 probe: Optional[GroundProbe] = None,
                 leg_configs: Optional[Sequence[LegConfig]] = None,
                 rng: Optional[random.Random] = None):
        self.config = config if config is not None else AnimatorConfig()
        self.probe = probe if probe is not None else FlatGround()
        self.coordinator = GaitCoordinator(self.config, rng)
        self.scheduler = StepScheduler(self.config, self.coordinator)
        self.motion = BodyMotionEstimator(self.config.velocity_smoothing)

        if leg_configs is None:
            leg_configs = create_quadruped_legs(self.config.layout)

        self.legs: List[Leg] = []
        self._rest_local: Dict[int, IKResult] = {}
        for i, raw in enumerate(leg_configs):
            try:
                cfg = validate_leg_config(raw, self.config.max_reach)
                self._rest_local[i] = solve_two_bone_ik(
                    cfg.root_offset, cfg.rest_local_target, cfg.upper_length,
                    cfg.lower_length, cfg.bend_hint, self.config.max_reach)
            except (ConfigurationFault, GeometryFault) as e:
                logger.error("%s: excluded from IK for this session: %s", raw.name, e)
                self.legs.append(Leg(index=i, config=raw, excluded=True,
                                     faults=LegFault.CONFIGURATION))
                continue
            self.legs.append(Leg(index=i, config=cfg))

        self._time = 0.0
        self._body = body_pose
        self._velocity = np.zeros(3)
        self.support_ok = True
        self.outputs: List[LegOutput] = []
        self.reset(body_pose)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def time(self) -> float:
        """Simulation clock (sum of tick dt)."""
        return self._time

    @property
    def body_pose(self) -> BodyPose:
        """Body pose of the last tick (or reset)."""
        return self._body

    @property
    def active_legs(self) -> List[Leg]:
        return [leg for leg in self.legs if not leg.excluded]

    @property
    def body_velocity(self) -> np.ndarray:
        return self._velocity.copy()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def reset(self, body_pose: BodyPose) -> List[LegOutput]:
        """Re-plant every leg at its rest position under body_pose (teleport)."""
        self._body = body_pose
        self._velocity = np.zeros(3)
        self.motion.reset(body_pose.position)
        self.coordinator.reset()

        for leg in self.active_legs:
            rest = body_pose.transform_point(leg.config.rest_local_target)
            contact = self._find_ground(leg, rest, body_pose, None)
            leg.reset(contact.point)
            leg.contact_normal = contact.normal
            leg.surface = contact.surface
            if not contact.hit:
                leg.faults |= LegFault.GROUND_MISS

        self.outputs = []
        for leg in self.legs:
            result = None
            if not leg.excluded:
                try:
                    result = self._solve(leg, body_pose, leg.foot)
                except GeometryFault:
                    leg.faults |= LegFault.GEOMETRY
                    result = self._rest_pose(leg, body_pose)
                else:
                    if result.clamped:
                        leg.faults |= LegFault.REACH_CLAMPED
            self.outputs.append(self._leg_output(leg, body_pose, result))
        logger.debug("reset at %s: %s", np.round(body_pose.position, 3), self.status_string())
        return self.outputs

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def tick(self, body_pose: BodyPose, dt: float,
             velocity: Optional[np.ndarray] = None) -> List[LegOutput]:
        """
        Advance all legs by dt seconds for the given body pose.

        Args:
            body_pose: Body transform this tick
            dt: Tick duration (s); negative values are treated as 0
            velocity: Body velocity; estimated from position deltas if None

        Returns:
            One LegOutput per leg, in leg order.
        """
        cfg = self.config
        cfg.clamp()
        dt = max(0.0, dt)
        self._time += dt
        now = self._time
        self._body = body_pose

        self.motion.smoothing = cfg.velocity_smoothing
        estimated = self.motion.update(body_pose.position, dt)
        self._velocity = estimated if velocity is None else as_vec3(velocity)
        speed = float(np.linalg.norm(self._velocity))

        active = self.active_legs
        self.coordinator.begin_tick(active, now)
        outputs = [self._update_leg(leg, active, body_pose, speed, now, dt) for leg in self.legs]
        self.coordinator.end_tick()

        self.support_ok = check_support(active)
        if not self.support_ok:
            logger.error("support invariant violated: %s", self.status_string())

        self.outputs = outputs
        return outputs

    def _update_leg(self, leg: Leg, active: Sequence[Leg], body: BodyPose,
                    speed: float, now: float, dt: float) -> LegOutput:
        if leg.excluded:
            return self._leg_output(leg, body, None)

        cfg = self.config
        faults = LegFault.NONE

        # 1. Desired target in world space, resolved against the ground
        desired = desired_foot_target(body, leg.config, self._velocity,
                                      cfg.stride_forward, cfg.stride_velocity_scale)
        contact = self._find_ground(leg, desired, body, leg.last_planted)
        leg.contact_normal = contact.normal
        leg.surface = contact.surface
        if not contact.hit:
            faults |= LegFault.GROUND_MISS
            if LegFault.GROUND_MISS not in leg.faults:
                logger.warning("%s: no ground near %s, using fallback %s", leg.name,
                               np.round(desired, 3), np.round(contact.point, 3))

        # 2. Stepping state and current foot target
        foot_target = self.scheduler.update(leg, active, contact.point, speed, now, dt, body.up)
        if leg.rate_limited:
            faults |= LegFault.RATE_LIMITED

        # 3-4. IK, rest pose on failure
        try:
            result = self._solve(leg, body, foot_target)
        except GeometryFault as e:
            faults |= LegFault.GEOMETRY
            if LegFault.GEOMETRY not in leg.faults:
                logger.error("%s: geometry fault (%s), holding rest pose", leg.name, e)
            result = self._rest_pose(leg, body)
        else:
            if result.clamped:
                faults |= LegFault.REACH_CLAMPED
                if LegFault.REACH_CLAMPED not in leg.faults:
                    logger.warning("%s: target %s out of reach, foot clamped to %s", leg.name,
                                   np.round(foot_target, 3), np.round(result.foot, 3))

        leg.faults = faults
        return self._leg_output(leg, body, result)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _max_reach(self, leg: Leg) -> float:
        return reach_limits(leg.config.upper_length, leg.config.lower_length,
                            self.config.max_reach)[1]

    def _find_ground(self, leg: Leg, position: np.ndarray, body: BodyPose,
                     last_planted: Optional[np.ndarray]) -> GroundContact:
        probe_cfg = self.config.probe
        return find_step_ground(self.probe, position, probe_cfg.search_up, probe_cfg.search_depth,
                                hip=body.transform_point(leg.config.root_offset),
                                max_reach=self._max_reach(leg), last_planted=last_planted,
                                up=body.up, wall_angle_deg=probe_cfg.wall_angle_deg)

    def _solve(self, leg: Leg, body: BodyPose, foot_target: np.ndarray) -> IKResult:
        c = leg.config
        return solve_two_bone_ik(body.transform_point(c.root_offset), foot_target,
                                 c.upper_length, c.lower_length,
                                 body.transform_direction(c.bend_hint), self.config.max_reach)

    def _rest_pose(self, leg: Leg, body: BodyPose) -> IKResult:
        rest = self._rest_local[leg.index]
        return IKResult(hip=body.transform_point(rest.hip), knee=body.transform_point(rest.knee),
                        foot=body.transform_point(rest.foot))

    def _leg_output(self, leg: Leg, body: BodyPose, result: Optional[IKResult]) -> LegOutput:
        if result is None:
            return LegOutput(name=leg.name, hip=None, knee=None, foot=None,
                             hip_rotation=None, knee_rotation=None, stepping=False,
                             progress=0.0, group=leg.group, faults=leg.faults,
                             surface=SurfaceType.NONE, normal=WORLD_UP.copy())
        up = body.up
        return LegOutput(
            name=leg.name,
            hip=result.hip,
            knee=result.knee,
            foot=result.foot,
            hip_rotation=look_rotation(result.knee - result.hip, up),
            knee_rotation=look_rotation(result.foot - result.knee, up),
            stepping=leg.is_stepping,
            progress=leg.step_progress,
            group=leg.group,
            faults=leg.faults,
            surface=leg.surface,
            normal=leg.contact_normal.copy(),
        )

    def status_string(self) -> str:
        """Short status for logging/display."""
        legs = " ".join(leg.status_string() for leg in self.legs)
        return f"t={self._time:.3f} {legs} | {self.coordinator.status_string()}"

    def __repr__(self) -> str:
        return f"LegAnimator({self.status_string()})"
