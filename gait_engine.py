#----------------------------------------------------------------------------------------------------------------------
#    gait_engine.py — Diagonal gait coordination for the quadruped leg animator
#----------------------------------------------------------------------------------------------------------------------
# CHANGE LOG
# Format: YYYY-MM-DD  Summary
# 2026-09-28  Initial architecture: diagonal groups, GaitCoordinator with single active group.
# 2026-10-02  Stagger between groups with seeded jitter; fairness yield when the other group is waiting.
# 2026-10-06  check_support() validates the stability invariant explicitly (hop mode for single-group bodies).
#----------------------------------------------------------------------------------------------------------------------
"""
Gait Engine Module for the quadruped leg animator

Architecture:
    - GaitCoordinator: Grants step permission to legs so that only one diagonal
      group is ever stepping, with a stagger delay between group switches
    - assign_diagonal_group(): Group from the leg's root offset
    - check_support(): Stability invariant check over all legs

Coordinate System (matches kinematics.py):
    - X: lateral (positive = right)
    - Y: vertical (positive = up)
    - Z: forward/back (positive = forward)

Diagonal Groups:
    GROUP_A: front-left + back-right   (x < 0 and z >= 0, or x >= 0 and z < 0)
    GROUP_B: front-right + back-left   (x and z on the same side of 0)

Protocol (per tick):
    coordinator.begin_tick(legs, now)        # release the active group once it has planted
    for leg in legs:
        if leg wants to step and coordinator.request_step(leg, legs, now):
            start the step
    coordinator.end_tick()                   # roll deferred-request bookkeeping

The coordinator holds only summary state (active group, release time, stagger);
legs are passed in on every call. Legs only need `group` and `is_stepping`.
"""

import random
import logging
from typing import Optional, Sequence, Set

logger = logging.getLogger(__name__)

#----------------------------------------------------------------------------------------------------------------------
# Constants
#----------------------------------------------------------------------------------------------------------------------

GROUP_A = 0  # Front-left, back-right
GROUP_B = 1  # Front-right, back-left

GROUP_NAMES = ["A", "B"]


def group_name(group: Optional[int]) -> str:
    if group is None:
        return "-"
    if 0 <= group < len(GROUP_NAMES):
        return GROUP_NAMES[group]
    return str(group)


def assign_diagonal_group(root_offset) -> int:
    """Diagonal group from the quadrant of a body-frame root offset.

    Zero counts as right (x) and front (z), so centreline legs pair the
    same way as their neighbouring quadrant.
    """
    is_right = float(root_offset[0]) >= 0.0
    is_front = float(root_offset[2]) >= 0.0
    return GROUP_B if is_right == is_front else GROUP_A


def check_support(legs: Sequence) -> bool:
    """
    True if the stability invariant holds for legs.

    At most one group may be stepping, and while it is, at least one leg of
    another group must be planted. A body whose legs all share one group
    (hop mode) has no other group to hold it up and always passes.
    """
    stepping_groups = {leg.group for leg in legs if leg.is_stepping}
    if len(stepping_groups) > 1:
        return False
    for group in stepping_groups:
        others = [leg for leg in legs if leg.group != group]
        if others and not any(not leg.is_stepping for leg in others):
            return False
    return True


#----------------------------------------------------------------------------------------------------------------------
# GaitCoordinator
#----------------------------------------------------------------------------------------------------------------------

class GaitCoordinator:
    """Grants step permission per diagonal group.

    Rules:
        - While a group is active, only its legs may start steps.
        - The active group is released at the start of the first tick in which
          none of its legs is stepping; a fresh stagger is drawn at release.
        - Switching to a different group waits until the stagger has elapsed
          since release.
        - The same group may re-activate at once, unless another group had a
          request deferred on the previous tick (it yields).
        - Activation also requires a planted leg in another group.

    Args:
        config: Object exposing step_stagger and stagger_jitter (read on use)
        rng: Seeded random source for the stagger jitter
    """

    def __init__(self, config, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng if rng is not None else random.Random()
        self.reset()

    def reset(self) -> None:
        """Return to idle with no history."""
        self._active: Optional[int] = None
        self._last: Optional[int] = None
        self._release_time: float = float('-inf')
        self._stagger: float = 0.0
        self._deferred_prev: Set[int] = set()
        self._deferred_now: Set[int] = set()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def active_group(self) -> Optional[int]:
        return self._active

    @property
    def last_group(self) -> Optional[int]:
        return self._last

    @property
    def current_stagger(self) -> float:
        return self._stagger

    @property
    def release_time(self) -> float:
        return self._release_time

    @property
    def deferred_groups(self) -> Set[int]:
        """Groups whose requests were deferred on the previous tick."""
        return set(self._deferred_prev)

    # -------------------------------------------------------------------------
    # Tick protocol
    # -------------------------------------------------------------------------

    def draw_stagger(self) -> float:
        """Base stagger plus uniform jitter, never negative."""
        jitter = self.config.stagger_jitter
        return max(0.0, self.config.step_stagger + self.rng.uniform(-jitter, jitter))

    def begin_tick(self, legs: Sequence, now: float) -> None:
        """Release the active group once none of its legs is stepping."""
        if self._active is None:
            return
        if any(leg.is_stepping and leg.group == self._active for leg in legs):
            return
        self._last = self._active
        self._active = None
        self._release_time = now
        self._stagger = self.draw_stagger()
        logger.debug("group %s released at %.3f, stagger %.3f",
                     group_name(self._last), now, self._stagger)

    def request_step(self, leg, legs: Sequence, now: float) -> bool:
        """Ask permission for leg to start a step now. Activates its group if granted."""
        group = leg.group

        if self._active is not None:
            if group == self._active:
                return True
            return self._defer(group)

        if self._last is not None:
            if group != self._last:
                if now - self._release_time < self._stagger:
                    return self._defer(group)
            elif self._deferred_prev - {group}:
                # Another group has been waiting; let it go first
                return self._defer(group)

        if not self._has_support(group, legs):
            return self._defer(group)

        self._active = group
        logger.debug("group %s active at %.3f", group_name(group), now)
        return True

    def end_tick(self) -> None:
        self._deferred_prev = self._deferred_now
        self._deferred_now = set()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _defer(self, group: int) -> bool:
        self._deferred_now.add(group)
        return False

    @staticmethod
    def _has_support(group: int, legs: Sequence) -> bool:
        others = [leg for leg in legs if leg.group != group]
        return not others or any(not leg.is_stepping for leg in others)

    def status_string(self) -> str:
        """Short status for logging/display."""
        return (f"active={group_name(self._active)} last={group_name(self._last)} "
                f"stagger={self._stagger:.3f}s waiting={sorted(self._deferred_prev)}")

    def __repr__(self) -> str:
        return f"GaitCoordinator({self.status_string()})"
