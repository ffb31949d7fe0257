"""
kinematics.py — Two-bone leg geometry for the quadruped leg animator.

This module provides the closed-form Inverse Kinematics (IK) used to place
each leg's foot on its target, plus the small vector helpers shared by the
rest of the animator (normalisation, horizontal distance, interpolation and
look-rotation frames for joint orientations).

Coordinate System (World / Body Frame):
    X: Right is positive
    Y: Up is positive (flat ground is typically at Y = 0)
    Z: Forward is positive

Leg Kinematic Chain (IKResult returned by solve_two_bone_ik):
    hip   — Leg root. Attachment point on the body, fixed offset from the
            body centre.
    knee  — Middle joint. upper_length from the hip, bowed toward the
            leg's bend hint.
    foot  — End-effector. lower_length from the knee, placed on the target
            (or on the reach-clamped target when it is out of range).

    Visualization (side view, bend hint pointing right):

        (hip)●
              \\
               \\ upper
                \\
                 ●(knee)
                /
               / lower
              /
        (foot)●

Reach limits keep the solve away from the singular fully-folded and
fully-extended configurations:
    min_reach = |upper - lower| + REACH_MIN_MARGIN
    max_reach = min(upper + lower - REACH_MAX_MARGIN, absolute cap)
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

# Softening applied to the reach envelope (world units)
REACH_MIN_MARGIN = 0.01
REACH_MAX_MARGIN = 0.02

# Vectors shorter than this are treated as zero-length
DEGENERATE_EPS = 1e-6

WORLD_UP = np.array([0.0, 1.0, 0.0])
WORLD_FORWARD = np.array([0.0, 0.0, 1.0])
WORLD_RIGHT = np.array([1.0, 0.0, 0.0])


class GeometryFault(ArithmeticError):
    """Raised when the two-bone solve is given, or produces, invalid geometry."""


@dataclass
class IKResult:
    """3D joint positions of a solved leg (world frame)."""
    hip: np.ndarray    # Leg root (solve origin)
    knee: np.ndarray   # Middle joint
    foot: np.ndarray   # End-effector
    clamped: bool = False  # True if the target was moved onto the reach envelope


# -----------------------------------------------------------------------------
# Vector helpers
# -----------------------------------------------------------------------------

def as_vec3(v) -> np.ndarray:
    """Return v as a float64 numpy array of shape (3,)."""
    arr = np.asarray(v, dtype=float).reshape(3)
    return arr.copy()


def is_finite(*vectors) -> bool:
    """True if every component of every vector is finite."""
    return all(np.all(np.isfinite(v)) for v in vectors)


def safe_normalize(v: np.ndarray, eps: float = DEGENERATE_EPS) -> Optional[np.ndarray]:
    """Return v scaled to unit length, or None if it is (near) zero-length."""
    n = float(np.linalg.norm(v))
    if not math.isfinite(n) or n < eps:
        return None
    return v / n


def project_on_plane(v: np.ndarray, normal: np.ndarray) -> np.ndarray:
    """Remove the component of v along a unit normal."""
    return v - normal * float(np.dot(v, normal))


def horizontal_distance(a: np.ndarray, b: np.ndarray, up: np.ndarray = WORLD_UP) -> float:
    """Distance between a and b ignoring the component along up."""
    return float(np.linalg.norm(project_on_plane(b - a, up)))


def lerp(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    """Linear interpolation a -> b (t is not clamped)."""
    return a + (b - a) * t


def look_rotation(forward: np.ndarray, up: np.ndarray = WORLD_UP) -> np.ndarray:
    """
    Build an orientation whose +Z axis points along forward.

    Returns a 3x3 rotation matrix with columns (right, up, forward). The up
    column is the given up hint made orthogonal to forward; when the hint is
    parallel to forward, world forward (or world right) is used instead so
    the frame is always well-defined. A zero-length forward gives identity.
    """
    f = safe_normalize(np.asarray(forward, dtype=float))
    if f is None:
        return np.eye(3)

    for hint in (np.asarray(up, dtype=float), WORLD_FORWARD, WORLD_RIGHT):
        r = safe_normalize(np.cross(hint, f))
        if r is not None:
            break
    else:  # pragma: no cover - the three hints cannot all be parallel to f
        return np.eye(3)

    u = np.cross(f, r)
    return np.column_stack((r, u, f))


# -----------------------------------------------------------------------------
# Two-bone IK
# -----------------------------------------------------------------------------

def reach_limits(upper_length: float, lower_length: float,
                 max_reach: Optional[float] = None) -> Tuple[float, float]:
    """
    Return (min_reach, max_reach) for a two-bone chain.

    max_reach, if given, is an absolute cap applied on top of the softened
    upper + lower length. The upper limit never drops below the lower one.
    """
    min_r = abs(upper_length - lower_length) + REACH_MIN_MARGIN
    max_r = upper_length + lower_length - REACH_MAX_MARGIN
    if max_reach is not None:
        max_r = min(max_r, max_reach)
    return min_r, max(max_r, min_r)


def bend_direction(direction: np.ndarray, bend_hint: np.ndarray) -> np.ndarray:
    """
    Unit vector perpendicular to direction, lying in the bend hint's half-plane.

    Equivalent to cross(cross(direction, hint), direction). If the hint is
    (nearly) parallel to direction, world up is tried, then world forward.
    """
    for candidate in (bend_hint, WORLD_UP, WORLD_FORWARD):
        perp = safe_normalize(project_on_plane(np.asarray(candidate, dtype=float), direction))
        if perp is not None:
            return perp
    raise GeometryFault("no viable bend direction")


def solve_two_bone_ik(origin, target, upper_length: float, lower_length: float,
                      bend_hint, max_reach: Optional[float] = None) -> IKResult:
    """
    Solve a two-bone chain analytically (law of cosines).

    Args:
        origin: Hip (chain root) position
        target: Requested foot position
        upper_length: Hip -> knee segment length (> 0)
        lower_length: Knee -> foot segment length (> 0)
        bend_hint: Direction the knee should bow toward
        max_reach: Optional absolute cap on reach

    Returns:
        IKResult with hip, knee and foot positions. The foot equals the target
        when it is within [min_reach, max_reach]; otherwise it lies on the
        clamped distance along the original hip -> target direction.

    Raises:
        GeometryFault: non-finite input or output, non-positive segment
            lengths, or a zero-length hip -> target vector.

    The function is pure: identical inputs give identical outputs.
    """
    origin = as_vec3(origin)
    target = as_vec3(target)
    hint = as_vec3(bend_hint)

    if not is_finite(origin, target, hint):
        raise GeometryFault("non-finite IK input")
    if not (upper_length > 0.0 and lower_length > 0.0):
        raise GeometryFault(f"invalid segment lengths {upper_length}, {lower_length}")

    to_target = target - origin
    distance = float(np.linalg.norm(to_target))
    if distance < DEGENERATE_EPS:
        raise GeometryFault("zero-length hip-to-target vector")
    direction = to_target / distance

    # 1. Reachability clamp
    min_r, max_r = reach_limits(upper_length, lower_length, max_reach)
    clamped_distance = max(min_r, min(max_r, distance))
    clamped = clamped_distance != distance
    foot = origin + direction * clamped_distance if clamped else target

    # 2. Angle at the hip between the chord and the upper segment
    # cos(a) = (u^2 + d^2 - l^2) / (2*u*d)
    cos_angle = ((upper_length ** 2 + clamped_distance ** 2 - lower_length ** 2)
                 / (2.0 * upper_length * clamped_distance))
    cos_angle = max(-1.0, min(1.0, cos_angle))  # Clamp safety
    angle = math.acos(cos_angle)

    # 3. Knee placement in the bend plane
    bend = bend_direction(direction, hint)
    knee = origin + upper_length * (math.cos(angle) * direction + math.sin(angle) * bend)

    if not is_finite(knee, foot):
        raise GeometryFault("non-finite IK result")

    return IKResult(hip=origin, knee=knee, foot=foot.copy(), clamped=clamped)
