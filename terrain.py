"""
terrain.py — Ground queries for foot placement.

The animator never touches the scene directly: every ground contact goes
through a GroundProbe. A probe is given a world position and a height band
and answers with the contact point and surface normal, or None on a miss.

Probes provided here:
    FlatGround        — infinite horizontal plane at a fixed height
    HeightfieldGround — callable height(x, z), normal from central differences
    NoGround          — never hits (void, falling, tests)

find_step_ground() wraps a probe with the miss fallback the animator relies
on: last planted position if there is one, else straight down from the hip
at maximum reach.

Surface classification (angle of normal from up):
    < wall_angle               → GROUND
    > 180 - wall_angle         → CEILING
    otherwise                  → WALL
"""

import math
import numpy as np
from enum import Enum, auto
from dataclasses import dataclass
from typing import Callable, Optional

from kinematics import WORLD_UP, as_vec3, safe_normalize

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

WALL_ANGLE_DEG = 45.0  # Default wall threshold (degrees from up)

WORLD_DOWN = -WORLD_UP


class SurfaceType(Enum):
    """Surface classification for a ground contact."""
    NONE = auto()     # No contact (probe miss)
    GROUND = auto()   # Walkable floor
    WALL = auto()     # Near-vertical surface
    CEILING = auto()  # Overhead surface


@dataclass(frozen=True)
class GroundHit:
    """Probe result: contact point and unit surface normal (world frame)."""
    point: np.ndarray
    normal: np.ndarray


@dataclass
class GroundContact:
    """Resolved foot contact, including fallback results on a probe miss."""
    point: np.ndarray
    normal: np.ndarray
    hit: bool
    surface: SurfaceType = SurfaceType.NONE


def classify_surface(normal: np.ndarray, up: np.ndarray = WORLD_UP,
                     wall_angle_deg: float = WALL_ANGLE_DEG) -> SurfaceType:
    """Classify a surface by the angle between its normal and up."""
    n = safe_normalize(np.asarray(normal, dtype=float))
    if n is None:
        return SurfaceType.NONE
    cos_a = max(-1.0, min(1.0, float(np.dot(n, up))))
    angle = math.degrees(math.acos(cos_a))
    if angle < wall_angle_deg:
        return SurfaceType.GROUND
    if angle > 180.0 - wall_angle_deg:
        return SurfaceType.CEILING
    return SurfaceType.WALL


# -----------------------------------------------------------------------------
# Probes
# -----------------------------------------------------------------------------

class GroundProbe:
    """Base class for synchronous ground queries.

    Subclasses implement probe(). The search runs straight down from
    position + search_up to position - search_depth.
    """

    def probe(self, position: np.ndarray, search_up: float,
              search_depth: float) -> Optional[GroundHit]:
        raise NotImplementedError

    @staticmethod
    def _in_band(y: float, position: np.ndarray, search_up: float, search_depth: float) -> bool:
        return position[1] - search_depth <= y <= position[1] + search_up


class FlatGround(GroundProbe):
    """Infinite horizontal plane at Y = height."""

    def __init__(self, height: float = 0.0):
        self.height = height

    def probe(self, position, search_up, search_depth):
        p = as_vec3(position)
        if not self._in_band(self.height, p, search_up, search_depth):
            return None
        return GroundHit(point=np.array([p[0], self.height, p[2]]), normal=WORLD_UP.copy())


class HeightfieldGround(GroundProbe):
    """Terrain described by a height function y = height_fn(x, z).

    The normal is estimated with central differences over sample_step.
    """

    def __init__(self, height_fn: Callable[[float, float], float], sample_step: float = 0.01):
        self.height_fn = height_fn
        self.sample_step = sample_step

    def normal_at(self, x: float, z: float) -> np.ndarray:
        h = self.sample_step
        dhdx = (self.height_fn(x + h, z) - self.height_fn(x - h, z)) / (2.0 * h)
        dhdz = (self.height_fn(x, z + h) - self.height_fn(x, z - h)) / (2.0 * h)
        n = safe_normalize(np.array([-dhdx, 1.0, -dhdz]))
        return WORLD_UP.copy() if n is None else n

    def probe(self, position, search_up, search_depth):
        p = as_vec3(position)
        y = float(self.height_fn(p[0], p[2]))
        if not math.isfinite(y) or not self._in_band(y, p, search_up, search_depth):
            return None
        return GroundHit(point=np.array([p[0], y, p[2]]), normal=self.normal_at(p[0], p[2]))


class NoGround(GroundProbe):
    """Probe that never finds ground."""

    def probe(self, position, search_up, search_depth):
        return None


# -----------------------------------------------------------------------------
# Fallback resolution
# -----------------------------------------------------------------------------

def find_step_ground(probe: GroundProbe, position: np.ndarray, search_up: float,
                     search_depth: float, hip: np.ndarray, max_reach: float,
                     last_planted: Optional[np.ndarray] = None,
                     up: np.ndarray = WORLD_UP,
                     wall_angle_deg: float = WALL_ANGLE_DEG) -> GroundContact:
    """
    Resolve a foot contact near position.

    On a probe hit, returns the contact classified against up. On a miss,
    falls back to last_planted if given, else to the point max_reach below
    the hip; hit is False in both fallback cases.
    """
    result = probe.probe(position, search_up, search_depth)
    if result is not None:
        point = as_vec3(result.point)
        normal = safe_normalize(as_vec3(result.normal))
        if normal is None:
            normal = up.copy()
        return GroundContact(point=point, normal=normal, hit=True,
                             surface=classify_surface(normal, up, wall_angle_deg))

    if last_planted is not None:
        point = as_vec3(last_planted)
    else:
        point = as_vec3(hip) + WORLD_DOWN * max_reach
    return GroundContact(point=point, normal=up.copy(), hit=False, surface=SurfaceType.NONE)
