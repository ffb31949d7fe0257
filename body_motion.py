"""
body_motion.py – Body pose input and velocity estimation for the leg animator.

The animator is driven by an external body transform supplied once per tick.
BodyPose wraps that transform (world position + 3x3 rotation) and maps
body-frame points and directions into the world. BodyMotionEstimator derives
a smoothed velocity from successive positions when the caller does not
provide one.

Theory of Operation:
  Raw velocity is the position delta over the tick. It is blended into the
  running estimate with factor k = min(1, dt × smoothing):
    v ← v + (v_raw − v) × k
  Ticks with dt <= 0.001 s are ignored (no reliable delta).

Euler convention for rotation_from_euler():
    - yaw   = rotation about Y (up), positive turns +Z toward +X
    - pitch = rotation about X (right), positive = nose up
    - roll  = rotation about Z (forward), positive = right side down
  Applied as R = Ry(yaw) @ Rx(pitch) @ Rz(roll).
"""

import math
import numpy as np
from dataclasses import dataclass, field
from typing import Optional

from kinematics import WORLD_UP, WORLD_FORWARD, as_vec3

MIN_DT = 0.001  # seconds


def rotation_from_euler(yaw_deg: float = 0.0, pitch_deg: float = 0.0,
                        roll_deg: float = 0.0) -> np.ndarray:
    """Return the 3x3 body rotation for yaw/pitch/roll in degrees."""
    y, p, r = math.radians(yaw_deg), math.radians(pitch_deg), math.radians(roll_deg)
    cy, sy = math.cos(y), math.sin(y)
    cp, sp = math.cos(p), math.sin(p)
    cr, sr = math.cos(r), math.sin(r)
    ry = np.array([[cy, 0.0, sy], [0.0, 1.0, 0.0], [-sy, 0.0, cy]])
    rx = np.array([[1.0, 0.0, 0.0], [0.0, cp, sp], [0.0, -sp, cp]])
    rz = np.array([[cr, sr, 0.0], [-sr, cr, 0.0], [0.0, 0.0, 1.0]])
    return ry @ rx @ rz


@dataclass
class BodyPose:
    """World transform of the body."""
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self):
        self.position = as_vec3(self.position)
        self.rotation = np.asarray(self.rotation, dtype=float).reshape(3, 3)

    @classmethod
    def from_euler(cls, position, yaw_deg: float = 0.0, pitch_deg: float = 0.0,
                   roll_deg: float = 0.0) -> 'BodyPose':
        return cls(position=position, rotation=rotation_from_euler(yaw_deg, pitch_deg, roll_deg))

    def transform_point(self, local) -> np.ndarray:
        """Body frame point -> world."""
        return self.position + self.rotation @ as_vec3(local)

    def transform_direction(self, local) -> np.ndarray:
        """Body frame direction -> world (rotation only)."""
        return self.rotation @ as_vec3(local)

    @property
    def up(self) -> np.ndarray:
        return self.rotation @ WORLD_UP

    @property
    def forward(self) -> np.ndarray:
        return self.rotation @ WORLD_FORWARD


class BodyMotionEstimator:
    """Exponentially smoothed body velocity from position deltas."""

    def __init__(self, smoothing: float = 5.0):
        self.smoothing = smoothing
        self._last_position: Optional[np.ndarray] = None
        self._velocity = np.zeros(3)

    @property
    def velocity(self) -> np.ndarray:
        return self._velocity.copy()

    def update(self, position, dt: float) -> np.ndarray:
        """Feed the body position for this tick. Returns the smoothed velocity."""
        position = as_vec3(position)
        if self._last_position is not None and dt > MIN_DT:
            raw = (position - self._last_position) / dt
            k = min(1.0, dt * self.smoothing)
            self._velocity = self._velocity + (raw - self._velocity) * k
        self._last_position = position
        return self.velocity

    def reset(self, position=None) -> None:
        """Forget motion history (teleport). Velocity returns to zero."""
        self._velocity = np.zeros(3)
        self._last_position = None if position is None else as_vec3(position)
