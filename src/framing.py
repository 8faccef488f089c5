"""Vector helpers and the pose type shared by the track and train models.

The world frame is right-handed with ``y`` pointing up.  A pose's local axes
are ``x`` to the right, ``y`` up and ``z`` along the direction of travel.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial.transform import Rotation

WORLD_UP = np.array([0.0, 1.0, 0.0])
FORWARD = np.array([0.0, 0.0, 1.0])
RIGHT = np.array([1.0, 0.0, 0.0])

EPS = 1e-9


def safe_normalize(v: np.ndarray, default: np.ndarray = FORWARD) -> np.ndarray:
    """Return ``v`` scaled to unit length, or ``default`` if ``v`` is zero.

    Works row-wise on ``(N, 3)`` arrays.
    """
    v = np.asarray(v, dtype=float)
    norm = np.linalg.norm(v, axis=-1, keepdims=True)
    ok = norm > EPS
    out = np.where(ok, v / np.where(ok, norm, 1.0), default)
    return out


def look_rotation(forward: np.ndarray, up: np.ndarray) -> Rotation:
    """Rotation whose local ``z`` axis is ``forward`` and local ``y`` is ``up``.

    ``up`` is re-orthogonalised against ``forward``; if the two are parallel
    the world up (or, failing that, world ``z``) is used instead.
    """
    f = safe_normalize(forward)
    right = np.cross(safe_normalize(up, WORLD_UP), f)
    if np.linalg.norm(right) <= EPS:
        right = np.cross(WORLD_UP, f)
        if np.linalg.norm(right) <= EPS:
            right = np.cross(FORWARD, f)
    right = safe_normalize(right, RIGHT)
    u = np.cross(f, right)
    return Rotation.from_matrix(np.column_stack((right, u, f)))


@dataclass(frozen=True)
class Pose:
    """Position and orientation of a point on the track."""

    position: np.ndarray
    rotation: Rotation

    @property
    def forward(self) -> np.ndarray:
        return self.rotation.apply(FORWARD)

    @property
    def up(self) -> np.ndarray:
        return self.rotation.apply(WORLD_UP)

    @property
    def right(self) -> np.ndarray:
        return self.rotation.apply(RIGHT)


__all__ = ["WORLD_UP", "FORWARD", "RIGHT", "EPS", "safe_normalize", "look_rotation", "Pose"]
