"""A single independently parameterised piece of track.

A :class:`TrackSection` owns an ordered list of 3-D control points whose
index is the section-local parameter, so the parameter domain of a section
with ``n`` points is ``[0, n - 1]``.  Each coordinate is fitted with its own
:class:`~curve1d.Curve1D`.  A separate list of roll nodes ``(t, degrees)``
describes the banking of the track over the same domain.

Besides geometry a section carries the flags used by the train dynamics
(``affects_train``, ``target_velocity`` ...) and written by the block
controller (``stop_train``, ``physics_active``).
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from curve1d import CubicCurve1D, Curve1D, NurbsCurve1D, SplineKind, make_curve
from framing import EPS, FORWARD, RIGHT, WORLD_UP, Pose, look_rotation, safe_normalize

_logger = logging.getLogger(__name__)

ARC_LENGTH_STEPS = 64
MAX_SEARCH_CHUNKS = 64


class RollMode(Enum):
    """How the banked right vector is interpolated between roll nodes."""

    ANGLE = "angle"
    VECTOR = "vector"


def _has_slope(slope: np.ndarray) -> bool:
    return bool(np.dot(slope, slope) != 0.0)


class TrackSection:
    """Spline-fitted track section.

    Parameters
    ----------
    nodes:
        Control point positions, shape ``(n, 3)``.  Defaults to a 4 m straight
        along ``+z``.
    roll_nodes:
        ``(t, degrees)`` pairs with strictly increasing ``t``.
    start_slope, end_slope:
        Tangent ``dP/dt`` imposed at the ends.  A zero vector leaves the end
        unconstrained (natural).
    weights:
        Control point weights, only used by the NURBS strategy.
    spline_kind:
        Curve strategy used for the position curves.
    roll_mode:
        Default convention for :meth:`right_vector`.
    heartline_offset:
        Distance between the authored curve and the rider reference point,
        measured along the up vector.
    auto_fit:
        Fit immediately.  An unfitted section evaluates to the origin with a
        unit forward tangent and no roll.
    """

    def __init__(
        self,
        nodes: Iterable[Sequence[float]] | None = None,
        roll_nodes: Iterable[Sequence[float]] | None = None,
        start_slope: Sequence[float] | None = None,
        end_slope: Sequence[float] | None = None,
        weights: Iterable[float] | None = None,
        spline_kind: SplineKind = SplineKind.CUBIC,
        roll_mode: RollMode = RollMode.ANGLE,
        heartline_offset: float = 0.0,
        name: str = "",
        affects_train: bool = False,
        acceleration: float = 0.0,
        braking: float = 0.0,
        target_velocity: float = 0.0,
        physics_active: bool = True,
        stop_train: bool = False,
        auto_fit: bool = True,
    ) -> None:
        if nodes is None:
            nodes = [(0.0, 0.0, 0.0), (0.0, 0.0, 4.0)]
        self.nodes = np.asarray(nodes, dtype=float).reshape(-1, 3)
        if weights is None:
            self.weights = np.ones(len(self.nodes))
        else:
            self.weights = np.asarray(weights, dtype=float).reshape(-1)
            if self.weights.size != len(self.nodes):
                raise ValueError("weights must have one entry per node")
        if roll_nodes is None:
            roll_nodes = [(0.0, 0.0), (1.0, 0.0)]
        self.roll_nodes = [(float(t), float(r)) for t, r in roll_nodes]
        if any(b[0] <= a[0] for a, b in zip(self.roll_nodes, self.roll_nodes[1:])):
            raise ValueError("roll node parameters must be strictly increasing")
        self.start_slope = np.zeros(3) if start_slope is None else np.asarray(start_slope, dtype=float)
        self.end_slope = np.zeros(3) if end_slope is None else np.asarray(end_slope, dtype=float)

        self.spline_kind = spline_kind
        self.roll_mode = roll_mode
        self.heartline_offset = heartline_offset
        self.name = name

        self.affects_train = affects_train
        self.acceleration = acceleration
        self.braking = braking
        self.target_velocity = target_velocity
        self.physics_active = physics_active
        self.stop_train = stop_train

        self.length = 0.0
        self._curves: list[Curve1D] = []
        self._roll_curve: Curve1D | None = None
        self._right_curves: list[Curve1D] = []
        self._fitted = False
        if auto_fit:
            self.fit()

    def __repr__(self) -> str:
        return f"TrackSection(name={self.name!r}, nodes={len(self.nodes)}, length={self.length:.3f})"

    # ------------------------------------------------------------------
    # Fitting
    @property
    def t_max(self) -> float:
        """Upper end of the local parameter domain."""
        return float(max(len(self.nodes) - 1, 0))

    @property
    def is_fitted(self) -> bool:
        return self._fitted

    def fit(self) -> None:
        """Re-fit all curves and recompute the arc length."""
        ts = np.arange(len(self.nodes), dtype=float)
        start = self.start_slope if _has_slope(self.start_slope) else None
        end = self.end_slope if _has_slope(self.end_slope) else None

        curves = []
        for axis in range(3):
            curve = make_curve(self.spline_kind)
            s0 = None if start is None else start[axis]
            s1 = None if end is None else end[axis]
            if isinstance(curve, NurbsCurve1D):
                curve.fit(ts, self.nodes[:, axis], s0, s1, weights=self.weights)
            else:
                curve.fit(ts, self.nodes[:, axis], s0, s1)
            curves.append(curve)
        self._curves = curves

        roll_curve = CubicCurve1D()
        if self.roll_nodes:
            roll_t, roll_deg = zip(*self.roll_nodes)
            roll_curve.fit(roll_t, roll_deg, start_slope=0.0, end_slope=0.0)
        self._roll_curve = roll_curve
        self._fitted = True

        n_steps = ARC_LENGTH_STEPS * max(len(self.nodes) - 1, 0)
        if n_steps:
            samples = np.arange(n_steps) / ARC_LENGTH_STEPS
            self.length = float(np.sum(np.linalg.norm(self.tangent(samples), axis=1)) / ARC_LENGTH_STEPS)
        else:
            self.length = 0.0

        self._right_curves = []
        if len(self.roll_nodes) >= 2:
            params = np.array([t for t, _ in self.roll_nodes])
            rights = np.array([self._angle_right(t) for t in params])
            for axis in range(3):
                curve = CubicCurve1D()
                curve.fit(params, rights[:, axis])
                self._right_curves.append(curve)

    def apply_slopes(self, start: Sequence[float] | None = None, end: Sequence[float] | None = None) -> None:
        """Set boundary tangents; ``None`` leaves the respective end untouched."""
        if start is not None:
            self.start_slope = np.asarray(start, dtype=float)
        if end is not None:
            self.end_slope = np.asarray(end, dtype=float)

    # ------------------------------------------------------------------
    # Evaluation
    def position(self, t: float | Iterable[float]) -> np.ndarray:
        """Curve position at ``t``; shape ``(3,)`` or ``(N, 3)``."""
        if not self._fitted:
            return np.zeros(np.shape(t) + (3,))
        return np.stack([np.asarray(c.eval(t)) for c in self._curves], axis=-1)

    def tangent(self, t: float | Iterable[float]) -> np.ndarray:
        """First derivative ``dP/dt`` at ``t``; shape ``(3,)`` or ``(N, 3)``."""
        if not self._fitted:
            return np.broadcast_to(FORWARD, np.shape(t) + (3,)).copy()
        return np.stack([np.asarray(c.eval_slope(t)) for c in self._curves], axis=-1)

    def roll(self, t: float | Iterable[float]) -> float | np.ndarray:
        """Bank angle in degrees, held constant beyond the first and last node."""
        if not self._fitted or not self.roll_nodes or self._roll_curve is None:
            return 0.0 if np.ndim(t) == 0 else np.zeros(np.shape(t))
        t_clamped = np.clip(t, self.roll_nodes[0][0], self.roll_nodes[-1][0])
        return self._roll_curve.eval(t_clamped)

    def _angle_right(self, t: float) -> np.ndarray:
        forward = safe_normalize(self.tangent(t))
        right = safe_normalize(-np.cross(forward, WORLD_UP), RIGHT)
        bank = Rotation.from_rotvec(np.radians(-self.roll(t)) * forward)
        return bank.apply(right)

    def right_vector(self, t: float, roll_mode: RollMode | None = None) -> np.ndarray:
        """Banked right vector at ``t``.

        ``RollMode.ANGLE`` rotates the level right vector about the tangent by
        the interpolated roll angle.  ``RollMode.VECTOR`` interpolates the
        right vector itself between roll nodes and falls back to the angle
        convention outside the roll node range.
        """
        mode = self.roll_mode if roll_mode is None else roll_mode
        if mode is RollMode.VECTOR and self._right_curves:
            if self.roll_nodes[0][0] <= t <= self.roll_nodes[-1][0]:
                forward = safe_normalize(self.tangent(t))
                right = np.array([c.eval(t) for c in self._right_curves])
                right = right - np.dot(right, forward) * forward
                if np.linalg.norm(right) > EPS:
                    return safe_normalize(right)
        return self._angle_right(t)

    @staticmethod
    def up_vector(tangent: np.ndarray, right: np.ndarray) -> np.ndarray:
        return safe_normalize(np.cross(tangent, right), WORLD_UP)

    def pose(self, t: float, roll_mode: RollMode | None = None) -> Pose:
        """Heartline position and orientation at ``t``."""
        position = self.position(t)
        forward = self.tangent(t)
        right = self.right_vector(t, roll_mode)
        up = self.up_vector(forward, right)
        return Pose(position - up * self.heartline_offset, look_rotation(forward, up))

    # ------------------------------------------------------------------
    # Arc length
    def arc_length_between(self, t0: float, t1: float, steps: int = ARC_LENGTH_STEPS) -> float:
        """Arc length between ``t0`` and ``t1 >= t0`` by a left Riemann sum."""
        if t1 <= t0:
            return 0.0
        dt = (t1 - t0) / steps
        samples = t0 + dt * np.arange(steps)
        return float(np.sum(np.linalg.norm(self.tangent(samples), axis=1)) * dt)

    def delta_param_for_arc_length(
        self, t0: float, distance: float, steps: int = ARC_LENGTH_STEPS
    ) -> float:
        """Parameter increment from ``t0`` covering ``distance`` metres forward.

        The step size is chosen so that ``steps`` steps cover ``distance`` at
        the speed ``|dP/dt|`` found at ``t0``; if the curve slows down the
        search continues in further blocks of ``steps``.  The result is
        interpolated linearly inside the step that crosses ``distance``.  A
        section without length covers no distance and yields ``0``.
        """
        if distance <= 0 or self.length <= EPS:
            return 0.0
        speed0 = float(np.linalg.norm(self.tangent(t0)))
        h = distance / (steps * speed0) if speed0 > EPS else distance / steps

        travelled = 0.0
        for chunk in range(MAX_SEARCH_CHUNKS):
            base = chunk * steps
            samples = t0 + h * (base + np.arange(steps))
            cumulative = travelled + np.cumsum(np.linalg.norm(self.tangent(samples), axis=1) * h)
            k = int(np.searchsorted(cumulative, distance))
            if k < steps:
                before = cumulative[k - 1] if k > 0 else travelled
                span = cumulative[k] - before
                frac = (distance - before) / span if span > 0 else 1.0
                return h * (base + k + frac)
            travelled = float(cumulative[-1])
        _logger.warning("arc length search from t=%.3f did not reach %.3f m", t0, distance)
        return h * steps * MAX_SEARCH_CHUNKS

    # ------------------------------------------------------------------
    # Editing
    def _reject(self, message: str, *args) -> bool:
        _logger.warning("%s: " + message, self.name or "section", *args)
        return False

    def _tidy_roll_nodes(self) -> None:
        t_max = self.t_max
        tidy: list[tuple[float, float]] = []
        for t, r in sorted(((min(max(t, 0.0), t_max), r) for t, r in self.roll_nodes), key=lambda n: n[0]):
            if tidy and abs(tidy[-1][0] - t) < EPS:
                continue
            tidy.append((t, r))
        self.roll_nodes = tidy

    def move_position_node(self, index: int, value: Sequence[float]) -> bool:
        """Move control point ``index`` to ``value``."""
        if not 0 <= index < len(self.nodes):
            return self._reject("cannot move node %d of %d", index, len(self.nodes))
        self.nodes[index] = np.asarray(value, dtype=float)
        self.fit()
        return True

    def insert_position_node(self, index: int, value: Sequence[float], weight: float = 1.0) -> bool:
        """Insert a control point before ``index``; roll nodes at or past it shift by one."""
        if not 0 <= index <= len(self.nodes):
            return self._reject("cannot insert node at %d of %d", index, len(self.nodes))
        self.nodes = np.insert(self.nodes, index, np.asarray(value, dtype=float), axis=0)
        self.weights = np.insert(self.weights, index, weight)
        self.roll_nodes = [(t + 1.0 if t >= index else t, r) for t, r in self.roll_nodes]
        self.fit()
        return True

    def remove_position_node(self, index: int) -> bool:
        """Remove control point ``index``.

        Roll nodes past ``index`` shift back by one; a roll node sitting
        exactly on the removed point is dropped.
        """
        if not 0 <= index < len(self.nodes):
            return self._reject("cannot remove node %d of %d", index, len(self.nodes))
        if len(self.nodes) <= 2:
            return self._reject("a section needs at least two nodes")
        self.nodes = np.delete(self.nodes, index, axis=0)
        self.weights = np.delete(self.weights, index)
        shifted = []
        for t, r in self.roll_nodes:
            if abs(t - index) < EPS:
                continue
            shifted.append((t - 1.0 if t > index else t, r))
        self.roll_nodes = shifted
        self._tidy_roll_nodes()
        self.fit()
        return True

    def insert_roll_node(self, index: int, node: Sequence[float]) -> bool:
        """Insert roll node ``(t, degrees)`` at list position ``index``."""
        if not 0 <= index <= len(self.roll_nodes):
            return self._reject("cannot insert roll node at %d of %d", index, len(self.roll_nodes))
        t, r = float(node[0]), float(node[1])
        if not 0.0 <= t <= self.t_max:
            return self._reject("roll node t=%.3f outside [0, %.1f]", t, self.t_max)
        if index > 0 and self.roll_nodes[index - 1][0] >= t:
            return self._reject("roll node t=%.3f not after its predecessor", t)
        if index < len(self.roll_nodes) and self.roll_nodes[index][0] <= t:
            return self._reject("roll node t=%.3f not before its successor", t)
        self.roll_nodes.insert(index, (t, r))
        self.fit()
        return True

    def remove_roll_node(self, index: int) -> bool:
        """Remove the roll node at list position ``index``."""
        if not 0 <= index < len(self.roll_nodes):
            return self._reject("cannot remove roll node %d of %d", index, len(self.roll_nodes))
        del self.roll_nodes[index]
        self.fit()
        return True

    def copy_settings(self, **overrides) -> "TrackSection":
        """New section sharing this one's strategy, framing and physics flags."""
        kwargs = dict(
            spline_kind=self.spline_kind,
            roll_mode=self.roll_mode,
            heartline_offset=self.heartline_offset,
            affects_train=self.affects_train,
            acceleration=self.acceleration,
            braking=self.braking,
            target_velocity=self.target_velocity,
            physics_active=self.physics_active,
            stop_train=self.stop_train,
        )
        kwargs.update(overrides)
        return TrackSection(**kwargs)


__all__ = ["ARC_LENGTH_STEPS", "MAX_SEARCH_CHUNKS", "RollMode", "TrackSection"]
