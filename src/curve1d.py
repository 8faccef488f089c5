"""One-dimensional curve fitting strategies.

A track section is described by three independent functions ``x(t)``,
``y(t)`` and ``z(t)`` of a section-local parameter plus a roll profile.  Each
of those is represented by a :class:`Curve1D`.  Two interchangeable
strategies are provided:

``CubicCurve1D``
    Natural or clamped cubic spline through the samples, backed by
    :class:`scipy.interpolate.CubicSpline`.
``NurbsCurve1D``
    Weighted B-spline whose control values are the samples.  The exact
    rational curve is evaluated once, re-sampled and re-fit as a cubic so that
    repeated queries cost the same as for :class:`CubicCurve1D`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterable

import numpy as np
from scipy.interpolate import BSpline, CubicSpline


class SplineKind(Enum):
    """Available curve strategies."""

    CUBIC = "cubic"
    NURBS = "nurbs"


class KnotType(Enum):
    """Knot vector layouts for :class:`NurbsCurve1D`."""

    UNIFORM = "uniform"
    OPEN_UNIFORM = "open_uniform"


def _as_output(values: np.ndarray, t) -> float | np.ndarray:
    if np.ndim(t) == 0:
        return float(values)
    return values


class Curve1D(ABC):
    """Common contract of the curve strategies.

    ``eval`` and ``eval_slope`` accept either a scalar parameter, returning a
    ``float``, or an array of parameters, returning an array of the same
    shape.  Before :meth:`fit` has been called, or after fitting fewer than
    two samples, the curve is constant.
    """

    def __init__(self) -> None:
        self._constant = 0.0

    @property
    def is_fitted(self) -> bool:
        return self._spline is not None

    @property
    @abstractmethod
    def _spline(self) -> CubicSpline | None:
        """Cubic answering the queries, ``None`` while degenerate."""

    @abstractmethod
    def fit(
        self,
        params: Iterable[float],
        values: Iterable[float],
        start_slope: float | None = None,
        end_slope: float | None = None,
    ) -> None:
        """Fit the curve to ``(params, values)`` samples."""

    def eval(self, t: float | Iterable[float]) -> float | np.ndarray:
        """Evaluate the curve value at ``t``."""
        spline = self._spline
        if spline is None:
            return _as_output(np.full(np.shape(t), self._constant), t)
        return _as_output(spline(np.asarray(t, dtype=float)), t)

    def eval_slope(self, t: float | Iterable[float]) -> float | np.ndarray:
        """Evaluate the first derivative ``d value / d t`` at ``t``."""
        spline = self._spline
        if spline is None:
            return _as_output(np.zeros(np.shape(t)), t)
        return _as_output(spline(np.asarray(t, dtype=float), 1), t)


def _check_samples(params: Iterable[float], values: Iterable[float]) -> tuple[np.ndarray, np.ndarray]:
    x = np.asarray(params, dtype=float).reshape(-1)
    y = np.asarray(values, dtype=float).reshape(-1)
    if x.size != y.size:
        raise ValueError("params and values must have the same length")
    if x.size >= 2 and np.any(np.diff(x) <= 0):
        raise ValueError("params must be strictly increasing")
    return x, y


def _is_set(slope: float | None) -> bool:
    return slope is not None and np.isfinite(slope)


class CubicCurve1D(Curve1D):
    """Cubic spline with natural or clamped boundary conditions.

    An unset (``None`` or NaN) slope selects the natural condition, i.e. a
    vanishing second derivative, at that end.  A set slope clamps the first
    derivative.  Both ends are chosen independently.
    """

    def __init__(self) -> None:
        super().__init__()
        self._cubic: CubicSpline | None = None

    @property
    def _spline(self) -> CubicSpline | None:
        return self._cubic

    def fit(
        self,
        params: Iterable[float],
        values: Iterable[float],
        start_slope: float | None = None,
        end_slope: float | None = None,
    ) -> None:
        x, y = _check_samples(params, values)
        if x.size < 2:
            self._cubic = None
            self._constant = float(y[0]) if y.size else 0.0
            return

        start_bc = (1, float(start_slope)) if _is_set(start_slope) else (2, 0.0)
        end_bc = (1, float(end_slope)) if _is_set(end_slope) else (2, 0.0)
        self._cubic = CubicSpline(x, y, bc_type=(start_bc, end_bc))


def knot_vector(n_ctrl: int, degree: int, knot_type: KnotType = KnotType.OPEN_UNIFORM) -> np.ndarray:
    """Return a knot vector for ``n_ctrl`` control points of ``degree``.

    The vector has ``n_ctrl + degree + 1`` entries in ``[0, 1]``.  Open
    uniform vectors repeat the end knots ``degree + 1`` times so the curve
    starts and ends on the first and last control value.
    """
    n_knots = n_ctrl + degree + 1
    if knot_type is KnotType.UNIFORM:
        return np.linspace(0.0, 1.0, n_knots)
    n_interior = n_ctrl - degree - 1
    interior = np.linspace(0.0, 1.0, n_interior + 2)[1:-1]
    return np.concatenate((np.zeros(degree + 1), interior, np.ones(degree + 1)))


class NurbsCurve1D(Curve1D):
    """Rational B-spline reduced to one dimension and re-fit as a cubic.

    Parameters
    ----------
    degree:
        Requested polynomial degree.  ``None`` selects ``min(3, n - 1)``.
        Requests outside ``[1, n - 1]`` fall back to a linear curve.
    knot_type:
        Layout of the knot vector.
    samples_per_point:
        Resolution of the cubic re-fit, in samples per control value.
    """

    def __init__(
        self,
        degree: int | None = None,
        knot_type: KnotType = KnotType.OPEN_UNIFORM,
        samples_per_point: int = 4,
    ) -> None:
        super().__init__()
        self.degree = degree
        self.knot_type = knot_type
        self.samples_per_point = samples_per_point
        self._fitted = CubicCurve1D()
        self._exact: tuple[BSpline, BSpline, float, float] | None = None

    @property
    def _spline(self) -> CubicSpline | None:
        return self._fitted._spline

    def _resolve_degree(self, n_ctrl: int) -> int:
        if self.degree is None:
            return min(3, n_ctrl - 1)
        if self.degree < 1 or self.degree > n_ctrl - 1:
            return 1
        return int(self.degree)

    def fit(
        self,
        params: Iterable[float],
        values: Iterable[float],
        start_slope: float | None = None,
        end_slope: float | None = None,
        weights: Iterable[float] | None = None,
    ) -> None:
        x, y = _check_samples(params, values)
        if x.size < 2:
            self._exact = None
            self._fitted.fit(x, y)
            self._constant = self._fitted._constant
            return

        w = np.ones_like(y) if weights is None else np.asarray(weights, dtype=float).reshape(-1)
        if w.size != y.size:
            raise ValueError("weights must match the number of values")

        ctrl = y.copy()
        if ctrl.size >= 4:
            if _is_set(start_slope):
                ctrl[1] = y[0] + start_slope
            if _is_set(end_slope):
                ctrl[-2] = y[-1] - end_slope

        degree = self._resolve_degree(ctrl.size)
        knots = knot_vector(ctrl.size, degree, self.knot_type)
        numerator = BSpline(knots, ctrl * w, degree)
        denominator = BSpline(knots, w, degree)
        self._exact = (numerator, denominator, knots[degree], knots[ctrl.size])

        s0 = float(start_slope) if _is_set(start_slope) else (y[1] - y[0]) / (x[1] - x[0])
        s1 = float(end_slope) if _is_set(end_slope) else (y[-1] - y[-2]) / (x[-1] - x[-2])

        n_samples = max(self.samples_per_point * x.size, 2)
        nt = np.linspace(0.0, 1.0, n_samples)
        xs = x[0] + nt * (x[-1] - x[0])
        ys = self.eval_exact(nt)
        ys[-1] = y[-1]
        self._fitted.fit(xs, ys, start_slope=s0, end_slope=s1)

    def eval_exact(self, nt: float | Iterable[float]) -> float | np.ndarray:
        """Evaluate the rational curve at normalised parameter ``nt`` in ``[0, 1]``."""
        if self._exact is None:
            return _as_output(np.full(np.shape(nt), self._constant), nt)
        numerator, denominator, u0, u1 = self._exact
        u = u0 + np.asarray(nt, dtype=float) * (u1 - u0)
        den = denominator(u)
        den = np.where(np.abs(den) > 1e-12, den, 1.0)
        return _as_output(numerator(u) / den, nt)


def make_curve(kind: SplineKind = SplineKind.CUBIC) -> Curve1D:
    """Create an unfitted curve of the requested strategy."""
    if kind is SplineKind.NURBS:
        return NurbsCurve1D()
    return CubicCurve1D()


__all__ = [
    "SplineKind",
    "KnotType",
    "Curve1D",
    "CubicCurve1D",
    "NurbsCurve1D",
    "knot_vector",
    "make_curve",
]
