from __future__ import annotations

"""Plotting helpers for track geometry and simulation results.

This module contains simple functions for visualising a sampled track and
the velocity history of the trains running on it.  Plots are produced using
:mod:`matplotlib` and return the :class:`~matplotlib.axes.Axes` instance for
further customisation.
"""

from typing import Iterable, Mapping, Optional

import numpy as np
import matplotlib.pyplot as plt


def plot_plan_view(
    x: Iterable[float],
    z: Iterable[float],
    supports: np.ndarray | None = None,
    label: str = "Track",
    ax: Optional[plt.Axes] = None,
) -> plt.Axes:
    """Plot the track seen from above.

    Parameters
    ----------
    x, z:
        Horizontal coordinates of the sampled track.
    supports:
        Optional array of shape ``(N, 3)`` with support positions to mark.
    ax:
        Existing axes to draw on.  If ``None`` a new figure and axes are
        created.
    """
    if ax is None:
        _, ax = plt.subplots()

    ax.plot(x, z, color="k", label=label)
    if supports is not None and len(supports):
        supports = np.asarray(supports, dtype=float)
        ax.plot(supports[:, 0], supports[:, 2], "o", color="tab:grey", label="Supports")

    ax.set_aspect("equal", adjustable="box")
    ax.set_xlabel("x [m]")
    ax.set_ylabel("z [m]")
    ax.legend()
    return ax


def plot_elevation(
    distance: Iterable[float],
    height: Iterable[float],
    roll: Iterable[float] | None = None,
    ax: Optional[plt.Axes] = None,
) -> plt.Axes:
    """Plot height (and optionally roll on a twin axis) against distance."""
    if ax is None:
        _, ax = plt.subplots()

    ax.plot(distance, height, color="tab:blue", label="Height")
    ax.set_xlabel("Distance along track [m]")
    ax.set_ylabel("Height [m]")

    if roll is not None:
        ax_roll = ax.twinx()
        ax_roll.plot(distance, roll, color="tab:orange", linestyle="--", label="Roll")
        ax_roll.set_ylabel("Roll [deg]")
    ax.legend(loc="upper left")
    return ax


def plot_velocity(
    time: Iterable[float],
    velocity: Mapping[str, Iterable[float]],
    ax: Optional[plt.Axes] = None,
) -> plt.Axes:
    """Plot the velocity history of every train against time."""
    if ax is None:
        _, ax = plt.subplots()

    for name, v in velocity.items():
        ax.plot(time, v, label=name)
    ax.set_xlabel("Time [s]")
    ax.set_ylabel("Velocity [m/s]")
    if velocity:
        ax.legend()
    return ax
