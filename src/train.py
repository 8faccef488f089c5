"""Train dynamics on a :class:`~coaster_track.CoasterTrack`.

A :class:`Train` is a lead parameter ``t_global`` plus a scalar velocity
along the track.  Each tick the longitudinal forces acting on its axles are
summed and integrated with a semi-implicit Euler step, after which the
section under the lead point may drive the train towards its target speed
(lift hills, launches, brakes, stations).  The parameter is then advanced by
``v * dt / |dP/dt|`` and the axles are placed behind the lead point at fixed
arc-length offsets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Iterable

import numpy as np

from coaster_track import CoasterTrack
from framing import EPS, WORLD_UP, Pose
from io_utils import read_train_params_csv
from track_section import TrackSection

_logger = logging.getLogger(__name__)

# Rate of the exponential easing applied while a section accelerates a train.
DRIVE_EASING = 8.0


@dataclass
class TrainParams:
    """Physical constants of a train.

    Parameters
    ----------
    axle_mass:
        Mass carried by every axle in kilograms.
    gravity:
        Gravitational acceleration in metres per second squared.
    roll_coefficient:
        Rolling resistance coefficient ``C_rr``.
    cross_area:
        Frontal area in square metres used for the drag force.
    drag_coefficient:
        Aerodynamic drag coefficient ``C_d``.
    air_density:
        Air density in kilograms per cubic metre.
    enable_physics:
        Integrate forces each tick.  When disabled the train keeps its
        velocity and is only moved along the track.
    """

    axle_mass: float = 550.0
    gravity: float = 9.81
    roll_coefficient: float = 0.0
    cross_area: float = 0.0
    drag_coefficient: float = 0.6
    air_density: float = 1.293
    enable_physics: bool = True

    @classmethod
    def from_csv(cls, path: str | Path) -> "TrainParams":
        """Create parameters from a ``key,value`` CSV file.

        Unknown keys are ignored and missing keys keep their defaults.
        """
        raw = read_train_params_csv(path)
        kwargs = {}
        for f in fields(cls):
            if f.name not in raw:
                continue
            value = raw[f.name]
            kwargs[f.name] = bool(value) if f.name == "enable_physics" else float(value)
        return cls(**kwargs)


@dataclass
class Axle:
    """Axle held ``offset`` metres of track behind the lead point."""

    offset: float
    t_global: float = 0.0
    pose: Pose | None = None


def apply_section_drive(section: TrackSection, velocity: float, dt: float) -> float:
    """Return ``velocity`` after ``dt`` seconds of the drive of ``section``.

    Sections without ``affects_train`` or with ``physics_active`` cleared
    leave the velocity untouched.  Otherwise the train is pulled towards the
    target (zero when ``stop_train`` is set): accelerating with
    ``(1 - exp(-8 * delta)) * acceleration`` below the target and braking
    with ``braking`` above it.  The change never carries the velocity past
    the target.
    """
    if not (section.affects_train and section.physics_active):
        return velocity
    target = 0.0 if section.stop_train else section.target_velocity
    delta = target - velocity
    if delta > 0:
        acc = (1.0 - np.exp(-DRIVE_EASING * delta)) * section.acceleration
        change = min(acc * dt, delta)
    else:
        change = max(-section.braking * dt, delta)
    return velocity + change


class Train:
    """Point-mass train moving along a track.

    Parameters
    ----------
    track:
        Track the train runs on.
    axle_offsets:
        Arc-length distance of every axle behind the lead point, in metres.
        Must be non-negative and non-decreasing.
    params:
        Physical constants, :class:`TrainParams` defaults when omitted.
    t_global, velocity:
        Initial lead parameter and speed along the track.
    name:
        Label used in results and log messages.
    """

    def __init__(
        self,
        track: CoasterTrack,
        axle_offsets: Iterable[float] = (0.0,),
        params: TrainParams | None = None,
        t_global: float = 0.0,
        velocity: float = 0.0,
        name: str = "train",
    ) -> None:
        offsets = [float(o) for o in axle_offsets]
        if not offsets:
            raise ValueError("axle_offsets must contain at least one offset")
        if offsets[0] < 0 or any(b < a for a, b in zip(offsets, offsets[1:])):
            raise ValueError("axle_offsets must be non-negative and non-decreasing")
        self.track = track
        self.params = params if params is not None else TrainParams()
        self.axles = [Axle(o) for o in offsets]
        self.t_global = float(t_global)
        self.velocity = float(velocity)
        self.name = name
        self.pose: Pose | None = None
        self.place_axles()

    def __repr__(self) -> str:
        return f"Train(name={self.name!r}, t_global={self.t_global:.3f}, velocity={self.velocity:.3f})"

    @property
    def total_mass(self) -> float:
        return self.params.axle_mass * len(self.axles)

    def current_section(self) -> tuple[int, float] | None:
        """Section index and local parameter under the lead point."""
        return self.track.resolve(self.t_global)

    # ------------------------------------------------------------------
    # Physics
    def net_force(self) -> float:
        """Longitudinal force in newtons summed over all placed axles."""
        p = self.params
        v = self.velocity
        weight = p.gravity * p.axle_mass
        drag = 0.5 * p.air_density * v * v * p.drag_coefficient * p.cross_area
        force = 0.0
        for axle in self.axles:
            if axle.pose is None:
                continue
            force -= float(np.dot(axle.pose.forward, WORLD_UP)) * weight
            force -= np.sign(v) * p.roll_coefficient * float(np.dot(axle.pose.up, WORLD_UP)) * weight
            force -= np.sign(v) * drag
        return float(force)

    def update_physics(self, dt: float) -> None:
        """Integrate the net force over ``dt`` and apply the section drive."""
        self.velocity += self.net_force() * dt / self.total_mass
        found = self.current_section()
        if found is not None:
            self.velocity = apply_section_drive(self.track.sections[found[0]], self.velocity, dt)

    # ------------------------------------------------------------------
    # Motion
    def advance(self, dt: float) -> tuple[float, float]:
        """Move the lead point for ``dt`` seconds at the current velocity.

        Returns the swept interval ``(t0, t1)``.  ``t1`` is not wrapped, so
        on a closed track it may exceed ``t_max`` when the seam is crossed.
        """
        track = self.track
        t0 = track.wrap(self.t_global)
        if not track.closed:
            t0 = min(max(t0, 0.0), track.t_max)
        speed = float(track.tangent_norm(t0)[0]) if track.sections else 0.0
        dt_param = self.velocity * dt / speed if speed > EPS else 0.0
        t1 = t0 + dt_param

        if not track.closed and not 0.0 <= t1 <= track.t_max:
            _logger.warning("%s reached the end of an open track at t=%.3f", self.name, t1)
            t1 = min(max(t1, 0.0), track.t_max)
            self.velocity = 0.0
        self.t_global = t1
        return t0, t1

    def place_axles(self, lead_param: float | None = None) -> None:
        """Resolve the lead pose and walk every axle back by its offset."""
        track = self.track
        if lead_param is not None:
            self.t_global = float(lead_param)
        t = track.wrap(self.t_global)
        self.t_global = t
        lead = track.pose(t)
        if lead is not None:
            self.pose = lead

        travelled = 0.0
        for axle in self.axles:
            gap = axle.offset - travelled
            if gap > 0:
                t = track.wrap(t + track.delta_arc_length_backward(t, gap))
            travelled = axle.offset
            pose = track.pose(t)
            if pose is None:
                _logger.warning("%s: axle at %.2f m resolved off track, keeping last pose", self.name, axle.offset)
                continue
            axle.t_global = t
            axle.pose = pose

    def step(self, dt: float) -> tuple[float, float]:
        """Run physics, move the lead point and place the axles.

        Returns the swept parameter interval of the lead point.
        """
        if self.params.enable_physics:
            self.update_physics(dt)
        swept = self.advance(dt)
        self.place_axles()
        return swept


__all__ = ["TrainParams", "Axle", "apply_section_drive", "Train"]
