"""Arc-length based sampling of sections and whole tracks.

These helpers convert metric spacings into local or global parameters, for
tessellating a section into pieces of (almost) equal length, for spreading
supports evenly along a section and for exporting the track geometry as a
table.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from coaster_track import CoasterTrack
from track_section import TrackSection


def even_parameters(section: TrackSection, spacing: float) -> np.ndarray:
    """Local parameters splitting ``section`` into pieces of about ``spacing`` metres.

    The section length is divided into ``floor(length / spacing)`` pieces
    (at least one) whose length is stretched so they fill the section.  The
    first parameter is ``0`` and the last one is exactly ``t_max``.
    """
    if spacing <= 0:
        raise ValueError("spacing must be positive")
    n = max(int(section.length // spacing), 1)
    piece = section.length / n
    params = np.empty(n + 1)
    params[0] = 0.0
    t = 0.0
    for i in range(1, n):
        t += section.delta_param_for_arc_length(t, piece)
        params[i] = t
    params[n] = section.t_max
    return params


def support_positions(section: TrackSection, distance: float, offset: float = 0.0) -> np.ndarray:
    """Local parameters of supports ``distance`` metres apart.

    Supports are placed on the part of the section past ``offset`` metres,
    one per whole ``distance``, and centred so that the leftover length is
    shared equally between both ends.
    """
    if distance <= 0:
        raise ValueError("distance must be positive")
    usable = section.length - offset
    n = int(usable // distance) if usable > 0 else 0
    if n == 0:
        return np.zeros(0)
    slack = usable - n * distance
    t = section.delta_param_for_arc_length(0.0, offset + 0.5 * (slack + distance))
    params = np.empty(n)
    for i in range(n):
        params[i] = t
        t += section.delta_param_for_arc_length(t, distance)
    return params


def sample_track(track: CoasterTrack, spacing: float) -> pd.DataFrame:
    """Sample every section of ``track`` about every ``spacing`` metres.

    Returns
    -------
    pandas.DataFrame
        Columns ``section``, ``t_global``, ``x``, ``y``, ``z``, ``roll`` and
        ``distance`` (cumulative chord length from the first sample).  The
        shared end point of consecutive sections appears once.
    """
    rows = []
    for index, section in enumerate(track.sections):
        local = even_parameters(section, spacing)
        if index < len(track.sections) - 1:
            local = local[:-1]
        start = track.start_of(index)
        positions = np.atleast_2d(section.position(local))
        rolls = np.atleast_1d(section.roll(local))
        for t, p, r in zip(local, positions, rolls):
            rows.append((index, start + t, p[0], p[1], p[2], r))

    frame = pd.DataFrame(rows, columns=["section", "t_global", "x", "y", "z", "roll"])
    xyz = frame[["x", "y", "z"]].to_numpy()
    steps = np.linalg.norm(np.diff(xyz, axis=0), axis=1) if len(xyz) else np.zeros(0)
    frame["distance"] = np.concatenate(([0.0], np.cumsum(steps))) if len(xyz) else []
    return frame


__all__ = ["even_parameters", "support_positions", "sample_track"]
