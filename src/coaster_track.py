"""Chain of track sections addressed by one global parameter.

The sections of a :class:`CoasterTrack` are laid end to end: section ``i``
occupies the global parameter range ``[start_of(i), start_of(i) + t_max_i)``
where ``t_max_i`` is the extent of its local domain.  A closed track wraps the
global parameter modulo :attr:`CoasterTrack.t_max`.

Adjacency is expressed through indices into :attr:`CoasterTrack.sections`;
sections never reference each other.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np

from framing import EPS, Pose, safe_normalize
from track_section import ARC_LENGTH_STEPS, MAX_SEARCH_CHUNKS, TrackSection

_logger = logging.getLogger(__name__)


class CoasterTrack:
    """Ordered, optionally closed, chain of :class:`TrackSection` objects.

    Parameters
    ----------
    sections:
        Sections in travel order.  They are translated and re-fitted by
        :meth:`combine` so that consecutive sections join with matching
        position and tangent.
    closed:
        Whether the last section connects back to the first.
    """

    def __init__(self, sections: Iterable[TrackSection] | None = None, closed: bool = False) -> None:
        self.sections: list[TrackSection] = list(sections) if sections is not None else []
        self.closed = closed
        self.t_max = 0.0
        self._starts = np.zeros(1)
        self.combine()

    def __len__(self) -> int:
        return len(self.sections)

    @property
    def length(self) -> float:
        """Physical length of the whole track in metres."""
        return float(sum(s.length for s in self.sections))

    # ------------------------------------------------------------------
    # Chaining
    def combine(self) -> None:
        """Join the sections with C1 continuity and recompute :attr:`t_max`.

        Each section is translated so that its first control point sits on
        the previous section's last one and receives the previous end tangent
        as its start slope.  On a closed track the last section additionally
        ends on the first point with the first start tangent.
        """
        if not self.sections:
            self.t_max = 0.0
            self._starts = np.zeros(1)
            return

        first = self.sections[0]
        first.fit()
        prev = first
        for i, sec in enumerate(self.sections[1:], start=1):
            sec.nodes = sec.nodes + (prev.nodes[-1] - sec.nodes[0])
            sec.apply_slopes(start=prev.tangent(prev.t_max))
            if self.closed and i == len(self.sections) - 1:
                sec.nodes[-1] = first.nodes[0]
                sec.apply_slopes(end=first.tangent(0.0))
            sec.fit()
            prev = sec

        spans = [s.t_max for s in self.sections]
        self._starts = np.concatenate(([0.0], np.cumsum(spans)))
        self.t_max = float(self._starts[-1])

    # ------------------------------------------------------------------
    # Addressing
    def _index_of(self, section: int | TrackSection) -> int:
        if isinstance(section, TrackSection):
            for i, s in enumerate(self.sections):
                if s is section:
                    return i
            raise ValueError("section is not part of this track")
        return int(section)

    def start_of(self, section: int | TrackSection) -> float:
        """Global parameter at which ``section`` begins."""
        return float(self._starts[self._index_of(section)])

    def next_index(self, index: int) -> int | None:
        if index < len(self.sections) - 1:
            return index + 1
        return 0 if self.closed and self.sections else None

    def prev_index(self, index: int) -> int | None:
        if index > 0:
            return index - 1
        return len(self.sections) - 1 if self.closed and self.sections else None

    def wrap(self, t_global: float) -> float:
        """Map ``t_global`` into ``[0, t_max)`` on closed tracks."""
        if self.closed and self.t_max > 0:
            return float(t_global % self.t_max)
        return float(t_global)

    def resolve(self, t_global: float) -> tuple[int, float] | None:
        """Return ``(section_index, t_local)`` for ``t_global``.

        ``None`` is returned when the parameter lies outside the track, which
        can only happen on open tracks.
        """
        t = self.wrap(t_global)
        if not self.sections or t < 0 or t >= self.t_max:
            return None
        index = int(np.searchsorted(self._starts, t, side="right")) - 1
        index = min(max(index, 0), len(self.sections) - 1)
        return index, t - float(self._starts[index])

    def section_at(self, t_global: float) -> TrackSection | None:
        found = self.resolve(t_global)
        return None if found is None else self.sections[found[0]]

    def pose(self, t_global: float) -> Pose | None:
        found = self.resolve(t_global)
        if found is None:
            return None
        index, t_local = found
        return self.sections[index].pose(t_local)

    def tangent_norm(self, t_global: float | Iterable[float]) -> np.ndarray:
        """``|dP/dt|`` at global parameters, section by section.

        Parameters outside an open track are clamped to its ends.
        """
        t = np.atleast_1d(np.asarray(t_global, dtype=float))
        if self.closed and self.t_max > 0:
            t = np.mod(t, self.t_max)
        else:
            t = np.clip(t, 0.0, self.t_max)
        index = np.clip(np.searchsorted(self._starts, t, side="right") - 1, 0, len(self.sections) - 1)
        local = t - self._starts[index]
        out = np.empty_like(t)
        for i in np.unique(index):
            mask = index == i
            out[mask] = np.linalg.norm(self.sections[i].tangent(local[mask]), axis=1)
        return out

    def delta_arc_length_backward(
        self, t0: float, distance: float, steps: int = ARC_LENGTH_STEPS
    ) -> float:
        """Global parameter change (``<= 0``) going ``distance`` metres back from ``t0``.

        The search crosses section boundaries; on closed tracks it continues
        through the seam, so ``t0 + result`` may be negative and needs
        :meth:`wrap` before use.
        """
        if distance <= 0 or not self.sections:
            return 0.0
        speed0 = float(self.tangent_norm(t0)[0])
        h = distance / (steps * speed0) if speed0 > EPS else distance / steps

        travelled = 0.0
        for chunk in range(MAX_SEARCH_CHUNKS):
            base = chunk * steps
            samples = t0 - h * (base + np.arange(steps))
            cumulative = travelled + np.cumsum(self.tangent_norm(samples) * h)
            k = int(np.searchsorted(cumulative, distance))
            if k < steps:
                before = cumulative[k - 1] if k > 0 else travelled
                span = cumulative[k] - before
                frac = (distance - before) / span if span > 0 else 1.0
                return -h * (base + k + frac)
            travelled = float(cumulative[-1])
        _logger.warning("backward arc length search from t=%.3f did not reach %.3f m", t0, distance)
        return -h * steps * MAX_SEARCH_CHUNKS

    # ------------------------------------------------------------------
    # Structural edits
    def add_section(self, section: TrackSection | None = None, index: int | None = None) -> bool:
        """Insert ``section`` (or a new two-point straight) and re-combine.

        A default section continues the tangent at the end of the current
        last section.  ``index=None`` appends; an index outside
        ``0..len(sections)`` is rejected and leaves the track unchanged.
        """
        if index is not None and not 0 <= index <= len(self.sections):
            _logger.warning("cannot insert section at %d of %d", index, len(self.sections))
            return False
        if section is None:
            section = TrackSection(name=f"section_{len(self.sections)}")
            if self.sections:
                last = self.sections[-1]
                nodes = section.nodes.copy()
                step = np.linalg.norm(nodes[1] - nodes[0])
                nodes[1] = nodes[0] + step * safe_normalize(last.tangent(last.t_max))
                section.nodes = nodes
                section.fit()
        if index is None:
            self.sections.append(section)
        else:
            self.sections.insert(index, section)
        self.combine()
        return True

    def remove_section(self, index: int) -> bool:
        if not 0 <= index < len(self.sections):
            _logger.warning("cannot remove section %d of %d", index, len(self.sections))
            return False
        del self.sections[index]
        self.combine()
        return True

    def split_section(self, index: int, node_index: int) -> bool:
        """Split section ``index`` at interior control point ``node_index``.

        Both halves share the split point, its tangent and its roll angle; a
        roll node carrying that angle is added to each half where missing.
        """
        if not 0 <= index < len(self.sections):
            _logger.warning("cannot split section %d of %d", index, len(self.sections))
            return False
        sec = self.sections[index]
        if not 0 < node_index < len(sec.nodes) - 1:
            _logger.warning("cannot split %s at node %d", sec.name or "section", node_index)
            return False

        slope = sec.tangent(float(node_index))
        roll = float(sec.roll(float(node_index)))
        end_slope = sec.end_slope.copy()

        tail_roll = [(t - node_index, r) for t, r in sec.roll_nodes if t >= node_index]
        if not tail_roll or tail_roll[0][0] != 0.0:
            tail_roll.insert(0, (0.0, roll))
        head_roll = [(t, r) for t, r in sec.roll_nodes if t < node_index]
        head_roll.append((float(node_index), roll))

        tail = sec.copy_settings(name=f"{sec.name}_b" if sec.name else "", auto_fit=False)
        tail.nodes = sec.nodes[node_index:].copy()
        tail.weights = sec.weights[node_index:].copy()
        tail.roll_nodes = tail_roll
        tail.apply_slopes(start=slope, end=end_slope)

        sec.nodes = sec.nodes[: node_index + 1].copy()
        sec.weights = sec.weights[: node_index + 1].copy()
        sec.roll_nodes = head_roll
        sec.apply_slopes(end=slope)

        self.sections.insert(index + 1, tail)
        self.combine()
        return True

    def _edit(self, section_index: int, method: str, *args) -> bool:
        if not 0 <= section_index < len(self.sections):
            _logger.warning("no section %d to edit", section_index)
            return False
        ok = getattr(self.sections[section_index], method)(*args)
        if ok:
            self.combine()
        return ok

    def move_position_node(self, section_index: int, index: int, value: Sequence[float]) -> bool:
        return self._edit(section_index, "move_position_node", index, value)

    def insert_position_node(self, section_index: int, index: int, value: Sequence[float]) -> bool:
        return self._edit(section_index, "insert_position_node", index, value)

    def remove_position_node(self, section_index: int, index: int) -> bool:
        return self._edit(section_index, "remove_position_node", index)

    def insert_roll_node(self, section_index: int, index: int, node: Sequence[float]) -> bool:
        return self._edit(section_index, "insert_roll_node", index, node)

    def remove_roll_node(self, section_index: int, index: int) -> bool:
        return self._edit(section_index, "remove_roll_node", index)


__all__ = ["CoasterTrack"]
