"""Block signaling for several trains sharing one closed track.

The track is partitioned into :class:`BlockSection` objects forming a ring.
At most one train may occupy a block.  A train entering a block marks it
occupied and frees the block behind it, so every train holds exactly one
block and the block it just left is released only once the next one is
reached.  Sensors placed along the track (:class:`SensorEvent`) report train
entries and request block checks which stop a train at the end of its block
while the block ahead is occupied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from coaster_track import CoasterTrack
from train import Train

_logger = logging.getLogger(__name__)

# Distance in global parameter units between the end of a block and the
# position a train is parked at during initialisation.
PARK_MARGIN = 0.05


class SensorKind(Enum):
    TRAIN_ENTER = "train_enter"
    BLOCK_CHECK = "block_check"
    GENERIC = "generic"


@dataclass(frozen=True)
class SensorEvent:
    """Sensor at global parameter ``t``.

    ``payload`` is opaque to the controller and handed to subscribers.
    """

    t: float
    kind: SensorKind = SensorKind.GENERIC
    payload: Any = None


@dataclass(frozen=True)
class BlockSection:
    """Named run of consecutive track section indices."""

    name: str
    sections: tuple[int, ...]

    def __post_init__(self) -> None:
        if not self.sections:
            raise ValueError(f"block {self.name!r} has no sections")
        object.__setattr__(self, "sections", tuple(int(s) for s in self.sections))

    @property
    def first(self) -> int:
        return self.sections[0]

    @property
    def last(self) -> int:
        return self.sections[-1]


@dataclass(frozen=True)
class Occupancy:
    """Free flags of all blocks, in ring order."""

    free: tuple[bool, ...]

    @classmethod
    def all_free(cls, n_blocks: int) -> "Occupancy":
        return cls((True,) * n_blocks)

    def __len__(self) -> int:
        return len(self.free)

    @property
    def free_count(self) -> int:
        return sum(self.free)


def enter_block(occupancy: Occupancy, index: int) -> Occupancy:
    """Occupancy after a train enters block ``index``.

    The block becomes occupied and its predecessor in the ring is freed.  A
    ring of a single block has no predecessor to free.
    """
    n = len(occupancy)
    if not 0 <= index < n:
        raise ValueError(f"block index {index} outside ring of {n}")
    free = list(occupancy.free)
    free[index] = False
    if n > 1:
        free[(index - 1) % n] = True
    return Occupancy(tuple(free))


SectionEnteredCallback = Callable[[int], None]
SensorEventCallback = Callable[[SensorEvent], None]


class BlockController:
    """Ring of blocks gating the trains on a track.

    Parameters
    ----------
    track:
        Track whose sections the blocks refer to.
    blocks:
        :class:`BlockSection` objects, or plain sequences of section indices,
        in ring order.  Together they must cover every track section exactly
        once.
    trains:
        Trains parked by :meth:`initialize`.  There must be at least one more
        block than trains.
    stations:
        Section indices at which trains dwell before being released.
    events:
        Sensors along the track.
    dwell_time:
        Seconds a train waits in a station once its block has been checked.
    """

    def __init__(
        self,
        track: CoasterTrack,
        blocks: Iterable[BlockSection | Sequence[int]],
        trains: Iterable[Train] = (),
        stations: Iterable[int] = (),
        events: Iterable[SensorEvent] = (),
        dwell_time: float = 10.0,
    ) -> None:
        self.track = track
        self.blocks = [
            b if isinstance(b, BlockSection) else BlockSection(f"block_{i}", tuple(b))
            for i, b in enumerate(blocks)
        ]
        if not self.blocks:
            raise ValueError("blocks must contain at least one block")
        covered = sorted(s for b in self.blocks for s in b.sections)
        if covered != list(range(len(track.sections))):
            raise ValueError("blocks must cover every track section exactly once")

        self.trains = list(trains)
        if self.trains and len(self.trains) >= len(self.blocks):
            raise ValueError(
                f"{len(self.trains)} trains need more than {len(self.blocks)} blocks"
            )
        self.stations = tuple(int(s) for s in stations)
        if any(not 0 <= s < len(track.sections) for s in self.stations):
            raise ValueError("stations must be valid section indices")
        if dwell_time < 0:
            raise ValueError("dwell_time must be non-negative")

        self.events = sorted(events, key=lambda e: e.t)
        self.dwell_time = float(dwell_time)
        self.clock = 0.0
        self.occupancy = Occupancy.all_free(len(self.blocks))

        self._block_of = {s: i for i, b in enumerate(self.blocks) for s in b.sections}
        self._dwell: dict[int, float] = {}
        self._authored = [(s.stop_train, s.physics_active) for s in track.sections]
        self._on_section_entered: list[SectionEnteredCallback] = []
        self._on_sensor_event: list[SensorEventCallback] = []
        self.initialize()

    # ------------------------------------------------------------------
    # Queries
    def is_free(self, block: int) -> bool:
        return self.occupancy.free[block]

    @property
    def free_count(self) -> int:
        return self.occupancy.free_count

    def block_of(self, section_index: int) -> int | None:
        return self._block_of.get(section_index)

    def next_block(self, block: int) -> int:
        return (block + 1) % len(self.blocks)

    def prev_block(self, block: int) -> int:
        return (block - 1) % len(self.blocks)

    def is_held(self, block: int) -> bool:
        """Whether ``block`` is a station currently holding a train."""
        return block in self._dwell

    def subscribe(
        self,
        on_section_entered: SectionEnteredCallback | None = None,
        on_sensor_event: SensorEventCallback | None = None,
    ) -> None:
        """Register callbacks for block entries and fired sensors."""
        if on_section_entered is not None:
            self._on_section_entered.append(on_section_entered)
        if on_sensor_event is not None:
            self._on_sensor_event.append(on_sensor_event)

    # ------------------------------------------------------------------
    # Lifecycle
    def initialize(self) -> None:
        """Free all blocks and park the trains.

        Train ``k`` is parked just before the end of block ``0``, ``n - 1``,
        ``n - 2`` ... and stopped there.  The first station is then released
        so that the train parked in it departs.
        """
        sections = self.track.sections
        for sec, (stop, active) in zip(sections, self._authored):
            sec.stop_train = stop
            sec.physics_active = active
        self.occupancy = Occupancy.all_free(len(self.blocks))

        n = len(self.blocks)
        order = [0] + list(range(n - 1, 0, -1))
        for train, block in zip(self.trains, order):
            last = self.blocks[block].last
            end = self.track.start_of(last) + sections[last].t_max - PARK_MARGIN
            train.velocity = 0.0
            train.place_axles(end)
            self.on_train_enter(block)
            sections[last].stop_train = True
            _logger.debug("parked %s in block %s", train.name, self.blocks[block].name)

        if self.stations:
            sections[self.stations[0]].stop_train = False

    def reset(self) -> None:
        """Cancel pending station dwells and re-initialise."""
        self._dwell.clear()
        self.clock = 0.0
        self.initialize()

    # ------------------------------------------------------------------
    # Transitions
    def _activate(self, block: int) -> None:
        if self.is_held(block):
            return
        for index in self.blocks[block].sections:
            sec = self.track.sections[index]
            sec.physics_active = True
            sec.stop_train = False

    def on_train_enter(self, block: int) -> None:
        """Mark ``block`` occupied and release the trains waiting behind."""
        self.occupancy = enter_block(self.occupancy, block)
        self._activate(block)
        self._activate(self.prev_block(self.prev_block(block)))
        for callback in self._on_section_entered:
            callback(block)

    def check_block(self, block: int) -> None:
        """Stop the train at the end of ``block`` while the next one is occupied.

        A station block always stops the train and starts its dwell.
        """
        last = self.blocks[block].last
        is_station = last in self.stations
        sec = self.track.sections[last]
        sec.stop_train = not self.is_free(self.next_block(block)) or is_station
        sec.physics_active = True
        if is_station:
            self._dwell[block] = self.clock + self.dwell_time

    def tick(self, dt: float) -> None:
        """Advance the controller clock and end elapsed station dwells."""
        self.clock += dt
        for block, deadline in list(self._dwell.items()):
            if self.clock >= deadline:
                del self._dwell[block]
                last = self.track.sections[self.blocks[block].last]
                last.stop_train = not self.is_free(self.next_block(block))

    # ------------------------------------------------------------------
    # Sensors
    def _dispatch(self, event: SensorEvent) -> None:
        if event.kind is not SensorKind.GENERIC:
            found = self.track.resolve(event.t)
            block = None if found is None else self.block_of(found[0])
            if block is None:
                _logger.warning("sensor at t=%.3f is not on a block", event.t)
            elif event.kind is SensorKind.TRAIN_ENTER:
                self.on_train_enter(block)
            else:
                self.check_block(block)
        for callback in self._on_sensor_event:
            callback(event)

    def trigger_events(self, t0: float, t1: float) -> list[SensorEvent]:
        """Fire every sensor strictly inside the swept interval ``(t0, t1)``.

        Sensors fire in order of increasing parameter.  On closed tracks an
        interval extending past ``t_max`` also fires the sensors after the
        seam.  Returns the fired events.
        """
        if t1 <= t0 or not self.events:
            return []
        t_max = self.track.t_max
        hits = []
        for event in self.events:
            if t0 < event.t < t1:
                hits.append((event.t, event))
            elif self.track.closed and t0 < event.t + t_max < t1:
                hits.append((event.t + t_max, event))
        hits.sort(key=lambda hit: hit[0])
        fired = [event for _, event in hits]
        for event in fired:
            self._dispatch(event)
        return fired

    def auto_place_sensor_events(self, margin: float = 0.25) -> list[SensorEvent]:
        """Add a TRAIN_ENTER and a BLOCK_CHECK sensor to every block.

        Entry sensors sit ``margin`` after the start of a block's first
        section, check sensors ``margin`` before the end of its last section.
        """
        added = []
        for block in self.blocks:
            start = self.track.start_of(block.first) + margin
            end = self.track.start_of(block.last) + self.track.sections[block.last].t_max - margin
            added.append(SensorEvent(start, SensorKind.TRAIN_ENTER, block.name))
            added.append(SensorEvent(end, SensorKind.BLOCK_CHECK, block.name))
        self.events = sorted(self.events + added, key=lambda e: e.t)
        return added


__all__ = [
    "SensorKind",
    "SensorEvent",
    "BlockSection",
    "Occupancy",
    "enter_block",
    "BlockController",
]
