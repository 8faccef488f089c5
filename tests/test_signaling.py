import sys
from pathlib import Path

import numpy as np
import pytest

# Add the ``src`` directory to the import path for test execution.
sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from coaster_track import CoasterTrack
from signaling import (
    BlockController,
    BlockSection,
    Occupancy,
    SensorEvent,
    SensorKind,
    enter_block,
)
from track_section import TrackSection
from train import Train


def _ring_track(flags: dict | None = None) -> CoasterTrack:
    flags = flags or {}
    nodes = [
        [(0, 0, 0), (0, 0, 10)],
        [(0, 0, 10), (5, 0, 15), (10, 0, 10)],
        [(10, 0, 10), (10, 0, 0)],
        [(10, 0, 0), (5, 0, -5), (0, 0, 0)],
    ]
    sections = [TrackSection(n, name=f"s{i}", **flags) for i, n in enumerate(nodes)]
    return CoasterTrack(sections, closed=True)


def _three_section_ring() -> CoasterTrack:
    sections = [
        TrackSection([(0, 0, 0), (0, 0, 10), (0, 0, 20)]),
        TrackSection([(0, 0, 20), (10, 0, 30), (20, 0, 20)]),
        TrackSection([(20, 0, 20), (20, 0, 0), (10, 0, -10), (0, 0, 0)]),
    ]
    return CoasterTrack(sections, closed=True)


def _controller(n_trains: int = 1, **kwargs):
    track = _ring_track({"affects_train": True, "acceleration": 2.0, "braking": 4.0, "target_velocity": 3.0})
    trains = [Train(track, name=f"t{i}") for i in range(n_trains)]
    blocks = [[0], [1], [2], [3]]
    return track, trains, BlockController(track, blocks, trains=trains, **kwargs)


class TestOccupancy:
    def test_enter_block_is_pure(self) -> None:
        occ = Occupancy.all_free(3)
        new = enter_block(occ, 1)
        assert new.free == (True, False, True)
        assert occ.free == (True, True, True)

    def test_enter_block_frees_predecessor(self) -> None:
        occ = Occupancy((False, True, True))
        assert enter_block(occ, 1).free == (True, False, True)
        assert enter_block(Occupancy((True, True, False)), 0).free == (False, True, True)

    def test_single_block_ring(self) -> None:
        assert enter_block(Occupancy.all_free(1), 0).free == (False,)

    def test_invalid_index(self) -> None:
        with pytest.raises(ValueError):
            enter_block(Occupancy.all_free(2), 2)

    def test_free_count(self) -> None:
        assert Occupancy((True, False, True)).free_count == 2


def test_block_section_requires_sections() -> None:
    with pytest.raises(ValueError):
        BlockSection("empty", ())
    block = BlockSection("b", (2, 3))
    assert block.first == 2 and block.last == 3


def test_train_entering_next_section_frees_previous() -> None:
    track = _three_section_ring()
    train = Train(track)
    controller = BlockController(track, [[0], [1], [2]], trains=[train])
    assert np.isclose(train.t_global, track.start_of(0) + track.sections[0].t_max - 0.05)
    assert controller.occupancy.free == (False, True, True)

    t_enter = track.start_of(1) + 0.25
    controller.events = [SensorEvent(t_enter, SensorKind.TRAIN_ENTER)]
    fired = controller.trigger_events(t_enter - 0.1, t_enter + 0.1)
    assert len(fired) == 1
    assert not controller.is_free(1)
    assert controller.is_free(0)


@pytest.mark.parametrize("n_trains", [1, 2, 3])
def test_free_count_after_initialisation(n_trains: int) -> None:
    _, _, controller = _controller(n_trains)
    assert controller.free_count == 4 - n_trains


def test_trains_are_parked_in_ring_order() -> None:
    track, trains, controller = _controller(3)
    blocks = [controller.block_of(train.current_section()[0]) for train in trains]
    assert blocks == [0, 3, 2]
    for block in blocks:
        assert not controller.is_free(block)
    assert track.sections[3].stop_train
    assert track.sections[2].stop_train
    # parking the third train frees block 1, so the first one may leave
    assert not track.sections[0].stop_train


def test_first_station_is_released() -> None:
    track, _, controller = _controller(2, stations=(0,))
    assert not track.sections[0].stop_train
    assert track.sections[3].stop_train


def test_layout_validation() -> None:
    track = _ring_track()
    with pytest.raises(ValueError):
        BlockController(track, [[0], [1], [2]])
    with pytest.raises(ValueError):
        BlockController(track, [[0, 1], [1, 2], [3]])
    with pytest.raises(ValueError):
        BlockController(track, [])
    trains = [Train(track, name=f"t{i}") for i in range(4)]
    with pytest.raises(ValueError):
        BlockController(track, [[0], [1], [2], [3]], trains=trains)
    with pytest.raises(ValueError):
        BlockController(track, [[0], [1], [2], [3]], stations=(9,))


def test_block_queries() -> None:
    _, _, controller = _controller()
    assert controller.block_of(2) == 2
    assert controller.block_of(42) is None
    assert controller.next_block(3) == 0
    assert controller.prev_block(0) == 3


def test_check_block_stops_in_front_of_occupied_block() -> None:
    track, _, controller = _controller(2)
    controller.check_block(3)
    assert track.sections[3].stop_train
    controller.check_block(1)
    assert not track.sections[1].stop_train
    assert track.sections[1].physics_active


def test_entering_block_releases_train_two_blocks_behind() -> None:
    track, _, controller = _controller(2)
    assert track.sections[3].stop_train
    controller.on_train_enter(1)
    assert controller.is_free(0)
    assert not controller.is_free(1)
    assert not track.sections[3].stop_train
    assert track.sections[3].physics_active


class TestStationDwell:
    def test_dwell_holds_then_releases(self) -> None:
        track, _, controller = _controller(1, stations=(0,), dwell_time=2.0)
        controller.check_block(0)
        assert controller.is_held(0)
        assert track.sections[0].stop_train
        controller.tick(1.0)
        assert controller.is_held(0)
        assert track.sections[0].stop_train
        controller.tick(1.5)
        assert not controller.is_held(0)
        assert not track.sections[0].stop_train

    def test_held_station_is_not_activated(self) -> None:
        track, _, controller = _controller(1, stations=(0,))
        controller.check_block(0)
        controller.on_train_enter(2)
        assert track.sections[0].stop_train

    def test_release_waits_for_free_next_block(self) -> None:
        track, _, controller = _controller(2, stations=(3,), dwell_time=1.0)
        controller.check_block(3)
        controller.tick(1.0)
        assert not controller.is_held(3)
        assert track.sections[3].stop_train

    def test_reset_cancels_dwell(self) -> None:
        track, _, controller = _controller(1, stations=(0,), dwell_time=5.0)
        controller.check_block(0)
        controller.tick(1.0)
        controller.reset()
        assert not controller.is_held(0)
        assert controller.clock == 0.0
        assert controller.free_count == 3
        assert not track.sections[0].stop_train


class TestSensors:
    def test_events_fire_in_order_across_seam(self) -> None:
        track, _, controller = _controller()
        controller.events = [
            SensorEvent(0.1, payload="a"),
            SensorEvent(track.t_max - 0.1, payload="b"),
        ]
        seen = []
        controller.subscribe(on_sensor_event=lambda e: seen.append(e.payload))
        controller.trigger_events(track.t_max - 0.2, track.t_max + 0.2)
        assert seen == ["b", "a"]

    def test_interval_is_open(self) -> None:
        _, _, controller = _controller()
        controller.events = [SensorEvent(0.5), SensorEvent(1.5)]
        assert controller.trigger_events(0.5, 1.5) == []
        assert controller.trigger_events(1.0, 0.5) == []
        assert len(controller.trigger_events(0.4, 1.6)) == 2

    def test_block_check_event(self) -> None:
        track, _, controller = _controller(2)
        controller.events = [SensorEvent(track.start_of(3) + 0.9, SensorKind.BLOCK_CHECK)]
        track.sections[3].stop_train = False
        controller.trigger_events(track.start_of(3) + 0.8, track.start_of(3) + 0.95)
        assert track.sections[3].stop_train

    def test_section_entered_subscriber(self) -> None:
        track, _, controller = _controller()
        entered = []
        controller.subscribe(on_section_entered=entered.append)
        controller.events = [SensorEvent(track.start_of(2) + 0.25, SensorKind.TRAIN_ENTER)]
        controller.trigger_events(track.start_of(2), track.start_of(2) + 0.5)
        assert entered == [2]

    def test_auto_place_sensor_events(self) -> None:
        track, _, controller = _controller()
        added = controller.auto_place_sensor_events()
        assert len(added) == 8
        enters = [e for e in added if e.kind is SensorKind.TRAIN_ENTER]
        checks = [e for e in added if e.kind is SensorKind.BLOCK_CHECK]
        assert np.allclose([e.t for e in enters], [track.start_of(i) + 0.25 for i in range(4)])
        expected = [track.start_of(i) + track.sections[i].t_max - 0.25 for i in range(4)]
        assert np.allclose([e.t for e in checks], expected)
        assert [e.t for e in controller.events] == sorted(e.t for e in controller.events)
