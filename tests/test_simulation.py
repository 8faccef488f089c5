import sys
from pathlib import Path

import numpy as np
import pytest

# Add the ``src`` directory to the import path for test execution.
sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from coaster_track import CoasterTrack
from signaling import BlockController
from simulation import CoasterSimulation
from track_section import TrackSection
from train import Train


def _powered_ring() -> CoasterTrack:
    flags = {"affects_train": True, "acceleration": 2.0, "braking": 4.0, "target_velocity": 4.0}
    nodes = [
        [(0, 0, 0), (0, 0, 10), (0, 0, 20)],
        [(0, 0, 20), (10, 0, 30), (20, 0, 20)],
        [(20, 0, 20), (20, 0, 0)],
        [(20, 0, 0), (10, 0, -10), (0, 0, 0)],
    ]
    return CoasterTrack([TrackSection(n, **flags) for n in nodes], closed=True)


def test_run_without_controller() -> None:
    track = CoasterTrack(
        [TrackSection([(0, 0, 0), (0, 0, 200)], affects_train=True, acceleration=2.0, target_velocity=5.0)]
    )
    sim = CoasterSimulation(track, [Train(track)])
    result = sim.run(2.0, dt=0.02)
    assert result.time.size == 101
    assert np.isclose(result.time[-1], 2.0)
    assert result.velocity["train"][0] == 0.0
    assert np.all(np.diff(result.t_global["train"]) >= 0)
    frame = result.to_frame()
    assert list(frame.columns) == ["time", "train_t_global", "train_velocity"]
    assert len(frame) == 101


def test_invalid_arguments() -> None:
    track = _powered_ring()
    with pytest.raises(ValueError):
        CoasterSimulation(track, [Train(track), Train(track)])
    sim = CoasterSimulation(track, [Train(track)])
    with pytest.raises(ValueError):
        sim.step(0.0)
    with pytest.raises(ValueError):
        sim.run(1.0, dt=-0.1)


def test_block_signaling_keeps_trains_apart() -> None:
    track = _powered_ring()
    trains = [Train(track, axle_offsets=(0.0, 2.0), name=f"t{i}") for i in range(2)]
    controller = BlockController(track, [[0], [1], [2], [3]], trains=trains, stations=(0,), dwell_time=2.0)
    controller.auto_place_sensor_events()
    entered = []
    controller.subscribe(on_section_entered=entered.append)

    sim = CoasterSimulation(track, trains, controller)
    result = sim.run(30.0, dt=0.02)

    assert np.all(result.free_blocks == 2)
    assert entered
    assert "free_blocks" in result.to_frame().columns
    for name in ("t0", "t1"):
        assert np.max(result.velocity[name]) <= 4.0 + 1e-9
        assert np.all(result.t_global[name] < track.t_max)
