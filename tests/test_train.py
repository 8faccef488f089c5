import sys
from pathlib import Path

import numpy as np
import pytest

# Add the ``src`` directory to the import path for test execution.
sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from coaster_track import CoasterTrack
from track_section import TrackSection
from train import Train, TrainParams, apply_section_drive


def _flat_track(length: float = 500.0, **flags) -> CoasterTrack:
    return CoasterTrack([TrackSection([(0, 0, 0), (0, 0, length)], **flags)])


def _loop_track() -> CoasterTrack:
    sections = [
        TrackSection([(0, 0, 0), (0, 0, 10), (0, 0, 20)]),
        TrackSection([(0, 0, 20), (10, 0, 30), (20, 0, 20)]),
        TrackSection([(20, 0, 20), (20, 0, 0), (10, 0, -10), (0, 0, 0)]),
    ]
    return CoasterTrack(sections, closed=True)


class TestSectionDrive:
    def test_inactive_sections_do_nothing(self) -> None:
        passive = TrackSection(target_velocity=5.0, acceleration=2.0)
        assert apply_section_drive(passive, 1.0, 0.1) == 1.0
        frozen = TrackSection(affects_train=True, physics_active=False, target_velocity=5.0, acceleration=2.0)
        assert apply_section_drive(frozen, 1.0, 0.1) == 1.0

    def test_accelerates_towards_target_without_overshoot(self) -> None:
        section = TrackSection(affects_train=True, target_velocity=5.0, acceleration=2.0)
        v = 0.0
        history = []
        for _ in range(2000):
            v = apply_section_drive(section, v, 0.02)
            history.append(v)
        assert max(history) <= 5.0
        assert np.all(np.diff(history) >= 0)
        assert np.isclose(v, 5.0, atol=1e-6)

    def test_large_step_does_not_overshoot(self) -> None:
        section = TrackSection(affects_train=True, target_velocity=5.0, acceleration=50.0, braking=50.0)
        assert apply_section_drive(section, 4.9, 1.0) == 5.0
        assert apply_section_drive(section, 5.5, 1.0) == 5.0

    def test_stop_train_brakes_to_zero(self) -> None:
        section = TrackSection(affects_train=True, target_velocity=5.0, braking=5.0, stop_train=True)
        v = 3.0
        for _ in range(100):
            v = apply_section_drive(section, v, 0.02)
            assert v >= 0.0
        assert v == 0.0


class TestForces:
    def test_gravity_on_slope(self) -> None:
        track = CoasterTrack([TrackSection([(0, 0, 0), (0, -10, 10)])])
        train = Train(track)
        train.update_physics(0.01)
        assert np.isclose(train.velocity, 9.81 * np.sqrt(0.5) * 0.01)

    def test_drag_and_rolling_resistance(self) -> None:
        track = _flat_track()
        drag = Train(track, params=TrainParams(cross_area=2.0), velocity=10.0)
        assert np.isclose(drag.net_force(), -0.5 * 1.293 * 100.0 * 0.6 * 2.0)
        rolling = Train(track, params=TrainParams(roll_coefficient=0.01), velocity=5.0)
        assert np.isclose(rolling.net_force(), -0.01 * 9.81 * 550.0)
        backwards = Train(track, params=TrainParams(roll_coefficient=0.01), velocity=-5.0)
        assert np.isclose(backwards.net_force(), 0.01 * 9.81 * 550.0)

    def test_total_mass(self) -> None:
        train = Train(_flat_track(), axle_offsets=(0.0, 2.0, 4.0))
        assert train.total_mass == 3 * 550.0


def test_train_reaches_section_target_velocity() -> None:
    track = _flat_track(affects_train=True, acceleration=2.0, target_velocity=5.0)
    train = Train(track)
    velocities = []
    for _ in range(1000):
        train.step(0.02)
        velocities.append(train.velocity)
    assert max(velocities) <= 5.0 + 1e-9
    assert np.isclose(train.velocity, 5.0, atol=1e-3)
    assert train.t_global > 0.0


def test_axles_keep_their_arc_length_offsets() -> None:
    track = CoasterTrack([TrackSection([(0, 0, 0), (0, 0, 100)])])
    train = Train(track, axle_offsets=(0.0, 2.0, 5.0), t_global=0.5)
    z = [axle.pose.position[2] for axle in train.axles]
    assert np.allclose(z, [50.0, 48.0, 45.0])


def test_axle_offsets_on_curve() -> None:
    track = CoasterTrack([TrackSection([(0, 0, 0), (0, 3, 10), (8, 5, 16), (16, 5, 18)])])
    train = Train(track, axle_offsets=(0.0, 1.5, 4.0), t_global=2.5)
    section = track.sections[0]
    for axle in train.axles[1:]:
        travelled = section.arc_length_between(axle.t_global, train.t_global)
        assert np.isclose(travelled, axle.offset, rtol=1e-2)


def test_axles_wrap_through_seam() -> None:
    track = _loop_track()
    train = Train(track, axle_offsets=(0.0, 5.0), t_global=0.05)
    rear = train.axles[1]
    assert track.start_of(2) < rear.t_global < track.t_max
    assert rear.pose is not None


def test_advance_returns_unwrapped_interval_on_closed_track() -> None:
    track = _loop_track()
    train = Train(track, t_global=track.t_max - 0.01, velocity=20.0)
    t0, t1 = train.advance(0.1)
    assert np.isclose(t0, track.t_max - 0.01)
    assert t1 > track.t_max
    train.place_axles()
    assert 0.0 <= train.t_global < track.t_max


def test_open_track_end_stops_train(caplog) -> None:
    track = _flat_track(10.0)
    train = Train(track, params=TrainParams(enable_physics=False), t_global=0.99, velocity=50.0)
    t0, t1 = train.step(0.1)
    assert t1 == track.t_max
    assert train.velocity == 0.0
    assert "end of an open track" in caplog.text
    assert train.axles[0].pose is not None


def test_current_section() -> None:
    track = _loop_track()
    train = Train(track, t_global=2.5)
    index, t_local = train.current_section()
    assert index == 1
    assert np.isclose(t_local, 0.5)


def test_invalid_axle_offsets() -> None:
    with pytest.raises(ValueError):
        Train(_flat_track(), axle_offsets=())
    with pytest.raises(ValueError):
        Train(_flat_track(), axle_offsets=(0.0, 3.0, 1.0))


def test_params_from_csv(tmp_path: Path) -> None:
    content = """
key,value
axle_mass,600
enable_physics,FALSE
cross_area,1.5
wheel_count,8
"""
    file = tmp_path / "train_params.csv"
    file.write_text(content.strip())
    params = TrainParams.from_csv(file)
    assert params.axle_mass == 600.0
    assert params.enable_physics is False
    assert params.cross_area == 1.5
    assert params.gravity == 9.81
    assert params.air_density == 1.293
