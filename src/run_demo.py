from __future__ import annotations

"""Command line demo for the coaster simulation.

Running ``python src/run_demo.py`` builds a small closed layout (station,
lift hill, drop, banked turn and brake run), runs one or more trains on it
under block signaling and writes the results to a time-stamped directory
under ``outputs``.

Three files are produced for each run:

``geometry.csv``
    Track sampled at even arc-length spacing with section index, global
    parameter, position and roll.
``results.csv``
    Lead parameter and velocity of every train plus the number of free
    blocks at every simulation step.
``summary.json``
    Track length, simulated duration and per-train statistics.
"""

from pathlib import Path
from datetime import datetime
import argparse
import json
import logging
import time

import numpy as np

from coaster_track import CoasterTrack
from io_utils import write_csv
from sampling import sample_track, support_positions
from signaling import BlockController
from simulation import CoasterSimulation
from track_section import TrackSection
from train import Train, TrainParams

DEFAULT_PARAMS = Path(__file__).resolve().parents[1] / "data" / "train_params.csv"

# Section indices of each block of the demo layout, in ring order.
DEMO_BLOCKS = ([0], [1], [2, 3], [4])
DEMO_STATIONS = (0,)
AXLE_OFFSETS = (0.0, 2.0, 4.0, 6.0)


def build_demo_track() -> CoasterTrack:
    """Return the closed demo layout.

    The station and the brake run can both hold and launch a train; the lift
    can stop a train at its crest.  The drop and the turn are unpowered.
    """
    station = TrackSection(
        [(0, 0, 0), (0, 0, 10), (0, 0, 20)],
        name="station",
        affects_train=True,
        acceleration=2.0,
        braking=3.0,
        target_velocity=3.0,
    )
    lift = TrackSection(
        [(0, 0, 20), (0, 1, 28), (0, 8, 36), (0, 18, 46), (0, 22, 54), (0, 22, 60)],
        name="lift",
        affects_train=True,
        acceleration=15.0,
        braking=3.0,
        target_velocity=3.0,
    )
    drop = TrackSection(
        [(0, 22, 60), (0, 18, 66), (0, 6, 74), (0, 2, 82)],
        name="drop",
    )
    turn = TrackSection(
        [
            (0, 2, 82),
            (-4.4, 2, 92.6),
            (-15, 2, 97),
            (-25.6, 2, 92.6),
            (-30, 2, 82),
            (-30, 2, 40),
            (-30, 1.5, 0),
        ],
        roll_nodes=[(0, 0), (1, 35), (3, 35), (4, 0), (6, 0)],
        name="turn",
        heartline_offset=1.1,
    )
    brake = TrackSection(
        [(-30, 1.5, 0), (-30, 1, -10), (-25.6, 1, -20.6), (-15, 1, -25), (-4.4, 1, -20.6), (0, 0.5, -10), (0, 0, 0)],
        roll_nodes=[(0, 0), (1, 0), (2, 20), (4, 20), (5, 0)],
        name="brake",
        affects_train=True,
        acceleration=2.0,
        braking=5.0,
        target_velocity=4.0,
    )
    return CoasterTrack([station, lift, drop, turn, brake], closed=True)


def run(
    params_file: str | Path | None = DEFAULT_PARAMS,
    duration: float = 60.0,
    dt: float = 0.02,
    n_trains: int = 1,
    spacing: float = 1.0,
    dwell: float = 10.0,
    plot: bool = False,
    out_root: str | Path = "outputs",
) -> tuple[dict, Path]:
    """Simulate the demo layout and return the summary and output directory.

    Parameters
    ----------
    params_file:
        Train parameter CSV.  ``None`` uses :class:`~train.TrainParams`
        defaults.
    duration, dt:
        Simulated time and step size in seconds.
    n_trains:
        Number of trains; the layout has four blocks so at most three trains
        fit.
    spacing:
        Arc-length spacing in metres of the exported geometry.
    dwell:
        Station dwell time in seconds.
    plot:
        Also save plan, elevation and velocity plots as PNG files.
    """
    start_time = time.perf_counter()

    params = TrainParams.from_csv(params_file) if params_file is not None else TrainParams()
    track = build_demo_track()
    trains = [
        Train(track, AXLE_OFFSETS, params=params, name=f"train_{i + 1}") for i in range(n_trains)
    ]
    controller = BlockController(
        track, DEMO_BLOCKS, trains=trains, stations=DEMO_STATIONS, dwell_time=dwell
    )
    controller.auto_place_sensor_events()

    sim = CoasterSimulation(track, trains, controller)
    result = sim.run(duration, dt)

    # Write outputs
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    out_dir = Path(out_root) / timestamp
    out_dir.mkdir(parents=True, exist_ok=True)

    geometry_df = sample_track(track, spacing)
    results_df = result.to_frame()
    write_csv(geometry_df, out_dir / "geometry.csv")
    write_csv(results_df, out_dir / "results.csv")

    summary = {
        "track_length_m": track.length,
        "t_max": track.t_max,
        "duration_s": float(result.time[-1]),
        "trains": {
            name: {
                "max_velocity_mps": float(np.max(result.velocity[name])),
                "laps": int(np.sum(np.diff(result.t_global[name]) < 0)),
            }
            for name in result.t_global
        },
    }
    with (out_dir / "summary.json").open("w") as f:
        json.dump(summary, f, indent=2)

    if plot:
        _save_plots(track, geometry_df, result, out_dir)

    total_runtime = time.perf_counter() - start_time
    print(
        f"Track: {len(track)} sections, {track.length:.1f} m, "
        f"Blocks: {len(controller.blocks)}, "
        f"Total runtime: {total_runtime:.3f} s"
    )
    for name, stats in summary["trains"].items():
        print(f"{name}: max velocity {stats['max_velocity_mps']:.2f} m/s, laps {stats['laps']}")

    return summary, out_dir


def _save_plots(track, geometry_df, result, out_dir: Path) -> None:
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    from plots import plot_elevation, plot_plan_view, plot_velocity

    supports = []
    for section in track.sections:
        params = support_positions(section, 8.0)
        if params.size:
            supports.append(np.atleast_2d(section.position(params)))
    supports_xyz = np.vstack(supports) if supports else None

    for name, draw in (
        ("plan", lambda ax: plot_plan_view(geometry_df["x"], geometry_df["z"], supports_xyz, ax=ax)),
        ("elevation", lambda ax: plot_elevation(geometry_df["distance"], geometry_df["y"], geometry_df["roll"], ax=ax)),
        ("velocity", lambda ax: plot_velocity(result.time, result.velocity, ax=ax)),
    ):
        fig, ax = plt.subplots()
        draw(ax)
        fig.savefig(out_dir / f"{name}.png")
        plt.close(fig)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run coaster simulation demo")
    parser.add_argument("--params", default=str(DEFAULT_PARAMS), help="Train parameter CSV")
    parser.add_argument("--duration", type=float, default=60.0, help="Simulated time in seconds")
    parser.add_argument("--dt", type=float, default=0.02, help="Simulation time step in seconds")
    parser.add_argument(
        "--trains", type=int, choices=[1, 2, 3], default=1, help="Number of trains on the track"
    )
    parser.add_argument(
        "--spacing", type=float, default=1.0, help="Sampling spacing of the exported geometry"
    )
    parser.add_argument("--dwell", type=float, default=10.0, help="Station dwell time in seconds")
    parser.add_argument("--plot", action="store_true", help="Save plots next to the CSV output")
    parser.add_argument("--verbose", action="store_true", help="Log signaling and track warnings")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    _, out_dir = run(
        args.params,
        duration=args.duration,
        dt=args.dt,
        n_trains=args.trains,
        spacing=args.spacing,
        dwell=args.dwell,
        plot=args.plot,
    )
    print(f"Outputs written to {out_dir}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
