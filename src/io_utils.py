from __future__ import annotations

"""Utility functions for reading and writing CSV data.

This module centralises the small amount of file I/O used by the demo
script: a light-weight parser for the ``key,value`` train parameter files
read by :meth:`~train.TrainParams.from_csv` and a :mod:`pandas` wrapper for
saving sampled geometry and simulation results.
"""

from pathlib import Path
from typing import Dict, Iterable, Mapping

import csv
import pandas as pd


def read_train_params_csv(path: str | Path) -> Dict[str, float | bool]:
    """Read train parameters from ``path``.

    Values of ``true``/``false`` are interpreted as booleans while other
    entries are parsed as floating point numbers.  Blank lines, a leading
    ``key,value`` header and rows whose value cannot be parsed are skipped.
    """
    params: Dict[str, float | bool] = {}
    with Path(path).open(newline="") as f:
        reader = csv.reader(f)
        for row in reader:
            if not row or all(cell.strip() == "" for cell in row):
                continue
            key = row[0].strip()
            if key.startswith("#"):
                continue
            try:
                raw_value = row[1].strip()
            except IndexError:
                continue

            value_lower = raw_value.lower()
            if value_lower == "true":
                params[key] = True
            elif value_lower == "false":
                params[key] = False
            else:
                try:
                    params[key] = float(raw_value)
                except ValueError:
                    continue
    return params


def write_csv(data: Mapping[str, Iterable] | pd.DataFrame, file_path: str | Path) -> None:
    """Write ``data`` to ``file_path`` ensuring parent directories exist."""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(data, pd.DataFrame):
        data.to_csv(file_path, index=False)
    else:
        pd.DataFrame(data).to_csv(file_path, index=False)
