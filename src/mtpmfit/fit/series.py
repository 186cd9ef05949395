# src/mtpmfit/fit/series.py
from __future__ import annotations
from typing import Hashable, Optional

import numpy as np
import pandas as pd

from .types import InvalidSeriesError, Observation, Series

ORIGIN_ATOL = 1e-12


def make_series(t, y, group: Optional[Hashable] = None) -> Series:
    """
    Validate one group's (time, MTPM) observations and freeze them as a Series.

    Rules:
      - at least one observation, all finite, times >= 0
      - a time may repeat only with the same measurement
      - the origin (0, 0) must be present
      - at least two distinct times
    Observations are stored sorted by time so fitting never depends on input order.
    """
    t = np.asarray(t, dtype=float).ravel()
    y = np.asarray(y, dtype=float).ravel()

    if t.shape != y.shape:
        raise InvalidSeriesError(f"time and measurement lengths differ ({len(t)} vs {len(y)})", group)
    if len(t) == 0:
        raise InvalidSeriesError("series is empty", group)
    if not (np.all(np.isfinite(t)) and np.all(np.isfinite(y))):
        raise InvalidSeriesError("series contains missing or non-finite values", group)
    if np.any(t < 0):
        raise InvalidSeriesError("follow-up times must be non-negative", group)

    order = np.lexsort((y, t))
    t = t[order]
    y = y[order]

    conflicts = pd.Series(y).groupby(t).nunique()
    conflicts = conflicts[conflicts > 1]
    if len(conflicts):
        times = ", ".join(f"{v:g}" for v in conflicts.index)
        raise InvalidSeriesError(f"conflicting measurements for the same time: {times}", group)

    has_origin = np.any((np.abs(t) <= ORIGIN_ATOL) & (np.abs(y) <= ORIGIN_ATOL))
    if not has_origin:
        raise InvalidSeriesError("missing the origin observation (time 0, MTPM 0)", group)

    if len(np.unique(t)) < 2:
        raise InvalidSeriesError("need at least 2 distinct follow-up times", group)

    obs = tuple(Observation(float(ti), float(yi)) for ti, yi in zip(t, y))
    return Series(observations=obs, group=group)


def series_from_frame(
    df: pd.DataFrame,
    time_col: str = "FU_month",
    value_col: str = "MTPM",
    group: Optional[Hashable] = None,
) -> Series:
    missing = [c for c in (time_col, value_col) if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")
    t = pd.to_numeric(df[time_col], errors="coerce").to_numpy(dtype=float)
    y = pd.to_numeric(df[value_col], errors="coerce").to_numpy(dtype=float)
    return make_series(t, y, group=group)
