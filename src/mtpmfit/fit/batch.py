# src/mtpmfit/fit/batch.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional, Sequence

import pandas as pd
from joblib import Parallel, delayed

from .curve_fitter import CurveFitConfig, fit_series
from .series import make_series
from .types import FitMethod, FitResult, InvalidSeriesError, Series

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchConfig:
    time_col: str = "FU_month"
    value_col: str = "MTPM"
    n_jobs: int = 1               # >1 (or -1) fits groups in parallel via joblib
    fit: CurveFitConfig = field(default_factory=CurveFitConfig)


def _ensure_columns(df: pd.DataFrame, cols: list[str]) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")


def _coerce_numeric(df: pd.DataFrame, col: str) -> pd.Series:
    values = pd.to_numeric(df[col], errors="coerce")
    bad = values.isna()
    if bad.any():
        rows = df.index[bad].tolist()
        raise ValueError(f"Column {col!r} has missing or non-numeric values at rows {rows[:10]}")
    return values.astype(float)


@dataclass(frozen=True)
class GroupSeries:
    """One group's rows: a validated Series, or the reason it is malformed."""
    group: Hashable
    n_rows: int
    series: Optional[Series] = None
    invalid_reason: Optional[str] = None


def partition_series(table: pd.DataFrame, group_key: Hashable, config: Optional[BatchConfig] = None) -> List[GroupSeries]:
    """
    Split a long table into one entry per group, in first-appearance order.

    Structural problems (empty table, missing columns, unreadable cells, missing
    group labels) raise ValueError. A malformed group does not raise; its entry
    carries the InvalidSeriesError reason instead of a Series.
    """
    cfg = config or BatchConfig()
    df = table if isinstance(table, pd.DataFrame) else pd.DataFrame(table)
    if df.empty:
        raise ValueError("Input table is empty")
    _ensure_columns(df, [group_key, cfg.time_col, cfg.value_col])

    if df[group_key].isna().any():
        rows = df.index[df[group_key].isna()].tolist()
        raise ValueError(f"Missing group identifier at rows {rows[:10]}")

    df = df.copy()
    df[cfg.time_col] = _coerce_numeric(df, cfg.time_col)
    df[cfg.value_col] = _coerce_numeric(df, cfg.value_col)

    parts = []
    for key, g in df.groupby(group_key, sort=False):
        try:
            series = make_series(g[cfg.time_col].to_numpy(), g[cfg.value_col].to_numpy(), group=key)
        except InvalidSeriesError as e:
            logger.warning(str(e))
            parts.append(GroupSeries(group=key, n_rows=len(g), invalid_reason=e.reason))
            continue
        parts.append(GroupSeries(group=key, n_rows=len(g), series=series))
    return parts


def _invalid_result(part: GroupSeries) -> FitResult:
    return FitResult(
        method=FitMethod.INVALID,
        n_datapoints=part.n_rows,
        n_followups=part.n_rows - 1,
        group=part.group,
        messages=(f"invalid: {part.invalid_reason}",),
    )


def fit_partitions(parts: Sequence[GroupSeries], config: Optional[BatchConfig] = None) -> List[FitResult]:
    """
    Fit every valid group; malformed groups get an INVALID row in place.
    Output order follows `parts`.
    """
    cfg = config or BatchConfig()
    valid = [p.series for p in parts if p.series is not None]

    if cfg.n_jobs == 1 or len(valid) < 2:
        fitted = [fit_series(s, cfg.fit) for s in valid]
    else:
        fitted = Parallel(n_jobs=cfg.n_jobs)(delayed(fit_series)(s, cfg.fit) for s in valid)

    fitted_iter = iter(fitted)
    return [next(fitted_iter) if p.series is not None else _invalid_result(p) for p in parts]


def run_batch(table: pd.DataFrame, group_key: Hashable, config: Optional[BatchConfig] = None) -> List[FitResult]:
    """
    Fit one curve per group. Every group yields exactly one FitResult (UNFIT
    and INVALID included) and one group's failure never stops the others.
    """
    cfg = config or BatchConfig()
    parts = partition_series(table, group_key, cfg)
    logger.info(f"Fitting {len(parts)} groups keyed by {group_key!r}")

    results = fit_partitions(parts, cfg)

    counts = summarize_batch(results)
    logger.info(
        f"Batch done: {counts['primary']} primary, {counts['fallback']} fallback, "
        f"{counts['unfit']} of {counts['n_groups']} groups could not be fit, "
        f"{counts['invalid']} malformed"
    )
    return results


def summarize_batch(results: Sequence[FitResult]) -> Dict[str, int]:
    counts = {m.value: 0 for m in FitMethod}
    for r in results:
        counts[r.method.value] += 1
    counts["n_groups"] = len(results)
    return counts


def results_to_frame(results: Sequence[FitResult], group_key: Hashable = "group") -> pd.DataFrame:
    """Result table with the group identifier first, one row per group."""
    rows = [{group_key: r.group, **r.to_record()} for r in results]
    if not rows:
        return pd.DataFrame(columns=[group_key])
    return pd.DataFrame(rows)
