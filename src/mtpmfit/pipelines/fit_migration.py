# src/mtpmfit/pipelines/fit_migration.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

import pandas as pd

from mtpmfit.fit.batch import BatchConfig, results_to_frame, run_batch
from mtpmfit.fit.curve_fitter import CurveFitConfig, fit_series
from mtpmfit.fit.series import make_series
from mtpmfit.fit.types import FitResult, Series
from mtpmfit.io.long_format import read_table, standardize_long, write_table


def configure_logging(loglevel: str = "INFO") -> None:
    try:
        level = getattr(logging, str(loglevel).upper())
    except Exception:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def run_single_fit(
    *,
    input_path: Union[str, Path],
    time_col: str = "FU_month",
    value_col: str = "MTPM",
    out_path: Optional[Union[str, Path]] = None,
    fit_config: Optional[CurveFitConfig] = None,
    loglevel: str = "INFO",
) -> Tuple[FitResult, pd.DataFrame, Series]:
    """
    Part 1: one group in the file -> one fitted curve.

    Returns (FitResult, one-row result table, the validated Series that was fit).
    """
    configure_logging(loglevel)

    raw = read_table(input_path)
    df = standardize_long(raw, time_col=time_col, value_col=value_col)
    logging.info(f"Loaded {input_path}: rows={len(df)}")

    series = make_series(df["FU_month"], df["MTPM"])
    result = fit_series(series, config=fit_config)
    table = results_to_frame([result]).drop(columns=["group"])

    if out_path is not None:
        write_table(table, out_path)
        logging.info(f"Wrote fit: {out_path}")
    return result, table, series


def run_batch_fit(
    *,
    input_path: Union[str, Path],
    group_col: str = "ID",
    time_col: str = "FU_month",
    value_col: str = "MTPM",
    out_path: Optional[Union[str, Path]] = None,
    n_jobs: int = 1,
    fit_config: Optional[CurveFitConfig] = None,
    loglevel: str = "INFO",
) -> Tuple[List[FitResult], pd.DataFrame]:
    """
    Part 2: grouped table -> one fitted curve per group.

    Notes:
      - CLI and UI should call THIS, not the fit modules directly.
      - Unfit groups stay in the output with empty coefficients.
    """
    configure_logging(loglevel)

    raw = read_table(input_path)
    df = standardize_long(raw, time_col=time_col, value_col=value_col, group_col=group_col)
    logging.info(f"Loaded {input_path}: rows={len(df)} groups={df[group_col].nunique()}")

    config = BatchConfig(n_jobs=int(n_jobs), fit=fit_config or CurveFitConfig())
    results = run_batch(df, group_col, config)
    table = results_to_frame(results, group_key=group_col)

    if out_path is not None:
        write_table(table, out_path)
        logging.info(f"Wrote results: {out_path}  rows={len(table)}")
    return results, table
