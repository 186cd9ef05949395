from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

import pandas as pd


def read_table(path: Union[str, Path]) -> pd.DataFrame:
    """Read a .csv or .xlsx/.xls migration table."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(str(path))
    if path.suffix.lower() in (".xlsx", ".xls"):
        return pd.read_excel(path)
    return pd.read_csv(path)


def write_table(df: pd.DataFrame, path: Union[str, Path]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in (".xlsx", ".xls"):
        df.to_excel(path, index=False)
    else:
        df.to_csv(path, index=False)


def standardize_long(
    df_long: pd.DataFrame,
    time_col: str = "FU_month",
    value_col: str = "MTPM",
    group_col: Optional[str] = None,
) -> pd.DataFrame:
    """
    Map the caller's column names onto the fields the fitter needs.

    Output columns: [group_col,] FU_month, MTPM (numeric). Rows whose time or
    MTPM cell cannot be read as a number raise, they are never dropped.
    """
    needed = [c for c in (group_col, time_col, value_col) if c is not None]
    missing = [c for c in needed if c not in df_long.columns]
    if missing:
        raise ValueError(f"Table missing required columns {missing}. Got: {df_long.columns.tolist()}")

    out = pd.DataFrame(index=df_long.index)
    if group_col is not None:
        out[group_col] = df_long[group_col]
    out["FU_month"] = pd.to_numeric(df_long[time_col], errors="coerce")
    out["MTPM"] = pd.to_numeric(df_long[value_col], errors="coerce")

    bad = out["FU_month"].isna() | out["MTPM"].isna()
    if bad.any():
        raise ValueError(f"Unreadable time/MTPM values at rows {df_long.index[bad].tolist()[:10]}")
    return out.reset_index(drop=True)
