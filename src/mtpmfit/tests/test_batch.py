from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from mtpmfit.fit.batch import BatchConfig, partition_series, results_to_frame, run_batch, summarize_batch
from mtpmfit.fit.mm_model import michaelis_menten
from mtpmfit.fit.types import FitMethod

T = np.array([0, 1.5, 3, 6, 12, 24], dtype=float)
NOISE = np.array([0.0, 0.004, -0.003, 0.005, -0.004, 0.002])


def _group(gid, emax, k):
    return pd.DataFrame({"ID": gid, "FU_month": T, "MTPM": michaelis_menten(T, emax, k) + NOISE})


def _four_groups_with_flat_second() -> pd.DataFrame:
    flat = pd.DataFrame({"ID": 2, "FU_month": T, "MTPM": np.zeros_like(T)})
    return pd.concat(
        [_group(1, 0.5, 2.0), flat, _group(3, 0.8, 3.0), _group(4, 1.0, 1.0)],
        ignore_index=True,
    )


def _r_sample() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "ID": [1, 1, 1, 1, 1, 2, 2, 2, 2, 2, 3, 3, 3, 3, 4, 4, 4, 4],
            "FU_month": [0.0, 1.5, 6.0, 12.0, 24.0, 0.0, 1.5, 6.0, 12.0, 24.0,
                         0.0, 6.0, 12.0, 24.0, 0.0, 3.0, 12.0, 24.0],
            "MTPM": [0.00, 0.43, 0.55, 0.57, 0.47, 0.00, 0.53, 0.51, 0.53, 0.45,
                     0.00, 0.28, 0.30, 0.34, 0.00, 0.93, 1.00, 0.95],
        }
    )


def test_unfittable_group_does_not_block_others():
    results = run_batch(_four_groups_with_flat_second(), "ID")
    assert [r.group for r in results] == [1, 2, 3, 4]
    assert results[1].method is FitMethod.UNFIT
    assert results[1].mtpm_emax is None
    for r in (results[0], results[2], results[3]):
        assert r.method is FitMethod.PRIMARY
        assert r.mtpm_emax > 0 and r.k > 0


def test_groups_keep_first_appearance_order():
    df = pd.concat([_group("b", 0.5, 2.0), _group("a", 0.8, 3.0), _group("c", 1.0, 1.0)], ignore_index=True)
    df = df.iloc[[0, 6, 12, 1, 7, 13, 2, 8, 14, 3, 9, 15, 4, 10, 16, 5, 11, 17]]
    results = run_batch(df, "ID")
    assert [r.group for r in results] == ["b", "a", "c"]


def test_every_group_gets_a_row_and_counts_hold():
    results = run_batch(_r_sample(), "ID")
    assert len(results) == 4
    assert [r.n_datapoints for r in results] == [5, 5, 4, 4]
    for r in results:
        assert r.n_followups == r.n_datapoints - 1


def test_custom_column_names():
    df = _four_groups_with_flat_second().rename(columns={"ID": "cohort", "FU_month": "t", "MTPM": "mm"})
    results = run_batch(df, "cohort", BatchConfig(time_col="t", value_col="mm"))
    assert len(results) == 4


def test_parallel_batch_matches_sequential():
    df = _four_groups_with_flat_second()
    seq = run_batch(df, "ID")
    par = run_batch(df, "ID", BatchConfig(n_jobs=2))
    assert [r.group for r in par] == [r.group for r in seq]
    assert [r.method for r in par] == [r.method for r in seq]
    for a, b in zip(seq, par):
        if a.converged:
            assert np.isclose(a.mtpm_emax, b.mtpm_emax)
            assert np.isclose(a.k, b.k)


def test_results_frame_and_summary():
    results = run_batch(_four_groups_with_flat_second(), "ID")
    table = results_to_frame(results, group_key="ID")
    assert table.columns[:6].tolist() == ["ID", "MTPMemax", "K", "method", "n_datapoints", "n_followups"]
    assert len(table) == 4
    assert table.loc[1, "method"] == "unfit"
    assert np.isnan(table.loc[1, "MTPMemax"])
    counts = summarize_batch(results)
    assert counts == {"primary": 3, "fallback": 0, "unfit": 1, "invalid": 0, "n_groups": 4}


def test_structural_errors_raise():
    with pytest.raises(ValueError, match="empty"):
        run_batch(pd.DataFrame(columns=["ID", "FU_month", "MTPM"]), "ID")
    with pytest.raises(ValueError, match="Missing required columns"):
        run_batch(pd.DataFrame({"ID": [1], "FU_month": [0]}), "ID")
    bad = _r_sample()
    bad["MTPM"] = bad["MTPM"].astype(object)
    bad.loc[3, "MTPM"] = "n/a"
    with pytest.raises(ValueError, match="non-numeric"):
        run_batch(bad, "ID")
    missing_id = _r_sample()
    missing_id.loc[0, "ID"] = np.nan
    with pytest.raises(ValueError, match="group identifier"):
        run_batch(missing_id, "ID")


def _r_sample_without_group3_origin() -> pd.DataFrame:
    df = _r_sample()
    return df[~((df["ID"] == 3) & (df["FU_month"] == 0))].reset_index(drop=True)


def test_malformed_group_is_tagged_invalid_and_others_still_fit():
    results = run_batch(_r_sample_without_group3_origin(), "ID")
    assert len(results) == 4
    assert [r.group for r in results] == [1, 2, 3, 4]

    bad = results[2]
    assert bad.method is FitMethod.INVALID
    assert not bad.converged
    assert bad.mtpm_emax is None and bad.k is None
    assert bad.n_datapoints == 3
    assert bad.n_followups == 2
    assert any("origin" in m for m in bad.messages)

    for r in (results[0], results[1], results[3]):
        assert r.method is not FitMethod.INVALID

    counts = summarize_batch(results)
    assert counts["invalid"] == 1
    assert counts["n_groups"] == 4

    table = results_to_frame(results, group_key="ID")
    assert table["method"].tolist()[2] == "invalid"
    assert np.isnan(table.loc[2, "MTPMemax"])


def test_partition_keeps_reason_for_malformed_group():
    parts = partition_series(_r_sample_without_group3_origin(), "ID")
    assert [p.group for p in parts] == [1, 2, 3, 4]
    assert parts[2].series is None
    assert "origin" in parts[2].invalid_reason
    assert all(p.series is not None for i, p in enumerate(parts) if i != 2)


def test_parallel_batch_keeps_invalid_row_in_place():
    results = run_batch(_r_sample_without_group3_origin(), "ID", BatchConfig(n_jobs=2))
    assert [r.method is FitMethod.INVALID for r in results] == [False, False, True, False]
