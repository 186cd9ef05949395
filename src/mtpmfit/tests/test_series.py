from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from mtpmfit.fit.series import make_series, series_from_frame
from mtpmfit.fit.types import InvalidSeriesError


def test_observations_are_sorted_by_time():
    s = make_series([12, 0, 3], [0.5, 0.0, 0.3])
    assert s.t.tolist() == [0.0, 3.0, 12.0]
    assert s.y.tolist() == [0.0, 0.3, 0.5]
    assert len(s) == 3


def test_missing_origin_is_rejected():
    with pytest.raises(InvalidSeriesError, match="origin"):
        make_series([1.5, 3, 6], [0.3, 0.4, 0.45])


def test_nonzero_measurement_at_time_zero_is_not_an_origin():
    with pytest.raises(InvalidSeriesError, match="origin"):
        make_series([0, 3, 6], [0.1, 0.4, 0.45])


def test_single_distinct_time_is_rejected():
    with pytest.raises(InvalidSeriesError, match="distinct"):
        make_series([0, 0], [0, 0])


def test_conflicting_duplicate_time_is_rejected():
    with pytest.raises(InvalidSeriesError, match="conflicting"):
        make_series([0, 6, 6, 12], [0, 0.4, 0.5, 0.5])


def test_identical_duplicate_rows_are_kept():
    s = make_series([0, 6, 6, 12], [0, 0.4, 0.4, 0.5])
    assert len(s) == 4


def test_negative_or_missing_values_are_rejected():
    with pytest.raises(InvalidSeriesError):
        make_series([0, -1, 6], [0, 0.2, 0.4])
    with pytest.raises(InvalidSeriesError):
        make_series([0, 3, 6], [0, np.nan, 0.4])
    with pytest.raises(InvalidSeriesError, match="empty"):
        make_series([], [])


def test_error_names_the_group():
    with pytest.raises(InvalidSeriesError) as excinfo:
        make_series([3, 6], [0.2, 0.3], group="knee-B")
    assert excinfo.value.group == "knee-B"
    assert "knee-B" in str(excinfo.value)


def test_series_from_frame_requires_columns():
    df = pd.DataFrame({"FU_month": [0, 3], "other": [0, 0.2]})
    with pytest.raises(ValueError, match="Missing required columns"):
        series_from_frame(df)
