# app/streamlit_app.py
from __future__ import annotations

import io

import numpy as np
import pandas as pd
import streamlit as st

from mtpmfit.fit.batch import BatchConfig, fit_partitions, partition_series, results_to_frame, summarize_batch
from mtpmfit.fit.curve_fitter import CurveFitConfig
from mtpmfit.fit.types import InvalidSeriesError
from mtpmfit.io.long_format import standardize_long
from mtpmfit.viz.payloads import curve_payload, make_fit_figure


# =========================
# Helpers
# =========================

def make_sample_csv_bytes() -> bytes:
    """Four groups of group-mean MTPM (mm) at follow-up months, time 0 included."""
    data = {
        "ID": [1, 1, 1, 1, 1, 2, 2, 2, 2, 2, 3, 3, 3, 3, 4, 4, 4, 4],
        "FU_month": [0.0, 1.5, 6.0, 12.0, 24.0, 0.0, 1.5, 6.0, 12.0, 24.0, 0.0, 6.0, 12.0, 24.0, 0.0, 3.0, 12.0, 24.0],
        "MTPM": [0.00, 0.43, 0.55, 0.57, 0.47, 0.00, 0.53, 0.51, 0.53, 0.45,
                 0.00, 0.28, 0.30, 0.34, 0.00, 0.93, 1.00, 0.95],
    }
    return pd.DataFrame(data).to_csv(index=False).encode("utf-8")


def read_upload(uploaded) -> pd.DataFrame:
    name = uploaded.name.lower()
    if name.endswith((".xlsx", ".xls")):
        return pd.read_excel(uploaded)
    return pd.read_csv(uploaded)


def show_friendly_error(exc: Exception):
    st.error("Run failed. Check that every group has time 0 with MTPM 0 and numeric time/MTPM columns.")
    st.caption(f"Error: {type(exc).__name__}: {exc}")


# =========================
# Page
# =========================

st.set_page_config(page_title="MTPM Michaelis-Menten fits", layout="wide")
st.title("Michaelis-Menten curves for RSA migration (MTPM)")
st.caption("MTPM(t) = MTPMemax * t / (K + t). Use group means, one time unit for the whole table.")

st.download_button(
    label="Download sample CSV",
    data=make_sample_csv_bytes(),
    file_name="mtpm_sample.csv",
    mime="text/csv",
)

uploaded = st.file_uploader("Upload a table (.csv or .xlsx)", type=["csv", "xlsx", "xls"])
if uploaded is None:
    st.stop()

raw = read_upload(uploaded)
cols = raw.columns.tolist()

c1, c2, c3 = st.columns(3)
with c1:
    group_col = st.selectbox("Group column", ["(single group)"] + cols,
                             index=cols.index("ID") + 1 if "ID" in cols else 0)
with c2:
    time_col = st.selectbox("Time column", cols, index=cols.index("FU_month") if "FU_month" in cols else 0)
with c3:
    value_col = st.selectbox("MTPM column", cols, index=cols.index("MTPM") if "MTPM" in cols else min(1, len(cols) - 1))

use_fallback = st.checkbox("Retry unconverged groups with the unconstrained solver", value=True)

group_key = None if group_col == "(single group)" else group_col
try:
    df = standardize_long(raw, time_col=time_col, value_col=value_col, group_col=group_key)
    if group_key is None:
        group_key = "group"
        df[group_key] = 1
    config = BatchConfig(fit=CurveFitConfig(enable_fallback=use_fallback))
    parts = partition_series(df, group_key, config)
    results = fit_partitions(parts, config)
except (InvalidSeriesError, ValueError) as exc:
    show_friendly_error(exc)
    st.stop()

counts = summarize_batch(results)
m1, m2, m3, m4 = st.columns(4)
with m1:
    st.metric("Groups", counts["n_groups"])
with m2:
    st.metric("Fitted", counts["primary"] + counts["fallback"])
with m3:
    st.metric("Could not be fit", counts["unfit"])
with m4:
    st.metric("Malformed", counts["invalid"])

table = results_to_frame(results, group_key=group_key)
st.subheader("Results")
st.dataframe(table, use_container_width=True, hide_index=True)

buf = io.BytesIO()
table.to_csv(buf, index=False)
st.download_button("Download results CSV", data=buf.getvalue(), file_name="mm_fits.csv", mime="text/csv")

st.subheader("Curve viewer")
labels = [str(p.group) for p in parts]
chosen = st.selectbox("Group", labels)
idx = labels.index(chosen)
part, res = parts[idx], results[idx]
if part.series is None:
    st.warning(f"Group {chosen} was not fit: {part.invalid_reason}")
    st.stop()
payload = curve_payload(part.series, res)
st.plotly_chart(make_fit_figure(payload), use_container_width=True)

if res.converged and res.ci_emax is not None:
    st.write(f"95% CI MTPMemax: {res.ci_emax[0]:.3f} to {res.ci_emax[1]:.3f} mm")
if res.converged and res.ci_k is not None:
    st.write(f"95% CI K: {res.ci_k[0]:.2f} to {res.ci_k[1]:.2f}")
if res.messages:
    st.caption(" | ".join(res.messages))
if res.converged and not np.isfinite(payload["y_hat"]).all():
    st.warning("Fitted K is negative; the curve has a pole inside the plotted range.")
