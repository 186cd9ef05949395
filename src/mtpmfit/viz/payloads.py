from __future__ import annotations

from typing import Optional

import numpy as np
import plotly.graph_objects as go

from mtpmfit.fit.mm_model import sample_curve
from mtpmfit.fit.types import FitResult, Series


def curve_payload(series: Series, result: FitResult, n_points: int = 100) -> dict:
    """
    Everything a plot needs for one group: raw points, sampled fitted curve over
    [0, max follow-up], and the MTPMemax / K reference lines.
    """
    t = series.t
    y = series.y
    payload = {
        "group": series.group,
        "t": t,
        "y": y,
        "method": result.method.value,
        "ran": result.converged,
    }
    if not result.converged:
        return payload

    t_grid, y_hat = sample_curve(result, float(np.max(t)), n_points=n_points)
    payload.update(
        {
            "t_grid": t_grid,
            "y_hat": y_hat,
            "params": {
                "MTPMemax": float(result.mtpm_emax),
                "K": float(result.k),
                "y_at_K": float(result.mtpm_emax) / 2.0,
            },
        }
    )
    return payload


def make_fit_figure(
    payload: dict,
    title: Optional[str] = None,
    time_label: str = "Follow-up (months)",
    value_label: str = "MTPM (mm)",
):
    """plotly figure: data points, fitted curve, dashed lines at MTPMemax and K."""
    fig = go.Figure()
    fig.add_trace(go.Scatter(x=payload["t"], y=payload["y"], mode="markers", name="group mean MTPM"))

    if payload.get("ran"):
        params = payload["params"]
        fig.add_trace(
            go.Scatter(x=payload["t_grid"], y=payload["y_hat"], mode="lines", name=f"MM fit ({payload['method']})")
        )
        fig.add_hline(y=params["MTPMemax"], line_dash="dash", line_color="orange",
                      annotation_text=f"MTPMemax = {params['MTPMemax']:.3f}")
        if params["K"] >= 0:
            fig.add_vline(x=params["K"], line_dash="dash", line_color="green",
                          annotation_text=f"K = {params['K']:.2f}")

    if title is None:
        title = "MM curve" if payload.get("group") is None else f"MM curve, group {payload['group']}"
        if not payload.get("ran"):
            title += " (could not be fit)"

    fig.update_layout(
        title=title,
        xaxis_title=time_label,
        yaxis_title=value_label,
        height=420,
        margin=dict(l=30, r=10, t=50, b=40),
    )
    return fig
