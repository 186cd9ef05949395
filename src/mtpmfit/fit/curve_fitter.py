# src/mtpmfit/fit/curve_fitter.py
"""
Michaelis-Menten fit of group-mean MTPM migration versus follow-up time.

Two solvers are tried in order:
  1. bounded trust-region least squares (MTPMemax > 0, K > 0), self-started;
     reliable on short series (<= 6 visits), which is the common case.
  2. unconstrained Levenberg-Marquardt from K0 = max(t)/2, MTPMemax0 = max(y);
     K may go negative, which rescues some series the bounded solver cannot fit.
If both fail the result is tagged UNFIT with null coefficients. Solver errors
never leave this module; only malformed input raises (InvalidSeriesError).
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats
from scipy.optimize import OptimizeWarning, curve_fit, least_squares

from .mm_model import (
    explicit_start,
    michaelis_menten,
    michaelis_menten_jac,
    michaelis_menten_km_first,
    michaelis_menten_km_first_jac,
    self_start,
)
from .series import series_from_frame
from .types import FitMethod, FitResult, Series, StageOutcome

logger = logging.getLogger(__name__)

N_PARAMS = 2
_SOLVER_ERRORS = (RuntimeError, ValueError, FloatingPointError, np.linalg.LinAlgError)
# |K| at or below this fraction of the last follow-up is a step, not a curve
_MIN_REL_K = 1e-6


@dataclass(frozen=True)
class CurveFitConfig:
    max_nfev: int = 2000          # bounded solver evaluation budget
    fallback_maxfev: int = 2000   # Levenberg-Marquardt evaluation budget
    confidence: float = 0.95
    enable_fallback: bool = True


def _covariance(jac: np.ndarray, rss: float, n: int) -> Optional[np.ndarray]:
    """
    Scaled Gauss-Newton covariance rss/(n-p) * (J^T J)^-1.
    None when the Jacobian is rank deficient or there are no residual degrees of freedom.
    """
    dof = n - N_PARAMS
    if dof <= 0 or not np.all(np.isfinite(jac)):
        return None
    _, s, vt = np.linalg.svd(jac, full_matrices=False)
    if s.size == 0 or s[0] <= 0:
        return None
    threshold = np.finfo(float).eps * max(jac.shape) * s[0]
    if np.any(s <= threshold):
        return None
    return (vt.T / s ** 2) @ vt * (rss / dof)


def _fit_bounded(t: np.ndarray, y: np.ndarray, config: CurveFitConfig) -> StageOutcome:
    start = self_start(t, y)
    if start is None:
        return StageOutcome.failed("self-start: need >= 2 follow-ups with positive MTPM giving positive estimates")

    def residuals(p):
        return michaelis_menten(t, p[0], p[1]) - y

    def jac(p):
        return michaelis_menten_jac(t, p[0], p[1])

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", OptimizeWarning)
            warnings.simplefilter("error", RuntimeWarning)
            res = least_squares(
                residuals,
                x0=np.asarray(start, dtype=float),
                jac=jac,
                bounds=([0.0, 0.0], [np.inf, np.inf]),
                method="trf",
                max_nfev=config.max_nfev,
            )
    except _SOLVER_ERRORS + (OptimizeWarning, RuntimeWarning) as e:
        return StageOutcome.failed(f"solver error: {e}")

    if not res.success:
        return StageOutcome.failed(f"did not converge: {res.message}", nfev=int(res.nfev))

    emax, k = (float(v) for v in res.x)
    if not (np.isfinite(emax) and np.isfinite(k)):
        return StageOutcome.failed("non-finite estimates", nfev=int(res.nfev))
    if np.any(res.active_mask != 0):
        return StageOutcome.failed("estimate pinned on the positivity bound", nfev=int(res.nfev))

    fitted = michaelis_menten(t, emax, k)
    if not np.all(np.isfinite(fitted)):
        return StageOutcome.failed("non-finite predictions", nfev=int(res.nfev))

    rss = float(np.sum((y - fitted) ** 2))
    pcov = _covariance(np.asarray(res.jac, dtype=float), rss, len(t))
    if pcov is None:
        return StageOutcome.failed("singular gradient: covariance could not be estimated", nfev=int(res.nfev))

    se = np.sqrt(np.diag(pcov))
    return StageOutcome(
        success=True,
        mtpm_emax=emax,
        k=k,
        std_errors=(float(se[0]), float(se[1])),
        rss=rss,
        nfev=int(res.nfev),
    )


def _fit_unconstrained(t: np.ndarray, y: np.ndarray, config: CurveFitConfig) -> StageOutcome:
    k0, emax0 = explicit_start(t, y)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            popt, pcov = curve_fit(
                michaelis_menten_km_first,
                t,
                y,
                p0=[k0, emax0],
                jac=michaelis_menten_km_first_jac,
                method="lm",
                maxfev=config.fallback_maxfev,
            )
        except _SOLVER_ERRORS as e:
            return StageOutcome.failed(f"solver error: {e}")

    for w in caught:
        logger.debug(f"unconstrained solver warning: {w.message}")

    k, emax = (float(v) for v in popt)
    if not (np.isfinite(emax) and np.isfinite(k)):
        return StageOutcome.failed("non-finite estimates")
    if abs(k) <= _MIN_REL_K * float(np.max(t)):
        return StageOutcome.failed("no curvature: K collapsed to 0")

    fitted = michaelis_menten(t, emax, k)
    if not np.all(np.isfinite(fitted)):
        return StageOutcome.failed("non-finite predictions (K on the pole)")

    J = michaelis_menten_jac(t, emax, k)
    dead = [name for name, col in zip(("MTPMemax", "K"), J.T) if np.all(np.abs(col) <= 1e-12)]
    if dead:
        return StageOutcome.failed(f"singular gradient: curve does not depend on {', '.join(dead)}")

    # covariance may be unavailable (e.g. two data points); estimates still stand
    pcov = np.asarray(pcov, dtype=float)
    if pcov.shape == (N_PARAMS, N_PARAMS) and np.all(np.isfinite(pcov)):
        se_k, se_emax = np.sqrt(np.abs(np.diag(pcov)))
        std_errors = (float(se_emax), float(se_k))
    else:
        std_errors = None

    return StageOutcome(
        success=True,
        mtpm_emax=emax,
        k=k,
        std_errors=std_errors,
        rss=float(np.sum((y - fitted) ** 2)),
    )


def _wald_interval(estimate: float, se: Optional[float], dof: int, confidence: float) -> Optional[Tuple[float, float]]:
    if se is None or not np.isfinite(se) or dof <= 0:
        return None
    q = float(stats.t.ppf(0.5 + confidence / 2.0, dof))
    return (estimate - q * se, estimate + q * se)


def _result_from_outcome(
    outcome: StageOutcome,
    method: FitMethod,
    series: Series,
    messages: list[str],
    config: CurveFitConfig,
) -> FitResult:
    n = len(series)
    dof = n - N_PARAMS
    se_emax, se_k = outcome.std_errors if outcome.std_errors is not None else (None, None)
    residual_se = float(np.sqrt(outcome.rss / dof)) if (outcome.rss is not None and dof > 0) else None
    return FitResult(
        method=method,
        n_datapoints=n,
        n_followups=n - 1,
        mtpm_emax=outcome.mtpm_emax,
        k=outcome.k,
        group=series.group,
        std_error_emax=se_emax,
        std_error_k=se_k,
        ci_emax=_wald_interval(outcome.mtpm_emax, se_emax, dof, config.confidence),
        ci_k=_wald_interval(outcome.k, se_k, dof, config.confidence),
        rss=outcome.rss,
        residual_se=residual_se,
        messages=tuple(messages),
    )


def fit_series(series: Series, config: Optional[CurveFitConfig] = None) -> FitResult:
    """
    Fit MTPM(t) = MTPMemax * t / (K + t) to one validated series.

    Always returns a FitResult; n_datapoints / n_followups are filled in
    even when the method is UNFIT.
    """
    cfg = config or CurveFitConfig()
    t = series.t
    y = series.y
    label = "series" if series.group is None else f"group {series.group!r}"
    messages: list[str] = []

    outcome = _fit_bounded(t, y, cfg)
    if outcome.success:
        logger.debug(f"{label}: bounded solver converged (nfev={outcome.nfev})")
        return _result_from_outcome(outcome, FitMethod.PRIMARY, series, messages, cfg)

    messages.append(f"primary: {outcome.reason}")
    if cfg.enable_fallback:
        logger.info(f"{label}: bounded solver failed ({outcome.reason}); trying unconstrained solver")
        outcome = _fit_unconstrained(t, y, cfg)
        if outcome.success:
            return _result_from_outcome(outcome, FitMethod.FALLBACK, series, messages, cfg)
        messages.append(f"fallback: {outcome.reason}")

    logger.warning(f"{label}: curve could not be fit ({'; '.join(messages)})")
    n = len(series)
    return FitResult(
        method=FitMethod.UNFIT,
        n_datapoints=n,
        n_followups=n - 1,
        group=series.group,
        messages=tuple(messages),
    )


def fit_table(
    df: pd.DataFrame,
    time_col: str = "FU_month",
    value_col: str = "MTPM",
    config: Optional[CurveFitConfig] = None,
) -> FitResult:
    """Single-group entry point: one table of (time, MTPM) rows -> one FitResult."""
    return fit_series(series_from_frame(df, time_col=time_col, value_col=value_col), config=config)
