# src/mtpmfit/fit/mm_model.py
from __future__ import annotations
from typing import Optional, Tuple

import numpy as np

from .types import FitResult


# --------- Model functions ---------
def michaelis_menten(t, mtpm_emax, k):
    # MTPM(t) = MTPMemax * t / (K + t); pole at t = -K
    t = np.asarray(t, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        return mtpm_emax * t / (k + t)


def michaelis_menten_jac(t, mtpm_emax, k) -> np.ndarray:
    """
    Analytic Jacobian of the model w.r.t. (MTPMemax, K), shape (n, 2).
    """
    t = np.asarray(t, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        d_emax = t / (k + t)
        d_k = -mtpm_emax * t / (k + t) ** 2
    return np.column_stack([d_emax, d_k])


# Levenberg-Marquardt stage works in (K, MTPMemax) order
def michaelis_menten_km_first(t, k, mtpm_emax):
    return michaelis_menten(t, mtpm_emax, k)


def michaelis_menten_km_first_jac(t, k, mtpm_emax) -> np.ndarray:
    return np.ascontiguousarray(michaelis_menten_jac(t, mtpm_emax, k)[:, ::-1])


# --------- Starting values ---------
def self_start(t: np.ndarray, y: np.ndarray) -> Optional[Tuple[float, float]]:
    """
    Lineweaver-Burk starting values: regress 1/y on 1/t over the follow-ups
    with t > 0 and y > 0. Intercept = 1/MTPMemax, slope = K/MTPMemax.

    Returns (MTPMemax0, K0) or None when the linearisation cannot produce
    positive estimates (fewer than two usable distinct follow-ups, or a
    non-positive intercept/slope).
    """
    t = np.asarray(t, dtype=float)
    y = np.asarray(y, dtype=float)
    mask = (t > 0) & (y > 0) & np.isfinite(t) & np.isfinite(y)
    if len(np.unique(t[mask])) < 2:
        return None

    slope, intercept = np.polyfit(1.0 / t[mask], 1.0 / y[mask], 1)
    if not (np.isfinite(slope) and np.isfinite(intercept)):
        return None
    if intercept <= 0 or slope <= 0:
        return None

    emax0 = 1.0 / intercept
    return float(emax0), float(slope * emax0)


def explicit_start(t: np.ndarray, y: np.ndarray) -> Tuple[float, float]:
    """(K0, MTPMemax0) = (max(t) / 2, max(y))."""
    return float(np.max(t) / 2.0), float(np.max(y))


# --------- Prediction ---------
def sample_curve(result: FitResult, t_max: float, n_points: int = 100) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sampled prediction over [0, t_max] for plotting.
    A fallback fit with negative K can put the pole inside the range; those
    samples come back non-finite.
    """
    if not result.converged:
        raise ValueError("Cannot sample a curve for an unfit result")
    if n_points < 2:
        raise ValueError("n_points must be >= 2")
    if not np.isfinite(t_max) or t_max < 0:
        raise ValueError(f"t_max must be a finite non-negative time, got {t_max}")

    t_grid = np.linspace(0.0, float(t_max), int(n_points))
    return t_grid, michaelis_menten(t_grid, result.mtpm_emax, result.k)
