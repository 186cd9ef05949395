# src/mtpmfit/fit/types.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, Optional, Tuple

import numpy as np


class FitMethod(str, Enum):
    PRIMARY = "primary"      # bounded trust-region solver, self-started
    FALLBACK = "fallback"    # unconstrained Levenberg-Marquardt
    UNFIT = "unfit"
    INVALID = "invalid"      # malformed group in a batch, never attempted


class InvalidSeriesError(ValueError):
    """Raised when a series is malformed (not when it is merely hard to fit)."""

    def __init__(self, message: str, group: Optional[Hashable] = None):
        self.group = group
        self.reason = message
        if group is not None:
            message = f"group {group!r}: {message}"
        super().__init__(message)


@dataclass(frozen=True)
class Observation:
    time: float
    measurement: float


@dataclass(frozen=True)
class Series:
    observations: Tuple[Observation, ...]
    group: Optional[Hashable] = None

    @property
    def t(self) -> np.ndarray:
        return np.array([o.time for o in self.observations], dtype=float)

    @property
    def y(self) -> np.ndarray:
        return np.array([o.measurement for o in self.observations], dtype=float)

    def __len__(self) -> int:
        return len(self.observations)


@dataclass(frozen=True)
class StageOutcome:
    success: bool
    reason: str = "ok"
    mtpm_emax: Optional[float] = None
    k: Optional[float] = None
    std_errors: Optional[Tuple[float, float]] = None  # (MTPMemax, K)
    rss: Optional[float] = None
    nfev: Optional[int] = None

    @classmethod
    def failed(cls, reason: str, nfev: Optional[int] = None) -> "StageOutcome":
        return cls(success=False, reason=reason, nfev=nfev)


@dataclass(frozen=True)
class FitResult:
    method: FitMethod
    n_datapoints: int
    n_followups: int
    mtpm_emax: Optional[float] = None
    k: Optional[float] = None
    group: Optional[Hashable] = None

    # precision of the estimates
    std_error_emax: Optional[float] = None
    std_error_k: Optional[float] = None
    ci_emax: Optional[Tuple[float, float]] = None
    ci_k: Optional[Tuple[float, float]] = None
    rss: Optional[float] = None
    residual_se: Optional[float] = None

    # why earlier stages were rejected
    messages: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def converged(self) -> bool:
        return self.method in (FitMethod.PRIMARY, FitMethod.FALLBACK)

    def to_record(self) -> Dict[str, Any]:
        ci_emax = self.ci_emax or (np.nan, np.nan)
        ci_k = self.ci_k or (np.nan, np.nan)
        return {
            "MTPMemax": np.nan if self.mtpm_emax is None else self.mtpm_emax,
            "K": np.nan if self.k is None else self.k,
            "method": self.method.value,
            "n_datapoints": self.n_datapoints,
            "n_followups": self.n_followups,
            "se.MTPMemax": np.nan if self.std_error_emax is None else self.std_error_emax,
            "se.K": np.nan if self.std_error_k is None else self.std_error_k,
            "ci95.MTPMemax.lo": ci_emax[0],
            "ci95.MTPMemax.up": ci_emax[1],
            "ci95.K.lo": ci_k[0],
            "ci95.K.up": ci_k[1],
            "rss": np.nan if self.rss is None else self.rss,
            "message": "; ".join(self.messages),
        }
