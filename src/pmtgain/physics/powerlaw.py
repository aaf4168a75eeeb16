"""
pmtgain.physics.powerlaw

Power-law gain model gain = A * V**k, fitted as a straight line in log space

    ln(gain) = c0 + c1 * ln(V),      A = exp(c0), k = c1

with uncertainties on both axes (errors-in-variables). The chi-square uses
the effective-variance form

    chi2 = sum_i (y_i - c0 - c1 x_i)**2 / (sy_i**2 + (c1 sx_i)**2)

which makes the problem nonlinear in c1. Each pass minimizes chi2 with
scipy.optimize.least_squares (Levenberg-Marquardt, analytic Jacobian)
from a starting point; the fit is repeated a fixed number of times, each
pass seeded with the previous pass's parameters.

Parameter errors are sqrt(diag(inv(J^T J))) at the minimum, i.e. the
Delta-chi2 = 1 errors; they are not rescaled by chi2/ndf. The Gauss-Newton
covariance omits the residual-weighted second-derivative term, so errors can
differ slightly from a full-Hessian minimizer such as Minuit.
"""
from __future__ import annotations
from dataclasses import dataclass, replace
from typing import NamedTuple, Sequence, Union

import numpy as np
from scipy.optimize import least_squares
from scipy.stats import chi2 as chi2_dist

from .measurements import LogChannelSample

SEED = (-30.0, 7.0)   # (constant, exponent) near the expected regime for these tubes
REFIT_PASSES = 9      # extra passes after the first one
NPAR = 2


# ----------------- public datatypes -----------------

class FitPass(NamedTuple):
    params: np.ndarray      # (2,) constant, exponent
    cov: np.ndarray         # (2, 2)
    chi_square: float
    success: bool


@dataclass(frozen=True, slots=True)
class FitResult:
    """
    Outcome of a log-log fit for one channel.

    A fit that failed numerically is still a FitResult: its parameters and
    errors are NaN and ``converged`` is False.
    """
    channel_id: int
    constant: float
    constant_error: float
    exponent: float
    exponent_error: float
    chi_square: float
    degrees_of_freedom: int
    fit_probability: float
    n_points: int = 0
    n_passes: int = 0
    converged: bool = True

    @property
    def amplitude(self) -> float:
        return float(np.exp(self.constant))

    def is_finite(self) -> bool:
        vals = (self.constant, self.constant_error, self.exponent, self.exponent_error)
        return bool(np.all(np.isfinite(vals)))

    def log_line(self, log_v):
        return self.constant + self.exponent * np.asarray(log_v, dtype=np.float64)

    def power_curve(self, v):
        return self.amplitude * np.power(np.asarray(v, dtype=np.float64), self.exponent)


@dataclass(frozen=True, slots=True)
class SkippedChannel:
    channel_id: int
    reason: str


ChannelOutcome = Union[FitResult, SkippedChannel]


# ----------------- core math -----------------

def _sigma_eff(c1: float, sx: np.ndarray, sy: np.ndarray) -> np.ndarray:
    return np.sqrt(sy * sy + (c1 * sx) ** 2)

def _residuals(p: np.ndarray, x: np.ndarray, y: np.ndarray, sx: np.ndarray, sy: np.ndarray) -> np.ndarray:
    c0, c1 = p
    return (y - c0 - c1 * x) / _sigma_eff(c1, sx, sy)

def _jacobian(p: np.ndarray, x: np.ndarray, y: np.ndarray, sx: np.ndarray, sy: np.ndarray) -> np.ndarray:
    c0, c1 = p
    s = _sigma_eff(c1, sx, sy)
    d = y - c0 - c1 * x
    J = np.empty((x.size, NPAR), dtype=np.float64)
    J[:, 0] = -1.0 / s
    J[:, 1] = -x / s - d * c1 * sx * sx / s**3
    return J

def _covariance(J: np.ndarray) -> np.ndarray:
    try:
        return np.linalg.inv(J.T @ J)
    except np.linalg.LinAlgError:
        return np.full((NPAR, NPAR), np.nan)

def fit_probability(chi_square: float, ndf: int) -> float:
    """Right-tail probability of chi_square for ndf degrees of freedom (0 when ndf <= 0)."""
    if ndf <= 0 or not np.isfinite(chi_square):
        return 0.0
    return float(chi2_dist.sf(chi_square, ndf))


# ----------------- public API -----------------

def refine(params: Sequence[float], data: LogChannelSample) -> FitPass:
    """
    One minimization pass of the effective-variance chi2 starting at ``params``.

    Pure: neither ``params`` nor ``data`` is modified. Raises ValueError when
    the residuals are not finite at the starting point (zero or non-finite
    uncertainties, non-positive gains).
    """
    x = data.log_voltages
    y = data.log_gains
    sx = data.log_voltage_errors
    sy = data.log_gain_errors
    p0 = np.array(params, dtype=np.float64)

    opt = least_squares(_residuals, p0, jac=_jacobian, method="lm", args=(x, y, sx, sy))
    chi_square = float(np.dot(opt.fun, opt.fun))
    return FitPass(
        params=np.array(opt.x, dtype=np.float64),
        cov=_covariance(np.asarray(opt.jac, dtype=np.float64)),
        chi_square=chi_square,
        success=bool(opt.success),
    )


def fit_power_law(
    data: LogChannelSample,
    seed: Sequence[float] = SEED,
    refit_passes: int = REFIT_PASSES,
    verbose: bool = False,
) -> FitResult:
    """
    Fit ln(gain) = constant + exponent * ln(V) with re-seeded passes.

    Parameters
    ----------
    data : LogChannelSample
    seed : (constant, exponent) used for the first pass
    refit_passes : number of additional passes, each seeded by the previous result
    verbose : print per-pass parameters

    Returns
    -------
    FitResult (non-finite fields and converged=False if the solver fails)
    """
    n = len(data)
    ndf = n - NPAR
    n_passes = 1 + refit_passes

    try:
        fp = refine(seed, data)
        if verbose:
            print(f"[fit] ch{data.channel_id} pass 0: c0={fp.params[0]:.6g} c1={fp.params[1]:.6g} chi2={fp.chi_square:.6g}")
        for j in range(refit_passes):
            fp = refine(fp.params, data)
            if verbose:
                print(f"[fit] ch{data.channel_id} pass {j + 1}: c0={fp.params[0]:.6g} c1={fp.params[1]:.6g} chi2={fp.chi_square:.6g}")
    except (ValueError, np.linalg.LinAlgError) as exc:
        if verbose:
            print(f"[fit] ch{data.channel_id} solver failed: {exc}")
        return FitResult(
            channel_id=data.channel_id,
            constant=np.nan,
            constant_error=np.nan,
            exponent=np.nan,
            exponent_error=np.nan,
            chi_square=np.nan,
            degrees_of_freedom=ndf,
            fit_probability=np.nan,
            n_points=n,
            n_passes=n_passes,
            converged=False,
        )

    with np.errstate(invalid="ignore"):
        errors = np.sqrt(np.diag(fp.cov))
    result = FitResult(
        channel_id=data.channel_id,
        constant=float(fp.params[0]),
        constant_error=float(errors[0]),
        exponent=float(fp.params[1]),
        exponent_error=float(errors[1]),
        chi_square=fp.chi_square,
        degrees_of_freedom=ndf,
        fit_probability=fit_probability(fp.chi_square, ndf),
        n_points=n,
        n_passes=n_passes,
        converged=fp.success,
    )
    if not result.is_finite():
        return replace(result, converged=False)
    return result
