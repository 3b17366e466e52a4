"""Effective dose (ED) estimation with delta-method standard errors.

With the lower asymptote fixed at 0, ``ED_p`` is the dose at which the
fitted curve reaches ``p`` percent of its upper asymptote ``d``.  LL.3 has a
closed-form inverse; AR.2 is inverted numerically with Brent's method on the
log-dose scale.  The standard error propagates the parameter covariance
through the inverse function with a numerical gradient.

Validates against: R drc::ED(), EPA BMDS
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import brentq
from scipy.stats import t as t_dist

from pydrmselect.doseresponse._common import FitResult, _central_gradient
from pydrmselect.doseresponse._errors import NumericalError
from pydrmselect.doseresponse._models import CurveModel

ED_LEVEL = 10.0

# Bracket for numerical inversion, in dose units
_DOSE_BRACKET = (1e-20, 1e20)


@dataclass(frozen=True)
class EDResult:
    """Effective dose with delta-method standard error and Wald interval."""

    estimate: float
    se: float
    ci_lower: float
    ci_upper: float
    level: float  # percent of the upper asymptote
    conf_level: float
    method: str  # 'analytic' or 'brentq'

    def summary(self) -> str:
        pct = int(round(self.conf_level * 100))
        return (
            f"ED{self.level:g} = {self.estimate:.6g} (SE = {self.se:.6g}, "
            f"{pct}% CI: {self.ci_lower:.6g} - {self.ci_upper:.6g}, {self.method})"
        )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _ed_ll3_analytical(params: dict[str, float], level: float) -> float:
    """Analytical ED for LL.3: dose = e * ((100 - p) / p)^(1/b)."""
    b, e = params["b"], params["e"]
    if b == 0 or e <= 0:
        return float("nan")
    with np.errstate(over="ignore"):
        return float(e * np.power((100.0 - level) / level, 1.0 / b))


def _ed_numerical(model: CurveModel, params: dict[str, float], level: float) -> float:
    """Numerical ED via root-finding in log-dose space."""
    if params["d"] == 0:
        return float("nan")
    target = level / 100.0 * params["d"]

    def f(log_dose: float) -> float:
        dose_arr = np.array([np.exp(log_dose)])
        return float(model.predict(dose_arr, params)[0]) - target

    try:
        log_ed = brentq(f, np.log(_DOSE_BRACKET[0]), np.log(_DOSE_BRACKET[1]), xtol=1e-12)
    except ValueError:
        return float("nan")
    return float(np.exp(log_ed))


def _ed_from_params_array(
    params_arr: NDArray,
    model: CurveModel,
    level: float,
) -> float:
    """Compute ED for a given parameter array (used for numerical gradient)."""
    params = dict(zip(model.param_names, params_arr))
    if model is CurveModel.LL3:
        return _ed_ll3_analytical(params, level)
    if model is CurveModel.AR2:
        return _ed_numerical(model, params, level)
    raise AssertionError(f"unhandled model {model!r}")


def _check_covariance(cov: NDArray) -> None:
    """Raise NumericalError unless *cov* is finite and positive semi-definite."""
    if not np.all(np.isfinite(cov)):
        raise NumericalError("parameter covariance is not available")
    eigvals = np.linalg.eigvalsh((cov + cov.T) / 2.0)
    tol = 1e-10 * max(float(np.max(np.abs(eigvals))), 1.0)
    if eigvals.min() < -tol:
        raise NumericalError("parameter covariance is not positive semi-definite")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def effective_dose(
    fit_result: FitResult,
    *,
    level: float = ED_LEVEL,
    conf_level: float = 0.95,
) -> EDResult:
    """Estimate ``ED_level`` with a delta-method standard error.

    Parameters
    ----------
    fit_result : FitResult
        A fitted curve.
    level : float
        Percent of the upper asymptote ``d`` (default 10, i.e. ED10).
    conf_level : float
        Confidence level of the Wald interval (default 0.95).

    Returns
    -------
    EDResult

    Raises
    ------
    NumericalError
        If the inverse has no root in ``(0, inf)``, or the parameter
        covariance is unavailable, singular or not positive semi-definite.

    Notes
    -----
    ``SE^2 = grad(g)' Cov(theta) grad(g)`` where ``g`` maps the parameter
    vector to ``ED_level``.  The interval uses the t distribution with the
    fit's residual degrees of freedom and is truncated at 0.

    Validates against: R drc::ED(type='relative')
    """
    if not (0.0 < level < 100.0):
        raise ValueError(f"level must be in (0, 100), got {level}")
    if not (0.0 < conf_level < 1.0):
        raise ValueError(f"conf_level must be in (0, 1), got {conf_level}")

    model = fit_result.model
    params_arr = fit_result.param_array()

    # Point estimate
    estimate = _ed_from_params_array(params_arr, model, level)
    if not np.isfinite(estimate) or estimate <= 0:
        raise NumericalError(
            f"ED{level:g} for {model.value} lies outside the dose range (got {estimate})"
        )

    # Delta method
    cov = fit_result.covariance()
    _check_covariance(cov)

    grad = _central_gradient(
        lambda p: _ed_from_params_array(p, model, level), params_arr,
    )
    if not np.all(np.isfinite(grad)):
        raise NumericalError(f"ED{level:g} gradient is not finite for {model.value}")

    var_ed = float(grad @ cov @ grad)
    if not np.isfinite(var_ed) or var_ed < 0:
        raise NumericalError(f"negative or non-finite ED{level:g} variance")
    se = float(np.sqrt(var_ed))

    q = t_dist.ppf(1.0 - (1.0 - conf_level) / 2.0, fit_result.df_residual)
    ci_lower = max(estimate - q * se, 0.0)
    ci_upper = estimate + q * se

    return EDResult(
        estimate=estimate,
        se=se,
        ci_lower=float(ci_lower),
        ci_upper=float(ci_upper),
        level=level,
        conf_level=conf_level,
        method="analytic" if model is CurveModel.LL3 else "brentq",
    )
