"""Goodness-of-fit statistics for fitted dose-response curves.

The lack-of-fit test compares the fitted curve with the saturated one-way
ANOVA model (one mean per distinct dose level).  AIC uses the Gaussian
log-likelihood up to an additive constant, counting the residual variance
as an estimated parameter.

Validates against: R drc::modelFit(), stats::AIC()
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.stats import f as f_dist

from pydrmselect.doseresponse._common import FitResult, ModelScore
from pydrmselect.doseresponse._errors import UndefinedStatisticError


@dataclass(frozen=True)
class LackOfFitResult:
    """F-test of a fitted curve against the saturated dose-group model."""

    f_statistic: float
    df_num: int
    df_den: int
    rss_model: float
    rss_saturated: float
    p_value: float


def _saturated_rss(dose, response) -> tuple[float, int]:
    """RSS of the one-mean-per-dose model and its number of groups."""
    levels, inverse = np.unique(dose, return_inverse=True)
    means = np.bincount(inverse, weights=response) / np.bincount(inverse)
    return float(np.sum((response - means[inverse]) ** 2)), len(levels)


def lack_of_fit_test(fit: FitResult) -> LackOfFitResult:
    """Lack-of-fit F-test of *fit* against the saturated model.

    .. math::
        F = \\frac{(RSS - RSS_{sat}) / (k - p)}{RSS_{sat} / (n - k)}

    with ``k`` distinct dose levels, ``p`` curve parameters and ``n``
    observations.

    Raises
    ------
    UndefinedStatisticError
        If ``k <= p`` (nothing to test) or ``n == k`` (no replication).
    """
    n, p = fit.n_obs, fit.n_params
    rss_sat, k = _saturated_rss(fit.dose, fit.response)

    df_num = k - p
    df_den = n - k
    if df_num <= 0:
        raise UndefinedStatisticError(
            f"lack-of-fit test needs more than {p} dose levels for {fit.model.value}, got {k}"
        )
    if df_den <= 0:
        raise UndefinedStatisticError(
            "lack-of-fit test needs replicated dose levels"
        )

    # Curve RSS can dip below the saturated RSS only by rounding
    lack = max(fit.rss - rss_sat, 0.0)
    tol = 1e-12 * float(np.sum((fit.response - np.mean(fit.response)) ** 2))
    if rss_sat <= tol:
        # Replicates agree exactly: any systematic misfit is decisive
        f_stat = 0.0 if lack <= tol else float("inf")
        p_value = 1.0 if lack <= tol else 0.0
    else:
        f_stat = (lack / df_num) / (rss_sat / df_den)
        p_value = float(f_dist.sf(f_stat, df_num, df_den))

    return LackOfFitResult(
        f_statistic=float(f_stat),
        df_num=df_num,
        df_den=df_den,
        rss_model=fit.rss,
        rss_saturated=rss_sat,
        p_value=p_value,
    )


def aic(fit: FitResult) -> float:
    """Akaike Information Criterion ``n*ln(RSS/n) + 2*(p + 1)``."""
    n = fit.n_obs
    with np.errstate(divide="ignore"):
        return float(n * np.log(fit.rss / n) + 2 * (fit.n_params + 1))


def residual_se(fit: FitResult) -> float:
    """Residual standard error ``sqrt(RSS / (n - p))``.

    Raises
    ------
    UndefinedStatisticError
        If ``n <= p`` (no residual degrees of freedom).
    """
    if fit.df_residual <= 0:
        raise UndefinedStatisticError(
            f"residual standard error undefined: {fit.n_obs} observations "
            f"for {fit.n_params} parameters"
        )
    return float(np.sqrt(fit.rss / fit.df_residual))


def score_fit(fit: FitResult) -> ModelScore:
    """Compute the full :class:`ModelScore` of a fitted candidate.

    Raises
    ------
    UndefinedStatisticError
        If the residual SE or lack-of-fit p-value is undefined.
    """
    rse = residual_se(fit)
    lof = lack_of_fit_test(fit)
    return ModelScore(
        model=fit.model,
        lack_of_fit_p=lof.p_value,
        aic=aic(fit),
        residual_se=rse,
        df_residual=fit.df_residual,
        target=fit.target,
    )
