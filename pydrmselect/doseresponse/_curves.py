"""Dense prediction curves with pointwise confidence bands for plotting.

The band is ``y_hat ± t * sqrt(grad(f)' Cov grad(f))`` evaluated on a dose
grid, a pure function of the fitted curve and the grid.

Validates against: R predict.drc(interval='confidence')
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.stats import t as t_dist

from pydrmselect.doseresponse._common import FitResult, _central_gradient
from pydrmselect.doseresponse._errors import NumericalError

GRID_START = 0.001
GRID_STOP = 80.0
GRID_NUM = 100


@dataclass(frozen=True)
class PredictionCurve:
    """Predicted response and confidence band over a dose grid."""

    target: Hashable | None
    model: str
    dose: NDArray[np.floating]
    predicted: NDArray[np.floating]
    lower: NDArray[np.floating]
    upper: NDArray[np.floating]
    conf_level: float

    def to_frame(self) -> pd.DataFrame:
        """Long-format table for plotting collaborators."""
        return pd.DataFrame({
            "TARGET": self.target,
            "MODEL": self.model,
            "DOSE": self.dose,
            "PREDICTED": self.predicted,
            "LOWER": self.lower,
            "UPPER": self.upper,
        })


def dose_grid(
    start: float = GRID_START,
    stop: float = GRID_STOP,
    num: int = GRID_NUM,
) -> NDArray[np.floating]:
    """Evenly spaced dose grid (default: 100 points from 0.001 to 80)."""
    if start < 0:
        raise ValueError(f"start must be non-negative, got {start}")
    if stop <= start:
        raise ValueError(f"stop must exceed start, got start={start}, stop={stop}")
    if num < 2:
        raise ValueError(f"num must be at least 2, got {num}")
    return np.linspace(start, stop, num)


def prediction_band(
    fit_result: FitResult,
    dose: NDArray[np.floating] | None = None,
    *,
    conf_level: float = 0.95,
) -> PredictionCurve:
    """Predicted curve with a pointwise confidence band.

    Parameters
    ----------
    fit_result : FitResult
        A fitted curve.
    dose : array or None
        Dose grid.  ``None`` uses :func:`dose_grid` defaults.
    conf_level : float
        Confidence level of the band (default 0.95).

    Returns
    -------
    PredictionCurve
        ``lower``/``upper`` are NaN when the parameter covariance is not
        available (no residual degrees of freedom or singular ``J'J``).
    """
    if not (0.0 < conf_level < 1.0):
        raise ValueError(f"conf_level must be in (0, 1), got {conf_level}")
    dose = dose_grid() if dose is None else np.asarray(dose, dtype=np.float64)

    model = fit_result.model
    params_arr = fit_result.param_array()
    predicted = model.predict(dose, params_arr)

    try:
        cov = fit_result.covariance()
    except NumericalError:
        cov = np.full((model.n_params, model.n_params), np.nan)

    # grad has shape (n_params, n_dose)
    grad = _central_gradient(lambda p: model.predict(dose, p), params_arr)
    var = np.einsum("ik,ij,jk->k", grad, cov, grad)
    se = np.sqrt(np.maximum(var, 0.0))

    if fit_result.df_residual > 0:
        q = t_dist.ppf(1.0 - (1.0 - conf_level) / 2.0, fit_result.df_residual)
    else:
        q = np.nan

    return PredictionCurve(
        target=fit_result.target,
        model=model.value,
        dose=dose,
        predicted=predicted,
        lower=predicted - q * se,
        upper=predicted + q * se,
        conf_level=conf_level,
    )
