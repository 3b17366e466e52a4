"""Dose-response model functions.

Each function computes the mean response at given dose levels for a
specific parametric model.  Both families have their lower asymptote fixed
at 0, so the fitted upper limit ``d`` is also the fitted response range.

The log-logistic slope follows the R ``drc`` convention: ``b > 0`` means the
response **decreases** with dose, ``b < 0`` means it **increases**.

Prediction at dose = 0 is handled via IEEE 754 arithmetic (``log(0) = -inf``)
so curves can be drawn down to the origin; *fitting* a log-dose model to a
zero dose is refused (see :func:`pydrmselect.doseresponse.fit_curve`).

Validates against: R drc::LL.3(), drc::AR.2()
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Mapping

import numpy as np
from numpy.typing import NDArray


# ---------------------------------------------------------------------------
# Safe log-dose utility
# ---------------------------------------------------------------------------

def _safe_log_dose(dose: NDArray[np.floating]) -> NDArray[np.floating]:
    """Compute log(dose) with dose=0 mapped to -inf (IEEE 754 compliant)."""
    with np.errstate(divide="ignore"):
        return np.where(dose > 0, np.log(np.where(dose > 0, dose, 1.0)), -np.inf)


# ---------------------------------------------------------------------------
# Model functions
# ---------------------------------------------------------------------------

def ll3(
    dose: NDArray[np.floating],
    b: float,
    d: float,
    e: float,
) -> NDArray[np.floating]:
    """3-parameter log-logistic (LL.3) model, lower limit fixed at 0.

    .. math::
        f(x) = \\frac{d}{1 + \\exp\\bigl(b \\cdot (\\ln x - \\ln e)\\bigr)}

    Parameters
    ----------
    dose : array
        Dose values.  May contain zeros (prediction only).
    b : float
        Slope.  Positive for decreasing, negative for increasing curves.
    d : float
        Upper asymptote.
    e : float
        Inflection point (ED50), must be positive.

    Returns
    -------
    NDArray
        Predicted response values.

    Validates against: R drc::LL.3()
    """
    dose = np.asarray(dose, dtype=np.float64)
    log_dose = _safe_log_dose(dose)
    with np.errstate(over="ignore", invalid="ignore"):
        exponent = b * (log_dose - np.log(e))
        return d / (1.0 + np.exp(exponent))


def ar2(
    dose: NDArray[np.floating],
    d: float,
    e: float,
) -> NDArray[np.floating]:
    """2-parameter asymptotic regression (AR.2) model, lower limit fixed at 0.

    .. math::
        f(x) = d \\cdot \\bigl(1 - \\exp(-x / e)\\bigr)

    Parameters
    ----------
    dose : array
        Dose values.
    d : float
        Upper asymptote.
    e : float
        Rate constant (dose at which ``1 - 1/e`` of ``d`` is reached).

    Returns
    -------
    NDArray

    Validates against: R drc::AR.2()
    """
    dose = np.asarray(dose, dtype=np.float64)
    with np.errstate(over="ignore"):
        return d * (1.0 - np.exp(-dose / e))


# ---------------------------------------------------------------------------
# Model registry: closed set of curve families
# ---------------------------------------------------------------------------

class CurveModel(Enum):
    """Candidate curve families, in default selection order."""

    LL3 = "LL.3"
    AR2 = "AR.2"

    @classmethod
    def from_name(cls, name: str | CurveModel) -> CurveModel:
        """Look up a model by its ``drc`` name (``'LL.3'``, ``'AR.2'``)."""
        if isinstance(name, cls):
            return name
        try:
            return cls(name)
        except ValueError:
            raise ValueError(
                f"model must be one of {VALID_MODELS}, got {name!r}"
            ) from None

    @property
    def func(self) -> Callable[..., NDArray[np.floating]]:
        return _MODEL_FUNCS[self]

    @property
    def param_names(self) -> tuple[str, ...]:
        return _PARAM_NAMES[self]

    @property
    def n_params(self) -> int:
        return len(_PARAM_NAMES[self])

    @property
    def log_dose(self) -> bool:
        """Whether the family works on log(dose) and so needs dose > 0."""
        return self is CurveModel.LL3

    def predict(
        self,
        dose: NDArray[np.floating],
        params: Mapping[str, float] | NDArray[np.floating],
    ) -> NDArray[np.floating]:
        """Evaluate the model at *dose* for a parameter dict or vector."""
        if not isinstance(params, Mapping):
            params = dict(zip(self.param_names, params))
        return self.func(dose, **{k: params[k] for k in self.param_names})


_MODEL_FUNCS: dict[CurveModel, Callable[..., NDArray[np.floating]]] = {
    CurveModel.LL3: ll3,
    CurveModel.AR2: ar2,
}

_PARAM_NAMES: dict[CurveModel, tuple[str, ...]] = {
    CurveModel.LL3: ("b", "d", "e"),
    CurveModel.AR2: ("d", "e"),
}

VALID_MODELS = tuple(m.value for m in CurveModel)

DEFAULT_MODELS: tuple[CurveModel, ...] = (CurveModel.LL3, CurveModel.AR2)
