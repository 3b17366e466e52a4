"""Shared result types for dose-response modeling and model selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Hashable

import numpy as np
from numpy.typing import NDArray

from pydrmselect.doseresponse._errors import NumericalError
from pydrmselect.doseresponse._models import CurveModel


# ---------------------------------------------------------------------------
# Numerical helpers
# ---------------------------------------------------------------------------

def _central_gradient(
    func: Callable[[NDArray], float | NDArray],
    x: NDArray[np.floating],
    eps: float = 1e-6,
) -> NDArray[np.floating]:
    """Gradient of *func* at *x* by central differences.

    The step is relative to ``|x_i|`` so that parameters on very different
    scales (slope vs. ED50) get comparable accuracy.  If *func* returns an
    array of length m, the result has shape ``(len(x), m)``.
    """
    x = np.asarray(x, dtype=np.float64)
    rows = []
    for i in range(len(x)):
        h = eps * max(abs(x[i]), 1.0)
        x_plus = x.copy()
        x_plus[i] += h
        x_minus = x.copy()
        x_minus[i] -= h
        rows.append((np.asarray(func(x_plus)) - np.asarray(func(x_minus))) / (2.0 * h))
    return np.array(rows, dtype=np.float64)


# ---------------------------------------------------------------------------
# Fit result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FitResult:
    """Result of fitting one curve model to one target's observations."""

    model: CurveModel
    params: dict[str, float]
    residuals: NDArray[np.floating]  # observed - predicted
    rss: float
    n_obs: int
    converged: bool
    n_iter: int
    dose: NDArray[np.floating]
    response: NDArray[np.floating]
    jac: NDArray[np.floating]  # Jacobian of residuals at solution (n_obs, n_params)
    target: Hashable | None = None

    @property
    def n_params(self) -> int:
        return self.model.n_params

    @property
    def df_residual(self) -> int:
        return self.n_obs - self.n_params

    def param_array(self) -> NDArray[np.floating]:
        """Parameter vector in model order (for Jacobian indexing)."""
        return np.array([self.params[n] for n in self.model.param_names], dtype=np.float64)

    def predict(self, dose: NDArray[np.floating] | None = None) -> NDArray[np.floating]:
        """Predict response.  If *dose* is ``None``, use the fitted dose."""
        if dose is None:
            dose = self.dose
        return self.model.predict(dose, self.params)

    def covariance(self) -> NDArray[np.floating]:
        """Parameter covariance ``(J'J)^{-1} * s²``.

        NaN-filled when there are no residual degrees of freedom.

        Raises
        ------
        NumericalError
            If ``J'J`` is singular.
        """
        p = self.n_params
        if self.df_residual <= 0:
            return np.full((p, p), np.nan)

        s2 = self.rss / self.df_residual
        try:
            return np.linalg.inv(self.jac.T @ self.jac) * s2
        except np.linalg.LinAlgError as exc:
            raise NumericalError(
                f"singular information matrix for {self.model.value} fit"
            ) from exc

    def se(self) -> NDArray[np.floating]:
        """Standard errors of the parameters (NaN where undefined)."""
        try:
            cov = self.covariance()
        except NumericalError:
            return np.full(self.n_params, np.nan)
        return np.sqrt(np.maximum(np.diag(cov), 0.0))

    def summary(self) -> str:
        """Human-readable summary, similar to R drc::summary()."""
        lines = [f"Dose-response model: {self.model.value}"]
        if self.target is not None:
            lines.append(f"Target: {self.target}")
        lines += ["", "Parameter estimates:"]

        se = self.se()
        for i, name in enumerate(self.model.param_names):
            val = self.params[name]
            se_val = se[i]
            t_val = val / se_val if se_val > 0 and not np.isnan(se_val) else float("nan")
            lines.append(f"  {name:>4s} = {val:>12.6f}  (SE = {se_val:.6f}, t = {t_val:.3f})")

        lines.append("")
        lines.append(f"  RSS = {self.rss:.6f}")
        lines.append(f"  df  = {self.df_residual}")
        lines.append(f"  n   = {self.n_obs}")
        lines.append(f"  Converged: {self.converged}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Scores and selection records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelScore:
    """Goodness-of-fit statistics of one fitted candidate."""

    model: CurveModel
    lack_of_fit_p: float
    aic: float
    residual_se: float
    df_residual: int
    target: Hashable | None = None


@dataclass(frozen=True)
class SelectionRecord:
    """The winning model for one target.

    ``ed`` / ``ed_se`` are NaN when the effective dose could not be
    estimated; ``ed_error`` then holds the reason.

    Records hash by value; the ``params`` mapping is hashed as its items.
    """

    target: Hashable
    model: CurveModel
    lack_of_fit_p: float
    aic: float
    residual_se: float
    ed: float
    ed_se: float
    ed_level: float
    params: dict[str, float] = field(default_factory=dict)
    ed_error: str | None = None

    def __hash__(self) -> int:
        return hash((
            self.target, self.model, self.lack_of_fit_p, self.aic,
            self.residual_se, self.ed, self.ed_se, self.ed_level,
            tuple(sorted(self.params.items())), self.ed_error,
        ))

    @property
    def has_ed(self) -> bool:
        return bool(np.isfinite(self.ed))
