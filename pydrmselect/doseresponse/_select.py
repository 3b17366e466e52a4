"""Per-target model selection and multi-target aggregation.

For each target every candidate curve is fitted and scored; candidates
whose lack-of-fit p-value does not exceed ``alpha`` are discarded and the
survivor with the smallest AIC is selected.  Ties on AIC go to the model
listed first in ``models``.  The winner's effective dose is then estimated.

:func:`select_model` is a pure function of one target's data.
:func:`select_models` maps it over the targets of an input table and
collects the results afterwards, so no state is shared between targets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Hashable, Iterable, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from pydrmselect.doseresponse._common import FitResult, ModelScore, SelectionRecord
from pydrmselect.doseresponse._curves import PredictionCurve, prediction_band
from pydrmselect.doseresponse._data import TargetData, partition
from pydrmselect.doseresponse._errors import (
    ConvergenceError,
    DomainError,
    NoAdequateModelError,
    NumericalError,
    UndefinedStatisticError,
)
from pydrmselect.doseresponse._evaluate import score_fit
from pydrmselect.doseresponse._fit import MAX_NFEV, fit_curve
from pydrmselect.doseresponse._models import DEFAULT_MODELS, CurveModel
from pydrmselect.doseresponse._potency import ED_LEVEL, effective_dose

logger = logging.getLogger(__name__)

ADEQUACY_ALPHA = 0.01

SELECTED = "selected"
REJECTED = "rejected"

# Candidate statuses
OK = "ok"
FIT_FAILED = "fit_failed"
UNDEFINED = "undefined"
INADEQUATE = "inadequate"


@dataclass(frozen=True)
class CandidateOutcome:
    """What happened to one candidate model for one target."""

    model: CurveModel
    status: str  # 'ok', 'fit_failed', 'undefined', 'inadequate'
    score: ModelScore | None = None
    message: str = ""


@dataclass(frozen=True)
class TargetSelection:
    """Terminal state of model selection for one target."""

    target: Hashable
    outcome: str  # 'selected' or 'rejected'
    candidates: tuple[CandidateOutcome, ...]
    record: SelectionRecord | None = None
    fit: FitResult | None = None
    response_unit: str = ""

    @property
    def selected(self) -> bool:
        return self.outcome == SELECTED


# ---------------------------------------------------------------------------
# Argument handling
# ---------------------------------------------------------------------------

def _resolve_models(models: Iterable[CurveModel | str]) -> tuple[CurveModel, ...]:
    resolved = tuple(CurveModel.from_name(m) for m in models)
    if not resolved:
        raise ValueError("models must name at least one curve model")
    if len(set(resolved)) != len(resolved):
        raise ValueError(f"models must be unique, got {[m.value for m in resolved]}")
    return resolved


def _check_select_args(
    alpha: float,
    zero_dose_offset: float | None,
    ed_level: float,
    conf_level: float,
) -> None:
    if not (0.0 < alpha < 1.0):
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")
    if zero_dose_offset is not None and not zero_dose_offset > 0:
        raise ValueError(f"zero_dose_offset must be positive, got {zero_dose_offset}")
    if not (0.0 < ed_level < 100.0):
        raise ValueError(f"ed_level must be in (0, 100), got {ed_level}")
    if not (0.0 < conf_level < 1.0):
        raise ValueError(f"conf_level must be in (0, 1), got {conf_level}")


# ---------------------------------------------------------------------------
# Per-target selection
# ---------------------------------------------------------------------------

def select_model(
    dose: NDArray[np.floating],
    response: NDArray[np.floating],
    *,
    target: Hashable = None,
    models: Sequence[CurveModel | str] = DEFAULT_MODELS,
    alpha: float = ADEQUACY_ALPHA,
    ed_level: float = ED_LEVEL,
    conf_level: float = 0.95,
    max_nfev: int = MAX_NFEV,
    zero_dose_offset: float | None = None,
    response_unit: str = "",
) -> TargetSelection:
    """Fit, score, filter and rank candidate models for one target.

    Parameters
    ----------
    dose, response : array
        The target's observations.
    target : hashable
        Target identifier, carried into the results.
    models : sequence
        Candidate curve models, in tie-breaking order.
    alpha : float
        Adequacy threshold: a candidate is kept only if its lack-of-fit
        p-value is strictly greater than ``alpha`` (default 0.01).
    ed_level : float
        Percent effect for the effective dose (default 10).
    conf_level : float
        Confidence level for the effective dose interval.
    max_nfev : int
        Solver budget per fit.
    zero_dose_offset : float or None
        If given, zero doses are replaced by this value for log-dose
        models.  Otherwise those models fail on zero doses and are dropped.
    response_unit : str
        Display unit carried into the result.

    Returns
    -------
    TargetSelection
        ``outcome`` is ``'selected'`` with a :class:`SelectionRecord`, or
        ``'rejected'`` when no candidate is adequate or the target has no
        observations.
    """
    models = _resolve_models(models)
    _check_select_args(alpha, zero_dose_offset, ed_level, conf_level)
    dose = np.asarray(dose, dtype=np.float64)
    response = np.asarray(response, dtype=np.float64)

    if dose.size == 0 and response.size == 0:
        logger.info("target %r rejected: no observations", target)
        return TargetSelection(
            target=target,
            outcome=REJECTED,
            candidates=(),
            response_unit=response_unit,
        )

    outcomes: list[CandidateOutcome] = []
    survivors: list[tuple[FitResult, ModelScore]] = []

    for model in models:
        x = dose
        if model.log_dose and zero_dose_offset is not None:
            x = np.where(dose == 0, zero_dose_offset, dose)

        try:
            fit = fit_curve(x, response, model=model, max_nfev=max_nfev, target=target)
        except (DomainError, ConvergenceError) as exc:
            logger.debug("target %r: %s fit dropped: %s", target, model.value, exc)
            outcomes.append(CandidateOutcome(model, FIT_FAILED, message=str(exc)))
            continue

        try:
            score = score_fit(fit)
        except UndefinedStatisticError as exc:
            logger.debug("target %r: %s excluded: %s", target, model.value, exc)
            outcomes.append(CandidateOutcome(model, UNDEFINED, message=str(exc)))
            continue

        if not score.lack_of_fit_p > alpha:
            logger.debug(
                "target %r: %s inadequate (lack-of-fit p = %.4g)",
                target, model.value, score.lack_of_fit_p,
            )
            outcomes.append(CandidateOutcome(
                model, INADEQUATE, score,
                message=f"lack-of-fit p = {score.lack_of_fit_p:.4g} <= {alpha}",
            ))
            continue

        outcomes.append(CandidateOutcome(model, OK, score))
        survivors.append((fit, score))

    if not survivors:
        logger.info("target %r rejected: no adequate model", target)
        return TargetSelection(
            target=target,
            outcome=REJECTED,
            candidates=tuple(outcomes),
            response_unit=response_unit,
        )

    # min() keeps the first of equal AICs, i.e. declaration order
    best_fit, best_score = min(survivors, key=lambda fs: fs[1].aic)

    try:
        ed = effective_dose(best_fit, level=ed_level, conf_level=conf_level)
        ed_est, ed_se, ed_error = ed.estimate, ed.se, None
    except NumericalError as exc:
        logger.warning("target %r: ED%g not estimable for %s: %s",
                       target, ed_level, best_fit.model.value, exc)
        ed_est, ed_se, ed_error = float("nan"), float("nan"), str(exc)

    record = SelectionRecord(
        target=target,
        model=best_fit.model,
        lack_of_fit_p=best_score.lack_of_fit_p,
        aic=best_score.aic,
        residual_se=best_score.residual_se,
        ed=ed_est,
        ed_se=ed_se,
        ed_level=ed_level,
        params=dict(best_fit.params),
        ed_error=ed_error,
    )
    logger.info(
        "target %r: selected %s (AIC = %.4g, p = %.4g, ED%g = %.4g)",
        target, best_fit.model.value, record.aic, record.lack_of_fit_p, ed_level, ed_est,
    )
    return TargetSelection(
        target=target,
        outcome=SELECTED,
        candidates=tuple(outcomes),
        record=record,
        fit=best_fit,
        response_unit=response_unit,
    )


def _select_target(data: TargetData, select_kwargs: dict) -> TargetSelection:
    return select_model(
        data.dose,
        data.response,
        target=data.target,
        response_unit=data.response_unit,
        **select_kwargs,
    )


# ---------------------------------------------------------------------------
# Aggregated report
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SelectionReport:
    """Selections for all targets of an input table, in input order."""

    selections: tuple[TargetSelection, ...]
    ed_level: float = ED_LEVEL

    @property
    def records(self) -> tuple[SelectionRecord, ...]:
        return tuple(s.record for s in self.selections if s.record is not None)

    @property
    def rejected(self) -> tuple[Hashable, ...]:
        """Names of targets for which no model was adequate."""
        return tuple(s.target for s in self.selections if not s.selected)

    def __getitem__(self, target: Hashable) -> TargetSelection:
        for s in self.selections:
            if s.target == target:
                return s
        raise KeyError(target)

    def require(self, target: Hashable) -> SelectionRecord:
        """Selection record of *target*.

        Raises
        ------
        NoAdequateModelError
            If the target was rejected.
        """
        sel = self[target]
        if sel.record is None:
            raise NoAdequateModelError(target, sel.candidates)
        return sel.record

    def to_frame(self, *, sort: bool = True) -> pd.DataFrame:
        """Output table, one row per selected target.

        Columns: ``ID, MODEL, TARGET, P, AIC, Total_SE, ED<level>,
        ED<level>_SE``.  ``ID`` is the 1-based position of the target in
        the input.  With *sort*, rows are ordered by ED ascending (targets
        without an ED last).
        """
        ed_col = f"ED{self.ed_level:g}"
        rows = [
            {
                "ID": i,
                "MODEL": s.record.model.value,
                "TARGET": s.target,
                "P": s.record.lack_of_fit_p,
                "AIC": s.record.aic,
                "Total_SE": s.record.residual_se,
                ed_col: s.record.ed,
                f"{ed_col}_SE": s.record.ed_se,
            }
            for i, s in enumerate(self.selections, start=1)
            if s.record is not None
        ]
        columns = ["ID", "MODEL", "TARGET", "P", "AIC", "Total_SE", ed_col, f"{ed_col}_SE"]
        table = pd.DataFrame(rows, columns=columns)
        if sort:
            table = table.sort_values(ed_col, kind="mergesort", na_position="last")
        return table.reset_index(drop=True)

    def curves(
        self,
        dose: NDArray[np.floating] | None = None,
        *,
        conf_level: float = 0.95,
    ) -> dict[Hashable, PredictionCurve]:
        """Prediction curves with confidence bands for every selected target."""
        return {
            s.target: prediction_band(s.fit, dose, conf_level=conf_level)
            for s in self.selections
            if s.fit is not None
        }

    def curves_frame(
        self,
        dose: NDArray[np.floating] | None = None,
        *,
        conf_level: float = 0.95,
    ) -> pd.DataFrame:
        """All prediction curves stacked into one long table."""
        frames = [c.to_frame() for c in self.curves(dose, conf_level=conf_level).values()]
        if not frames:
            return pd.DataFrame(columns=["TARGET", "MODEL", "DOSE", "PREDICTED", "LOWER", "UPPER"])
        return pd.concat(frames, ignore_index=True)

    def summary(self) -> str:
        """Human-readable summary of selected and rejected targets."""
        lines = [
            "Dose-response model selection",
            "",
            f"  Targets:  {len(self.selections)}",
            f"  Selected: {len(self.records)}",
            f"  Rejected: {len(self.rejected)}",
            "",
        ]
        for r in sorted(self.records, key=lambda r: (np.isnan(r.ed), r.ed)):
            lines.append(
                f"  {str(r.target):<20s} {r.model.value:<5s} "
                f"ED{self.ed_level:g} = {r.ed:.4g} (SE = {r.ed_se:.4g}), "
                f"AIC = {r.aic:.2f}, p = {r.lack_of_fit_p:.4f}"
            )
        if self.rejected:
            lines.append("")
            lines.append("  No adequate model: " + ", ".join(str(t) for t in self.rejected))
        return "\n".join(lines)


def _collect(
    selections: Iterable[TargetSelection],
    ed_level: float,
) -> SelectionReport:
    """Build the report from per-target results (the only writer)."""
    report = SelectionReport(selections=tuple(selections), ed_level=ed_level)
    if report.rejected:
        logger.warning(
            "%d target(s) without an adequate model: %s",
            len(report.rejected), ", ".join(str(t) for t in report.rejected),
        )
    return report


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def select_models(
    frame: pd.DataFrame,
    *,
    models: Sequence[CurveModel | str] = DEFAULT_MODELS,
    alpha: float = ADEQUACY_ALPHA,
    ed_level: float = ED_LEVEL,
    conf_level: float = 0.95,
    max_nfev: int = MAX_NFEV,
    zero_dose_offset: float | None = None,
) -> SelectionReport:
    """Select the best curve model for every target of an input table.

    Parameters
    ----------
    frame : pd.DataFrame
        Columns ``TARGET``, ``MEAS1_VALUE`` (dose), ``MEAS2_VALUE``
        (response) and ``MEAS2_UNIT``.
    models, alpha, ed_level, conf_level, max_nfev, zero_dose_offset
        See :func:`select_model`.

    Returns
    -------
    SelectionReport

    Examples
    --------
    >>> report = select_models(frame)                    # doctest: +SKIP
    >>> report.to_frame()                                # doctest: +SKIP
    >>> report.rejected                                  # doctest: +SKIP
    """
    select_kwargs = dict(
        models=_resolve_models(models),
        alpha=alpha,
        ed_level=ed_level,
        conf_level=conf_level,
        max_nfev=max_nfev,
        zero_dose_offset=zero_dose_offset,
    )
    _check_select_args(alpha, zero_dose_offset, ed_level, conf_level)
    selections = [_select_target(data, select_kwargs) for data in partition(frame)]
    return _collect(selections, ed_level)
