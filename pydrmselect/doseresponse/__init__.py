"""
Dose-response model selection for multi-endpoint assays.

Fits LL.3 and AR.2 curves (lower limit fixed at 0) to each target,
discards models that fail the lack-of-fit test, picks the survivor with
the smallest AIC and estimates its ED10 with a delta-method standard error.

Validates against: R package drc.
"""

from pydrmselect.doseresponse._errors import (
    DoseResponseError,
    DomainError,
    ConvergenceError,
    UndefinedStatisticError,
    NumericalError,
    NoAdequateModelError,
)
from pydrmselect.doseresponse._models import (
    CurveModel,
    DEFAULT_MODELS,
    ll3,
    ar2,
)
from pydrmselect.doseresponse._common import FitResult, ModelScore, SelectionRecord
from pydrmselect.doseresponse._data import Observation, TargetData, observations_from_frame, partition
from pydrmselect.doseresponse._fit import fit_curve
from pydrmselect.doseresponse._evaluate import LackOfFitResult, lack_of_fit_test, aic, residual_se, score_fit
from pydrmselect.doseresponse._potency import EDResult, effective_dose
from pydrmselect.doseresponse._curves import PredictionCurve, dose_grid, prediction_band
from pydrmselect.doseresponse._select import (
    CandidateOutcome,
    TargetSelection,
    SelectionReport,
    select_model,
    select_models,
)
from pydrmselect.doseresponse._batch import select_models_batch

__all__ = [
    "DoseResponseError",
    "DomainError",
    "ConvergenceError",
    "UndefinedStatisticError",
    "NumericalError",
    "NoAdequateModelError",
    "CurveModel",
    "DEFAULT_MODELS",
    "ll3",
    "ar2",
    "FitResult",
    "ModelScore",
    "SelectionRecord",
    "Observation",
    "TargetData",
    "observations_from_frame",
    "partition",
    "fit_curve",
    "LackOfFitResult",
    "lack_of_fit_test",
    "aic",
    "residual_se",
    "score_fit",
    "EDResult",
    "effective_dose",
    "PredictionCurve",
    "dose_grid",
    "prediction_band",
    "CandidateOutcome",
    "TargetSelection",
    "SelectionReport",
    "select_model",
    "select_models",
    "select_models_batch",
]
