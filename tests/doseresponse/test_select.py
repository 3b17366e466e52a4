"""Tests for per-target model selection and the aggregated report."""

import numpy as np
import pandas as pd
import pytest

from pydrmselect.doseresponse import (
    CurveModel,
    ModelScore,
    NoAdequateModelError,
    NumericalError,
    ar2,
    ll3,
    select_model,
    select_models,
)
from pydrmselect.doseresponse import _select


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _ar_target():
    np.random.seed(11)
    dose = np.repeat([0.25, 0.5, 1, 2, 4, 8, 16, 32], 3)
    response = ar2(dose, 5.0, 3.0) + np.random.normal(0, 0.05, len(dose))
    return dose, response


def _ll_target():
    np.random.seed(7)
    dose = np.repeat([0.5, 1, 2, 4, 8, 16, 32, 64], 3).astype(float)
    response = ll3(dose, -2.0, 10.0, 5.0) + np.random.normal(0, 0.2, len(dose))
    return dose, response


def _noise_target():
    """Dose-group means with no dose-response relationship, tight replicates."""
    np.random.seed(99)
    levels = np.array([0.5, 1, 2, 4, 8, 16, 32, 64])
    means = np.random.normal(10.0, 3.0, len(levels))
    dose = np.repeat(levels, 3)
    response = np.repeat(means, 3) + np.random.normal(0, 0.05, len(dose))
    return dose, response


def _two_point_target():
    return np.array([1.0, 4.0]), np.array([2.0, 4.0])


def _frame(targets):
    parts = []
    for name, (dose, response) in targets.items():
        parts.append(pd.DataFrame({
            "TARGET": name,
            "MEAS1_VALUE": dose,
            "MEAS2_VALUE": response,
            "MEAS2_UNIT": "U/L",
        }))
    return pd.concat(parts, ignore_index=True)


@pytest.fixture
def frame():
    return _frame({
        "LL": _ll_target(),
        "NOISE": _noise_target(),
        "AR": _ar_target(),
        "TWO": _two_point_target(),
    })


@pytest.fixture
def report(frame):
    return select_models(frame)


# ---------------------------------------------------------------------------
# Single target
# ---------------------------------------------------------------------------

class TestSelectModelScenarios:

    def test_asymptotic_data_selects_ar2(self):
        dose, response = _ar_target()
        sel = select_model(dose, response, target="AR")
        assert sel.selected
        assert sel.record.model is CurveModel.AR2
        assert sel.record.params["d"] == pytest.approx(5.0, rel=0.05)
        assert sel.record.params["e"] == pytest.approx(3.0, rel=0.1)

    def test_asymptotic_data_ar2_beats_ll3_aic(self):
        dose, response = _ar_target()
        sel = select_model(dose, response, target="AR")
        scores = {c.model: c.score for c in sel.candidates}
        assert scores[CurveModel.LL3] is not None
        assert scores[CurveModel.AR2].aic < scores[CurveModel.LL3].aic

    def test_log_logistic_data_selects_ll3(self):
        dose, response = _ll_target()
        sel = select_model(dose, response, target="LL")
        assert sel.record.model is CurveModel.LL3

    def test_two_points_rejected(self):
        dose, response = _two_point_target()
        sel = select_model(dose, response, target="TWO")
        assert not sel.selected
        assert sel.record is None
        status = {c.model: c.status for c in sel.candidates}
        assert status[CurveModel.AR2] == "undefined"
        assert status[CurveModel.LL3] == "fit_failed"

    def test_noise_rejected(self):
        dose, response = _noise_target()
        sel = select_model(dose, response, target="NOISE")
        assert sel.outcome == "rejected"
        assert all(c.status in ("inadequate", "fit_failed") for c in sel.candidates)

    def test_record_fields(self):
        dose, response = _ar_target()
        r = select_model(dose, response, target="AR").record
        assert r.target == "AR"
        assert r.lack_of_fit_p > 0.01
        assert r.residual_se > 0
        assert np.isfinite(r.ed) and r.ed >= 0
        assert np.isfinite(r.ed_se) and r.ed_se >= 0
        assert r.ed_level == 10.0
        assert r.has_ed


class TestSelectionRules:

    def test_threshold_is_strict(self):
        dose, response = _ar_target()
        p = select_model(dose, response, models=["AR.2"]).record.lack_of_fit_p
        sel = select_model(dose, response, models=["AR.2"], alpha=p)
        assert not sel.selected
        assert sel.candidates[0].status == "inadequate"

    def test_winner_has_minimum_aic(self):
        dose, response = _ll_target()
        sel = select_model(dose, response)
        ok = [c.score.aic for c in sel.candidates if c.status == "ok"]
        assert sel.record.aic == min(ok)

    def test_tie_goes_to_first_declared(self, monkeypatch):
        def tied_score(fit):
            return ModelScore(
                model=fit.model, lack_of_fit_p=0.5, aic=1.0,
                residual_se=0.1, df_residual=fit.df_residual, target=fit.target,
            )

        monkeypatch.setattr(_select, "score_fit", tied_score)
        dose, response = _ar_target()
        first_ar = select_model(dose, response, models=("AR.2", "LL.3"))
        first_ll = select_model(dose, response, models=("LL.3", "AR.2"))
        assert first_ar.record.model is CurveModel.AR2
        assert first_ll.record.model is CurveModel.LL3

    def test_zero_dose_drops_log_model(self):
        dose, response = _ll_target()
        dose = np.concatenate([[0.0, 0.0, 0.0], dose])
        response = np.concatenate([[0.01, -0.02, 0.0], response])
        sel = select_model(dose, response)
        ll = next(c for c in sel.candidates if c.model is CurveModel.LL3)
        assert ll.status == "fit_failed"
        assert "zero doses" in ll.message

    def test_zero_dose_offset(self):
        dose, response = _ll_target()
        dose = np.concatenate([[0.0, 0.0, 0.0], dose])
        response = np.concatenate([[0.01, -0.02, 0.0], response])
        sel = select_model(dose, response, zero_dose_offset=1e-3)
        ll = next(c for c in sel.candidates if c.model is CurveModel.LL3)
        assert ll.status != "fit_failed"
        assert sel.record.model is CurveModel.LL3

    def test_ed_failure_keeps_record(self, monkeypatch):
        def failing(*args, **kwargs):
            raise NumericalError("no root")

        monkeypatch.setattr(_select, "effective_dose", failing)
        dose, response = _ar_target()
        sel = select_model(dose, response, target="AR")
        assert sel.selected
        assert np.isnan(sel.record.ed)
        assert np.isnan(sel.record.ed_se)
        assert sel.record.ed_error == "no root"
        assert not sel.record.has_ed

    def test_deterministic(self):
        dose, response = _ll_target()
        assert select_model(dose, response).record == select_model(dose, response).record


class TestSelectValidation:

    def test_alpha(self):
        dose, response = _ar_target()
        with pytest.raises(ValueError, match="alpha"):
            select_model(dose, response, alpha=1.0)

    def test_duplicate_models(self):
        dose, response = _ar_target()
        with pytest.raises(ValueError, match="unique"):
            select_model(dose, response, models=("AR.2", CurveModel.AR2))

    def test_empty_models(self):
        dose, response = _ar_target()
        with pytest.raises(ValueError, match="at least one"):
            select_model(dose, response, models=())

    def test_zero_dose_offset(self):
        dose, response = _ar_target()
        with pytest.raises(ValueError, match="zero_dose_offset"):
            select_model(dose, response, zero_dose_offset=0.0)

    @pytest.mark.parametrize("ed_level", [0.0, 100.0, 150.0])
    def test_ed_level(self, ed_level):
        dose, response = _ar_target()
        with pytest.raises(ValueError, match="ed_level"):
            select_model(dose, response, ed_level=ed_level)

    @pytest.mark.parametrize("conf_level", [0.0, 1.0])
    def test_conf_level(self, conf_level):
        dose, response = _ar_target()
        with pytest.raises(ValueError, match="conf_level"):
            select_model(dose, response, conf_level=conf_level)

    def test_levels_checked_before_fitting(self, frame, monkeypatch):
        def no_fit(*args, **kwargs):
            raise AssertionError("fit_curve called")

        monkeypatch.setattr(_select, "fit_curve", no_fit)
        with pytest.raises(ValueError, match="ed_level"):
            select_models(frame, ed_level=150)
        with pytest.raises(ValueError, match="conf_level"):
            select_models(frame, conf_level=1.5)

    def test_no_observations_rejected(self):
        sel = select_model(np.array([]), np.array([]), target="EMPTY")
        assert sel.outcome == "rejected"
        assert sel.candidates == ()
        assert sel.record is None


# ---------------------------------------------------------------------------
# Multi-target report
# ---------------------------------------------------------------------------

class TestSelectionReport:

    def test_at_most_one_record_per_target(self, report):
        targets = [r.target for r in report.records]
        assert len(targets) == len(set(targets))
        assert len(report.selections) == 4

    def test_rejected_named(self, report):
        assert set(report.rejected) == {"NOISE", "TWO"}
        assert {r.target for r in report.records} == {"LL", "AR"}

    def test_rejected_logged(self, frame, caplog):
        with caplog.at_level("WARNING"):
            select_models(frame)
        assert "NOISE" in caplog.text
        assert "TWO" in caplog.text

    def test_require(self, report):
        assert report.require("AR").model is CurveModel.AR2
        with pytest.raises(NoAdequateModelError) as excinfo:
            report.require("NOISE")
        assert excinfo.value.target == "NOISE"
        with pytest.raises(KeyError):
            report.require("MISSING")

    def test_records_pass_adequacy(self, report):
        assert all(r.lack_of_fit_p > 0.01 for r in report.records)

    def test_output_table(self, report):
        df = report.to_frame()
        assert list(df.columns) == [
            "ID", "MODEL", "TARGET", "P", "AIC", "Total_SE", "ED10", "ED10_SE",
        ]
        assert len(df) == 2
        assert df["ED10"].is_monotonic_increasing
        ids = dict(zip(df["TARGET"], df["ID"]))
        assert ids == {"LL": 1, "AR": 3}

    def test_output_table_unsorted(self, report):
        df = report.to_frame(sort=False)
        assert list(df["TARGET"]) == ["LL", "AR"]

    def test_ed_level_names_columns(self, frame):
        df = select_models(frame, ed_level=20).to_frame()
        assert "ED20" in df.columns
        assert "ED20_SE" in df.columns

    def test_idempotent(self, frame):
        pd.testing.assert_frame_equal(
            select_models(frame).to_frame(), select_models(frame).to_frame(),
        )

    def test_curves(self, report):
        curves = report.curves()
        assert set(curves) == {"LL", "AR"}
        assert curves["AR"].model == "AR.2"
        df = report.curves_frame()
        assert len(df) == 200

    def test_summary(self, report):
        s = report.summary()
        assert "Selected: 2" in s
        assert "No adequate model: NOISE, TWO" in s

    def test_records_hashable(self, frame):
        a = select_models(frame).require("AR")
        b = select_models(frame).require("AR")
        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1


class TestBadTargets:
    """One unusable target never stops the others from being reported."""

    def test_negative_dose_target_rejected(self):
        bad = (np.array([-1.0, 1.0, 2.0]), np.array([0.1, 0.5, 0.9]))
        report = select_models(_frame({"A": _ar_target(), "BAD": bad}))
        assert report.rejected == ("BAD",)
        assert report.require("A").model is CurveModel.AR2
        assert all(c.status == "fit_failed" for c in report["BAD"].candidates)
        assert "non-negative" in report["BAD"].candidates[0].message

    def test_target_without_observations_rejected(self):
        gone = (np.array([1.0, 2.0, 4.0]), np.full(3, np.nan))
        report = select_models(_frame({"A": _ar_target(), "GONE": gone}))
        assert [s.target for s in report.selections] == ["A", "GONE"]
        assert report.rejected == ("GONE",)
        assert report["GONE"].candidates == ()
        with pytest.raises(NoAdequateModelError, match="GONE"):
            report.require("GONE")
        assert list(report.to_frame()["TARGET"]) == ["A"]
