"""Tests for dose-response model functions and the model registry."""

import numpy as np
import pytest

from pydrmselect.doseresponse import CurveModel, DEFAULT_MODELS, ll3, ar2


class TestLL3:
    """3-parameter log-logistic model, lower limit 0."""

    def test_at_e_gives_half_of_d(self):
        result = ll3(np.array([5.0]), b=2.0, d=10.0, e=5.0)
        assert result[0] == pytest.approx(5.0)

    def test_positive_b_decreasing(self):
        dose = np.array([0.01, 0.1, 1, 10, 100])
        resp = ll3(dose, b=1.0, d=100.0, e=1.0)
        assert np.all(np.diff(resp) < 0)

    def test_negative_b_increasing(self):
        dose = np.array([0.01, 0.1, 1, 10, 100])
        resp = ll3(dose, b=-1.0, d=100.0, e=1.0)
        assert np.all(np.diff(resp) > 0)

    def test_dose_zero_positive_b(self):
        """dose=0 with b > 0 → upper asymptote d."""
        result = ll3(np.array([0.0]), b=1.0, d=50.0, e=1.0)
        assert result[0] == pytest.approx(50.0)

    def test_dose_zero_negative_b(self):
        """dose=0 with b < 0 → lower asymptote 0."""
        result = ll3(np.array([0.0]), b=-1.0, d=50.0, e=1.0)
        assert result[0] == pytest.approx(0.0)

    def test_large_dose_approaches_zero(self):
        result = ll3(np.array([1e10]), b=1.0, d=100.0, e=1.0)
        assert result[0] == pytest.approx(0.0, abs=1e-6)

    def test_vector_output(self):
        dose = np.linspace(0.001, 80, 100)
        assert ll3(dose, 2.0, 10.0, 15.0).shape == (100,)


class TestAR2:
    """2-parameter asymptotic regression, lower limit 0."""

    def test_dose_zero_is_zero(self):
        assert ar2(np.array([0.0]), d=5.0, e=3.0)[0] == pytest.approx(0.0)

    def test_at_e(self):
        result = ar2(np.array([3.0]), d=5.0, e=3.0)
        assert result[0] == pytest.approx(5.0 * (1 - np.exp(-1.0)))

    def test_large_dose_approaches_d(self):
        result = ar2(np.array([1e6]), d=5.0, e=3.0)
        assert result[0] == pytest.approx(5.0)

    def test_monotone_increasing(self):
        resp = ar2(np.array([0, 1, 2, 4, 8, 16.0]), d=5.0, e=3.0)
        assert np.all(np.diff(resp) > 0)


class TestCurveModel:
    """Closed registry of curve families."""

    def test_names(self):
        assert CurveModel.LL3.value == "LL.3"
        assert CurveModel.AR2.value == "AR.2"

    def test_from_name(self):
        assert CurveModel.from_name("LL.3") is CurveModel.LL3
        assert CurveModel.from_name(CurveModel.AR2) is CurveModel.AR2

    def test_from_name_invalid(self):
        with pytest.raises(ValueError, match="model must be one of"):
            CurveModel.from_name("LL.4")

    def test_param_names(self):
        assert CurveModel.LL3.param_names == ("b", "d", "e")
        assert CurveModel.AR2.param_names == ("d", "e")
        assert CurveModel.LL3.n_params == 3
        assert CurveModel.AR2.n_params == 2

    def test_log_dose_flag(self):
        assert CurveModel.LL3.log_dose
        assert not CurveModel.AR2.log_dose

    def test_predict_dict_and_array_agree(self):
        dose = np.array([1.0, 5.0, 20.0])
        by_dict = CurveModel.LL3.predict(dose, {"b": 2.0, "d": 10.0, "e": 15.0})
        by_array = CurveModel.LL3.predict(dose, np.array([2.0, 10.0, 15.0]))
        np.testing.assert_allclose(by_dict, by_array)
        np.testing.assert_allclose(by_dict, ll3(dose, 2.0, 10.0, 15.0))

    def test_default_order(self):
        assert DEFAULT_MODELS == (CurveModel.LL3, CurveModel.AR2)
