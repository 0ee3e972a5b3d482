"""Tests for accuracy evaluation."""

import numpy as np
import pytest

from app.core.exceptions import InsufficientActualsError
from app.features.forecasting.metrics import AccuracyEvaluator


@pytest.fixture
def evaluator() -> AccuracyEvaluator:
    """Default accuracy evaluator."""
    return AccuracyEvaluator()


class TestMetricFunctions:
    """Tests for the individual metric functions."""

    def test_perfect_prediction(self):
        """Perfect predictions have zero error and R2 of 1."""
        actual = np.array([10.0, 20.0, 30.0])

        assert AccuracyEvaluator.mape(actual, actual).value == 0.0
        assert AccuracyEvaluator.rmse(actual, actual).value == 0.0
        assert AccuracyEvaluator.mae(actual, actual).value == 0.0
        assert AccuracyEvaluator.r2(actual, actual).value == 1.0

    def test_mape_known_value(self):
        """MAPE = 100 * mean(|A - F| / |A|)."""
        result = AccuracyEvaluator.mape(np.array([100.0, 200.0]), np.array([110.0, 180.0]))

        # (0.1 + 0.1) / 2 * 100
        assert result.value == pytest.approx(10.0)
        assert result.n_samples == 2

    def test_mape_skips_zero_actuals(self):
        """Zero actuals are excluded from MAPE."""
        result = AccuracyEvaluator.mape(np.array([0.0, 100.0]), np.array([50.0, 150.0]))

        assert result.value == pytest.approx(50.0)
        assert result.n_samples == 1
        assert "1 zero-actual samples skipped" in result.warnings

    def test_mape_all_zero_actuals_is_degenerate(self):
        """All-zero actuals give 0 with degenerate set."""
        result = AccuracyEvaluator.mape(np.zeros(3), np.array([1.0, 2.0, 3.0]))

        assert result.value == 0.0
        assert result.degenerate

    def test_rmse_and_mae_known_values(self):
        """RMSE and MAE on errors [3, -4]."""
        actual = np.array([10.0, 10.0])
        predicted = np.array([13.0, 6.0])

        assert AccuracyEvaluator.rmse(actual, predicted).value == pytest.approx(np.sqrt(12.5))
        assert AccuracyEvaluator.mae(actual, predicted).value == pytest.approx(3.5)

    def test_r2_constant_actuals_is_degenerate(self):
        """Constant actuals give R2 0 with degenerate set, never nan."""
        result = AccuracyEvaluator.r2(np.full(4, 5.0), np.array([4.0, 5.0, 6.0, 5.0]))

        assert result.value == 0.0
        assert result.degenerate

    @pytest.mark.parametrize("value", [19.99, 0.1, 1234.56])
    def test_r2_non_integer_constant_actuals_is_degenerate(self, value):
        """Constancy holds for values whose mean does not round-trip exactly."""
        actual = np.full(7, value)

        result = AccuracyEvaluator.r2(actual, actual * 1.01)

        assert result.value == 0.0
        assert result.degenerate

    def test_very_large_values_stay_finite(self):
        """Squaring revenues near 1e160 must not overflow RMSE or R2."""
        actual = np.array([1e160, 2e160, 3e160])
        predicted = np.array([1.5e160, 2e160, 2.5e160])

        rmse = AccuracyEvaluator.rmse(actual, predicted)
        mae = AccuracyEvaluator.mae(actual, predicted)
        r2 = AccuracyEvaluator.r2(actual, predicted)

        assert rmse.value == pytest.approx(np.sqrt(1 / 6) * 1e160)
        assert mae.value == pytest.approx(1e160 / 3)
        assert r2.value == pytest.approx(0.75)

    def test_r2_can_be_negative(self):
        """Predictions worse than the mean give negative R2."""
        result = AccuracyEvaluator.r2(np.array([1.0, 2.0, 3.0]), np.array([3.0, 2.0, 1.0]))

        assert result.value == pytest.approx(-3.0)

    def test_length_mismatch_raises(self):
        """Metric functions require aligned arrays."""
        with pytest.raises(ValueError, match="Length mismatch"):
            AccuracyEvaluator.rmse(np.array([1.0]), np.array([1.0, 2.0]))


class TestEvaluate:
    """Tests for AccuracyEvaluator.evaluate."""

    def test_returns_all_metrics(self, evaluator):
        """evaluate bundles all four metrics."""
        metrics = evaluator.evaluate([100.0, 200.0, 300.0], [110.0, 190.0, 310.0])

        assert metrics.evaluated_periods == 3
        assert metrics.mae == pytest.approx(10.0)
        assert metrics.rmse == pytest.approx(10.0)
        assert 0.0 < metrics.r2_score < 1.0
        assert not metrics.degenerate

    def test_scores_only_the_overlap(self, evaluator):
        """Extra predictions beyond the actuals are ignored."""
        metrics = evaluator.evaluate([100.0, 200.0], [100.0, 200.0, 5000.0, 9000.0])

        assert metrics.evaluated_periods == 2
        assert metrics.rmse == 0.0

    def test_no_overlap_raises(self, evaluator):
        """Zero overlap is an InsufficientActualsError."""
        with pytest.raises(InsufficientActualsError):
            evaluator.evaluate([], [1.0, 2.0])

    def test_degenerate_flag_propagates(self, evaluator):
        """Constant actuals mark the metrics degenerate."""
        metrics = evaluator.evaluate([50.0, 50.0, 50.0], [40.0, 50.0, 60.0])

        assert metrics.r2_score == 0.0
        assert metrics.degenerate

    def test_constant_19_99_is_degenerate(self, evaluator):
        """A flat 19.99 history gives R2 0 flagged degenerate."""
        metrics = evaluator.evaluate([19.99] * 7, [20.5] * 7)

        assert metrics.r2_score == 0.0
        assert metrics.degenerate
        assert metrics.mae == pytest.approx(0.51)

    def test_tiny_actuals_next_to_huge_predictions_stay_finite(self, evaluator):
        """Metrics that cannot be represented report 0 and set degenerate."""
        metrics = evaluator.evaluate([1e-170, 2e-170, 3e-170], [1e170, 1e170, 1e170])

        for value in (metrics.mape, metrics.rmse, metrics.mae, metrics.r2_score):
            assert np.isfinite(value)
        assert metrics.r2_score == 0.0
        assert metrics.degenerate

    def test_perfect_forecast_is_sane(self, evaluator):
        """MAPE 0, RMSE 0, MAE 0 and R2 1 for exact predictions."""
        actual = [10.0, 12.0, 15.0, 11.0]

        metrics = evaluator.evaluate(actual, actual)

        assert (metrics.mape, metrics.rmse, metrics.mae, metrics.r2_score) == (0.0, 0.0, 0.0, 1.0)
