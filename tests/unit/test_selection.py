"""
Unit tests for cross-validated ensemble size selection.

Tests the loss metrics, stratified fold assignment, the 2-fold example on
ten observations, determinism, carry-forward of short model lists,
degenerate folds and cooperative cancellation.
"""

from __future__ import annotations

import numpy as np
import pytest

from mbmdrc.errors import DegenerateFoldError, InvalidArgumentError, SelectionCancelledError
from mbmdrc.models import RankedModelSet
from mbmdrc.search import ExhaustiveModelSearch
from mbmdrc.selection import (
    LossMetric,
    auc,
    bac,
    make_stratified_folds,
    select_ensemble_size,
)

TEN_FOLDS = np.array([1, 2, 1, 2, 1, 1, 2, 1, 2, 2])


def _small_oracle(view):
    return ExhaustiveModelSearch(order=[1, 2], min_cell_size=1, alpha=0.5, max_results=3)(view)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestMetrics:
    """Tests for AUC and balanced accuracy."""

    def test_auc_perfect_and_inverted(self):
        """Perfect ranking gives 1, inverted ranking 0."""
        truth = np.array([0, 0, 1, 1])
        assert auc(np.array([0.1, 0.2, 0.8, 0.9]), truth) == pytest.approx(1.0)
        assert auc(np.array([0.9, 0.8, 0.2, 0.1]), truth) == pytest.approx(0.0)

    def test_auc_ties(self):
        """Constant scores give 0.5."""
        assert auc(np.full(6, 0.3), np.array([0, 1, 0, 1, 0, 1])) == pytest.approx(0.5)

    def test_auc_partial_ties(self):
        """A tie between a case and a control counts one half."""
        truth = np.array([0, 0, 1, 1])
        assert auc(np.array([0.2, 0.5, 0.5, 0.9]), truth) == pytest.approx(0.875)

    def test_bac_float_predictions(self):
        """Rounded float responses are scored like integer labels."""
        truth = np.array([0, 0, 1, 1])
        assert bac(np.array([0.0, 1.0, 1.0, 1.0]), truth) == pytest.approx(0.75)

    def test_bac(self):
        """Balanced accuracy averages sensitivity and specificity."""
        truth = np.array([1, 1, 1, 1, 0, 0])
        predicted = np.array([1, 1, 1, 0, 0, 1])
        assert bac(predicted, truth) == pytest.approx((0.75 + 0.5) / 2)

    def test_single_class_raises(self):
        """Both metrics need both classes."""
        with pytest.raises(ValueError):
            auc(np.array([0.2, 0.4]), np.array([1, 1]))
        with pytest.raises(ValueError):
            bac(np.array([1, 0]), np.array([0, 0]))

    def test_prediction_type_per_metric(self):
        """AUC is scored on probabilities, BAC on responses."""
        assert LossMetric.AUC.prediction_type.value == "prob"
        assert LossMetric.BAC.prediction_type.value == "response"


# ---------------------------------------------------------------------------
# Folds
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestStratifiedFolds:
    """Tests for make_stratified_folds."""

    def test_each_fold_has_both_classes(self):
        """Stratification spreads each class over every fold."""
        outcome = np.array([0] * 12 + [1] * 8)
        folds = make_stratified_folds(outcome, 4, seed=3)
        assert set(folds.tolist()) == {1, 2, 3, 4}
        for f in range(1, 5):
            assert set(outcome[folds == f].tolist()) == {0, 1}

    def test_fold_sizes_balanced(self):
        """Class members are split into nearly equal chunks."""
        outcome = np.array([0] * 10 + [1] * 10)
        folds = make_stratified_folds(outcome, 5, seed=0)
        for f in range(1, 6):
            assert np.sum((folds == f) & (outcome == 1)) == 2

    def test_seed_reproducible(self):
        """The same seed yields the same assignment."""
        outcome = np.array([0, 1] * 15)
        np.testing.assert_array_equal(
            make_stratified_folds(outcome, 3, seed=11), make_stratified_folds(outcome, 3, seed=11)
        )

    def test_invalid_fold_count(self):
        """Fold counts outside 2..10 or above n are rejected."""
        with pytest.raises(InvalidArgumentError):
            make_stratified_folds(np.array([0, 1] * 10), 11)
        with pytest.raises(InvalidArgumentError):
            make_stratified_folds(np.array([0, 1, 0]), 4)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestSelectEnsembleSize:
    """Tests for select_ensemble_size."""

    def test_two_folds_ten_observations(self, ten_observations):
        """2 folds x 3 sizes, no undefined losses, K* in range."""
        result = select_ensemble_size(
            ten_observations, TEN_FOLDS, 3, loss_metric="auc", oracle=_small_oracle
        )
        assert result.loss_table.shape == (2, 3)
        assert not result.loss_table.isna().any().any()
        assert list(result.loss_table.index) == [1, 2]
        assert list(result.loss_table.columns) == [1, 2, 3]
        assert 1 <= result.best_size <= 3
        assert result.metric is LossMetric.AUC

    def test_bac_loss(self, ten_observations):
        """BAC selection yields losses in [0, 1]."""
        result = select_ensemble_size(
            ten_observations, TEN_FOLDS, 3, loss_metric=LossMetric.BAC, oracle=_small_oracle
        )
        values = result.loss_table.to_numpy()
        assert np.all((values >= 0) & (values <= 1))

    def test_deterministic(self, interaction_view):
        """Fixed folds and a deterministic oracle give identical results."""
        folds = make_stratified_folds(interaction_view.outcomes, 3, seed=5)
        oracle = ExhaustiveModelSearch(order=[1, 2], min_cell_size=5, max_results=4)
        first = select_ensemble_size(interaction_view, folds, 4, oracle=oracle)
        second = select_ensemble_size(interaction_view, folds, 4, oracle=oracle)
        assert first.best_size == second.best_size
        np.testing.assert_array_equal(first.loss_table.to_numpy(), second.loss_table.to_numpy())

    def test_best_size_is_first_maximum(self, interaction_view):
        """best_size is the smallest size reaching the highest mean loss."""
        folds = make_stratified_folds(interaction_view.outcomes, 3, seed=5)
        oracle = ExhaustiveModelSearch(order=[1, 2], min_cell_size=5, max_results=4)
        result = select_ensemble_size(interaction_view, folds, 4, oracle=oracle)
        mean = result.mean_loss.to_numpy()
        assert result.best_size == int(np.flatnonzero(mean == mean.max())[0]) + 1
        assert result.mean_loss.name == "mean_cv_loss"

    def test_thread_pool_matches_sequential(self, interaction_view):
        """Running folds on threads gives the same table."""
        folds = make_stratified_folds(interaction_view.outcomes, 3, seed=2)
        oracle = ExhaustiveModelSearch(order=[2], min_cell_size=5, max_results=3)
        sequential = select_ensemble_size(interaction_view, folds, 3, oracle=oracle)
        threaded = select_ensemble_size(interaction_view, folds, 3, oracle=oracle, n_workers=3)
        np.testing.assert_array_equal(
            sequential.loss_table.to_numpy(), threaded.loss_table.to_numpy()
        )

    def test_short_model_list_carried_forward(self, ten_observations):
        """Sizes beyond the oracle's model count reuse its largest ensemble."""

        def one_model(view):
            return _small_oracle(view)[:1]

        result = select_ensemble_size(ten_observations, TEN_FOLDS, 3, oracle=one_model)
        table = result.loss_table
        np.testing.assert_array_equal(table[2].to_numpy(), table[1].to_numpy())
        np.testing.assert_array_equal(table[3].to_numpy(), table[1].to_numpy())
        assert result.best_size == 1

    def test_empty_oracle(self, ten_observations):
        """An oracle returning no models scores the global-mean prediction."""
        result = select_ensemble_size(
            ten_observations, TEN_FOLDS, 2, oracle=lambda view: RankedModelSet()
        )
        np.testing.assert_allclose(result.loss_table.to_numpy(), 0.5)

    def test_long_format(self, ten_observations):
        """long_format lists one row per fold and size."""
        result = select_ensemble_size(ten_observations, TEN_FOLDS, 3, oracle=_small_oracle)
        long = result.long_format()
        assert list(long.columns) == ["fold", "top_results", "cv_loss"]
        assert len(long) == 6
        assert sorted(long["top_results"].unique().tolist()) == [1, 2, 3]

    def test_degenerate_fold(self, ten_observations):
        """A test split with one class raises before any model is fitted."""
        calls = []

        def oracle(view):
            calls.append(view)
            return _small_oracle(view)

        folds = np.array([1, 1, 1, 1, 1, 2, 2, 2, 2, 2])
        with pytest.raises(DegenerateFoldError) as excinfo:
            select_ensemble_size(ten_observations, folds, 3, oracle=oracle)
        assert excinfo.value.fold == 1
        assert calls == []

    def test_cancellation(self, ten_observations):
        """should_cancel aborts between folds."""
        polls = []

        def should_cancel():
            polls.append(1)
            return len(polls) > 1

        with pytest.raises(SelectionCancelledError) as excinfo:
            select_ensemble_size(
                ten_observations, TEN_FOLDS, 3, oracle=_small_oracle, should_cancel=should_cancel
            )
        assert excinfo.value.completed_folds == 1
        assert excinfo.value.total_folds == 2

    def test_invalid_arguments_reported_together(self, ten_observations):
        """Bad fold vector, size and metric are reported in one error."""
        with pytest.raises(InvalidArgumentError) as excinfo:
            select_ensemble_size(ten_observations, np.array([1, 2]), 0, loss_metric="rmse")
        assert len(excinfo.value.violations) == 3

    def test_requires_binary_outcome(self, ten_observations):
        """Continuous outcomes cannot be cross-validated with AUC/BAC."""
        from mbmdrc.data import ObservationView

        view = ObservationView(
            ten_observations.columns([0, 1]), np.linspace(0.0, 3.0, 10), ["A", "B"]
        )
        with pytest.raises(InvalidArgumentError, match="binary"):
            select_ensemble_size(view, TEN_FOLDS, 2, oracle=_small_oracle)
