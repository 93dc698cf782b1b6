"""
Unit tests for the prefix-ensemble predictor.

Tests the single-model H/L/O/N example, agreement between all_sizes output
and fixed ensemble sizes, score and scoreprob aggregation, unknown-cell
handling and argument validation.
"""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from mbmdrc.data import FeatureSchema, FeatureSpec
from mbmdrc.errors import DimensionMismatchError, InvalidArgumentError
from mbmdrc.models import RankedModel, RankedModelSet
from mbmdrc.prediction import (
    SCOREPROB_CONSTANT,
    CumulativePredictions,
    FeatureEncoding,
    PredictionType,
    UnknownPolicy,
    model_predictions,
    predict,
    rescale_columns,
)


def _one_feature_model(name, labels, predictions, levels=None) -> RankedModel:
    levels = tuple(range(len(labels))) if levels is None else tuple(levels)
    return RankedModel(
        features=(0,),
        schema=FeatureSchema((FeatureSpec(name, levels),)),
        labels=np.array(labels),
        predictions=np.array(predictions, dtype=float),
        n_rows=1,
        n_cells=len(labels),
    )


# ---------------------------------------------------------------------------
# Single-model behaviour
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestSingleModel:
    """Tests for one model with cells labelled H, L, O and N."""

    def test_global_mean_for_uninformative_cells(self, hlon_model):
        """Samples in O and N cells get the global mean."""
        new_data = pd.DataFrame({"snp": [0, 1, 2, 3]})
        prob = predict(
            [hlon_model],
            new_data,
            type="prob",
            top_results=1,
            unknown_policy="global_mean",
            global_mean=0.4,
        )
        np.testing.assert_allclose(prob, [0.9, 0.1, 0.4, 0.4])

    def test_response_rounds_global_mean(self, hlon_model):
        """response for O and N samples is round(0.4) = 0."""
        new_data = pd.DataFrame({"snp": [0, 1, 2, 3]})
        response = predict(
            [hlon_model],
            new_data,
            type=PredictionType.RESPONSE,
            top_results=1,
            unknown_policy=UnknownPolicy.GLOBAL_MEAN,
            global_mean=0.4,
        )
        np.testing.assert_array_equal(response, [1, 0, 0, 0])

    def test_gap_policy_gives_nan(self, hlon_model):
        """Under the gap policy uninformative samples are NaN for prob."""
        new_data = pd.DataFrame({"snp": [0, 1, 2, 3]})
        prob = predict([hlon_model], new_data, type="prob", top_results=1)
        assert prob[0] == pytest.approx(0.9)
        assert prob[1] == pytest.approx(0.1)
        assert np.isnan(prob[2]) and np.isnan(prob[3])

    def test_score(self, hlon_model):
        """H contributes +1, L -1, O and N nothing."""
        new_data = pd.DataFrame({"snp": [0, 1, 2, 3]})
        score = predict([hlon_model], new_data, type="score", top_results=1)
        np.testing.assert_array_equal(score, [1, -1, 0, 0])

    def test_unseen_and_missing_genotypes_are_uninformative(self, hlon_model):
        """Codes absent from training and missing values never alias a cell."""
        new_data = pd.DataFrame({"snp": [7, np.nan, -9]})
        prob = predict(
            [hlon_model], new_data, type="prob", top_results=1,
            unknown_policy="global_mean", global_mean=0.4,
        )
        np.testing.assert_allclose(prob, [0.4, 0.4, 0.4])

    def test_schema_encoding_uses_training_levels(self):
        """Genotype values are matched to the stored levels, not their positions."""
        model = _one_feature_model("snp", ["L", "H"], [0.1, 0.9], levels=(1, 2))
        new_data = pd.DataFrame({"snp": [2, 2]})
        prob = predict([model], new_data, type="prob", top_results=1)
        np.testing.assert_allclose(prob, [0.9, 0.9])

    def test_positional_encoding_re_derives_codes(self):
        """POSITIONAL maps the smallest present value to the first cell."""
        model = _one_feature_model("snp", ["L", "H"], [0.1, 0.9], levels=(1, 2))
        new_data = pd.DataFrame({"snp": [2, 2]})
        prob = predict(
            [model], new_data, type="prob", top_results=1, encoding=FeatureEncoding.POSITIONAL
        )
        np.testing.assert_allclose(prob, [0.1, 0.1])

    def test_zero_models(self, hlon_model):
        """An empty prefix gives the unknown value, a zero score and 0.5 scoreprob."""
        new_data = pd.DataFrame({"snp": [0, 1]})
        models = RankedModelSet([hlon_model])
        kwargs = dict(top_results=0, unknown_policy="global_mean", global_mean=0.4)
        np.testing.assert_allclose(predict(models, new_data, type="prob", **kwargs), [0.4, 0.4])
        np.testing.assert_array_equal(predict(models, new_data, type="score", **kwargs), [0, 0])
        np.testing.assert_allclose(
            predict(models, new_data, type="scoreprob", **kwargs), [0.5, 0.5]
        )


# ---------------------------------------------------------------------------
# Ensembles
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestEnsemble:
    """Tests for multi-model aggregation."""

    @pytest.mark.parametrize("kind", ["response", "prob", "score", "scoreprob"])
    @pytest.mark.parametrize("policy", ["gap", "global_mean"])
    def test_all_sizes_column_equals_fixed_size(self, small_model_set, interaction_frame, kind, policy):
        """Column K of the all_sizes table equals the size-K prediction."""
        table = predict(
            small_model_set,
            interaction_frame,
            type=kind,
            all_sizes=True,
            unknown_policy=policy,
            global_mean=0.5,
        )
        assert list(table.columns) == list(range(1, len(small_model_set) + 1))
        for k in table.columns:
            fixed = predict(
                small_model_set,
                interaction_frame,
                type=kind,
                top_results=k,
                unknown_policy=policy,
                global_mean=0.5,
            )
            np.testing.assert_array_equal(table[k].to_numpy(), fixed)

    def test_all_sizes_keeps_index(self, small_model_set, interaction_frame):
        """The all_sizes table is indexed like the input data."""
        frame = interaction_frame.set_index(pd.Index([f"s{i}" for i in range(len(interaction_frame))]))
        table = predict(small_model_set, frame, type="prob", all_sizes=True)
        pd.testing.assert_index_equal(table.index, frame.index)
        assert table.columns.name == "top_results"

    def test_prob_averages_informative_models(self):
        """prob is the mean over models whose cell is informative."""
        first = _one_feature_model("a", ["H", "L"], [0.8, 0.2])
        second = _one_feature_model("b", ["H", "O"], [0.6, 0.5])
        new_data = pd.DataFrame({"a": [0, 1], "b": [0, 1]})
        prob = predict([first, second], new_data, type="prob", top_results=2)
        np.testing.assert_allclose(prob, [0.7, 0.2])

    def test_scoreprob_in_unit_interval(self, small_model_set, interaction_frame):
        """scoreprob lies in [0, 1] for every ensemble size."""
        table = predict(small_model_set, interaction_frame, type="scoreprob", all_sizes=True)
        values = table.to_numpy()
        assert np.all((values >= 0) & (values <= 1))
        assert not np.isnan(values).any()

    def test_scoreprob_constant_scores(self):
        """When every sample has the same score the result is the fixed constant."""
        model = _one_feature_model("a", ["H", "H"], [0.9, 0.8])
        new_data = pd.DataFrame({"a": [0, 1, 0]})
        result = predict([model], new_data, type="scoreprob", top_results=1)
        np.testing.assert_allclose(result, [SCOREPROB_CONSTANT] * 3)

    def test_rescale_columns(self):
        """Min-max scaling is applied per column."""
        scores = np.array([[0.0, 2.0], [2.0, 2.0], [1.0, 2.0]])
        np.testing.assert_allclose(rescale_columns(scores), [[0, 0.5], [1, 0.5], [0.5, 0.5]])

    def test_cumulative_leading_column(self):
        """Column 0 of every running sum is the empty ensemble."""
        cum = CumulativePredictions.from_matrix(np.array([[0.9, np.nan], [0.2, 0.4]]))
        np.testing.assert_allclose(cum.prob_sum, [[0, 0.9, 0.9], [0, 0.2, 0.6]])
        np.testing.assert_allclose(cum.informative, [[0, 1, 1], [0, 1, 2]])
        np.testing.assert_allclose(cum.score, [[0, 1, 1], [0, -1, -2]])

    def test_model_predictions_matrix(self, hlon_model):
        """model_predictions returns one column per model."""
        new_data = pd.DataFrame({"snp": [0, 2]})
        matrix = model_predictions([hlon_model, hlon_model], new_data)
        assert matrix.shape == (2, 2)
        np.testing.assert_allclose(matrix[:, 0], [0.9, 0.5])


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestPredictValidation:
    """Tests for argument validation and missing features."""

    def test_missing_feature_column(self, hlon_model):
        """A model feature absent from the data raises DimensionMismatchError."""
        with pytest.raises(DimensionMismatchError) as excinfo:
            predict([hlon_model], pd.DataFrame({"other": [0]}), top_results=1)
        assert excinfo.value.missing == ["snp"]

    def test_size_required(self, hlon_model):
        """Either top_results or all_sizes must be given."""
        with pytest.raises(InvalidArgumentError, match="top_results"):
            predict([hlon_model], pd.DataFrame({"snp": [0]}))

    def test_all_violations_reported(self, hlon_model):
        """Invalid type, size and policy are reported together."""
        with pytest.raises(InvalidArgumentError) as excinfo:
            predict(
                [hlon_model],
                pd.DataFrame({"snp": [0]}),
                type="odds",
                top_results=5,
                unknown_policy="zero",
            )
        assert len(excinfo.value.violations) == 3

    def test_missing_feature_reported_with_other_violations(self, hlon_model):
        """A missing column joins the other violations in one error."""
        with pytest.raises(InvalidArgumentError) as excinfo:
            predict([hlon_model], pd.DataFrame({"other": [0]}), type="odds", top_results=1)
        violations = excinfo.value.violations
        assert len(violations) == 2
        assert any("type" in v for v in violations)
        assert any("Missing covariate(s) in new data: snp" in v for v in violations)

    def test_models_must_be_ranked_models(self):
        """Arbitrary objects are rejected as models."""
        with pytest.raises(InvalidArgumentError, match="models"):
            predict(["not a model"], pd.DataFrame({"snp": [0]}), top_results=0)
