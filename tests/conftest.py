"""Shared pytest fixtures for all test modules."""

from typing import List

import numpy as np
import pandas as pd
import pytest

from mbmdrc.data import FeatureSchema, FeatureSpec, ObservationView
from mbmdrc.models import RankedModel, RankedModelSet


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast, isolated unit tests")


def _interaction_rows() -> List[dict]:
    """
    Nine genotype cells of SNP1 x SNP2 with 20 observations each.

    (2, 2) is all cases, (0, 0) all controls, every other cell half and
    half; SNP3 cycles 0/1/2 inside each cell and carries no signal.
    """
    rows = []
    for g1 in range(3):
        for g2 in range(3):
            for i in range(20):
                if (g1, g2) == (2, 2):
                    y = 1
                elif (g1, g2) == (0, 0):
                    y = 0
                else:
                    y = i % 2
                rows.append({"SNP1": g1, "SNP2": g2, "SNP3": i % 3, "status": y})
    return rows


@pytest.fixture
def interaction_frame() -> pd.DataFrame:
    """180 observations with a SNP1 x SNP2 interaction and a noise marker."""
    return pd.DataFrame(_interaction_rows())


@pytest.fixture
def interaction_view(interaction_frame) -> ObservationView:
    """ObservationView over ``interaction_frame``."""
    df = interaction_frame
    return ObservationView(
        df[["SNP1", "SNP2", "SNP3"]].to_numpy(),
        df["status"].to_numpy(),
        ["SNP1", "SNP2", "SNP3"],
    )


@pytest.fixture
def hlon_model() -> RankedModel:
    """One-marker model with four cells labelled H, L, O, N."""
    return RankedModel(
        features=(0,),
        schema=FeatureSchema((FeatureSpec("snp", (0, 1, 2, 3)),)),
        labels=np.array(["H", "L", "O", "N"]),
        predictions=np.array([0.9, 0.1, 0.5, 0.3]),
        n_rows=1,
        n_cells=4,
        statistic=12.5,
    )


@pytest.fixture
def small_model_set(interaction_view) -> RankedModelSet:
    """Top models of an exhaustive 1- and 2-way search on ``interaction_view``."""
    from mbmdrc.search import ExhaustiveModelSearch

    return ExhaustiveModelSearch(order=[1, 2], min_cell_size=5, max_results=6)(interaction_view)


@pytest.fixture
def ten_observations() -> ObservationView:
    """Ten observations, five per class, two three-level markers."""
    features = np.array(
        [
            [0, 0],
            [0, 1],
            [1, 2],
            [2, 2],
            [1, 0],
            [2, 1],
            [0, 2],
            [1, 1],
            [2, 0],
            [2, 2],
        ]
    )
    outcome = np.array([0, 0, 0, 0, 0, 1, 1, 1, 1, 1])
    return ObservationView(features, outcome, ["A", "B"])
