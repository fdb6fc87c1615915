"""Tests for the individual, independence and FGM composite log-likelihoods."""

import math

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from fgm_copula.copulas import DistanceLinkFunctionCopulaExpression, SimpleCopulaExpression
from fgm_copula.data import HierarchicalSpatialDataStructure
from fgm_copula.likelihood import (
    INNER_ITERATION_STARTED,
    OPTIMIZATION_ENDED,
    OPTIMIZATION_STARTED,
    CacheState,
    CompositeLogLikelihood,
    FGMCompositeLogLikelihood,
    GLMIndividualLikelihood,
    LogLikelihood,
    OptimizerListener,
    ParameterLayout,
)

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _clustered_frame(seed=42, n_groups=12, group_size=3):
    """Groups of three plus one singleton group."""
    rng = np.random.default_rng(seed)
    n = n_groups * group_size
    plot = np.repeat(np.arange(n_groups), group_size)
    x1 = rng.uniform(-1.0, 1.0, size=n)
    u = rng.normal(scale=0.8, size=n_groups)[plot]
    y = (rng.uniform(size=n) < expit(-0.2 + 0.9 * x1 + u)).astype(int)
    frame = pd.DataFrame(
        {
            "plot": plot,
            "x1": x1,
            "y": y,
            "east": rng.uniform(0.0, 6.0, size=n),
            "north": rng.uniform(0.0, 6.0, size=n),
        }
    )
    singleton = pd.DataFrame(
        {"plot": [n_groups], "x1": [0.3], "y": [1], "east": [1.0], "north": [1.0]}
    )
    return pd.concat([frame, singleton], ignore_index=True)


def _design(frame):
    return np.column_stack([np.ones(len(frame)), frame["x1"].to_numpy()])


def _fgm(frame, copula, beta=(-0.2, 0.6), link="logit"):
    data = HierarchicalSpatialDataStructure(frame)
    copula.initialize(None, data)
    individual = GLMIndividualLikelihood(_design(frame), frame["y"].to_numpy(), link)
    individual.set_parameters(list(beta))
    return FGMCompositeLogLikelihood(CompositeLogLikelihood(individual), copula, data)


def _value_at(llk, theta):
    llk.set_parameters(theta)
    llk.invalidate_all()
    return llk.get_value()


def _gradient_at(llk, theta):
    llk.set_parameters(theta)
    llk.invalidate_all()
    return llk.get_gradient()


def _numeric_gradient(llk, theta, h=1e-6):
    theta = np.asarray(theta, dtype=float)
    out = np.empty(theta.size)
    for k in range(theta.size):
        step = np.zeros(theta.size)
        step[k] = h
        out[k] = (_value_at(llk, theta + step) - _value_at(llk, theta - step)) / (2 * h)
    llk.set_parameters(theta)
    llk.invalidate_all()
    return out


def _numeric_hessian(llk, theta, h=1e-6):
    theta = np.asarray(theta, dtype=float)
    out = np.empty((theta.size, theta.size))
    for k in range(theta.size):
        step = np.zeros(theta.size)
        step[k] = h
        out[:, k] = (_gradient_at(llk, theta + step) - _gradient_at(llk, theta - step)) / (
            2 * h
        )
    llk.set_parameters(theta)
    llk.invalidate_all()
    return out


@pytest.fixture()
def frame():
    return _clustered_frame()


@pytest.fixture()
def simple_llk(frame):
    return _fgm(frame, SimpleCopulaExpression(0.3, "plot"))


@pytest.fixture()
def distance_llk(frame):
    copula = DistanceLinkFunctionCopulaExpression(
        "log", "plot", "east + north", -1.5, -0.3, intercept=True
    )
    return _fgm(frame, copula)


# ------------------------------------------------------------------ #
# GLMIndividualLikelihood
# ------------------------------------------------------------------ #


class TestGLMIndividualLikelihood:
    def test_value_is_probability_of_observed_outcome(self):
        X = np.array([[1.0, 0.5], [1.0, -0.5]])
        individual = GLMIndividualLikelihood(X, [1, 0], "logit")
        individual.set_parameters([0.2, 1.0])
        p = expit(X @ np.array([0.2, 1.0]))
        individual.set_observation(0)
        assert individual.get_value() == pytest.approx(p[0])
        individual.set_observation(1)
        assert individual.get_value() == pytest.approx(1.0 - p[1])
        assert individual.get_y() == 0.0

    @pytest.mark.parametrize("link", ["logit", "log", "cloglog"])
    def test_derivatives_match_finite_differences(self, link):
        X = np.array([[1.0, 0.4], [1.0, -0.8], [1.0, 0.1]])
        individual = GLMIndividualLikelihood(X, [1, 0, 1], link)
        beta = np.array([-1.0, 0.3])
        h = 1e-6
        individual.set_parameters(beta)
        L, dL, d2L = individual.evaluate()
        numeric_d1 = np.empty_like(dL)
        numeric_d2 = np.empty_like(d2L)
        for k in range(2):
            step = np.zeros(2)
            step[k] = h
            individual.set_parameters(beta + step)
            L_up, dL_up, _ = individual.evaluate()
            individual.set_parameters(beta - step)
            L_down, dL_down, _ = individual.evaluate()
            numeric_d1[:, k] = (L_up - L_down) / (2 * h)
            numeric_d2[:, :, k] = (dL_up - dL_down) / (2 * h)
        np.testing.assert_allclose(dL, numeric_d1, rtol=1e-5, atol=1e-9)
        np.testing.assert_allclose(d2L, numeric_d2, rtol=1e-5, atol=1e-8)

    def test_single_observation_matches_vectorised(self):
        X = np.array([[1.0, 0.4], [1.0, -0.8]])
        individual = GLMIndividualLikelihood(X, [1, 0])
        individual.set_parameters([0.1, -0.2])
        L, dL, d2L = individual.evaluate()
        individual.set_observation(1)
        assert individual.get_value() == pytest.approx(L[1])
        np.testing.assert_allclose(individual.get_gradient(), dL[1])
        np.testing.assert_allclose(individual.get_hessian(), d2L[1])

    def test_set_parameters_none_resets(self):
        individual = GLMIndividualLikelihood(np.ones((2, 1)), [1, 0])
        individual.set_parameters([3.0])
        individual.set_parameters(None)
        np.testing.assert_array_equal(individual.get_parameters(), [0.0])

    def test_non_binary_response_raises(self):
        with pytest.raises(ValueError, match="binary"):
            GLMIndividualLikelihood(np.ones((2, 1)), [1, 2])

    def test_shape_mismatch_raises(self):
        with pytest.raises(ValueError, match="observations"):
            GLMIndividualLikelihood(np.ones((3, 1)), [1, 0])

    def test_observation_out_of_range_raises(self):
        individual = GLMIndividualLikelihood(np.ones((2, 1)), [1, 0])
        with pytest.raises(IndexError):
            individual.set_observation(2)


# ------------------------------------------------------------------ #
# CompositeLogLikelihood
# ------------------------------------------------------------------ #


class TestCompositeLogLikelihood:
    def test_value(self, frame):
        individual = GLMIndividualLikelihood(_design(frame), frame["y"].to_numpy())
        individual.set_parameters([0.1, 0.5])
        p = individual.predictions()
        y = frame["y"].to_numpy()
        expected = np.sum(y * np.log(p) + (1 - y) * np.log(1 - p))
        assert CompositeLogLikelihood(individual).get_value() == pytest.approx(expected)

    def test_gradient_and_hessian(self, frame):
        individual = GLMIndividualLikelihood(_design(frame), frame["y"].to_numpy())
        llk = CompositeLogLikelihood(individual)
        theta = np.array([0.1, 0.5])
        h = 1e-6
        llk.set_parameters(theta)
        gradient = llk.get_gradient()
        hessian = llk.get_hessian()
        numeric = np.empty(2)
        for k in range(2):
            step = np.zeros(2)
            step[k] = h
            llk.set_parameters(theta + step)
            up = llk.get_value()
            llk.set_parameters(theta - step)
            down = llk.get_value()
            numeric[k] = (up - down) / (2 * h)
        np.testing.assert_allclose(gradient, numeric, rtol=1e-5)
        # Logistic regression Hessian: -X' W X.
        p = expit(_design(frame) @ theta)
        X = _design(frame)
        np.testing.assert_allclose(hessian, -(X.T * (p * (1 - p))) @ X, rtol=1e-8)

    def test_satisfies_protocol(self, frame):
        individual = GLMIndividualLikelihood(_design(frame), frame["y"].to_numpy())
        assert isinstance(CompositeLogLikelihood(individual), LogLikelihood)


# ------------------------------------------------------------------ #
# ParameterLayout
# ------------------------------------------------------------------ #


class TestParameterLayout:
    def test_locate(self):
        layout = ParameterLayout(3, 2)
        assert layout.total == 5
        assert layout.locate(0) == ("marginal", 0)
        assert layout.locate(2) == ("marginal", 2)
        assert layout.locate(3) == ("copula", 0)
        assert layout.locate(4) == ("copula", 1)

    @pytest.mark.parametrize("index", [-1, 5])
    def test_locate_out_of_range(self, index):
        with pytest.raises(IndexError):
            ParameterLayout(3, 2).locate(index)

    def test_split_and_stack(self):
        layout = ParameterLayout(2, 1)
        marginal, copula = layout.split([1.0, 2.0, 3.0])
        np.testing.assert_array_equal(marginal, [1.0, 2.0])
        np.testing.assert_array_equal(copula, [3.0])
        np.testing.assert_array_equal(layout.stack(marginal, copula), [1.0, 2.0, 3.0])

    def test_split_wrong_length(self):
        with pytest.raises(ValueError, match="Expected 3"):
            ParameterLayout(2, 1).split([1.0, 2.0])

    def test_stack_wrong_lengths(self):
        with pytest.raises(ValueError):
            ParameterLayout(2, 1).stack([1.0], [2.0, 3.0])


# ------------------------------------------------------------------ #
# FGMCompositeLogLikelihood: derivatives
# ------------------------------------------------------------------ #


class TestFGMDerivatives:
    def test_simple_copula_gradient(self, simple_llk):
        theta = simple_llk.get_parameters()
        np.testing.assert_allclose(
            simple_llk.get_gradient(), _numeric_gradient(simple_llk, theta),
            rtol=1e-5, atol=1e-6,
        )

    def test_simple_copula_hessian(self, simple_llk):
        theta = simple_llk.get_parameters()
        np.testing.assert_allclose(
            simple_llk.get_hessian(), _numeric_hessian(simple_llk, theta),
            rtol=1e-4, atol=1e-5,
        )

    def test_distance_copula_gradient(self, distance_llk):
        theta = distance_llk.get_parameters()
        np.testing.assert_allclose(
            distance_llk.get_gradient(), _numeric_gradient(distance_llk, theta),
            rtol=1e-5, atol=1e-6,
        )

    def test_distance_copula_hessian(self, distance_llk):
        theta = distance_llk.get_parameters()
        np.testing.assert_allclose(
            distance_llk.get_hessian(), _numeric_hessian(distance_llk, theta),
            rtol=1e-4, atol=1e-5,
        )

    def test_hessian_is_symmetric(self, distance_llk):
        hessian = distance_llk.get_hessian()
        np.testing.assert_allclose(hessian, hessian.T, atol=1e-12)

    def test_zero_copula_reduces_to_independence(self, frame):
        llk = _fgm(frame, SimpleCopulaExpression(0.0, "plot"))
        assert llk.get_value() == pytest.approx(llk.marginal.get_value())
        np.testing.assert_allclose(llk.get_gradient()[:2], llk.marginal.get_gradient())

    def test_value_decomposition(self, simple_llk):
        terms = simple_llk.get_additional_terms()
        expected = simple_llk.marginal.get_value() + sum(math.log(t) for t in terms.values())
        assert simple_llk.get_value() == pytest.approx(expected)


# ------------------------------------------------------------------ #
# FGMCompositeLogLikelihood: cache
# ------------------------------------------------------------------ #


class TestFGMCache:
    def test_all_tiers_start_stale(self, simple_llk):
        assert set(simple_llk.cache_state.values()) == {CacheState.STALE}

    def test_repeated_value_is_identical_and_computed_once(self, simple_llk):
        first = simple_llk.get_value()
        second = simple_llk.get_value()
        assert first == second
        assert simple_llk.recompute_counts["value"] == 1
        assert simple_llk.recompute_counts["additional_value"] == 1

    def test_value_does_not_compute_gradient(self, simple_llk):
        simple_llk.get_value()
        assert simple_llk.cache_state["gradient"] is CacheState.STALE
        assert simple_llk.cache_state["additional_gradient"] is CacheState.STALE
        assert simple_llk.recompute_counts["gradient"] == 0

    def test_hessian_computes_gradient_pieces_first(self, simple_llk):
        simple_llk.get_hessian()
        assert simple_llk.cache_state["additional_gradient"] is CacheState.FRESH
        assert simple_llk.cache_state["additional_value"] is CacheState.FRESH
        assert simple_llk.cache_state["gradient"] is CacheState.STALE
        simple_llk.get_gradient()
        assert simple_llk.recompute_counts["additional_gradient"] == 1

    @pytest.mark.parametrize("action", [OPTIMIZATION_STARTED, INNER_ITERATION_STARTED])
    def test_optimizer_events_invalidate_everything(self, simple_llk, action):
        simple_llk.get_value()
        simple_llk.get_gradient()
        simple_llk.get_hessian()
        simple_llk.optimizer_did_this(action)
        assert set(simple_llk.cache_state.values()) == {CacheState.STALE}
        simple_llk.get_value()
        simple_llk.get_gradient()
        simple_llk.get_hessian()
        for tier in ("value", "gradient", "hessian", "additional_value"):
            assert simple_llk.recompute_counts[tier] == 2

    @pytest.mark.parametrize("action", [OPTIMIZATION_ENDED, "line search failed"])
    def test_other_events_keep_cache(self, simple_llk, action):
        simple_llk.get_value()
        simple_llk.optimizer_did_this(action)
        assert simple_llk.cache_state["value"] is CacheState.FRESH

    def test_new_parameters_seen_after_invalidation(self, simple_llk):
        before = simple_llk.get_value()
        simple_llk.set_parameter_value(2, -0.3)
        assert simple_llk.get_value() == before
        simple_llk.invalidate_all()
        assert simple_llk.get_value() != before

    def test_reset_alias(self, simple_llk):
        simple_llk.get_value()
        simple_llk.reset()
        assert simple_llk.cache_state["value"] is CacheState.STALE

    def test_is_optimizer_listener(self, simple_llk):
        assert isinstance(simple_llk, OptimizerListener)

    def test_getters_return_copies(self, simple_llk):
        simple_llk.get_gradient()[0] = 1e9
        assert simple_llk.get_gradient()[0] != 1e9


# ------------------------------------------------------------------ #
# FGMCompositeLogLikelihood: parameters
# ------------------------------------------------------------------ #


class TestFGMParameters:
    def test_round_trip_every_index(self, distance_llk):
        for index in range(distance_llk.get_number_of_parameters()):
            distance_llk.set_parameter_value(index, 0.125 * (index + 1))
            assert distance_llk.get_parameter_value(index) == 0.125 * (index + 1)

    def test_concatenation_order(self, distance_llk):
        np.testing.assert_array_equal(
            distance_llk.get_parameters(),
            np.concatenate(
                [distance_llk.marginal.get_parameters(), distance_llk.copula.get_beta()]
            ),
        )

    def test_routing(self, distance_llk):
        distance_llk.set_parameter_value(1, 0.7)
        distance_llk.set_parameter_value(3, -0.05)
        assert distance_llk.marginal.get_parameter_value(1) == 0.7
        assert distance_llk.copula.get_parameter_value(1) == -0.05

    def test_out_of_range_raises(self, distance_llk):
        with pytest.raises(IndexError):
            distance_llk.get_parameter_value(4)

    def test_bounds_use_global_indices(self, simple_llk):
        bounds = simple_llk.get_bounds()
        assert list(bounds) == [2]
        assert bounds[2].interval == (-1.0, 1.0)


# ------------------------------------------------------------------ #
# FGMCompositeLogLikelihood: special groups and pairs
# ------------------------------------------------------------------ #


def _pair_llk(y, c=0.4):
    """Intercept-only model at p = 0.5 with one two-observation group."""
    frame = pd.DataFrame({"plot": [1, 1], "y": y})
    data = HierarchicalSpatialDataStructure(frame)
    copula = SimpleCopulaExpression(c, "plot")
    copula.initialize(None, data)
    individual = GLMIndividualLikelihood(np.ones((2, 1)), y)
    return FGMCompositeLogLikelihood(CompositeLogLikelihood(individual), copula, data)


class TestSignRule:
    def test_discordant_pair_subtracts(self):
        assert _pair_llk([1, 0]).get_additional_terms()["1"] == pytest.approx(0.9)

    def test_discordant_pair_order_irrelevant(self):
        assert _pair_llk([0, 1]).get_additional_terms()["1"] == pytest.approx(0.9)

    @pytest.mark.parametrize("y", [[1, 1], [0, 0]])
    def test_concordant_pair_adds(self, y):
        assert _pair_llk(y).get_additional_terms()["1"] == pytest.approx(1.1)


class TestDegenerateGroup:
    def test_singleton_contributes_nothing(self, simple_llk, frame):
        key = str(frame["plot"].iloc[-1])
        simple_llk.get_hessian()
        assert simple_llk.get_additional_terms()[key] == 1.0
        np.testing.assert_array_equal(simple_llk._additional_gradient[key], np.zeros(3))
        np.testing.assert_array_equal(simple_llk._additional_hessian[key], np.zeros((3, 3)))


class TestDistanceShortCircuit:
    def test_unavailable_distance_equals_removed_pair(self, frame):
        """An observation without coordinates behaves like its own group."""
        with_missing = frame.copy()
        with_missing.loc[0, "east"] = np.nan
        separated = with_missing.copy()
        separated.loc[0, "plot"] = 1000

        def build(df):
            copula = DistanceLinkFunctionCopulaExpression(
                "log", "plot", "east + north", -1.5, -0.3, intercept=True
            )
            return _fgm(df, copula)

        a = build(with_missing)
        b = build(separated)
        assert a.get_value() == pytest.approx(b.get_value(), rel=1e-12)
        np.testing.assert_allclose(a.get_gradient(), b.get_gradient(), rtol=1e-10, atol=1e-10)
        np.testing.assert_allclose(a.get_hessian(), b.get_hessian(), rtol=1e-10, atol=1e-10)

    def test_missing_pair_is_skipped(self, frame):
        with_missing = frame.copy()
        with_missing.loc[0, "east"] = np.nan
        copula = DistanceLinkFunctionCopulaExpression(
            "log", "plot", "east + north", -1.5, -0.3, intercept=True
        )
        llk = _fgm(with_missing, copula)
        assert not copula.set_x(0, 1)
        assert copula.set_x(1, 2)
        assert np.isfinite(llk.get_value())
