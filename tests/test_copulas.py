"""Tests for the copula expressions and their registry."""

import math

import numpy as np
import pandas as pd
import pytest

from fgm_copula._exceptions import StatisticalDataError
from fgm_copula.copulas import (
    CopulaEvaluation,
    CopulaExpression,
    DistanceLinkFunctionCopulaExpression,
    ParameterBound,
    SimpleCopulaExpression,
    SimpleLogisticCopulaExpression,
    register_copula,
    resolve_copula,
)
from fgm_copula.data import HierarchicalDataStructure, HierarchicalSpatialDataStructure


@pytest.fixture()
def frame():
    return pd.DataFrame(
        {
            "plot": [1, 1, 1, 2, 2],
            "x": [0.0, 3.0, np.nan, 0.0, 1.0],
            "y": [0.0, 4.0, 1.0, 0.0, 0.0],
            "t": [0.0, 1.0, 2.0, 0.0, 5.0],
        }
    )


@pytest.fixture()
def spatial(frame):
    return HierarchicalSpatialDataStructure(frame)


# ------------------------------------------------------------------ #
# ParameterBound
# ------------------------------------------------------------------ #


class TestParameterBound:
    def test_interval_open_sides(self):
        assert ParameterBound().interval == (-math.inf, math.inf)

    def test_contains(self):
        bound = ParameterBound(-1.0, 1.0)
        assert bound.contains(1.0)
        assert bound.contains(-1.0)
        assert not bound.contains(1.0001)

    def test_inverted_raises(self):
        with pytest.raises(ValueError, match="exceeds"):
            ParameterBound(2.0, 1.0)


# ------------------------------------------------------------------ #
# Constant copulas
# ------------------------------------------------------------------ #


class TestSimpleCopulaExpression:
    def test_bound_declared_on_initialize(self, spatial):
        copula = SimpleCopulaExpression(0.2, "plot")
        assert copula.get_bounds() == {}
        copula.initialize(None, spatial)
        assert copula.get_bounds()[0].interval == (-1.0, 1.0)

    def test_initialize_registers_levels(self, spatial):
        SimpleCopulaExpression(0.2, "plot").initialize(None, spatial)
        assert spatial.hierarchical_levels == ["plot"]

    def test_missing_level_raises(self, spatial):
        with pytest.raises(StatisticalDataError):
            SimpleCopulaExpression(0.2, "stand").initialize(None, spatial)

    def test_value_is_parameter(self, spatial):
        copula = SimpleCopulaExpression(0.2, "plot")
        copula.initialize(None, spatial)
        evaluation = copula.evaluate_pair(0, 1)
        assert evaluation.value == pytest.approx(0.2)
        np.testing.assert_array_equal(evaluation.gradient, [1.0])
        np.testing.assert_array_equal(evaluation.hessian, [[0.0]])

    def test_set_x_always_succeeds(self, spatial):
        copula = SimpleCopulaExpression(-0.3, "plot")
        copula.initialize(None, spatial)
        assert copula.set_x(0, 2)
        assert copula.get_value() == pytest.approx(-0.3)

    def test_number_of_parameters(self):
        assert SimpleCopulaExpression(0.0, "plot").get_number_of_parameters() == 1


class TestSimpleLogisticCopulaExpression:
    def test_value_in_unit_interval(self, spatial):
        copula = SimpleLogisticCopulaExpression(0.0, "plot")
        copula.initialize(None, spatial)
        assert copula.evaluate_pair(0, 1).value == pytest.approx(0.5)

    def test_unbounded(self, spatial):
        copula = SimpleLogisticCopulaExpression(3.0, "plot")
        copula.initialize(None, spatial)
        assert copula.get_bounds() == {}

    def test_derivatives(self, spatial):
        copula = SimpleLogisticCopulaExpression(0.7, "plot")
        copula.initialize(None, spatial)
        evaluation = copula.evaluate(np.ones(1))
        p = 1.0 / (1.0 + math.exp(-0.7))
        assert evaluation.gradient[0] == pytest.approx(p * (1 - p))
        assert evaluation.hessian[0, 0] == pytest.approx(p * (1 - p) * (1 - 2 * p))


# ------------------------------------------------------------------ #
# Distance copula
# ------------------------------------------------------------------ #


class TestDistanceLinkFunctionCopulaExpression:
    def test_log_link_value(self, spatial):
        copula = DistanceLinkFunctionCopulaExpression("log", "plot", "x + y", -0.2)
        copula.initialize(None, spatial)
        assert copula.evaluate_pair(0, 1).value == pytest.approx(math.exp(-0.2 * 5.0))

    def test_pair_covariates_are_distances(self, spatial):
        copula = DistanceLinkFunctionCopulaExpression("log", "plot", "x + y, t", -0.2, -0.1)
        copula.initialize(None, spatial)
        np.testing.assert_allclose(copula.pair_covariates(0, 1), [5.0, 1.0])

    def test_intercept_prepends_constant(self, spatial):
        copula = DistanceLinkFunctionCopulaExpression(
            "log", "plot", "x + y", -1.0, -0.2, intercept=True
        )
        copula.initialize(None, spatial)
        np.testing.assert_allclose(copula.pair_covariates(0, 1), [1.0, 5.0])
        assert copula.evaluate_pair(0, 1).value == pytest.approx(math.exp(-2.0))

    def test_missing_distance_skips_pair(self, spatial):
        copula = DistanceLinkFunctionCopulaExpression("log", "plot", "x + y", -0.2)
        copula.initialize(None, spatial)
        assert copula.pair_covariates(0, 2) is None
        assert copula.evaluate_pair(0, 2) is None

    def test_different_groups_skip_pair(self, spatial):
        copula = DistanceLinkFunctionCopulaExpression("log", "plot", "x + y", -0.2)
        copula.initialize(None, spatial)
        assert copula.pair_covariates(1, 3) is None

    def test_failed_set_x_keeps_previous_slot(self, spatial):
        copula = DistanceLinkFunctionCopulaExpression("log", "plot", "x + y", -0.2)
        copula.initialize(None, spatial)
        assert copula.set_x(3, 4)
        assert not copula.set_x(0, 2)
        assert copula.get_value() == pytest.approx(math.exp(-0.2))

    def test_getter_before_set_x_raises(self, spatial):
        copula = DistanceLinkFunctionCopulaExpression("log", "plot", "x + y", -0.2)
        copula.initialize(None, spatial)
        with pytest.raises(RuntimeError, match="set_x"):
            copula.get_value()

    def test_not_strictly_positive_rescales(self, spatial):
        copula = DistanceLinkFunctionCopulaExpression(
            "logit", "plot", "x + y", 0.0, strictly_positive=False
        )
        copula.initialize(None, spatial)
        evaluation = copula.evaluate(np.array([2.0]))
        assert evaluation.value == pytest.approx(0.0)
        assert evaluation.gradient[0] == pytest.approx(2.0 * 0.25 * 2.0)

    def test_wrong_starting_value_count_raises(self):
        with pytest.raises(ValueError, match="inconsistent"):
            DistanceLinkFunctionCopulaExpression("log", "plot", "x + y, t", -0.2)

    def test_intercept_requires_extra_value(self):
        with pytest.raises(ValueError, match="inconsistent"):
            DistanceLinkFunctionCopulaExpression("log", "plot", "x", -0.2, intercept=True)

    def test_non_spatial_data_raises(self, frame):
        copula = DistanceLinkFunctionCopulaExpression("log", "plot", "x + y", -0.2)
        with pytest.raises(StatisticalDataError, match="spatialized"):
            copula.initialize(None, HierarchicalDataStructure(frame))

    def test_missing_distance_field_raises(self, spatial):
        copula = DistanceLinkFunctionCopulaExpression("log", "plot", "x + z", -0.2)
        with pytest.raises(StatisticalDataError):
            copula.initialize(None, spatial)

    def test_uninitialized_raises(self):
        copula = DistanceLinkFunctionCopulaExpression("log", "plot", "x", -0.2)
        with pytest.raises(RuntimeError, match="initialized"):
            copula.pair_covariates(0, 1)

    def test_distance_limit(self, spatial):
        copula = DistanceLinkFunctionCopulaExpression(
            "log", "plot", "x + y", -0.2, distance_limits=[2.0]
        )
        copula.initialize(None, spatial)
        assert copula.pair_covariates(0, 1) is None
        assert copula.pair_covariates(3, 4) is not None

    @pytest.mark.parametrize("link", ["log", "logit", "cloglog"])
    def test_gradient_and_hessian_match_finite_differences(self, spatial, link):
        copula = DistanceLinkFunctionCopulaExpression(
            link, "plot", "x + y, t", -0.3, 0.2, intercept=False, strictly_positive=False
        )
        copula.initialize(None, spatial)
        x = copula.pair_covariates(0, 1)
        beta = copula.get_beta()
        evaluation = copula.evaluate(x)
        h = 1e-6
        numeric_gradient = np.empty(2)
        numeric_hessian = np.empty((2, 2))
        for k in range(2):
            step = np.zeros(2)
            step[k] = h
            copula.set_beta(beta + step)
            up = copula.evaluate(x)
            copula.set_beta(beta - step)
            down = copula.evaluate(x)
            numeric_gradient[k] = (up.value - down.value) / (2 * h)
            numeric_hessian[:, k] = (up.gradient - down.gradient) / (2 * h)
        copula.set_beta(beta)
        np.testing.assert_allclose(evaluation.gradient, numeric_gradient, rtol=1e-5, atol=1e-8)
        np.testing.assert_allclose(evaluation.hessian, numeric_hessian, rtol=1e-5, atol=1e-8)


# ------------------------------------------------------------------ #
# Parameter accessors
# ------------------------------------------------------------------ #


class TestParameters:
    def test_set_beta_round_trip(self):
        copula = DistanceLinkFunctionCopulaExpression("log", "plot", "x, t", -0.2, -0.1)
        copula.set_beta([0.5, 0.25])
        np.testing.assert_array_equal(copula.get_beta(), [0.5, 0.25])

    def test_get_beta_is_a_copy(self):
        copula = SimpleCopulaExpression(0.1, "plot")
        copula.get_beta()[0] = 9.0
        assert copula.get_parameter_value(0) == pytest.approx(0.1)

    def test_set_beta_wrong_length_raises(self):
        with pytest.raises(ValueError, match="expects 1"):
            SimpleCopulaExpression(0.1, "plot").set_beta([0.1, 0.2])

    def test_set_parameter_value(self):
        copula = SimpleCopulaExpression(0.1, "plot")
        copula.set_parameter_value(0, -0.4)
        assert copula.get_parameter_value(0) == -0.4

    def test_set_bounds_out_of_range_raises(self):
        with pytest.raises(IndexError):
            SimpleCopulaExpression(0.1, "plot").set_bounds(1, ParameterBound(0, 1))


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #


class _ConstantHalf(CopulaExpression):
    name = "half"

    def __init__(self, hierarchical_levels):
        super().__init__(hierarchical_levels, [0.5])

    def pair_covariates(self, i, j):
        return np.ones(1)

    def evaluate(self, x):
        return CopulaEvaluation(0.5, np.zeros(1), np.zeros((1, 1)))


class TestRegistry:
    def test_builtin_names(self):
        assert isinstance(resolve_copula("simple", 0.1, "plot"), SimpleCopulaExpression)
        assert isinstance(
            resolve_copula("logistic", 0.1, "plot"), SimpleLogisticCopulaExpression
        )
        assert isinstance(
            resolve_copula("distance", "log", "plot", "x", -0.1),
            DistanceLinkFunctionCopulaExpression,
        )

    def test_instance_passthrough(self):
        copula = SimpleCopulaExpression(0.1, "plot")
        assert resolve_copula(copula) is copula

    def test_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown copula"):
            resolve_copula("gaussian")

    def test_register_custom(self):
        register_copula("half", _ConstantHalf)
        assert resolve_copula("half", "plot").evaluate(np.ones(1)).value == 0.5

    def test_register_non_subclass_raises(self):
        with pytest.raises(TypeError):
            register_copula("bad", dict)
