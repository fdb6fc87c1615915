"""Copula expressions: the dependence parameter of the FGM copula.

A copula expression turns a pair of observations into the FGM
dependence value ``c`` that scales the pairwise correction term, and
supplies the first and second derivatives of ``c`` with respect to its
own parameter vector θ.  Internally ``c`` is a function of a linear
predictor η = xᵀθ, where the covariate vector ``x`` is built for each
pair:

====================================  ============  =======================
Expression                            Parameters    Per-pair covariates
====================================  ============  =======================
:class:`SimpleCopulaExpression`       1, ∈ [−1, 1]  ``[1]``; c = η
:class:`SimpleLogisticCopulaExpression`  1          ``[1]``; c = logit⁻¹(η)
:class:`DistanceLinkFunctionCopulaExpression`  k    one distance per
                                                    dimension (optionally
                                                    preceded by ``1``);
                                                    c = g(η)
====================================  ============  =======================

Evaluation contract
~~~~~~~~~~~~~~~~~~~
The primary interface is pure: :meth:`CopulaExpression.pair_covariates`
returns the covariate vector for a pair, or ``None`` when the pair must
be skipped (a distance is unavailable), and
:meth:`CopulaExpression.evaluate` maps a covariate vector to a
:class:`CopulaEvaluation` carrying value, gradient and Hessian together.

The stateful ``set_x(i, j)`` / ``get_value()`` / ``get_gradient()`` /
``get_hessian()`` sequence is kept for callers written against that
contract.  It stores the covariates of the last successful ``set_x`` in
a single slot, so the getters must be read before the next ``set_x``.

Registry
~~~~~~~~
``resolve_copula("simple", 0.2, "plot")`` builds an expression from a
registered name; :func:`register_copula` adds new ones.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np

from ._exceptions import StatisticalDataError
from ._typing import VectorLike
from .data import (
    DistanceCalculator,
    HierarchicalDataStructure,
    HierarchicalSpatialDataStructure,
    parse_distance_fields,
    parse_hierarchical_levels,
)
from .links import LinkFunction, LinkType, resolve_link

if TYPE_CHECKING:
    from .model import FGMCopulaGLModel

_LOGIT = LinkFunction(LinkType.LOGIT)

# ------------------------------------------------------------------ #
# Value objects
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ParameterBound:
    """Closed interval constraint on one parameter.

    ``None`` on either side means unbounded.  Bounds are declarative:
    the optimizer consults them when it proposes a step.
    """

    lower: float | None = None
    upper: float | None = None

    def __post_init__(self) -> None:
        if self.lower is not None and self.upper is not None and self.lower > self.upper:
            msg = f"Invalid bound: lower {self.lower} exceeds upper {self.upper}."
            raise ValueError(msg)

    @property
    def interval(self) -> tuple[float, float]:
        """The bound as ``(lower, upper)`` with infinities for open sides."""
        lower = -math.inf if self.lower is None else float(self.lower)
        upper = math.inf if self.upper is None else float(self.upper)
        return lower, upper

    def contains(self, value: float) -> bool:
        lower, upper = self.interval
        return lower <= value <= upper


@dataclass(frozen=True)
class CopulaEvaluation:
    """Copula value with its derivatives with respect to θ."""

    value: float
    gradient: np.ndarray
    """Shape ``(k,)``."""

    hessian: np.ndarray
    """Shape ``(k, k)``."""


# ------------------------------------------------------------------ #
# Base expression
# ------------------------------------------------------------------ #


class CopulaExpression(ABC):
    """Parameterised dependence function over observation pairs.

    Args:
        hierarchical_levels: ``/``-delimited level specification
            (e.g. ``"stratum/plot"``).  Only pairs within the same
            finest-level group are considered dependent.
        beta: Starting values of the copula parameters.
    """

    name: ClassVar[str] = "copula"
    is_distance_based: ClassVar[bool] = False

    def __init__(self, hierarchical_levels: str | Sequence[str], beta: VectorLike) -> None:
        self.hierarchical_levels: list[str] = parse_hierarchical_levels(
            hierarchical_levels
        )
        self._beta = np.atleast_1d(np.asarray(beta, dtype=float)).copy()
        self._bounds: dict[int, ParameterBound] = {}
        self._x: np.ndarray | None = None
        self._data: HierarchicalDataStructure | None = None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(levels={'/'.join(self.hierarchical_levels)!r}, "
            f"beta={self._beta.tolist()})"
        )

    # ---- Parameters ------------------------------------------------

    def get_number_of_parameters(self) -> int:
        return int(self._beta.size)

    @property
    def n_parameters(self) -> int:
        return self.get_number_of_parameters()

    def get_beta(self) -> np.ndarray:
        return self._beta.copy()

    def set_beta(self, beta: VectorLike) -> None:
        beta = np.atleast_1d(np.asarray(beta, dtype=float))
        if beta.shape != self._beta.shape:
            msg = (
                f"{type(self).__name__} expects {self._beta.size} parameter(s), "
                f"got {beta.size}."
            )
            raise ValueError(msg)
        self._beta = beta.copy()

    def get_parameter_value(self, index: int) -> float:
        return float(self._beta[index])

    def set_parameter_value(self, index: int, value: float) -> None:
        self._beta[index] = float(value)

    def set_bounds(self, index: int, bound: ParameterBound) -> None:
        if not 0 <= index < self._beta.size:
            msg = f"Parameter index {index} is out of range for {self!r}."
            raise IndexError(msg)
        self._bounds[index] = bound

    def get_bounds(self) -> dict[int, ParameterBound]:
        return dict(self._bounds)

    # ---- Lifecycle -------------------------------------------------

    def initialize(
        self,
        model: FGMCopulaGLModel | None,
        data: HierarchicalDataStructure,
    ) -> None:
        """Bind the expression to the fitted data set.

        Registers the hierarchical levels with *data*.  Subclasses
        extend this to bind distance fields or declare bounds.

        Raises:
            StatisticalDataError: If a level is not a field of the
                data set.
        """
        data.set_hierarchical_structure_level(self.hierarchical_levels)
        self._data = data

    # ---- Pure evaluation -------------------------------------------

    @abstractmethod
    def pair_covariates(self, i: int, j: int) -> np.ndarray | None:
        """Covariate vector for the pair ``(i, j)``, or ``None`` to skip it."""

    @abstractmethod
    def evaluate(self, x: np.ndarray) -> CopulaEvaluation:
        """Value, gradient and Hessian at covariates *x* and the current θ."""

    def evaluate_pair(self, i: int, j: int) -> CopulaEvaluation | None:
        x = self.pair_covariates(i, j)
        if x is None:
            return None
        return self.evaluate(x)

    def _linear_predictor(self, x: np.ndarray) -> float:
        return float(x @ self._beta)

    # ---- Single-slot contract --------------------------------------

    def set_x(self, i: int, j: int) -> bool:
        """Load the covariates of pair ``(i, j)`` for the next getter calls.

        Returns:
            ``False`` when the pair must be skipped; the slot is then
            left unchanged.
        """
        x = self.pair_covariates(i, j)
        if x is None:
            return False
        self._x = x
        return True

    def _current(self) -> CopulaEvaluation:
        if self._x is None:
            msg = "set_x() must succeed before reading copula values."
            raise RuntimeError(msg)
        return self.evaluate(self._x)

    def get_value(self) -> float:
        return self._current().value

    def get_gradient(self) -> np.ndarray:
        return self._current().gradient

    def get_hessian(self) -> np.ndarray:
        return self._current().hessian


# ------------------------------------------------------------------ #
# Constant copulas
# ------------------------------------------------------------------ #


class SimpleCopulaExpression(CopulaExpression):
    """Constant dependence parameter, c = θ, bounded to [−1, 1].

    The FGM copula is only a valid joint distribution for
    −1 ≤ θ ≤ 1; the bound is declared during :meth:`initialize`.
    """

    name = "simple"

    _ONE = np.ones(1)

    def __init__(self, value: float, hierarchical_levels: str | Sequence[str]) -> None:
        super().__init__(hierarchical_levels, [value])

    def initialize(
        self,
        model: FGMCopulaGLModel | None,
        data: HierarchicalDataStructure,
    ) -> None:
        super().initialize(model, data)
        self.set_bounds(0, ParameterBound(-1.0, 1.0))

    def pair_covariates(self, i: int, j: int) -> np.ndarray:  # noqa: ARG002
        return self._ONE

    def evaluate(self, x: np.ndarray) -> CopulaEvaluation:
        return CopulaEvaluation(
            value=self._linear_predictor(x),
            gradient=np.array(x, dtype=float),
            hessian=np.zeros((x.size, x.size)),
        )


class SimpleLogisticCopulaExpression(CopulaExpression):
    """Constant dependence on the logistic scale, c = logit⁻¹(θ).

    Equivalent to :class:`SimpleCopulaExpression` with an unbounded
    parameter; the value always lies in (0, 1).
    """

    name = "logistic"

    _ONE = np.ones(1)

    def __init__(self, origin: float, hierarchical_levels: str | Sequence[str]) -> None:
        super().__init__(hierarchical_levels, [origin])

    def pair_covariates(self, i: int, j: int) -> np.ndarray:  # noqa: ARG002
        return self._ONE

    def evaluate(self, x: np.ndarray) -> CopulaEvaluation:
        g, g1, g2 = _LOGIT.derivatives(self._linear_predictor(x))
        return CopulaEvaluation(
            value=float(g),
            gradient=g1 * x,
            hessian=g2 * np.outer(x, x),
        )


# ------------------------------------------------------------------ #
# Distance copula
# ------------------------------------------------------------------ #


class DistanceLinkFunctionCopulaExpression(CopulaExpression):
    """Dependence that decays with the distance between observations.

    With the default log link and no intercept the value is
    ``exp(Σ_d distance_d · θ_d)``, so a negative θ makes dependence
    fade as observations get farther apart.

    Args:
        link: Link function name or instance (``"log"``, ``"logit"``,
            ``"cloglog"``).
        hierarchical_levels: ``/``-delimited level specification.
        distance_fields: ``,``-separated dimensions, each a
            ``+``-separated list of coordinate fields (e.g.
            ``"x + y, year"``).
        *beta: Starting values — one per dimension, plus one leading
            value when *intercept* is ``True``.
        intercept: Prepend a constant covariate to the linear predictor.
        strictly_positive: When ``False`` the value is rescaled to
            ``−1 + 2·g(η)`` so that negative dependence is reachable.
        distance_limits: Optional per-dimension maximum distance;
            farther pairs are skipped.
        distance_calculators: Optional per-dimension calculators.

    Raises:
        ValueError: If the number of starting values does not match
            the number of parameters implied by the configuration.
    """

    name = "distance"
    is_distance_based = True

    def __init__(
        self,
        link: str | LinkType | LinkFunction,
        hierarchical_levels: str | Sequence[str],
        distance_fields: str | Sequence[Sequence[str]],
        *beta: float,
        intercept: bool = False,
        strictly_positive: bool = True,
        distance_limits: Sequence[float] | None = None,
        distance_calculators: Sequence[DistanceCalculator] | None = None,
    ) -> None:
        self.distance_fields = parse_distance_fields(distance_fields)
        self.intercept = intercept
        self.strictly_positive = strictly_positive
        n_required = len(self.distance_fields) + (1 if intercept else 0)
        if len(beta) != n_required:
            msg = (
                "The number of parameters is inconsistent: expected "
                f"{n_required} but got {len(beta)}."
            )
            raise ValueError(msg)
        super().__init__(hierarchical_levels, list(beta))
        self.link = resolve_link(link)
        self.distance_limits = None if distance_limits is None else list(distance_limits)
        self.distance_calculators = (
            None if distance_calculators is None else list(distance_calculators)
        )
        self._offset = 1 if intercept else 0

    @property
    def n_distance_dimensions(self) -> int:
        return len(self.distance_fields)

    def initialize(
        self,
        model: FGMCopulaGLModel | None,
        data: HierarchicalDataStructure,
    ) -> None:
        """Bind hierarchical levels and distance fields.

        Raises:
            StatisticalDataError: If *data* is not spatial, or a level
                or distance field is missing.
        """
        if not isinstance(data, HierarchicalSpatialDataStructure):
            msg = "The data are not spatialized."
            raise StatisticalDataError(msg)
        super().initialize(model, data)
        data.set_distance_fields(self.distance_fields)
        if self.distance_calculators is not None:
            data.set_distance_calculators(*self.distance_calculators)
        data.set_distance_limits(self.distance_limits)

    def pair_covariates(self, i: int, j: int) -> np.ndarray | None:
        data = self._data
        if not isinstance(data, HierarchicalSpatialDataStructure):
            msg = f"{type(self).__name__} has not been initialized."
            raise RuntimeError(msg)
        x = np.empty(self._beta.size)
        if self.intercept:
            x[0] = 1.0
        for dimension in range(self.n_distance_dimensions):
            distance = data.get_distance(dimension, i, j)
            if math.isinf(distance):
                return None
            x[dimension + self._offset] = distance
        return x

    def evaluate(self, x: np.ndarray) -> CopulaEvaluation:
        g, g1, g2 = self.link.derivatives(self._linear_predictor(x))
        scale = 1.0 if self.strictly_positive else 2.0
        value = g if self.strictly_positive else -1.0 + 2.0 * g
        return CopulaEvaluation(
            value=float(value),
            gradient=scale * g1 * x,
            hessian=scale * g2 * np.outer(x, x),
        )


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #

_COPULAS: dict[str, type[CopulaExpression]] = {}
"""Registry mapping copula names to concrete CopulaExpression classes."""


def register_copula(name: str, cls: type[CopulaExpression]) -> None:
    """Register a concrete ``CopulaExpression`` subclass under *name*.

    Raises:
        TypeError: If *cls* is not a ``CopulaExpression`` subclass.
    """
    if not (isinstance(cls, type) and issubclass(cls, CopulaExpression)):
        msg = f"{cls!r} is not a CopulaExpression subclass."
        raise TypeError(msg)
    _COPULAS[name] = cls


def resolve_copula(copula: str | CopulaExpression, *args: Any, **kwargs: Any) -> CopulaExpression:
    """Resolve a copula name (plus constructor arguments) to an instance.

    Instances are returned as-is.

    Raises:
        ValueError: If *copula* names no registered expression.
    """
    if isinstance(copula, CopulaExpression):
        return copula
    if copula not in _COPULAS:
        available = ", ".join(sorted(_COPULAS)) or "(none registered)"
        msg = f"Unknown copula {copula!r}.  Available copulas: {available}."
        raise ValueError(msg)
    return _COPULAS[copula](*args, **kwargs)


register_copula("simple", SimpleCopulaExpression)
register_copula("logistic", SimpleLogisticCopulaExpression)
register_copula("distance", DistanceLinkFunctionCopulaExpression)


__all__ = [
    "CopulaEvaluation",
    "CopulaExpression",
    "DistanceLinkFunctionCopulaExpression",
    "ParameterBound",
    "SimpleCopulaExpression",
    "SimpleLogisticCopulaExpression",
    "register_copula",
    "resolve_copula",
]
