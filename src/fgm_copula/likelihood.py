"""Log-likelihoods for binary GLMs with FGM copula dependence.

Three layers, from the observation up:

* :class:`GLMIndividualLikelihood` — Bernoulli likelihood of a single
  observed outcome, ``L_i = p_i`` if ``y_i = 1`` and ``1 − p_i``
  otherwise, together with its gradient and Hessian with respect to
  the marginal coefficients β.
* :class:`CompositeLogLikelihood` — the independence log-likelihood
  ``Σ log L_i``.
* :class:`FGMCompositeLogLikelihood` — the independence log-likelihood
  plus, for every hierarchical group, ``log`` of the FGM pairwise
  correction

      T_g = 1 + Σ_{i<j ∈ g} s_ij · c_ij · (1 − L_i)(1 − L_j)

  where ``c_ij`` is the copula value for the pair and ``s_ij = −1``
  when exactly one of the two outcomes is a success, ``+1`` otherwise.

Caching
-------
``FGMCompositeLogLikelihood`` keeps six lazily computed tiers (value,
gradient, Hessian and the three per-group correction maps), each
tracked by a :class:`CacheState`.  A getter recomputes only its own
tier (and the tiers it depends on) when that tier is ``STALE``.  The
per-group Hessian depends on the per-group gradient, which depends on
the per-group value term.

Every tier is marked ``STALE`` together by :meth:`invalidate_all`,
which the optimizer triggers through
:meth:`FGMCompositeLogLikelihood.optimizer_did_this` at the start of an
optimisation and before each inner iteration.  Setting parameters does
**not** invalidate on its own; callers that move parameters outside an
optimizer run call :meth:`invalidate_all` themselves.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

import numpy as np

from ._typing import VectorLike
from .copulas import CopulaExpression, ParameterBound
from .data import HierarchicalDataStructure
from .links import LinkFunction, LinkType, resolve_link

logger = logging.getLogger(__name__)

OPTIMIZATION_STARTED = "optimization started"
INNER_ITERATION_STARTED = "inner iteration started"
OPTIMIZATION_ENDED = "optimization ended"

_INVALIDATING_ACTIONS = frozenset({OPTIMIZATION_STARTED, INNER_ITERATION_STARTED})

# |y_i + y_j - 1| below this marks a discordant pair.
_DISCORDANCE_TOL = 1e-8

# ------------------------------------------------------------------ #
# Contracts
# ------------------------------------------------------------------ #


@runtime_checkable
class OptimizerListener(Protocol):
    """Receives lifecycle notifications from an optimizer."""

    def optimizer_did_this(self, action: str) -> None: ...


@runtime_checkable
class LogLikelihood(Protocol):
    """Objective consumed by :class:`~fgm_copula.optimizer.NewtonRaphsonOptimizer`."""

    def get_value(self) -> float: ...

    def get_gradient(self) -> np.ndarray: ...

    def get_hessian(self) -> np.ndarray: ...

    def get_parameters(self) -> np.ndarray: ...

    def set_parameters(self, beta: VectorLike) -> None: ...


# ------------------------------------------------------------------ #
# Per-observation likelihood
# ------------------------------------------------------------------ #


class GLMIndividualLikelihood:
    """Bernoulli likelihood of each observed outcome under a binary GLM.

    Args:
        X: Design matrix, shape ``(n, p)``.
        y: Binary response, shape ``(n,)``.
        link: Link function of the marginal model.

    Raises:
        ValueError: If *y* contains values other than 0 and 1 or the
            shapes disagree.
    """

    def __init__(
        self,
        X: np.ndarray,
        y: np.ndarray,
        link: str | LinkType | LinkFunction = "logit",
    ) -> None:
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float).ravel()
        if X.ndim != 2 or X.shape[0] != y.shape[0]:
            msg = f"X has shape {X.shape} but y has {y.shape[0]} observations."
            raise ValueError(msg)
        if not np.all(np.isin(y, (0.0, 1.0))):
            msg = "The response must be binary (0/1)."
            raise ValueError(msg)
        self.X = X
        self.y = y
        self.link = resolve_link(link)
        self.beta = np.zeros(X.shape[1])
        self._observation = 0

    @property
    def n_observations(self) -> int:
        return int(self.X.shape[0])

    def get_number_of_parameters(self) -> int:
        return int(self.X.shape[1])

    def get_parameters(self) -> np.ndarray:
        return self.beta.copy()

    def set_parameters(self, beta: VectorLike | None) -> None:
        if beta is None:
            self.beta = np.zeros(self.X.shape[1])
            return
        beta = np.asarray(beta, dtype=float).ravel()
        if beta.shape != (self.X.shape[1],):
            msg = f"Expected {self.X.shape[1]} marginal coefficients, got {beta.size}."
            raise ValueError(msg)
        self.beta = beta.copy()

    def predictions(self) -> np.ndarray:
        """Fitted success probabilities ``g(Xβ)``."""
        return np.asarray(self.link.value(self.X @ self.beta), dtype=float)

    def get_y_vector(self) -> np.ndarray:
        return self.y.copy()

    def evaluate(
        self, indices: Sequence[int] | np.ndarray | None = None
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Likelihood terms for a set of observations at once.

        Args:
            indices: Observations to evaluate (all when ``None``).

        Returns:
            ``(L, dL, d2L)`` with shapes ``(m,)``, ``(m, p)`` and
            ``(m, p, p)``.
        """
        X = self.X if indices is None else self.X[np.asarray(indices, dtype=int)]
        y = self.y if indices is None else self.y[np.asarray(indices, dtype=int)]
        g, g1, g2 = self.link.derivatives(X @ self.beta)
        g, g1, g2 = np.atleast_1d(g), np.atleast_1d(g1), np.atleast_1d(g2)
        success = y == 1.0
        sign = np.where(success, 1.0, -1.0)
        L = np.where(success, g, 1.0 - g)
        dL = (sign * g1)[:, None] * X
        d2L = (sign * g2)[:, None, None] * (X[:, :, None] * X[:, None, :])
        return L, dL, d2L

    # ---- Current-observation interface -----------------------------

    def set_observation(self, index: int) -> None:
        if not 0 <= index < self.n_observations:
            msg = f"Observation {index} is out of range [0, {self.n_observations})."
            raise IndexError(msg)
        self._observation = index

    def get_value(self) -> float:
        return float(self.evaluate([self._observation])[0][0])

    def get_gradient(self) -> np.ndarray:
        return self.evaluate([self._observation])[1][0]

    def get_hessian(self) -> np.ndarray:
        return self.evaluate([self._observation])[2][0]

    def get_y(self) -> float:
        return float(self.y[self._observation])


# ------------------------------------------------------------------ #
# Independence composite log-likelihood
# ------------------------------------------------------------------ #


class CompositeLogLikelihood:
    """Sum of the individual log-likelihoods, ignoring dependence."""

    def __init__(self, individual: GLMIndividualLikelihood) -> None:
        self.individual = individual

    def get_number_of_parameters(self) -> int:
        return self.individual.get_number_of_parameters()

    def get_parameters(self) -> np.ndarray:
        return self.individual.get_parameters()

    def set_parameters(self, beta: VectorLike | None) -> None:
        self.individual.set_parameters(beta)

    def get_parameter_value(self, index: int) -> float:
        return float(self.individual.beta[index])

    def set_parameter_value(self, index: int, value: float) -> None:
        self.individual.beta[index] = float(value)

    def get_value(self) -> float:
        L, _, _ = self.individual.evaluate()
        with np.errstate(divide="ignore"):
            return float(np.sum(np.log(L)))

    def get_gradient(self) -> np.ndarray:
        L, dL, _ = self.individual.evaluate()
        return np.sum(dL / L[:, None], axis=0)

    def get_hessian(self) -> np.ndarray:
        L, dL, d2L = self.individual.evaluate()
        outer = dL[:, :, None] * dL[:, None, :]
        return np.sum(
            d2L / L[:, None, None] - outer / (L**2)[:, None, None], axis=0
        )


# ------------------------------------------------------------------ #
# Cache bookkeeping
# ------------------------------------------------------------------ #


class CacheState(Enum):
    """Validity of one cached tier."""

    STALE = "stale"
    FRESH = "fresh"


_TIERS = (
    "value",
    "gradient",
    "hessian",
    "additional_value",
    "additional_gradient",
    "additional_hessian",
)


@dataclass(frozen=True)
class ParameterLayout:
    """Concatenated parameter vector: marginal coefficients, then copula."""

    marginal_count: int
    copula_count: int

    @property
    def total(self) -> int:
        return self.marginal_count + self.copula_count

    @property
    def marginal_slice(self) -> slice:
        return slice(0, self.marginal_count)

    @property
    def copula_slice(self) -> slice:
        return slice(self.marginal_count, self.total)

    def locate(self, index: int) -> tuple[str, int]:
        """Map a global index to ``("marginal" | "copula", local index)``.

        Raises:
            IndexError: If *index* is outside ``[0, total)``.
        """
        if not 0 <= index < self.total:
            msg = f"Parameter index {index} is out of range [0, {self.total})."
            raise IndexError(msg)
        if index < self.marginal_count:
            return "marginal", index
        return "copula", index - self.marginal_count

    def split(self, beta: VectorLike) -> tuple[np.ndarray, np.ndarray]:
        beta = np.asarray(beta, dtype=float).ravel()
        if beta.size != self.total:
            msg = f"Expected {self.total} parameters, got {beta.size}."
            raise ValueError(msg)
        return beta[self.marginal_slice].copy(), beta[self.copula_slice].copy()

    def stack(self, marginal: VectorLike, copula: VectorLike) -> np.ndarray:
        marginal = np.asarray(marginal, dtype=float).ravel()
        copula = np.asarray(copula, dtype=float).ravel()
        if marginal.size != self.marginal_count or copula.size != self.copula_count:
            msg = (
                f"Expected {self.marginal_count} marginal and {self.copula_count} "
                f"copula parameters, got {marginal.size} and {copula.size}."
            )
            raise ValueError(msg)
        return np.concatenate([marginal, copula])


# ------------------------------------------------------------------ #
# FGM composite log-likelihood
# ------------------------------------------------------------------ #


class FGMCompositeLogLikelihood:
    """Independence log-likelihood with FGM pairwise corrections per group.

    Args:
        marginal: Independence log-likelihood of the marginal GLM.
        copula: Initialised copula expression.
        data: Data structure whose hierarchical levels have been set.
    """

    def __init__(
        self,
        marginal: CompositeLogLikelihood,
        copula: CopulaExpression,
        data: HierarchicalDataStructure,
    ) -> None:
        self.marginal = marginal
        self.individual = marginal.individual
        self.copula = copula
        self.layout = ParameterLayout(
            marginal.get_number_of_parameters(), copula.get_number_of_parameters()
        )
        self.groups: dict[str, list[int]] = data.get_hierarchical_structure()
        self.cache_state: dict[str, CacheState] = dict.fromkeys(_TIERS, CacheState.STALE)
        self.recompute_counts: Counter[str] = Counter()

        self._llk = np.nan
        self._gradient = np.zeros(self.layout.total)
        self._hessian = np.zeros((self.layout.total, self.layout.total))
        self._additional_value: dict[str, float] = {}
        self._additional_gradient: dict[str, np.ndarray] = {}
        self._additional_hessian: dict[str, np.ndarray] = {}
        self._marginal_terms: dict[str, tuple[np.ndarray, ...]] = {}

    # ---- Invalidation ----------------------------------------------

    def invalidate_all(self) -> None:
        """Mark every cached tier stale."""
        for tier in _TIERS:
            self.cache_state[tier] = CacheState.STALE
        self._marginal_terms.clear()

    reset = invalidate_all

    def optimizer_did_this(self, action: str) -> None:
        """Optimizer notification hook; start and trial-point events invalidate the cache."""
        if action in _INVALIDATING_ACTIONS:
            self.invalidate_all()
        else:
            logger.debug("Ignoring optimizer action %r", action)

    def _is_fresh(self, tier: str) -> bool:
        return self.cache_state[tier] is CacheState.FRESH

    def _mark_fresh(self, tier: str) -> None:
        self.cache_state[tier] = CacheState.FRESH
        self.recompute_counts[tier] += 1
        logger.debug("Recomputed %s tier", tier)

    # ---- Parameters ------------------------------------------------

    def get_number_of_parameters(self) -> int:
        return self.layout.total

    def get_parameter_value(self, index: int) -> float:
        block, local = self.layout.locate(index)
        if block == "marginal":
            return self.marginal.get_parameter_value(local)
        return self.copula.get_parameter_value(local)

    def set_parameter_value(self, index: int, value: float) -> None:
        block, local = self.layout.locate(index)
        if block == "marginal":
            self.marginal.set_parameter_value(local, value)
        else:
            self.copula.set_parameter_value(local, value)

    def get_parameters(self) -> np.ndarray:
        return self.layout.stack(self.marginal.get_parameters(), self.copula.get_beta())

    def set_parameters(self, beta: VectorLike) -> None:
        marginal, copula = self.layout.split(beta)
        self.marginal.set_parameters(marginal)
        self.copula.set_beta(copula)

    def get_bounds(self) -> dict[int, ParameterBound]:
        """Copula bounds re-indexed into the concatenated vector."""
        offset = self.layout.marginal_count
        return {offset + k: bound for k, bound in self.copula.get_bounds().items()}

    # ---- Per-group pieces ------------------------------------------

    def _group_marginal_terms(self, key: str) -> tuple[np.ndarray, ...]:
        terms = self._marginal_terms.get(key)
        if terms is None:
            indices = self.groups[key]
            L, dL, d2L = self.individual.evaluate(indices)
            terms = (L, dL, d2L, self.individual.y[indices])
            self._marginal_terms[key] = terms
        return terms

    def _pairs(self, key: str):
        """Yield ``(a, b, sign, evaluation)`` for every contributing pair."""
        indices = self.groups[key]
        y = self._group_marginal_terms(key)[3]
        n = len(indices)
        for a in range(n - 1):
            for b in range(a + 1, n):
                evaluation = self.copula.evaluate_pair(indices[a], indices[b])
                if evaluation is None:
                    continue
                sign = -1.0 if abs(y[a] + y[b] - 1.0) < _DISCORDANCE_TOL else 1.0
                yield a, b, sign, evaluation

    def _update_additional_value(self) -> None:
        if self._is_fresh("additional_value"):
            return
        results: dict[str, float] = {}
        for key in self.groups:
            L = self._group_marginal_terms(key)[0]
            term = 1.0
            for a, b, sign, ev in self._pairs(key):
                term += sign * ev.value * (1.0 - L[a]) * (1.0 - L[b])
            results[key] = term
        self._additional_value = results
        self._mark_fresh("additional_value")

    def _update_additional_gradient(self) -> None:
        if self._is_fresh("additional_gradient"):
            return
        self._update_additional_value()
        m = self.layout.marginal_count
        results: dict[str, np.ndarray] = {}
        for key in self.groups:
            L, dL, _, _ = self._group_marginal_terms(key)
            term = self._additional_value[key]
            gradient = np.zeros(self.layout.total)
            for a, b, sign, ev in self._pairs(key):
                factor = sign / term
                d_survival = -dL[a] * (1.0 - L[b]) - dL[b] * (1.0 - L[a])
                gradient[:m] += d_survival * ev.value * factor
                gradient[m:] += ev.gradient * (1.0 - L[a]) * (1.0 - L[b]) * factor
            results[key] = gradient
        self._additional_gradient = results
        self._mark_fresh("additional_gradient")

    def _update_additional_hessian(self) -> None:
        if self._is_fresh("additional_hessian"):
            return
        self._update_additional_gradient()
        m = self.layout.marginal_count
        results: dict[str, np.ndarray] = {}
        for key in self.groups:
            L, dL, d2L, _ = self._group_marginal_terms(key)
            term = self._additional_value[key]
            d1 = self._additional_gradient[key]
            hessian = -np.outer(d1, d1)
            for a, b, sign, ev in self._pairs(key):
                factor = sign / term
                survival = (1.0 - L[a]) * (1.0 - L[b])
                d_survival = -dL[a] * (1.0 - L[b]) - dL[b] * (1.0 - L[a])
                cross = np.outer(dL[a], dL[b])
                e11 = (
                    -d2L[a] * (1.0 - L[b]) - d2L[b] * (1.0 - L[a]) + cross + cross.T
                ) * ev.value * factor
                e12 = np.outer(d_survival, ev.gradient) * factor
                e22 = ev.hessian * survival * factor
                hessian[:m, :m] += e11
                hessian[:m, m:] += e12
                hessian[m:, :m] += e12.T
                hessian[m:, m:] += e22
            results[key] = hessian
        self._additional_hessian = results
        self._mark_fresh("additional_hessian")

    def get_additional_terms(self) -> dict[str, float]:
        """Per-group correction ``T_g`` (1 for groups without pairs)."""
        self._update_additional_value()
        return dict(self._additional_value)

    # ---- Objective -------------------------------------------------

    def get_value(self) -> float:
        if not self._is_fresh("value"):
            self._update_additional_value()
            with np.errstate(divide="ignore", invalid="ignore"):
                correction = np.sum(np.log(list(self._additional_value.values())))
            self._llk = self.marginal.get_value() + float(correction)
            self._mark_fresh("value")
        return self._llk

    def get_gradient(self) -> np.ndarray:
        if not self._is_fresh("gradient"):
            self._update_additional_gradient()
            gradient = np.zeros(self.layout.total)
            gradient[: self.layout.marginal_count] = self.marginal.get_gradient()
            for contribution in self._additional_gradient.values():
                gradient += contribution
            self._gradient = gradient
            self._mark_fresh("gradient")
        return self._gradient.copy()

    def get_hessian(self) -> np.ndarray:
        if not self._is_fresh("hessian"):
            self._update_additional_hessian()
            m = self.layout.marginal_count
            hessian = np.zeros((self.layout.total, self.layout.total))
            hessian[:m, :m] = self.marginal.get_hessian()
            for contribution in self._additional_hessian.values():
                hessian += contribution
            self._hessian = hessian
            self._mark_fresh("hessian")
        return self._hessian.copy()


__all__ = [
    "INNER_ITERATION_STARTED",
    "OPTIMIZATION_ENDED",
    "OPTIMIZATION_STARTED",
    "CacheState",
    "CompositeLogLikelihood",
    "FGMCompositeLogLikelihood",
    "GLMIndividualLikelihood",
    "LogLikelihood",
    "OptimizerListener",
    "ParameterLayout",
]
