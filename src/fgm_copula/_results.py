"""Typed result objects for copula GLM fits.

Frozen dataclasses that provide:

* **Attribute access**: ``result.log_likelihood``, ``result.converged``.
* **Dict-like access**: ``result["parameters"]``, ``result.get("key")``,
  ``"key" in result`` for consumers that prefer bracket syntax.
* **Serialisation**: ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy types converted to native Python.

Result types:

* :class:`EstimationResult` — outcome of a Newton–Raphson fit.
* :class:`GridSearchResult` — every point of a one-dimensional grid
  sweep plus the adopted point.
* :class:`CorrelationEstimate` — one stratum of the Spearman residual
  diagnostic.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from typing import Any

import numpy as np

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy scalars/arrays to Python-native types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Bracket access, ``get`` and ``in`` over dataclass fields.

    Lets callers treat a result like the plain dicts returned by
    ``get_summary()``: ``result["log_likelihood"]`` raises ``KeyError``
    for unknown names and ``result.get(name, default)`` does not.
    """

    def __getitem__(self, key: str) -> Any:
        if key not in self:
            raise KeyError(key)
        return getattr(self, key)

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self, key) if key in self else default

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Fields as a plain dictionary of native Python values."""
        return {
            f.name: _numpy_to_python(getattr(self, f.name))
            for f in fields(self)  # type: ignore[arg-type]
        }


# ------------------------------------------------------------------ #
# EstimationResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class EstimationResult(_DictAccessMixin):
    """Outcome of a Newton–Raphson maximisation."""

    parameters: np.ndarray
    """Final parameter vector (marginal coefficients, then copula)."""

    log_likelihood: float
    """Objective value at :attr:`parameters`."""

    variance: np.ndarray | None
    """Inverse of the negative Hessian, or ``None`` when singular."""

    iterations: int
    """Number of outer iterations performed."""

    converged: bool
    """Whether the convergence criterion was met within ``max_iter``."""

    @property
    def standard_errors(self) -> np.ndarray:
        if self.variance is None:
            return np.full(self.parameters.shape, np.nan)
        return np.sqrt(np.clip(np.diag(self.variance), 0.0, None))


# ------------------------------------------------------------------ #
# Grid search
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class GridSearchPoint(_DictAccessMixin):
    """One evaluated point of a grid sweep."""

    value: float
    """Grid value assigned to the searched parameter."""

    parameters: np.ndarray
    """Full parameter vector at this point."""

    log_likelihood: float
    """Composite log-likelihood, possibly NaN."""


@dataclass(frozen=True)
class GridSearchResult(_DictAccessMixin):
    """Every point of a one-dimensional grid sweep."""

    parameter_index: int
    points: list[GridSearchPoint]
    best_index: int
    """Position in :attr:`points` of the adopted point."""

    @property
    def best(self) -> GridSearchPoint:
        return self.points[self.best_index]


# ------------------------------------------------------------------ #
# CorrelationEstimate
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class CorrelationEstimate(_DictAccessMixin):
    """Spearman residual correlation for one distance stratum."""

    stratum: int
    """Rounded distance of the stratum (``0`` when not distance-based)."""

    r: float
    """Rank correlation ``covariance / variance``."""

    n: int
    """Number of distinct observations ranked in the stratum."""

    n_pairs: int = field(default=0)
    """Number of observation pairs that fell in the stratum."""

    @property
    def t(self) -> float:
        """Student t statistic ``r·sqrt((n − 2)/(1 − r²))``."""
        if self.n <= 2 or abs(self.r) >= 1.0 or math.isnan(self.r):
            return math.nan
        return self.r * math.sqrt((self.n - 2) / (1.0 - self.r**2))


__all__ = [
    "CorrelationEstimate",
    "EstimationResult",
    "GridSearchPoint",
    "GridSearchResult",
]
