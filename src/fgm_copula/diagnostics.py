"""Post-fit diagnostics: Spearman correlation of within-group residuals.

After a copula fit, residual dependence that the copula failed to
capture shows up as rank correlation between the response residuals
``y − p̂`` of observations that share a group.  Pairs are stratified by
their rounded distance when the copula is distance based, so that the
decay of dependence with distance can be read off the strata.

For each stratum:

1. The distinct observations that appear in at least one pair of the
   stratum are ranked by residual, ties receiving their mid-rank.
2. The rank variance is the mean squared deviation of those ranks from
   the theoretical mean rank ``(n + 1) / 2``.
3. The covariance is the mean, over the pairs of the stratum, of the
   product of the two rank deviations.
4. ``r = covariance / variance``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from typing import TYPE_CHECKING

import numpy as np
from scipy.stats import rankdata

from ._results import CorrelationEstimate
from .data import HierarchicalSpatialDataStructure

if TYPE_CHECKING:
    from .model import FGMCopulaGLModel

logger = logging.getLogger(__name__)

DEFAULT_N_BINS = 21


def mid_ranks(values: Iterable[float]) -> np.ndarray:
    """Ranks starting at 1, tied values sharing the average rank.

    >>> mid_ranks([1.0, 1.0, 2.0]).tolist()
    [1.5, 1.5, 3.0]
    """
    return rankdata(np.asarray(list(values), dtype=float), method="average")


def spearman_statistics(
    residuals: np.ndarray, pairs: Iterable[tuple[int, int]]
) -> tuple[float, float, int]:
    """Rank variance, rank covariance and unit count for a set of pairs.

    Args:
        residuals: Residual of every observation, indexed by
            observation index.
        pairs: Observation index pairs belonging to one stratum.

    Returns:
        ``(variance, covariance, n)`` where *n* is the number of
        distinct observations ranked.  Both moments are NaN when there
        are no pairs.
    """
    pairs = list(pairs)
    if not pairs:
        return math.nan, math.nan, 0
    units = sorted({index for pair in pairs for index in pair})
    position = {unit: k for k, unit in enumerate(units)}
    n = len(units)
    deviations = mid_ranks(np.asarray(residuals)[units]) - (n + 1) / 2.0
    variance = float(np.mean(deviations**2))
    covariance = float(
        np.mean([deviations[position[i]] * deviations[position[j]] for i, j in pairs])
    )
    return variance, covariance, n


def spearman_correlation_coefficients(
    model: FGMCopulaGLModel,
    n_bins: int = DEFAULT_N_BINS,
    distance_dimension: int = 0,
) -> list[CorrelationEstimate]:
    """Spearman residual correlation per distance stratum.

    Args:
        model: A converged copula model.
        n_bins: Number of integer distance strata ``0 .. n_bins − 1``
            when the copula is distance based.  Pairs whose rounded
            distance falls beyond the last stratum are left out.
        distance_dimension: Distance dimension used for stratification.

    Returns:
        One :class:`CorrelationEstimate` per stratum, in stratum order
        (a single stratum when the copula is not distance based).
        Empty strata carry ``r = nan`` and ``n = 0``.

    Raises:
        ValueError: If *n_bins* is not positive.
        RuntimeError: If the model has not converged.
    """
    if n_bins < 1:
        msg = f"n_bins must be positive, got {n_bins}."
        raise ValueError(msg)
    residuals = model.get_residuals()
    data = model.data_structure
    distance_based = model.copula.is_distance_based and isinstance(
        data, HierarchicalSpatialDataStructure
    )
    n_strata = n_bins if distance_based else 1
    strata: list[list[tuple[int, int]]] = [[] for _ in range(n_strata)]

    dropped = 0
    for indices in data.get_hierarchical_structure().values():
        for a in range(len(indices) - 1):
            for b in range(a + 1, len(indices)):
                i, j = indices[a], indices[b]
                if not distance_based:
                    strata[0].append((i, j))
                    continue
                distance = data.get_distance(distance_dimension, i, j)
                if math.isinf(distance):
                    dropped += 1
                    continue
                stratum = int(math.floor(distance + 0.5))
                if stratum < n_strata:
                    strata[stratum].append((i, j))
                else:
                    dropped += 1
    if dropped:
        logger.debug("%d pair(s) fell outside the %d distance strata", dropped, n_strata)

    estimates = []
    for stratum, pairs in enumerate(strata):
        variance, covariance, n = spearman_statistics(residuals, pairs)
        r = covariance / variance if variance > 0 else math.nan
        estimates.append(CorrelationEstimate(stratum=stratum, r=r, n=n, n_pairs=len(pairs)))
    return estimates


__all__ = [
    "DEFAULT_N_BINS",
    "mid_ranks",
    "spearman_correlation_coefficients",
    "spearman_statistics",
]
