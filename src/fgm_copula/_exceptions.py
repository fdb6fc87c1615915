"""Exceptions raised by the fgm_copula package."""

from __future__ import annotations


class StatisticalDataError(ValueError):
    """The data set does not support the requested structure.

    Raised eagerly, before any optimisation starts, when a declared
    hierarchical level or distance field is not a column of the data
    set, or when a distance-based copula is attached to data that
    carries no spatial information.
    """


__all__ = ["StatisticalDataError"]
