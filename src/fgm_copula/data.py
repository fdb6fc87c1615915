"""Hierarchical (and spatial) data structures.

A :class:`HierarchicalDataStructure` wraps a data set and partitions its
observations into groups defined by one or more nested categorical
levels (e.g. plot within stratum).  Each group owns the ascending list
of *positional* observation indices that belong to it; every
observation belongs to exactly one group at the finest level.

:class:`HierarchicalSpatialDataStructure` adds within-group distances.
Distances are organised by *dimension*: a dimension is a list of one or
more fields whose per-observation values form a coordinate vector (e.g.
``["x", "y"]`` for planar coordinates, ``["year"]`` for time).  A
:class:`DistanceCalculator` turns the coordinates of one group into a
pairwise distance matrix.  Pairs whose distance is unavailable — a
missing coordinate, or a distance beyond the dimension's limit — get
no map entry, which consumers interpret as an infinite distance.

Only pairs inside the same group are ever computed; the structure never
materialises an N × N matrix.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import numpy as np
import pandas as pd
from sklearn.metrics import pairwise_distances

from ._compat import DataFrameLike, _ensure_pandas_df
from ._exceptions import StatisticalDataError

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------ #
# Specification parsing
# ------------------------------------------------------------------ #


def parse_hierarchical_levels(spec: str | Sequence[str]) -> list[str]:
    """Split a ``/``-delimited level specification into field names.

    ``"stratum/plot"`` → ``["stratum", "plot"]``.  Sequences are
    accepted as already-split input.  Blank tokens are dropped.
    """
    tokens = spec.split("/") if isinstance(spec, str) else list(spec)
    levels = [t.strip() for t in tokens if t and t.strip()]
    if not levels:
        msg = f"The hierarchical level specification {spec!r} is empty."
        raise ValueError(msg)
    return levels


def parse_distance_fields(spec: str | Sequence[Sequence[str]]) -> list[list[str]]:
    """Split a distance-field specification into dimensions.

    Dimensions are separated by ``,`` and the fields of one dimension
    by ``+``: ``"x + y, year"`` → ``[["x", "y"], ["year"]]``.
    """
    if isinstance(spec, str):
        dimensions = [
            [f.strip() for f in dim.split("+") if f.strip()] for dim in spec.split(",")
        ]
    else:
        dimensions = [[str(f).strip() for f in dim] for dim in spec]
    dimensions = [dim for dim in dimensions if dim]
    if not dimensions:
        msg = f"The distance field specification {spec!r} is empty."
        raise ValueError(msg)
    return dimensions


# ------------------------------------------------------------------ #
# Distance calculators
# ------------------------------------------------------------------ #


@runtime_checkable
class DistanceCalculator(Protocol):
    """Turns the coordinates of one group into pairwise distances."""

    def pairwise(self, coordinates: np.ndarray) -> np.ndarray:
        """Return the ``(m, m)`` distance matrix of *coordinates*.

        Args:
            coordinates: Array of shape ``(m, d)``, one row per
                observation, one column per field of the dimension.
                Rows may contain NaN.

        Returns:
            Symmetric matrix; entries involving a row with a NaN
            coordinate are NaN.
        """
        ...


class EuclideanDistanceCalculator:
    """Euclidean distance over all fields of a dimension."""

    def pairwise(self, coordinates: np.ndarray) -> np.ndarray:
        m = coordinates.shape[0]
        distances = np.full((m, m), np.nan)
        finite = np.all(np.isfinite(coordinates), axis=1)
        if finite.any():
            block = pairwise_distances(coordinates[finite], metric="euclidean")
            distances[np.ix_(finite, finite)] = block
        return distances


class GeographicDistanceCalculator:
    """Planar approximation of the distance between geographic points.

    The dimension must list the longitude field first and the latitude
    field second, both in decimal degrees.  East–west differences are
    scaled by the Earth's circumference at the mean latitude of the
    pair, north–south differences by the meridional circumference.
    The result is expressed in units of 100 km.
    """

    EARTH_CIRCUMFERENCE_KM_EQUATOR = 40075.0167
    EARTH_CIRCUMFERENCE_KM_POLE = 40007.863

    def pairwise(self, coordinates: np.ndarray) -> np.ndarray:
        if coordinates.shape[1] != 2:
            msg = (
                "GeographicDistanceCalculator expects exactly two fields "
                f"(longitude, latitude), got {coordinates.shape[1]}."
            )
            raise ValueError(msg)
        lon = coordinates[:, 0]
        lat = coordinates[:, 1]
        mean_lat = (lat[:, None] + lat[None, :]) * 0.5
        circumference = np.cos(np.deg2rad(mean_lat)) * self.EARTH_CIRCUMFERENCE_KM_EQUATOR
        diff_x = (lon[:, None] - lon[None, :]) * circumference / 360.0
        diff_y = (lat[:, None] - lat[None, :]) * self.EARTH_CIRCUMFERENCE_KM_POLE / 360.0
        return np.sqrt(diff_x * diff_x + diff_y * diff_y) / 100.0


# ------------------------------------------------------------------ #
# Hierarchical structure
# ------------------------------------------------------------------ #


class HierarchicalDataStructure:
    """Data set partitioned into groups by nested categorical levels.

    Args:
        data: A pandas (or Polars) DataFrame.  Rows are observations;
            the positional row number is the observation index used
            throughout the package.
    """

    def __init__(self, data: DataFrameLike) -> None:
        self._data: pd.DataFrame = _ensure_pandas_df(data, name="data")
        self._levels: list[str] = []
        self._structure: dict[str, list[int]] | None = None

    @property
    def data(self) -> pd.DataFrame:
        return self._data

    @property
    def n_observations(self) -> int:
        return len(self._data)

    @property
    def hierarchical_levels(self) -> list[str]:
        return list(self._levels)

    def has_field(self, name: str) -> bool:
        return name in self._data.columns

    def _require_fields(self, names: Sequence[str], what: str) -> None:
        missing = [n for n in names if not self.has_field(n)]
        if missing:
            msg = (
                f"The {what} field(s) {missing} cannot be found in the data set.  "
                f"Available fields: {list(self._data.columns)}."
            )
            raise StatisticalDataError(msg)

    def set_hierarchical_structure_level(self, levels: str | Sequence[str]) -> None:
        """Declare the grouping levels, outermost first.

        Raises:
            StatisticalDataError: If a level is not a field of the
                data set.
        """
        parsed = parse_hierarchical_levels(levels)
        self._require_fields(parsed, "hierarchical level")
        if parsed != self._levels:
            self._levels = parsed
            self._structure = None
            self._on_structure_changed()

    def _on_structure_changed(self) -> None:
        """Hook for subclasses whose caches depend on the grouping."""

    def is_there_any_hierarchical_structure(self) -> bool:
        return bool(self._levels)

    def get_hierarchical_structure(self) -> dict[str, list[int]]:
        """Map each group key to its ascending list of observation indices.

        Group keys are the level values joined with ``/`` (e.g.
        ``"A/12"``).  The mapping is built once per level declaration.

        Raises:
            StatisticalDataError: If no hierarchical level has been set.
        """
        if not self._levels:
            msg = "There is no hierarchical structure in the data set."
            raise StatisticalDataError(msg)
        if self._structure is None:
            grouped = self._data.groupby(self._levels, sort=True, dropna=False)
            structure: dict[str, list[int]] = {}
            for key, positions in grouped.indices.items():
                key_tuple = key if isinstance(key, tuple) else (key,)
                structure["/".join(str(k) for k in key_tuple)] = sorted(
                    int(p) for p in positions
                )
            self._structure = structure
        return self._structure

    def get_group_labels(self) -> np.ndarray:
        """Return an integer group code for each observation."""
        labels = np.empty(self.n_observations, dtype=int)
        for code, indices in enumerate(self.get_hierarchical_structure().values()):
            labels[indices] = code
        return labels


class HierarchicalSpatialDataStructure(HierarchicalDataStructure):
    """Hierarchical data structure with within-group distances."""

    def __init__(self, data: DataFrameLike) -> None:
        super().__init__(data)
        self._distance_fields: list[list[str]] = []
        self._calculators: dict[int, DistanceCalculator] = {}
        self._limits: list[float] = []
        self._distances: list[dict[int, dict[int, float]]] | None = None

    @property
    def distance_fields(self) -> list[list[str]]:
        return [list(dim) for dim in self._distance_fields]

    @property
    def n_distance_dimensions(self) -> int:
        return len(self._distance_fields)

    def _on_structure_changed(self) -> None:
        self._distances = None

    def set_distance_fields(self, fields: str | Sequence[Sequence[str]]) -> None:
        """Declare the coordinate fields of each distance dimension.

        Raises:
            StatisticalDataError: If a field is not in the data set.
        """
        parsed = parse_distance_fields(fields)
        self._require_fields([f for dim in parsed for f in dim], "distance")
        for dim in parsed:
            non_numeric = [
                f for f in dim if not pd.api.types.is_numeric_dtype(self._data[f])
            ]
            if non_numeric:
                msg = f"The distance field(s) {non_numeric} are not numeric."
                raise StatisticalDataError(msg)
        self._distance_fields = parsed
        self._calculators = {}
        self._distances = None

    def set_distance_calculators(self, *calculators: DistanceCalculator) -> None:
        """Assign one calculator per distance dimension.

        Dimensions without an explicit calculator use
        :class:`EuclideanDistanceCalculator`.

        Raises:
            ValueError: If the number of calculators differs from the
                number of declared dimensions.
        """
        if len(calculators) != len(self._distance_fields):
            msg = (
                f"Expected {len(self._distance_fields)} distance calculator(s), "
                f"got {len(calculators)}.  Set the distance fields first."
            )
            raise ValueError(msg)
        for calc in calculators:
            if not isinstance(calc, DistanceCalculator):
                msg = f"{calc!r} does not implement the DistanceCalculator protocol."
                raise TypeError(msg)
        self._calculators = dict(enumerate(calculators))
        self._distances = None

    def set_distance_limits(self, limits: Sequence[float] | None) -> None:
        """Set per-dimension maximum distances (``None`` clears them).

        Pairs farther apart than the limit of a dimension get no map
        entry for that dimension.
        """
        self._limits = [] if limits is None else [float(v) for v in limits]
        self._distances = None

    def get_distance_calculator(self, dimension: int) -> DistanceCalculator:
        if dimension >= len(self._distance_fields):
            msg = (
                f"Distance dimension {dimension} is not declared; "
                f"{len(self._distance_fields)} dimension(s) available."
            )
            raise IndexError(msg)
        return self._calculators.setdefault(dimension, EuclideanDistanceCalculator())

    def _compute_distances(self) -> list[dict[int, dict[int, float]]]:
        if not self._distance_fields:
            msg = "There is no available field to calculate the distances."
            raise StatisticalDataError(msg)
        structure = self.get_hierarchical_structure()
        logger.info("Calculating distances between the observations...")
        maps: list[dict[int, dict[int, float]]] = [
            {} for _ in self._distance_fields
        ]
        for dimension, fields in enumerate(self._distance_fields):
            calculator = self.get_distance_calculator(dimension)
            limit = self._limits[dimension] if dimension < len(self._limits) else math.inf
            coordinates = self._data[fields].to_numpy(dtype=float)
            distance_map = maps[dimension]
            for indices in structure.values():
                if len(indices) < 2:
                    continue
                block = calculator.pairwise(coordinates[indices])
                # Upper triangle only; both orders are stored below.
                rows, cols = np.triu_indices(len(indices), k=1)
                values = block[rows, cols]
                keep = np.isfinite(values) & (values <= limit)
                for r, c, d in zip(rows[keep], cols[keep], values[keep]):
                    a, b = indices[r], indices[c]
                    distance_map.setdefault(a, {})[b] = float(d)
                    distance_map.setdefault(b, {})[a] = float(d)
        logger.info("Distances have been calculated.")
        return maps

    def get_distances_between_observations(
        self, dimension: int = 0
    ) -> dict[int, dict[int, float]]:
        """Return ``{i: {j: distance}}`` for one distance dimension.

        Computed lazily on first access, for all dimensions at once,
        and cached until the grouping, fields, calculators or limits
        change.  A missing ``(i, j)`` entry means the distance is
        unavailable.
        """
        if self._distances is None:
            self._distances = self._compute_distances()
        if dimension >= len(self._distances):
            msg = (
                f"Distance dimension {dimension} is not declared; "
                f"{len(self._distances)} dimension(s) available."
            )
            raise IndexError(msg)
        return self._distances[dimension]

    def get_distance(self, dimension: int, i: int, j: int) -> float:
        """Distance between observations *i* and *j*, ``inf`` if unavailable."""
        return self.get_distances_between_observations(dimension).get(i, {}).get(
            j, math.inf
        )


__all__ = [
    "DistanceCalculator",
    "EuclideanDistanceCalculator",
    "GeographicDistanceCalculator",
    "HierarchicalDataStructure",
    "HierarchicalSpatialDataStructure",
    "parse_distance_fields",
    "parse_hierarchical_levels",
]
