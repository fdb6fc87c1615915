"""Data set normalisation at the library boundary.

Models and data structures work on a pandas ``DataFrame`` whose row
positions are the observation indices used by the hierarchical groups,
the distance maps and the composite likelihood.  Anything else a user
hands in is converted here, once:

* a pandas frame gets a fresh ``RangeIndex`` (row labels may be
  arbitrary, positions may not);
* a Polars ``DataFrame`` or ``LazyFrame`` is materialised with
  ``to_pandas()``.

Polars stays optional; without it only pandas input is accepted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import pandas as pd

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False


def _ensure_pandas_df(obj: DataFrameLike, *, name: str = "data") -> pd.DataFrame:
    """Return *obj* as a positionally indexed pandas frame.

    Raises:
        TypeError: If *obj* is neither a pandas nor a Polars frame.
    """
    if isinstance(obj, pd.DataFrame):
        return obj.reset_index(drop=True)
    if _HAS_POLARS and isinstance(obj, (pl.DataFrame, pl.LazyFrame)):
        frame = obj.collect() if isinstance(obj, pl.LazyFrame) else obj
        return frame.to_pandas()

    accepted = "a pandas or Polars DataFrame" if _HAS_POLARS else "a pandas DataFrame"
    msg = f"The {name} set must be {accepted}, got {type(obj).__name__}."
    raise TypeError(msg)
