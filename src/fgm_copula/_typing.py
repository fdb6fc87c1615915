"""Shared type aliases for the fgm_copula package."""

from collections.abc import Sequence

import numpy as np
import pandas as pd

# Parameter vectors accepted by the public API.
VectorLike = np.ndarray | pd.Series | Sequence[float]
