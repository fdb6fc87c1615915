"""Binary generalized linear model: the marginal part of a copula fit.

:class:`GeneralizedLinearModel` parses a ``"response ~ effect + ..."``
model definition against a data set, builds the design matrix and
estimates the coefficients with statsmodels' ``GLM`` under a binomial
family and the requested link.  It also owns the independence
log-likelihood that :class:`~fgm_copula.model.FGMCopulaGLModel`
extends with pairwise copula terms, and the one-dimensional grid
search shared by both models.

Model definitions
-----------------
* ``"y ~ x1 + x2"``: intercept plus two effects.
* ``"y ~ x1 - 1"`` or ``"y ~ 0 + x1"``: no intercept.
* Non-numeric effect columns are dummy coded with the first level
  dropped (``species`` → ``species_b``, ``species_c``, ...).
"""

from __future__ import annotations

import logging
import math
import warnings

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning as SmConvergenceWarning,
)
from statsmodels.tools.sm_exceptions import (
    PerfectSeparationWarning,
)
from typing_extensions import Self

from ._compat import DataFrameLike
from ._results import EstimationResult, GridSearchPoint, GridSearchResult
from ._typing import VectorLike
from .data import HierarchicalSpatialDataStructure
from .likelihood import CompositeLogLikelihood, GLMIndividualLikelihood
from .links import LinkFunction, LinkType, resolve_link
from .optimizer import NewtonRaphsonOptimizer

logger = logging.getLogger(__name__)

# Attributes a model never shares with the marginal model it wraps.
_PER_MODEL_STATE = frozenset({"_complete_llk", "_estimation"})

INTERCEPT = "Intercept"


def parse_model_definition(definition: str) -> tuple[str, list[str], bool]:
    """Split ``"y ~ a + b"`` into ``(response, effects, intercept)``.

    Raises:
        ValueError: If the definition has no ``~`` or no response.
    """
    if definition.count("~") != 1:
        msg = f"Model definition {definition!r} must contain exactly one '~'."
        raise ValueError(msg)
    lhs, rhs = (part.strip() for part in definition.split("~"))
    if not lhs:
        msg = f"Model definition {definition!r} has no response."
        raise ValueError(msg)
    intercept = True
    effects: list[str] = []
    # "- 1" is the only subtraction understood.
    rhs = rhs.replace("-", "+ -")
    for token in (t.strip() for t in rhs.split("+")):
        if not token:
            continue
        if token in ("-1", "- 1", "0"):
            intercept = False
        elif token == "1":
            intercept = True
        else:
            effects.append(token)
    return lhs, effects, intercept


def _design_matrix(
    data: pd.DataFrame, effects: list[str], intercept: bool
) -> tuple[np.ndarray, list[str]]:
    columns: list[pd.DataFrame] = []
    if intercept:
        columns.append(pd.DataFrame({INTERCEPT: np.ones(len(data))}))
    for effect in effects:
        column = data[effect]
        if pd.api.types.is_numeric_dtype(column) and not pd.api.types.is_bool_dtype(column):
            columns.append(column.astype(float).to_frame())
        else:
            columns.append(
                pd.get_dummies(column, prefix=effect, drop_first=True, dtype=float)
            )
    if not columns:
        msg = "The model definition has neither an intercept nor effects."
        raise ValueError(msg)
    design = pd.concat(columns, axis=1)
    return design.to_numpy(dtype=float), [str(c) for c in design.columns]


class GeneralizedLinearModel:
    """Binary-response GLM estimated by maximum likelihood.

    Args:
        data: Data set (pandas or Polars).
        link: Link function name or instance.
        model_definition: ``"response ~ effect + ..."``.
        starting_beta: Starting coefficients; zeros when ``None``.

    Raises:
        StatisticalDataError: If the response or an effect is not a
            field of the data set.
        ValueError: If the response is not binary.
    """

    def __init__(
        self,
        data: DataFrameLike,
        link: str | LinkType | LinkFunction,
        model_definition: str,
        starting_beta: VectorLike | None = None,
    ) -> None:
        self.data_structure = self._create_data_structure(data)
        self.model_definition = model_definition
        self.response, self.effects, self.intercept = parse_model_definition(
            model_definition
        )
        self.data_structure._require_fields([self.response, *self.effects], "model")
        frame = self.data_structure.data
        X, self.feature_names = _design_matrix(frame, self.effects, self.intercept)
        y = frame[self.response].to_numpy(dtype=float)
        self.link = resolve_link(link)
        self.individual = GLMIndividualLikelihood(X, y, self.link)
        self._complete_llk = CompositeLogLikelihood(self.individual)
        self._estimation: EstimationResult | None = None
        self.set_parameters(starting_beta)

    def _create_data_structure(self, data: DataFrameLike) -> HierarchicalSpatialDataStructure:
        return HierarchicalSpatialDataStructure(data)

    def _bind(self, glm: GeneralizedLinearModel) -> None:
        """Share the data, design and per-observation likelihood of *glm*.

        Everything the marginal model holds is taken over by reference
        except its composite log-likelihood and its estimation result,
        which belong to each model separately.
        """
        for name, value in vars(glm).items():
            if name not in _PER_MODEL_STATE:
                setattr(self, name, value)
        self._estimation = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.model_definition!r}, link={self.link.name!r})"

    # ---- Basic accessors -------------------------------------------

    @property
    def X(self) -> np.ndarray:
        return self.individual.X

    @property
    def y(self) -> np.ndarray:
        return self.individual.y

    @property
    def n_observations(self) -> int:
        return self.individual.n_observations

    @property
    def parameter_names(self) -> list[str]:
        return list(self.feature_names)

    def get_complete_log_likelihood(self):
        return self._complete_llk

    def get_parameters(self) -> np.ndarray:
        return self.individual.get_parameters()

    def set_parameters(self, beta: VectorLike | None) -> None:
        """Set the coefficients; ``None`` resets them to zero."""
        self.individual.set_parameters(beta)

    def _reset_log_likelihood(self) -> None:
        """Discard cached log-likelihood state after a parameter change."""

    # ---- Estimation ------------------------------------------------

    @property
    def estimation(self) -> EstimationResult | None:
        return self._estimation

    @property
    def is_converged(self) -> bool:
        return self._estimation is not None and self._estimation.converged

    def _require_convergence(self) -> EstimationResult:
        if not self.is_converged:
            msg = f"{type(self).__name__} has not been successfully estimated."
            raise RuntimeError(msg)
        return self._estimation  # type: ignore[return-value]

    @property
    def parameter_estimates(self) -> np.ndarray:
        return self._require_convergence().parameters.copy()

    @property
    def variance(self) -> np.ndarray | None:
        return self._require_convergence().variance

    def do_estimation(self, optimizer: NewtonRaphsonOptimizer | None = None) -> EstimationResult:
        """Estimate the coefficients.

        With no *optimizer*, statsmodels' IRLS is used; otherwise the
        given Newton–Raphson optimizer maximises the independence
        log-likelihood from the current parameters.
        """
        logger.info("Estimating %r", self)
        if optimizer is not None:
            result = optimizer.optimize(self._complete_llk)
        else:
            with warnings.catch_warnings():
                # Separation and step-size chatter; convergence is
                # reported through the result instead.
                warnings.filterwarnings("ignore", category=SmConvergenceWarning)
                warnings.filterwarnings("ignore", category=PerfectSeparationWarning)
                warnings.filterwarnings("ignore", category=RuntimeWarning)
                sm_model = sm.GLM(
                    self.y,
                    self.X,
                    family=sm.families.Binomial(link=self.link.to_statsmodels()),
                ).fit()
            self.set_parameters(np.asarray(sm_model.params, dtype=float))
            result = EstimationResult(
                parameters=self.get_parameters(),
                log_likelihood=self._complete_llk.get_value(),
                variance=np.asarray(sm_model.cov_params(), dtype=float),
                iterations=int(sm_model.fit_history.get("iteration", 0)),
                converged=bool(getattr(sm_model, "converged", True)),
            )
        self._estimation = result
        logger.info(
            "Estimation %s; llk = %s",
            "converged" if result.converged else "did not converge",
            result.log_likelihood,
        )
        return result

    def fit(self, optimizer: NewtonRaphsonOptimizer | None = None) -> Self:
        """Run :meth:`do_estimation` and return the model for chaining."""
        self.do_estimation(optimizer)
        return self

    def get_predicted(self) -> np.ndarray:
        """Fitted success probabilities at the estimated coefficients."""
        estimates = self.parameter_estimates
        self.individual.set_parameters(estimates[: self.individual.get_number_of_parameters()])
        self._reset_log_likelihood()
        return self.individual.predictions()

    def get_residuals(self) -> np.ndarray:
        """Response residuals ``y − p̂``."""
        return self.y - self.get_predicted()

    # ---- Grid search -----------------------------------------------

    def grid_search(
        self, parameter_index: int, start: float, end: float, step: float
    ) -> GridSearchResult:
        """Sweep one parameter and adopt the best log-likelihood.

        Grid values are ``start + k·step`` while below ``end + step``.
        At each value the log-likelihood is evaluated with every other
        parameter held at its current value.  The point with the
        highest non-NaN log-likelihood (first one on ties) becomes the
        current parameter vector.

        Raises:
            ValueError: If ``start >= end``, ``step <= 0`` or every
                log-likelihood of the grid is NaN.
            IndexError: If *parameter_index* is out of range.
        """
        if start >= end:
            msg = f"The grid start ({start}) must be smaller than its end ({end})."
            raise ValueError(msg)
        if step <= 0:
            msg = f"The grid step must be positive, got {step}."
            raise ValueError(msg)
        original = self.get_parameters()
        if not 0 <= parameter_index < original.size:
            msg = f"Parameter index {parameter_index} is out of range [0, {original.size})."
            raise IndexError(msg)

        llk_function = self.get_complete_log_likelihood()
        logger.info("Initializing grid search on parameter %d", parameter_index)
        points: list[GridSearchPoint] = []
        k = 0
        value = start
        while value < end + step:
            beta = original.copy()
            beta[parameter_index] = value
            self.set_parameters(beta)
            self._reset_log_likelihood()
            llk = float(llk_function.get_value())
            points.append(GridSearchPoint(value=value, parameters=beta, log_likelihood=llk))
            logger.info("Parameter value : %s; Log-likelihood : %s", value, llk)
            k += 1
            value = start + k * step

        valid = [i for i, point in enumerate(points) if not math.isnan(point.log_likelihood)]
        if not valid:
            self.set_parameters(original)
            self._reset_log_likelihood()
            msg = "All the log-likelihoods of the grid are NaN."
            raise ValueError(msg)
        best_index = max(valid, key=lambda i: points[i].log_likelihood)
        self.set_parameters(points[best_index].parameters)
        self._reset_log_likelihood()
        return GridSearchResult(
            parameter_index=parameter_index, points=points, best_index=best_index
        )

    # ---- Summary ---------------------------------------------------

    def get_summary(self) -> dict:
        """Estimates table and log-likelihood of the converged fit.

        Returns:
            ``{"model", "estimates", "log_likelihood", "converged",
            "n_observations"}`` where ``estimates`` is a DataFrame
            indexed by parameter name.
        """
        result = self._require_convergence()
        se = result.standard_errors
        with np.errstate(divide="ignore", invalid="ignore"):
            z = result.parameters / se
        estimates = pd.DataFrame(
            {
                "Estimate": result.parameters,
                "Std. Error": se,
                "z value": z,
                "P>|z|": 2.0 * stats.norm.sf(np.abs(z)),
            },
            index=self.parameter_names,
        )
        return {
            "model": repr(self),
            "estimates": estimates,
            "log_likelihood": result.log_likelihood,
            "converged": result.converged,
            "n_observations": self.n_observations,
        }


__all__ = ["INTERCEPT", "GeneralizedLinearModel", "parse_model_definition"]
