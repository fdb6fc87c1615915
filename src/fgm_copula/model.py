"""Binary GLM with within-group dependence through an FGM copula.

The marginal model is estimated first (if it has not been already) and
its coefficients become the starting point of the joint fit.  The copula
expression is then bound to the data set, which validates its
hierarchical levels and distance fields, and the composite
log-likelihood is assembled.  The parameter vector of the joint model is
the marginal coefficients followed by the copula parameters.

Typical use::

    glm = GeneralizedLinearModel(df, "logit", "y ~ x1 + x2")
    copula = SimpleCopulaExpression(0.0, "stratum/plot")
    model = FGMCopulaGLModel(glm, copula)
    model.grid_search(model.n_parameters - 1, -0.5, 0.5, 0.1)
    model.do_estimation()
    print_summary_table(model)
"""

from __future__ import annotations

import logging

import numpy as np

from ._results import CorrelationEstimate, EstimationResult
from ._typing import VectorLike
from .copulas import CopulaExpression
from .diagnostics import DEFAULT_N_BINS, spearman_correlation_coefficients
from .glm import GeneralizedLinearModel
from .likelihood import FGMCompositeLogLikelihood
from .optimizer import NewtonRaphsonOptimizer

logger = logging.getLogger(__name__)


class FGMCopulaGLModel(GeneralizedLinearModel):
    """FGM copula extension of a binary :class:`GeneralizedLinearModel`.

    The marginal model's data, design matrix and per-observation
    likelihood are shared, not copied.

    Args:
        glm: Marginal model.  Estimated here when not yet converged.
        copula: Copula expression with its starting parameters.

    Raises:
        StatisticalDataError: If the copula's hierarchical levels or
            distance fields are not fields of the data set, or a
            distance copula is paired with non-spatial data.
        RuntimeError: If the marginal model fails to converge.
    """

    def __init__(self, glm: GeneralizedLinearModel, copula: CopulaExpression) -> None:
        if not glm.is_converged:
            glm.do_estimation()
        glm.set_parameters(glm.parameter_estimates)

        self._bind(glm)
        self.marginal_model = glm

        self.copula = copula
        self.copula.initialize(self, self.data_structure)
        self._complete_llk = FGMCompositeLogLikelihood(
            glm.get_complete_log_likelihood(), copula, self.data_structure
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.model_definition!r}, "
            f"link={self.link.name!r}, copula={self.copula!r})"
        )

    @property
    def n_parameters(self) -> int:
        return self._complete_llk.layout.total

    @property
    def parameter_names(self) -> list[str]:
        names = list(self.feature_names)
        names.extend(
            f"{self.copula.name}[{k}]" for k in range(self.copula.get_number_of_parameters())
        )
        return names

    def get_complete_log_likelihood(self) -> FGMCompositeLogLikelihood:
        return self._complete_llk

    def get_parameters(self) -> np.ndarray:
        return self._complete_llk.get_parameters()

    def set_parameters(self, beta: VectorLike | None) -> None:
        """Set marginal and copula parameters together.

        ``None`` resets the marginal coefficients to zero and leaves the
        copula parameters untouched.
        """
        if beta is None:
            self.individual.set_parameters(None)
        else:
            self._complete_llk.set_parameters(beta)
        self._reset_log_likelihood()

    def _reset_log_likelihood(self) -> None:
        self._complete_llk.invalidate_all()

    def do_estimation(
        self, optimizer: NewtonRaphsonOptimizer | None = None
    ) -> EstimationResult:
        """Maximise the composite log-likelihood from the current parameters."""
        optimizer = NewtonRaphsonOptimizer() if optimizer is None else optimizer
        logger.info("Estimating %r", self)
        result = optimizer.optimize(self._complete_llk)
        self._estimation = result
        return result

    def get_spearman_correlations(
        self, n_bins: int = DEFAULT_N_BINS, distance_dimension: int = 0
    ) -> list[CorrelationEstimate]:
        return spearman_correlation_coefficients(
            self, n_bins=n_bins, distance_dimension=distance_dimension
        )

    def get_summary(self) -> dict:
        """Estimates table plus Spearman residual correlations.

        Raises:
            RuntimeError: If the model has not converged.
        """
        summary = super().get_summary()
        summary["spearman"] = self.get_spearman_correlations()
        return summary


__all__ = ["FGMCopulaGLModel"]
