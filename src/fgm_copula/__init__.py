"""fgm_copula — Binary GLMs with FGM copula dependence within groups.

Fits a generalized linear model to clustered binary outcomes and then
captures the dependence between observations of the same hierarchical
group through a Farlie–Gumbel–Morgenstern copula, whose dependence
parameter may be constant or decay with the distance between
observations.  Estimation maximises a composite log-likelihood with
analytic gradient and Hessian by Newton–Raphson.

Public API:
    .. autosummary::
        GeneralizedLinearModel
        FGMCopulaGLModel
        CopulaExpression
        SimpleCopulaExpression
        SimpleLogisticCopulaExpression
        DistanceLinkFunctionCopulaExpression
        ParameterBound
        CopulaEvaluation
        register_copula
        resolve_copula
        HierarchicalDataStructure
        HierarchicalSpatialDataStructure
        EuclideanDistanceCalculator
        GeographicDistanceCalculator
        LinkFunction
        LinkType
        FGMCompositeLogLikelihood
        CompositeLogLikelihood
        GLMIndividualLikelihood
        CacheState
        ParameterLayout
        NewtonRaphsonOptimizer
        LineSearchMethod
        spearman_correlation_coefficients
        print_summary_table
        print_grid_search_table
        get_optimizer_options
        set_optimizer_options
        StatisticalDataError
        EstimationResult
        GridSearchResult
        CorrelationEstimate
"""

from ._config import get_optimizer_options, set_optimizer_options
from ._exceptions import StatisticalDataError
from ._results import (
    CorrelationEstimate,
    EstimationResult,
    GridSearchPoint,
    GridSearchResult,
)
from .copulas import (
    CopulaEvaluation,
    CopulaExpression,
    DistanceLinkFunctionCopulaExpression,
    ParameterBound,
    SimpleCopulaExpression,
    SimpleLogisticCopulaExpression,
    register_copula,
    resolve_copula,
)
from .data import (
    EuclideanDistanceCalculator,
    GeographicDistanceCalculator,
    HierarchicalDataStructure,
    HierarchicalSpatialDataStructure,
)
from .diagnostics import mid_ranks, spearman_correlation_coefficients
from .display import print_grid_search_table, print_summary_table
from .glm import GeneralizedLinearModel
from .likelihood import (
    INNER_ITERATION_STARTED,
    OPTIMIZATION_ENDED,
    OPTIMIZATION_STARTED,
    CacheState,
    CompositeLogLikelihood,
    FGMCompositeLogLikelihood,
    GLMIndividualLikelihood,
    ParameterLayout,
)
from .links import LinkFunction, LinkType, resolve_link
from .model import FGMCopulaGLModel
from .optimizer import LineSearchMethod, NewtonRaphsonOptimizer

__all__ = [
    "CorrelationEstimate",
    "EstimationResult",
    "GridSearchPoint",
    "GridSearchResult",
    "StatisticalDataError",
    "GeneralizedLinearModel",
    "FGMCopulaGLModel",
    "CopulaEvaluation",
    "CopulaExpression",
    "DistanceLinkFunctionCopulaExpression",
    "ParameterBound",
    "SimpleCopulaExpression",
    "SimpleLogisticCopulaExpression",
    "register_copula",
    "resolve_copula",
    "EuclideanDistanceCalculator",
    "GeographicDistanceCalculator",
    "HierarchicalDataStructure",
    "HierarchicalSpatialDataStructure",
    "LinkFunction",
    "LinkType",
    "resolve_link",
    "INNER_ITERATION_STARTED",
    "OPTIMIZATION_ENDED",
    "OPTIMIZATION_STARTED",
    "CacheState",
    "CompositeLogLikelihood",
    "FGMCompositeLogLikelihood",
    "GLMIndividualLikelihood",
    "ParameterLayout",
    "LineSearchMethod",
    "NewtonRaphsonOptimizer",
    "mid_ranks",
    "spearman_correlation_coefficients",
    "print_grid_search_table",
    "print_summary_table",
    "get_optimizer_options",
    "set_optimizer_options",
]

__version__ = "0.1.0"
