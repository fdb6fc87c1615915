"""Newton–Raphson maximisation of a log-likelihood.

The optimizer drives any object that satisfies
:class:`~fgm_copula.likelihood.LogLikelihood`.  When the objective also
implements :class:`~fgm_copula.likelihood.OptimizerListener` it is
notified with ``"optimization started"`` once, with
``"inner iteration started"`` before every trial point of the line
search, which is when cached derivatives must be discarded, and with
``"optimization ended"`` once the run finishes, converged or not.

Each outer iteration proposes the Newton step ``−H⁻¹g`` and scales it
according to the :class:`LineSearchMethod` until a trial point lies
within the parameter bounds and does not decrease the log-likelihood.
Convergence is declared when ``gᵀH⁻¹g / llk`` falls below ``tol``.
A log-likelihood of exactly zero (saturated fitted values) makes the
ratio infinite rather than raising.

Failure to converge does not raise: a statsmodels
``ConvergenceWarning`` is emitted and the returned
:class:`~fgm_copula._results.EstimationResult` has ``converged=False``.
"""

from __future__ import annotations

import logging
import math
import warnings
from collections.abc import Callable, Mapping
from enum import Enum

import numpy as np
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from ._config import get_optimizer_options
from ._results import EstimationResult
from .copulas import ParameterBound
from .likelihood import (
    INNER_ITERATION_STARTED,
    OPTIMIZATION_ENDED,
    OPTIMIZATION_STARTED,
    LogLikelihood,
    OptimizerListener,
)

logger = logging.getLogger(__name__)


class LineSearchMethod(Enum):
    """Step scaling schedules for the inner line search.

    The value is the maximum number of trial points.
    """

    TEN_EQUAL = 10
    """Scale factors 1.0, 0.9, ..., 0.1."""

    HALF_STEP = 30
    """Scale factors 1, 1/2, 1/4, ..."""

    SINGLE_TRIAL = 1
    """Full step only."""

    def scaling_factor(self, trial: int) -> float:
        if self is LineSearchMethod.TEN_EQUAL:
            return 1.0 - trial * 0.1
        if self is LineSearchMethod.HALF_STEP:
            return 0.5**trial
        return 1.0


class NewtonRaphsonOptimizer:
    """Bounded Newton–Raphson maximiser with a scaled-step line search.

    Args:
        max_iter: Maximum number of outer iterations.  Defaults to the
            value resolved by :func:`~fgm_copula.get_optimizer_options`.
        tol: Convergence criterion on ``gᵀH⁻¹g / llk``.  Defaults to
            the resolved configuration.
        line_search: Step scaling schedule.
    """

    def __init__(
        self,
        max_iter: int | None = None,
        tol: float | None = None,
        line_search: LineSearchMethod = LineSearchMethod.TEN_EQUAL,
    ) -> None:
        options = get_optimizer_options()
        self.max_iter = int(options["max_iter"] if max_iter is None else max_iter)
        self.tol = float(options["tol"] if tol is None else tol)
        self.line_search = line_search
        self._listeners: list[Callable[[str], None]] = []

    def add_listener(self, listener: Callable[[str], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[str], None]) -> None:
        self._listeners.remove(listener)

    def _fire(self, action: str) -> None:
        for listener in self._listeners:
            listener(action)

    @staticmethod
    def _within_bounds(beta: np.ndarray, bounds: Mapping[int, ParameterBound]) -> bool:
        return all(bound.contains(beta[index]) for index, bound in bounds.items())

    @staticmethod
    def _convergence(gradient: np.ndarray, hessian: np.ndarray, llk: float) -> float:
        try:
            quad = float(gradient @ np.linalg.solve(hessian, gradient))
        except np.linalg.LinAlgError:
            return math.nan
        if llk == 0.0:
            return math.copysign(math.inf, quad) if quad else math.nan
        return quad / llk

    def _line_search(
        self,
        function: LogLikelihood,
        beta: np.ndarray,
        step: np.ndarray,
        previous: float,
        bounds: Mapping[int, ParameterBound],
    ) -> float:
        """Try scaled steps; return the accepted llk or NaN if none improves."""
        value = math.nan
        for trial in range(self.line_search.value):
            self._fire(INNER_ITERATION_STARTED)
            candidate = beta + self.line_search.scaling_factor(trial) * step
            if not self._within_bounds(candidate, bounds):
                logger.debug("Trial %d: parameters %s exceed bounds", trial, candidate)
                continue
            function.set_parameters(candidate)
            value = function.get_value()
            logger.debug("Trial %d: parameters %s, llk %s", trial, candidate, value)
            if not math.isnan(value) and value >= previous:
                return value
        # Restore the starting point so the caches match the parameters.
        self._fire(INNER_ITERATION_STARTED)
        function.set_parameters(beta)
        return math.nan

    def optimize(self, function: LogLikelihood) -> EstimationResult:
        """Maximise *function* starting from its current parameters.

        Returns:
            The final parameters, log-likelihood, variance
            ``(−H)⁻¹`` (``None`` when singular), number of iterations
            and convergence flag.
        """
        listener = function.optimizer_did_this if isinstance(function, OptimizerListener) else None
        if listener is not None:
            self.add_listener(listener)
        bounds: Mapping[int, ParameterBound] = (
            function.get_bounds() if hasattr(function, "get_bounds") else {}
        )
        try:
            self._fire(OPTIMIZATION_STARTED)
            llk = function.get_value()
            gradient = function.get_gradient()
            hessian = function.get_hessian()
            logger.info("Starting Newton-Raphson; initial llk = %s", llk)

            iteration = 0
            converged = abs(self._convergence(gradient, hessian, llk)) < self.tol
            while not converged and iteration < self.max_iter:
                iteration += 1
                try:
                    step = -np.linalg.solve(hessian, gradient)
                except np.linalg.LinAlgError:
                    logger.info("Singular Hessian at iteration %d", iteration)
                    break
                beta = function.get_parameters()
                previous = llk
                accepted = self._line_search(function, beta, step, previous, bounds)
                if math.isnan(accepted):
                    logger.info("Failed to improve the log-likelihood at iteration %d", iteration)
                    break
                llk = accepted
                gradient = function.get_gradient()
                hessian = function.get_hessian()
                gconv = self._convergence(gradient, hessian, llk)
                logger.debug(
                    "Iteration %d: llk %s, gconv %s, parameters %s",
                    iteration, llk, gconv, function.get_parameters(),
                )
                if gconv < 0:
                    # Hessian not negative definite at the new point.
                    relative = abs(llk - previous) / abs(previous) if previous else math.inf
                    converged = not np.any(np.abs(gradient) > 1e-5) or relative < 1e-8
                    break
                converged = gconv < self.tol
            self._fire(OPTIMIZATION_ENDED)
        finally:
            if listener is not None:
                self.remove_listener(listener)

        if converged:
            logger.info("Newton-Raphson converged after %d iteration(s); llk = %s", iteration, llk)
        else:
            warnings.warn(
                f"Newton-Raphson did not converge after {iteration} iteration(s).",
                ConvergenceWarning,
                stacklevel=2,
            )

        try:
            variance = np.linalg.inv(-hessian)
        except np.linalg.LinAlgError:
            variance = None
        return EstimationResult(
            parameters=function.get_parameters(),
            log_likelihood=float(llk),
            variance=variance,
            iterations=iteration,
            converged=bool(converged),
        )


__all__ = ["LineSearchMethod", "NewtonRaphsonOptimizer"]
