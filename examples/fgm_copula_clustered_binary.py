"""
Test Case 1: FGM Copula GLM (Binary Outcome, Plots Nested in Strata)
Simulated forest-plot occupancy data

Demonstrates:
- ``GeneralizedLinearModel`` — independence logistic fit via statsmodels
- ``SimpleCopulaExpression`` — constant within-plot dependence
- ``DistanceLinkFunctionCopulaExpression`` — dependence decaying with
  the distance between trees of a plot
- ``grid_search`` to pick a starting value for the copula parameter
- Newton–Raphson estimation of the composite log-likelihood
- Spearman correlation of residuals per distance stratum

Dataset
-------
60 plots in 3 strata, 6 trees per plot.  Each tree carries a binary
outcome (``infested``), a continuous covariate (``dbh``, diameter at
breast height) and planar coordinates in tens of metres.  A plot-level
random effect induces positive within-plot dependence that the
independence GLM ignores:

    Level 2: Plots (n = 60), nested in strata (n = 3)
    Level 1: Trees within plots (6 each)
"""

import logging
import warnings

import numpy as np
import pandas as pd
from scipy.special import expit
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from fgm_copula import (
    DistanceLinkFunctionCopulaExpression,
    FGMCopulaGLModel,
    GeneralizedLinearModel,
    SimpleCopulaExpression,
    print_grid_search_table,
    print_summary_table,
)

logging.basicConfig(level=logging.WARNING)

# ============================================================================
# Simulate data
# ============================================================================

rng = np.random.default_rng(42)
n_plots, n_trees = 60, 6
plot = np.repeat(np.arange(n_plots), n_trees)
stratum = np.array(["north", "centre", "south"])[plot % 3]
dbh = rng.normal(25.0, 6.0, size=plot.size)
plot_effect = rng.normal(scale=0.8, size=n_plots)[plot]
eta = -1.0 + 0.06 * (dbh - 25.0) + plot_effect
infested = (rng.uniform(size=plot.size) < expit(eta)).astype(int)

df = pd.DataFrame(
    {
        "stratum": stratum,
        "plot": plot,
        "dbh": dbh,
        "x": rng.uniform(0.0, 3.0, size=plot.size),
        "y": rng.uniform(0.0, 3.0, size=plot.size),
        "infested": infested,
    }
)

print("Dataset: simulated forest plots")
print(f"  Observations:  {len(df)}")
print(f"  Plots:         {n_plots}")
print(f"  Prevalence:    {df['infested'].mean():.2%}")
print()

# ============================================================================
# Independence GLM
# ============================================================================

glm = GeneralizedLinearModel(df, "logit", "infested ~ dbh").fit()
print_summary_table(glm, title="Independence Logistic GLM")

# ============================================================================
# Constant copula: grid search, then Newton–Raphson
# ============================================================================

simple = FGMCopulaGLModel(glm, SimpleCopulaExpression(0.0, "stratum/plot"))
grid = simple.grid_search(simple.n_parameters - 1, -0.5, 0.5, 0.1)
print_grid_search_table(grid, title="Grid Search on the Copula Parameter")

with warnings.catch_warnings():
    warnings.filterwarnings("ignore", category=ConvergenceWarning)
    simple.do_estimation()

if simple.is_converged:
    print_summary_table(simple, title="FGM Copula GLM (constant dependence)")
else:
    print("Constant copula model did not converge.")

# ============================================================================
# Distance copula: dependence = exp(b0 + b1 · distance)
# ============================================================================

distance = FGMCopulaGLModel(
    glm,
    DistanceLinkFunctionCopulaExpression(
        "log", "stratum/plot", "x + y", -1.0, -0.5, intercept=True
    ),
)

with warnings.catch_warnings():
    warnings.filterwarnings("ignore", category=ConvergenceWarning)
    distance.do_estimation()

if distance.is_converged:
    print_summary_table(distance, title="FGM Copula GLM (distance-dependent)")
    strata = [e.to_dict() for e in distance.get_spearman_correlations(n_bins=5)]
    print(pd.DataFrame(strata).to_string(index=False))
else:
    print("Distance copula model did not converge.")
