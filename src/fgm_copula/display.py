"""Formatted ASCII tables for fitted models and grid searches.

The layout follows the statsmodels summary style: a header panel with
the model description, then one row per parameter with its estimate,
standard error, z statistic and two-sided p-value.  Copula models add a
panel of Spearman residual correlations per distance stratum.
"""

from __future__ import annotations

import math
import textwrap
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ._results import GridSearchResult
    from .glm import GeneralizedLinearModel

_WIDTH = 80


def _truncate(name: str, max_len: int) -> str:
    """Truncate *name* to *max_len*, appending ``'...'`` if needed."""
    if len(name) <= max_len:
        return name
    return name[: max_len - 3] + "..."


def _fmt(val: float, spec: str = ".4f") -> str:
    if val is None or (isinstance(val, float) and math.isnan(val)):
        return "NaN"
    return format(val, spec)


def _significance_marker(p: float) -> str:
    if math.isnan(p):
        return ""
    if p < 0.001:
        return "(***)"
    if p < 0.01:
        return "(**)"
    if p < 0.05:
        return "(*)"
    return "(ns)"


def _title(title: str) -> None:
    print("=" * _WIDTH)
    for line in textwrap.wrap(title, width=_WIDTH - 2):
        print(f"{line:^{_WIDTH}}")
    print("=" * _WIDTH)


def print_summary_table(
    model: GeneralizedLinearModel,
    *,
    title: str = "Copula GLM Results",
) -> None:
    """Print the estimates of a converged model.

    Args:
        model: A converged :class:`~fgm_copula.glm.GeneralizedLinearModel`
            or :class:`~fgm_copula.model.FGMCopulaGLModel`.
        title: Title for the output table.

    Raises:
        RuntimeError: If the model has not converged.
    """
    summary = model.get_summary()
    estimates = summary["estimates"]

    _title(title)
    col1, col2 = 40, 38
    print(
        f"{'Dep. Variable:':<16}{_truncate(model.response, 20):<{col1 - 16}}"
        f"{'No. Observations:':>{col2 - 11}} {summary['n_observations']:>10}"
    )
    print(
        f"{'Link:':<16}{model.link.name:<{col1 - 16}}"
        f"{'Log-Likelihood:':>{col2 - 11}} {_fmt(summary['log_likelihood']):>10}"
    )
    copula = getattr(model, "copula", None)
    copula_label = type(copula).__name__ if copula is not None else "None"
    print(
        f"{'Copula:':<16}{_truncate(copula_label, col1 - 17):<{col1 - 16}}"
        f"{'Converged:':>{col2 - 11}} {str(summary['converged']):>10}"
    )
    print("-" * _WIDTH)

    # Parameter (24) | Estimate (12) | Std. Error (12) | z (10) | P>|z| (12) | marker (10)
    print(
        f"{'Parameter':<24}{'Estimate':>12}{'Std. Error':>12}"
        f"{'z':>10}{'P>|z|':>12}{'':>10}"
    )
    print("-" * _WIDTH)
    for name, row in estimates.iterrows():
        p = float(row["P>|z|"])
        print(
            f"{_truncate(str(name), 23):<24}{_fmt(row['Estimate']):>12}"
            f"{_fmt(row['Std. Error']):>12}{_fmt(row['z value'], '.3f'):>10}"
            f"{_fmt(p):>12}{_significance_marker(p):>10}"
        )

    spearman = summary.get("spearman")
    if spearman:
        print("-" * _WIDTH)
        print("Spearman correlation of residuals")
        print("-" * _WIDTH)
        print(f"{'Stratum':<10}{'Estimate':>14}{'n':>10}{'Pairs':>10}{'t value':>14}")
        for estimate in spearman:
            if estimate.n == 0:
                continue
            print(
                f"{estimate.stratum:<10}{_fmt(estimate.r):>14}{estimate.n:>10}"
                f"{estimate.n_pairs:>10}{_fmt(estimate.t):>14}"
            )

    print("=" * _WIDTH)
    print("(***) p < 0.001   (**) p < 0.01   (*) p < 0.05   (ns) p >= 0.05")
    print()


def print_grid_search_table(
    result: GridSearchResult,
    *,
    title: str = "Grid Search",
) -> None:
    """Print every point of a grid sweep, marking the adopted one."""
    _title(title)
    print(f"{'Parameter index:':<20}{result.parameter_index}")
    print("-" * _WIDTH)
    print(f"{'Value':>16}{'Log-Likelihood':>24}")
    print("-" * _WIDTH)
    for k, point in enumerate(result.points):
        marker = "  <- best" if k == result.best_index else ""
        print(f"{_fmt(point.value):>16}{_fmt(point.log_likelihood):>24}{marker}")
    print("=" * _WIDTH)
    print()


__all__ = ["print_grid_search_table", "print_summary_table"]
