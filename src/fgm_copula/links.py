"""Link functions shared by the marginal GLM and the copula expressions.

A link function maps an unconstrained linear predictor η = xᵀβ to a
constrained scale.  Because η is linear in β, every derivative with
respect to β factorises through the derivatives with respect to η:

    ∂g/∂β   = g'(η) · x
    ∂²g/∂β² = g''(η) · x xᵀ

so each link only has to provide ``g``, ``g'`` and ``g''`` as scalar
(or elementwise) functions of η.

=============  =======================  ============================
Link           g(η)                     Typical use
=============  =======================  ============================
``logit``      exp(η) / (1 + exp(η))    logistic marginal, logistic
                                        constant copula
``log``        exp(η)                   distance-decay copula
``cloglog``    1 − exp(−exp(η))         occurrence models with
                                        exposure time
=============  =======================  ============================
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np
import statsmodels.api as sm
from scipy.special import expit


class LinkType(str, Enum):
    """Available link functions."""

    LOGIT = "logit"
    LOG = "log"
    CLOGLOG = "cloglog"


@dataclass(frozen=True)
class LinkFunction:
    """Inverse link g(η) with its first two derivatives.

    The class is stateless; the linear predictor is always passed in.
    Inputs may be scalars or arrays — all operations are elementwise.
    """

    type: LinkType

    @property
    def name(self) -> str:
        return self.type.value

    def value(self, eta: np.ndarray | float) -> np.ndarray | float:
        """Return g(η)."""
        return self.derivatives(eta)[0]

    def derivatives(
        self, eta: np.ndarray | float
    ) -> tuple[np.ndarray | float, np.ndarray | float, np.ndarray | float]:
        """Return ``(g(η), g'(η), g''(η))``."""
        eta = np.asarray(eta, dtype=float)
        if self.type is LinkType.LOGIT:
            g = expit(eta)
            g1 = g * (1.0 - g)
            g2 = g1 * (1.0 - 2.0 * g)
        elif self.type is LinkType.LOG:
            g = np.exp(eta)
            g1 = g
            g2 = g
        else:
            exp_eta = np.exp(eta)
            survival = np.exp(-exp_eta)
            g = 1.0 - survival
            g1 = survival * exp_eta
            g2 = g1 * (1.0 - exp_eta)
        if g.ndim == 0:
            return float(g), float(g1), float(g2)
        return g, g1, g2

    def to_statsmodels(self) -> sm.families.links.Link:
        """Return the equivalent statsmodels link instance."""
        if self.type is LinkType.LOGIT:
            return sm.families.links.Logit()
        if self.type is LinkType.LOG:
            return sm.families.links.Log()
        return sm.families.links.CLogLog()


def resolve_link(link: str | LinkType | LinkFunction) -> LinkFunction:
    """Resolve a link name, enum member or instance to a ``LinkFunction``.

    Instances are returned as-is.

    Raises:
        ValueError: If *link* is a string that names no known link.
    """
    if isinstance(link, LinkFunction):
        return link
    if isinstance(link, LinkType):
        return LinkFunction(link)
    key = str(link).strip().lower()
    try:
        return LinkFunction(LinkType(key))
    except ValueError:
        available = ", ".join(t.value for t in LinkType)
        msg = f"Unknown link function {link!r}.  Available links: {available}."
        raise ValueError(msg) from None


__all__ = ["LinkFunction", "LinkType", "resolve_link"]
