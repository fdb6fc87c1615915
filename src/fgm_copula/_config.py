"""Optimizer configuration for the fgm_copula package.

Controls the default Newton–Raphson settings used when a model is
estimated without an explicitly configured optimizer.

Resolution order (first match wins), applied per setting:
    1. Programmatic override via :func:`set_optimizer_options`.
    2. The ``FGM_COPULA_MAX_ITER`` / ``FGM_COPULA_TOL`` environment
       variables.
    3. Built-in defaults (``max_iter=100``, ``tol=1e-8``).

Examples:
    Tighten the convergence criterion from the shell::

        export FGM_COPULA_TOL=1e-10

    Override programmatically::

        import fgm_copula
        fgm_copula.set_optimizer_options(max_iter=250)

    Restore the default resolution order::

        fgm_copula.set_optimizer_options(reset=True)
"""

from __future__ import annotations

import os
from typing import Any

_DEFAULTS: dict[str, Any] = {"max_iter": 100, "tol": 1e-8}

_ENV_VARS: dict[str, str] = {
    "max_iter": "FGM_COPULA_MAX_ITER",
    "tol": "FGM_COPULA_TOL",
}

# Programmatic overrides; a missing key means "no override".
_overrides: dict[str, Any] = {}


def _coerce(key: str, value: Any) -> Any:
    """Convert *value* to the type expected for *key* and validate it."""
    try:
        converted = int(value) if key == "max_iter" else float(value)
    except (TypeError, ValueError):
        msg = f"Invalid value for optimizer option '{key}': {value!r}."
        raise ValueError(msg) from None
    if converted <= 0:
        msg = f"Optimizer option '{key}' must be positive, got {converted!r}."
        raise ValueError(msg)
    return converted


def get_optimizer_options() -> dict[str, Any]:
    """Return the resolved optimizer settings.

    Returns:
        ``{"max_iter": int, "tol": float}``.

    Raises:
        ValueError: If an environment variable holds an invalid value.
    """
    options: dict[str, Any] = {}
    for key, default in _DEFAULTS.items():
        # 1. Programmatic override
        if key in _overrides:
            options[key] = _overrides[key]
            continue
        # 2. Environment variable
        env = os.environ.get(_ENV_VARS[key], "").strip()
        if env:
            options[key] = _coerce(key, env)
            continue
        # 3. Default
        options[key] = default
    return options


def set_optimizer_options(
    *,
    max_iter: int | None = None,
    tol: float | None = None,
    reset: bool = False,
) -> None:
    """Override the default optimizer settings.

    Args:
        max_iter: Maximum number of Newton–Raphson iterations.
        tol: Convergence tolerance on ``|gᵀH⁻¹g / llk|``.
        reset: When ``True``, drop every programmatic override first.

    Raises:
        ValueError: If a supplied value is not strictly positive.
    """
    if reset:
        _overrides.clear()
    if max_iter is not None:
        _overrides["max_iter"] = _coerce("max_iter", max_iter)
    if tol is not None:
        _overrides["tol"] = _coerce("tol", tol)
