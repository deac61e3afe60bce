"""
ODE Solver Configuration

This module wraps the external numerical integrator consumed by the
simulation driver. The driver only relies on the integrator contract:

    integrator(fun, y0, times, args) -> array of shape (len(times), len(y0))

where row ``k`` is the state at ``times[k]`` and row 0 equals ``y0``.
The default integrator uses ``scipy.integrate.solve_ivp``.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import numpy as np
from scipy.integrate import solve_ivp

from ._core import IntegrationError

Integrator = Callable[[Callable[..., Any], np.ndarray, np.ndarray, Tuple[Any, ...]], np.ndarray]

SUPPORTED_ALGS = ("LSODA", "RK45", "RK23", "DOP853", "Radau", "BDF")


@dataclass(frozen=True)
class SolverSpec:
    """
    Settings for the default scipy integrator.

    Attributes:
        alg: solve_ivp method name (default: "LSODA")
        reltol: Relative tolerance (default: 1e-8)
        abstol: Absolute tolerance (default: 1e-10)
        max_step: Maximum internal step size (default: unbounded)

    Example:
        >>> solver = SolverSpec(alg="RK45", reltol=1e-6)
    """
    alg: str = "LSODA"
    reltol: float = 1e-8
    abstol: float = 1e-10
    max_step: float = math.inf

    def __post_init__(self):
        if self.alg not in SUPPORTED_ALGS:
            raise ValueError(f"Unsupported solver alg: {self.alg}")
        if self.reltol <= 0 or self.abstol <= 0:
            raise ValueError("Solver tolerances must be positive")
        if self.max_step <= 0:
            raise ValueError("max_step must be positive")

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if math.isinf(self.max_step):
            d["max_step"] = None
        return d

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SolverSpec":
        if not data:
            return cls()
        data = dict(data)
        if data.get("max_step") is None:
            data["max_step"] = math.inf
        return cls(**data)


def scipy_integrator(spec: Optional[SolverSpec] = None) -> Integrator:
    """
    Build an integrator backed by scipy.integrate.solve_ivp.

    Args:
        spec: Solver settings (default: SolverSpec())

    Returns:
        Callable following the integrator contract

    Example:
        >>> integrate = scipy_integrator(SolverSpec(alg="RK45"))
    """
    spec = spec or SolverSpec()

    def integrate(
        fun: Callable[..., Any],
        y0: np.ndarray,
        times: Sequence[float],
        args: Tuple[Any, ...] = (),
    ) -> np.ndarray:
        times = np.asarray(times, dtype=float)
        sol = solve_ivp(
            fun,
            (float(times[0]), float(times[-1])),
            np.asarray(y0, dtype=float),
            method=spec.alg,
            t_eval=times,
            args=args,
            rtol=spec.reltol,
            atol=spec.abstol,
            max_step=spec.max_step,
        )
        if not sol.success:
            raise IntegrationError(f"solve_ivp failed: {sol.message}")
        return sol.y.T

    return integrate
