"""
PK/PD Metrics

This module provides functions for computing pharmacokinetic and
pharmacodynamic metrics from simulation results.
"""

import math
from typing import Union

import numpy as np

from ._core import OBS_LABEL, SimulationResult


def cmax(result: SimulationResult, comp: Union[int, str] = OBS_LABEL, id: int = 1) -> float:
    """
    Compute maximum concentration (Cmax) from simulation result.

    Args:
        result: Simulation result (from sim_ode)
        comp: Compartment label to analyze (default: "obs")
        id: Individual id (default: 1)

    Returns:
        float: Maximum value of the specified compartment

    Example:
        >>> result = pkpdsim.sim_ode(model, {"CL": 1.0, "V": 10.0}, regimen=reg)
        >>> print(f"Cmax: {pkpdsim.cmax(result)}")
    """
    _, y = result.series(comp, id)
    return float(np.max(y))


def tmax(result: SimulationResult, comp: Union[int, str] = OBS_LABEL, id: int = 1) -> float:
    """
    Compute time of maximum concentration (Tmax).

    Returns:
        float: First time at which the maximum occurs
    """
    t, y = result.series(comp, id)
    return float(t[int(np.argmax(y))])


def auc_trapezoid(result: SimulationResult, comp: Union[int, str] = OBS_LABEL, id: int = 1) -> float:
    """
    Compute area under the curve (AUC) using trapezoidal rule.

    Repeated times at breakpoints contribute zero width, so pre- and
    post-dose rows can stay in the series.

    Example:
        >>> print(f"AUC: {pkpdsim.auc_trapezoid(result)}")
    """
    t, y = result.series(comp, id)
    if len(t) < 2:
        return 0.0
    return float(np.sum(np.diff(t) * (y[1:] + y[:-1]) / 2.0))


def half_life(cl: float, v: float) -> float:
    """
    Compute elimination half-life from clearance and volume.

    Formula: t1/2 = ln(2) * V / CL

    Args:
        cl: Clearance (volume/time)
        v: Volume of distribution

    Returns:
        float: Elimination half-life (same time units as CL)

    Example:
        >>> t_half = pkpdsim.half_life(cl=1.0, v=10.0)
        >>> print(f"Half-life: {t_half} hours")
    """
    return math.log(2) * v / cl
