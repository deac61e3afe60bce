"""
Time-varying Covariates

Covariate series and the interpolation used by the compiled kernel:
- Linear interpolation between observations ("interpolate")
- Last observation carried forward ("locf")

During integration a covariate is represented by its runtime state
(base value, gradient, segment start) so that the kernel evaluates

    value(t) = base + gradient * (t - start)

The runtime state is refreshed at every breakpoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from ._core import _as_list


class Interpolation(str, Enum):
    """Covariate interpolation modes."""
    LINEAR = "interpolate"
    LOCF = "locf"


_ALIASES = {
    "interpolate": Interpolation.LINEAR,
    "linear": Interpolation.LINEAR,
    "locf": Interpolation.LOCF,
    "carry_forward": Interpolation.LOCF,
    "carry-forward": Interpolation.LOCF,
}


def _interpolation(mode: Union[str, Interpolation]) -> Interpolation:
    if isinstance(mode, Interpolation):
        return mode
    try:
        return _ALIASES[str(mode).lower()]
    except KeyError:
        raise ValueError(f"Unknown covariate implementation: {mode}") from None


@dataclass(frozen=True)
class Covariate:
    """
    Named-by-key time series of covariate observations.

    Attributes:
        values: Observed values
        times: Observation times (strictly increasing)
        implementation: Interpolation mode

    Example:
        >>> wt = Covariate(values=(70.0, 80.0), times=(0.0, 48.0))
    """
    values: Tuple[float, ...]
    times: Tuple[float, ...]
    implementation: Interpolation = Interpolation.LINEAR

    def __post_init__(self):
        if len(self.values) == 0:
            raise ValueError("Covariate needs at least one value")
        if len(self.values) != len(self.times):
            raise ValueError(
                f"Covariate values ({len(self.values)}) and times ({len(self.times)}) differ in length"
            )
        if any(b <= a for a, b in zip(self.times, self.times[1:])):
            raise ValueError("Covariate times must be strictly increasing")

    @property
    def is_time_varying(self) -> bool:
        return len(self.values) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "values": list(self.values),
            "times": list(self.times),
            "implementation": self.implementation.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Covariate":
        return new_covariate(data["values"], data["times"], data.get("implementation", "interpolate"))


@dataclass(frozen=True)
class CovariateSegment:
    """Local linear representation of a covariate around a query time."""
    start: float
    value: float
    gradient: float

    def at(self, t: float) -> float:
        return self.value + self.gradient * (t - self.start)


def new_covariate(
    value: Union[float, Sequence[float]],
    times: Optional[Sequence[float]] = None,
    implementation: Union[str, Interpolation] = "interpolate",
) -> Covariate:
    """
    Create a covariate series.

    Args:
        value: Single value (constant covariate) or sequence of observations
        times: Observation times; defaults to 0 for a single value
        implementation: "interpolate" (linear) or "locf" (carry forward)

    Returns:
        Covariate object

    Example:
        >>> wt = new_covariate(70.0)
        >>> crcl = new_covariate([80.0, 60.0, 65.0], times=[0.0, 24.0, 48.0])
        >>> dose_wt = new_covariate([70.0, 72.0], times=[0.0, 72.0], implementation="locf")
    """
    values = [float(v) for v in _as_list(value)]
    if times is None:
        if len(values) != 1:
            raise ValueError("times are required for a time-varying covariate")
        times = [0.0]
    return Covariate(
        values=tuple(values),
        times=tuple(float(t) for t in _as_list(times)),
        implementation=_interpolation(implementation),
    )


def interpolate_covariate(cov: Covariate, t: float) -> CovariateSegment:
    """
    Locate the covariate segment containing time t.

    Before the first observation the first value is held (gradient 0);
    at or after the last observation the last value is held (gradient 0).

    Args:
        cov: Covariate series
        t: Query time

    Returns:
        CovariateSegment with base value, gradient and segment start

    Example:
        >>> seg = interpolate_covariate(new_covariate([1.0, 3.0], [0.0, 2.0]), 1.0)
        >>> seg.at(1.0)
        2.0
    """
    times = np.asarray(cov.times, dtype=float)
    i = int(np.searchsorted(times, t, side="right")) - 1

    if i < 0:
        return CovariateSegment(start=float(times[0]), value=cov.values[0], gradient=0.0)
    if i >= len(times) - 1:
        return CovariateSegment(start=float(times[-1]), value=cov.values[-1], gradient=0.0)

    if cov.implementation is Interpolation.LOCF:
        gradient = 0.0
    else:
        gradient = (cov.values[i + 1] - cov.values[i]) / (times[i + 1] - times[i])
    return CovariateSegment(start=float(times[i]), value=cov.values[i], gradient=float(gradient))


def covariate_state(covariates: Sequence[Covariate], t: float) -> np.ndarray:
    """
    Runtime state vector for the kernel at breakpoint time t.

    Layout per covariate slot k: [base, gradient, start] at 3k, 3k+1, 3k+2.
    """
    state = np.zeros(3 * len(covariates), dtype=float)
    for k, cov in enumerate(covariates):
        seg = interpolate_covariate(cov, t)
        state[3 * k: 3 * k + 3] = (seg.value, seg.gradient, seg.start)
    return state


def covariate_breaks(covariates: Iterable[Covariate]) -> List[float]:
    """Observation times where a covariate's slope or level can change."""
    times = set()
    for cov in covariates:
        if cov.is_time_varying:
            times.update(cov.times)
    return sorted(times)
