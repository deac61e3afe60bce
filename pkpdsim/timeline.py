"""
Regimen Timeline

Translates a regimen into time-ordered breakpoints. Each breakpoint
carries the state mutations taking effect at that instant:

- bolus:           add amount to the target compartment (bolus and oral doses)
- infusion_start:  switch on rate = amount / t_inf until start + t_inf
- infusion_end:    switch the matching infusion off
- covariate:       covariate slope change (no state change)
- terminal:        end of the simulation horizon

Discontinuous inputs therefore only ever happen at segment boundaries.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from ._core import RegimenValidationError
from .regimen import Regimen, regimen_duration

logger = logging.getLogger(__name__)

# Added to the last event time when the regimen has no inter-dose gap
DEFAULT_SINGLE_DOSE_HORIZON = 24.0

# Breakpoint times are rounded to this many decimals so that events that
# coincide up to floating point error share one breakpoint.
TIME_DECIMALS = 10


class MutationKind(str, Enum):
    BOLUS = "bolus"
    INFUSION_START = "infusion_start"
    INFUSION_END = "infusion_end"
    COVARIATE = "covariate"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class Mutation:
    """
    State change applied at a breakpoint.

    Attributes:
        kind: Mutation kind
        cmt: Target compartment (1-based), None for the model's default
        amount: Dose amount (bolus, or the whole infusion)
        rate: Infusion rate (amount / duration)
        infusion: Index of the dose that started the infusion
        end: Time the infusion stops
    """
    kind: MutationKind
    cmt: Optional[int] = None
    amount: float = 0.0
    rate: float = 0.0
    infusion: Optional[int] = None
    end: Optional[float] = None


@dataclass(frozen=True)
class Breakpoint:
    time: float
    mutations: Tuple[Mutation, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return any(m.kind is MutationKind.TERMINAL for m in self.mutations)


@dataclass(frozen=True)
class Timeline:
    """
    Strictly time-ordered breakpoints ending with a terminal marker at tmax.

    Example:
        >>> tl = build_timeline(new_regimen(amt=100.0, times=[0.0], t_inf=2.0), tmax=12.0)
        >>> tl.times
        [0.0, 2.0, 12.0]
    """
    breakpoints: Tuple[Breakpoint, ...]
    tmax: float

    @property
    def times(self) -> List[float]:
        return [bp.time for bp in self.breakpoints]

    def segments(self, t0: float = 0.0) -> Iterator[Tuple[float, float, Tuple[Mutation, ...]]]:
        """
        Yield (start, end, mutations) integration spans covering [t0, tmax].

        When the first breakpoint lies after t0 a leading span without
        mutations is produced so that the trajectory always starts at t0.
        """
        bps = self.breakpoints
        if bps[0].time > t0:
            yield t0, bps[0].time, ()
        for bp, nxt in zip(bps, bps[1:]):
            yield bp.time, nxt.time, bp.mutations


def default_horizon(regimen: Regimen) -> float:
    """
    Last dose event (including infusion ends) plus the largest inter-dose gap.

    With fewer than two doses the gap is DEFAULT_SINGLE_DOSE_HORIZON.
    This is a heuristic default, not a guarantee that the horizon covers
    the full response for irregular regimens.
    """
    times = sorted(regimen.dose_times)
    gaps = [b - a for a, b in zip(times, times[1:])]
    gap = max(gaps) if gaps and max(gaps) > 0 else DEFAULT_SINGLE_DOSE_HORIZON
    return regimen_duration(regimen) + gap


def build_timeline(
    regimen: Regimen,
    tmax: Optional[float] = None,
    covariate_times: Iterable[float] = (),
) -> Timeline:
    """
    Build the breakpoint timeline for a regimen.

    Args:
        regimen: Dosing regimen
        tmax: Simulation horizon (default: see default_horizon)
        covariate_times: Times where a covariate changes slope

    Returns:
        Timeline with a terminal breakpoint at tmax

    Raises:
        RegimenValidationError: for an infusion with non-positive duration
        (only reachable when the regimen was built with checks=False)

    Example:
        >>> reg = new_regimen(amt=100.0, interval=12.0, n=2)
        >>> build_timeline(reg, tmax=36.0).times
        [0.0, 12.0, 36.0]
    """
    if tmax is None:
        tmax = default_horizon(regimen)
    tmax = round(float(tmax), TIME_DECIMALS)
    if tmax <= 0:
        raise ValueError(f"tmax must be positive (got {tmax})")

    events: Dict[float, List[Mutation]] = defaultdict(list)
    truncated = 0

    for idx, dose in enumerate(regimen.doses):
        start = round(dose.time, TIME_DECIMALS)
        if start >= tmax:
            truncated += 1
            continue
        if dose.is_infusion:
            if not dose.t_inf > 0:
                raise RegimenValidationError(
                    f"Infusion at t={dose.time:g} has non-positive duration {dose.t_inf:g}"
                )
            end = round(dose.time + dose.t_inf, TIME_DECIMALS)
            rate = dose.amount / dose.t_inf
            events[start].append(
                Mutation(MutationKind.INFUSION_START, cmt=dose.cmt, amount=dose.amount,
                         rate=rate, infusion=idx, end=end)
            )
            if end < tmax:
                events[end].append(
                    Mutation(MutationKind.INFUSION_END, cmt=dose.cmt, rate=rate, infusion=idx)
                )
        else:
            events[start].append(Mutation(MutationKind.BOLUS, cmt=dose.cmt, amount=dose.amount))

    if truncated:
        logger.warning("%d dose(s) at or after tmax=%g were not simulated", truncated, tmax)

    for t in covariate_times:
        t = round(float(t), TIME_DECIMALS)
        if 0 < t < tmax:
            events[t].append(Mutation(MutationKind.COVARIATE))

    breakpoints = [Breakpoint(time=t, mutations=tuple(events[t])) for t in sorted(events)]
    breakpoints.append(Breakpoint(time=tmax, mutations=(Mutation(MutationKind.TERMINAL),)))
    return Timeline(breakpoints=tuple(breakpoints), tmax=tmax)
