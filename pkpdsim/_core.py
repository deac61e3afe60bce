"""
PKPDsim Core - Internal module for errors, result containers and utilities.

This module provides the shared infrastructure used by the model compiler
and the simulation driver: the exception taxonomy, the simulation result
container, and small numeric conversion helpers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

SEMANTICS_VERSION = "0.1.0"

CompartmentLabel = Union[int, str]

OBS_LABEL = "obs"


# ============================================================================
# Errors
# ============================================================================

class PKPDSimError(Exception):
    """Base class for all errors raised by pkpdsim."""


class SpecificationError(PKPDSimError, ValueError):
    """Malformed model definition (equations, observation, dosing, names)."""


class RegimenValidationError(PKPDSimError, ValueError):
    """Dosing regimen that cannot be turned into dose events."""


class IntegrationError(PKPDSimError, RuntimeError):
    """
    Numeric failure while integrating one segment for one individual.

    Attributes:
        individual: 1-based id of the simulated individual
        segment: 0-based index of the integration segment
        time: Start time of the failing segment (breakpoint time)
    """

    def __init__(
        self,
        message: str,
        individual: Optional[int] = None,
        segment: Optional[int] = None,
        time: Optional[float] = None,
    ):
        self.individual = individual
        self.segment = segment
        self.time = time
        context = []
        if individual is not None:
            context.append(f"individual={individual}")
        if segment is not None:
            context.append(f"segment={segment}")
        if time is not None:
            context.append(f"t={time:g}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class SimulationResult:
    """
    Flat trajectory produced by sim_ode.

    One row per (individual, compartment, time). State compartments are
    labelled with their 1-based index; the derived observation, when the
    model defines one, uses the label "obs".

    Attributes:
        id: Individual id per row (1-based)
        t: Time per row
        comp: Compartment label per row
        y: Value per row
        params: Realized parameter table for each individual
        metadata: Run metadata (horizon, step size, breakpoints, solver)
    """
    id: np.ndarray
    t: np.ndarray
    comp: np.ndarray
    y: np.ndarray
    params: List[Dict[str, float]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.t)

    @property
    def compartments(self) -> List[CompartmentLabel]:
        seen: List[CompartmentLabel] = []
        for c in self.comp:
            c = _label(c)
            if c not in seen:
                seen.append(c)
        return seen

    def rows(self) -> List[Dict[str, Any]]:
        """Return the trajectory as a list of row dicts."""
        return [
            {"id": int(i), "t": float(t), "comp": _label(c), "y": float(y)}
            for i, t, c, y in zip(self.id, self.t, self.comp, self.y)
        ]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to plain Python types (JSON compatible)."""
        return {
            "id": [int(i) for i in self.id],
            "t": [float(t) for t in self.t],
            "comp": [_label(c) for c in self.comp],
            "y": [float(y) for y in self.y],
            "params": [dict(p) for p in self.params],
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulationResult":
        return cls(
            id=np.asarray(data["id"], dtype=int),
            t=np.asarray(data["t"], dtype=float),
            comp=_label_array(data["comp"]),
            y=np.asarray(data["y"], dtype=float),
            params=[dict(p) for p in data.get("params", [])],
            metadata=dict(data.get("metadata", {})),
        )

    def filter(
        self,
        comp: Optional[Iterable[CompartmentLabel]] = None,
        id: Optional[Iterable[int]] = None,
    ) -> "SimulationResult":
        """
        Select rows by compartment label and/or individual id.

        Example:
            >>> conc = result.filter(comp=["obs"])
        """
        mask = np.ones(len(self.t), dtype=bool)
        if comp is not None:
            wanted = {_label(c) for c in comp}
            mask &= np.array([_label(c) in wanted for c in self.comp], dtype=bool)
        if id is not None:
            mask &= np.isin(self.id, list(id))
        return SimulationResult(
            id=self.id[mask],
            t=self.t[mask],
            comp=self.comp[mask],
            y=self.y[mask],
            params=self.params,
            metadata=self.metadata,
        )

    def individual(self, i: int) -> "SimulationResult":
        return self.filter(id=[i])

    def series(self, comp: CompartmentLabel = OBS_LABEL, id: int = 1) -> Tuple[np.ndarray, np.ndarray]:
        """
        Return (t, y) arrays for one compartment of one individual.

        Raises:
            KeyError: if no rows match
        """
        sub = self.filter(comp=[comp], id=[id])
        if len(sub) == 0:
            raise KeyError(f"No rows for comp={comp!r}, id={id}")
        return sub.t.copy(), sub.y.copy()


# ============================================================================
# Conversion Utilities
# ============================================================================

def _label(c: Any) -> CompartmentLabel:
    """Normalize a compartment label: integers stay int, anything else str."""
    if isinstance(c, (int, np.integer)) and not isinstance(c, bool):
        return int(c)
    if isinstance(c, str) and c.isdigit():
        return int(c)
    return str(c)


def _label_array(labels: Sequence[Any]) -> np.ndarray:
    out = np.empty(len(labels), dtype=object)
    for i, c in enumerate(labels):
        out[i] = _label(c)
    return out


def _is_missing(x: Any) -> bool:
    """True for None and NaN."""
    if x is None:
        return True
    try:
        return math.isnan(float(x))
    except (TypeError, ValueError):
        return False


def _as_list(x: Any) -> List[Any]:
    """Wrap scalars (and strings) into a list; pass sequences through."""
    if x is None:
        return []
    if isinstance(x, (str, bytes)) or not hasattr(x, "__iter__"):
        return [x]
    return list(x)