"""
PKPDsim Dosing Regimens

Dosing regimen definitions including:
- Repeated dosing from an interval and dose count
- Explicit dose times with per-dose amounts
- Bolus, oral and infusion administration
- Per-dose target compartments
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ._core import RegimenValidationError, _as_list, _is_missing

logger = logging.getLogger(__name__)

# Infusion duration used when none is given (time units of the model)
DEFAULT_INFUSION_DURATION = 1.0


class DoseType(str, Enum):
    """Administration types."""
    BOLUS = "bolus"
    ORAL = "oral"
    INFUSION = "infusion"


@dataclass(frozen=True)
class DoseEvent:
    """
    Single administration.

    Attributes:
        time: Dose time
        amount: Dose amount
        type: Administration type
        t_inf: Infusion duration (used for infusions only)
        cmt: Target compartment (1-based); None uses the model default
    """
    time: float
    amount: float
    type: DoseType = DoseType.BOLUS
    t_inf: float = DEFAULT_INFUSION_DURATION
    cmt: Optional[int] = None

    @property
    def is_infusion(self) -> bool:
        return self.type is DoseType.INFUSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "amount": self.amount,
            "type": self.type.value,
            "t_inf": self.t_inf,
            "cmt": self.cmt,
        }


@dataclass(frozen=True)
class Regimen:
    """
    Ordered dose events for a simulation.

    Attributes:
        doses: Dose events in non-decreasing time order
        first_dose_time: Calendar timestamp of the first dose (metadata only)

    Example:
        >>> reg = new_regimen(amt=100.0, interval=12.0, n=3)
        >>> reg.dose_times
        [0.0, 12.0, 24.0]
    """
    doses: Tuple[DoseEvent, ...]
    first_dose_time: Optional[datetime] = field(default=None, compare=False)

    @property
    def n(self) -> int:
        return len(self.doses)

    @property
    def dose_times(self) -> List[float]:
        return [d.time for d in self.doses]

    @property
    def dose_amts(self) -> List[float]:
        return [d.amount for d in self.doses]

    @property
    def types(self) -> List[str]:
        return [d.type.value for d in self.doses]

    @property
    def t_inf(self) -> List[float]:
        return [d.t_inf for d in self.doses]

    @property
    def cmt(self) -> List[Optional[int]]:
        return [d.cmt for d in self.doses]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "doses": [d.to_dict() for d in self.doses],
            "first_dose_time": self.first_dose_time.isoformat() if self.first_dose_time else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Regimen":
        doses = tuple(
            DoseEvent(
                time=float(d["time"]),
                amount=float(d["amount"]),
                type=DoseType(d.get("type", "bolus")),
                t_inf=float(d.get("t_inf", DEFAULT_INFUSION_DURATION)),
                cmt=d.get("cmt"),
            )
            for d in data["doses"]
        )
        fdt = data.get("first_dose_time")
        return cls(doses=doses, first_dose_time=datetime.fromisoformat(fdt) if fdt else None)


def _broadcast(name: str, values: Any, n: int) -> List[Any]:
    """Scalar or length-1 input is repeated; otherwise the length must be n."""
    items = [values] if values is None else _as_list(values)
    if len(items) == 1:
        return items * n
    if len(items) != n:
        raise RegimenValidationError(
            f"`{name}` has {len(items)} entries but the regimen has {n} doses"
        )
    return items


def _resolve_type(type: Any, t_inf: Any, checks: bool) -> List[str]:
    types = [x.value if isinstance(x, DoseType) else str(x).lower() for x in _as_list(type)]
    valid = {t.value for t in DoseType}
    if not types or any(x not in valid for x in types):
        if t_inf is not None:
            return [DoseType.INFUSION.value]
        if checks:
            logger.warning(
                "Type argument should be one of 'bolus', 'oral', or 'infusion'. "
                "Assuming bolus for all doses."
            )
        return [DoseType.BOLUS.value]
    return types


def new_regimen(
    amt: Union[float, Sequence[Optional[float]]] = 100.0,
    interval: Optional[float] = None,
    n: Optional[int] = None,
    times: Optional[Sequence[float]] = None,
    type: Union[None, str, Sequence[str]] = None,
    t_inf: Union[None, float, Sequence[float]] = None,
    cmt: Union[None, int, Sequence[int]] = None,
    first_dose_time: Optional[datetime] = None,
    checks: bool = True,
) -> Regimen:
    """
    Create a dosing regimen for use with sim_ode.

    Args:
        amt: Dose amount, a single value (repeated for every dose) or one
             value per dose. Doses with a missing amount (None/NaN) are dropped.
        interval: Dosing interval (requires n)
        n: Number of doses (requires interval)
        times: Explicit dose times; overrides interval and n
        type: "bolus" (default), "oral" or "infusion", scalar or per dose
        t_inf: Infusion duration, scalar or per dose; implies infusion
               when type is not given
        cmt: Target compartment(s), 1-based; default is the model's
             dosing compartment
        first_dose_time: Timestamp of the first dose (default: now)
        checks: Validate inputs (disable for speed in large loops)

    Returns:
        Regimen object

    Raises:
        RegimenValidationError: if timing information is missing or the
            per-dose arrays are inconsistent

    Example:
        >>> r1 = new_regimen(amt=50.0, interval=12.0, n=20)
        >>> r2 = new_regimen(amt=50.0, times=[i * 12.0 for i in range(20)])
        >>> r3 = new_regimen(amt=[100.0] * 4 + [50.0] * 16, times=[i * 12.0 for i in range(20)])
        >>> r4 = new_regimen(amt=500.0, times=[0.0, 12.0], t_inf=2.0)
    """
    types = _resolve_type(type, t_inf, checks)

    if checks:
        if times is None and interval is None:
            raise RegimenValidationError("Dose times or dosing interval has to be specified.")
        if times is None and n is None:
            raise RegimenValidationError("The number of doses (n) must be specified in the regimen object.")

    if times is None:
        if int(n) < 0:
            raise RegimenValidationError("The number of doses (n) cannot be negative.")
        dose_times = [i * float(interval) for i in range(int(n))]
    else:
        dose_times = [float(x) for x in _as_list(times)]

    count = len(dose_times)
    if checks:
        if any(x < 0 for x in dose_times):
            raise RegimenValidationError("Dose times cannot be negative.")
        if any(b < a for a, b in zip(dose_times, dose_times[1:])):
            raise RegimenValidationError("Dose times must be non-decreasing.")

    amts = _broadcast("amt", amt, count)
    durations = _broadcast("t_inf", DEFAULT_INFUSION_DURATION if t_inf is None else t_inf, count)
    types = _broadcast("type", types, count)
    cmts = _broadcast("cmt", cmt, count) if cmt is not None else [None] * count

    doses: List[DoseEvent] = []
    for time, amount, kind, dur, c in zip(dose_times, amts, types, durations, cmts):
        if _is_missing(amount):
            continue
        event = DoseEvent(
            time=time,
            amount=float(amount),
            type=DoseType(kind),
            t_inf=float(dur),
            cmt=None if c is None else int(c),
        )
        if checks:
            if event.is_infusion and event.t_inf <= 0:
                raise RegimenValidationError(f"Infusion duration must be positive (got {event.t_inf}).")
            if event.cmt is not None and event.cmt < 1:
                raise RegimenValidationError(f"Dose compartments are 1-based (got {event.cmt}).")
        doses.append(event)

    return Regimen(
        doses=tuple(doses),
        first_dose_time=first_dose_time if first_dose_time is not None else datetime.now(),
    )


def regimen_duration(regimen: Regimen) -> float:
    """
    Time of the last dose event, including the end of the last infusion.

    Example:
        >>> regimen_duration(new_regimen(amt=10.0, times=[0.0, 24.0], t_inf=2.0))
        26.0
    """
    if not regimen.doses:
        return 0.0
    return max(d.time + (d.t_inf if d.is_infusion else 0.0) for d in regimen.doses)
