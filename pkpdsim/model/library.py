"""
Model Library

Named ODE models that can be used directly or merged as fragments:

    >>> new_ode_model("pk_2cmt_iv")
    >>> new_ode_model(["pk_1cmt_oral", "pd_effect_cmt"])

PK models define the auxiliary variable CONC (central concentration) so
that PD fragments appended after them can refer to it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .._core import SpecificationError


@dataclass(frozen=True)
class LibraryModel:
    """
    Library entry.

    Attributes:
        name: Library name
        description: One-line description
        code: ODE definition text (1-based compartments)
        parameters: Parameter names in declaration order
        obs: Observation {"cmt", "scale"} or None
        dose: Dosing {"cmt", "bioav"} or None
        state_init: State initialization text or None
    """
    name: str
    description: str
    code: str
    parameters: Tuple[str, ...]
    obs: Optional[Dict[str, Any]] = None
    dose: Optional[Dict[str, Any]] = None
    state_init: Optional[str] = None


_LIBRARY: Dict[str, LibraryModel] = {}


def _register(model: LibraryModel) -> None:
    _LIBRARY[model.name] = model


_register(LibraryModel(
    name="pk_1cmt_iv",
    description="One-compartment PK, IV administration",
    code="""
        CONC = A[1] / V
        dAdt[1] = -(CL / V) * A[1]
    """,
    parameters=("CL", "V"),
    obs={"cmt": 1, "scale": "V"},
    dose={"cmt": 1},
))

_register(LibraryModel(
    name="pk_1cmt_oral",
    description="One-compartment PK, first-order oral absorption",
    code="""
        CONC = A[2] / V
        dAdt[1] = -KA * A[1]
        dAdt[2] = KA * A[1] - (CL / V) * A[2]
    """,
    parameters=("CL", "V", "KA"),
    obs={"cmt": 2, "scale": "V"},
    dose={"cmt": 1},
))

_register(LibraryModel(
    name="pk_2cmt_iv",
    description="Two-compartment PK, IV administration",
    code="""
        CONC = A[1] / V
        dAdt[1] = -(CL / V) * A[1] - (Q / V) * A[1] + (Q / V2) * A[2]
        dAdt[2] = (Q / V) * A[1] - (Q / V2) * A[2]
    """,
    parameters=("CL", "V", "Q", "V2"),
    obs={"cmt": 1, "scale": "V"},
    dose={"cmt": 1},
))

_register(LibraryModel(
    name="pk_2cmt_oral",
    description="Two-compartment PK, first-order oral absorption",
    code="""
        CONC = A[2] / V
        dAdt[1] = -KA * A[1]
        dAdt[2] = KA * A[1] - (CL / V) * A[2] - (Q / V) * A[2] + (Q / V2) * A[3]
        dAdt[3] = (Q / V) * A[2] - (Q / V2) * A[3]
    """,
    parameters=("CL", "V", "Q", "V2", "KA"),
    obs={"cmt": 2, "scale": "V"},
    dose={"cmt": 1},
))

_register(LibraryModel(
    name="pk_3cmt_iv",
    description="Three-compartment PK, IV administration",
    code="""
        CONC = A[1] / V
        dAdt[1] = -(CL / V) * A[1] - (Q2 / V) * A[1] + (Q2 / V2) * A[2] - (Q3 / V) * A[1] + (Q3 / V3) * A[3]
        dAdt[2] = (Q2 / V) * A[1] - (Q2 / V2) * A[2]
        dAdt[3] = (Q3 / V) * A[1] - (Q3 / V3) * A[3]
    """,
    parameters=("CL", "V", "Q2", "V2", "Q3", "V3"),
    obs={"cmt": 1, "scale": "V"},
    dose={"cmt": 1},
))

_register(LibraryModel(
    name="pd_effect_cmt",
    description="Effect compartment driven by CONC (merge after a PK model)",
    code="dAdt[1] = KE0 * (CONC - A[1])",
    parameters=("KE0",),
))

_register(LibraryModel(
    name="pd_indirect_response",
    description="Indirect response, inhibition of production by CONC (merge after a PK model)",
    code="""
        INH = IMAX * CONC / (IC50 + CONC)
        dAdt[1] = KIN * (1 - INH) - KOUT * A[1]
    """,
    parameters=("KIN", "KOUT", "IMAX", "IC50"),
    state_init="A[1] = KIN / KOUT",
))


def library_models() -> List[str]:
    """
    Names of all library models.

    Example:
        >>> "pk_1cmt_oral" in library_models()
        True
    """
    return sorted(_LIBRARY)


def get_library_model(name: str) -> LibraryModel:
    """
    Look up a library model by name.

    Raises:
        SpecificationError: if no model has that name
    """
    try:
        return _LIBRARY[name]
    except KeyError:
        raise SpecificationError(
            f"Unknown library model: {name}. Available: {', '.join(library_models())}"
        ) from None


def is_library_model(name: str) -> bool:
    return name in _LIBRARY
