"""
Intermediate representation of a compiled ODE model.

Statements are typed records whose right-hand sides are sympy
expressions. State, derivative, rate and covariate-runtime references are
plain symbols named after the kernel argument they read (``A[0]``,
``rate[0]``, ``cov[3]``), with 0-based indices. The emitter renders a
ModelIR into kernel functions with ``sympy.lambdify``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

import sympy as sp

TIME_SYMBOL = sp.Symbol("t")
PRV_DOSE_SYMBOL = sp.Symbol("prv_dose")
T_PRV_DOSE_SYMBOL = sp.Symbol("t_prv_dose")


def state_symbol(index: int) -> sp.Symbol:
    return sp.Symbol(f"A[{index}]")


def deriv_symbol(index: int) -> sp.Symbol:
    return sp.Symbol(f"dAdt[{index}]")


def rate_symbol(index: int) -> sp.Symbol:
    return sp.Symbol(f"rate[{index}]")


def covariate_symbols(slot: int) -> Tuple[sp.Symbol, sp.Symbol, sp.Symbol]:
    """Runtime (base, gradient, start) symbols of a covariate slot."""
    k = 3 * slot
    return sp.Symbol(f"cov[{k}]"), sp.Symbol(f"cov[{k + 1}]"), sp.Symbol(f"cov[{k + 2}]")


@dataclass(frozen=True)
class AuxiliaryAssignment:
    """Intermediate variable, declared and zero-initialized in the kernel."""
    name: str
    expr: sp.Expr

    @property
    def symbol(self) -> sp.Symbol:
        return sp.Symbol(self.name)


@dataclass(frozen=True)
class DerivativeAssignment:
    """dAdt[index] = expr (index 0-based)."""
    index: int
    expr: sp.Expr

    @property
    def symbol(self) -> sp.Symbol:
        return deriv_symbol(self.index)


@dataclass(frozen=True)
class StateAssignment:
    """A[index] = expr, only valid in state initialization."""
    index: int
    expr: sp.Expr

    @property
    def symbol(self) -> sp.Symbol:
        return state_symbol(self.index)


@dataclass(frozen=True)
class CovariateBinding:
    """Local binding name = base + gradient * (t - start) from runtime slot."""
    name: str
    slot: int

    @property
    def value(self) -> sp.Expr:
        base, grad, start = covariate_symbols(self.slot)
        return base + grad * (TIME_SYMBOL - start)


@dataclass(frozen=True)
class RateInjection:
    """Additive infusion rate term rate[index] on a derivative."""
    index: int


@dataclass(frozen=True)
class Observation:
    index: int
    scale: sp.Expr


Statement = Union[AuxiliaryAssignment, DerivativeAssignment]
InitStatement = Union[AuxiliaryAssignment, StateAssignment]


@dataclass(frozen=True)
class ModelIR:
    """
    Complete model, ready for code emission.

    Attributes:
        size: Number of compartments
        parameters: Parameter names in declaration order
        covariates: Declared covariate names (runtime slot order)
        variables: Auxiliary variable names
        body: Derivative and auxiliary statements in source order
        bindings: Covariate bindings needed by the derivative body
        rates: Infusion rate injections, one per derivative
        init: State initialization statements
        observation: Observation compartment and scale, if any
        bioav: Bioavailability expression applied to every dose
        dose_code: Statements evaluated at every dose event
        dose_variables: Names first assigned by the dose code; they extend
            the parameter vector and keep their value between doses
    """
    size: int
    parameters: Tuple[str, ...]
    covariates: Tuple[str, ...]
    variables: Tuple[str, ...]
    body: Tuple[Statement, ...]
    bindings: Tuple[CovariateBinding, ...]
    rates: Tuple[RateInjection, ...]
    init: Tuple[InitStatement, ...] = ()
    observation: Optional[Observation] = None
    bioav: Optional[sp.Expr] = None
    dose_code: Tuple[AuxiliaryAssignment, ...] = ()
    dose_variables: Tuple[str, ...] = ()
