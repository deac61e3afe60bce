"""
Kernel code emitter.

Renders a ModelIR into numeric functions with ``sympy.lambdify``:

    derivatives(t, A, par, rate, cov)               -> dAdt    (integrator callback)
    scale(t, A, par, rate, cov)                     -> float   (observation scale)
    init(par, cov)                                  -> A       (initial state)
    bioav(t, par, cov)                              -> float   (dose multiplier)
    dose(t, par, cov, prv_dose, t_prv_dose)         -> par     (dose code, optional)

``par`` is the ordered parameter vector (declared parameters followed by
dose variables), ``rate`` the per-compartment infusion rate vector and
``cov`` the covariate runtime state (base, gradient, start per covariate
slot). Auxiliary variables are substituted in statement order, so each
function is a closed-form expression of its arguments.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import sympy as sp

from .._core import SpecificationError
from .ir import (
    PRV_DOSE_SYMBOL,
    T_PRV_DOSE_SYMBOL,
    TIME_SYMBOL,
    AuxiliaryAssignment,
    CovariateBinding,
    DerivativeAssignment,
    ModelIR,
    StateAssignment,
    covariate_symbols,
    deriv_symbol,
    rate_symbol,
    state_symbol,
)

LAMBDIFY_MODULES = ["math"]

INDENT = "    "


@dataclass(frozen=True)
class Kernel:
    """
    Compiled model artifact.

    Attributes:
        code: Diagnostic listing of the generated kernel
        size: Number of compartments
        parameters: Parameter names in declaration order
        covariates: Covariate names in runtime slot order
        variables: Auxiliary variable names
        dose_variables: Variables set by the dose code (appended to par)
        obs_index: Observation compartment (0-based), or None
        derivatives: Derivative function for the integrator
        scale: Observation scale function
        init: State initialization function
        bioav: Bioavailability function
        dose: Dose code function, or None when the model has no dose code
    """
    code: str
    size: int
    parameters: Tuple[str, ...]
    covariates: Tuple[str, ...]
    variables: Tuple[str, ...]
    dose_variables: Tuple[str, ...]
    obs_index: Optional[int]
    derivatives: Callable[..., List[float]]
    scale: Callable[..., float]
    init: Callable[..., List[float]]
    bioav: Callable[..., float]
    dose: Optional[Callable[..., List[float]]] = None

    def bind(self, values: Mapping[str, float]) -> np.ndarray:
        """
        Look up every declared parameter by name.

        Dose variables start at 0 and are set by the dose code.

        Raises:
            SpecificationError: if a declared parameter has no value
        """
        missing = [p for p in self.parameters if p not in values]
        if missing:
            raise SpecificationError(f"Missing value(s) for parameter(s): {', '.join(missing)}")
        values = [float(values[p]) for p in self.parameters] + [0.0] * len(self.dose_variables)
        return np.asarray(values, dtype=float)

    def unbind(self, vector: Sequence[float]) -> Dict[str, float]:
        return {p: float(v) for p, v in zip(self.parameters, vector)}


class KernelEmitter:
    """Render ModelIR into lambdified kernel functions and a listing."""

    def __init__(self, ir: ModelIR):
        self.ir = ir
        self.rated = {r.index for r in ir.rates}
        self.A = [state_symbol(k) for k in range(ir.size)]
        self.par = [sp.Symbol(p) for p in ir.parameters + ir.dose_variables]
        self.rate = [rate_symbol(k) for k in range(ir.size)]
        self.cov = [s for slot in range(len(ir.covariates)) for s in covariate_symbols(slot)]
        self.listing: List[str] = []

    def _bindings(self, names: set) -> List[CovariateBinding]:
        return [CovariateBinding(name=c, slot=i) for i, c in enumerate(self.ir.covariates) if c in names]

    def _covariate_env(self, expressions: Sequence[sp.Expr]) -> Dict[sp.Symbol, sp.Expr]:
        used = set()
        for expr in expressions:
            used.update(s.name for s in expr.free_symbols)
        return self._binding_env(self._bindings(used))

    @staticmethod
    def _binding_env(bindings: Sequence[CovariateBinding]) -> Dict[sp.Symbol, sp.Expr]:
        return {sp.Symbol(b.name): b.value for b in bindings}

    @staticmethod
    def _run(statements, env: Dict[sp.Symbol, sp.Expr]) -> Dict[sp.Symbol, sp.Expr]:
        for stmt in statements:
            env[stmt.symbol] = stmt.expr.xreplace(env)
        return env

    @staticmethod
    def _lambdify(args, exprs):
        return sp.lambdify(args, exprs, modules=LAMBDIFY_MODULES, cse=True)

    def _section(self, signature: str, env: Dict[sp.Symbol, sp.Expr], lines: List[str]):
        self.listing.append(f"def {signature}:")
        self.listing += [f"{INDENT}{sym} = {sp.sstr(value)}" for sym, value in env.items()]
        self.listing += [INDENT + line for line in lines]
        self.listing.append("")

    def _body_env(self) -> Dict[sp.Symbol, sp.Expr]:
        ir = self.ir
        env: Dict[sp.Symbol, sp.Expr] = {sp.Symbol(v): sp.Integer(0) for v in ir.variables}
        env.update({deriv_symbol(k): sp.Integer(0) for k in range(ir.size)})
        env.update(self._binding_env(ir.bindings))
        return self._run(ir.body, env)

    def derivatives(self):
        ir = self.ir
        env = self._body_env()
        exprs = []
        for k in range(ir.size):
            expr = env[deriv_symbol(k)]
            exprs.append(expr + self.rate[k] if k in self.rated else expr)
        self._section(
            "derivatives(t, A, par, rate, cov)",
            self._binding_env(ir.bindings),
            [self._statement(s) for s in ir.body] + ["return dAdt"],
        )
        return self._lambdify([TIME_SYMBOL, self.A, self.par, self.rate, self.cov], exprs)

    def _statement(self, stmt) -> str:
        if isinstance(stmt, DerivativeAssignment):
            text = f"dAdt[{stmt.index}] = {sp.sstr(stmt.expr)}"
            return text + f" + rate[{stmt.index}]" if stmt.index in self.rated else text
        if isinstance(stmt, StateAssignment):
            return f"A[{stmt.index}] = {sp.sstr(stmt.expr)}"
        return f"{stmt.name} = {sp.sstr(stmt.expr)}"

    def scale(self):
        ir = self.ir
        if ir.observation is None:
            expr = sp.Integer(1)
        else:
            env = self._body_env()
            env.update(self._covariate_env([ir.observation.scale]))
            expr = ir.observation.scale.xreplace(env)
        self._section("scale(t, A, par, rate, cov)", {}, [f"return {sp.sstr(expr)}"])
        return self._lambdify([TIME_SYMBOL, self.A, self.par, self.rate, self.cov], expr)

    def init(self):
        ir = self.ir
        env: Dict[sp.Symbol, sp.Expr] = {s: sp.Integer(0) for s in self.A}
        env.update({s.symbol: sp.Integer(0) for s in ir.init if isinstance(s, AuxiliaryAssignment)})
        cov_env = self._covariate_env([s.expr for s in ir.init])
        env.update({sym: value.xreplace({TIME_SYMBOL: sp.Integer(0)}) for sym, value in cov_env.items()})
        env[TIME_SYMBOL] = sp.Integer(0)
        self._run(ir.init, env)
        exprs = [env[s] for s in self.A]
        self._section("init(par, cov)", cov_env, [self._statement(s) for s in ir.init] + ["return A"])
        return self._lambdify([self.par, self.cov], exprs)

    def bioav(self):
        expr = self.ir.bioav if self.ir.bioav is not None else sp.Integer(1)
        cov_env = self._covariate_env([expr])
        self._section("bioav(t, par, cov)", cov_env, [f"return {sp.sstr(expr)}"])
        return self._lambdify([TIME_SYMBOL, self.par, self.cov], expr.xreplace(cov_env))

    def dose(self):
        ir = self.ir
        if not ir.dose_code:
            return None
        cov_env = self._covariate_env([s.expr for s in ir.dose_code])
        env = self._run(ir.dose_code, dict(cov_env))
        exprs = [env.get(s, s) for s in self.par]
        self._section(
            "dose(t, par, cov, prv_dose, t_prv_dose)",
            cov_env,
            [self._statement(s) for s in ir.dose_code] + ["return par"],
        )
        return self._lambdify(
            [TIME_SYMBOL, self.par, self.cov, PRV_DOSE_SYMBOL, T_PRV_DOSE_SYMBOL], exprs
        )


def emit_kernel(ir: ModelIR) -> Kernel:
    """Generate the kernel functions for a model."""
    emitter = KernelEmitter(ir)
    derivatives = emitter.derivatives()
    scale = emitter.scale()
    init = emitter.init()
    bioav = emitter.bioav()
    dose = emitter.dose()

    return Kernel(
        code="\n".join(emitter.listing),
        size=ir.size,
        parameters=ir.parameters,
        covariates=ir.covariates,
        variables=ir.variables,
        dose_variables=ir.dose_variables,
        obs_index=ir.observation.index if ir.observation is not None else None,
        derivatives=derivatives,
        scale=scale,
        init=init,
        bioav=bioav,
        dose=dose,
    )
