"""
Equation text parser.

Turns model text such as

    CONC = A[2] / V
    dAdt[1] = -KA * A[1]
    dAdt[2] = KA * A[1] - (CL / V) * A[2]

into a ModelIR. Statements are separated by newlines or ``;``, ``//``
starts a comment and a ``double`` declaration in front of a statement is
ignored. Right-hand sides are converted with ``sympy.sympify``: arithmetic
(``+ - * /``, ``**`` and ``^`` as power), numbers, names, state references
``A[k]`` / ``dAdt[k]`` with 1-based integer indices, comparisons
(``< <= > >=``) combined with ``&``, ``|`` and ``~``, and calls to a fixed
set of functions, including ``ifelse(condition, a, b)``.
"""

from __future__ import annotations

import keyword
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import sympy as sp

from .._core import SpecificationError
from .ir import (
    AuxiliaryAssignment,
    CovariateBinding,
    DerivativeAssignment,
    ModelIR,
    Observation,
    RateInjection,
    StateAssignment,
    deriv_symbol,
    state_symbol,
)

logger = logging.getLogger(__name__)

STATE = "A"
DERIV = "dAdt"
TIME = "t"
RATE = "rate"
PRV_DOSE = "prv_dose"
T_PRV_DOSE = "t_prv_dose"


def _log10(x):
    return sp.log(x, 10)


def _ifelse(condition, a, b):
    return sp.Piecewise((a, condition), (b, True))


MATH_FUNCTIONS = {
    "exp": sp.exp,
    "log": sp.log,
    "log10": _log10,
    "sqrt": sp.sqrt,
    "abs": sp.Abs,
    "min": sp.Min,
    "max": sp.Max,
    "pow": sp.Pow,
    "sin": sp.sin,
    "cos": sp.cos,
    "tan": sp.tan,
    "ifelse": _ifelse,
}

DOSE_NAMES = (PRV_DOSE, T_PRV_DOSE)

RESERVED = frozenset({STATE, DERIV, TIME, RATE, "par", "cov"}) | frozenset(DOSE_NAMES) | frozenset(MATH_FUNCTIONS)

_STATE_REF = re.compile(r"(?<![\w.])(A|dAdt)\s*\[([^\[\]]*)\]")
_NAME = re.compile(r"(?<![\w.])([A-Za-z_]\w*)(\s*\()?")
_TARGET = re.compile(r"^([A-Za-z_]\w*(?:\s*\[[^\[\]]*\])?)\s*=(?!=)(.*)$", re.S)
_DOUBLE = re.compile(r"^double\s+")
_ALLOWED = re.compile(r"^[\w\s.+\-*/()<>=&|~,]*$")

_RATE_MESSAGE = (
    "Manual specification of `rate` in the ODE definition is not supported. "
    "Use the `dose` argument of new_ode_model(), or the `cmt` argument of new_regimen() instead."
)


@dataclass(frozen=True)
class SourceStatement:
    """One assignment as written: target name, 1-based index for A/dAdt, right-hand side."""
    line: int
    target: str
    index: Optional[int]
    rhs: str


def _index(name: str, raw: str, what: str) -> int:
    raw = raw.strip()
    if not raw.isdigit():
        raise SpecificationError(
            f"Compartment index of {name} must be an integer literal in the {what}"
        )
    return int(raw)


def parse_statements(text: str, what: str = "ODE definition") -> List[SourceStatement]:
    """Split text into single-target assignment statements."""
    stmts = []
    for lineno, line in enumerate(str(text).splitlines(), 1):
        for part in line.split("//", 1)[0].split(";"):
            part = _DOUBLE.sub("", part.strip())
            if not part:
                continue
            m = _TARGET.match(part)
            if m is None:
                raise SpecificationError(
                    f"Only single assignments are allowed in the {what} (line {lineno})"
                )
            target, rhs = m.group(1), m.group(2).strip()
            ref = _STATE_REF.fullmatch(target)
            if ref is not None:
                stmts.append(SourceStatement(lineno, ref.group(1), _index(ref.group(1), ref.group(2), what), rhs))
            elif "[" in target:
                raise SpecificationError(f"Only A[k] and dAdt[k] may be indexed in the {what}")
            else:
                stmts.append(SourceStatement(lineno, target, None, rhs))
    return stmts


def to_sympy(
    text: str,
    what: str,
    size: Optional[int] = None,
    allow_state: bool = True,
) -> Tuple[sp.Expr, List[str]]:
    """
    Convert one expression to sympy.

    State references are replaced by the 0-based kernel symbols before
    ``sympify`` sees the text; every other name is bound explicitly so
    that names such as ``Q`` or ``E`` stay plain symbols.

    Returns:
        (expression, referenced names in order of first appearance)
    """
    text = str(text).replace("^", "**")
    if not text.strip():
        raise SpecificationError(f"Empty expression in the {what}")

    local: Dict[str, object] = {}

    def replace_state(m):
        name = m.group(1)
        k = _index(name, m.group(2), what)
        if not allow_state:
            raise SpecificationError(f"Compartment amounts cannot be used in the {what}")
        if size is not None and not 1 <= k <= size:
            raise SpecificationError(f"{name}[{k}] is outside compartments 1..{size} in the {what}")
        placeholder = f"__{name}{k}"
        local[placeholder] = state_symbol(k - 1) if name == STATE else deriv_symbol(k - 1)
        return placeholder

    body = _STATE_REF.sub(replace_state, text)
    if "[" in body or "]" in body:
        raise SpecificationError(f"Only A[k] and dAdt[k] may be indexed in the {what}")
    if not _ALLOWED.match(body) or re.search(r"\.\s*[A-Za-z_]", body):
        raise SpecificationError(f"Unsupported syntax in the {what}: `{text.strip()}`")
    if re.search(r"(?<![<>])=", body):
        raise SpecificationError(f"Unsupported comparison in the {what}; use <, <=, > or >=")

    names: List[str] = []
    for m in _NAME.finditer(body):
        name, call = m.group(1), m.group(2)
        if name in local:
            continue
        if keyword.iskeyword(name):
            raise SpecificationError(
                f"Unsupported syntax `{name}` in the {what}; use ifelse(condition, a, b), &, | and ~"
            )
        if call:
            if name not in MATH_FUNCTIONS:
                raise SpecificationError(f"Unsupported function call in the {what}: {name}")
            continue
        if name == RATE:
            raise SpecificationError(_RATE_MESSAGE)
        if name in (STATE, DERIV):
            raise SpecificationError(f"`{name}` must be indexed, e.g. {name}[1], in the {what}")
        if name in MATH_FUNCTIONS:
            raise SpecificationError(f"`{name}` is a function and must be called in the {what}")
        if name.startswith("__"):
            raise SpecificationError(f"Names starting with `__` are not allowed in the {what}")
        if name not in names:
            names.append(name)
    local.update({name: sp.Symbol(name) for name in names})
    local.update(MATH_FUNCTIONS)

    try:
        expr = sp.sympify(body, locals=local, evaluate=False)
    except (sp.SympifyError, SyntaxError, TypeError, ValueError) as exc:
        raise SpecificationError(f"Cannot parse {what}: `{text.strip()}`") from exc
    if not isinstance(expr, sp.Basic) or isinstance(expr, sp.Tuple):
        raise SpecificationError(f"Cannot parse {what}: `{text.strip()}` is not a single expression")

    free = {s.name for s in expr.free_symbols}
    return expr, [n for n in names if n in free]


def shift_state_indices(text: str, offset: int) -> str:
    """
    Shift every compartment index in model text by offset.

    Example:
        >>> shift_state_indices("dAdt[1] = -KE0 * A[1]", 2)
        'dAdt[3] = -KE0 * A[3]'
    """
    def shift(m):
        return f"{m.group(1)}[{_index(m.group(1), m.group(2), 'ODE definition') + offset}]"
    return _STATE_REF.sub(shift, str(text))


def fragment_size(text: str) -> int:
    """Highest derivative index assigned in model text (0 if none)."""
    return max((s.index for s in parse_statements(text) if s.target == DERIV), default=0)


def _check_target_name(name: str, covariates: Sequence[str], what: str):
    if name == RATE:
        raise SpecificationError(_RATE_MESSAGE)
    if name in RESERVED:
        raise SpecificationError(f"`{name}` is reserved and cannot be assigned in the {what}")
    if name in covariates:
        raise SpecificationError(f"Covariate `{name}` cannot be assigned in the {what}")


def _parse_dose_code(
    text: str,
    covariates: Sequence[str],
    variables: Sequence[str],
    parameters: Sequence[str],
) -> Tuple[List[AuxiliaryAssignment], List[str], List[str]]:
    """Returns (statements, dose variables, names read from outside the dose code)."""
    what = "dose code"
    stmts: List[AuxiliaryAssignment] = []
    targets: List[str] = []
    inputs: List[str] = []
    for s in parse_statements(text, what):
        if s.index is not None:
            raise SpecificationError("The dose code can only assign variables and parameters")
        _check_target_name(s.target, covariates, what)
        if s.target in variables:
            raise SpecificationError(f"`{s.target}` is assigned in both the ODE definition and the dose code")
        expr, names = to_sympy(s.rhs, what, allow_state=False)
        inputs = _ordered(inputs, [n for n in names if n not in targets and n not in DOSE_NAMES])
        if s.target not in targets:
            targets.append(s.target)
        stmts.append(AuxiliaryAssignment(name=s.target, expr=expr))

    leaked = [n for n in inputs if n in variables]
    if leaked:
        raise SpecificationError(
            f"Dose code can only use parameters, covariates and its own variables (got {', '.join(leaked)})"
        )
    dose_vars = [v for v in targets if v not in parameters and v not in inputs]
    return stmts, dose_vars, inputs


def parse_model(
    code: str,
    parameters: Optional[Sequence[str]] = None,
    covariates: Sequence[str] = (),
    state_init: Optional[str] = None,
    obs_cmt: Optional[int] = None,
    obs_scale: Optional[str] = None,
    bioav: str = "1",
    dose_code: Optional[str] = None,
    strict: bool = False,
) -> ModelIR:
    """
    Build the intermediate representation of a model.

    Args:
        code: ODE definition text
        parameters: Declared parameter names (declaration order)
        covariates: Declared covariate names
        state_init: Optional state initialization text
        obs_cmt: Observation compartment (1-based)
        obs_scale: Observation scale expression
        bioav: Bioavailability expression
        dose_code: Statements evaluated at every dose event. Names it
                   assigns that are not parameters become dose variables.
        strict: Treat names that are not declared as errors instead of
                appending them to the parameter list

    Raises:
        SpecificationError: for malformed equations, manual rate terms,
            missing derivatives and unresolved names
    """
    what = "ODE definition"
    stmts = parse_statements(code, what)
    covariates = tuple(covariates)

    derivs: List[int] = []
    variables: List[str] = []
    for s in stmts:
        if s.index is not None:
            if s.target != DERIV:
                raise SpecificationError(
                    f"State A[{s.index}] cannot be assigned in the {what}; use state_init"
                )
            if s.index in derivs:
                raise SpecificationError(f"dAdt[{s.index}] is assigned more than once")
            derivs.append(s.index)
        else:
            _check_target_name(s.target, covariates, what)
            if s.target not in variables:
                variables.append(s.target)

    if not derivs:
        raise SpecificationError("The ODE definition contains no dAdt[k] assignments")
    size = max(derivs)
    missing = sorted(set(range(1, size + 1)) - set(derivs))
    if missing:
        raise SpecificationError(
            f"Missing derivative assignment for compartment(s): {', '.join(map(str, missing))}"
        )

    body = []
    body_names: List[str] = []
    for s in stmts:
        expr, names = to_sympy(s.rhs, what, size)
        body_names = _ordered(body_names, names)
        if s.index is not None:
            body.append(DerivativeAssignment(index=s.index - 1, expr=expr))
        else:
            body.append(AuxiliaryAssignment(name=s.target, expr=expr))

    # Observation
    observation = None
    scale_names: List[str] = []
    if obs_cmt is not None:
        if not 1 <= int(obs_cmt) <= size:
            raise SpecificationError(f"Observation compartment {obs_cmt} is outside 1..{size}")
        scale, scale_names = to_sympy("1" if obs_scale is None else obs_scale, "observation scale", size)
        observation = Observation(index=int(obs_cmt) - 1, scale=scale)

    # State initialization
    init = []
    init_vars: List[str] = []
    init_names: List[str] = []
    if state_init:
        for s in parse_statements(state_init, "state initialization"):
            expr, names = to_sympy(s.rhs, "state initialization", size)
            init_names = _ordered(init_names, names)
            if s.index is not None:
                if s.target != STATE or not 1 <= s.index <= size:
                    raise SpecificationError(
                        f"state initialization can only assign A[1]..A[{size}] (got {s.target}[{s.index}])"
                    )
                init.append(StateAssignment(index=s.index - 1, expr=expr))
            else:
                _check_target_name(s.target, covariates, "state initialization")
                if s.target not in init_vars:
                    init_vars.append(s.target)
                init.append(AuxiliaryAssignment(name=s.target, expr=expr))
        leaked = [n for n in init_names if n in variables and n not in init_vars]
        if leaked:
            raise SpecificationError(
                f"Variable(s) {', '.join(leaked)} are not defined in the state initialization"
            )

    bioav_expr, bioav_names = to_sympy(str(bioav), "bioavailability", allow_state=False)
    leaked = [n for n in bioav_names if n in variables]
    if leaked:
        raise SpecificationError(
            f"Bioavailability can only use parameters and covariates (got {', '.join(leaked)})"
        )

    dose_stmts: List[AuxiliaryAssignment] = []
    dose_vars: List[str] = []
    dose_names: List[str] = []
    if dose_code:
        dose_stmts, dose_vars, dose_names = _parse_dose_code(
            dose_code, covariates, variables, parameters or ()
        )

    # Parameter resolution
    params = []
    for p in parameters or ():
        if p in variables:
            logger.debug("parameter %s is assigned in the model and treated as a variable", p)
        elif p not in params:
            params.append(p)

    known: Set[str] = set(variables) | set(init_vars) | set(covariates) | set(dose_vars) | {TIME}
    unresolved = []
    for name in _ordered(body_names, scale_names, init_names, bioav_names, dose_names):
        if name in known or name in params or name in unresolved:
            continue
        if name in RESERVED:
            raise SpecificationError(f"`{name}` is reserved")
        unresolved.append(name)
    if unresolved:
        if strict:
            raise SpecificationError(f"Unresolved name(s) in model: {', '.join(unresolved)}")
        params += unresolved

    bindings = tuple(
        CovariateBinding(name=c, slot=i) for i, c in enumerate(covariates) if c in body_names
    )
    return ModelIR(
        size=size,
        parameters=tuple(params),
        covariates=covariates,
        variables=tuple(variables),
        body=tuple(body),
        bindings=bindings,
        rates=tuple(RateInjection(index=k - 1) for k in derivs),
        init=tuple(init),
        observation=observation,
        bioav=bioav_expr,
        dose_code=tuple(dose_stmts),
        dose_variables=tuple(dose_vars),
    )


def _ordered(*groups: Iterable[str]) -> List[str]:
    out: List[str] = []
    for group in groups:
        out += [n for n in group if n not in out]
    return out
