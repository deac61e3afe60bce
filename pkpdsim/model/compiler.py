"""
Model Compiler

Translates an ODE model definition (library name, inline text, or a list
of fragments) into a compiled kernel. Compilation happens once per
distinct specification; identical specifications share the cached kernel.
"""

from __future__ import annotations

import logging
import textwrap
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .._core import SpecificationError, _as_list
from ..covariates import Covariate, new_covariate
from .emitter import Kernel, emit_kernel
from .library import get_library_model, is_library_model
from .parser import fragment_size, parse_model, shift_state_indices

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelSpec:
    """
    Normalized, hashable model specification.

    Attributes:
        code: Merged ODE definition text (1-based compartments)
        parameters: Declared parameter names
        strict: Reject names that are not declared
        covariates: Covariate names
        state_init: State initialization text
        obs_cmt: Observation compartment (1-based) or None
        obs_scale: Observation scale expression
        dose_cmt: Default dosing compartment (1-based)
        bioav: Bioavailability expression
        dose_code: Statements evaluated at every dose event
        covariate_data: Default covariate series as (name, Covariate) pairs;
            (excluded from equality and hashing)
    """
    code: str
    parameters: Tuple[str, ...] = ()
    strict: bool = False
    covariates: Tuple[str, ...] = ()
    state_init: Optional[str] = None
    obs_cmt: Optional[int] = None
    obs_scale: Optional[str] = None
    dose_cmt: int = 1
    bioav: str = "1"
    dose_code: Optional[str] = None
    covariate_data: Tuple[Tuple[str, Covariate], ...] = field(default=(), compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "parameters": list(self.parameters),
            "strict": self.strict,
            "covariates": list(self.covariates),
            "state_init": self.state_init,
            "obs_cmt": self.obs_cmt,
            "obs_scale": self.obs_scale,
            "dose_cmt": self.dose_cmt,
            "bioav": self.bioav,
            "dose_code": self.dose_code,
            "covariate_data": {name: cov.to_dict() for name, cov in self.covariate_data},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelSpec":
        data = dict(data)
        data["parameters"] = tuple(data.get("parameters", ()))
        data["covariates"] = tuple(data.get("covariates", ()))
        data["covariate_data"] = tuple(
            (name, Covariate.from_dict(cov)) for name, cov in (data.get("covariate_data") or {}).items()
        )
        return cls(**data)


@lru_cache(maxsize=128)
def compile_model(spec: ModelSpec) -> Kernel:
    """
    Compile a ModelSpec into a Kernel (cached per distinct spec).

    Raises:
        SpecificationError: for any invalid model definition
    """
    ir = parse_model(
        spec.code,
        parameters=spec.parameters,
        covariates=spec.covariates,
        state_init=spec.state_init,
        obs_cmt=spec.obs_cmt,
        obs_scale=spec.obs_scale,
        bioav=spec.bioav,
        dose_code=spec.dose_code,
        strict=spec.strict,
    )
    if not 1 <= spec.dose_cmt <= ir.size:
        raise SpecificationError(f"Dosing compartment {spec.dose_cmt} is outside 1..{ir.size}")
    kernel = emit_kernel(ir)
    logger.debug("compiled %d-compartment kernel:\n%s", kernel.size, kernel.code)
    return kernel


@dataclass(frozen=True)
class OdeModel:
    """
    Compiled ODE model, passed to sim_ode.

    Example:
        >>> model = new_ode_model("pk_1cmt_oral")
        >>> model.parameters
        ('CL', 'V', 'KA')
    """
    spec: ModelSpec
    kernel: Kernel

    @property
    def code(self) -> str:
        return self.spec.code

    @property
    def size(self) -> int:
        return self.kernel.size

    @property
    def parameters(self) -> Tuple[str, ...]:
        return self.kernel.parameters

    @property
    def covariates(self) -> Tuple[str, ...]:
        return self.kernel.covariates

    @property
    def variables(self) -> Tuple[str, ...]:
        return self.kernel.variables

    @property
    def obs(self) -> Optional[Dict[str, Any]]:
        if self.spec.obs_cmt is None:
            return None
        return {"cmt": self.spec.obs_cmt, "scale": self.spec.obs_scale or "1"}

    @property
    def dose(self) -> Dict[str, Any]:
        return {"cmt": self.spec.dose_cmt, "bioav": self.spec.bioav}

    @property
    def covariate_data(self) -> Dict[str, Covariate]:
        return dict(self.spec.covariate_data)

    def describe(self) -> str:
        obs = self.obs or {}
        lines = [
            "ODE definition:",
            self.code,
            f"Required parameters: {', '.join(self.parameters)}",
            f"Covariates: {', '.join(self.covariates)}",
            f"Variables: {', '.join(self.variables)}",
            f"Number of compartments: {self.size}",
            f"Observation compartment: {obs.get('cmt', '')}",
            f"Observation scaling: {obs.get('scale', '')}",
        ]
        if self.spec.dose_code:
            lines += ["PK event code:", self.spec.dose_code]
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.describe()


def _fragment(frag: Any) -> Tuple[str, Tuple[str, ...], Optional[dict], Optional[dict], Optional[str]]:
    if not isinstance(frag, str):
        raise SpecificationError(f"Model fragments must be library names or ODE text (got {type(frag).__name__})")
    name = frag.strip()
    if is_library_model(name):
        lib = get_library_model(name)
        return textwrap.dedent(lib.code).strip(), lib.parameters, lib.obs, lib.dose, lib.state_init
    if "=" not in frag:
        get_library_model(name)
    return textwrap.dedent(frag).strip(), (), None, None, None


def _shifted(spec: Optional[Dict[str, Any]], offset: int) -> Optional[Dict[str, Any]]:
    if spec is None:
        return None
    out = dict(spec)
    if out.get("cmt") is not None:
        out["cmt"] = int(out["cmt"]) + offset
    return out


def _merge(fragments: Sequence[Any]):
    codes: List[str] = []
    inits: List[str] = []
    params: List[str] = []
    obs = dose = None
    offset = 0
    for frag in fragments:
        text, fparams, fobs, fdose, finit = _fragment(frag)
        size = fragment_size(text)
        codes.append(shift_state_indices(text, offset) if offset else text)
        if finit:
            inits.append(shift_state_indices(finit, offset) if offset else finit)
        params += [p for p in fparams if p not in params]
        obs = obs or _shifted(fobs, offset)
        dose = dose or _shifted(fdose, offset)
        offset += size
    return "\n".join(codes), params, obs, dose, inits


def _covariate_defaults(covariates: Any) -> Tuple[Tuple[str, Covariate], ...]:
    if not isinstance(covariates, Mapping):
        return ()
    return tuple(
        (name, cov if isinstance(cov, Covariate) else new_covariate(cov))
        for name, cov in covariates.items()
        if cov is not None
    )


def new_ode_model(
    model: Union[None, str, Sequence[str]] = None,
    code: Union[None, str, Sequence[str]] = None,
    state_init: Optional[str] = None,
    parameters: Optional[Sequence[str]] = None,
    covariates: Union[None, Sequence[str], Mapping[str, Any]] = None,
    obs: Optional[Mapping[str, Any]] = None,
    dose: Optional[Mapping[str, Any]] = None,
    dose_code: Optional[str] = None,
    show_code: bool = False,
) -> OdeModel:
    """
    Create a compiled ODE model.

    Args:
        model: Library model name, or a list of fragments (library names
               or ODE text) merged in order. Compartment indices of each
               fragment are shifted past the fragments before it.
        code: Inline ODE definition text (appended after `model` fragments)
        state_init: State initialization text, e.g. "A[1] = BASE"
        parameters: Parameter names in declaration order. When given, any
                    other free name in the model is an error; otherwise free
                    names are appended in order of first appearance.
        covariates: Covariate names, or a mapping of name to default series
                    (Covariate, constant value or None) used by sim_ode when
                    the call does not pass that covariate
        obs: Observation {"cmt": 1-based compartment, "scale": expression}
        dose: Dosing {"cmt": default compartment, "bioav": number or expression}
        dose_code: Statements run at every dose event with the individual's
                   parameters and covariates, e.g. "CLi = CL * (WT / 70)^0.75".
                   prv_dose and t_prv_dose hold the amount and time of the dose.
        show_code: Print the generated kernel source

    Returns:
        OdeModel

    Raises:
        SpecificationError: for malformed equations, manual `rate` terms,
            unresolved names or unknown library models

    Example:
        >>> pk = new_ode_model(code='''
        ...     dAdt[1] = -KA * A[1]
        ...     dAdt[2] = KA * A[1] - (CL / V) * A[2]
        ... ''', obs={"cmt": 2, "scale": "V"})
        >>> pkpd = new_ode_model(["pk_1cmt_oral", "pd_effect_cmt"])
    """
    fragments = _as_list(model) + _as_list(code)
    if not fragments:
        raise SpecificationError("Either a library model or ODE code has to be specified")

    merged, lib_params, lib_obs, lib_dose, inits = _merge(fragments)
    if state_init:
        inits.append(textwrap.dedent(state_init).strip())

    obs = dict(obs) if obs is not None else lib_obs
    dose = dict(dose) if dose is not None else (lib_dose or {})

    if obs is not None and obs.get("cmt") is None:
        raise SpecificationError("Observation specification needs a `cmt`")

    spec = ModelSpec(
        code=merged,
        parameters=tuple(parameters) if parameters is not None else tuple(lib_params),
        strict=parameters is not None,
        covariates=tuple(covariates) if covariates is not None else (),
        covariate_data=_covariate_defaults(covariates),
        state_init="\n".join(inits) or None,
        obs_cmt=int(obs["cmt"]) if obs is not None else None,
        obs_scale=str(obs.get("scale", 1)) if obs is not None else None,
        dose_cmt=int(dose.get("cmt", 1)),
        bioav=str(dose.get("bioav", 1)),
        dose_code=textwrap.dedent(dose_code).strip() if dose_code else None,
    )
    kernel = compile_model(spec)
    if show_code:
        print(kernel.code)
    return OdeModel(spec=spec, kernel=kernel)


def model_from_spec(data: Mapping[str, Any]) -> OdeModel:
    """Rebuild an OdeModel from ModelSpec.to_dict() output."""
    spec = ModelSpec.from_dict(dict(data))
    return OdeModel(spec=spec, kernel=compile_model(spec))
