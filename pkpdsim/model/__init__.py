"""
PKPDsim Model Package

Compilation of symbolic ODE definitions into executable kernels:
- Equation parsing into a typed intermediate representation
- Kernel code generation (rate and covariate injection)
- Model library and fragment merging
"""

from .compiler import (
    new_ode_model,
    compile_model,
    model_from_spec,
    ModelSpec,
    OdeModel,
)

from .emitter import (
    Kernel,
)

from .library import (
    library_models,
    get_library_model,
    LibraryModel,
)

from .parser import (
    shift_state_indices,
)


__all__ = [
    "new_ode_model",
    "compile_model",
    "model_from_spec",
    "ModelSpec",
    "OdeModel",
    "Kernel",
    "library_models",
    "get_library_model",
    "LibraryModel",
    "shift_state_indices",
]
