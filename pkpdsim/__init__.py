"""
PKPDsim - ODE-based PK/PD Simulation

Simulation of compartmental pharmacokinetic-pharmacodynamic models defined
as systems of ordinary differential equations.

Features:
- Model compilation from equation text:
  - Automatic declaration of intermediate variables
  - 1-based compartment indices in model text
  - Infusion rates injected into every derivative
  - Linear or carry-forward time-varying covariates
  - Library models and merging of PK and PD fragments
  - Dose code evaluated at every dose event
- Dosing regimens: bolus, oral, infusion, per-dose amounts and compartments
- Population simulations with between-subject variability
- Observation compartment with scaling
- PK/PD metrics (Cmax, Tmax, AUC, half-life)
- Artifact write and replay for reproducibility

Quick Start:
    >>> import pkpdsim

    >>> # Compile a model from equation text
    >>> model = pkpdsim.new_ode_model(
    ...     code='''
    ...         dAdt[1] = -KA * A[1]
    ...         dAdt[2] = KA * A[1] - (CL / V) * A[2]
    ...     ''',
    ...     obs={"cmt": 2, "scale": "V"},
    ...     parameters=["CL", "V", "KA"],
    ... )

    >>> # Three oral doses, 12 hours apart
    >>> reg = pkpdsim.new_regimen(amt=100.0, interval=12.0, n=3, type="oral")

    >>> # Simulate 20 individuals with variability on CL and V
    >>> result = pkpdsim.sim_ode(
    ...     model,
    ...     parameters={"KA": 1.0, "CL": 5.0, "V": 50.0},
    ...     omega=[0.09, 0.0, 0.04],
    ...     n_ind=20,
    ...     regimen=reg,
    ...     seed=12345,
    ... )

    >>> # Compute metrics
    >>> print(f"Cmax: {pkpdsim.cmax(result)}")
    >>> print(f"AUC: {pkpdsim.auc_trapezoid(result)}")

Note that variability applies to the first parameters in declaration
order. Without `parameters=` the model above would declare KA, CL, V
(order of first appearance) and the variability would land on KA and CL.

For more information, see the docstrings for individual functions.
"""

__version__ = "0.1.0"

# Errors and results
from ._core import (
    PKPDSimError,
    SpecificationError,
    RegimenValidationError,
    IntegrationError,
    SimulationResult,
)

# Model compilation
from .model import (
    new_ode_model,
    compile_model,
    library_models,
    get_library_model,
    ModelSpec,
    OdeModel,
    Kernel,
)

# Regimens and timeline
from .regimen import (
    new_regimen,
    regimen_duration,
    DoseEvent,
    DoseType,
    Regimen,
)

from .timeline import (
    build_timeline,
    default_horizon,
    Breakpoint,
    Mutation,
    MutationKind,
    Timeline,
)

# Covariates and variability
from .covariates import (
    new_covariate,
    interpolate_covariate,
    Covariate,
    CovariateSegment,
)

from .variability import (
    omega_to_matrix,
    sample_etas,
    apply_etas,
    OmegaType,
)

# Simulation
from .solver import (
    scipy_integrator,
    SolverSpec,
)

from .simulation import (
    sim_ode,
    time_grid,
)

# PK/PD metrics
from .metrics import (
    cmax,
    tmax,
    auc_trapezoid,
    half_life,
)

# Artifact operations
from .artifacts import (
    write_simulation_artifact,
    replay_artifact,
    stored_result,
)


__all__ = [
    # Errors and results
    "PKPDSimError",
    "SpecificationError",
    "RegimenValidationError",
    "IntegrationError",
    "SimulationResult",
    # Model compilation
    "new_ode_model",
    "compile_model",
    "library_models",
    "get_library_model",
    "ModelSpec",
    "OdeModel",
    "Kernel",
    # Regimens
    "new_regimen",
    "regimen_duration",
    "DoseEvent",
    "DoseType",
    "Regimen",
    "build_timeline",
    "default_horizon",
    "Breakpoint",
    "Mutation",
    "MutationKind",
    "Timeline",
    # Covariates and variability
    "new_covariate",
    "interpolate_covariate",
    "Covariate",
    "CovariateSegment",
    "omega_to_matrix",
    "sample_etas",
    "apply_etas",
    "OmegaType",
    # Simulation
    "scipy_integrator",
    "SolverSpec",
    "sim_ode",
    "time_grid",
    # Metrics
    "cmax",
    "tmax",
    "auc_trapezoid",
    "half_life",
    # Artifacts
    "write_simulation_artifact",
    "replay_artifact",
    "stored_result",
]
