"""
Artifact Operations

This module provides functions for saving and replaying simulation artifacts.
Artifacts contain all information needed to reproduce a simulation exactly:
the model specification, parameters, regimen, covariates, variability,
solver settings and the simulated trajectory.
"""

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from ._core import SEMANTICS_VERSION, SimulationResult
from .covariates import Covariate, new_covariate
from .model.compiler import OdeModel, model_from_spec
from .regimen import Regimen
from .simulation import DEFAULT_STEP_SIZE, sim_ode
from .solver import SolverSpec

ARTIFACT_TYPE = "simulation"


def _covariates_to_dict(covariates: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    out = {}
    for name, cov in (covariates or {}).items():
        if not isinstance(cov, Covariate):
            cov = new_covariate(cov)
        out[name] = cov.to_dict()
    return out


def write_simulation_artifact(
    path: Union[str, Path],
    *,
    model: OdeModel,
    parameters: Mapping[str, float],
    regimen: Regimen,
    omega: Optional[Sequence[float]] = None,
    omega_type: str = "exponential",
    n_ind: int = 1,
    A_init: Optional[Sequence[float]] = None,
    covariates: Optional[Mapping[str, Any]] = None,
    step_size: float = DEFAULT_STEP_SIZE,
    tmax: Optional[float] = None,
    output_cmt: Optional[Sequence[Union[int, str]]] = None,
    seed: Optional[int] = None,
    solver: Optional[SolverSpec] = None,
) -> SimulationResult:
    """
    Run a simulation and write a complete artifact file.

    Args:
        path: Output path for the artifact JSON file
        model: Compiled model
        parameters, regimen, omega, ...: Same as sim_ode

    Returns:
        SimulationResult that was written

    Example:
        >>> write_simulation_artifact(
        ...     "pk_oral.json",
        ...     model=new_ode_model("pk_1cmt_oral"),
        ...     parameters={"CL": 5.0, "V": 50.0, "KA": 1.0},
        ...     regimen=new_regimen(amt=100.0, times=[0.0], type="oral"),
        ...     tmax=24.0,
        ... )
    """
    if omega is not None and seed is None:
        raise ValueError("seed required when omega is provided, otherwise the artifact cannot be replayed")

    solver = solver or SolverSpec()
    result = sim_ode(
        model,
        parameters,
        omega=omega,
        omega_type=omega_type,
        n_ind=n_ind,
        regimen=regimen,
        A_init=A_init,
        covariates=covariates,
        step_size=step_size,
        tmax=tmax,
        output_cmt=output_cmt,
        seed=seed,
        solver=solver,
    )

    artifact = {
        "artifact_type": ARTIFACT_TYPE,
        "semantics_version": SEMANTICS_VERSION,
        "model": model.spec.to_dict(),
        "parameters": {k: float(v) for k, v in parameters.items()},
        "regimen": regimen.to_dict(),
        "omega": None if omega is None else [float(x) for x in omega],
        "omega_type": omega_type,
        "n_ind": n_ind,
        "A_init": None if A_init is None else [float(x) for x in A_init],
        "covariates": _covariates_to_dict(covariates),
        "step_size": step_size,
        "tmax": tmax,
        "output_cmt": None if output_cmt is None else list(output_cmt),
        "seed": seed,
        "solver": solver.to_dict(),
        "result": result.to_dict(),
    }
    Path(path).write_text(json.dumps(artifact, indent=2), encoding="utf-8")
    return result


def read_artifact(path: Union[str, Path]) -> Dict[str, Any]:
    """Load an artifact file written by write_simulation_artifact."""
    artifact = json.loads(Path(path).read_text(encoding="utf-8"))
    atype = artifact.get("artifact_type")
    if atype != ARTIFACT_TYPE:
        raise ValueError(f"Unsupported artifact type: {atype}")
    return artifact


def replay_artifact(path: Union[str, Path]) -> SimulationResult:
    """
    Replay a simulation from a saved artifact file.

    This function re-executes a simulation using the exact inputs stored
    in an artifact file.

    Args:
        path: Path to the artifact JSON file

    Returns:
        Freshly simulated SimulationResult

    Example:
        >>> result = pkpdsim.replay_artifact("pk_oral.json")
        >>> stored = pkpdsim.stored_result("pk_oral.json")
    """
    artifact = read_artifact(path)
    covariates = {name: Covariate.from_dict(c) for name, c in artifact["covariates"].items()}

    return sim_ode(
        model_from_spec(artifact["model"]),
        artifact["parameters"],
        omega=artifact["omega"],
        omega_type=artifact["omega_type"],
        n_ind=artifact["n_ind"],
        regimen=Regimen.from_dict(artifact["regimen"]),
        A_init=artifact["A_init"],
        covariates=covariates,
        step_size=artifact["step_size"],
        tmax=artifact["tmax"],
        output_cmt=artifact["output_cmt"],
        seed=artifact["seed"],
        solver=SolverSpec.from_dict(artifact["solver"]),
    )


def stored_result(path: Union[str, Path]) -> SimulationResult:
    """Return the trajectory saved inside an artifact without re-running it."""
    return SimulationResult.from_dict(read_artifact(path)["result"])
