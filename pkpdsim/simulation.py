"""
ODE Simulation

Simulation driver for compiled ODE models:
- Multi-dose regimens (bolus, oral, infusion)
- Time-varying covariates
- Between-subject variability (exponential or additive)
- Observation compartment derived from a scaled state

The regimen is partitioned into breakpoints; each individual is
integrated piecewise between consecutive breakpoints so that dose jumps,
infusion rate changes and covariate slope changes never fall inside a
single integrator call. Each segment's final state is passed explicitly
as the next segment's initial state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from ._core import (
    OBS_LABEL,
    IntegrationError,
    PKPDSimError,
    RegimenValidationError,
    SimulationResult,
    SpecificationError,
    _label,
    _label_array,
)
from .covariates import Covariate, covariate_breaks, covariate_state, new_covariate
from .model.compiler import OdeModel
from .model.emitter import Kernel
from .regimen import Regimen, new_regimen
from .solver import Integrator, SolverSpec, scipy_integrator
from .timeline import TIME_DECIMALS, Mutation, MutationKind, Timeline, build_timeline
from .variability import apply_etas, sample_etas
from .variability import omega_type as _omega_type

logger = logging.getLogger(__name__)

# Spacing of the output grid (not the integrator step)
DEFAULT_STEP_SIZE = 0.25


@dataclass
class IndividualTrajectory:
    """Per-individual output: grid times, states and observation scale."""
    t: np.ndarray
    states: np.ndarray
    scale: np.ndarray


def time_grid(tmax: float, step_size: float) -> np.ndarray:
    """
    Fixed-step output grid 0, h, 2h, ... <= tmax.

    Example:
        >>> time_grid(1.0, 0.25)
        array([0.  , 0.25, 0.5 , 0.75, 1.  ])
    """
    n = int(np.floor(tmax / step_size + 1e-9)) + 1
    return np.round(np.arange(n) * step_size, TIME_DECIMALS)


def _resolve_covariates(
    ode: OdeModel,
    covariates: Optional[Mapping[str, Union[Covariate, float, Sequence[float]]]],
) -> List[Covariate]:
    """Covariate series in kernel slot order; call values override the model's defaults."""
    kernel = ode.kernel
    covariates = {**ode.covariate_data, **(covariates or {})}
    missing = [c for c in kernel.covariates if c not in covariates]
    if missing:
        raise SpecificationError(f"No covariate data supplied for: {', '.join(missing)}")
    out = []
    for name in kernel.covariates:
        cov = covariates[name]
        out.append(cov if isinstance(cov, Covariate) else new_covariate(cov))
    return out


def _check_regimen(regimen: Regimen, size: int) -> None:
    for dose in regimen.doses:
        if dose.cmt is not None and dose.cmt > size:
            raise RegimenValidationError(
                f"Dose at t={dose.time:g} targets compartment {dose.cmt}, model has {size}"
            )


def _initial_state(
    kernel: Kernel,
    p: np.ndarray,
    covariates: List[Covariate],
    A_init: Optional[Sequence[float]],
) -> np.ndarray:
    if A_init is not None:
        return np.array(A_init, dtype=float, copy=True)
    return np.asarray(kernel.init(p, covariate_state(covariates, 0.0)), dtype=float)


def _apply_dose_code(
    kernel: Kernel,
    p: np.ndarray,
    t: float,
    cov: np.ndarray,
    mutations: Sequence[Mutation],
) -> np.ndarray:
    """Run the model's dose code once for a breakpoint that carries doses."""
    if kernel.dose is None:
        return p
    doses = [m for m in mutations if m.kind in (MutationKind.BOLUS, MutationKind.INFUSION_START)]
    if not doses:
        return p
    return np.asarray(kernel.dose(t, p, cov, doses[-1].amount, t), dtype=float)


def simulate_individual(
    kernel: Kernel,
    p: np.ndarray,
    timeline: Timeline,
    grid: np.ndarray,
    covariates: List[Covariate],
    state: np.ndarray,
    integrator: Integrator,
    dose_cmt: int = 1,
    individual: int = 1,
) -> IndividualTrajectory:
    """
    Integrate one individual across all breakpoint segments.

    Args:
        kernel: Compiled model kernel
        p: Ordered parameter vector for this individual
        timeline: Breakpoint timeline (shared, read-only)
        grid: Output time grid
        covariates: Covariate series in kernel slot order
        state: Initial state at t=0
        integrator: External ODE integrator
        dose_cmt: Default dosing compartment (1-based)
        individual: Individual id, used in error context

    Returns:
        IndividualTrajectory with the grid rows of every segment

    Raises:
        IntegrationError: if a segment fails to integrate
    """
    active: Dict[int, Tuple[int, float]] = {}
    times: List[np.ndarray] = []
    states: List[np.ndarray] = []
    scales: List[float] = []

    p = np.array(p, dtype=float, copy=True)

    for k, (start, end, mutations) in enumerate(timeline.segments()):
        cov = covariate_state(covariates, start)
        state = np.array(state, dtype=float, copy=True)
        inside = grid[(grid >= start) & (grid <= end)]
        eval_times = np.unique(np.concatenate(([start], inside, [end])))
        logger.debug("individual %d segment %d: [%g, %g] %d points", individual, k, start, end, len(eval_times))

        try:
            p = _apply_dose_code(kernel, p, start, cov, mutations)
            for m in mutations:
                if m.kind is MutationKind.BOLUS:
                    cmt = (m.cmt or dose_cmt) - 1
                    state[cmt] += m.amount * kernel.bioav(start, p, cov)
                elif m.kind is MutationKind.INFUSION_START:
                    cmt = (m.cmt or dose_cmt) - 1
                    active[m.infusion] = (cmt, m.rate * kernel.bioav(start, p, cov))
                elif m.kind is MutationKind.INFUSION_END:
                    active.pop(m.infusion, None)

            rate = np.zeros(kernel.size, dtype=float)
            for cmt, r in active.values():
                rate[cmt] += r

            y = np.asarray(integrator(kernel.derivatives, state, eval_times, (p, rate, cov)), dtype=float)
            if y.shape != (len(eval_times), kernel.size) or not np.all(np.isfinite(y)):
                raise IntegrationError("Integrator returned non-finite or malformed state")

            keep = np.isin(eval_times, inside)
            if kernel.obs_index is not None:
                seg_scales = [float(kernel.scale(t, row, p, rate, cov)) for t, row in zip(eval_times[keep], y[keep])]
                if any(s == 0.0 or not np.isfinite(s) for s in seg_scales):
                    raise IntegrationError("Observation scale evaluated to zero or a non-finite value")
                scales += seg_scales
        except IntegrationError as exc:
            if exc.individual is not None:
                raise
            raise IntegrationError(str(exc), individual=individual, segment=k, time=start) from exc
        except PKPDSimError:
            raise
        except Exception as exc:
            raise IntegrationError(
                f"Integration failed: {type(exc).__name__}: {exc}",
                individual=individual, segment=k, time=start,
            ) from exc

        times.append(eval_times[keep])
        states.append(y[keep])
        state = y[-1]

    t = np.concatenate(times) if times else np.zeros(0)
    return IndividualTrajectory(
        t=t,
        states=np.vstack(states) if states else np.zeros((0, kernel.size)),
        scale=np.asarray(scales, dtype=float) if scales else np.ones(len(t)),
    )


def sim_ode(
    ode: OdeModel,
    parameters: Mapping[str, float],
    omega: Optional[Sequence[float]] = None,
    omega_type: str = "exponential",
    n_ind: int = 1,
    regimen: Optional[Regimen] = None,
    A_init: Optional[Sequence[float]] = None,
    covariates: Optional[Mapping[str, Union[Covariate, float, Sequence[float]]]] = None,
    step_size: float = DEFAULT_STEP_SIZE,
    tmax: Optional[float] = None,
    output_cmt: Optional[Sequence[Union[int, str]]] = None,
    seed: Optional[int] = None,
    solver: Optional[SolverSpec] = None,
    integrator: Optional[Integrator] = None,
) -> SimulationResult:
    """
    Simulate an ODE model for a regimen and one or more individuals.

    Args:
        ode: Compiled model from new_ode_model
        parameters: Population parameter values by name
        omega: Lower triangle of the between-subject variability matrix,
               applied to the first n parameters in declaration order
        omega_type: "exponential" (theta * exp(eta)) or "additive" (theta + eta)
        n_ind: Number of individuals
        regimen: Regimen from new_regimen (default: 100 every 12 for 3 doses)
        A_init: Initial state (default: state_init of the model, else zeros)
        covariates: Covariate series by name (Covariate or constant value)
        step_size: Spacing of output times (not the integrator step)
        tmax: Simulation horizon (default: end of regimen plus largest dose gap)
        output_cmt: Compartment labels to keep (ints and/or "obs")
        seed: Random seed for variability sampling
        solver: Settings for the default scipy integrator
        integrator: Custom integrator (overrides solver)

    Returns:
        SimulationResult with rows (id, t, comp, y)

    Raises:
        SpecificationError: missing parameter values or covariate data
        RegimenValidationError: regimen incompatible with the model
        IntegrationError: integration failed for an individual

    Example:
        >>> model = new_ode_model("pk_1cmt_oral")
        >>> reg = new_regimen(amt=100.0, interval=12.0, n=5, type="oral")
        >>> res = sim_ode(model, {"CL": 5.0, "V": 50.0, "KA": 1.0}, regimen=reg)
        >>> t, conc = res.series("obs")
    """
    if n_ind < 1:
        raise ValueError("n_ind must be at least 1")
    if step_size <= 0:
        raise ValueError("step_size must be positive")
    if tmax is not None and tmax <= 0:
        raise ValueError("tmax must be positive")

    kernel = ode.kernel
    kind = _omega_type(omega_type)

    if regimen is None:
        regimen = new_regimen(amt=100.0, interval=12.0, n=3)
    _check_regimen(regimen, kernel.size)
    if A_init is not None and len(A_init) != kernel.size:
        raise ValueError(f"A_init has {len(A_init)} entries, model has {kernel.size} compartments")

    covs = _resolve_covariates(ode, covariates)
    base = kernel.bind(parameters)

    timeline = build_timeline(regimen, tmax=tmax, covariate_times=covariate_breaks(covs))
    grid = time_grid(timeline.tmax, step_size)
    integrate = integrator or scipy_integrator(solver)

    if omega is not None:
        etas = sample_etas(omega, n_ind, seed=seed)
    else:
        etas = np.zeros((n_ind, 0))

    logger.info(
        "simulating %d individual(s): %d breakpoints, %d output times, tmax=%g",
        n_ind, len(timeline.breakpoints), len(grid), timeline.tmax,
    )

    ids: List[np.ndarray] = []
    ts: List[np.ndarray] = []
    comps: List[np.ndarray] = []
    ys: List[np.ndarray] = []
    obs_parts: List[Tuple[np.ndarray, ...]] = []
    params: List[Dict[str, float]] = []

    for i in range(1, n_ind + 1):
        p_i = apply_etas(base, etas[i - 1], kind)
        params.append(kernel.unbind(p_i))
        state0 = _initial_state(kernel, p_i, covs, A_init)
        traj = simulate_individual(
            kernel, p_i, timeline, grid, covs, state0, integrate,
            dose_cmt=ode.spec.dose_cmt, individual=i,
        )
        m = len(traj.t)
        for j in range(kernel.size):
            ids.append(np.full(m, i))
            ts.append(traj.t)
            comps.append(np.full(m, j + 1, dtype=object))
            ys.append(traj.states[:, j])
        if kernel.obs_index is not None:
            obs_parts.append((
                np.full(m, i),
                traj.t,
                traj.states[:, kernel.obs_index] / traj.scale,
            ))

    for pid, t, y in obs_parts:
        ids.append(pid)
        ts.append(t)
        comps.append(np.full(len(t), OBS_LABEL, dtype=object))
        ys.append(y)

    result = SimulationResult(
        id=np.concatenate(ids).astype(int),
        t=np.concatenate(ts),
        comp=_label_array(np.concatenate(comps)),
        y=np.concatenate(ys),
        params=params,
        metadata={
            "n_ind": n_ind,
            "tmax": timeline.tmax,
            "step_size": step_size,
            "breakpoints": timeline.times,
            "omega_type": kind.value,
            "solver": (solver or SolverSpec()).alg if integrator is None else "custom",
        },
    )
    if output_cmt is not None:
        result = result.filter(comp=[_label(c) for c in output_cmt])
    return result
