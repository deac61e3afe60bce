"""
Tests for PKPDsim simulation.

These tests verify the piecewise integration driver against analytical
solutions: bolus, oral and infusion dosing, observation scaling,
covariates, variability, state initialization and error reporting.
"""

import math

import numpy as np
import pytest

from pkpdsim import (
    new_ode_model,
    new_regimen,
    new_covariate,
    sim_ode,
    sample_etas,
    scipy_integrator,
    time_grid,
    cmax,
    tmax,
    auc_trapezoid,
    half_life,
    IntegrationError,
    RegimenValidationError,
    SimulationResult,
    SolverSpec,
    SpecificationError,
)


def _iv_model():
    return new_ode_model(code="dAdt[1] = -(CL / V) * A[1]", obs={"cmt": 1, "scale": "V"})


def _oral_model():
    return new_ode_model(
        code="""
            dAdt[1] = -KA * A[1]
            dAdt[2] = KA * A[1] - (CL / V) * A[2]
        """,
        obs={"cmt": 2, "scale": "V"},
        dose={"cmt": 1, "bioav": "F"},
    )


def _value_at(t, y, time):
    idx = np.where(np.isclose(t, time))[0]
    return y[idx]


# ============================================================================
# Time Grid Tests
# ============================================================================

class TestTimeGrid:
    """Tests for the output grid."""

    def test_grid(self):
        """Test grid spacing and inclusive end."""
        np.testing.assert_allclose(time_grid(1.0, 0.25), [0.0, 0.25, 0.5, 0.75, 1.0])

    def test_grid_not_multiple(self):
        """Test grid stops at the last step before the horizon."""
        np.testing.assert_allclose(time_grid(1.0, 0.3), [0.0, 0.3, 0.6, 0.9])


# ============================================================================
# Dosing Tests
# ============================================================================

class TestBolus:
    """Tests for IV bolus simulations."""

    def test_analytic_decay(self):
        """Test one-compartment bolus matches D * exp(-k t)."""
        reg = new_regimen(amt=100.0, times=[0.0], type="bolus")
        res = sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=24.0, step_size=1.0)
        t, y = res.series(1)

        np.testing.assert_allclose(t, np.arange(25.0))
        np.testing.assert_allclose(y, 100.0 * np.exp(-0.1 * t), rtol=1e-5)

    def test_observation_scaled(self):
        """Test observation rows equal the scaled observation compartment."""
        reg = new_regimen(amt=100.0, times=[0.0], type="bolus")
        res = sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=24.0, step_size=1.0)
        _, amount = res.series(1)
        _, conc = res.series("obs")

        np.testing.assert_allclose(conc, amount / 10.0)

    def test_row_order(self):
        """Test rows are grouped by compartment with observations last."""
        reg = new_regimen(amt=100.0, times=[0.0], type="bolus")
        res = sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=2.0, step_size=1.0)

        assert list(res.comp) == [1, 1, 1, "obs", "obs", "obs"]
        assert res.compartments == [1, "obs"]
        assert list(res.id) == [1] * 6

    def test_boundary_rows_before_and_after_dose(self):
        """Test grid times at a breakpoint appear pre- and post-dose."""
        reg = new_regimen(amt=100.0, interval=12.0, n=2, type="bolus")
        res = sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=24.0, step_size=6.0)
        t, y = res.series(1)

        np.testing.assert_allclose(t, [0.0, 6.0, 12.0, 12.0, 18.0, 24.0])
        assert y[3] - y[2] == pytest.approx(100.0)
        assert y[2] == pytest.approx(100.0 * math.exp(-1.2), rel=1e-5)

    def test_dose_compartment_override(self):
        """Test per-dose compartments override the model default."""
        model = new_ode_model(code="dAdt[1] = -K * A[1]\ndAdt[2] = 0")
        reg = new_regimen(amt=[10.0, 20.0], times=[0.0, 1.0], type="bolus", cmt=[1, 2])
        res = sim_ode(model, {"K": 0.0}, regimen=reg, tmax=2.0, step_size=1.0)
        _, a1 = res.series(1)
        _, a2 = res.series(2)

        assert a1[-1] == pytest.approx(10.0)
        assert a2[-1] == pytest.approx(20.0)

    def test_doses_after_horizon_ignored(self):
        """Test doses at or after tmax are not applied."""
        reg = new_regimen(amt=100.0, times=[0.0, 10.0], type="bolus")
        res = sim_ode(_iv_model(), {"CL": 0.0, "V": 10.0}, regimen=reg, tmax=10.0, step_size=5.0)
        _, y = res.series(1)

        assert y[-1] == pytest.approx(100.0)


class TestInfusion:
    """Tests for zero-order infusions."""

    def test_rate_switched_on_and_off(self):
        """Test the rate vector seen by the integrator per segment."""
        rates = []
        base = scipy_integrator()

        def recording(fun, y0, times, args):
            rates.append(float(args[1][0]))
            return base(fun, y0, times, args)

        model = new_ode_model(code="dAdt[1] = -K * A[1]")
        reg = new_regimen(amt=100.0, times=[0.0], t_inf=2.0)
        res = sim_ode(model, {"K": 0.0}, regimen=reg, tmax=4.0, step_size=1.0, integrator=recording)
        t, y = res.series(1)

        assert rates == [50.0, 0.0]
        np.testing.assert_allclose(t, [0.0, 1.0, 2.0, 2.0, 3.0, 4.0])
        np.testing.assert_allclose(y, [0.0, 50.0, 100.0, 100.0, 100.0, 100.0], atol=1e-6)
        assert res.metadata["solver"] == "custom"

    def test_overlapping_infusions_add(self):
        """Test concurrent infusions add their rates."""
        model = new_ode_model(code="dAdt[1] = -K * A[1]")
        reg = new_regimen(amt=[100.0, 100.0], times=[0.0, 1.0], t_inf=2.0)
        res = sim_ode(model, {"K": 0.0}, regimen=reg, tmax=4.0, step_size=0.5)
        t, y = res.series(1)

        assert _value_at(t, y, 1.5)[0] == pytest.approx(50.0 + 100.0 * 0.5, rel=1e-6)
        assert y[-1] == pytest.approx(200.0, rel=1e-6)

    def test_infusion_with_elimination(self):
        """Test infusion profile matches the analytic solution."""
        model = _iv_model()
        reg = new_regimen(amt=100.0, times=[0.0], t_inf=2.0)
        res = sim_ode(model, {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=12.0, step_size=0.5)
        t, y = res.series(1)

        k, r0 = 0.1, 50.0
        end = r0 / k * (1 - math.exp(-k * 2.0))
        expected = np.where(
            t <= 2.0,
            r0 / k * (1 - np.exp(-k * t)),
            end * np.exp(-k * (t - 2.0)),
        )
        np.testing.assert_allclose(y, expected, rtol=1e-5, atol=1e-8)

    def test_zero_duration_without_checks(self):
        """Test an unchecked zero-length infusion is rejected when scheduled."""
        reg = new_regimen(amt=100.0, times=[0.0], type="infusion", t_inf=0.0, checks=False)

        with pytest.raises(RegimenValidationError, match="duration"):
            sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=4.0)


class TestOral:
    """Tests for first-order absorption with bioavailability."""

    def test_oral_profile(self):
        """Test depot and central amounts against the Bateman function."""
        params = {"KA": 1.0, "CL": 5.0, "V": 50.0, "F": 0.8}
        reg = new_regimen(amt=100.0, times=[0.0], type="oral")
        res = sim_ode(_oral_model(), params, regimen=reg, tmax=72.0, step_size=0.5)

        t, depot = res.series(1)
        _, central = res.series(2)
        ka, k, dose = 1.0, 0.1, 80.0

        assert depot[0] == pytest.approx(dose)
        np.testing.assert_allclose(depot, dose * np.exp(-ka * t), rtol=1e-5, atol=1e-8)
        expected = dose * ka / (ka - k) * (np.exp(-k * t) - np.exp(-ka * t))
        np.testing.assert_allclose(central, expected, rtol=1e-5, atol=1e-8)

    def test_rise_then_decline(self):
        """Test observation rises to a peak and then declines."""
        params = {"KA": 1.0, "CL": 5.0, "V": 50.0, "F": 0.8}
        reg = new_regimen(amt=100.0, times=[0.0], type="oral")
        res = sim_ode(_oral_model(), params, regimen=reg, tmax=72.0, step_size=0.5)

        t_peak = tmax(res)
        assert 0.0 < t_peak < 12.0
        _, conc = res.series("obs")
        assert conc[0] == pytest.approx(0.0, abs=1e-12)
        assert conc[-1] < cmax(res) / 100.0

    def test_default_regimen(self):
        """Test sim_ode runs with the default regimen and horizon."""
        res = sim_ode(new_ode_model("pk_1cmt_oral"), {"CL": 5.0, "V": 50.0, "KA": 1.0})

        assert res.metadata["tmax"] == 36.0
        assert res.metadata["breakpoints"] == [0.0, 12.0, 24.0, 36.0]


# ============================================================================
# Covariate Tests
# ============================================================================

class TestCovariateSimulation:
    """Tests for covariates during integration."""

    def _run(self, implementation):
        model = new_ode_model(code="dAdt[1] = WT", covariates=["WT"])
        reg = new_regimen(amt=0.0, times=[0.0], type="bolus")
        wt = new_covariate([10.0, 30.0], times=[0.0, 10.0], implementation=implementation)
        return sim_ode(model, {}, regimen=reg, covariates={"WT": wt}, tmax=20.0, step_size=5.0)

    def test_linear_interpolation(self):
        """Test the integral of a linearly interpolated covariate."""
        res = self._run("interpolate")
        t, y = res.series(1)

        assert 10.0 in res.metadata["breakpoints"]
        assert _value_at(t, y, 5.0)[0] == pytest.approx(75.0, rel=1e-6)
        assert _value_at(t, y, 10.0)[-1] == pytest.approx(200.0, rel=1e-6)
        assert y[-1] == pytest.approx(500.0, rel=1e-6)

    def test_carry_forward(self):
        """Test the integral of a carried-forward covariate."""
        res = self._run("locf")
        t, y = res.series(1)

        assert _value_at(t, y, 5.0)[0] == pytest.approx(50.0, rel=1e-6)
        assert _value_at(t, y, 10.0)[-1] == pytest.approx(100.0, rel=1e-6)
        assert y[-1] == pytest.approx(400.0, rel=1e-6)

    def test_constant_value(self):
        """Test a bare number is a constant covariate."""
        model = new_ode_model(code="dAdt[1] = WT", covariates=["WT"])
        reg = new_regimen(amt=0.0, times=[0.0], type="bolus")
        res = sim_ode(model, {}, regimen=reg, covariates={"WT": 7.0}, tmax=4.0, step_size=1.0)
        _, y = res.series(1)

        assert y[-1] == pytest.approx(28.0, rel=1e-6)

    def test_missing_covariate(self):
        """Test declared covariates need data."""
        model = new_ode_model(code="dAdt[1] = -CL * WT * A[1]", covariates=["WT"])

        with pytest.raises(SpecificationError, match="WT"):
            sim_ode(model, {"CL": 1.0}, regimen=new_regimen(amt=1.0, times=[0.0], type="bolus"))

    def test_model_default_series(self):
        """Test covariate series given to new_ode_model are used by default."""
        model = new_ode_model(code="dAdt[1] = WT", covariates={"WT": new_covariate(7.0)})
        reg = new_regimen(amt=0.0, times=[0.0], type="bolus")
        _, y = sim_ode(model, {}, regimen=reg, tmax=4.0, step_size=1.0).series(1)

        assert y[-1] == pytest.approx(28.0, rel=1e-6)

    def test_call_overrides_model_series(self):
        """Test covariates passed to sim_ode replace the model's series."""
        model = new_ode_model(code="dAdt[1] = WT", covariates={"WT": 7.0})
        reg = new_regimen(amt=0.0, times=[0.0], type="bolus")
        _, y = sim_ode(model, {}, regimen=reg, covariates={"WT": 3.0}, tmax=4.0, step_size=1.0).series(1)

        assert y[-1] == pytest.approx(12.0, rel=1e-6)


# ============================================================================
# Dose Code Tests
# ============================================================================

class TestDoseCode:
    """Tests for statements evaluated at each dose event."""

    def test_clearance_from_covariate(self):
        """Test a dose-time clearance drives elimination."""
        model = new_ode_model(
            code="dAdt[1] = -CLi / V * A[1]",
            parameters=["CL", "V"],
            covariates={"WT": 140.0},
            dose_code="CLi = CL * WT / 70",
            obs={"cmt": 1, "scale": "V"},
        )
        reg = new_regimen(amt=100.0, times=[0.0], type="bolus")
        t, conc = sim_ode(model, {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=4.0, step_size=1.0).series("obs")

        np.testing.assert_allclose(conc, 10.0 * np.exp(-0.2 * t), rtol=1e-5)

    def test_updates_persist_between_doses(self):
        """Test values set at one dose are kept until the next dose."""
        model = new_ode_model(
            code="dAdt[1] = 0\ndAdt[2] = TOTAL",
            dose_code="TOTAL = TOTAL + prv_dose",
        )
        reg = new_regimen(amt=[10.0, 20.0], times=[0.0, 5.0], type="bolus")
        res = sim_ode(model, {"TOTAL": 0.0}, regimen=reg, tmax=10.0, step_size=1.0)
        t, y = res.series(2)

        assert _value_at(t, y, 5.0)[0] == pytest.approx(50.0, rel=1e-6)
        assert y[-1] == pytest.approx(200.0, rel=1e-6)
        assert res.params[0] == {"TOTAL": 0.0}


# ============================================================================
# Variability Tests
# ============================================================================

class TestPopulation:
    """Tests for multi-individual simulations."""

    PARAMS = {"CL": 5.0, "V": 50.0, "KA": 1.0}

    def test_realized_parameters(self):
        """Test etas perturb the first parameters only."""
        reg = new_regimen(amt=100.0, times=[0.0], type="oral")
        res = sim_ode(
            new_ode_model("pk_1cmt_oral"), self.PARAMS,
            omega=[0.09, 0.0, 0.04], n_ind=5, regimen=reg, tmax=12.0, seed=11,
        )
        etas = sample_etas([0.09, 0.0, 0.04], 5, seed=11)

        assert len(res.params) == 5
        assert sorted(set(res.id)) == [1, 2, 3, 4, 5]
        for i, p in enumerate(res.params):
            assert p["CL"] == pytest.approx(5.0 * math.exp(etas[i, 0]))
            assert p["V"] == pytest.approx(50.0 * math.exp(etas[i, 1]))
            assert p["KA"] == 1.0

    def test_declared_order_controls_variability(self):
        """Test explicit parameter order puts etas on CL and V, not KA."""
        model = new_ode_model(
            code="dAdt[1] = -KA * A[1]\ndAdt[2] = KA * A[1] - (CL / V) * A[2]",
            obs={"cmt": 2, "scale": "V"},
            parameters=["CL", "V", "KA"],
        )
        reg = new_regimen(amt=100.0, times=[0.0], type="oral")
        res = sim_ode(model, self.PARAMS, omega=[0.09, 0.0, 0.04], n_ind=3, regimen=reg, tmax=12.0, seed=7)
        etas = sample_etas([0.09, 0.0, 0.04], 3, seed=7)

        assert model.parameters == ("CL", "V", "KA")
        for i, p in enumerate(res.params):
            assert p["CL"] == pytest.approx(5.0 * math.exp(etas[i, 0]))
            assert p["V"] == pytest.approx(50.0 * math.exp(etas[i, 1]))
            assert p["KA"] == 1.0

    def test_seed_reproducible(self):
        """Test identical seeds give identical trajectories."""
        reg = new_regimen(amt=100.0, times=[0.0], type="oral")
        kwargs = dict(omega=[0.09], n_ind=3, regimen=reg, tmax=12.0, seed=5)
        a = sim_ode(new_ode_model("pk_1cmt_oral"), self.PARAMS, **kwargs)
        b = sim_ode(new_ode_model("pk_1cmt_oral"), self.PARAMS, **kwargs)

        np.testing.assert_array_equal(a.y, b.y)

    def test_additive(self):
        """Test additive etas."""
        reg = new_regimen(amt=100.0, times=[0.0], type="oral")
        res = sim_ode(
            new_ode_model("pk_1cmt_oral"), self.PARAMS,
            omega=[0.01], omega_type="additive", n_ind=4, regimen=reg, tmax=6.0, seed=2,
        )
        etas = sample_etas([0.01], 4, seed=2)

        for i, p in enumerate(res.params):
            assert p["CL"] == pytest.approx(5.0 + etas[i, 0])
        assert res.metadata["omega_type"] == "additive"

    def test_individuals_without_omega_identical(self):
        """Test individuals share the population parameters without omega."""
        reg = new_regimen(amt=100.0, times=[0.0], type="oral")
        res = sim_ode(new_ode_model("pk_1cmt_oral"), self.PARAMS, n_ind=2, regimen=reg, tmax=6.0)
        _, y1 = res.series("obs", id=1)
        _, y2 = res.series("obs", id=2)

        np.testing.assert_array_equal(y1, y2)

    def test_omega_too_large(self):
        """Test omega with more dimensions than parameters."""
        reg = new_regimen(amt=100.0, times=[0.0], type="bolus")
        with pytest.raises(ValueError):
            sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, omega=[0.1, 0.0, 0.1, 0.0, 0.0, 0.1],
                    regimen=reg, seed=1)


# ============================================================================
# Initial State Tests
# ============================================================================

class TestInitialState:
    """Tests for state initialization."""

    def test_state_init_steady_state(self):
        """Test a baseline from state_init stays at steady state."""
        model = new_ode_model(code="dAdt[1] = KIN - KOUT * A[1]", state_init="A[1] = KIN / KOUT")
        reg = new_regimen(amt=0.0, times=[0.0], type="bolus")
        res = sim_ode(model, {"KIN": 10.0, "KOUT": 2.0}, regimen=reg, tmax=10.0, step_size=1.0)
        _, y = res.series(1)

        np.testing.assert_allclose(y, 5.0, rtol=1e-6)

    def test_explicit_initial_state(self):
        """Test A_init overrides state_init."""
        model = new_ode_model(code="dAdt[1] = KIN - KOUT * A[1]", state_init="A[1] = KIN / KOUT")
        reg = new_regimen(amt=0.0, times=[0.0], type="bolus")
        res = sim_ode(model, {"KIN": 10.0, "KOUT": 2.0}, regimen=reg, A_init=[0.0], tmax=10.0, step_size=1.0)
        t, y = res.series(1)

        np.testing.assert_allclose(y, 5.0 * (1 - np.exp(-2.0 * t)), rtol=1e-5, atol=1e-8)

    def test_initial_state_length(self):
        """Test A_init must match the compartment count."""
        with pytest.raises(ValueError):
            sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, A_init=[0.0, 0.0],
                    regimen=new_regimen(amt=1.0, times=[0.0], type="bolus"))


# ============================================================================
# Output and Error Tests
# ============================================================================

class TestOutput:
    """Tests for output selection and argument checks."""

    def test_output_filter(self):
        """Test output_cmt selects compartments."""
        reg = new_regimen(amt=100.0, times=[0.0], type="oral")
        res = sim_ode(new_ode_model("pk_1cmt_oral"), {"CL": 5.0, "V": 50.0, "KA": 1.0},
                      regimen=reg, tmax=6.0, output_cmt=["obs"])

        assert res.compartments == ["obs"]

    def test_series_missing(self):
        """Test series raises for absent compartments."""
        reg = new_regimen(amt=100.0, times=[0.0], type="bolus")
        res = sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=2.0)

        with pytest.raises(KeyError):
            res.series(5)

    def test_result_round_trip(self):
        """Test conversion of results to plain data and back."""
        reg = new_regimen(amt=100.0, times=[0.0], type="bolus")
        res = sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=2.0)
        again = SimulationResult.from_dict(res.to_dict())

        np.testing.assert_array_equal(again.y, res.y)
        assert list(again.comp) == list(res.comp)
        first = res.rows()[0]
        assert (first["id"], first["t"], first["comp"]) == (1, 0.0, 1)
        assert first["y"] == pytest.approx(100.0)

    def test_missing_parameter(self):
        """Test every declared parameter needs a value."""
        with pytest.raises(SpecificationError):
            sim_ode(_iv_model(), {"CL": 1.0}, regimen=new_regimen(amt=1.0, times=[0.0], type="bolus"))

    def test_dose_compartment_out_of_range(self):
        """Test doses into a compartment the model lacks."""
        reg = new_regimen(amt=1.0, times=[0.0], type="bolus", cmt=3)
        with pytest.raises(RegimenValidationError):
            sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg)

    def test_invalid_arguments(self):
        """Test n_ind, step_size and tmax checks."""
        reg = new_regimen(amt=1.0, times=[0.0], type="bolus")
        with pytest.raises(ValueError):
            sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, n_ind=0)
        with pytest.raises(ValueError):
            sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, step_size=0.0)
        with pytest.raises(ValueError):
            sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=-1.0)

    def test_solver_settings(self):
        """Test a non-default scipy method."""
        reg = new_regimen(amt=100.0, times=[0.0], type="bolus")
        res = sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=10.0, step_size=1.0,
                      solver=SolverSpec(alg="RK45", reltol=1e-8, abstol=1e-10))
        t, y = res.series(1)

        np.testing.assert_allclose(y, 100.0 * np.exp(-0.1 * t), rtol=1e-5)
        assert res.metadata["solver"] == "RK45"

    def test_unknown_solver(self):
        """Test unsupported methods are rejected."""
        with pytest.raises(ValueError):
            SolverSpec(alg="Euler")


class TestIntegrationErrors:
    """Tests for integration failure reporting."""

    def test_integrator_exception(self):
        """Test failures carry individual, segment and time."""
        def failing(fun, y0, times, args):
            if times[0] >= 12.0:
                raise ValueError("boom")
            return scipy_integrator()(fun, y0, times, args)

        reg = new_regimen(amt=100.0, interval=12.0, n=2, type="bolus")
        with pytest.raises(IntegrationError) as exc_info:
            sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=24.0, integrator=failing)

        err = exc_info.value
        assert err.individual == 1
        assert err.segment == 1
        assert err.time == 12.0
        assert "boom" in str(err)

    def test_non_finite_state(self):
        """Test non-finite integrator output is reported."""
        def nan_integrator(fun, y0, times, args):
            return np.full((len(times), len(y0)), np.nan)

        reg = new_regimen(amt=100.0, times=[0.0], type="bolus")
        with pytest.raises(IntegrationError, match="non-finite"):
            sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=4.0, integrator=nan_integrator)

    def test_math_domain_error(self):
        """Test math errors in the model become integration errors."""
        model = new_ode_model(code="dAdt[1] = log(A[1])")
        reg = new_regimen(amt=0.0, times=[0.0], type="bolus")

        with pytest.raises(IntegrationError) as exc_info:
            sim_ode(model, {}, regimen=reg, tmax=4.0)
        assert exc_info.value.segment == 0

    def test_unexpected_exception_gets_context(self):
        """Test any exception from the integrator carries the failing segment."""
        def failing(fun, y0, times, args):
            if times[0] >= 12.0:
                raise IndexError("bad index")
            return scipy_integrator()(fun, y0, times, args)

        reg = new_regimen(amt=100.0, interval=12.0, n=2, type="bolus")
        with pytest.raises(IntegrationError) as exc_info:
            sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=24.0, integrator=failing)

        err = exc_info.value
        assert (err.individual, err.segment, err.time) == (1, 1, 12.0)
        assert isinstance(err.__cause__, IndexError)
        assert "bad index" in str(err)

    def test_zero_observation_scale(self):
        """Test an observation scale of zero is reported instead of dividing by it."""
        model = new_ode_model(code="dAdt[1] = -K * A[1]", obs={"cmt": 1, "scale": "V"})
        reg = new_regimen(amt=100.0, times=[0.0], type="bolus")

        with pytest.raises(IntegrationError, match="zero"):
            sim_ode(model, {"K": 0.1, "V": 0.0}, regimen=reg, tmax=4.0)


# ============================================================================
# Metrics Tests
# ============================================================================

class TestMetrics:
    """Tests for PK metrics on simulation results."""

    def _result(self):
        reg = new_regimen(amt=100.0, times=[0.0], type="bolus")
        return sim_ode(_iv_model(), {"CL": 1.0, "V": 10.0}, regimen=reg, tmax=24.0, step_size=0.25)

    def test_cmax_tmax(self):
        """Test Cmax and Tmax for an IV bolus."""
        res = self._result()

        assert cmax(res) == pytest.approx(10.0)
        assert tmax(res) == 0.0

    def test_auc(self):
        """Test trapezoidal AUC against the analytic integral."""
        res = self._result()

        assert auc_trapezoid(res) == pytest.approx(100.0 * (1 - math.exp(-2.4)), rel=1e-3)

    def test_half_life(self):
        """Test half-life from CL and V."""
        assert half_life(cl=1.0, v=10.0) == pytest.approx(10.0 * math.log(2))
