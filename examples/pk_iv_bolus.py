#!/usr/bin/env python3
"""
Example: PK IV Bolus Simulation

This example demonstrates how to run a simple one-compartment
IV bolus PK simulation and compute exposure metrics.
"""

import pkpdsim

print("PKPDsim version:", pkpdsim.__version__)

model = pkpdsim.new_ode_model("pk_1cmt_iv")
print(model)

# Run a simple IV bolus simulation
result = pkpdsim.sim_ode(
    model,
    parameters={"CL": 1.0, "V": 10.0},
    regimen=pkpdsim.new_regimen(amt=100.0, times=[0.0], type="bolus"),
    step_size=1.0,
    tmax=24.0,
)

print("\nSimulation complete!")
print(f"Rows: {len(result)}")
print(f"Compartments: {result.compartments}")

# Compute metrics
print("\nPK Metrics:")
print(f"  Cmax: {pkpdsim.cmax(result):.4f}")
print(f"  AUC: {pkpdsim.auc_trapezoid(result):.4f}")
print(f"  Half-life: {pkpdsim.half_life(1.0, 10.0):.4f} hours")

# Show concentration profile
print("\nConcentration profile:")
for t, c in zip(*result.series("obs")):
    print(f"  t={t:5.1f}h: {c:.4f}")

print("\nExample completed successfully!")
