"""
Example 01: Two-Species Electrostatic Plasma Oscillation

Demonstrates:
- Building a multi-species container from a particles configuration
- Electrostatic steps: gather E -> push -> deposit rho (reduced once)
- Local redistribution after every step
- Particle count and charge tracking

Physics:
    Electrons drift against a cold ion background in a periodic box
    -> Charge separation builds a restoring field
    -> Electron current oscillates at the plasma frequency
    -> Total charge stays constant (periodic, no absorption)
"""

import os
import sys

import numpy as np

# Add src directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from picspecies.constants import e, eps0, m_e, m_p
from picspecies.diagnostics import ParticleCountTracker
from picspecies.multi_species import MultiSpeciesContainer
from picspecies.pic.mesh import create_test_grid

# ==================== SIMULATION PARAMETERS ====================

# Domain
L = 1.0e-3  # 1 mm periodic box [m]
n_cells = 64
max_grid_size = 16

# Plasma
density = 1.0e20  # [m^-3]
u_drift = 1.0e5  # Electron drift [m/s]

# Time integration
omega_p = np.sqrt(density * e**2 / (eps0 * m_e))
dt = 0.05 / omega_p
n_steps = 400
output_interval = 10

params = {
    "nspecies": 2,
    "species_names": "electrons ions",
    "species": {
        "electrons": {
            "charge": -e, "mass": m_e, "density": density, "particles_per_cell": 20,
            "u_mean": (0.0, 0.0, u_drift), "u_th": (1.0e4, 1.0e4, 1.0e4), "seed": 1,
        },
        "ions": {
            "charge": e, "mass": m_p, "density": density, "particles_per_cell": 20, "seed": 2,
        },
    },
}

# ==================== SETUP ====================

print("=" * 60)
print("Two-Species Plasma Oscillation")
print("=" * 60)
print(f"  Domain: {L*1e3:.1f} mm ({n_cells} cells in boxes of {max_grid_size})")
print(f"  Density: {density:.1e} m^-3, omega_p = {omega_p:.3e} rad/s")
print(f"  Timestep: {dt*1e15:.2f} fs, {n_steps} steps")
print()

grid = create_test_grid(n_cell=n_cells, max_grid_size=max_grid_size, length=L, is_periodic=True)
geom = grid.geom(0)

mpc = MultiSpeciesContainer(params, grid)
mpc.alloc_data()
mpc.init_data()
print(f"  {mpc}")

E = [grid.make_field(0, n_comp=1, n_grow=2, name="Ez")]
rho = [grid.make_field(0, n_comp=1, n_grow=2, name="rho")]


def solve_gauss(rho_field, E_field):
    """Periodic 1D Gauss law: dE/dz = rho / eps0, zero-mean E."""
    rho_global = rho_field.to_global()[0]
    E_global = (np.cumsum(rho_global) - 0.5 * rho_global) * geom.dx / eps0
    E_global -= np.mean(E_global)
    for b in E_field.local_boxes:
        lo, hi = E_field.box_array[b]
        E_field.valid(b)[0] = E_global[lo:hi]
    E_field.fill_boundary(geom)


def electron_current(mpc):
    p = mpc["electrons"].particles
    n = p.n_particles
    return -e * np.sum(p.weight[:n] * p.u[:n, 2]) / L


tracker = ParticleCountTracker(mpc.species_names, n_steps, output_interval)
current = np.zeros(n_steps + 1)

# ==================== TIME LOOP ====================

mpc.deposit_charge(rho)
solve_gauss(rho[0], E[0])

for step in range(n_steps + 1):
    t = step * dt
    current[step] = electron_current(mpc)
    if step % output_interval == 0:
        tracker.record(step, t, mpc)
    if step == n_steps:
        break

    mpc.evolve_es(E, rho, t=t, dt=dt)
    mpc.redistribute_local()
    solve_gauss(rho[0], E[0])

    if step % 100 == 0:
        print(f"  Step {step}/{n_steps}: j_e = {current[step]:.3e} A/m^2")

# ==================== VALIDATION ====================

print()
print(tracker.summary())
print()

# Oscillation period from zero crossings of the current
crossings = np.flatnonzero(np.diff(np.sign(current)) != 0)
if crossings.size >= 3:
    period = 2.0 * np.mean(np.diff(crossings)) * dt
    print(f"  Measured period: {period*1e15:.2f} fs "
          f"(expected {2*np.pi/omega_p*1e15:.2f} fs)")
else:
    print("  [WARN] Not enough oscillations to measure the period")

charge_drift = abs(tracker.total_charge[tracker.output_idx - 1] - tracker.total_charge[0])
if charge_drift <= 1e-9 * abs(mpc["electrons"].sum_particle_charge()):
    print("  [PASS] Total charge conserved")
else:
    print(f"  [FAIL] Total charge drifted by {charge_drift:.3e} C/m^2")

tracker.save_csv("two_species_counts.csv")
tracker.plot(show=False, save_filename="two_species_counts.png")
