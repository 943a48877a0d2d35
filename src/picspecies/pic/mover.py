"""
PIC Particle Kernels: CIC Weighting and Relativistic Boris Push

Implements:
- Cloud-In-Cell (CIC) deposition of arbitrary per-particle quantities into a
  ghost-padded box array
- CIC field interpolation (box array -> particles)
- Relativistic Boris push for u = gamma*v
- Position push that remembers the previous position
- Boundary conditions (absorbing, periodic) along the grid axis

All deposition kernels are additive: they never clear their target, so several
species can accumulate into the same array before the boundary reduction.

Reference:
    Birdsall & Langdon (2004), "Plasma Physics via Computer Simulation"
    Chapter 4: The Electrostatic Program
"""

import numpy as np
import numba

from ..constants import c


# ==================== CIC WEIGHTING ====================


@numba.njit
def cic_stencil(z, prob_lo, dx):
    """
    Left cell and right-cell weight of the CIC stencil for a cell-centred grid.

    Weight function:
        s = (z - prob_lo) / dx - 0.5
        i0 = floor(s)
        W(i0) = 1 - (s - i0),  W(i0 + 1) = s - i0

    Args:
        z: Particle position along the grid axis [m]
        prob_lo: Lower domain edge [m]
        dx: Cell spacing [m]

    Returns:
        i0: Global index of the left cell (may be -1 or n_cell - 1)
        w1: Weight of the right cell (weight of i0 is 1 - w1)
    """
    s = (z - prob_lo) / dx - 0.5
    i0 = int(np.floor(s))
    return i0, s - i0


@numba.njit
def deposit_cic_1d(z, values, idx, prob_lo, dx, lo, n_grow, fab):
    """
    Add per-particle values into a ghost-padded box array with CIC weights.

    Args:
        z: Particle positions along the grid axis [n_particles] [m]
        values: Quantity carried by each particle [n_particles, n_comp]
            (already divided by the cell volume)
        idx: Indices of the particles to deposit
        prob_lo: Lower domain edge [m]
        dx: Cell spacing [m]
        lo: First global cell of the box
        n_grow: Ghost cells on each side of the box
        fab: Box array [n_comp, n_box + 2*n_grow] (modified in-place)

    Returns:
        n_outside: Number of particles whose stencil did not fit in the box
            array (those are not deposited)
    """
    n_comp = fab.shape[0]
    width = fab.shape[1]
    n_outside = 0

    for k in range(idx.shape[0]):
        i = idx[k]
        i0, w1 = cic_stencil(z[i], prob_lo, dx)
        col = i0 - lo + n_grow
        if col < 0 or col + 1 >= width:
            n_outside += 1
            continue
        w0 = 1.0 - w1
        for m in range(n_comp):
            fab[m, col] += w0 * values[i, m]
            fab[m, col + 1] += w1 * values[i, m]

    return n_outside


# ==================== FIELD INTERPOLATION ====================


@numba.njit
def gather_cic_1d(z, idx, prob_lo, dx, lo, n_grow, fab, out):
    """
    Interpolate a box array to particle positions with CIC weights.

    Uses the same stencil as deposition (momentum conserving pair).

    Args:
        z: Particle positions along the grid axis [n_particles] [m]
        idx: Indices of the particles to gather for
        prob_lo: Lower domain edge [m]
        dx: Cell spacing [m]
        lo: First global cell of the box
        n_grow: Ghost cells on each side of the box
        fab: Box array [n_comp, n_box + 2*n_grow]
        out: Field at particles [n_particles, n_comp] (rows in idx overwritten)

    Returns:
        n_outside: Number of particles whose stencil did not fit (set to 0)
    """
    n_comp = fab.shape[0]
    width = fab.shape[1]
    n_outside = 0

    for k in range(idx.shape[0]):
        i = idx[k]
        i0, w1 = cic_stencil(z[i], prob_lo, dx)
        col = i0 - lo + n_grow
        if col < 0 or col + 1 >= width:
            n_outside += 1
            for m in range(n_comp):
                out[i, m] = 0.0
            continue
        w0 = 1.0 - w1
        for m in range(n_comp):
            out[i, m] = w0 * fab[m, col] + w1 * fab[m, col + 1]

    return n_outside


# ==================== BORIS PARTICLE PUSHER ====================


@numba.njit
def boris_push_relativistic(u, E, B, active, q_over_m, dt, n_particles):
    """
    Relativistic Boris momentum push (u = gamma*v).

    Sequence:
        u- = u + (q/m) E dt/2
        rotate u- around B with gamma(u-)
        u  = u+ + (q/m) E dt/2

    Args:
        u: Momenta per unit mass [n_particles, 3] [m/s] (modified in-place)
        E: Electric field at particles [n_particles, 3] [V/m]
        B: Magnetic field at particles [n_particles, 3] [T]
        active: Particle active flags [n_particles]
        q_over_m: Charge-to-mass ratio [C/kg]
        dt: Timestep [s]
        n_particles: Number of particles

    Reference:
        Birdsall & Langdon, Section 15.4
    """
    qmdt2 = 0.5 * q_over_m * dt
    inv_c2 = 1.0 / (c * c)

    for i in range(n_particles):
        if not active[i]:
            continue

        # Half electric kick
        um0 = u[i, 0] + qmdt2 * E[i, 0]
        um1 = u[i, 1] + qmdt2 * E[i, 1]
        um2 = u[i, 2] + qmdt2 * E[i, 2]

        gamma = np.sqrt(1.0 + (um0 * um0 + um1 * um1 + um2 * um2) * inv_c2)

        # Magnetic rotation
        t0 = qmdt2 * B[i, 0] / gamma
        t1 = qmdt2 * B[i, 1] / gamma
        t2 = qmdt2 * B[i, 2] / gamma
        f = 2.0 / (1.0 + t0 * t0 + t1 * t1 + t2 * t2)

        up0 = um0 + (um1 * t2 - um2 * t1)
        up1 = um1 + (um2 * t0 - um0 * t2)
        up2 = um2 + (um0 * t1 - um1 * t0)

        um0 += f * (up1 * t2 - up2 * t1)
        um1 += f * (up2 * t0 - up0 * t2)
        um2 += f * (up0 * t1 - up1 * t0)

        # Second half electric kick
        u[i, 0] = um0 + qmdt2 * E[i, 0]
        u[i, 1] = um1 + qmdt2 * E[i, 1]
        u[i, 2] = um2 + qmdt2 * E[i, 2]


@numba.njit
def push_positions(x, x_old, u, active, dt, n_particles):
    """
    Advance positions by v*dt, storing the previous position in x_old.

    Args:
        x: Particle positions [n_particles, 3] [m] (modified in-place)
        x_old: Previous positions [n_particles, 3] [m] (overwritten)
        u: Momenta per unit mass [n_particles, 3] [m/s]
        active: Particle active flags [n_particles]
        dt: Timestep [s]
        n_particles: Number of particles
    """
    inv_c2 = 1.0 / (c * c)

    for i in range(n_particles):
        if not active[i]:
            continue
        gamma = np.sqrt(1.0 + (u[i, 0] ** 2 + u[i, 1] ** 2 + u[i, 2] ** 2) * inv_c2)
        for k in range(3):
            x_old[i, k] = x[i, k]
            x[i, k] += u[i, k] / gamma * dt


# ==================== BOUNDARY CONDITIONS ====================


@numba.njit
def apply_absorbing_bc(x, active, axis, x_min, x_max, n_particles):
    """
    Deactivate particles outside [x_min, x_max) along `axis`.

    Returns:
        n_absorbed: Number of particles absorbed
    """
    n_absorbed = 0

    for i in range(n_particles):
        if not active[i]:
            continue
        x_p = x[i, axis]
        if x_p < x_min or x_p >= x_max:
            active[i] = False
            n_absorbed += 1

    return n_absorbed


@numba.njit
def apply_periodic_bc(x, x_old, active, axis, x_min, x_max, n_particles):
    """
    Wrap particles back into [x_min, x_max) along `axis`.

    x_old is shifted by the same amount so the last displacement is kept.

    Returns:
        n_wrapped: Number of particles moved by a period
    """
    L = x_max - x_min
    n_wrapped = 0

    for i in range(n_particles):
        if not active[i]:
            continue
        x_p = x[i, axis]
        if x_min <= x_p < x_max:
            continue
        shift = np.floor((x_p - x_min) / L) * L
        x[i, axis] = x_p - shift
        x_old[i, axis] -= shift
        # Rounding can land exactly on x_max
        if x[i, axis] >= x_max:
            x[i, axis] = x_min
        n_wrapped += 1

    return n_wrapped
