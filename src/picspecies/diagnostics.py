"""
Diagnostic utilities for multi-species PIC runs.

This module provides:
- Boosted-frame slicing: select the particles that crossed a lab-frame
  snapshot plane during the last step and transform them to the lab frame
- Lab-frame snapshot accumulation and export (.npz)
- Particle count and charge tracking over time (CSV export, plots)
"""

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from .constants import beta_from_gamma, c, lorentz_factor

logger = logging.getLogger(__name__)


# ==================== SLICE DATA ====================


@dataclass
class DiagnosticParticles:
    """
    Read-only copy of particles selected for a lab-frame snapshot.

    Attributes:
        x: Lab-frame positions (k, 3) [m]
        u: Lab-frame momenta per unit mass (k, 3) [m/s]
        t: Lab-frame crossing times (k,) [s]
        weight: Particle weights (k,)
        ids: Particle identifiers (k,)
    """

    x: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    u: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    t: np.ndarray = field(default_factory=lambda: np.zeros(0))
    weight: np.ndarray = field(default_factory=lambda: np.zeros(0))
    ids: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))

    def num_particles(self) -> int:
        return int(self.weight.size)

    @classmethod
    def concatenate(cls, parts: List["DiagnosticParticles"]) -> "DiagnosticParticles":
        if not parts:
            return cls()
        return cls(
            x=np.concatenate([p.x for p in parts]),
            u=np.concatenate([p.u for p in parts]),
            t=np.concatenate([p.t for p in parts]),
            weight=np.concatenate([p.weight for p in parts]),
            ids=np.concatenate([p.ids for p in parts]),
        )


# ==================== BOOSTED-FRAME SLICING ====================


def lorentz_to_lab(x, u, t, gamma_boost, direction=2):
    """
    Transform positions, momenta and times from the boosted frame to the lab.

    The boosted frame moves with beta_boost along +direction:
        t_lab = gamma * (t + beta * z / c)
        z_lab = gamma * (z + beta * c * t)
        uz_lab = gamma * (uz + beta * c * gamma_p)

    Args:
        x: Positions (k, 3) [m]
        u: Momenta per unit mass (k, 3) [m/s]
        t: Times (k,) [s]
        gamma_boost: Lorentz factor of the boosted frame
        direction: Boost axis

    Returns:
        x_lab, u_lab, t_lab: Transformed copies
    """
    x_lab = np.array(x, dtype=np.float64, copy=True)
    u_lab = np.array(u, dtype=np.float64, copy=True)
    t = np.asarray(t, dtype=np.float64)
    if gamma_boost == 1.0:
        return x_lab, u_lab, t.copy()

    beta = beta_from_gamma(gamma_boost)
    z = x_lab[:, direction]
    gamma_p = lorentz_factor(u_lab)

    t_lab = gamma_boost * (t + beta * z / c)
    x_lab[:, direction] = gamma_boost * (z + beta * c * t)
    u_lab[:, direction] = gamma_boost * (u_lab[:, direction] + beta * c * gamma_p)
    return x_lab, u_lab, t_lab


def select_particle_slice(particles, direction, z_old, z_new, t_boost, dt, gamma_boost):
    """
    Particles whose trajectory crossed the moving snapshot plane last step.

    The plane moved from z_old to z_new while the particles moved from x_old
    to x. The crossing test is half-open (d_old strictly on one side, d_new
    on the other side or exactly on the plane), so a particle sitting on the
    plane at the end of a step is selected by that step and not by the next.

    Selected particles are interpolated to the crossing fraction and
    transformed to the lab frame.

    Args:
        particles: ParticleArray
        direction: Axis of the boost
        z_old, z_new: Plane position at the start and end of the step [m]
        t_boost: Boosted-frame time at the end of the step [s]
        dt: Boosted-frame timestep [s]
        gamma_boost: Lorentz factor of the boosted frame

    Returns:
        slices: {box index: DiagnosticParticles}, ordered by box
    """
    n = particles.n_particles
    if n == 0:
        return {}

    x_old = particles.x_old[:n]
    x_new = particles.x[:n]
    d_old = x_old[:, direction] - z_old
    d_new = x_new[:, direction] - z_new
    crossed = particles.active[:n] & (
        ((d_old < 0.0) & (d_new >= 0.0)) | ((d_old > 0.0) & (d_new <= 0.0))
    )
    sel = np.flatnonzero(crossed)
    if sel.size == 0:
        return {}

    frac = d_old[sel] / (d_old[sel] - d_new[sel])
    x_cross = x_old[sel] + frac[:, None] * (x_new[sel] - x_old[sel])
    t_cross = t_boost - dt + frac * dt
    x_lab, u_lab, t_lab = lorentz_to_lab(x_cross, particles.u[sel], t_cross,
                                         gamma_boost, direction)

    boxes = particles.box[sel]
    slices = {}
    for b in np.unique(boxes):
        in_box = boxes == b
        slices[int(b)] = DiagnosticParticles(
            x=x_lab[in_box],
            u=u_lab[in_box],
            t=t_lab[in_box],
            weight=particles.weight[sel][in_box].copy(),
            ids=particles.ids[sel][in_box].copy(),
        )
    return slices


def count_selected(slices: Dict[int, DiagnosticParticles]) -> int:
    """Total number of particles in a slice map."""
    return sum(s.num_particles() for s in slices.values())


# ==================== LAB-FRAME SNAPSHOTS ====================


class LabFrameSnapshot:
    """
    Collects the slices of successive boosted-frame steps for one snapshot.

    Usage:
        snap = LabFrameSnapshot("lab_frame_00000", t_lab=0.0)
        for step in range(n_steps):
            # ... advance, move the plane from z_old to z_new ...
            snap.add_slices(mpc.get_lab_frame_data(...))
        snap.flush("diags/")
    """

    def __init__(self, name: str, t_lab: float = 0.0):
        self.name = name
        self.t_lab = t_lab
        self._parts: Dict[str, List[DiagnosticParticles]] = {}

    def add(self, species_name: str, slices: Dict[int, DiagnosticParticles]):
        parts = self._parts.setdefault(species_name, [])
        parts.extend(slices[b] for b in sorted(slices))

    def add_slices(self, per_species: Dict[str, Dict[int, DiagnosticParticles]]):
        for name, slices in per_species.items():
            self.add(name, slices)

    @property
    def species_names(self) -> List[str]:
        return list(self._parts)

    def particles(self, species_name: str) -> DiagnosticParticles:
        return DiagnosticParticles.concatenate(self._parts.get(species_name, []))

    def num_particles(self, species_name: Optional[str] = None) -> int:
        names = self._parts if species_name is None else [species_name]
        return sum(p.num_particles() for name in names for p in self._parts.get(name, []))

    def flush(self, output_dir) -> Path:
        """
        Write all species to <output_dir>/<name>.npz and clear the buffers.

        Keys are "<species>_<field>" with field in x, u, t, weight, ids.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / f"{self.name}.npz"

        arrays = {"t_lab": np.array(self.t_lab)}
        for name in self._parts:
            data = self.particles(name)
            arrays[f"{name}_x"] = data.x
            arrays[f"{name}_u"] = data.u
            arrays[f"{name}_t"] = data.t
            arrays[f"{name}_weight"] = data.weight
            arrays[f"{name}_ids"] = data.ids
        np.savez(path, **arrays)
        logger.info("Lab-frame snapshot %s: %d particles written to %s",
                    self.name, self.num_particles(), path)
        self._parts.clear()
        return path


# ==================== TIME-SERIES TRACKING ====================


class ParticleCountTracker:
    """
    Tracks per-species particle counts and total charge over time.

    Usage:
        tracker = ParticleCountTracker(mpc.species_names, n_steps=1000, output_interval=10)
        for step in range(n_steps):
            # ... simulation step ...
            if step % output_interval == 0:
                tracker.record(step, time, mpc)
        tracker.save_csv('counts.csv')
        tracker.plot()

    record() calls collective reductions: every rank must call it.
    """

    def __init__(self, species_names: List[str], n_steps: int, output_interval: int):
        """
        Initialize tracker.

        Args:
            species_names: Names of the tracked species, in registry order
            n_steps: Total number of simulation steps
            output_interval: Record every N steps
        """
        self.species_names = list(species_names)
        self.n_outputs = n_steps // output_interval + 1
        self.output_idx = 0

        self.time = np.zeros(self.n_outputs)
        self.step = np.zeros(self.n_outputs, dtype=np.int64)
        self.counts = np.zeros((self.n_outputs, len(self.species_names)), dtype=np.int64)
        self.total_charge = np.zeros(self.n_outputs)

    def record(self, step: int, time: float, mpc):
        """
        Record counts and charge of a MultiSpeciesContainer.

        Args:
            step: Current simulation step
            time: Current simulation time [s]
            mpc: MultiSpeciesContainer
        """
        if self.output_idx >= self.n_outputs:
            return
        idx = self.output_idx
        self.time[idx] = time
        self.step[idx] = step
        self.counts[idx] = mpc.number_of_particles_per_species()
        self.total_charge[idx] = mpc.sum_particle_charge()
        self.output_idx += 1

    def save_csv(self, filename: str):
        """
        Save tracked data to CSV file.

        Args:
            filename: Output CSV filename
        """
        with open(filename, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(['step', 'time_fs'] + [f'n_{name}' for name in self.species_names]
                            + ['total_charge_C'])
            for i in range(self.output_idx):
                writer.writerow([self.step[i], self.time[i] * 1e15]
                                + self.counts[i].tolist() + [self.total_charge[i]])

        logger.info("Particle counts saved to %s", filename)

    def plot(self, show=True, save_filename=None):
        """
        Plot particle counts and total charge versus time.

        Args:
            show: Display plots interactively
            save_filename: Save figure to file (optional)
        """
        import matplotlib.pyplot as plt

        fig, axes = plt.subplots(1, 2, figsize=(12, 5))
        time_fs = self.time[:self.output_idx] * 1e15

        ax = axes[0]
        for k, name in enumerate(self.species_names):
            ax.plot(time_fs, self.counts[:self.output_idx, k], linewidth=2, label=name)
        ax.set_xlabel('Time (fs)', fontsize=12)
        ax.set_ylabel('Macro-particles', fontsize=12)
        ax.set_title('Particle Population', fontsize=14, fontweight='bold')
        ax.legend(fontsize=10)
        ax.grid(True, alpha=0.3)

        ax = axes[1]
        ax.plot(time_fs, self.total_charge[:self.output_idx], 'k-', linewidth=2)
        ax.set_xlabel('Time (fs)', fontsize=12)
        ax.set_ylabel('Total charge (C/m²)', fontsize=12)
        ax.set_title('Charge Conservation', fontsize=14, fontweight='bold')
        ax.grid(True, alpha=0.3)

        plt.tight_layout()
        if save_filename:
            plt.savefig(save_filename, dpi=150, bbox_inches='tight')
            logger.info("Plot saved to %s", save_filename)
        if show:
            plt.show()
        return fig

    def summary(self) -> str:
        if self.output_idx == 0:
            return "No diagnostics recorded"
        last = self.output_idx - 1
        lines = [f"Diagnostics at step {self.step[last]} (t = {self.time[last] * 1e15:.2f} fs):"]
        for k, name in enumerate(self.species_names):
            lines.append(f"  {name}: {self.counts[last, k]} particles")
        lines.append(f"  total charge: {self.total_charge[last]:.4e} C/m^2")
        return "\n".join(lines)
