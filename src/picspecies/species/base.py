"""
Species Container Base Class

A species container owns the macro-particles of one species on the locally
owned boxes and implements every per-species operation the multi-species
coordinator sequences: field gather, momentum and position push, charge and
current deposition, redistribution and boosted-frame slicing.

Particles live on level 0. Operations called for a finer level find no
particles there and leave their fields untouched.

All deposition methods are additive: they never clear their target, which is
zeroed once per pass by the coordinator.
"""

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np

from ..constants import FIELD_GHOSTS, lorentz_factor
from ..diagnostics import select_particle_slice
from ..errors import CommunicationError, RedistributionError
from ..parallel import Communicator
from ..particles import PACKED_WIDTH, ParticleArray
from ..pic.mesh import FieldState, MultiField
from ..pic.mover import (
    apply_absorbing_bc,
    apply_periodic_bc,
    boris_push_relativistic,
    deposit_cic_1d,
    gather_cic_1d,
    push_positions,
)

logger = logging.getLogger(__name__)


class SpeciesKind(Enum):
    PHYSICAL = "physical"
    RIGID_INJECTED = "rigid_injected"
    LASER = "laser"


@dataclass(frozen=True)
class SpeciesDescriptor:
    """Identity of one registered species (immutable after startup)."""

    name: str
    kind: SpeciesKind
    index: int


class SpeciesContainer:
    """
    Per-species particle container.

    Subclasses set `kind` and override the operations whose semantics
    differ (see RigidInjectedSpecies and LaserSpecies).

    Attributes:
        grid: AmrGrid shared by all species
        index: Position in the species registry
        name: Species name
        params: Physical parameters (SpeciesParams or LaserParams)
        config: ParticlesConfig of the run
        comm: Communicator
        particles: ParticleArray holding the local particles
    """

    kind = SpeciesKind.PHYSICAL

    def __init__(self, grid, index, name, params, config, comm=None):
        self.grid = grid
        self.index = index
        self.name = name
        self.params = params
        self.config = config
        self.comm = comm if comm is not None else Communicator(None)
        self.particles = self._new_particle_array()
        # Particle ownership maps may diverge from the field grid after
        # load balancing (set_particle_box_array / set_particle_distribution_map)
        self._box_arrays = list(grid.box_arrays)
        self._dmaps = list(grid.dmaps)

    # ---------------- identity ----------------

    @property
    def descriptor(self):
        return SpeciesDescriptor(self.name, self.kind, self.index)

    @property
    def charge(self):
        return self.params.charge

    @property
    def mass(self):
        return self.params.mass

    @property
    def geom(self):
        return self.grid.geom(0)

    @property
    def axis(self):
        return self.geom.axis

    def particle_box_array(self, lev=0):
        return self._box_arrays[lev]

    def particle_distribution_map(self, lev=0):
        return self._dmaps[lev]

    def local_boxes(self, lev=0):
        return self._dmaps[lev].boxes_of(self.comm.rank)

    # ---------------- lifecycle ----------------

    def alloc_data(self):
        """Reset particle storage, reserving room for the initial injection."""
        self.particles = self._new_particle_array(self._expected_particles())

    def _new_particle_array(self, capacity=0):
        # Automatic ids interleave over (rank, registry index) so they are
        # unique across the whole run
        n_registry = max(self.config.nspecies + int(self.config.use_laser), self.index + 1)
        return ParticleArray(capacity, id_offset=self.comm.rank * n_registry + self.index,
                             id_stride=self.comm.size * n_registry)

    def _expected_particles(self):
        ppc = getattr(self.params, "particles_per_cell", 0)
        if getattr(self.params, "density", 0.0) <= 0.0:
            return 0
        ba = self._box_arrays[0]
        n_local_cells = sum(ba.box_size(b) for b in self.local_boxes())
        return n_local_cells * ppc

    def init_data(self):
        """
        Inject particles into the locally owned cells of the species slab.

        Each cell in [z_min, z_max) receives `particles_per_cell` particles
        at uniformly random positions, with momenta drawn around `u_mean`.
        The random stream depends only on (seed, species index, rank), so
        repeated runs are identical.
        """
        p = self.params
        if p.density <= 0.0:
            return
        geom = self.geom
        ba = self._box_arrays[0]
        rng = np.random.default_rng([p.seed, self.index, self.comm.rank])

        z_lo = geom.prob_lo if p.z_min is None else max(p.z_min, geom.prob_lo)
        z_hi = geom.prob_hi if p.z_max is None else min(p.z_max, geom.prob_hi)

        chunks = []
        for b in self.local_boxes():
            lo, hi = ba[b]
            cells = np.arange(lo, hi)
            centers = geom.cell_center(cells)
            cells = cells[(centers >= z_lo) & (centers < z_hi)]
            if cells.size == 0:
                continue
            cells = np.repeat(cells, p.particles_per_cell)
            chunks.append(geom.prob_lo + (cells + rng.random(cells.size)) * geom.dx)

        if not chunks:
            return
        z = np.concatenate(chunks)
        n = z.size
        x = np.zeros((n, 3))
        x[:, self.axis] = z
        u = np.asarray(p.u_mean) + np.asarray(p.u_th) * rng.standard_normal((n, 3))
        weight = p.density * geom.dx / p.particles_per_cell

        idx = self.particles.add_particles(x, u, weight)
        self.particles.box[idx] = ba.box_of_cells(geom.cell_index(z))
        logger.debug("%s: injected %d particles on rank %d", self.name, n, self.comm.rank)

    def post_restart(self):
        """Re-derive box ownership and previous positions after a restart."""
        p = self.particles
        n = p.n_particles
        p.x_old[:n] = p.x[:n]
        p.box[:n] = self._box_arrays[0].box_of_cells(self.geom.cell_index(p.x[:n, self.axis]))

    # ---------------- field gather ----------------

    def _gather(self, field, out):
        field.check_readable("gather")
        p = self.particles
        n = p.n_particles
        if n == 0:
            return
        z = np.ascontiguousarray(p.x[:n, self.axis])
        active = p.active[:n]
        geom = self.geom
        ba = field.box_array
        owner = ba.box_of_cells(geom.cell_index(z))
        for b in field.local_boxes:
            idx = np.flatnonzero(active & (owner == b))
            if idx.size == 0:
                continue
            lo, _ = ba[b]
            n_out = gather_cic_1d(z, idx, geom.prob_lo, geom.dx, lo, field.n_grow, field.fab(b), out)
            if n_out:
                raise RedistributionError(
                    f"{self.name}: {n_out} particle(s) outside the ghost region of box {b}"
                )

    def field_gather_es(self, E):
        """
        Gather the electric field of level 0 (E: list of per-level fields).

        A single-component field holds the component along the grid axis.
        """
        p = self.particles
        n = p.n_particles
        field = E[0]
        if field.n_comp == 1:
            e_axis = np.zeros((n, 1))
            self._gather(field, e_axis)
            p.E[:n] = 0.0
            p.E[:n, self.axis] = e_axis[:, 0]
        else:
            self._gather(field, p.E)
        p.B[:n] = 0.0

    def field_gather(self, lev, E, B):
        """Gather E and B (3-component fields of level lev)."""
        if lev != 0:
            return
        self._gather(E, self.particles.E)
        self._gather(B, self.particles.B)

    # ---------------- push ----------------

    def push_p(self, lev, dt, E, B):
        """Gather the fields of level lev and advance momenta by dt."""
        if lev != 0:
            return
        self.field_gather(lev, E, B)
        self._push_momenta(dt)

    def _push_momenta(self, dt):
        p = self.particles
        boris_push_relativistic(p.u, p.E, p.B, p.active, self.charge / self.mass, dt, p.n_particles)

    def push_x(self, dt):
        """Advance positions by dt (previous positions kept in x_old)."""
        p = self.particles
        push_positions(p.x, p.x_old, p.u, p.active, dt, p.n_particles)

    def push_x_es(self, dt):
        self.push_x(dt)

    # ---------------- deposition ----------------

    def _deposit(self, field, z, z_prev, values):
        """
        Add per-particle values into field around positions z.

        A particle deposits into the local box holding z, or, when z has left
        the local boxes, into the box it came from (z_prev); the overhang then
        lands in that box's ghost cells.
        """
        if field.state is FieldState.ABORTED:
            field.check_readable("deposit")
        geom = self.geom
        ba = field.box_array
        local = np.asarray(field.local_boxes, dtype=np.int64)
        owner = ba.box_of_cells(geom.cell_index(z))
        owner_prev = ba.box_of_cells(geom.cell_index(z_prev))
        box = np.where(np.isin(owner, local), owner,
                       np.where(np.isin(owner_prev, local), owner_prev, -1))

        active = self.particles.active[:z.size]
        stray = int(np.sum(active & (box < 0)))
        if stray:
            raise RedistributionError(
                f"{self.name}: {stray} particle(s) are not on a box owned by rank {self.comm.rank}"
            )
        for b in field.local_boxes:
            idx = np.flatnonzero(active & (box == b))
            if idx.size == 0:
                continue
            lo, _ = ba[b]
            n_out = deposit_cic_1d(z, values, idx, geom.prob_lo, geom.dx, lo, field.n_grow, field.fab(b))
            if n_out:
                raise RedistributionError(
                    f"{self.name}: {n_out} particle(s) moved beyond the ghost region of box {b}"
                )

    def deposit_charge_to(self, rho):
        """
        Add the local-only charge density of this species into rho.

        A particle pushed off the local boxes since the last redistribution
        deposits from the box it came from; the overhang lands in ghosts.
        """
        p = self.particles
        n = p.n_particles
        if n == 0:
            return
        z = np.ascontiguousarray(p.x[:n, self.axis])
        z_prev = np.ascontiguousarray(p.x_old[:n, self.axis])
        values = (self.charge * p.weight[:n] / self.geom.dx)[:, None]
        self._deposit(rho, z, z_prev, np.ascontiguousarray(values))

    def deposit_current_to(self, j):
        """Add the current density (3 components) of the last push into j."""
        p = self.particles
        n = p.n_particles
        if n == 0:
            return
        z = np.ascontiguousarray(0.5 * (p.x_old[:n, self.axis] + p.x[:n, self.axis]))
        z_prev = np.ascontiguousarray(p.x_old[:n, self.axis])
        v = p.u[:n] / lorentz_factor(p.u[:n])[:, None]
        values = self.charge * p.weight[:n, None] * v / self.geom.dx
        self._deposit(j, z, z_prev, np.ascontiguousarray(values))

    def deposit_charge(self, rho, local=False):
        """
        Add this species' charge density into rho (list of per-level fields).

        Never zeroes rho. Unless local, each level is boundary-reduced
        afterwards (collective).
        """
        self.deposit_charge_to(rho[0])
        if not local:
            for lev, field in enumerate(rho):
                field.sum_boundary(self.grid.geom(lev), self.comm)

    def get_charge_density(self, lev, local=False):
        """
        Charge density of this species on a fresh field of level lev.

        Returns:
            rho: MultiField with FIELD_GHOSTS ghost cells
        """
        rho = MultiField(self.grid.box_array(lev), self.grid.distribution_map(lev),
                         n_comp=1, n_grow=FIELD_GHOSTS, rank=self.comm.rank,
                         name=f"rho_{self.name}")
        if lev == 0:
            self.deposit_charge_to(rho)
        if not local:
            rho.sum_boundary(self.grid.geom(lev), self.comm)
        return rho

    def sum_particle_charge(self, local=False):
        """Total charge [C per unit transverse area] of the species."""
        total = self.charge * self.particles.total_weight()
        if not local:
            total = self.comm.allreduce_sum(total)
        return total

    # ---------------- time step ----------------

    def evolve(self, lev, E, B, j, rho=None, rho2=None, t=0.0, dt=0.0):
        """
        One electromagnetic step: gather, push and deposit (local-only).

        rho receives the charge density before the push, rho2 after it.
        """
        if lev != 0:
            return
        if rho is not None:
            self.deposit_charge_to(rho)
        self.push_p(lev, dt, E, B)
        self.push_x(dt)
        self.deposit_current_to(j)
        if rho2 is not None:
            self.deposit_charge_to(rho2)

    def evolve_es(self, E, rho, t=0.0, dt=0.0):
        """One electrostatic step: gather E, push, deposit charge into rho[0]."""
        self.field_gather_es(E)
        self._push_momenta(dt)
        self.push_x_es(dt)
        self.deposit_charge_to(rho[0])

    # ---------------- redistribution ----------------

    def _apply_boundaries(self):
        p = self.particles
        geom = self.geom
        if geom.is_periodic:
            apply_periodic_bc(p.x, p.x_old, p.active, self.axis, geom.prob_lo, geom.prob_hi, p.n_particles)
            return 0
        return apply_absorbing_bc(p.x, p.active, self.axis, geom.prob_lo, geom.prob_hi, p.n_particles)

    def redistribute(self, lev_min=0, lev_max=-1, n_grow=0, local=0):
        """
        Move particles to the box (and rank) owning their position.

        Collective over the communicator.

        Args:
            lev_min: Coarsest level to redistribute
            lev_max: Finest level to redistribute (-1: finest)
            n_grow: Particles within n_grow cells of their current box stay
            local: If > 0, particles may only have moved `local` cells away
                from their previous box

        Raises:
            RedistributionError: A particle moved farther than `local` cells
        """
        if lev_min > 0:
            return
        p = self.particles
        geom = self.geom
        ba = self._box_arrays[0]
        dm = self._dmaps[0]
        n = p.n_particles

        if local > 0 and n:
            self._check_local_reach(local)

        n_absorbed = self._apply_boundaries()

        z = p.x[:n, self.axis]
        cells = geom.cell_index(z)
        new_box = ba.box_of_cells(cells)
        if n_grow > 0:
            old_box = p.box[:n]
            has_box = old_box >= 0
            safe_old = np.where(has_box, old_box, 0)
            near = has_box & (cells >= ba.starts[safe_old] - n_grow) & (cells < ba.ends[safe_old] + n_grow)
            new_box = np.where(near, old_box, new_box)
        # Absorbed particles are the only ones left without a box
        p.active[:n] &= new_box >= 0
        active = p.active[:n]
        p.box[:n] = new_box

        dest = np.where(active, dm.ranks[np.maximum(new_box, 0)], self.comm.rank)
        if dest.size and dest.max() >= self.comm.size:
            raise CommunicationError(
                f"{self.name}: box owned by rank {int(dest.max())} "
                f"but communicator has {self.comm.size} rank(s)"
            )
        leaving = active & (dest != self.comm.rank)
        sendbufs = []
        for r in range(self.comm.size):
            sendbufs.append(p.pack(leaving & (dest == r)))
        received = self.comm.alltoallv_float64(sendbufs, PACKED_WIDTH)

        p.active[:n][leaving] = False
        p.remove_inactive()
        if received.shape[0]:
            idx = p.append_packed(received)
            p.box[idx] = ba.box_of_cells(geom.cell_index(p.x[idx, self.axis]))

        logger.debug("%s: redistributed (sent %d, received %d, absorbed %d)",
                     self.name, int(np.sum(leaving)), received.shape[0], n_absorbed)

    def _check_local_reach(self, num_ghost):
        p = self.particles
        n = p.n_particles
        ba = self._box_arrays[0]
        old_box = p.box[:n]
        tracked = p.active[:n] & (old_box >= 0)
        if not np.any(tracked):
            return
        cells = self.geom.cell_index(p.x[:n, self.axis])[tracked]
        ob = old_box[tracked]
        too_far = (cells < ba.starts[ob] - num_ghost) | (cells >= ba.ends[ob] + num_ghost)
        n_bad = int(np.sum(too_far))
        if n_bad:
            raise RedistributionError(
                f"{self.name}: {n_bad} particle(s) moved more than {num_ghost} "
                f"cell(s) away from their box during local redistribution"
            )

    # ---------------- grid bookkeeping ----------------

    def number_of_particles_in_grid(self, lev, only_valid=True, only_local=True):
        """
        Particle count per box of level lev.

        Args:
            lev: Level
            only_valid: Count only particles inside their box's interior
            only_local: Skip the cross-rank reduction

        Returns:
            counts: int64 array of length n_boxes
        """
        ba = self._box_arrays[lev]
        counts = np.zeros(len(ba), dtype=np.int64)
        p = self.particles
        n = p.n_particles
        if lev == 0 and n:
            sel = p.active[:n] & (p.box[:n] >= 0)
            boxes = p.box[:n][sel]
            if only_valid:
                cells = self.geom.cell_index(p.x[:n, self.axis])[sel]
                inside = (cells >= ba.starts[boxes]) & (cells < ba.ends[boxes])
                boxes = boxes[inside]
            counts += np.bincount(boxes, minlength=len(ba)).astype(np.int64)
        if not only_local:
            counts = self.comm.reduce_long_sum(counts)
        return counts

    def increment(self, mf, lev):
        """Add the number of particles in each cell into mf (component 0)."""
        if lev != 0:
            return
        p = self.particles
        n = p.n_particles
        if n == 0:
            return
        ba = mf.box_array
        cells = self.geom.cell_index(p.x[:n, self.axis])
        owner = ba.box_of_cells(cells)
        active = p.active[:n]
        for b in mf.local_boxes:
            sel = active & (owner == b)
            if np.any(sel):
                np.add.at(mf.valid(b)[0], cells[sel] - ba.starts[b], 1.0)

    def set_particle_box_array(self, lev, ba):
        self._box_arrays[lev] = ba

    def set_particle_distribution_map(self, lev, dm):
        self._dmaps[lev] = dm

    # ---------------- diagnostics ----------------

    def get_particle_slice(self, direction, z_old, z_new, t_boost, dt):
        """
        Particles that crossed the lab-frame slice during the last step.

        Returns:
            slices: dict {box index: DiagnosticParticles} in the lab frame
        """
        return select_particle_slice(
            self.particles, direction, z_old, z_new, t_boost, dt,
            self.config.gamma_boost,
        )

    def __len__(self):
        return self.particles.num_active()

    def __repr__(self):
        return (f"{type(self).__name__}(name={self.name!r}, index={self.index}, "
                f"n_particles={len(self)})")
