"""
Multi-Species Container

Owns every species of a run and sequences their per-step passes over the
shared fields:
- builds the species registry from a validated ParticlesConfig
- runs gather and push passes over all species (optionally on threads)
- runs deposition passes as zero -> accumulate all species -> reduce once
- redistributes particles after they moved
- extracts boosted-frame diagnostic slices

Species are visited in registry order: declared species first, then the
laser antenna if enabled. Errors raised by a species propagate unchanged;
passes are not rolled back.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from .config import LASER_SPECIES_NAME, ParticlesConfig, read_parameters
from .constants import (
    FIELD_GHOSTS,
    LOCAL_REDISTRIBUTE_GHOSTS,
    MOVING_WINDOW_REDISTRIBUTE_GHOSTS,
    NSTENCILZ_FDTD_NCI_CORR,
)
from .deposition import DepositionSession
from .diagnostics import count_selected
from .parallel import Communicator
from .pic.mesh import MultiField
from .species import SPECIES_CLASSES, LaserSpecies, SpeciesKind

logger = logging.getLogger(__name__)


class MultiSpeciesContainer:
    """
    Registry and pass sequencer for all species of a simulation.

    Usage:
        config = read_parameters({"nspecies": 2, "species_names": "electrons ions", ...})
        mpc = MultiSpeciesContainer(config, grid, comm)
        mpc.alloc_data()
        mpc.init_data()
        for step in range(n_steps):
            mpc.evolve(0, E, B, j, rho, t=t, dt=dt)
            mpc.redistribute()

    Attributes:
        config: ParticlesConfig of the run
        grid: AmrGrid shared by all species
        comm: Communicator
        species: Species containers in registry order
        nstencilz_fdtd_nci_corr: Stencil length of the FDTD Cherenkov corrector
    """

    nstencilz_fdtd_nci_corr = NSTENCILZ_FDTD_NCI_CORR

    def __init__(self, config, grid, comm=None):
        if not isinstance(config, ParticlesConfig):
            config = read_parameters(config)
        self.config = config
        self.grid = grid
        self.comm = comm if comm is not None else Communicator(None)
        self.species = []

        rigid = set(config.rigid_injected_species)
        for i, name in enumerate(config.species_names):
            kind = SpeciesKind.RIGID_INJECTED if name in rigid else SpeciesKind.PHYSICAL
            cls = SPECIES_CLASSES[kind]
            self.species.append(cls(grid, i, name, config.params_for(name), config, self.comm))

        if config.use_laser:
            self.species.append(LaserSpecies(grid, len(self.species), LASER_SPECIES_NAME,
                                             config.laser, config, self.comm))

        logger.info("Registered %d species: %s", len(self.species),
                    ", ".join(f"{d.name} ({d.kind.value})" for d in self.descriptors))

    # ---------------- registry ----------------

    @property
    def nspecies(self):
        """Number of declared species (the laser antenna is not counted)."""
        return self.config.nspecies

    @property
    def descriptors(self):
        return [s.descriptor for s in self.species]

    @property
    def species_names(self):
        return [s.name for s in self.species]

    @property
    def use_fdtd_nci_corr(self):
        return self.config.use_fdtd_nci_corr

    @property
    def l_lower_order_in_v(self):
        return self.config.l_lower_order_in_v

    def get_species(self, name):
        for s in self.species:
            if s.name == name:
                return s
        raise KeyError(f"No species named '{name}'")

    def __getitem__(self, index):
        if isinstance(index, str):
            return self.get_species(index)
        return self.species[index]

    def __len__(self):
        return len(self.species)

    def __iter__(self):
        return iter(self.species)

    # ---------------- lifecycle ----------------

    def alloc_data(self):
        for s in self.species:
            s.alloc_data()

    def init_data(self):
        for s in self.species:
            s.init_data()

    def post_restart(self):
        for s in self.species:
            s.post_restart()

    # ---------------- gather / push ----------------

    def _for_each(self, fn):
        """Apply fn to every species; on threads when n_workers > 1."""
        n_workers = self.config.n_workers
        if n_workers <= 1 or len(self.species) <= 1:
            for s in self.species:
                fn(s)
            return
        with ThreadPoolExecutor(max_workers=n_workers) as ex:
            futures = [ex.submit(fn, s) for s in self.species]
            for fut in futures:
                fut.result()

    def field_gather_es(self, E):
        self._for_each(lambda s: s.field_gather_es(E))

    def field_gather(self, lev, E, B):
        self._for_each(lambda s: s.field_gather(lev, E, B))

    def push_x_es(self, dt):
        self._for_each(lambda s: s.push_x_es(dt))

    def push_x(self, dt):
        self._for_each(lambda s: s.push_x(dt))

    def push_p(self, lev, dt, E, B):
        self._for_each(lambda s: s.push_p(lev, dt, E, B))

    # ---------------- time step ----------------

    def evolve(self, lev, E, B, j, rho=None, rho2=None, t=0.0, dt=0.0, local=False):
        """
        Advance all species by one electromagnetic step on level lev.

        j (and rho, rho2 when given) are zeroed including ghost cells even if
        no species deposits, filled by every species, then boundary-reduced
        once each unless local.
        """
        fields = [f for f in (j, rho, rho2) if f is not None]
        geom = self.grid.geom(lev)
        with DepositionSession(fields, [geom] * len(fields), self.comm, local=local):
            for s in self.species:
                s.evolve(lev, E, B, j, rho, rho2, t, dt)
        logger.debug("evolve: level %d, t = %.4e s, dt = %.4e s", lev, t, dt)

    def evolve_es(self, E, rho, t=0.0, dt=0.0, local=False):
        """
        Advance all species by one electrostatic step.

        rho is a list of per-level fields; every level is zeroed including
        ghost cells before the species run and reduced once afterwards.
        """
        geoms = [self.grid.geom(lev) for lev in range(len(rho))]
        with DepositionSession(rho, geoms, self.comm, local=local):
            for s in self.species:
                s.evolve_es(E, rho, t, dt)
        logger.debug("evolve_es: t = %.4e s, dt = %.4e s", t, dt)

    # ---------------- deposition ----------------

    def deposit_charge(self, rho, local=False):
        """
        Charge density of all species into rho (list of per-level fields).

        Each level is zeroed first; unless local, each is reduced once after
        all species deposited.
        """
        geoms = [self.grid.geom(lev) for lev in range(len(rho))]
        with DepositionSession(rho, geoms, self.comm, local=local):
            for s in self.species:
                s.deposit_charge(rho, local=True)

    def get_charge_density(self, lev, local=False):
        """
        Combined charge density of all species on a fresh field of level lev.

        Each species contributes its local-only density; the sum is reduced
        once at the end unless local.
        """
        if not self.species:
            return MultiField(self.grid.box_array(lev), self.grid.distribution_map(lev),
                              n_comp=1, n_grow=FIELD_GHOSTS, rank=self.comm.rank, name="rho")
        rho = self.species[0].get_charge_density(lev, local=True)
        rho.name = "rho"
        for s in self.species[1:]:
            rho.add(s.get_charge_density(lev, local=True), rho.n_grow)
        if not local:
            rho.sum_boundary(self.grid.geom(lev), self.comm)
        return rho

    def sum_particle_charge(self, local=False):
        """
        Total charge of all species.

        With local=True every species returns its per-rank sum; the caller
        must reduce it.
        """
        return sum((s.sum_particle_charge(local) for s in self.species), 0.0)

    # ---------------- redistribution ----------------

    def redistribute(self):
        """Full redistribution of every species (collective)."""
        for s in self.species:
            s.redistribute()

    def redistribute_local(self):
        """
        Redistribution assuming particles moved at most a few cells.

        Two cells are allowed with a moving window, one otherwise.
        """
        if self.config.do_moving_window:
            num_ghost = MOVING_WINDOW_REDISTRIBUTE_GHOSTS
        else:
            num_ghost = LOCAL_REDISTRIBUTE_GHOSTS
        for s in self.species:
            s.redistribute(0, 0, 0, num_ghost)

    # ---------------- grid bookkeeping ----------------

    def number_of_particles_in_grid(self, lev):
        """
        Global particle count per box of level lev, all species combined.

        Collective: valid local counts are summed across ranks.
        """
        # Species count against their particle box array, which may differ
        # from the field grid after set_particle_box_array
        ba = self.species[0].particle_box_array(lev) if self.species else self.grid.box_array(lev)
        counts = np.zeros(len(ba), dtype=np.int64)
        for s in self.species:
            counts += s.number_of_particles_in_grid(lev, only_valid=True, only_local=True)
        return self.comm.reduce_long_sum(counts)

    def number_of_particles_per_species(self):
        """Global active particle count of each species (collective)."""
        return self.comm.reduce_long_sum([len(s) for s in self.species])

    def total_number_of_particles(self):
        return int(np.sum(self.number_of_particles_per_species()))

    def increment(self, mf, lev):
        for s in self.species:
            s.increment(mf, lev)

    def set_particle_box_array(self, lev, ba):
        for s in self.species:
            s.set_particle_box_array(lev, ba)

    def set_particle_distribution_map(self, lev, dm):
        for s in self.species:
            s.set_particle_distribution_map(lev, dm)

    # ---------------- diagnostics ----------------

    def get_lab_frame_data(self, direction, z_old, z_new, t_boost, dt, snapshot=None):
        """
        Boosted-frame slices of every species for one lab-frame snapshot.

        Args:
            direction: Boost axis
            z_old, z_new: Snapshot plane at the start and end of the step [m]
            t_boost: Boosted-frame time at the end of the step [s]
            dt: Boosted-frame timestep [s]
            snapshot: Optional LabFrameSnapshot receiving the slices

        Returns:
            data: {species name: {box index: DiagnosticParticles}}
        """
        data = {}
        for s in self.species:
            slices = s.get_particle_slice(direction, z_old, z_new, t_boost, dt)
            logger.info("Diagnostics selected %d %s particles.", count_selected(slices), s.name)
            data[s.name] = slices
        if snapshot is not None:
            snapshot.add_slices(data)
        return data

    def __repr__(self):
        return f"MultiSpeciesContainer(species={self.species_names}, comm={self.comm})"
