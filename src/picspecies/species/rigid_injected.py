"""
Rigid-Injected Species

Beam particles that are created upstream of an injection plane and must not
feel the fields until they cross it. Before the plane the beam advances
rigidly: every particle moves along the grid axis with the mean beam velocity
(or its own velocity when `rigid_advance` is off), and momenta are frozen.
Once every local particle has crossed, the species behaves like a physical
one.
"""

import logging

import numpy as np

from ..constants import lorentz_factor
from .base import SpeciesContainer, SpeciesKind

logger = logging.getLogger(__name__)


class RigidInjectedSpecies(SpeciesContainer):
    kind = SpeciesKind.RIGID_INJECTED

    def __init__(self, grid, index, name, params, config, comm=None):
        super().__init__(grid, index, name, params, config, comm)
        self.zinject_plane = params.zinject_plane
        self.rigid_advance = params.rigid_advance
        self.done_injecting = False

        u_mean = np.asarray(params.u_mean, dtype=np.float64)
        # Mean velocity along the grid axis
        self.v_bar = float(u_mean[self.axis] / lorentz_factor(u_mean[None, :])[0])

    def _before_plane(self):
        p = self.particles
        n = p.n_particles
        return p.active[:n] & (p.x[:n, self.axis] < self.zinject_plane)

    def _update_injection_state(self):
        if self.done_injecting:
            return
        if not np.any(self._before_plane()):
            self.done_injecting = True
            logger.info("%s: all local particles crossed z = %.4e m",
                        self.name, self.zinject_plane)

    def _push_momenta(self, dt):
        if self.done_injecting:
            super()._push_momenta(dt)
            return
        p = self.particles
        before = np.flatnonzero(self._before_plane())
        frozen = p.u[before].copy()
        super()._push_momenta(dt)
        p.u[before] = frozen

    def push_x(self, dt):
        if self.done_injecting or not self.rigid_advance:
            super().push_x(dt)
            self._update_injection_state()
            return
        p = self.particles
        before = np.flatnonzero(self._before_plane())
        super().push_x(dt)
        p.x[before, self.axis] = p.x_old[before, self.axis] + self.v_bar * dt
        self._update_injection_state()

    def init_data(self):
        super().init_data()
        self.done_injecting = False
        self._update_injection_state()
