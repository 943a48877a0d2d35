"""
Laser Antenna Pseudo-Species

A plane of antenna macro-particles at `LaserParams.position` whose transverse
velocity is prescribed, not pushed: the current they deposit radiates a
Gaussian-envelope laser pulse.

    E(t) = e_max * exp(-((t - t_peak) / duration)^2) * sin(2*pi*c*t / wavelength)
    v(t) = mobility * c * E(t) / e_max

The antenna weight is chosen so that the surface current q*W*v equals
2*eps0*c*E(t), the sheet current radiating E(t) on both sides.

The antenna is charge neutral (its counter-charge is implied), so it never
contributes to the charge density and its total charge is zero. It ignores
gathered fields.
"""

import numpy as np

from ..constants import c, e, eps0, m_e
from ..errors import ConfigurationError
from .base import SpeciesContainer, SpeciesKind


class LaserSpecies(SpeciesContainer):
    kind = SpeciesKind.LASER

    def __init__(self, grid, index, name, params, config, comm=None):
        super().__init__(grid, index, name, params, config, comm)
        if params.polarization == self.axis:
            raise ConfigurationError(
                "laser polarization must be transverse to the grid axis"
            )
        self.t = 0.0

    @property
    def charge(self):
        return e

    @property
    def mass(self):
        return m_e

    def _antenna_box(self):
        ba = self._box_arrays[0]
        return int(ba.box_of_cells(self.geom.cell_index([self.params.position]))[0])

    def _owns_antenna(self):
        box = self._antenna_box()
        return box >= 0 and box in self.local_boxes()

    def antenna_weight(self):
        """Total antenna weight per unit transverse area."""
        p = self.params
        return 2.0 * eps0 * p.e_max / (e * p.mobility)

    def amplitude(self, t):
        """Laser field emitted at time t [V/m]."""
        p = self.params
        envelope = np.exp(-((t - p.t_peak) / p.duration) ** 2)
        return p.e_max * envelope * np.sin(2.0 * np.pi * c * t / p.wavelength)

    def antenna_velocity(self, t):
        p = self.params
        return p.mobility * c * self.amplitude(t) / p.e_max

    # ---------------- lifecycle ----------------

    def alloc_data(self):
        self.particles = self._new_particle_array(self.params.n_antenna if self._owns_antenna() else 0)

    def init_data(self):
        """Place the antenna on the rank owning the antenna plane."""
        self.t = 0.0
        if not self._owns_antenna():
            return
        n = self.params.n_antenna
        x = np.zeros((n, 3))
        x[:, self.axis] = self.params.position
        idx = self.particles.add_particles(x, np.zeros((n, 3)), self.antenna_weight() / n)
        self.particles.box[idx] = self._antenna_box()

    # ---------------- prescribed motion ----------------

    def _set_momenta(self, t):
        p = self.particles
        n = p.n_particles
        v = self.antenna_velocity(t)
        gamma = 1.0 / np.sqrt(1.0 - (v / c) ** 2)
        p.u[:n] = 0.0
        p.u[:n, self.params.polarization] = gamma * v

    def field_gather_es(self, E):
        pass

    def field_gather(self, lev, E, B):
        pass

    def push_p(self, lev, dt, E, B):
        if lev != 0:
            return
        self._set_momenta(self.t + 0.5 * dt)

    def _push_momenta(self, dt):
        self._set_momenta(self.t + 0.5 * dt)

    def push_x(self, dt):
        super().push_x(dt)
        self.t += dt

    # ---------------- deposition ----------------

    def deposit_charge_to(self, rho):
        pass

    def sum_particle_charge(self, local=False):
        return 0.0

    def evolve(self, lev, E, B, j, rho=None, rho2=None, t=0.0, dt=0.0):
        """Drive the antenna from t to t + dt and deposit its current."""
        if lev != 0:
            return
        self.t = t
        self._set_momenta(t + 0.5 * dt)
        self.push_x(dt)
        self.deposit_current_to(j)

    def evolve_es(self, E, rho, t=0.0, dt=0.0):
        # Electrostatic runs have no radiation to drive
        self.t = t + dt
