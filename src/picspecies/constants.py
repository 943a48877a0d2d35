"""
Physical Constants and Species Presets

All units in SI unless otherwise noted.
"""

import numpy as np
from scipy import constants as _sc

# ==================== FUNDAMENTAL CONSTANTS ====================

e = _sc.elementary_charge  # Elementary charge [C]
m_e = _sc.electron_mass  # Electron mass [kg]
m_p = _sc.proton_mass  # Proton mass [kg]
eps0 = _sc.epsilon_0  # Vacuum permittivity [F/m]
c = _sc.speed_of_light  # Speed of light [m/s]
AMU = _sc.atomic_mass  # Atomic mass unit [kg]

# ==================== NUMERICAL CONSTANTS ====================

# Stencil length (along z) of the FDTD numerical Cherenkov corrector
NSTENCILZ_FDTD_NCI_CORR = 5

# Ghost cells used by local redistribution
LOCAL_REDISTRIBUTE_GHOSTS = 1
MOVING_WINDOW_REDISTRIBUTE_GHOSTS = 2

# Ghost cells of deposition targets created by species (charge density maps)
FIELD_GHOSTS = 2

# ==================== SPECIES PRESETS ====================


class SpeciesData:
    """
    Charge and mass of a particle type.

    Attributes:
        mass: Particle mass [kg]
        charge: Particle charge [C]
    """

    def __init__(self, mass, charge):
        self.mass = mass
        self.charge = charge

    @property
    def q_over_m(self):
        return self.charge / self.mass

    def __repr__(self):
        return f"SpeciesData(mass={self.mass:.4e}, charge={self.charge:.4e})"


SPECIES = {
    'electron': SpeciesData(mass=m_e, charge=-e),
    'positron': SpeciesData(mass=m_e, charge=e),
    'proton': SpeciesData(mass=m_p, charge=e),
    'deuteron': SpeciesData(mass=_sc.physical_constants['deuteron mass'][0], charge=e),
    'N5+': SpeciesData(mass=14.007 * AMU, charge=5 * e),
}


# ==================== BOOST HELPERS ====================

def beta_from_gamma(gamma):
    """
    Normalized velocity of a frame with Lorentz factor gamma.

    Args:
        gamma: Lorentz factor (>= 1)

    Returns:
        beta: v/c
    """
    return np.sqrt(1.0 - 1.0 / gamma**2)


def lorentz_factor(u):
    """
    Lorentz factor from momenta per unit mass.

    Args:
        u: Array (n, 3) of gamma*v [m/s]

    Returns:
        gamma: Array (n,)
    """
    return np.sqrt(1.0 + np.sum(u * u, axis=-1) / c**2)
