"""
Species Containers

One container class per species kind, selected once when the registry is
built:
- PhysicalSpecies: plasma and beam particles
- RigidInjectedSpecies: beams that advance rigidly until an injection plane
- LaserSpecies: antenna pseudo-species driving a laser pulse
"""

from .base import SpeciesContainer, SpeciesDescriptor, SpeciesKind
from .physical import PhysicalSpecies
from .rigid_injected import RigidInjectedSpecies
from .laser import LaserSpecies

SPECIES_CLASSES = {
    SpeciesKind.PHYSICAL: PhysicalSpecies,
    SpeciesKind.RIGID_INJECTED: RigidInjectedSpecies,
    SpeciesKind.LASER: LaserSpecies,
}

__all__ = [
    "SpeciesContainer",
    "SpeciesDescriptor",
    "SpeciesKind",
    "PhysicalSpecies",
    "RigidInjectedSpecies",
    "LaserSpecies",
    "SPECIES_CLASSES",
]
