"""
picspecies: Multi-Species Coordination for Distributed Particle-in-Cell

Coordinates a heterogeneous set of particle species (physical plasma and
beam species, rigid-injected beams, a laser antenna) that share one
domain-decomposed grid: gather and push sequencing, zero-accumulate-reduce
deposition with ghost-cell reduction across ranks, particle redistribution
and boosted-frame diagnostic slicing.
"""

__version__ = "0.1.0"

from .config import ParticlesConfig, SpeciesParams, LaserParams, read_parameters
from .errors import (
    PICSpeciesError,
    ConfigurationError,
    FieldStateError,
    RedistributionError,
    CommunicationError,
)
from .parallel import Communicator
from .particles import ParticleArray
from .deposition import DepositionSession
from .multi_species import MultiSpeciesContainer
from .species import SpeciesDescriptor, SpeciesKind

__all__ = [
    "ParticlesConfig",
    "SpeciesParams",
    "LaserParams",
    "read_parameters",
    "PICSpeciesError",
    "ConfigurationError",
    "FieldStateError",
    "RedistributionError",
    "CommunicationError",
    "Communicator",
    "ParticleArray",
    "DepositionSession",
    "MultiSpeciesContainer",
    "SpeciesDescriptor",
    "SpeciesKind",
]
