"""Physical species: particles pushed by the full Lorentz force from injection on."""

from .base import SpeciesContainer, SpeciesKind


class PhysicalSpecies(SpeciesContainer):
    """
    Plasma or beam species.

    Uses the base container behaviour unchanged: gather E and B, relativistic
    Boris push, CIC deposition of charge and current.
    """

    kind = SpeciesKind.PHYSICAL
