"""
Exception types raised by the species coordination layer.

None of these are meant to be recovered from inside a time step: a
half-accumulated field or a partially redistributed particle set cannot be
safely continued from, so every one of them propagates to the driver.
"""


class PICSpeciesError(Exception):
    """Base class for all picspecies errors."""


class ConfigurationError(PICSpeciesError, ValueError):
    """The particle configuration is inconsistent and cannot be simulated."""


class FieldStateError(PICSpeciesError, RuntimeError):
    """A shared field was read or reopened while a deposition was in flight."""


class RedistributionError(PICSpeciesError, RuntimeError):
    """A particle moved farther than local redistribution allows."""


class CommunicationError(PICSpeciesError, RuntimeError):
    """A collective exchange returned a malformed payload."""
