"""Pydantic v2 configuration for the particle species of a PIC run.

The ``particles`` block of a simulation input is validated once by
:func:`read_parameters`, which returns an immutable :class:`ParticlesConfig`.
The registry in :mod:`picspecies.multi_species` only ever consumes that value;
nothing is cached at module level, so tests may build as many configurations
as they like.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from picspecies.constants import SPECIES, e, m_e
from picspecies.errors import ConfigurationError

# Registry name of the laser antenna pseudo-species
LASER_SPECIES_NAME = "laser"


def _split_names(value: Any) -> Any:
    # Input decks write arrays as whitespace separated strings.
    if isinstance(value, str):
        return value.split()
    return value


class SpeciesParams(BaseModel):
    """Physical and injection parameters of one declared species."""

    model_config = ConfigDict(frozen=True)

    charge: float = Field(-e, description="Macro-particle charge per unit weight [C]")
    mass: float = Field(m_e, gt=0, description="Particle mass [kg]")
    density: float = Field(0.0, ge=0, description="Injected number density [m^-3]")
    particles_per_cell: int = Field(1, ge=1, description="Macro-particles per cell")
    z_min: float | None = Field(None, description="Lower edge of the injected slab [m]")
    z_max: float | None = Field(None, description="Upper edge of the injected slab [m]")
    u_mean: tuple[float, float, float] = Field((0.0, 0.0, 0.0), description="Mean gamma*v [m/s]")
    u_th: tuple[float, float, float] = Field((0.0, 0.0, 0.0), description="Thermal spread of gamma*v [m/s]")
    zinject_plane: float = Field(0.0, description="Plane where rigid injection ends [m]")
    rigid_advance: bool = Field(True, description="Advance rigidly at the mean velocity before the plane")
    seed: int = Field(0, ge=0, description="Seed for the injection random stream")
    particle_type: str | None = Field(None, description="Preset from constants.SPECIES for charge and mass")

    @model_validator(mode="before")
    @classmethod
    def apply_particle_type(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("particle_type") is None:
            return data
        preset = SPECIES.get(data["particle_type"])
        if preset is None:
            raise ValueError(
                f"unknown particle_type '{data['particle_type']}', expected one of {sorted(SPECIES)}"
            )
        # Explicit charge or mass entries win over the preset
        return {"charge": preset.charge, "mass": preset.mass, **data}

    @model_validator(mode="after")
    def check_slab(self) -> SpeciesParams:
        if self.z_min is not None and self.z_max is not None and self.z_min >= self.z_max:
            raise ValueError("z_min must be less than z_max")
        return self


class LaserParams(BaseModel):
    """Antenna parameters of the laser pseudo-species."""

    model_config = ConfigDict(frozen=True)

    position: float = Field(0.0, description="Antenna plane position along the grid axis [m]")
    polarization: int = Field(0, ge=0, le=2, description="Component carrying the antenna current")
    wavelength: float = Field(0.8e-6, gt=0, description="Laser wavelength [m]")
    e_max: float = Field(1.0e12, ge=0, description="Peak field amplitude [V/m]")
    duration: float = Field(30.0e-15, gt=0, description="Gaussian duration tau [s]")
    t_peak: float = Field(60.0e-15, ge=0, description="Time of peak amplitude [s]")
    mobility: float = Field(0.01, gt=0, lt=1, description="Antenna velocity at peak field [c]")
    n_antenna: int = Field(1, ge=1, description="Number of antenna macro-particles")


class ParticlesConfig(BaseModel):
    """Validated ``particles`` block.

    Cross-field checks mirror what the simulation cannot run without: the
    species name list must have exactly ``nspecies`` unique entries and every
    rigid-injected override must name a declared species.
    """

    model_config = ConfigDict(frozen=True)

    nspecies: int = Field(0, ge=0, description="Number of declared species")
    species_names: list[str] = Field(default_factory=list)
    rigid_injected_species: list[str] = Field(default_factory=list)
    use_fdtd_nci_corr: bool = Field(False, description="FDTD numerical Cherenkov correction")
    l_lower_order_in_v: bool = Field(True, description="Lower shape order in the transverse gather")
    use_laser: bool = Field(False, description="Append a laser antenna pseudo-species")
    do_moving_window: bool = Field(False, description="Grid translates with the simulation frame")
    gamma_boost: float = Field(1.0, ge=1.0, description="Lorentz factor of the boosted frame")
    boost_direction: int = Field(2, ge=0, le=2, description="Axis of the boost")
    n_workers: int = Field(1, ge=1, description="Threads for species-independent passes")
    species: dict[str, SpeciesParams] = Field(default_factory=dict)
    laser: LaserParams = Field(default_factory=LaserParams)

    @field_validator("species_names", "rigid_injected_species", mode="before")
    @classmethod
    def split_names(cls, v: Any) -> Any:
        return _split_names(v)

    @model_validator(mode="after")
    def check_species(self) -> ParticlesConfig:
        if len(self.species_names) != self.nspecies:
            raise ValueError(
                f"particles.species_names has {len(self.species_names)} entries "
                f"but particles.nspecies = {self.nspecies}"
            )
        if len(set(self.species_names)) != len(self.species_names):
            raise ValueError("particles.species_names must not contain duplicates")
        for name in self.rigid_injected_species:
            if name not in self.species_names:
                raise ValueError(
                    f"species '{name}' in particles.rigid_injected_species "
                    f"must be part of particles.species_names"
                )
        if self.use_laser and LASER_SPECIES_NAME in self.species_names:
            raise ValueError(
                f"species name '{LASER_SPECIES_NAME}' is reserved for the laser antenna"
            )
        unknown = sorted(set(self.species) - set(self.species_names))
        if unknown:
            raise ValueError(f"parameters given for undeclared species: {unknown}")
        return self

    def params_for(self, name: str) -> SpeciesParams:
        """Return the physical parameters of ``name`` (electron defaults)."""
        return self.species.get(name, SpeciesParams())

    # --- I/O helpers ---

    @classmethod
    def from_file(cls, path: str | Path) -> ParticlesConfig:
        """Load and validate a JSON ``particles`` block."""
        path = Path(path)
        with path.open() as f:
            data = json.load(f)
        return read_parameters(data.get("particles", data))

    def to_json(self, path: str | Path | None = None) -> str:
        """Serialize to JSON string, optionally writing to file."""
        out = self.model_dump_json(indent=2)
        if path is not None:
            Path(path).write_text(out)
        return out


def read_parameters(params: dict[str, Any] | None = None) -> ParticlesConfig:
    """Validate a raw ``particles`` parameter dictionary.

    Called exactly once by the startup sequence; the returned value is
    immutable and is what every species container reads from.

    Raises:
        ConfigurationError: If the parameters describe an unusable setup.
    """
    try:
        return ParticlesConfig(**(params or {}))
    except ValidationError as err:
        raise ConfigurationError(str(err)) from err
