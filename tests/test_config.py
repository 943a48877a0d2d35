"""
Tests for particle configuration validation
"""

import json

import pytest
from pydantic import ValidationError

from picspecies.config import (
    LaserParams,
    ParticlesConfig,
    SpeciesParams,
    read_parameters,
)
from picspecies.constants import SPECIES, e, m_e, m_p
from picspecies.errors import ConfigurationError


class TestReadParameters:
    """Test read_parameters() validation."""

    def test_empty_params(self):
        """No particles block means no species."""
        config = read_parameters()

        assert config.nspecies == 0
        assert config.species_names == []
        assert config.use_laser is False

    def test_whitespace_separated_names(self):
        """Names may be given as a single whitespace separated string."""
        config = read_parameters({"nspecies": 3, "species_names": "electrons  ions\tbeam"})

        assert config.species_names == ["electrons", "ions", "beam"]

    def test_name_count_mismatch_is_fatal(self):
        """nspecies=2 with a single name must be rejected."""
        with pytest.raises(ConfigurationError, match="nspecies"):
            read_parameters({"nspecies": 2, "species_names": ["electrons"]})

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            read_parameters({"nspecies": 1})

    def test_rigid_species_must_be_declared(self):
        """Every rigid-injected override must name a declared species."""
        with pytest.raises(ConfigurationError, match="rigid_injected_species"):
            read_parameters({
                "nspecies": 1,
                "species_names": ["electrons"],
                "rigid_injected_species": ["beam"],
            })

    def test_duplicate_names_rejected(self):
        with pytest.raises(ConfigurationError, match="duplicates"):
            read_parameters({"nspecies": 2, "species_names": ["e", "e"]})

    def test_negative_nspecies_rejected(self):
        with pytest.raises(ConfigurationError):
            read_parameters({"nspecies": -1})

    def test_laser_name_reserved(self):
        """A declared species cannot shadow the laser antenna."""
        with pytest.raises(ConfigurationError, match="reserved"):
            read_parameters({"nspecies": 1, "species_names": ["laser"], "use_laser": True})

    def test_laser_name_allowed_without_laser(self):
        config = read_parameters({"nspecies": 1, "species_names": ["laser"]})
        assert config.species_names == ["laser"]

    def test_params_for_undeclared_species_rejected(self):
        with pytest.raises(ConfigurationError, match="undeclared"):
            read_parameters({
                "nspecies": 1,
                "species_names": ["electrons"],
                "species": {"ions": {"charge": e, "mass": m_p}},
            })

    def test_gamma_boost_below_one_rejected(self):
        with pytest.raises(ConfigurationError):
            read_parameters({"gamma_boost": 0.5})

    def test_flags_read(self):
        """Noise-correction and shape-order flags are carried through."""
        config = read_parameters({"use_fdtd_nci_corr": True, "l_lower_order_in_v": False})

        assert config.use_fdtd_nci_corr is True
        assert config.l_lower_order_in_v is False


class TestParticlesConfig:
    """Test the validated configuration value."""

    def test_params_for_defaults_to_electrons(self):
        config = read_parameters({"nspecies": 1, "species_names": ["electrons"]})
        params = config.params_for("electrons")

        assert params.charge == pytest.approx(-e)
        assert params.mass == pytest.approx(m_e)
        assert params.density == 0.0

    def test_params_for_declared_entry(self, plasma_params):
        config = read_parameters(plasma_params)

        assert config.params_for("ions").mass == pytest.approx(m_p)
        assert config.params_for("beam").zinject_plane == pytest.approx(5.0e-4)

    def test_config_is_immutable(self, plasma_params):
        config = read_parameters(plasma_params)

        with pytest.raises(ValidationError):
            config.nspecies = 5

    def test_independent_configs(self):
        """Building one configuration does not affect the next."""
        first = read_parameters({"nspecies": 1, "species_names": ["a"]})
        second = read_parameters({"nspecies": 2, "species_names": ["b", "c"]})

        assert first.species_names == ["a"]
        assert second.species_names == ["b", "c"]

    def test_json_file_roundtrip(self, tmp_path, plasma_params):
        """to_json output loads back to an equal configuration."""
        config = read_parameters(plasma_params)
        path = tmp_path / "particles.json"
        config.to_json(path)

        loaded = ParticlesConfig.from_file(path)

        assert loaded == config

    def test_from_file_reads_particles_block(self, tmp_path):
        path = tmp_path / "inputs.json"
        path.write_text(json.dumps({
            "particles": {"nspecies": 1, "species_names": "electrons", "use_laser": True},
            "geometry": {"n_cell": 64},
        }))

        config = ParticlesConfig.from_file(path)

        assert config.species_names == ["electrons"]
        assert config.use_laser is True

    def test_from_file_invalid(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"nspecies": 2, "species_names": "electrons"}))

        with pytest.raises(ConfigurationError):
            ParticlesConfig.from_file(path)


class TestSpeciesParams:
    """Test per-species parameters."""

    def test_slab_bounds_ordered(self):
        with pytest.raises(ValidationError, match="z_min"):
            SpeciesParams(z_min=1.0e-3, z_max=0.5e-3)

    def test_mass_positive(self):
        with pytest.raises(ValidationError):
            SpeciesParams(mass=0.0)

    def test_particle_type_preset(self):
        params = SpeciesParams(particle_type="proton")

        assert params.charge == e
        assert params.mass == m_p

    def test_particle_type_explicit_charge_wins(self):
        params = SpeciesParams(particle_type="N5+", charge=2.0 * e)

        assert params.charge == 2.0 * e
        assert params.mass == SPECIES["N5+"].mass

    def test_unknown_particle_type(self):
        with pytest.raises(ValidationError, match="unknown particle_type"):
            SpeciesParams(particle_type="muon")

    def test_laser_defaults(self):
        laser = LaserParams()

        assert laser.polarization == 0
        assert 0.0 < laser.mobility < 1.0
        assert laser.n_antenna == 1
