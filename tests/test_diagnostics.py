"""
Tests for boosted-frame slicing, lab-frame snapshots and count tracking
"""

import csv

import matplotlib
import numpy as np
import pytest

from picspecies.constants import c
from picspecies.diagnostics import (
    DiagnosticParticles,
    LabFrameSnapshot,
    ParticleCountTracker,
    count_selected,
    lorentz_to_lab,
    select_particle_slice,
)
from picspecies.multi_species import MultiSpeciesContainer
from picspecies.particles import ParticleArray

matplotlib.use("Agg")


def moving_particles(z_old, z_new, boxes=None, u=None):
    """ParticleArray whose particles moved from z_old to z_new along axis 2."""
    z_old = np.asarray(z_old, dtype=np.float64)
    z_new = np.asarray(z_new, dtype=np.float64)
    x_old = np.zeros((z_old.size, 3))
    x_old[:, 2] = z_old
    x = np.zeros((z_new.size, 3))
    x[:, 2] = z_new
    p = ParticleArray()
    u = np.zeros_like(x) if u is None else u
    idx = p.add_particles(x, u, 1.0, x_old=x_old)
    p.box[idx] = 0 if boxes is None else boxes
    return p


class TestSelectParticleSlice:
    """Test plane-crossing selection and interpolation."""

    def test_no_particles(self):
        assert select_particle_slice(ParticleArray(), 2, 0.0, 1.0, 1.0, 1.0, 1.0) == {}

    def test_boundary_selected_once(self):
        """A particle landing on the plane is selected by that step only"""
        first = moving_particles([1.0], [2.0])
        second = moving_particles([2.0], [3.0])

        assert count_selected(select_particle_slice(first, 2, 2.0, 2.0, 1.0, 1.0, 1.0)) == 1
        assert count_selected(select_particle_slice(second, 2, 2.0, 2.0, 2.0, 1.0, 1.0)) == 0

    def test_both_directions(self):
        p = moving_particles([0.0, 4.0, 0.0], [4.0, 0.0, 0.5])

        slices = select_particle_slice(p, 2, 1.0, 1.0, 1.0, 1.0, 1.0)

        np.testing.assert_array_equal(slices[0].ids, [0, 1])

    def test_interpolated_crossing(self):
        p = moving_particles([0.0], [4.0])
        t_boost, dt = 10.0, 2.0

        data = select_particle_slice(p, 2, 1.0, 1.0, t_boost, dt, 1.0)[0]

        assert data.x[0, 2] == pytest.approx(1.0)
        assert data.t[0] == pytest.approx(t_boost - dt + 0.25 * dt)

    def test_moving_plane(self):
        """Plane sweeping over a particle at rest selects it at mid-step"""
        p = moving_particles([1.0], [1.0])

        data = select_particle_slice(p, 2, 0.0, 2.0, 1.0, 1.0, 1.0)[0]

        assert data.t[0] == pytest.approx(0.5)
        assert data.x[0, 2] == pytest.approx(1.0)

    def test_inactive_skipped(self):
        p = moving_particles([0.0, 0.0], [2.0, 2.0])
        p.active[1] = False

        slices = select_particle_slice(p, 2, 1.0, 1.0, 1.0, 1.0, 1.0)

        assert count_selected(slices) == 1

    def test_grouped_by_box(self):
        p = moving_particles([0.0, 0.0, 0.0], [2.0, 2.0, 2.0], boxes=[3, 1, 3])

        slices = select_particle_slice(p, 2, 1.0, 1.0, 1.0, 1.0, 1.0)

        assert list(slices) == [1, 3]
        np.testing.assert_array_equal(slices[3].ids, [0, 2])
        np.testing.assert_array_equal(slices[1].ids, [1])

    def test_copies_are_independent(self):
        p = moving_particles([0.0], [2.0])
        data = select_particle_slice(p, 2, 1.0, 1.0, 1.0, 1.0, 1.0)[0]

        p.weight[0] = 5.0

        assert data.weight[0] == 1.0


class TestLorentzToLab:
    """Test boosted-to-lab frame transformation."""

    def test_identity_without_boost(self):
        x = np.array([[1.0, 2.0, 3.0]])
        u = np.array([[4.0, 5.0, 6.0]])

        x_lab, u_lab, t_lab = lorentz_to_lab(x, u, np.array([7.0]), 1.0)

        np.testing.assert_array_equal(x_lab, x)
        np.testing.assert_array_equal(u_lab, u)
        np.testing.assert_array_equal(t_lab, [7.0])

    def test_particle_at_rest(self):
        gamma = 2.0
        beta = np.sqrt(3.0) / 2.0
        x = np.array([[0.5, 0.25, 1.0]])

        x_lab, u_lab, t_lab = lorentz_to_lab(x, np.zeros((1, 3)), np.array([0.0]), gamma)

        assert t_lab[0] == pytest.approx(2.0 * beta / c)
        assert x_lab[0, 2] == pytest.approx(2.0)
        assert u_lab[0, 2] == pytest.approx(np.sqrt(3.0) * c)
        np.testing.assert_array_equal(x_lab[0, :2], [0.5, 0.25])

    def test_inputs_not_modified(self):
        x = np.array([[0.0, 0.0, 1.0]])
        u = np.zeros((1, 3))

        lorentz_to_lab(x, u, np.array([0.0]), 3.0)

        assert x[0, 2] == 1.0
        assert u[0, 2] == 0.0


class TestLabFrameSnapshot:
    """Test snapshot accumulation and export."""

    def test_accumulate_and_flush(self, tmp_path):
        snap = LabFrameSnapshot("lab_frame_00001", t_lab=1.0e-12)
        part = DiagnosticParticles(x=np.ones((2, 3)), u=np.zeros((2, 3)), t=np.zeros(2),
                                   weight=np.full(2, 3.0), ids=np.array([4, 5]))
        snap.add_slices({"electrons": {1: part}, "ions": {}})
        snap.add("electrons", {0: part})

        assert snap.num_particles() == 4
        assert snap.num_particles("ions") == 0
        path = snap.flush(tmp_path / "diags")

        with np.load(path) as data:
            assert float(data["t_lab"]) == pytest.approx(1.0e-12)
            np.testing.assert_array_equal(data["electrons_ids"], [4, 5, 4, 5])
            assert data["electrons_x"].shape == (4, 3)
            assert data["ions_weight"].shape == (0,)
        assert snap.num_particles() == 0

    def test_slices_ordered_by_box(self):
        snap = LabFrameSnapshot("s")
        first = DiagnosticParticles(weight=np.ones(1), ids=np.array([10]),
                                    x=np.zeros((1, 3)), u=np.zeros((1, 3)), t=np.zeros(1))
        second = DiagnosticParticles(weight=np.ones(1), ids=np.array([20]),
                                     x=np.zeros((1, 3)), u=np.zeros((1, 3)), t=np.zeros(1))

        snap.add("beam", {2: second, 0: first})

        np.testing.assert_array_equal(snap.particles("beam").ids, [10, 20])


class TestParticleCountTracker:
    """Test time-series tracking of particle counts."""

    @pytest.fixture
    def mpc(self, plasma_params, grid):
        mpc = MultiSpeciesContainer(plasma_params, grid)
        mpc.alloc_data()
        mpc.init_data()
        return mpc

    def test_record(self, mpc):
        tracker = ParticleCountTracker(mpc.species_names, n_steps=10, output_interval=5)

        tracker.record(0, 0.0, mpc)
        tracker.record(5, 1.0e-15, mpc)

        assert tracker.n_outputs == 3
        assert tracker.output_idx == 2
        np.testing.assert_array_equal(tracker.counts[1], [64, 32, 8])
        assert tracker.total_charge[1] == pytest.approx(mpc.sum_particle_charge())

    def test_record_past_capacity_ignored(self, mpc):
        tracker = ParticleCountTracker(mpc.species_names, n_steps=1, output_interval=1)
        for step in range(4):
            tracker.record(step, 0.0, mpc)

        assert tracker.output_idx == 2

    def test_save_csv(self, mpc, tmp_path):
        tracker = ParticleCountTracker(mpc.species_names, n_steps=10, output_interval=10)
        tracker.record(0, 2.0e-15, mpc)
        filename = tmp_path / "counts.csv"

        tracker.save_csv(str(filename))

        with open(filename, newline='') as f:
            rows = list(csv.reader(f))
        assert rows[0] == ['step', 'time_fs', 'n_electrons', 'n_ions', 'n_beam', 'total_charge_C']
        assert len(rows) == 2
        assert float(rows[1][1]) == pytest.approx(2.0)
        assert rows[1][2:5] == ['64', '32', '8']

    def test_plot(self, mpc, tmp_path):
        import matplotlib.pyplot as plt

        tracker = ParticleCountTracker(mpc.species_names, n_steps=10, output_interval=5)
        tracker.record(0, 0.0, mpc)
        filename = tmp_path / "counts.png"

        fig = tracker.plot(show=False, save_filename=str(filename))

        assert filename.exists()
        assert len(fig.axes) == 2
        plt.close(fig)

    def test_summary(self, mpc):
        tracker = ParticleCountTracker(mpc.species_names, n_steps=10, output_interval=5)
        assert tracker.summary() == "No diagnostics recorded"

        tracker.record(0, 0.0, mpc)

        assert "electrons: 64 particles" in tracker.summary()
