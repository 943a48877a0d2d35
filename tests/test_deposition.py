"""
Tests for deposition sessions (zero, accumulate, reduce once)
"""

import numpy as np
import pytest

from picspecies.deposition import DepositionSession
from picspecies.errors import FieldStateError
from picspecies.pic.mesh import FieldState


class TestDepositionSession:
    """Test DepositionSession context manager."""

    def test_zeroes_on_enter(self, grid):
        """Fields are zero everywhere, ghosts included, inside the session"""
        rho = grid.make_field(0, n_grow=2, name="rho")
        rho.set_val(5.0)

        with DepositionSession([rho], [grid.geom(0)]):
            for b in rho.local_boxes:
                np.testing.assert_array_equal(rho.fab(b), 0.0)

    def test_reduces_once_on_exit(self, grid, count_reductions):
        rho = grid.make_field(0, name="rho")
        j = grid.make_field(0, n_comp=3, name="j")

        with DepositionSession([j, rho], [grid.geom(0)] * 2) as session:
            pass

        assert count_reductions == ["j", "rho"]
        assert session.reductions == 2

    def test_local_skips_reduction(self, grid, count_reductions):
        rho = grid.make_field(0, name="rho")

        with DepositionSession([rho], [grid.geom(0)], local=True) as session:
            rho.fab(1)[0, 0] = 1.0

        assert count_reductions == []
        assert session.reductions == 0
        # Ghost contribution stays where it was written
        assert rho.fab(1)[0, 0] == 1.0

    def test_ghost_contributions_folded(self, grid):
        rho = grid.make_field(0, n_grow=1, name="rho")

        with DepositionSession([rho], [grid.geom(0)]):
            rho.fab(1)[0, 0] = 1.0  # cell 3, owned by box 0

        assert rho.to_global()[0, 3] == 1.0

    def test_read_inside_refused(self, grid):
        rho = grid.make_field(0, name="rho")

        with DepositionSession([rho], [grid.geom(0)]):
            assert rho.state is FieldState.ACCUMULATING
            with pytest.raises(FieldStateError):
                rho.valid(0)

        assert rho.state is FieldState.FINAL

    def test_overlapping_sessions_refused(self, grid):
        rho = grid.make_field(0, name="rho")
        rho_other = grid.make_field(0, name="rho_other")

        with DepositionSession([rho], [grid.geom(0)]):
            rho.fab(0)[0, 1] = 2.0
            with pytest.raises(FieldStateError):
                with DepositionSession([rho_other, rho], [grid.geom(0)] * 2):
                    pass
            # The refused session must not have zeroed the open field
            assert rho.fab(0)[0, 1] == 2.0

        assert rho_other.state is FieldState.FINAL

    def test_duplicate_field_refused(self, grid):
        rho = grid.make_field(0, name="rho")

        with pytest.raises(FieldStateError):
            DepositionSession([rho, rho], [grid.geom(0)] * 2)

    def test_geometry_count_checked(self, grid):
        with pytest.raises(ValueError):
            DepositionSession([grid.make_field(0)], [])

    def test_exception_aborts_without_reduction(self, grid, count_reductions):
        """A failing pass leaves fields unreduced and marked aborted"""
        rho = grid.make_field(0, name="rho")

        with pytest.raises(RuntimeError, match="species failed"):
            with DepositionSession([rho], [grid.geom(0)]):
                raise RuntimeError("species failed")

        assert count_reductions == []
        assert rho.state is FieldState.ABORTED
        with pytest.raises(FieldStateError):
            rho.to_global()

    def test_aborted_field_reusable(self, grid):
        rho = grid.make_field(0, name="rho")
        with pytest.raises(RuntimeError):
            with DepositionSession([rho], [grid.geom(0)]):
                raise RuntimeError("species failed")

        with DepositionSession([rho], [grid.geom(0)]):
            rho.fab(0)[0, 2] = 1.0

        assert rho.state is FieldState.FINAL
        assert rho.sum() == 1.0
