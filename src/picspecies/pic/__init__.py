"""
Particle-in-Cell (PIC) Grid and Kernels

Components:
- mesh: domain-decomposed 1D grid, ghost-padded fields and boundary reduction
- mover: CIC deposition/gather and relativistic Boris push (Numba)
"""

from .mesh import (
    Geometry,
    BoxArray,
    DistributionMapping,
    AmrGrid,
    FieldState,
    MultiField,
    create_test_grid,
)
from .mover import (
    cic_stencil,
    deposit_cic_1d,
    gather_cic_1d,
    boris_push_relativistic,
    push_positions,
    apply_absorbing_bc,
    apply_periodic_bc,
)

__all__ = [
    # Mesh
    "Geometry",
    "BoxArray",
    "DistributionMapping",
    "AmrGrid",
    "FieldState",
    "MultiField",
    "create_test_grid",
    # Mover
    "cic_stencil",
    "deposit_cic_1d",
    "gather_cic_1d",
    "boris_push_relativistic",
    "push_positions",
    "apply_absorbing_bc",
    "apply_periodic_bc",
]
