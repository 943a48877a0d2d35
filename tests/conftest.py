"""
Shared fixtures: small decomposed grids, field sets, species parameters and
an in-process multi-rank world (one thread per rank).
"""

import threading

import numpy as np
import pytest

from picspecies.constants import e, m_e, m_p
from picspecies.parallel import Communicator
from picspecies.pic.mesh import MultiField, create_test_grid


# ==================== IN-PROCESS MULTI-RANK WORLD ====================


class ThreadWorld:
    """Rendezvous point shared by the ranks of a threaded run."""

    def __init__(self, size):
        self.size = size
        self.barrier = threading.Barrier(size, timeout=30)
        self.slots = [None] * size

    def exchange(self, rank, value):
        self.slots[rank] = value
        self.barrier.wait()
        values = list(self.slots)
        self.barrier.wait()
        return values


class ThreadComm:
    """mpi4py-like communicator for one thread of a ThreadWorld."""

    def __init__(self, world, rank):
        self.world = world
        self.rank = rank

    def Get_rank(self):
        return self.rank

    def Get_size(self):
        return self.world.size

    def allreduce(self, value):
        values = self.world.exchange(self.rank, value)
        total = values[0]
        for v in values[1:]:
            total = total + v
        return total

    def alltoall(self, sendobj):
        rows = self.world.exchange(self.rank, list(sendobj))
        return [rows[src][self.rank] for src in range(self.world.size)]

    def Barrier(self):
        self.world.exchange(self.rank, None)


def _run_on_ranks(size, fn):
    """
    Run fn(comm) on `size` ranks concurrently and return the per-rank results.

    An exception on any rank is re-raised after all threads finished.
    """
    world = ThreadWorld(size)
    results = [None] * size
    errors = [None] * size

    def target(rank):
        try:
            results[rank] = fn(Communicator(ThreadComm(world, rank)))
        except BaseException as exc:  # re-raised in the test thread below
            errors[rank] = exc
            world.barrier.abort()

    threads = [threading.Thread(target=target, args=(r,)) for r in range(size)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    primary = [exc for exc in errors
               if exc is not None and not isinstance(exc, threading.BrokenBarrierError)]
    if primary:
        raise primary[0]
    if any(exc is not None for exc in errors):
        raise next(exc for exc in errors if exc is not None)
    return results


@pytest.fixture
def run_on_ranks():
    return _run_on_ranks


# ==================== GRIDS AND FIELDS ====================


@pytest.fixture
def grid():
    """16 cells of 62.5 um in 4 boxes, non-periodic."""
    return create_test_grid(n_cell=16, max_grid_size=4, length=1.0e-3)


@pytest.fixture
def periodic_grid():
    return create_test_grid(n_cell=16, max_grid_size=4, length=1.0e-3, is_periodic=True)


def make_em_fields(grid, lev=0, rank=0, E0=(0.0, 0.0, 0.0), B0=(0.0, 0.0, 0.0), n_grow=2):
    """E, B (uniform) and zeroed j, rho, rho2 on one level."""
    E = grid.make_field(lev, n_comp=3, n_grow=n_grow, rank=rank, name="E")
    B = grid.make_field(lev, n_comp=3, n_grow=n_grow, rank=rank, name="B")
    for b in E.local_boxes:
        E.fab(b)[:] = np.asarray(E0, dtype=np.float64)[:, None]
        B.fab(b)[:] = np.asarray(B0, dtype=np.float64)[:, None]
    j = grid.make_field(lev, n_comp=3, n_grow=n_grow, rank=rank, name="j")
    rho = grid.make_field(lev, n_comp=1, n_grow=n_grow, rank=rank, name="rho")
    rho2 = grid.make_field(lev, n_comp=1, n_grow=n_grow, rank=rank, name="rho2")
    return E, B, j, rho, rho2


# ==================== SPECIES PARAMETERS ====================


ELECTRONS = {
    "charge": -e,
    "mass": m_e,
    "density": 1.0e24,
    "particles_per_cell": 4,
    "u_th": (1.0e6, 1.0e6, 1.0e6),
    "seed": 1,
}

IONS = {
    "charge": e,
    "mass": m_p,
    "density": 1.0e24,
    "particles_per_cell": 2,
    "u_th": (1.0e4, 1.0e4, 1.0e4),
    "seed": 2,
}

BEAM = {
    "charge": -e,
    "mass": m_e,
    "density": 1.0e22,
    "particles_per_cell": 2,
    "z_min": 0.0,
    "z_max": 2.5e-4,
    "u_mean": (0.0, 0.0, 1.0e8),
    "zinject_plane": 5.0e-4,
    "seed": 3,
}


@pytest.fixture
def plasma_params():
    """Electron/ion plasma plus a rigid-injected beam."""
    return {
        "nspecies": 3,
        "species_names": "electrons ions beam",
        "rigid_injected_species": ["beam"],
        "species": {"electrons": ELECTRONS, "ions": IONS, "beam": BEAM},
    }


# ==================== INSTRUMENTATION ====================


@pytest.fixture
def count_reductions(monkeypatch):
    """Record the name of every field passed to MultiField.sum_boundary."""
    calls = []
    original = MultiField.sum_boundary

    def counting(self, geom, comm=None):
        calls.append(self.name)
        return original(self, geom, comm)

    monkeypatch.setattr(MultiField, "sum_boundary", counting)
    return calls
