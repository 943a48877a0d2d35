"""
Particle Data Structures for Species Containers

Uses Structure-of-Arrays (SoA) layout for cache efficiency and Numba performance.
Each species instance owns exactly one ParticleArray; nothing outside the
species mutates it.
"""

import numpy as np

# Columns of a packed particle record: x(3), x_old(3), u(3), weight, id
PACKED_WIDTH = 11


class ParticleArray:
    """
    Growable particle container laid out for Numba kernels.

    Attributes:
        x: Position vectors [capacity, 3] in meters
        x_old: Positions before the last position push [capacity, 3] in meters
        u: Momentum per unit mass, gamma*v [capacity, 3] in m/s
        weight: Number of physical particles represented
        ids: Unique particle identifiers
        box: Index of the box that owns the particle (-1 if unassigned)
        active: Boolean mask for live particles
        E, B: Fields gathered at the particle positions [capacity, 3]
        n_particles: Number of used slots (active or not)
    """

    def __init__(self, capacity=0, id_offset=0, id_stride=1):
        """
        Initialize particle arrays.

        Automatic ids follow the sequence id_offset + k*id_stride, so arrays
        with distinct offsets below a common stride never issue the same id.

        Args:
            capacity: Number of slots to pre-allocate
            id_offset: First automatic id
            id_stride: Step between automatic ids
        """
        if id_stride < 1 or not 0 <= id_offset < id_stride:
            raise ValueError(f"Need 0 <= id_offset < id_stride, got {id_offset} and {id_stride}")
        self.n_particles = 0
        self.id_offset = int(id_offset)
        self.id_stride = int(id_stride)
        self._next_id = self.id_offset
        self._allocate(int(capacity))

    def _allocate(self, capacity):
        self.x = np.zeros((capacity, 3), dtype=np.float64)
        self.x_old = np.zeros((capacity, 3), dtype=np.float64)
        self.u = np.zeros((capacity, 3), dtype=np.float64)
        self.weight = np.zeros(capacity, dtype=np.float64)
        self.ids = np.zeros(capacity, dtype=np.int64)
        self.box = np.full(capacity, -1, dtype=np.int64)
        self.active = np.zeros(capacity, dtype=np.bool_)
        self.E = np.zeros((capacity, 3), dtype=np.float64)
        self.B = np.zeros((capacity, 3), dtype=np.float64)

    @property
    def capacity(self):
        return int(self.weight.size)

    def _ensure_capacity(self, extra):
        """Grow every array so that `extra` more particles fit."""
        needed = self.n_particles + int(extra)
        if needed <= self.capacity:
            return
        new_cap = max(needed, max(1, self.capacity) * 2)
        n = self.n_particles
        old = (self.x, self.x_old, self.u, self.weight, self.ids,
               self.box, self.active, self.E, self.B)
        self._allocate(new_cap)
        new = (self.x, self.x_old, self.u, self.weight, self.ids,
               self.box, self.active, self.E, self.B)
        for src, dst in zip(old, new):
            dst[:n] = src[:n]

    def add_particles(self, x, u, weight, ids=None, x_old=None):
        """
        Append particles.

        Args:
            x: Positions, shape (n, 3) or (3,) [m]
            u: Momenta per unit mass, shape (n, 3) or (3,) [m/s]
            weight: Scalar or (n,) weights
            ids: Optional identifiers; a running counter is used otherwise
            x_old: Optional previous positions (defaults to x)

        Returns:
            indices: Array indices of the added particles
        """
        x = np.atleast_2d(np.asarray(x, dtype=np.float64))
        u = np.atleast_2d(np.asarray(u, dtype=np.float64))
        n_add = x.shape[0]
        if u.shape[0] != n_add:
            raise ValueError(f"Got {n_add} positions but {u.shape[0]} momenta")

        self._ensure_capacity(n_add)
        start = self.n_particles
        end = start + n_add

        self.x[start:end] = x
        self.x_old[start:end] = x if x_old is None else np.atleast_2d(x_old)
        self.u[start:end] = u
        self.weight[start:end] = weight
        if ids is None:
            ids = self._next_id + self.id_stride * np.arange(n_add, dtype=np.int64)
        ids = np.asarray(ids, dtype=np.int64)
        self.ids[start:end] = ids
        if ids.size and int(ids.max()) >= self._next_id:
            # Stay on this array's sequence, above every stored id
            k = (int(ids.max()) - self.id_offset) // self.id_stride + 1
            self._next_id = self.id_offset + k * self.id_stride
        self.box[start:end] = -1
        self.active[start:end] = True
        self.E[start:end] = 0.0
        self.B[start:end] = 0.0

        self.n_particles = end
        return np.arange(start, end)

    def remove_inactive(self):
        """
        Compact arrays by dropping inactive particles.

        Order of the surviving particles is preserved.
        """
        n = self.n_particles
        if n == 0:
            return
        keep = self.active[:n]
        n_keep = int(np.sum(keep))
        if n_keep == n:
            return
        for arr in (self.x, self.x_old, self.u, self.weight, self.ids,
                    self.box, self.E, self.B):
            arr[:n_keep] = arr[:n][keep]
        self.active[:n_keep] = True
        self.active[n_keep:n] = False
        self.n_particles = n_keep

    def pack(self, mask):
        """
        Pack the selected particles into float64 records for transfer.

        Args:
            mask: Boolean array of shape (n_particles,)

        Returns:
            buf: Array (k, PACKED_WIDTH)
        """
        n = self.n_particles
        sel = np.flatnonzero(mask[:n])
        buf = np.empty((sel.size, PACKED_WIDTH), dtype=np.float64)
        buf[:, 0:3] = self.x[sel]
        buf[:, 3:6] = self.x_old[sel]
        buf[:, 6:9] = self.u[sel]
        buf[:, 9] = self.weight[sel]
        buf[:, 10] = self.ids[sel].astype(np.float64)
        return buf

    def append_packed(self, buf):
        """Append particles from records produced by :meth:`pack`."""
        if buf.size == 0:
            return np.arange(self.n_particles, self.n_particles)
        return self.add_particles(
            x=buf[:, 0:3],
            u=buf[:, 6:9],
            weight=buf[:, 9],
            ids=buf[:, 10].astype(np.int64),
            x_old=buf[:, 3:6],
        )

    def num_active(self):
        return int(np.sum(self.active[:self.n_particles]))

    def total_weight(self):
        n = self.n_particles
        return float(np.sum(self.weight[:n][self.active[:n]]))

    def __len__(self):
        """Return number of particles (including inactive)."""
        return self.n_particles

    def __repr__(self):
        return (f"ParticleArray(n_particles={self.n_particles}, "
                f"active={self.num_active()}, capacity={self.capacity})")
