"""
Domain-Decomposed 1D PIC Mesh

Implements the grid side of the species coordination layer:
- Geometry: physical extent, cell size and periodicity of one level
- BoxArray: contiguous cell ranges ("boxes") covering the level
- DistributionMapping: which rank owns which box
- MultiField: a cell-centred field stored per locally owned box, each box
  padded with ghost cells, plus the boundary-sum reduction that folds ghost
  contributions back into the interior cell that owns them

Grid layout (n_cell = 8, two boxes, n_grow = 1):

    Global cell:    0   1   2   3 | 4   5   6   7
    Box 0 fab:  [g] 0   1   2   3 [g]
    Box 1 fab:                 [g] 4   5   6   7 [g]

The ghost cell right of box 0 is global cell 4, owned by box 1; the
ghost cell left of box 0 is global cell -1, which is cell 7 on a periodic
level and outside the domain otherwise.

Design Philosophy:
- The grid is decomposed along a single axis (the longitudinal one)
- Fabs are plain numpy arrays of shape (n_comp, n_box_cells + 2*n_grow)
- Ownership maps are read-only for everything outside this module
"""

from enum import Enum

import numpy as np

from ..errors import CommunicationError, FieldStateError
from ..parallel import Communicator


class Geometry:
    """
    Physical description of one refinement level.

    Attributes:
        prob_lo: Lower domain edge [m]
        prob_hi: Upper domain edge [m]
        n_cell: Number of cells along the decomposed axis
        dx: Cell size [m]
        is_periodic: Whether the level wraps around
        axis: Position component the grid is laid along (0, 1 or 2)
    """

    def __init__(self, prob_lo, prob_hi, n_cell, is_periodic=False, axis=2):
        if prob_hi <= prob_lo:
            raise ValueError("prob_hi must be greater than prob_lo")
        if n_cell <= 0:
            raise ValueError("n_cell must be positive")
        self.prob_lo = float(prob_lo)
        self.prob_hi = float(prob_hi)
        self.n_cell = int(n_cell)
        self.is_periodic = bool(is_periodic)
        self.axis = int(axis)
        self.dx = (self.prob_hi - self.prob_lo) / self.n_cell

    @property
    def length(self):
        return self.prob_hi - self.prob_lo

    def periodicity(self):
        """Period of the level in cells (0 when not periodic)."""
        return self.n_cell if self.is_periodic else 0

    def cell_index(self, z):
        """Global cell index containing each position (may be out of range)."""
        return np.floor((np.asarray(z) - self.prob_lo) / self.dx).astype(np.int64)

    def cell_center(self, cells):
        return self.prob_lo + (np.asarray(cells) + 0.5) * self.dx

    def contains(self, z):
        z = np.asarray(z)
        return (z >= self.prob_lo) & (z < self.prob_hi)

    def shift(self, dz):
        """Translate the level by dz (moving window)."""
        self.prob_lo += dz
        self.prob_hi += dz

    def __repr__(self):
        return (f"Geometry(n_cell={self.n_cell}, dx={self.dx:.3e} m, "
                f"domain=[{self.prob_lo:.3e}, {self.prob_hi:.3e}] m, "
                f"periodic={self.is_periodic})")


class BoxArray:
    """
    Contiguous, non-overlapping cell ranges covering [0, n_cell).

    Box b spans cells [starts[b], ends[b]).
    """

    def __init__(self, starts, ends):
        starts = np.asarray(starts, dtype=np.int64)
        ends = np.asarray(ends, dtype=np.int64)
        if starts.size == 0 or starts.shape != ends.shape:
            raise ValueError("BoxArray needs matching, non-empty starts and ends")
        if starts[0] != 0 or np.any(ends <= starts) or np.any(starts[1:] != ends[:-1]):
            raise ValueError("Boxes must be contiguous, non-empty and start at cell 0")
        self.starts = starts
        self.ends = ends

    @classmethod
    def from_domain(cls, n_cell, max_grid_size):
        """Chop [0, n_cell) into boxes of at most max_grid_size cells."""
        if max_grid_size <= 0:
            raise ValueError("max_grid_size must be positive")
        starts = np.arange(0, n_cell, max_grid_size, dtype=np.int64)
        ends = np.minimum(starts + max_grid_size, n_cell)
        return cls(starts, ends)

    @property
    def n_cell(self):
        return int(self.ends[-1])

    def __len__(self):
        return int(self.starts.size)

    def __getitem__(self, box):
        return int(self.starts[box]), int(self.ends[box])

    def box_size(self, box):
        return int(self.ends[box] - self.starts[box])

    def box_of_cells(self, cells):
        """
        Owning box of each global cell index.

        Returns:
            boxes: int64 array, -1 where the cell is outside [0, n_cell)
        """
        cells = np.asarray(cells, dtype=np.int64)
        boxes = np.searchsorted(self.ends, cells, side="right").astype(np.int64)
        boxes[(cells < 0) | (cells >= self.n_cell)] = -1
        return boxes

    def __eq__(self, other):
        return (isinstance(other, BoxArray)
                and np.array_equal(self.starts, other.starts)
                and np.array_equal(self.ends, other.ends))

    def __repr__(self):
        return f"BoxArray(n_boxes={len(self)}, n_cell={self.n_cell})"


class DistributionMapping:
    """Box to rank ownership map."""

    def __init__(self, ranks):
        self.ranks = np.asarray(ranks, dtype=np.int64)

    @classmethod
    def round_robin(cls, n_boxes, n_ranks):
        return cls(np.arange(n_boxes, dtype=np.int64) % max(1, n_ranks))

    @classmethod
    def contiguous(cls, n_boxes, n_ranks):
        """Consecutive runs of boxes per rank, remainder to the first ranks."""
        n_ranks = max(1, n_ranks)
        counts = np.full(n_ranks, n_boxes // n_ranks, dtype=np.int64)
        counts[: (n_boxes % n_ranks)] += 1
        return cls(np.repeat(np.arange(n_ranks, dtype=np.int64), counts))

    def __getitem__(self, box):
        return int(self.ranks[box])

    def __len__(self):
        return int(self.ranks.size)

    def boxes_of(self, rank):
        return [int(b) for b in np.flatnonzero(self.ranks == rank)]

    def __repr__(self):
        return f"DistributionMapping(ranks={self.ranks.tolist()})"


class AmrGrid:
    """
    Per-level geometry, boxes and ownership shared by all species.

    Only level 0 carries particles; finer levels exist so that deposition
    passes zero and reduce every level a field solver hands in.
    """

    def __init__(self, geoms, box_arrays, dmaps):
        if not (len(geoms) == len(box_arrays) == len(dmaps)) or not geoms:
            raise ValueError("AmrGrid needs one geometry, BoxArray and mapping per level")
        for geom, ba, dm in zip(geoms, box_arrays, dmaps):
            if ba.n_cell != geom.n_cell:
                raise ValueError("BoxArray does not cover the level geometry")
            if len(dm) != len(ba):
                raise ValueError("DistributionMapping size does not match BoxArray")
        self.geoms = list(geoms)
        self.box_arrays = list(box_arrays)
        self.dmaps = list(dmaps)

    @classmethod
    def single_level(cls, n_cell, prob_lo, prob_hi, max_grid_size,
                     n_ranks=1, is_periodic=False, axis=2):
        geom = Geometry(prob_lo, prob_hi, n_cell, is_periodic=is_periodic, axis=axis)
        ba = BoxArray.from_domain(n_cell, max_grid_size)
        dm = DistributionMapping.contiguous(len(ba), n_ranks)
        return cls([geom], [ba], [dm])

    @property
    def n_levels(self):
        return len(self.geoms)

    @property
    def finest_level(self):
        return self.n_levels - 1

    def geom(self, lev):
        return self.geoms[lev]

    def box_array(self, lev):
        return self.box_arrays[lev]

    def distribution_map(self, lev):
        return self.dmaps[lev]

    def make_field(self, lev, n_comp=1, n_grow=1, rank=0, name="field"):
        return MultiField(self.box_arrays[lev], self.dmaps[lev],
                          n_comp=n_comp, n_grow=n_grow, rank=rank, name=name)


class FieldState(Enum):
    FINAL = "final"
    ACCUMULATING = "accumulating"
    ABORTED = "aborted"


class MultiField:
    """
    Cell-centred field stored as one ghost-padded array per local box.

    Deposition kernels write straight into :meth:`fab` (ghosts included).
    Reading the interior through :meth:`valid`, :meth:`to_global` or
    :meth:`sum` is refused while a deposition pass is accumulating into the
    field, or after such a pass was aborted and the field not reset.

    Attributes:
        box_array: Boxes of the level
        dmap: Ownership of the boxes
        n_comp: Number of components
        n_grow: Ghost cells on each side of every box
        rank: Rank whose boxes are stored here
        local_boxes: Sorted indices of the boxes owned by `rank`
        state: FieldState of the field
    """

    def __init__(self, box_array, dmap, n_comp=1, n_grow=1, rank=0, name="field"):
        if n_grow < 0:
            raise ValueError("n_grow must be non-negative")
        self.box_array = box_array
        self.dmap = dmap
        self.n_comp = int(n_comp)
        self.n_grow = int(n_grow)
        self.rank = int(rank)
        self.name = name
        self.local_boxes = dmap.boxes_of(self.rank)
        self.state = FieldState.FINAL
        self._fabs = {
            b: np.zeros((self.n_comp, box_array.box_size(b) + 2 * self.n_grow), dtype=np.float64)
            for b in self.local_boxes
        }

    # ---------------- state machine ----------------

    def begin_accumulation(self):
        if self.state is FieldState.ACCUMULATING:
            raise FieldStateError(f"{self.name}: a deposition pass is already accumulating")
        self.state = FieldState.ACCUMULATING

    def end_accumulation(self):
        if self.state is not FieldState.ACCUMULATING:
            raise FieldStateError(f"{self.name}: no deposition pass to close")
        self.state = FieldState.FINAL

    def abort_accumulation(self):
        self.state = FieldState.ABORTED

    @property
    def is_accumulating(self):
        return self.state is FieldState.ACCUMULATING

    def check_readable(self, what):
        if self.state is not FieldState.FINAL:
            raise FieldStateError(f"{self.name}: cannot {what} while field is {self.state.value}")

    # ---------------- access ----------------

    def fab(self, box):
        """Full array of a local box, ghosts included (writable)."""
        return self._fabs[box]

    def valid(self, box):
        """Interior view of a local box."""
        self.check_readable("read interior")
        ng = self.n_grow
        return self._fabs[box][:, ng:self._fabs[box].shape[1] - ng]

    def ghosts(self, box):
        """(left, right) ghost views of a local box."""
        ng = self.n_grow
        fab = self._fabs[box]
        return fab[:, :ng], fab[:, fab.shape[1] - ng:]

    def set_val(self, value, n_grow=None):
        """
        Set the interior and n_grow ghost layers to value.

        Args:
            value: Scalar to write
            n_grow: Ghost layers to include (default: all of them)
        """
        ng = self.n_grow if n_grow is None else min(int(n_grow), self.n_grow)
        skip = self.n_grow - ng
        for fab in self._fabs.values():
            fab[:, skip:fab.shape[1] - skip] = value
        if self.state is FieldState.ABORTED:
            self.state = FieldState.FINAL

    def add(self, other, n_grow=0):
        """Add other into self over the interior plus n_grow ghost layers."""
        if other.box_array != self.box_array or other.n_comp != self.n_comp:
            raise ValueError("MultiField.add needs matching boxes and components")
        other.check_readable("be added")
        ng = min(int(n_grow), self.n_grow, other.n_grow)
        for b in self.local_boxes:
            mine = self._fabs[b]
            theirs = other._fabs[b]
            n_box = self.box_array.box_size(b)
            mine[:, self.n_grow - ng:self.n_grow + n_box + ng] += \
                theirs[:, other.n_grow - ng:other.n_grow + n_box + ng]

    def copy(self):
        out = MultiField(self.box_array, self.dmap, n_comp=self.n_comp,
                         n_grow=self.n_grow, rank=self.rank, name=self.name)
        for b in self.local_boxes:
            out._fabs[b][...] = self._fabs[b]
        out.state = self.state
        return out

    def to_global(self, comm=None):
        """
        Interior values of the whole level, shape (n_comp, n_cell).

        Collective when comm is parallel: every rank gets the full array.
        """
        self.check_readable("gather interior")
        out = np.zeros((self.n_comp, self.box_array.n_cell), dtype=np.float64)
        for b in self.local_boxes:
            lo, hi = self.box_array[b]
            out[:, lo:hi] = self.valid(b)
        if comm is not None:
            out = comm.reduce_real_sum(out)
        return out

    def sum(self, comp=0, comm=None):
        """Sum of the interior values of one component."""
        self.check_readable("sum interior")
        total = 0.0
        for b in self.local_boxes:
            total += float(np.sum(self.valid(b)[comp]))
        if comm is not None:
            total = comm.allreduce_sum(total)
        return total

    # ---------------- boundary reduction ----------------

    def sum_boundary(self, geom, comm=None):
        """
        Fold ghost contributions into the interior cells that own them.

        Every ghost cell is added to the interior of the box owning the same
        global cell (wrapped on periodic levels, dropped outside a
        non-periodic domain), on whichever rank that box lives. Ghosts are
        left at zero, so reducing again without a new deposit leaves the
        interior unchanged.

        Collective: every rank of comm must call it.

        Args:
            geom: Geometry of the level (for periodicity)
            comm: Communicator (serial when None)
        """
        self.check_readable("reduce boundary")
        if comm is None:
            comm = Communicator(None)
        ng = self.n_grow
        width = 2 + self.n_comp
        outgoing = [[] for _ in range(comm.size)]

        if ng > 0:
            period = geom.periodicity()
            for b in self.local_boxes:
                lo, hi = self.box_array[b]
                fab = self._fabs[b]
                cells = np.concatenate([np.arange(lo - ng, lo), np.arange(hi, hi + ng)])
                values = fab[:, cells - lo + ng].copy()
                fab[:, :ng] = 0.0
                fab[:, fab.shape[1] - ng:] = 0.0

                if period:
                    cells = np.mod(cells, period)
                else:
                    inside = (cells >= 0) & (cells < geom.n_cell)
                    cells = cells[inside]
                    values = values[:, inside]
                if cells.size == 0:
                    continue

                owners = self.box_array.box_of_cells(cells)
                dest = self.dmap.ranks[owners]
                if dest.max() >= comm.size:
                    raise CommunicationError(
                        f"{self.name}: box owned by rank {int(dest.max())} "
                        f"but communicator has {comm.size} rank(s)"
                    )
                records = np.empty((cells.size, width), dtype=np.float64)
                records[:, 0] = owners
                records[:, 1] = cells
                records[:, 2:] = values.T
                for r in np.unique(dest):
                    outgoing[int(r)].append(records[dest == r])

        blocks = [np.concatenate(chunks) if chunks else np.zeros((0, width))
                  for chunks in outgoing]
        received = comm.alltoallv_float64(blocks, width)
        self._add_records(received)

    def fill_boundary(self, geom, comm=None):
        """
        Copy interior values of the owning boxes into every ghost cell.

        This is the field solver's half of the ghost protocol (the opposite
        direction of :meth:`sum_boundary`): after it, gathering from a box
        array sees the neighbour's values near the box edge. Ghosts outside a
        non-periodic domain are left untouched.

        Collective: every rank of comm must call it.
        """
        self.check_readable("fill boundary")
        if comm is None:
            comm = Communicator(None)
        ng = self.n_grow
        width = 2 + self.n_comp
        outgoing = [[] for _ in range(comm.size)]
        local = np.asarray(self.local_boxes, dtype=np.int64)

        if ng > 0 and local.size:
            period = geom.periodicity()
            ba = self.box_array
            for b in range(len(ba)):
                lo, hi = ba[b]
                n_box = hi - lo
                cols = np.concatenate([np.arange(ng), np.arange(n_box + ng, n_box + 2 * ng)])
                cells = cols - ng + lo
                if period:
                    cells = np.mod(cells, period)
                else:
                    inside = (cells >= 0) & (cells < geom.n_cell)
                    cols, cells = cols[inside], cells[inside]
                owners = ba.box_of_cells(cells)
                mine = np.isin(owners, local)
                if not np.any(mine):
                    continue
                cols, cells, owners = cols[mine], cells[mine], owners[mine]

                records = np.empty((cols.size, width), dtype=np.float64)
                records[:, 0] = b
                records[:, 1] = cols
                for owner in np.unique(owners):
                    sel = owners == owner
                    src = cells[sel] - ba.starts[owner] + ng
                    records[sel, 2:] = self._fabs[int(owner)][:, src].T
                dest = self.dmap[b]
                if dest >= comm.size:
                    raise CommunicationError(
                        f"{self.name}: box owned by rank {dest} "
                        f"but communicator has {comm.size} rank(s)"
                    )
                outgoing[dest].append(records)

        blocks = [np.concatenate(chunks) if chunks else np.zeros((0, width))
                  for chunks in outgoing]
        received = comm.alltoallv_float64(blocks, width)
        if received.shape[0] == 0:
            return
        boxes = received[:, 0].astype(np.int64)
        cols = received[:, 1].astype(np.int64)
        for b in np.unique(boxes):
            b = int(b)
            if b not in self._fabs:
                raise CommunicationError(f"{self.name}: received ghosts for box {b} not owned here")
            sel = boxes == b
            self._fabs[b][:, cols[sel]] = received[sel, 2:].T

    def _add_records(self, records):
        if records.shape[0] == 0:
            return
        owners = records[:, 0].astype(np.int64)
        cells = records[:, 1].astype(np.int64)
        for b in np.unique(owners):
            b = int(b)
            if b not in self._fabs:
                raise CommunicationError(f"{self.name}: received data for box {b} not owned here")
            sel = owners == b
            cols = cells[sel] - self.box_array.starts[b] + self.n_grow
            fab = self._fabs[b]
            for k in range(self.n_comp):
                np.add.at(fab[k], cols, records[sel, 2 + k])

    def __repr__(self):
        return (f"MultiField(name={self.name!r}, n_comp={self.n_comp}, "
                f"n_grow={self.n_grow}, local_boxes={self.local_boxes}, "
                f"state={self.state.value})")


# ==================== TESTING UTILITIES ====================

def create_test_grid(n_cell=16, max_grid_size=4, length=1.0e-3, n_ranks=1,
                     is_periodic=False, n_levels=1):
    """
    Create a small decomposed grid for unit tests.

    Args:
        n_cell: Cells on the coarsest level (default: 16)
        max_grid_size: Cells per box (default: 4)
        length: Domain length [m] (default: 1 mm)
        n_ranks: Ranks the boxes are spread over (default: 1)
        is_periodic: Periodic along the grid axis (default: False)
        n_levels: Levels, each refined by 2 over the same extent (default: 1)

    Returns:
        grid: AmrGrid instance
    """
    geoms, bas, dms = [], [], []
    for lev in range(n_levels):
        n = n_cell * 2 ** lev
        geoms.append(Geometry(0.0, length, n, is_periodic=is_periodic))
        ba = BoxArray.from_domain(n, max_grid_size)
        bas.append(ba)
        dms.append(DistributionMapping.contiguous(len(ba), n_ranks))
    return AmrGrid(geoms, bas, dms)
