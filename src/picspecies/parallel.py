"""
Distributed-memory primitives used by the species coordination layer.

Provides:
- optional mpi4py initialization (serial runs need no MPI at all)
- scalar and long-integer sum reductions
- all-to-all exchange of variable-sized float64 payloads

Every operation here is a blocking collective: all ranks of the
communicator must call it, in the same order, or the run stalls.
"""

import logging

import numpy as np

from .errors import CommunicationError

logger = logging.getLogger(__name__)

# Serial runs work without mpi4py installed
try:
    from mpi4py import MPI  # type: ignore
    HAVE_MPI = True
except ImportError:
    MPI = None  # type: ignore
    HAVE_MPI = False


class Communicator:
    """
    Thin wrapper around an mpi4py communicator.

    A wrapped ``None`` (or a size-1 communicator) means the whole domain is
    owned by this process, so reductions are identities and exchanges only
    return what this rank addressed to itself.

    Any object exposing ``Get_rank``, ``Get_size``, ``allreduce``,
    ``alltoall`` and ``Barrier`` with mpi4py semantics can be wrapped.

    Attributes:
        comm: Underlying communicator or None
        rank: Rank of this process
        size: Number of participating ranks
    """

    def __init__(self, comm=None):
        self.comm = comm
        if comm is None:
            self.rank, self.size = 0, 1
        else:
            self.rank = int(comm.Get_rank())
            self.size = int(comm.Get_size())

    @classmethod
    def world(cls, force_disabled=False):
        """
        Communicator over all launched processes.

        Args:
            force_disabled: Run serially even under an MPI launcher

        Returns:
            Communicator
        """
        if force_disabled or not HAVE_MPI:
            if not HAVE_MPI:
                logger.warning("mpi4py not available; running on a single rank.")
            return cls(None)
        return cls(MPI.COMM_WORLD)

    @property
    def is_parallel(self):
        return self.comm is not None and self.size > 1

    def allreduce_sum(self, value):
        """Sum a scalar over all ranks."""
        if not self.is_parallel:
            return value
        return self.comm.allreduce(value)

    def reduce_long_sum(self, values):
        """
        Elementwise sum of an integer array over all ranks.

        Args:
            values: Array-like of per-rank counts

        Returns:
            Array (int64) holding the global counts
        """
        local = np.asarray(values, dtype=np.int64)
        if not self.is_parallel:
            return local.copy()
        return np.asarray(self.comm.allreduce(local), dtype=np.int64)

    def reduce_real_sum(self, values):
        """Elementwise sum of a float64 array over all ranks."""
        local = np.asarray(values, dtype=np.float64)
        if not self.is_parallel:
            return local.copy()
        return np.asarray(self.comm.allreduce(local), dtype=np.float64)

    def alltoallv_float64(self, sendbuf_by_rank, row_width):
        """
        Exchange variable-sized (n, row_width) float64 blocks between ranks.

        Args:
            sendbuf_by_rank: One array per destination rank, each of shape
                (n_dst, row_width) (n_dst may be zero)
            row_width: Number of float64 values per record

        Returns:
            recv: Array (n_recv, row_width) concatenated in source-rank order

        Raises:
            CommunicationError: If a received payload is not a whole number
                of records
        """
        if len(sendbuf_by_rank) != self.size:
            raise CommunicationError(
                f"expected {self.size} send buffers, got {len(sendbuf_by_rank)}"
            )
        if not self.is_parallel:
            received = [np.asarray(sendbuf_by_rank[0], dtype=np.float64)]
        else:
            flat = [np.ascontiguousarray(b, dtype=np.float64).ravel() for b in sendbuf_by_rank]
            received = self.comm.alltoall(flat)

        chunks = []
        for buf in received:
            buf = np.asarray(buf, dtype=np.float64).ravel()
            if buf.size % row_width != 0:
                raise CommunicationError(
                    f"received payload of {buf.size} values is not divisible by {row_width}"
                )
            if buf.size:
                chunks.append(buf.reshape((-1, row_width)))
        if not chunks:
            return np.zeros((0, row_width), dtype=np.float64)
        return np.concatenate(chunks, axis=0)

    def barrier(self):
        if self.is_parallel:
            self.comm.Barrier()

    def __repr__(self):
        return f"Communicator(rank={self.rank}, size={self.size})"
