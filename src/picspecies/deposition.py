"""
Deposition sessions: zero, accumulate from every species, reduce once.

Shared deposition targets (charge and current densities) follow a strict
protocol each pass:

1. zero the field everywhere, ghost cells included;
2. let every species add its local-only contribution;
3. fold the ghost contributions into their owning cells with exactly one
   boundary reduction (skipped for local passes).

DepositionSession runs steps 1 and 3 around the body of a ``with`` block, and
keeps the fields in the ACCUMULATING state meanwhile so that nothing reads a
half-deposited value.
"""

import logging

from .errors import FieldStateError
from .parallel import Communicator

logger = logging.getLogger(__name__)


class DepositionSession:
    """
    Context manager for one deposition pass over a set of fields.

    Usage:
        with DepositionSession([rho], [geom], comm) as session:
            for species in container:
                species.deposit_charge_to(rho)
        # rho is reduced and readable here

    If the body raises, the fields are left unreduced and marked ABORTED;
    they become usable again after the next zeroing (set_val or a new
    session). The exception propagates.

    Attributes:
        fields: MultiFields written during the pass
        geoms: Geometry of each field's level (for periodicity)
        local: Skip the boundary reduction
        reductions: Number of boundary reductions performed on exit
    """

    def __init__(self, fields, geoms, comm=None, local=False):
        fields = list(fields)
        geoms = list(geoms)
        if len(fields) != len(geoms):
            raise ValueError("DepositionSession needs one geometry per field")
        if len({id(f) for f in fields}) != len(fields):
            raise FieldStateError("the same field appears twice in one deposition pass")
        self.fields = fields
        self.geoms = geoms
        self.comm = comm if comm is not None else Communicator(None)
        self.local = local
        self.reductions = 0

    def __enter__(self):
        for f in self.fields:
            if f.is_accumulating:
                raise FieldStateError(f"{f.name}: a deposition pass is already accumulating")
        for f in self.fields:
            f.set_val(0.0)
            f.begin_accumulation()
        logger.debug("Deposition pass opened on %s", [f.name for f in self.fields])
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            for f in self.fields:
                f.abort_accumulation()
            logger.debug("Deposition pass aborted by %s", exc_type.__name__)
            return False

        for f in self.fields:
            f.end_accumulation()
        if not self.local:
            for f, geom in zip(self.fields, self.geoms):
                f.sum_boundary(geom, self.comm)
                self.reductions += 1
        logger.debug("Deposition pass closed (%d reductions)", self.reductions)
        return False
