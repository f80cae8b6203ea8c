"""Relocation of a halted run into a flat address space.

Segments are laid out one after the other in allocation order, starting at address 0:
the base of segment i is the sum of the sizes of segments 0..i-1. Every relocatable
cell and every trace register becomes base[segment] + offset. Holes (cells that were
never written) stay None in the relocated memory.

The binary memory and trace files are the exception: they start at address 1, which is
the numbering the reference runner writes.
"""

import logging
import struct
from dataclasses import dataclass
from typing import BinaryIO, FrozenSet, List, Optional, Sequence, Tuple

import numpy as np

from primitives.field import FF, to_field_array
from primitives.relocatable import MaybeRelocatable, RelocatableValue
from vm.memory import Memory
from vm.vm_core import TraceEntry

logger = logging.getLogger(__name__)

# Bytes per field element in the binary memory file.
FELT_BYTES = 32

# First address of the flat address space in the binary files.
FILE_BASE_ADDRESS = 1


# --- Relocation Table ---

@dataclass(frozen=True)
class RelocationTable:
    """Base address of every segment in the flat address space."""
    bases: Tuple[int, ...]

    @classmethod
    def from_sizes(cls, sizes: Sequence[int]) -> "RelocationTable":
        bases = []
        total = 0
        for size in sizes:
            bases.append(total)
            total += size
        return cls(tuple(bases))

    def relocate_address(self, address: RelocatableValue) -> int:
        if not 0 <= address.segment_index < len(self.bases):
            raise ValueError(f"No relocation base for segment {address.segment_index}")
        return self.bases[address.segment_index] + address.offset

    def relocate_value(self, value: MaybeRelocatable) -> int:
        if isinstance(value, RelocatableValue):
            return self.relocate_address(value)
        return value


# --- Relocation ---

def relocate_memory(memory: Memory) -> Tuple[RelocationTable, List[Optional[int]]]:
    """
    Flatten all segments of memory.

    Returns:
        (table, cells) where len(cells) equals the sum of all segment sizes
    """
    sizes = memory.segment_sizes()
    table = RelocationTable.from_sizes(sizes)
    cells: List[Optional[int]] = []
    for segment_index in range(memory.n_segments):
        cells.extend(
            None if value is None else table.relocate_value(value)
            for value in memory.segment_cells(segment_index)
        )
    return table, cells


def relocate_trace(trace: Sequence[TraceEntry], table: RelocationTable) -> np.ndarray:
    """Relocated trace as an (n_steps, 3) uint64 array of (pc, ap, fp)."""
    rows = [
        (table.relocate_address(e.pc), table.relocate_address(e.ap), table.relocate_address(e.fp))
        for e in trace
    ]
    return np.array(rows, dtype=np.uint64).reshape(len(rows), 3)


# --- Relocated Run ---

@dataclass
class RelocatedRun:
    """
    Output of a halted run, consumed by a prover.

    Attributes:
        memory: Flat memory, None at holes
        trace: (n_steps, 3) array of relocated (pc, ap, fp)
        table: The relocation table used
        pointer_cells: Flat addresses of the cells that held relocatable values
    """
    memory: List[Optional[int]]
    trace: np.ndarray
    table: RelocationTable
    pointer_cells: FrozenSet[int] = frozenset()

    @property
    def n_steps(self) -> int:
        return self.trace.shape[0]

    def memory_as_field_array(self) -> FF:
        """Memory as a galois FF array, holes read as 0."""
        return to_field_array(self.memory)

    # --- Binary Files ---
    # The binary files number addresses from FILE_BASE_ADDRESS, as cairo-run does.
    # Addresses, pointer values and registers are shifted on write.

    def write_binary_memory(self, f: BinaryIO) -> None:
        """Write (address: u64 LE, value: 32-byte LE) pairs for every written cell."""
        for address, value in enumerate(self.memory):
            if value is None:
                continue
            if address in self.pointer_cells:
                value += FILE_BASE_ADDRESS
            f.write(struct.pack("<Q", address + FILE_BASE_ADDRESS))
            f.write(value.to_bytes(FELT_BYTES, "little"))

    def write_binary_trace(self, f: BinaryIO) -> None:
        """Write one (ap, fp, pc) triple of u64 LE per step."""
        for pc, ap, fp in self.trace.tolist():
            f.write(struct.pack("<3Q", ap + FILE_BASE_ADDRESS, fp + FILE_BASE_ADDRESS,
                                pc + FILE_BASE_ADDRESS))


def relocate_run(memory: Memory, trace: Sequence[TraceEntry]) -> RelocatedRun:
    table, cells = relocate_memory(memory)
    pointer_cells = frozenset(
        table.relocate_address(address)
        for address, value in memory.items()
        if isinstance(value, RelocatableValue)
    )
    relocated = RelocatedRun(memory=cells, trace=relocate_trace(trace, table), table=table,
                             pointer_cells=pointer_cells)
    logger.info("Relocated %d memory cells and %d trace entries", len(cells), relocated.n_steps)
    return relocated
