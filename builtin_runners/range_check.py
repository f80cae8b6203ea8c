"""Range-check builtin: every cell must lie in [0, 2^128).

A value is range-checked by decomposing it into N_PARTS limbs of INNER_RC_BOUND_BITS
bits each; get_range_check_usage reports the extreme limbs seen, which a prover needs
to size its range-check table.
"""

from typing import Any, Dict, List, Optional, Tuple

from builtin_runners.base import BuiltinName, BuiltinRunner
from primitives.relocatable import RelocatableValue
from vm.memory import Memory

INNER_RC_BOUND_BITS = 16
N_PARTS = 8
INNER_RC_BOUND = 2 ** INNER_RC_BOUND_BITS
RC_BOUND = INNER_RC_BOUND ** N_PARTS


class RangeCheckBuiltinRunner(BuiltinRunner):
    name = BuiltinName.RANGE_CHECK
    cells_per_instance = 1
    n_input_cells = 1

    def __init__(self, included: bool = True, n_parts: int = N_PARTS):
        super().__init__(included)
        self.n_parts = n_parts
        self.bound = INNER_RC_BOUND ** n_parts

    def validate_cell(self, memory: Memory, address: RelocatableValue) -> None:
        value = memory.get(address)
        if not isinstance(value, int):
            raise self.error(f"range-check value at {address} must be an integer, found {value}",
                             address)
        if not 0 <= value < self.bound:
            raise self.error(
                f"value {value} at {address} is out of range [0, {self.bound})", address
            )

    def limbs(self, value: int) -> List[int]:
        """Little-endian 16-bit limbs of value."""
        return [(value >> (INNER_RC_BOUND_BITS * i)) & (INNER_RC_BOUND - 1)
                for i in range(self.n_parts)]

    def get_range_check_usage(self, memory: Memory) -> Optional[Tuple[int, int]]:
        """(min limb, max limb) over all written cells, or None if the segment is empty."""
        lo, hi = None, None
        for _, value in memory.segment_items(self.segment_index):
            parts = self.limbs(value)
            lo = min(parts) if lo is None else min(lo, min(parts))
            hi = max(parts) if hi is None else max(hi, max(parts))
        if lo is None:
            return None
        return lo, hi

    def air_private_input(self, memory: Memory) -> List[Dict[str, Any]]:
        return [
            {"index": address.offset, "value": hex(value)}
            for address, value in memory.segment_items(self.segment_index)
        ]
