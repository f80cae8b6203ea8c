"""Output builtin: a write-only segment exposing the program's public output."""

from typing import Any, Dict, List, Optional

from builtin_runners.base import BuiltinName, BuiltinRunner
from primitives.relocatable import MaybeRelocatable
from vm.memory import Memory


class OutputBuiltinRunner(BuiltinRunner):
    name = BuiltinName.OUTPUT
    cells_per_instance = 1
    n_input_cells = 1

    def get_output(self, memory: Memory) -> List[Optional[MaybeRelocatable]]:
        """Output cells in order, with None for cells the program skipped."""
        return [memory.get(self.base + i) for i in range(self.get_used_cells(memory))]

    def air_private_input(self, memory: Memory) -> List[Dict[str, Any]]:
        return [
            {"index": address.offset, "value": value}
            for address, value in memory.segment_items(self.segment_index)
        ]
