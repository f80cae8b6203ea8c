"""Bitwise builtin: instances of (x, y, x & y, x ^ y, x | y) with x, y < 2^251."""

from typing import Any, Dict, List, Optional

from builtin_runners.base import BuiltinName, BuiltinRunner
from primitives.relocatable import RelocatableValue
from vm.memory import Memory

TOTAL_N_BITS = 251


class BitwiseBuiltinRunner(BuiltinRunner):
    name = BuiltinName.BITWISE
    cells_per_instance = 5
    n_input_cells = 2

    def __init__(self, included: bool = True, total_n_bits: int = TOTAL_N_BITS):
        super().__init__(included)
        self.total_n_bits = total_n_bits

    def validate_cell(self, memory: Memory, address: RelocatableValue) -> None:
        if address.offset % self.cells_per_instance >= self.n_input_cells:
            return
        value = memory.get(address)
        if not isinstance(value, int):
            raise self.error(f"expected an integer at {address}, found {value}", address)
        if value >= 2 ** self.total_n_bits:
            raise self.error(
                f"expected integer at {address} to be smaller than 2^{self.total_n_bits}, "
                f"got {value}",
                address,
            )

    def deduce(self, address: RelocatableValue, memory: Memory) -> Optional[int]:
        index = address.offset % self.cells_per_instance
        if index < self.n_input_cells:
            return None
        inputs = self.instance_inputs(memory, address)
        if inputs is None:
            return None
        first = address - index
        for i, value in enumerate(inputs):
            if value >= 2 ** self.total_n_bits:
                raise self.error(
                    f"expected integer at {first + i} to be smaller than "
                    f"2^{self.total_n_bits}, got {value}",
                    first + i,
                )
        x, y = inputs
        if index == 2:
            return x & y
        if index == 3:
            return x ^ y
        return x | y

    def air_private_input(self, memory: Memory) -> List[Dict[str, Any]]:
        res = []
        for instance in range(self.get_used_instances(memory)):
            inputs = self.instance_inputs(memory, self.base + instance * self.cells_per_instance)
            if inputs is not None:
                res.append({"index": instance, "x": hex(inputs[0]), "y": hex(inputs[1])})
        return res
