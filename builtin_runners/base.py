"""Base class for builtin runners.

A builtin owns one dedicated memory segment, laid out as consecutive instances of
`cells_per_instance` cells: the first `n_input_cells` cells of an instance are written
by the program, the remaining ones are deduced by the builtin. Builtins validate the
cells of their segment (incrementally on write, and in full at the end of the run) and
deduce missing output cells on demand when memory reads them.
"""

import math
from abc import ABC
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from primitives.relocatable import MaybeRelocatable, RelocatableValue
from vm.errors import BuiltinError
from vm.memory import Memory


class BuiltinName(Enum):
    """Closed catalog of supported builtins, in canonical order."""
    OUTPUT = "output"
    PEDERSEN = "pedersen"
    RANGE_CHECK = "range_check"
    ECDSA = "ecdsa"
    BITWISE = "bitwise"
    EC_OP = "ec_op"
    POSEIDON = "poseidon"

    @property
    def ptr_name(self) -> str:
        """Name of the builtin pointer argument in Cairo code (e.g. 'range_check_ptr')."""
        return f"{self.value}_ptr"


class BuiltinRunner(ABC):
    """Validation and deduction logic for one builtin segment."""

    name: ClassVar[BuiltinName]
    cells_per_instance: ClassVar[int] = 1
    n_input_cells: ClassVar[int] = 1

    def __init__(self, included: bool = True):
        self.included = included
        self.base: Optional[RelocatableValue] = None
        self.stop_ptr: Optional[RelocatableValue] = None

    @property
    def segment_index(self) -> int:
        if self.base is None:
            raise RuntimeError(f"{self.name.value} builtin segment not initialized")
        return self.base.segment_index

    # --- Setup ---

    def initialize_segments(self, memory: Memory) -> None:
        self.base = memory.add_segment()

    def initial_stack(self) -> List[MaybeRelocatable]:
        """Values pushed on the execution stack for the main function's builtin pointer."""
        return [self.base] if self.included else []

    def add_validation_rules(self, memory: Memory) -> None:
        memory.add_validation_rule(self.segment_index, self._validation_rule)

    def add_auto_deduction_rules(self, memory: Memory) -> None:
        memory.add_auto_deduction_rule(self.segment_index, self._deduction_rule)

    def _validation_rule(self, memory: Memory, address: RelocatableValue) -> None:
        self.validate_cell(memory, address)

    def _deduction_rule(self, memory: Memory, address: RelocatableValue) -> Optional[MaybeRelocatable]:
        return self.deduce(address, memory)

    # --- Cell Logic ---

    def deduce(self, address: RelocatableValue, memory: Memory) -> Optional[MaybeRelocatable]:
        """
        Compute the value of an unwritten cell from its written siblings.

        Returns None if the cell is not deducible (yet).

        Raises:
            BuiltinError: If the inputs are present but violate the builtin's domain
        """
        return None

    def validate_cell(self, memory: Memory, address: RelocatableValue) -> None:
        """Check a single written cell. Raises BuiltinError on violation."""

    def validate(self, memory: Memory) -> None:
        """
        Check every written cell of the segment.

        Output cells that were written by the program (rather than deduced) must match
        the value the builtin would have deduced.

        Raises:
            BuiltinError: On the first violating cell
        """
        for address, value in memory.segment_items(self.segment_index):
            self.validate_cell(memory, address)
            if address.offset % self.cells_per_instance < self.n_input_cells:
                continue
            expected = self.deduce(address, memory)
            if expected is not None and expected != value:
                raise self.error(f"expected {expected} at {address}, found {value}", address)

    def error(self, message: str, address: Optional[RelocatableValue] = None) -> BuiltinError:
        return BuiltinError(self.name.value, message, address=address)

    def instance_inputs(self, memory: Memory, address: RelocatableValue) -> Optional[List[int]]:
        """
        Input cells of the instance containing address, or None if any is unwritten.

        Raises:
            BuiltinError: If an input is a relocatable value
        """
        first = address - address.offset % self.cells_per_instance
        values = []
        for i in range(self.n_input_cells):
            value = memory.get(first + i)
            if value is None:
                return None
            if not isinstance(value, int):
                raise self.error(f"expected an integer at {first + i}, found {value}", first + i)
            values.append(value)
        return values

    # --- Accounting ---

    def get_used_cells(self, memory: Memory) -> int:
        return memory.segment_size(self.segment_index)

    def get_used_instances(self, memory: Memory) -> int:
        return math.ceil(self.get_used_cells(memory) / self.cells_per_instance)

    def final_stack(self, memory: Memory, pointer: RelocatableValue) -> RelocatableValue:
        """
        Read the builtin pointer returned by main and check it ends the used segment.

        Args:
            memory: Run memory
            pointer: Address one past the builtin's slot in the return values

        Returns:
            Address of the builtin's slot (the pointer for the previous builtin)
        """
        if not self.included:
            return pointer
        stop_ptr = memory.read(pointer - 1)
        if not isinstance(stop_ptr, RelocatableValue) or stop_ptr.segment_index != self.segment_index:
            raise self.error(f"invalid stop pointer {stop_ptr}", pointer - 1)
        used = self.get_used_cells(memory)
        if stop_ptr.offset != used:
            raise self.error(
                f"invalid stop pointer {stop_ptr}: expected offset {used}", pointer - 1
            )
        self.stop_ptr = stop_ptr
        return pointer - 1

    def air_private_input(self, memory: Memory) -> List[Dict[str, Any]]:
        """Per-instance inputs for a prover."""
        return []

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base={self.base}, included={self.included})"
