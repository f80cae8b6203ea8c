"""
Segmented write-once memory.

Memory is an arena of independently growable segments addressed by
RelocatableValue(segment_index, offset). A cell can be written once; writing the same
value again is a no-op, writing a different value is a MemoryConsistencyError.
Reading an unwritten cell first tries the auto-deduction rules registered for the
segment (builtins) and only then fails with UnknownCellError.
"""

import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from primitives.field import STARK_PRIME
from primitives.relocatable import MaybeRelocatable, RelocatableValue
from vm.errors import MemoryConsistencyError, UnknownCellError, UnknownSegmentError

logger = logging.getLogger(__name__)

# --- Type Aliases ---

ValidationRule = Callable[["Memory", RelocatableValue], None]
DeductionRule = Callable[["Memory", RelocatableValue], Optional[MaybeRelocatable]]

# Unwritten cells hold None, which is never a valid field element.
Segment = List[Optional[MaybeRelocatable]]

# A single write may extend a segment by at most this many cells.
MAX_SEGMENT_GROWTH = 2**24


class Memory:
    """Write-once segmented memory of a single run."""

    def __init__(self, prime: int = STARK_PRIME):
        self.prime = prime
        self._segments: List[Segment] = []
        self.validation_rules: Dict[int, List[ValidationRule]] = {}
        self.auto_deduction_rules: Dict[int, List[DeductionRule]] = {}
        self.frozen = False

    # --- Segments ---

    def add_segment(self) -> RelocatableValue:
        """Allocate a new empty segment and return its base address."""
        if self.frozen:
            raise MemoryConsistencyError("Cannot add a segment to frozen memory")
        self._segments.append([])
        return RelocatableValue(len(self._segments) - 1, 0)

    # Hint code expects segments.add()
    add = add_segment

    @property
    def n_segments(self) -> int:
        return len(self._segments)

    def segment_size(self, segment_index: int) -> int:
        """Size of a segment: one past its highest written offset."""
        self._segment(segment_index)
        return len(self._segments[segment_index])

    def segment_sizes(self) -> List[int]:
        return [len(s) for s in self._segments]

    def segment_cells(self, segment_index: int) -> List[Optional[MaybeRelocatable]]:
        """Copy of a segment's cells (None for holes)."""
        return list(self._segment(segment_index))

    def _segment(self, segment_index: int) -> Segment:
        if not 0 <= segment_index < len(self._segments):
            raise UnknownSegmentError(
                f"Segment {segment_index} was never allocated "
                f"(number of segments: {len(self._segments)})"
            )
        return self._segments[segment_index]

    # --- Reads ---

    def get(self, address: RelocatableValue,
            default: Optional[MaybeRelocatable] = None) -> Optional[MaybeRelocatable]:
        """Non-deducing lookup. Returns default for unwritten cells."""
        address = self._check_address(address)
        segment = self._segment(address.segment_index)
        if address.offset < len(segment):
            value = segment[address.offset]
            if value is not None:
                return value
        return default

    def __contains__(self, address: RelocatableValue) -> bool:
        return self.get(address) is not None

    def read(self, address: RelocatableValue) -> MaybeRelocatable:
        """
        Read a cell, deducing it through the segment's builtin if unwritten.

        Raises:
            UnknownCellError: If the cell is unwritten and cannot be deduced
        """
        value = self.get(address)
        if value is None:
            value = self.deduce(address)
        if value is None:
            raise UnknownCellError(f"Unknown value for memory cell at address {address}",
                                   address=address)
        return value

    def __getitem__(self, address: RelocatableValue) -> MaybeRelocatable:
        return self.read(address)

    def deduce(self, address: RelocatableValue) -> Optional[MaybeRelocatable]:
        """Run the auto-deduction rules of the address' segment; write and return a hit."""
        address = self._check_address(address)
        for rule in self.auto_deduction_rules.get(address.segment_index, []):
            value = rule(self, address)
            if value is not None:
                self.write(address, value)
                return value
        return None

    # --- Writes ---

    def write(self, address: RelocatableValue, value: MaybeRelocatable) -> None:
        """
        Write a cell.

        Raises:
            MemoryConsistencyError: If the cell already holds a different value, or the
                offset lies too far past the end of its segment
            UnknownSegmentError: If the segment was never allocated
        """
        address = self._check_address(address)
        value = self._normalize(value)
        segment = self._segment(address.segment_index)
        if address.offset >= len(segment):
            if self.frozen:
                raise MemoryConsistencyError("Cannot write to frozen memory", address=address)
            growth = address.offset + 1 - len(segment)
            if growth > MAX_SEGMENT_GROWTH:
                raise MemoryConsistencyError(
                    f"Write at {address} would grow segment {address.segment_index} "
                    f"by {growth} cells (limit {MAX_SEGMENT_GROWTH})",
                    address=address,
                )
            segment.extend([None] * growth)

        current = segment[address.offset]
        if current is None:
            if self.frozen:
                raise MemoryConsistencyError("Cannot write to frozen memory", address=address)
            segment[address.offset] = value
            for rule in self.validation_rules.get(address.segment_index, []):
                rule(self, address)
        elif current != value:
            raise MemoryConsistencyError(
                f"Inconsistent memory assignment at address {address}. "
                f"{current} != {value}.",
                address=address,
            )

    def __setitem__(self, address: RelocatableValue, value: MaybeRelocatable) -> None:
        self.write(address, value)

    def _normalize(self, value: MaybeRelocatable) -> MaybeRelocatable:
        if isinstance(value, RelocatableValue):
            return value
        if isinstance(value, int):
            return value % self.prime
        raise TypeError(f"Memory values must be int or RelocatableValue, got {type(value).__name__}")

    @staticmethod
    def _check_address(address: RelocatableValue) -> RelocatableValue:
        if not isinstance(address, RelocatableValue):
            raise TypeError(f"Memory addresses must be relocatable, got {address!r}")
        return address

    # --- Rules ---

    def add_validation_rule(self, segment_index: int, rule: ValidationRule) -> None:
        self.validation_rules.setdefault(segment_index, []).append(rule)

    def add_auto_deduction_rule(self, segment_index: int, rule: DeductionRule) -> None:
        self.auto_deduction_rules.setdefault(segment_index, []).append(rule)

    def validate_existing_memory(self) -> None:
        """Apply validation rules to cells written before the rules were registered."""
        for segment_index, rules in self.validation_rules.items():
            for address, _ in self.segment_items(segment_index):
                for rule in rules:
                    rule(self, address)

    # --- Iteration ---

    def segment_items(self, segment_index: int) -> Iterator[Tuple[RelocatableValue, MaybeRelocatable]]:
        """Written (address, value) pairs of a segment in offset order."""
        for offset, value in enumerate(self._segment(segment_index)):
            if value is not None:
                yield RelocatableValue(segment_index, offset), value

    def items(self) -> Iterator[Tuple[RelocatableValue, MaybeRelocatable]]:
        for segment_index in range(len(self._segments)):
            yield from self.segment_items(segment_index)

    def __len__(self) -> int:
        return sum(1 for _ in self.items())

    # --- Bulk helpers (hint-facing) ---

    def load_data(self, ptr: RelocatableValue, data: Iterable[MaybeRelocatable]) -> RelocatableValue:
        """Write consecutive values starting at ptr. Returns the address after the last one."""
        offset = 0
        for offset, value in enumerate(data, start=1):
            self.write(ptr + (offset - 1), value)
        return ptr + offset

    def gen_arg(self, arg, apply_modulo_to_args: bool = True) -> MaybeRelocatable:
        """Convert a Python argument to a memory value, allocating segments for iterables."""
        if isinstance(arg, (list, tuple)):
            base = self.add_segment()
            self.write_arg(base, arg, apply_modulo_to_args=apply_modulo_to_args)
            return base
        if apply_modulo_to_args and isinstance(arg, int):
            return arg % self.prime
        return arg

    def write_arg(self, ptr: RelocatableValue, arg, apply_modulo_to_args: bool = True) -> RelocatableValue:
        data = [self.gen_arg(x, apply_modulo_to_args=apply_modulo_to_args) for x in arg]
        return self.load_data(ptr, data)

    def freeze(self) -> None:
        """Forbid any further allocation or write (called once the run has ended)."""
        self.frozen = True
        logger.debug("Memory frozen with segment sizes %s", self.segment_sizes())
