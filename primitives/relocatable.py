"""Relocatable addresses and the MaybeRelocatable value type."""

from dataclasses import dataclass
from typing import Tuple, Union


@dataclass(frozen=True, order=True)
class RelocatableValue:
    """
    A memory address identified by (segment_index, offset).

    Addresses stay symbolic until the run halts and memory is relocated into a single
    linear address space. Ordering and equality are defined on the pair.
    """
    segment_index: int
    offset: int

    def __post_init__(self) -> None:
        if self.segment_index < 0:
            raise ValueError(f"Segment index must be non-negative, got {self.segment_index}")
        if self.offset < 0:
            raise ValueError(
                f"Offset must be non-negative, got {self.segment_index}:{self.offset}"
            )

    def __add__(self, other: "MaybeRelocatable") -> "RelocatableValue":
        if isinstance(other, int):
            return RelocatableValue(self.segment_index, self.offset + other)
        if isinstance(other, RelocatableValue):
            raise TypeError(f"Cannot add two relocatable values: {self} + {other}.")
        return NotImplemented

    def __radd__(self, other: "MaybeRelocatable") -> "RelocatableValue":
        return self + other

    def __sub__(self, other: "MaybeRelocatable") -> "MaybeRelocatable":
        if isinstance(other, int):
            return RelocatableValue(self.segment_index, self.offset - other)
        if isinstance(other, RelocatableValue):
            if self.segment_index != other.segment_index:
                raise TypeError(
                    "Can only subtract two relocatable values of the same segment "
                    f"({self.segment_index} != {other.segment_index})."
                )
            return self.offset - other.offset
        return NotImplemented

    def to_tuple(self) -> Tuple[int, int]:
        return (self.segment_index, self.offset)

    @classmethod
    def from_tuple(cls, value: Tuple[int, int]) -> "RelocatableValue":
        return cls(value[0], value[1])

    def __str__(self) -> str:
        return f"{self.segment_index}:{self.offset}"

    def __repr__(self) -> str:
        return f"RelocatableValue({self.segment_index}, {self.offset})"


MaybeRelocatable = Union[int, RelocatableValue]
"""A memory cell or register value: a field element or an address."""


def is_relocatable(value: MaybeRelocatable) -> bool:
    return isinstance(value, RelocatableValue)
