"""Primitives - field arithmetic, addresses and hashing building blocks."""

from primitives.field import (
    FF,
    STARK_PRIME,
    div_mod,
    felt,
    felt_add,
    felt_inv,
    felt_mul,
    felt_sub,
    to_field_array,
    to_signed,
)
from primitives.relocatable import (
    MaybeRelocatable,
    RelocatableValue,
    is_relocatable,
)

__all__ = [
    # Field
    "FF",
    "STARK_PRIME",
    "felt",
    "felt_add",
    "felt_sub",
    "felt_mul",
    "felt_inv",
    "div_mod",
    "to_signed",
    "to_field_array",
    # Addresses
    "RelocatableValue",
    "MaybeRelocatable",
    "is_relocatable",
]
