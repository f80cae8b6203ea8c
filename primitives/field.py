"""
STARK prime field using galois library.

All values handled by the VM are elements of GF(p) with
p = 2^251 + 17 * 2^192 + 1. Memory cells hold plain Python ints already reduced
into [0, p); the galois field FF is used for inversion/division and for
vectorised views of relocated memory.
"""

from typing import Iterable, List, Optional

import galois
import numpy as np

# --- Field Construction ---

STARK_PRIME = 2**251 + 17 * 2**192 + 1

# 3 generates the multiplicative group of the STARK field. Passing it explicitly
# avoids factoring p - 1 at import time.
FF = galois.GF(STARK_PRIME, primitive_element=3, verify=False)
"""Base field GF(p) - STARK prime field."""

# Offsets and ap increments are encoded as 16-bit biased values.
OFFSET_BITS = 16


# --- Scalar Helpers ---

def felt(value: int, prime: int = STARK_PRIME) -> int:
    """Reduce an integer into the canonical range [0, prime)."""
    return value % prime


def felt_add(a: int, b: int, prime: int = STARK_PRIME) -> int:
    return (a + b) % prime


def felt_sub(a: int, b: int, prime: int = STARK_PRIME) -> int:
    return (a - b) % prime


def felt_mul(a: int, b: int, prime: int = STARK_PRIME) -> int:
    return (a * b) % prime


def felt_inv(a: int) -> int:
    """
    Multiplicative inverse in GF(p).

    Raises:
        ZeroDivisionError: If a is zero modulo p
    """
    if a % STARK_PRIME == 0:
        raise ZeroDivisionError("Cannot invert 0 in the STARK field")
    return int(FF(a % STARK_PRIME) ** -1)


def div_mod(n: int, m: int, prime: int = STARK_PRIME) -> int:
    """
    Return x such that x * m = n (mod prime).

    Raises:
        ZeroDivisionError: If m is zero modulo prime
    """
    if m % prime == 0:
        raise ZeroDivisionError(f"Cannot divide {n} by 0 in the field")
    if prime == STARK_PRIME:
        return int(FF(n % prime) / FF(m % prime))
    return (n * pow(m, -1, prime)) % prime


def to_signed(value: int, prime: int = STARK_PRIME) -> int:
    """Map a field element to the signed range (-prime/2, prime/2]."""
    value %= prime
    return value - prime if value > prime // 2 else value


def is_quad_residue(value: int) -> bool:
    """Euler's criterion in GF(p)."""
    value %= STARK_PRIME
    return value == 0 or pow(value, (STARK_PRIME - 1) // 2, STARK_PRIME) == 1


def sqrt(value: int) -> int:
    """
    Return the smaller square root of a quadratic residue.

    Raises:
        ValueError: If value has no square root in GF(p)
    """
    value %= STARK_PRIME
    if not is_quad_residue(value):
        raise ValueError(f"{value} is not a quadratic residue")
    if value == 0:
        return 0
    # np.sqrt on a field array is galois' square-root ufunc
    root = int(np.sqrt(FF([value]))[0])
    return min(root, STARK_PRIME - root)


# --- Vector Helpers ---

def to_field_array(values: Iterable[Optional[int]]) -> FF:
    """Build an FF array from ints, mapping missing cells (None) to 0."""
    return FF([0 if v is None else v % STARK_PRIME for v in values])


def from_field_array(array: FF) -> List[int]:
    """Convert an FF array back to plain ints."""
    return [int(x) for x in array]
