"""
Pedersen, Poseidon and ECDSA primitives over the STARK field.

Thin wrapper around the cairo-lang crypto package, which holds the authoritative
curve points and round constants. Builtins and hints only import from here, so the
backing implementation can be swapped in a single place.
"""

from functools import reduce
from typing import List, Sequence, Tuple

from starkware.cairo.common.poseidon_hash import (
    poseidon_hash as _poseidon_hash,
    poseidon_hash_many as _poseidon_hash_many,
    poseidon_perm as _poseidon_perm,
)
from starkware.crypto.signature.fast_pedersen_hash import pedersen_hash as _pedersen_hash
from starkware.crypto.signature.signature import (
    ALPHA,
    BETA,
    EC_ORDER,
    FIELD_PRIME,
    verify as _verify,
)

from primitives.field import STARK_PRIME

if FIELD_PRIME != STARK_PRIME:
    raise ImportError("cairo-lang field prime does not match the VM prime")

# Curve y^2 = x^3 + ALPHA * x + BETA over GF(p)
EC_ALPHA = ALPHA
EC_BETA = BETA
EC_CURVE_ORDER = EC_ORDER

POSEIDON_STATE_SIZE = 3

EcPoint = Tuple[int, int]


def pedersen_hash(x: int, y: int) -> int:
    """Pedersen hash of two field elements."""
    return _pedersen_hash(x, y)


def pedersen_hash_array(elements: Sequence[int]) -> int:
    """
    Hash chain h(...h(h(0, e0), e1)..., n) over a list of elements.

    The length is hashed in last, so chains of different lengths never collide.
    """
    return pedersen_hash(reduce(pedersen_hash, elements, 0), len(elements))


def poseidon_perm(x: int, y: int, z: int) -> List[int]:
    """Full Hades permutation of a 3-element state."""
    return list(_poseidon_perm(x, y, z))


def poseidon_hash(x: int, y: int) -> int:
    return _poseidon_hash(x, y)


def poseidon_hash_many(elements: Sequence[int]) -> int:
    return _poseidon_hash_many(list(elements))


def verify_ecdsa(msg_hash: int, r: int, s: int, public_key: int) -> bool:
    """
    Verify an ECDSA signature on the STARK curve.

    Args:
        msg_hash: Signed message hash
        r, s: Signature components
        public_key: x coordinate of the signer's public key

    Returns:
        True if the signature is valid

    Raises:
        ValueError: If any input is outside the range accepted by the scheme
    """
    try:
        return _verify(msg_hash=msg_hash, r=r, s=s, public_key=public_key)
    except AssertionError as exc:
        raise ValueError(f"Malformed signature input: {exc}") from exc


def is_on_curve(point: EcPoint) -> bool:
    x, y = point
    return (y * y - (x * x * x + EC_ALPHA * x + EC_BETA)) % STARK_PRIME == 0


__all__ = [
    "EC_ALPHA",
    "EC_BETA",
    "EC_CURVE_ORDER",
    "POSEIDON_STATE_SIZE",
    "EcPoint",
    "pedersen_hash",
    "pedersen_hash_array",
    "poseidon_perm",
    "poseidon_hash",
    "poseidon_hash_many",
    "verify_ecdsa",
    "is_on_curve",
]
