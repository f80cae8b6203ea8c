"""Builtin runners.

Each builtin required by a program gets its own BuiltinRunner, owning one memory
segment. The catalog is closed: BUILTIN_REGISTRY maps every supported BuiltinName to
its runner class, and programs must list their builtins in canonical order.
"""

from typing import Iterable

from vm.errors import LoadError

from .base import BuiltinName, BuiltinRunner
from .bitwise import BitwiseBuiltinRunner
from .ec_op import EcOpBuiltinRunner
from .ecdsa import EcdsaBuiltinRunner
from .output import OutputBuiltinRunner
from .pedersen import PedersenBuiltinRunner
from .poseidon import PoseidonBuiltinRunner
from .range_check import RangeCheckBuiltinRunner

# Registry mapping builtin names to runner classes, in canonical order
BUILTIN_REGISTRY: dict[BuiltinName, type[BuiltinRunner]] = {
    BuiltinName.OUTPUT: OutputBuiltinRunner,
    BuiltinName.PEDERSEN: PedersenBuiltinRunner,
    BuiltinName.RANGE_CHECK: RangeCheckBuiltinRunner,
    BuiltinName.ECDSA: EcdsaBuiltinRunner,
    BuiltinName.BITWISE: BitwiseBuiltinRunner,
    BuiltinName.EC_OP: EcOpBuiltinRunner,
    BuiltinName.POSEIDON: PoseidonBuiltinRunner,
}

CANONICAL_ORDER = list(BUILTIN_REGISTRY)


def validate_builtin_names(names: Iterable[str]) -> list[BuiltinName]:
    """Check a program's builtin list against the catalog.

    Args:
        names: Builtin names as they appear in the program artifact

    Returns:
        The parsed BuiltinName values

    Raises:
        LoadError: If a name is unknown, repeated, or out of canonical order
    """
    parsed = []
    for name in names:
        try:
            parsed.append(BuiltinName(name))
        except ValueError:
            raise LoadError(
                f"Unsupported builtin '{name}'. "
                f"Available: {[b.value for b in CANONICAL_ORDER]}"
            ) from None
    positions = [CANONICAL_ORDER.index(b) for b in parsed]
    if positions != sorted(set(positions)):
        raise LoadError(
            f"Builtins {list(names)} are repeated or not in the canonical order "
            f"{[b.value for b in CANONICAL_ORDER]}"
        )
    return parsed


def get_builtin_runner(name: str, included: bool = True) -> BuiltinRunner:
    """Instantiate the runner for a builtin name.

    Raises:
        LoadError: If the name is not in the catalog
    """
    (builtin,) = validate_builtin_names([name])
    return BUILTIN_REGISTRY[builtin](included=included)


__all__ = [
    "BuiltinName",
    "BuiltinRunner",
    "OutputBuiltinRunner",
    "PedersenBuiltinRunner",
    "RangeCheckBuiltinRunner",
    "EcdsaBuiltinRunner",
    "BitwiseBuiltinRunner",
    "EcOpBuiltinRunner",
    "PoseidonBuiltinRunner",
    "BUILTIN_REGISTRY",
    "CANONICAL_ORDER",
    "validate_builtin_names",
    "get_builtin_runner",
]
