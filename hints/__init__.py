"""Hint processing.

Hints are compiled once per run. Hint code found in HINT_REGISTRY runs as a native
Python function; any other code falls back to being executed as Python source (when
the run config allows it), with the same variables the Cairo toolchain exposes.
"""

from . import builtin_hints as h
from .base import (
    ExecutionScopes,
    HintContext,
    HintFunc,
    HintProcessor,
    compile_python_hint,
    normalize_hint_code,
)
from .dict_manager import DictManager, DictTracker
from .ids import IdsManager

# Registry mapping (normalized) hint code to native implementations
HINT_REGISTRY: dict[str, HintFunc] = {
    normalize_hint_code(code): func
    for code, func in [
        (h.ALLOC, h.alloc),
        (h.IS_NN, h.is_nn),
        (h.IS_NN_OUT_OF_RANGE, h.is_nn_out_of_range),
        (h.ASSERT_NN, h.assert_nn),
        (h.ASSERT_NOT_ZERO, h.assert_not_zero),
        (h.ASSERT_NOT_EQUAL, h.assert_not_equal),
        (h.UNSIGNED_DIV_REM, h.unsigned_div_rem),
        (h.SQRT, h.isqrt_hint),
        (h.QUAD_RESIDUE_SQRT, h.quad_residue_sqrt),
        (h.SPLIT_FELT, h.split_felt),
        (h.ASSERT_LE_FELT, h.assert_le_felt),
        (h.ASSERT_LE_FELT_EXCLUDED_0, h.assert_le_felt_excluded_0),
        (h.ASSERT_LE_FELT_EXCLUDED_1, h.assert_le_felt_excluded_1),
        (h.ASSERT_LE_FELT_EXCLUDED_2, h.assert_le_felt_excluded_2),
        (h.DICT_NEW, h.dict_new),
        (h.DEFAULT_DICT_NEW, h.default_dict_new),
        (h.DICT_READ, h.dict_read),
        (h.DICT_WRITE, h.dict_write),
        (h.DICT_UPDATE, h.dict_update),
        (h.VM_ENTER_SCOPE, h.vm_enter_scope),
        (h.VM_EXIT_SCOPE, h.vm_exit_scope),
        (h.MEMCPY_ENTER_SCOPE, h.memcpy_enter_scope),
        (h.MEMCPY_CONTINUE_COPYING, h.memcpy_continue_copying),
        (h.ECDSA_ADD_SIGNATURE, h.ecdsa_add_signature),
    ]
}


def get_hint_function(code: str) -> HintFunc:
    """Get the native implementation of a hint.

    Args:
        code: Hint code as emitted by the compiler

    Returns:
        The native hint function

    Raises:
        KeyError: If no native implementation is registered for the code
    """
    func = HINT_REGISTRY.get(normalize_hint_code(code))
    if func is None:
        raise KeyError(f"No native implementation for hint {code!r}")
    return func


__all__ = [
    "ExecutionScopes",
    "HintContext",
    "HintFunc",
    "HintProcessor",
    "IdsManager",
    "DictManager",
    "DictTracker",
    "HINT_REGISTRY",
    "compile_python_hint",
    "normalize_hint_code",
    "get_hint_function",
]
