"""Native implementations of the hints of the Cairo common library.

Each constant is the hint code exactly as the compiler emits it; the function next to
it does the same work directly against the HintContext.
"""

import math

from builtin_runners.range_check import RC_BOUND
from hints.base import HintContext
from hints.dict_manager import DICT_ACCESS_SIZE, DictManager
from primitives.field import div_mod, is_quad_residue, sqrt
from primitives.relocatable import MaybeRelocatable, RelocatableValue


def _integer(value: MaybeRelocatable, name: str) -> int:
    if not isinstance(value, int):
        raise TypeError(f"{name} = {value} is not an integer.")
    return value


def _range_check_bound(ctx: HintContext) -> int:
    runner = ctx.builtin_runners.get("range_check")
    return RC_BOUND if runner is None else runner.bound


def _dict_manager(ctx: HintContext) -> DictManager:
    """The run's DictManager, kept in the root scope."""
    return ctx.scopes.root.setdefault("__dict_manager", DictManager())


# --- Memory ---

ALLOC = "memory[ap] = segments.add()"


def alloc(ctx: HintContext) -> None:
    ctx.memory.write(ctx.ap, ctx.memory.add_segment())


# --- Math ---

IS_NN = "memory[ap] = 0 if 0 <= (ids.a % PRIME) < range_check_builtin.bound else 1"

IS_NN_OUT_OF_RANGE = (
    "memory[ap] = 0 if 0 <= ((-ids.a - 1) % PRIME) < range_check_builtin.bound else 1"
)

ASSERT_NN = """\
from starkware.cairo.common.math_utils import assert_integer
assert_integer(ids.a)
assert 0 <= ids.a % PRIME < range_check_builtin.bound, f'a = {ids.a} is out of range.'"""

ASSERT_NOT_ZERO = """\
from starkware.cairo.common.math_utils import assert_integer
assert_integer(ids.value)
assert ids.value % PRIME != 0, f'assert_not_zero failed: {ids.value} = 0.'"""

ASSERT_NOT_EQUAL = """\
from starkware.cairo.lang.vm.relocatable import RelocatableValue
both_ints = isinstance(ids.a, int) and isinstance(ids.b, int)
both_relocatable = (
    isinstance(ids.a, RelocatableValue) and isinstance(ids.b, RelocatableValue) and
    ids.a.segment_index == ids.b.segment_index)
assert both_ints or both_relocatable, \\
    f'assert_not_equal failed: non-comparable values: {ids.a}, {ids.b}.'
assert (ids.a - ids.b) % PRIME != 0, f'assert_not_equal failed: {ids.a} = {ids.b}.'"""

UNSIGNED_DIV_REM = """\
from starkware.cairo.common.math_utils import assert_integer
assert_integer(ids.div)
assert 0 < ids.div <= PRIME // range_check_builtin.bound, \\
    f'div={hex(ids.div)} is out of the valid range.'
ids.q, ids.r = divmod(ids.value, ids.div)"""

SQRT = """\
from starkware.python.math_utils import isqrt
value = ids.value % PRIME
assert value < 2 ** 250, f"value={value} is outside of the range [0, 2**250)."
assert 2 ** 250 < PRIME
ids.root = isqrt(value)"""

QUAD_RESIDUE_SQRT = """\
from starkware.crypto.signature.signature import FIELD_PRIME
from starkware.python.math_utils import div_mod, is_quad_residue, sqrt

x = ids.x
if is_quad_residue(x, FIELD_PRIME):
    ids.y = sqrt(x, FIELD_PRIME)
else:
    ids.y = sqrt(div_mod(x, 3, FIELD_PRIME), FIELD_PRIME)"""

SPLIT_FELT = """\
from starkware.cairo.common.math_utils import assert_integer
assert ids.MAX_HIGH < 2**128 and ids.MAX_LOW < 2**128
assert PRIME - 1 == ids.MAX_HIGH * 2**128 + ids.MAX_LOW
assert_integer(ids.value)
ids.low = ids.value & ((1 << 128) - 1)
ids.high = ids.value >> 128"""


def is_nn(ctx: HintContext) -> None:
    a = ctx.ids.a
    ctx.memory.write(ctx.ap, 0 if 0 <= a % ctx.prime < _range_check_bound(ctx) else 1)


def is_nn_out_of_range(ctx: HintContext) -> None:
    a = ctx.ids.a
    ctx.memory.write(ctx.ap, 0 if 0 <= (-a - 1) % ctx.prime < _range_check_bound(ctx) else 1)


def assert_nn(ctx: HintContext) -> None:
    a = _integer(ctx.ids.a, "a")
    if not 0 <= a % ctx.prime < _range_check_bound(ctx):
        raise AssertionError(f"a = {a} is out of range.")


def assert_not_zero(ctx: HintContext) -> None:
    value = _integer(ctx.ids.value, "value")
    if value % ctx.prime == 0:
        raise AssertionError(f"assert_not_zero failed: {value} = 0.")


def assert_not_equal(ctx: HintContext) -> None:
    a, b = ctx.ids.a, ctx.ids.b
    both_ints = isinstance(a, int) and isinstance(b, int)
    both_relocatable = (isinstance(a, RelocatableValue) and isinstance(b, RelocatableValue)
                        and a.segment_index == b.segment_index)
    if not (both_ints or both_relocatable):
        raise AssertionError(f"assert_not_equal failed: non-comparable values: {a}, {b}.")
    if (a - b) % ctx.prime == 0:
        raise AssertionError(f"assert_not_equal failed: {a} = {b}.")


def unsigned_div_rem(ctx: HintContext) -> None:
    div = _integer(ctx.ids.div, "div")
    if not 0 < div <= ctx.prime // _range_check_bound(ctx):
        raise AssertionError(f"div={hex(div)} is out of the valid range.")
    ctx.ids.q, ctx.ids.r = divmod(ctx.ids.value, div)


def isqrt_hint(ctx: HintContext) -> None:
    value = ctx.ids.value % ctx.prime
    if value >= 2 ** 250:
        raise AssertionError(f"value={value} is outside of the range [0, 2**250).")
    ctx.ids.root = math.isqrt(value)


def quad_residue_sqrt(ctx: HintContext) -> None:
    """y = sqrt(x) if x is a square, else sqrt(x / 3) (3 is a non-residue)."""
    x = ctx.ids.x
    if is_quad_residue(x):
        ctx.ids.y = sqrt(x)
    else:
        ctx.ids.y = sqrt(div_mod(x, 3, ctx.prime))


def split_felt(ctx: HintContext) -> None:
    max_high, max_low = ctx.ids.MAX_HIGH, ctx.ids.MAX_LOW
    if not (max_high < 2 ** 128 and max_low < 2 ** 128):
        raise AssertionError("MAX_HIGH and MAX_LOW must fit in 128 bits")
    if ctx.prime - 1 != max_high * 2 ** 128 + max_low:
        raise AssertionError("MAX_HIGH * 2**128 + MAX_LOW must equal PRIME - 1")
    value = _integer(ctx.ids.value, "value")
    ctx.ids.low = value & ((1 << 128) - 1)
    ctx.ids.high = value >> 128


# --- assert_le_felt ---

ASSERT_LE_FELT = """\
import itertools

from starkware.cairo.common.math_utils import assert_integer
assert_integer(ids.a)
assert_integer(ids.b)
a = ids.a % PRIME
b = ids.b % PRIME
assert a <= b, f'a = {a} is not less than or equal to b = {b}.'

# Find an arc less than PRIME / 3, and another less than PRIME / 2.
lengths_and_indices = [(a, 0), (b - a, 1), (PRIME - 1 - b, 2)]
lengths_and_indices.sort()
assert lengths_and_indices[0][0] <= PRIME // 3 and lengths_and_indices[1][0] <= PRIME // 2
excluded = lengths_and_indices[2][1]

memory[ids.range_check_ptr + 1], memory[ids.range_check_ptr + 0] = (
    divmod(lengths_and_indices[0][0], ids.PRIME_OVER_3_HIGH))
memory[ids.range_check_ptr + 3], memory[ids.range_check_ptr + 2] = (
    divmod(lengths_and_indices[1][0], ids.PRIME_OVER_2_HIGH))"""

ASSERT_LE_FELT_EXCLUDED_0 = "memory[ap] = 1 if excluded != 0 else 0"
ASSERT_LE_FELT_EXCLUDED_1 = "memory[ap] = 1 if excluded != 1 else 0"
ASSERT_LE_FELT_EXCLUDED_2 = "assert excluded == 2"


def assert_le_felt(ctx: HintContext) -> None:
    """
    Split [0, PRIME) at a and b into three arcs and range-check the two shortest.

    The index of the longest (excluded) arc is left in the current scope for the
    assert_le_felt_excluded_* hints.
    """
    a = _integer(ctx.ids.a, "a") % ctx.prime
    b = _integer(ctx.ids.b, "b") % ctx.prime
    if a > b:
        raise AssertionError(f"a = {a} is not less than or equal to b = {b}.")

    arcs = sorted([(a, 0), (b - a, 1), (ctx.prime - 1 - b, 2)])
    if not (arcs[0][0] <= ctx.prime // 3 and arcs[1][0] <= ctx.prime // 2):
        raise AssertionError("arcs are too long")
    ctx.scopes["excluded"] = arcs[2][1]

    rc_ptr = ctx.ids.range_check_ptr
    q, r = divmod(arcs[0][0], ctx.ids.PRIME_OVER_3_HIGH)
    ctx.memory.write(rc_ptr + 1, q)
    ctx.memory.write(rc_ptr + 0, r)
    q, r = divmod(arcs[1][0], ctx.ids.PRIME_OVER_2_HIGH)
    ctx.memory.write(rc_ptr + 3, q)
    ctx.memory.write(rc_ptr + 2, r)


def assert_le_felt_excluded_0(ctx: HintContext) -> None:
    ctx.memory.write(ctx.ap, 1 if ctx.scopes["excluded"] != 0 else 0)


def assert_le_felt_excluded_1(ctx: HintContext) -> None:
    ctx.memory.write(ctx.ap, 1 if ctx.scopes["excluded"] != 1 else 0)


def assert_le_felt_excluded_2(ctx: HintContext) -> None:
    if ctx.scopes["excluded"] != 2:
        raise AssertionError(f"excluded = {ctx.scopes['excluded']}, expected 2")


# --- Dicts ---

DICT_NEW = """\
if '__dict_manager' not in globals():
    from starkware.cairo.common.dict import DictManager
    __dict_manager = DictManager()

memory[ap] = __dict_manager.new_dict(segments, initial_dict)
del initial_dict"""

DEFAULT_DICT_NEW = """\
if '__dict_manager' not in globals():
    from starkware.cairo.common.dict import DictManager
    __dict_manager = DictManager()

memory[ap] = __dict_manager.new_default_dict(segments, ids.default_value)"""

DICT_READ = """\
dict_tracker = __dict_manager.get_tracker(ids.dict_ptr)
dict_tracker.current_ptr += ids.DictAccess.SIZE
ids.value = dict_tracker.data[ids.key]"""

DICT_WRITE = """\
dict_tracker = __dict_manager.get_tracker(ids.dict_ptr)
dict_tracker.current_ptr += ids.DictAccess.SIZE
ids.dict_ptr.prev_value = dict_tracker.data[ids.key]
dict_tracker.data[ids.key] = ids.new_value"""

DICT_UPDATE = """\
# Verify dict pointer and prev value.
dict_tracker = __dict_manager.get_tracker(ids.dict_ptr)
current_value = dict_tracker.data[ids.key]
assert current_value == ids.prev_value, \\
    f'Wrong previous value in dict. Got {ids.prev_value}, expected {current_value}.'

# Update value.
dict_tracker.data[ids.key] = ids.new_value
dict_tracker.current_ptr += ids.DictAccess.SIZE"""


def dict_new(ctx: HintContext) -> None:
    """Start a dict from the `initial_dict` scope variable, which is consumed."""
    initial_dict = ctx.scopes.current.pop("initial_dict")
    ctx.memory.write(ctx.ap, _dict_manager(ctx).new_dict(ctx.memory, initial_dict))


def default_dict_new(ctx: HintContext) -> None:
    ctx.memory.write(ctx.ap, _dict_manager(ctx).new_default_dict(ctx.memory, ctx.ids.default_value))


def dict_read(ctx: HintContext) -> None:
    tracker = _dict_manager(ctx).get_tracker(ctx.ids.dict_ptr)
    tracker.current_ptr += DICT_ACCESS_SIZE
    ctx.ids.value = tracker.data[ctx.ids.key]


def dict_write(ctx: HintContext) -> None:
    dict_ptr = ctx.ids.dict_ptr
    tracker = _dict_manager(ctx).get_tracker(dict_ptr)
    tracker.current_ptr += DICT_ACCESS_SIZE
    key = ctx.ids.key
    # DictAccess is (key, prev_value, new_value).
    ctx.memory.write(dict_ptr + 1, tracker.data[key])
    tracker.data[key] = ctx.ids.new_value


def dict_update(ctx: HintContext) -> None:
    tracker = _dict_manager(ctx).get_tracker(ctx.ids.dict_ptr)
    current_value = tracker.data[ctx.ids.key]
    if current_value != ctx.ids.prev_value:
        raise AssertionError(
            f"Wrong previous value in dict. Got {ctx.ids.prev_value}, expected {current_value}.")
    tracker.data[ctx.ids.key] = ctx.ids.new_value
    tracker.current_ptr += DICT_ACCESS_SIZE


# --- Scopes ---

VM_ENTER_SCOPE = "vm_enter_scope()"
VM_EXIT_SCOPE = "vm_exit_scope()"
MEMCPY_ENTER_SCOPE = "vm_enter_scope({'n': ids.len})"
MEMCPY_CONTINUE_COPYING = """\
n -= 1
ids.continue_copying = 1 if n > 0 else 0"""


def vm_enter_scope(ctx: HintContext) -> None:
    ctx.scopes.enter_scope()


def vm_exit_scope(ctx: HintContext) -> None:
    ctx.scopes.exit_scope()


def memcpy_enter_scope(ctx: HintContext) -> None:
    ctx.scopes.enter_scope({"n": ctx.ids.len})


def memcpy_continue_copying(ctx: HintContext) -> None:
    ctx.scopes["n"] -= 1
    ctx.ids.continue_copying = 1 if ctx.scopes["n"] > 0 else 0


# --- Signatures ---

ECDSA_ADD_SIGNATURE = (
    "ecdsa_builtin.add_signature(ids.ecdsa_ptr.address_, (ids.signature_r, ids.signature_s))"
)


def ecdsa_add_signature(ctx: HintContext) -> None:
    ecdsa = ctx.get_builtin("ecdsa")
    ecdsa.add_signature(ctx.ids.ecdsa_ptr, (ctx.ids.signature_r, ctx.ids.signature_s))
