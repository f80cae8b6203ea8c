"""Tests for hint compilation, execution and the native common-library hints."""

from typing import Dict, Optional, Sequence

import pytest

from hints import (
    HINT_REGISTRY,
    DictManager,
    ExecutionScopes,
    HintContext,
    HintProcessor,
    get_hint_function,
    normalize_hint_code,
)
from hints import builtin_hints as h
from primitives.field import STARK_PRIME
from primitives.relocatable import MaybeRelocatable
from vm.errors import HintError, LoadError, MemoryConsistencyError
from vm.program import CompiledHint, FlowTrackingData, Program, Reference
from vm.vm_core import VirtualMachine

from tests.helpers import ASSERT_ADD, addr, make_vm

SCOPES = ["__main__", "__main__.main"]

PRIME_OVER_3_HIGH = 0x2AAAAAAAAAAAAB05555555555555556
PRIME_OVER_2_HIGH = 0x4000000000000088000000000000001


def build(
    codes: Sequence[str],
    refs: Optional[Dict[str, str]] = None,
    stack: Sequence[MaybeRelocatable] = (),
    builtins: Sequence[str] = (),
    identifiers: Optional[dict] = None,
    registry: Optional[dict] = None,
    allow_python_hints: bool = True,
) -> VirtualMachine:
    """A VM at pc 0 whose hints see `refs` (name -> reference expression) as ids."""
    refs = refs or {}
    reference_ids = {f"__main__.main.{name}": i for i, name in enumerate(refs)}
    program = Program(
        data=[ASSERT_ADD],
        hints={0: [
            CompiledHint(code=code, accessible_scopes=SCOPES,
                         flow_tracking_data=FlowTrackingData(reference_ids=reference_ids))
            for code in codes
        ]},
        builtins=list(builtins),
        references=[Reference(pc=0, value=value) for value in refs.values()],
        identifiers=identifiers or {},
    )
    vm = make_vm(program.data, stack=stack, builtins=builtins)
    vm.hint_processor = HintProcessor(
        program, HINT_REGISTRY if registry is None else registry,
        allow_python_hints=allow_python_hints,
    )
    return vm


def run_hints(vm: VirtualMachine) -> None:
    vm.hint_processor.execute_hints(vm)


def fp_ref(offset: int) -> str:
    return f"[cast(fp + ({offset}), felt*)]"


class TestRegistry:
    """Tests for native hint lookup."""

    def test_lookup_ignores_surrounding_whitespace(self) -> None:
        assert get_hint_function("  memory[ap] = segments.add()  \n") is h.alloc
        assert get_hint_function(h.DICT_UPDATE + "\n\n") is h.dict_update

    def test_unknown_code(self) -> None:
        with pytest.raises(KeyError):
            get_hint_function("print('hello')")

    def test_normalize_strips_trailing_whitespace(self) -> None:
        assert normalize_hint_code("\n a = 1   \n b = 2\t\n") == "a = 1\n b = 2"

    def test_native_code_is_not_compiled(self) -> None:
        vm = build([h.ALLOC], allow_python_hints=False)
        (_, func), = vm.hint_processor.hints[0]
        assert func is h.alloc


class TestPythonHints:
    """Tests for hint code executed as Python source."""

    def test_writes_memory(self) -> None:
        vm = build(["memory[ap] = 7"])
        run_hints(vm)
        assert vm.memory[addr(1, 0)] == 7

    def test_injected_names(self) -> None:
        vm = build(["memory[ap] = output_builtin.base.segment_index + PRIME % 2"],
                   builtins=["output"])
        run_hints(vm)
        assert vm.memory[addr(1, 0)] == 2 + STARK_PRIME % 2

    def test_variables_persist_in_scope(self) -> None:
        vm = build(["x = 5", "memory[ap] = x + 1"])
        run_hints(vm)
        assert vm.memory[addr(1, 0)] == 6
        assert vm.exec_scopes["x"] == 5

    def test_deleted_variables_leave_scope(self) -> None:
        vm = build(["del y"])
        vm.exec_scopes["y"] = 1
        run_hints(vm)
        assert "y" not in vm.exec_scopes

    def test_scope_functions(self) -> None:
        vm = build(["vm_enter_scope({'n': 3})", "n -= 1"])
        run_hints(vm)
        assert vm.exec_scopes.depth == 2
        assert vm.exec_scopes["n"] == 2

    def test_disallowed(self) -> None:
        with pytest.raises(LoadError, match="Unknown hint"):
            build(["memory[ap] = 7"], allow_python_hints=False)

    def test_syntax_error(self) -> None:
        with pytest.raises(LoadError, match="not valid Python"):
            build(["memory[ap] = "])


class TestHintErrors:
    """Tests for faults raised inside hints."""

    def test_exception_is_wrapped_with_pc(self) -> None:
        vm = build(["x = 1", "assert x == 2"])
        with pytest.raises(HintError) as exc_info:
            vm.step()
        assert exc_info.value.hint_index == 1
        assert exc_info.value.pc == addr(0, 0)
        assert isinstance(exc_info.value.__cause__, AssertionError)

    def test_vm_error_keeps_its_class(self) -> None:
        """Hints obey write-once like any other writer."""
        vm = build(["memory[ap] = 1\nmemory[ap] = 2"])
        with pytest.raises(MemoryConsistencyError) as exc_info:
            vm.step()
        assert exc_info.value.pc == addr(0, 0)
        assert vm.trace == []

    def test_skip_instruction(self) -> None:
        def skip(ctx: HintContext) -> None:
            ctx.skip_instruction_execution = True

        vm = build(["skip"], registry={"skip": skip}, allow_python_hints=False)
        vm.step()
        assert vm.run_context.pc == addr(0, 0)
        assert vm.current_step == 0


class TestMathHints:
    """Tests for the math hints."""

    def test_alloc(self) -> None:
        vm = build([h.ALLOC])
        run_hints(vm)
        assert vm.memory[addr(1, 0)] == addr(2, 0)
        assert vm.memory.n_segments == 3

    @pytest.mark.parametrize("a, expected", [(5, 0), (-1, 1), (2 ** 128, 1)])
    def test_is_nn(self, a: int, expected: int) -> None:
        vm = build([h.IS_NN], refs={"a": fp_ref(-1)}, stack=[a])
        run_hints(vm)
        assert vm.memory[addr(1, 1)] == expected

    def test_is_nn_uses_range_check_bound(self) -> None:
        vm = build([h.IS_NN], refs={"a": fp_ref(-1)}, stack=[addr(2, 0), 2 ** 127],
                   builtins=["range_check"])
        run_hints(vm)
        assert vm.memory[addr(1, 2)] == 0

    def test_assert_nn_fails(self) -> None:
        vm = build([h.ASSERT_NN], refs={"a": fp_ref(-1)}, stack=[-5])
        with pytest.raises(HintError, match="out of range"):
            run_hints(vm)

    def test_assert_not_zero(self) -> None:
        vm = build([h.ASSERT_NOT_ZERO], refs={"value": fp_ref(-1)}, stack=[0])
        with pytest.raises(HintError, match="assert_not_zero"):
            run_hints(vm)

    def test_assert_not_equal_on_addresses(self) -> None:
        vm = build([h.ASSERT_NOT_EQUAL], refs={"a": fp_ref(-2), "b": fp_ref(-1)},
                   stack=[addr(1, 0), addr(1, 0)])
        with pytest.raises(HintError, match="assert_not_equal failed"):
            run_hints(vm)

    def test_assert_not_equal_non_comparable(self) -> None:
        vm = build([h.ASSERT_NOT_EQUAL], refs={"a": fp_ref(-2), "b": fp_ref(-1)},
                   stack=[addr(1, 0), 3])
        with pytest.raises(HintError, match="non-comparable"):
            run_hints(vm)

    def test_unsigned_div_rem(self) -> None:
        vm = build(
            [h.UNSIGNED_DIV_REM],
            refs={"value": fp_ref(-2), "div": fp_ref(-1), "q": fp_ref(0), "r": fp_ref(1)},
            stack=[17, 5],
        )
        run_hints(vm)
        assert vm.memory[addr(1, 2)] == 3
        assert vm.memory[addr(1, 3)] == 2

    def test_isqrt(self) -> None:
        vm = build([h.SQRT], refs={"value": fp_ref(-1), "root": fp_ref(0)}, stack=[17])
        run_hints(vm)
        assert vm.memory[addr(1, 1)] == 4

    def test_quad_residue_sqrt(self) -> None:
        vm = build([h.QUAD_RESIDUE_SQRT], refs={"x": fp_ref(-1), "y": fp_ref(0)}, stack=[4])
        run_hints(vm)
        y = vm.memory[addr(1, 1)]
        assert y * y % STARK_PRIME == 4

    def test_split_felt(self) -> None:
        identifiers = {
            "__main__.MAX_HIGH": {"type": "const", "value": (STARK_PRIME - 1) >> 128},
            "__main__.MAX_LOW": {"type": "const", "value": (STARK_PRIME - 1) & (2 ** 128 - 1)},
        }
        vm = build(
            [h.SPLIT_FELT],
            refs={"value": fp_ref(-1), "low": fp_ref(0), "high": fp_ref(1)},
            stack=[2 ** 130 + 3],
            identifiers=identifiers,
        )
        run_hints(vm)
        assert vm.memory[addr(1, 1)] == 3
        assert vm.memory[addr(1, 2)] == 4

    def test_assert_le_felt(self) -> None:
        identifiers = {
            "__main__.PRIME_OVER_3_HIGH": {"type": "const", "value": PRIME_OVER_3_HIGH},
            "__main__.PRIME_OVER_2_HIGH": {"type": "const", "value": PRIME_OVER_2_HIGH},
        }
        vm = build(
            [h.ASSERT_LE_FELT, h.ASSERT_LE_FELT_EXCLUDED_0, h.ASSERT_LE_FELT_EXCLUDED_2],
            refs={"range_check_ptr": fp_ref(-3), "a": fp_ref(-2), "b": fp_ref(-1)},
            stack=[addr(2, 0), 1, 2],
            builtins=["range_check"],
            identifiers=identifiers,
        )
        run_hints(vm)
        assert vm.exec_scopes["excluded"] == 2
        assert [vm.memory[addr(2, i)] for i in range(4)] == [1, 0, 1, 0]
        assert vm.memory[addr(1, 3)] == 1

    def test_assert_le_felt_rejects_a_greater_than_b(self) -> None:
        vm = build([h.ASSERT_LE_FELT],
                   refs={"range_check_ptr": fp_ref(-3), "a": fp_ref(-2), "b": fp_ref(-1)},
                   stack=[addr(2, 0), 3, 2], builtins=["range_check"])
        with pytest.raises(HintError, match="not less than or equal"):
            run_hints(vm)


class TestDictHints:
    """Tests for the dict hints and DictManager."""

    def test_dict_new_consumes_initial_dict(self) -> None:
        vm = build([h.DICT_NEW])
        vm.exec_scopes["initial_dict"] = {1: 10}
        run_hints(vm)
        assert vm.memory[addr(1, 0)] == addr(2, 0)
        assert "initial_dict" not in vm.exec_scopes
        manager = vm.exec_scopes.root["__dict_manager"]
        assert manager.get_dict(addr(2, 0)) == {1: 10}

    def test_dict_read(self) -> None:
        vm = build(
            [h.DICT_NEW, h.DICT_READ],
            refs={"dict_ptr": "[cast(ap, felt**)]", "key": fp_ref(-1), "value": "[cast(ap + 1, felt*)]"},
            stack=[1],
        )
        vm.exec_scopes["initial_dict"] = {1: 10}
        run_hints(vm)
        assert vm.memory[addr(1, 2)] == 10
        manager = vm.exec_scopes.root["__dict_manager"]
        assert manager.trackers[2].current_ptr == addr(2, 3)

    def test_dict_write_records_prev_value(self) -> None:
        vm = build(
            [h.DICT_NEW, h.DICT_WRITE],
            refs={"dict_ptr": "[cast(ap, felt**)]", "key": fp_ref(-1), "new_value": fp_ref(-2)},
            stack=[20, 1],
        )
        vm.exec_scopes["initial_dict"] = {1: 10}
        run_hints(vm)
        assert vm.memory[addr(2, 1)] == 10
        manager = vm.exec_scopes.root["__dict_manager"]
        assert manager.trackers[2].data == {1: 20}

    def test_default_dict(self) -> None:
        memory = make_vm([]).memory
        manager = DictManager()
        ptr = manager.new_default_dict(memory, 0)
        assert manager.get_dict(ptr)[99] == 0

    def test_wrong_pointer(self) -> None:
        memory = make_vm([]).memory
        manager = DictManager()
        ptr = manager.new_dict(memory, {})
        with pytest.raises(ValueError, match="Wrong dict pointer"):
            manager.get_tracker(ptr + 3)
        with pytest.raises(ValueError, match="does not belong"):
            manager.get_tracker(addr(1, 0))


class TestScopes:
    """Tests for the run-scoped scratch store."""

    def test_enter_and_exit(self) -> None:
        scopes = ExecutionScopes({"a": 1})
        scopes.enter_scope({"b": 2})
        assert "a" not in scopes
        assert scopes["b"] == 2
        assert scopes.root["a"] == 1
        scopes.exit_scope()
        assert scopes.get("a") == 1

    def test_cannot_exit_main_scope(self) -> None:
        with pytest.raises(ValueError, match="main scope"):
            ExecutionScopes().exit_scope()

    def test_memcpy_hints(self) -> None:
        vm = build(
            [h.MEMCPY_ENTER_SCOPE, h.MEMCPY_CONTINUE_COPYING],
            refs={"len": fp_ref(-1), "continue_copying": "[cast(ap, felt*)]"},
            stack=[2],
        )
        run_hints(vm)
        assert vm.exec_scopes.depth == 2
        assert vm.exec_scopes["n"] == 1
        assert vm.memory[addr(1, 1)] == 1

    def test_native_scope_hints(self) -> None:
        vm = build([h.VM_ENTER_SCOPE, h.VM_ENTER_SCOPE, h.VM_EXIT_SCOPE])
        run_hints(vm)
        assert vm.exec_scopes.depth == 2


class TestSignatureHint:
    """Tests for the ECDSA signature hint."""

    def test_add_signature(self) -> None:
        vm = build(
            [h.ECDSA_ADD_SIGNATURE],
            refs={"ecdsa_ptr": fp_ref(-3), "signature_r": fp_ref(-2), "signature_s": fp_ref(-1)},
            stack=[addr(2, 0), 3, 4],
            builtins=["ecdsa"],
        )
        run_hints(vm)
        assert vm.builtin_runners["ecdsa"].signatures == {addr(2, 0): (3, 4)}

    def test_missing_builtin(self) -> None:
        vm = build(
            [h.ECDSA_ADD_SIGNATURE],
            refs={"ecdsa_ptr": fp_ref(-3), "signature_r": fp_ref(-2), "signature_s": fp_ref(-1)},
            stack=[addr(1, 0), 3, 4],
        )
        with pytest.raises(HintError):
            run_hints(vm)
