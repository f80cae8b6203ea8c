"""Hint execution.

A hint is untraced code attached to a program counter. Before the instruction at that
pc runs, every attached hint is called, in order, with a HintContext: explicit handles
on the run's memory, registers, `ids` view and the run-scoped scratch store. Hints
follow the write-once discipline of memory like any other writer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from hints.ids import IdsManager
from primitives.relocatable import RelocatableValue
from vm.errors import HintError, LoadError, VmError
from vm.memory import Memory
from vm.program import CompiledHint, Program

if TYPE_CHECKING:
    from builtin_runners.base import BuiltinRunner
    from vm.vm_core import RunContext, VirtualMachine

logger = logging.getLogger(__name__)

# --- Type Aliases ---

HintFunc = Callable[["HintContext"], None]


# --- Scratch Store ---

class ExecutionScopes:
    """
    Stack of variable scopes shared by the hints of one run.

    The root scope lives for the whole run; hints push and pop nested scopes
    (vm_enter_scope / vm_exit_scope) around loops and recursive calls.
    """

    def __init__(self, main_scope: Optional[Dict[str, Any]] = None):
        self._scopes: List[Dict[str, Any]] = [dict(main_scope or {})]

    @property
    def current(self) -> Dict[str, Any]:
        return self._scopes[-1]

    @property
    def root(self) -> Dict[str, Any]:
        return self._scopes[0]

    @property
    def depth(self) -> int:
        return len(self._scopes)

    def enter_scope(self, new_scope: Optional[Dict[str, Any]] = None) -> None:
        self._scopes.append(dict(new_scope or {}))

    def exit_scope(self) -> None:
        if len(self._scopes) == 1:
            raise ValueError("Cannot exit main scope.")
        self._scopes.pop()

    def __getitem__(self, name: str) -> Any:
        return self.current[name]

    def __setitem__(self, name: str, value: Any) -> None:
        self.current[name] = value

    def __contains__(self, name: str) -> bool:
        return name in self.current

    def get(self, name: str, default: Any = None) -> Any:
        return self.current.get(name, default)


# --- Hint Context ---

@dataclass
class HintContext:
    """
    Everything a hint may touch.

    Attributes:
        memory: Run memory
        run_context: Live registers (hints may move ap and fp)
        scopes: Run-scoped scratch store
        ids: Typed view of the references visible at the hint
        program: The running program (constants, identifiers)
        builtin_runners: Builtin runners of the run by name
        hint_index: Position of the hint among the hints of its pc
        skip_instruction_execution: Set to skip the instruction at pc
    """
    memory: Memory
    run_context: "RunContext"
    scopes: ExecutionScopes
    ids: IdsManager
    program: Program
    builtin_runners: Dict[str, "BuiltinRunner"] = field(default_factory=dict)
    hint_index: int = 0
    skip_instruction_execution: bool = False

    @property
    def pc(self) -> RelocatableValue:
        return self.run_context.pc

    @property
    def ap(self) -> RelocatableValue:
        return self.run_context.ap

    @ap.setter
    def ap(self, value: RelocatableValue) -> None:
        self.run_context.ap = value

    @property
    def fp(self) -> RelocatableValue:
        return self.run_context.fp

    @fp.setter
    def fp(self, value: RelocatableValue) -> None:
        self.run_context.fp = value

    @property
    def prime(self) -> int:
        return self.program.prime

    def get_builtin(self, name: str) -> "BuiltinRunner":
        if name not in self.builtin_runners:
            raise KeyError(f"Builtin '{name}' is not used by the program")
        return self.builtin_runners[name]


# --- Python Hints ---

def compile_python_hint(code: str, pc: int) -> HintFunc:
    """
    Compile hint code as Python source.

    The code runs with the current scratch scope as its variables, plus:
    memory, segments, ap, fp, pc, ids, PRIME, <builtin>_builtin,
    vm_enter_scope and vm_exit_scope. Variables it defines are stored back into
    the scope that was current when it started.

    Raises:
        LoadError: If the code is not valid Python
    """
    try:
        compiled = compile(code, f"<hint{pc}>", "exec")
    except SyntaxError as exc:
        raise LoadError(f"Hint at pc {pc} is not valid Python: {exc}", pc=pc) from exc

    def run(ctx: HintContext) -> None:
        scope = ctx.scopes.current
        injected: Dict[str, Any] = {
            "memory": ctx.memory,
            "segments": ctx.memory,
            "ap": ctx.ap,
            "fp": ctx.fp,
            "pc": ctx.pc,
            "ids": ctx.ids,
            "PRIME": ctx.prime,
            "vm_enter_scope": ctx.scopes.enter_scope,
            "vm_exit_scope": ctx.scopes.exit_scope,
        }
        for name, runner in ctx.builtin_runners.items():
            injected[f"{name}_builtin"] = runner
        exec_globals = {**scope, **injected}
        exec(compiled, exec_globals)

        for name in list(scope):
            if name not in exec_globals:
                del scope[name]
        for name, value in exec_globals.items():
            if name != "__builtins__" and name not in injected:
                scope[name] = value

    return run


# --- Processor ---

class HintProcessor:
    """
    Compiled hints of a program, by pc offset.

    Every hint is resolved once, at setup: code registered in the native registry
    runs as a Python function, other code is executed as Python source if allowed.

    Args:
        program: Program whose hints are compiled
        registry: Native hint functions keyed by hint code
        allow_python_hints: Execute unregistered hint code as Python source

    Raises:
        LoadError: If a hint has no native implementation and Python hints are not
            allowed
    """

    def __init__(self, program: Program, registry: Dict[str, HintFunc],
                 allow_python_hints: bool = True):
        self.program = program
        self.registry = registry
        self.allow_python_hints = allow_python_hints
        self.hints: Dict[int, List[Tuple[CompiledHint, HintFunc]]] = {
            pc: [(hint, self.compile_hint(hint, pc)) for hint in hints]
            for pc, hints in program.hints.items()
        }
        n_native = sum(1 for hs in program.hints.values() for h in hs
                       if normalize_hint_code(h.code) in registry)
        logger.debug("Compiled %d hints (%d native)",
                     sum(len(hs) for hs in self.hints.values()), n_native)

    def compile_hint(self, hint: CompiledHint, pc: int) -> HintFunc:
        func = self.registry.get(normalize_hint_code(hint.code))
        if func is not None:
            return func
        if self.allow_python_hints:
            return compile_python_hint(hint.code, pc)
        raise LoadError(f"Unknown hint at pc {pc}: {hint.code!r}", pc=pc)

    def execute_hints(self, vm: "VirtualMachine") -> None:
        """
        Run the hints attached to the current pc.

        Raises:
            HintError: If a hint raises anything but a VmError
            VmError: Faults raised by memory or builtins inside a hint
        """
        pc = vm.run_context.pc
        base = vm.program_base
        if base is None or pc.segment_index != base.segment_index:
            return
        for index, (hint, func) in enumerate(self.hints.get(pc.offset - base.offset, [])):
            ctx = HintContext(
                memory=vm.memory,
                run_context=vm.run_context,
                scopes=vm.exec_scopes,
                ids=IdsManager(
                    program=self.program,
                    reference_ids=hint.flow_tracking_data.reference_ids,
                    accessible_scopes=hint.accessible_scopes,
                    hint_ap_tracking=hint.flow_tracking_data.ap_tracking,
                    ap=vm.run_context.ap,
                    fp=vm.run_context.fp,
                    memory=vm.memory,
                ),
                program=self.program,
                builtin_runners=vm.builtin_runners,
                hint_index=index,
            )
            try:
                func(ctx)
            except VmError as exc:
                raise exc.with_pc(pc)
            except Exception as exc:
                raise HintError(
                    f"Got an exception while executing a hint: {exc!r}",
                    hint_index=index,
                    pc=pc,
                ) from exc
            if ctx.skip_instruction_execution:
                vm.skip_instruction_execution = True


def normalize_hint_code(code: str) -> str:
    """Hint code with surrounding blank space and trailing whitespace removed."""
    return "\n".join(line.rstrip() for line in code.strip().splitlines())
