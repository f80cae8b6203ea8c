"""Cairo runner: sets up a run, drives the VM to the halt marker and relocates.

Segment layout of a run:
    0: program          - the instruction stream
    1: execution        - the stack (ap/fp live here)
    2..: builtins       - one segment per builtin, in program order
    then, in function mode, the return-fp and end segments

Typical use:
    runner = CairoRunner(program, RunConfig())
    runner.initialize_segments()
    end = runner.initialize_main_entrypoint()
    runner.initialize_vm()
    runner.run_until_pc(end)
    runner.end_run()
    relocated = runner.relocate()
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple, Union

from builtin_runners import BuiltinName, BuiltinRunner, get_builtin_runner
from hints import HINT_REGISTRY, ExecutionScopes, HintFunc, HintProcessor
from primitives.relocatable import MaybeRelocatable, RelocatableValue
from vm.config import RunConfig, RunInputs
from vm.errors import (
    ErrorReport,
    LoadError,
    ProgramTerminationError,
    RunCancelledError,
    VmError,
)
from vm.memory import Memory
from vm.program import Program
from vm.relocation import RelocatedRun, relocate_run
from vm.vm_core import RunContext, VirtualMachine

logger = logging.getLogger(__name__)


class CancelToken(Protocol):
    """Anything with an is_set() method, e.g. threading.Event."""

    def is_set(self) -> bool:
        ...


class RunState(Enum):
    INITIALIZED = "initialized"
    RUNNING = "running"
    HALTED = "halted"
    FAULTED = "faulted"


@dataclass
class RunResult:
    """
    Outcome of run_program.

    Attributes:
        state: HALTED or FAULTED
        steps: Number of executed steps
        relocated: Relocated memory and trace (None for faulted runs)
        output: Contents of the output builtin segment (None for skipped cells)
        error: Structured report of the fault (None for halted runs)
    """
    state: RunState
    steps: int = 0
    relocated: Optional[RelocatedRun] = None
    output: List[Optional[MaybeRelocatable]] = field(default_factory=list)
    error: Optional[ErrorReport] = None

    @property
    def ok(self) -> bool:
        return self.state is RunState.HALTED


class CairoRunner:
    """
    Owns the memory, builtin runners and VM of a single run.

    Args:
        program: Program to run
        config: Run configuration
        hint_registry: Native hint implementations (defaults to HINT_REGISTRY)
    """

    def __init__(
        self,
        program: Program,
        config: Optional[RunConfig] = None,
        hint_registry: Optional[Dict[str, HintFunc]] = None,
    ):
        self.program = program
        self.config = config or RunConfig()
        self.hint_registry = HINT_REGISTRY if hint_registry is None else hint_registry
        self.memory = Memory(program.prime)
        self.builtin_runners: Dict[str, BuiltinRunner] = {
            name: get_builtin_runner(name) for name in program.builtins
        }

        self.program_base: Optional[RelocatableValue] = None
        self.execution_base: Optional[RelocatableValue] = None
        self.initial_pc: Optional[RelocatableValue] = None
        self.initial_ap: Optional[RelocatableValue] = None
        self.initial_fp: Optional[RelocatableValue] = None
        self.final_pc: Optional[RelocatableValue] = None

        self.vm: Optional[VirtualMachine] = None
        self.state: Optional[RunState] = None
        self.error: Optional[VmError] = None
        self.relocated: Optional[RelocatedRun] = None

    # --- Setup ---

    def initialize_segments(self) -> None:
        """Allocate the program, execution and builtin segments."""
        self.program_base = self.memory.add_segment()
        self.execution_base = self.memory.add_segment()
        for runner in self.builtin_runners.values():
            runner.initialize_segments(self.memory)
        logger.debug("Initialized %d segments", self.memory.n_segments)

    def initialize_main_entrypoint(self, args: Optional[List[Any]] = None) -> RelocatableValue:
        """
        Prepare the stack for running main (or __start__ in proof mode).

        Args:
            args: Extra arguments pushed after the builtin pointers (function mode)

        Returns:
            The pc at which the run halts

        Raises:
            LoadError: If the entry point or the __end__ label is missing
        """
        stack: List[MaybeRelocatable] = []
        for runner in self.builtin_runners.values():
            stack += runner.initial_stack()

        if self.config.proof_mode:
            if self.program.end is None:
                raise LoadError("Missing __end__ label, required in proof mode")
            start = self.program.start if self.program.start is not None else self.program.main
            if start is None:
                raise LoadError("Missing __start__ and main labels")
            # The frame of __start__ is [fp - 2] = fp, [fp - 1] = 0.
            stack_prefix: List[MaybeRelocatable] = [self.execution_base + 2, 0]
            self._initialize_state(start, stack_prefix + stack)
            self.initial_ap = self.initial_fp = self.execution_base + 2
            self.final_pc = self.program_base + self.program.end
            return self.final_pc

        if self.program.main is None:
            raise LoadError("Missing main()")
        return_fp = self.memory.add_segment()
        stack += list(args or [])
        return self.initialize_function_entrypoint(self.program.main, stack, return_fp=return_fp)

    def initialize_function_entrypoint(
        self,
        entrypoint: Union[str, int],
        args: List[Any],
        return_fp: MaybeRelocatable = 0,
    ) -> RelocatableValue:
        """
        Prepare the stack for calling a function and returning into a fresh segment.

        Args:
            entrypoint: Function name or pc offset
            args: Arguments, pushed in order (lists become new segments)
            return_fp: fp restored by the final ret

        Returns:
            The end address (base of a new segment); reaching it halts the run
        """
        if isinstance(entrypoint, str):
            try:
                entrypoint = self.program.get_label(entrypoint)
            except KeyError as exc:
                raise LoadError(f"Unknown entrypoint: {exc}") from exc
        end = self.memory.add_segment()
        stack = [self.memory.gen_arg(arg) for arg in args] + [return_fp, end]
        self._initialize_state(entrypoint, stack)
        self.initial_ap = self.initial_fp = self.execution_base + len(stack)
        self.final_pc = end
        return end

    def _initialize_state(self, entrypoint: int, stack: List[MaybeRelocatable]) -> None:
        if not 0 <= entrypoint < len(self.program.data):
            raise LoadError(f"Entry point {entrypoint} is outside of the program")
        self.initial_pc = self.program_base + entrypoint
        self.memory.load_data(self.program_base, self.program.data)
        self.memory.load_data(self.execution_base, stack)

    def set_initial_registers(self, pc: int, ap: int, fp: int) -> None:
        """Override the entry registers: pc in the program segment, ap and fp on the stack."""
        self.initial_pc = self.program_base + pc
        self.initial_ap = self.execution_base + ap
        self.initial_fp = self.execution_base + fp

    def initialize_vm(self, hint_locals: Optional[Dict[str, Any]] = None) -> None:
        """
        Create the VM, compile the hints and register the builtin rules.

        Args:
            hint_locals: Initial variables of the root hint scope

        Raises:
            LoadError: If a hint cannot be compiled
            BuiltinError: If memory written during setup violates a builtin
        """
        context = RunContext(
            memory=self.memory,
            pc=self.initial_pc,
            ap=self.initial_ap,
            fp=self.initial_fp,
            prime=self.program.prime,
        )
        hint_processor = None
        if self.program.hints:
            hint_processor = HintProcessor(
                self.program, self.hint_registry,
                allow_python_hints=self.config.allow_python_hints,
            )
        self.vm = VirtualMachine(
            run_context=context,
            hint_processor=hint_processor,
            exec_scopes=ExecutionScopes(hint_locals),
            builtin_runners=self.builtin_runners,
            program_base=self.program_base,
            trace_enabled=self.config.trace_enabled,
        )
        for runner in self.builtin_runners.values():
            runner.add_validation_rules(self.memory)
            runner.add_auto_deduction_rules(self.memory)
        self.memory.validate_existing_memory()
        self.state = RunState.INITIALIZED

    # --- Execution ---

    def run_until_pc(self, address: RelocatableValue, cancel: Optional[CancelToken] = None) -> None:
        """
        Step until pc reaches address.

        Args:
            address: Halt address
            cancel: Checked between steps; the run faults with RunCancelledError once set

        Raises:
            VmError: The first fault; the runner is FAULTED afterwards
        """
        self._start_running()
        vm = self.vm
        with self._fault_guard():
            while vm.run_context.pc != address:
                self._check_before_step(cancel)
                vm.step()
        logger.info("Run reached %s after %d steps", address, vm.current_step)

    def run_for_steps(self, steps: int, cancel: Optional[CancelToken] = None) -> None:
        """Execute exactly `steps` steps."""
        self._start_running()
        with self._fault_guard():
            for _ in range(steps):
                self._check_before_step(cancel)
                self.vm.step()

    def _start_running(self) -> None:
        if self.state not in (RunState.INITIALIZED, RunState.RUNNING):
            raise RuntimeError(f"Cannot run in state {self.state}")
        self.state = RunState.RUNNING

    def _check_before_step(self, cancel: Optional[CancelToken]) -> None:
        vm = self.vm
        pc = vm.run_context.pc
        if cancel is not None and cancel.is_set():
            raise RunCancelledError(f"Run cancelled after {vm.current_step} steps", pc=pc)
        max_steps = self.config.max_steps
        if max_steps is not None and vm.current_step >= max_steps:
            raise ProgramTerminationError(
                f"End of program was not reached after {max_steps} steps", pc=pc)
        if pc.segment_index != self.program_base.segment_index or not (
                0 <= pc.offset - self.program_base.offset < len(self.program.data)):
            raise ProgramTerminationError(
                "Execution left the instruction stream without reaching the end of the program",
                pc=pc)

    @contextmanager
    def _fault_guard(self) -> Iterator[None]:
        """Mark the runner FAULTED when a VmError escapes the block."""
        try:
            yield
        except VmError as exc:
            self._fault(exc)
            raise

    def _fault(self, exc: VmError) -> None:
        self.state = RunState.FAULTED
        self.error = exc
        logger.error("Run faulted: %s", exc)

    def end_run(self) -> None:
        """
        Validate the builtin segments and the returned builtin pointers, then halt.

        Raises:
            BuiltinError: If a builtin segment or stop pointer is invalid
        """
        if self.state is not RunState.RUNNING:
            raise RuntimeError(f"Cannot end a run in state {self.state}")
        with self._fault_guard():
            if self.config.validate_builtins:
                for name, runner in self.builtin_runners.items():
                    runner.validate(self.memory)
                    logger.debug("Validated %s builtin (%d cells)", name,
                                 runner.get_used_cells(self.memory))
            if self.config.check_final_stack:
                self.read_return_values()
        self.memory.freeze()
        self.state = RunState.HALTED

    # --- Results ---

    def read_return_values(self) -> RelocatableValue:
        """
        Check the builtin pointers returned by main, which end at ap.

        Returns:
            Address of the first builtin pointer
        """
        pointer = self.vm.run_context.ap
        for runner in reversed(list(self.builtin_runners.values())):
            pointer = runner.final_stack(self.memory, pointer)
        return pointer

    def get_return_values(self, n_ret: int) -> List[MaybeRelocatable]:
        """The last n_ret values pushed before the run ended."""
        ap = self.vm.run_context.ap
        return [self.memory.read(ap - n_ret + i) for i in range(n_ret)]

    def get_output(self) -> List[Optional[MaybeRelocatable]]:
        runner = self.builtin_runners.get(BuiltinName.OUTPUT.value)
        if runner is None:
            return []
        return runner.get_output(self.memory)

    def get_builtin_segments_info(self) -> Dict[str, Tuple[int, int]]:
        """Builtin name -> (segment index, used cells)."""
        return {
            name: (runner.segment_index, runner.get_used_cells(self.memory))
            for name, runner in self.builtin_runners.items()
        }

    def get_air_private_input(self) -> Dict[str, List[Dict[str, Any]]]:
        return {name: runner.air_private_input(self.memory)
                for name, runner in self.builtin_runners.items()}

    def relocate(self) -> RelocatedRun:
        """
        Relocate memory and trace into the flat address space.

        Raises:
            ProgramTerminationError: If the run did not halt
        """
        if self.state is not RunState.HALTED:
            raise ProgramTerminationError(
                f"Cannot relocate a run that did not halt (state: {self.state})")
        self.relocated = relocate_run(self.memory, self.vm.trace)
        return self.relocated


# --- Convenience ---

def run_program(
    program: Program,
    config: Optional[RunConfig] = None,
    inputs: Optional[RunInputs] = None,
    cancel: Optional[CancelToken] = None,
) -> RunResult:
    """
    Run a program from main (or __start__) to its end and relocate it.

    Faults do not raise: they are returned as a FAULTED RunResult carrying an
    ErrorReport and no relocation output.
    """
    inputs = inputs or RunInputs()
    runner = CairoRunner(program, config)
    try:
        runner.initialize_segments()
        end = runner.initialize_main_entrypoint(inputs.args)
        if inputs.initial_registers is not None:
            runner.set_initial_registers(*inputs.initial_registers)
        runner.initialize_vm(hint_locals=dict(inputs.witness))
        runner.run_until_pc(end, cancel=cancel)
        runner.end_run()
        relocated = runner.relocate()
        output = runner.get_output()
    except VmError as exc:
        steps = runner.vm.current_step if runner.vm is not None else 0
        return RunResult(state=RunState.FAULTED, steps=steps, error=exc.to_report())
    return RunResult(
        state=RunState.HALTED,
        steps=runner.vm.current_step,
        relocated=relocated,
        output=output,
    )
