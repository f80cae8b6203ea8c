"""Execution engine: registers, operand deduction and the per-step state machine.

One step of the machine:
    1. run the hints attached to pc (they may write memory or ask to skip the step)
    2. decode memory[pc]
    3. fetch dst, op0 and op1, deducing missing cells (builtin deduction first, then
       the assert-eq algebra of the instruction)
    4. check the opcode assertions and write the deduced cells
    5. record (pc, ap, fp) and update fp, ap and finally pc
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

from primitives.field import STARK_PRIME, div_mod, to_signed
from primitives.relocatable import MaybeRelocatable, RelocatableValue
from vm.errors import (
    DivisionError,
    InvalidInstructionError,
    MemoryConsistencyError,
    PureValueError,
    UnknownCellError,
    VmError,
)
from vm.instruction import (
    ApUpdate,
    FpUpdate,
    Instruction,
    Op1Addr,
    Opcode,
    PcUpdate,
    Register,
    Res,
    decode_instruction,
)
from vm.memory import Memory


if TYPE_CHECKING:
    from builtin_runners.base import BuiltinRunner
    from hints.base import ExecutionScopes, HintProcessor


# --- Value Arithmetic ---

def _shift(address: RelocatableValue, delta: int, operation: str, prime: int) -> RelocatableValue:
    """Move an address by a field element read as a signed offset."""
    offset = to_signed(address.offset + delta, prime)
    if offset < 0:
        raise PureValueError(operation, address, delta, address=address)
    return RelocatableValue(address.segment_index, offset)


def add_values(a: MaybeRelocatable, b: MaybeRelocatable, prime: int = STARK_PRIME) -> MaybeRelocatable:
    """a + b where at most one side is relocatable. Offsets may not go below 0."""
    if isinstance(a, int) and isinstance(b, int):
        return (a + b) % prime
    if isinstance(a, RelocatableValue) and isinstance(b, int):
        return _shift(a, b, "+", prime)
    if isinstance(a, int) and isinstance(b, RelocatableValue):
        return _shift(b, a, "+", prime)
    raise PureValueError("+", a, b)


def sub_values(a: MaybeRelocatable, b: MaybeRelocatable, prime: int = STARK_PRIME) -> MaybeRelocatable:
    """a - b; relocatable minus relocatable is only defined within one segment."""
    if isinstance(a, int) and isinstance(b, int):
        return (a - b) % prime
    if isinstance(a, RelocatableValue) and isinstance(b, int):
        return _shift(a, -b, "-", prime)
    if (isinstance(a, RelocatableValue) and isinstance(b, RelocatableValue)
            and a.segment_index == b.segment_index):
        return (a.offset - b.offset) % prime
    raise PureValueError("-", a, b)


def mul_values(a: MaybeRelocatable, b: MaybeRelocatable, prime: int = STARK_PRIME) -> int:
    if isinstance(a, int) and isinstance(b, int):
        return (a * b) % prime
    raise PureValueError("*", a, b)


def is_zero(value: MaybeRelocatable) -> bool:
    """Field-element zero test. Addresses are never zero."""
    if isinstance(value, int):
        return value == 0
    return False


# --- Data Structures ---

@dataclass(frozen=True)
class TraceEntry:
    """Registers before an executed step."""
    pc: RelocatableValue
    ap: RelocatableValue
    fp: RelocatableValue


@dataclass
class Operands:
    """Operand values of one step. res is None for unconstrained results (jnz)."""
    dst: MaybeRelocatable
    res: Optional[MaybeRelocatable]
    op0: MaybeRelocatable
    op1: MaybeRelocatable


@dataclass
class RunContext:
    """
    The live registers of a run.

    Attributes:
        memory: Memory of the run
        pc: Program counter
        ap: Allocation pointer
        fp: Frame pointer
        prime: Field prime
    """
    memory: Memory
    pc: RelocatableValue
    ap: RelocatableValue
    fp: RelocatableValue
    prime: int = STARK_PRIME

    def get_instruction_encoding(self) -> int:
        encoding = self.memory.read(self.pc)
        if not isinstance(encoding, int):
            raise InvalidInstructionError(f"Instruction should be an int, found {encoding}",
                                          pc=self.pc)
        return encoding

    def _register(self, register: Register) -> RelocatableValue:
        return self.ap if register is Register.AP else self.fp

    def compute_dst_addr(self, instruction: Instruction) -> RelocatableValue:
        return add_values(self._register(instruction.dst_register), instruction.off0, self.prime)

    def compute_op0_addr(self, instruction: Instruction) -> RelocatableValue:
        return add_values(self._register(instruction.op0_register), instruction.off1, self.prime)

    def compute_op1_addr(self, instruction: Instruction,
                         op0: Optional[MaybeRelocatable]) -> RelocatableValue:
        if instruction.op1_addr is Op1Addr.FP:
            base = self.fp
        elif instruction.op1_addr is Op1Addr.AP:
            base = self.ap
        elif instruction.op1_addr is Op1Addr.IMM:
            base = self.pc
        else:
            if op0 is None:
                raise UnknownCellError("op0 must be known in double dereference",
                                       address=self.compute_op0_addr(instruction))
            if not isinstance(op0, RelocatableValue):
                raise PureValueError("double dereference", op0)
            base = op0
        return add_values(base, instruction.off2, self.prime)


# --- Virtual Machine ---

class VirtualMachine:
    """
    Executes instructions one step at a time.

    Args:
        run_context: Registers and memory of the run
        hint_processor: Compiled hints of the program, or None for hint-free runs
        exec_scopes: Run-scoped scratch store shared by all hints
        builtin_runners: Builtin runners of the run by name
        program_base: Base address of the program segment
        trace_enabled: Record a TraceEntry per step
    """

    def __init__(
        self,
        run_context: RunContext,
        hint_processor: Optional["HintProcessor"] = None,
        exec_scopes: Optional["ExecutionScopes"] = None,
        builtin_runners: Optional[Dict[str, "BuiltinRunner"]] = None,
        program_base: Optional[RelocatableValue] = None,
        trace_enabled: bool = True,
    ):
        self.run_context = run_context
        self.hint_processor = hint_processor
        self.exec_scopes = exec_scopes
        self.builtin_runners = builtin_runners or {}
        self.program_base = program_base
        self.trace_enabled = trace_enabled
        self.trace: List[TraceEntry] = []
        self.accessed_addresses: Set[RelocatableValue] = set()
        self.current_step = 0
        self.skip_instruction_execution = False

    @property
    def memory(self) -> Memory:
        return self.run_context.memory

    @property
    def prime(self) -> int:
        return self.run_context.prime

    # --- Stepping ---

    def step(self) -> None:
        """
        Execute the hints at pc and then the instruction at pc.

        Raises:
            VmError: Any fault, with the pc of the step attached
        """
        pc = self.run_context.pc
        try:
            self.skip_instruction_execution = False
            if self.hint_processor is not None:
                self.hint_processor.execute_hints(self)
            if self.skip_instruction_execution:
                return
            instruction = self.decode_current_instruction()
            self.run_instruction(instruction)
        except VmError as exc:
            raise exc.with_pc(pc)

    def decode_current_instruction(self) -> Instruction:
        return decode_instruction(self.run_context.get_instruction_encoding())

    def run_instruction(self, instruction: Instruction) -> None:
        operands, addresses = self.compute_operands(instruction)
        self.opcode_assertions(instruction, operands)

        if self.trace_enabled:
            ctx = self.run_context
            self.trace.append(TraceEntry(pc=ctx.pc, ap=ctx.ap, fp=ctx.fp))
        self.accessed_addresses.update(addresses)
        self.accessed_addresses.add(self.run_context.pc)

        self.update_registers(instruction, operands)
        self.current_step += 1

    # --- Operands ---

    def compute_operands(self, instruction: Instruction) -> Tuple[Operands, List[RelocatableValue]]:
        """
        Fetch the operands of an instruction, deducing and writing the missing ones.

        Returns:
            (operands, [dst_addr, op0_addr, op1_addr])
        """
        ctx = self.run_context
        memory = self.memory

        dst_addr = ctx.compute_dst_addr(instruction)
        dst = memory.get(dst_addr)
        op0_addr = ctx.compute_op0_addr(instruction)
        op0 = memory.get(op0_addr)
        if op0 is None:
            op0 = memory.deduce(op0_addr)
        op1_addr = ctx.compute_op1_addr(instruction, op0)
        op1 = memory.get(op1_addr)

        should_update_dst = dst is None
        should_update_op0 = op0 is None
        should_update_op1 = op1 is None

        res: Optional[MaybeRelocatable] = None

        if op0 is None:
            op0, deduced_res = self.deduce_op0(instruction, dst, op1)
            if res is None:
                res = deduced_res

        if op1 is None:
            op1 = memory.deduce(op1_addr)
        if op1 is None:
            op1, deduced_res = self.deduce_op1(instruction, dst, op0)
            if res is None:
                res = deduced_res

        # Anything still missing must come from memory (raises UnknownCellError).
        if op0 is None:
            op0 = memory.read(op0_addr)
        if op1 is None:
            op1 = memory.read(op1_addr)

        if res is None:
            res = self.compute_res(instruction, op0, op1)

        if dst is None:
            if instruction.opcode is Opcode.ASSERT_EQ and res is not None:
                dst = res
            elif instruction.opcode is Opcode.CALL:
                dst = ctx.fp
            else:
                dst = memory.read(dst_addr)

        if should_update_dst:
            memory.write(dst_addr, dst)
        if should_update_op0:
            memory.write(op0_addr, op0)
        if should_update_op1:
            memory.write(op1_addr, op1)

        return Operands(dst=dst, res=res, op0=op0, op1=op1), [dst_addr, op0_addr, op1_addr]

    def deduce_op0(
        self, instruction: Instruction, dst: Optional[MaybeRelocatable],
        op1: Optional[MaybeRelocatable],
    ) -> Tuple[Optional[MaybeRelocatable], Optional[MaybeRelocatable]]:
        """Deduce op0 from the assert-eq equation. Returns (op0, res), Nones if undetermined."""
        if instruction.opcode is Opcode.CALL:
            return add_values(self.run_context.pc, instruction.size, self.prime), None
        if instruction.opcode is Opcode.ASSERT_EQ and dst is not None and op1 is not None:
            if instruction.res is Res.ADD:
                return sub_values(dst, op1, self.prime), dst
            if instruction.res is Res.MUL and isinstance(dst, int) and isinstance(op1, int):
                if op1 == 0:
                    raise DivisionError(f"Cannot deduce op0: division of {dst} by zero")
                return div_mod(dst, op1, self.prime), dst
        return None, None

    def deduce_op1(
        self, instruction: Instruction, dst: Optional[MaybeRelocatable],
        op0: Optional[MaybeRelocatable],
    ) -> Tuple[Optional[MaybeRelocatable], Optional[MaybeRelocatable]]:
        """Deduce op1 from the assert-eq equation. Returns (op1, res), Nones if undetermined."""
        if instruction.opcode is not Opcode.ASSERT_EQ or dst is None:
            return None, None
        if instruction.res is Res.OP1:
            return dst, dst
        if op0 is None:
            return None, None
        if instruction.res is Res.ADD:
            return sub_values(dst, op0, self.prime), dst
        if instruction.res is Res.MUL and isinstance(dst, int) and isinstance(op0, int):
            if op0 == 0:
                raise DivisionError(f"Cannot deduce op1: division of {dst} by zero")
            return div_mod(dst, op0, self.prime), dst
        return None, None

    def compute_res(self, instruction: Instruction, op0: MaybeRelocatable,
                    op1: MaybeRelocatable) -> Optional[MaybeRelocatable]:
        if instruction.res is Res.OP1:
            return op1
        if instruction.res is Res.ADD:
            return add_values(op0, op1, self.prime)
        if instruction.res is Res.MUL:
            return mul_values(op0, op1, self.prime)
        return None

    def opcode_assertions(self, instruction: Instruction, operands: Operands) -> None:
        if instruction.opcode is Opcode.ASSERT_EQ:
            if operands.res is None:
                raise InvalidInstructionError(
                    "An ASSERT_EQ instruction cannot have an unconstrained result")
            if operands.dst != operands.res:
                raise MemoryConsistencyError(
                    f"An ASSERT_EQ instruction failed: {operands.dst} != {operands.res}.")
        elif instruction.opcode is Opcode.CALL:
            return_pc = add_values(self.run_context.pc, instruction.size, self.prime)
            if operands.op0 != return_pc:
                raise MemoryConsistencyError(
                    f"Call failed to write return-pc (inconsistent op0): "
                    f"{operands.op0} != {return_pc}.")
            if operands.dst != self.run_context.fp:
                raise MemoryConsistencyError(
                    f"Call failed to write return-fp (inconsistent dst): "
                    f"{operands.dst} != {self.run_context.fp}.")

    # --- Register Updates ---

    def update_registers(self, instruction: Instruction, operands: Operands) -> None:
        """Update fp, then ap, then pc."""
        ctx = self.run_context

        if instruction.fp_update is FpUpdate.AP_PLUS2:
            ctx.fp = add_values(ctx.ap, 2, self.prime)
        elif instruction.fp_update is FpUpdate.DST:
            if isinstance(operands.dst, RelocatableValue):
                ctx.fp = operands.dst
            else:
                ctx.fp = add_values(ctx.fp, operands.dst, self.prime)

        if instruction.ap_update is ApUpdate.ADD:
            if operands.res is None:
                raise InvalidInstructionError("Res.UNCONSTRAINED cannot be used with ApUpdate.ADD")
            if not isinstance(operands.res, int):
                raise PureValueError("ap += res", operands.res)
            ctx.ap = add_values(ctx.ap, operands.res, self.prime)
        elif instruction.ap_update is ApUpdate.ADD1:
            ctx.ap = ctx.ap + 1
        elif instruction.ap_update is ApUpdate.ADD2:
            ctx.ap = ctx.ap + 2

        if instruction.pc_update is PcUpdate.REGULAR:
            ctx.pc = ctx.pc + instruction.size
        elif instruction.pc_update is PcUpdate.JUMP:
            if not isinstance(operands.res, RelocatableValue):
                raise PureValueError("jmp abs", operands.res)
            ctx.pc = operands.res
        elif instruction.pc_update is PcUpdate.JUMP_REL:
            if not isinstance(operands.res, int):
                raise PureValueError("jmp rel", operands.res)
            ctx.pc = add_values(ctx.pc, operands.res, self.prime)
        elif instruction.pc_update is PcUpdate.JNZ:
            if is_zero(operands.dst):
                ctx.pc = ctx.pc + instruction.size
            else:
                if not isinstance(operands.op1, int):
                    raise PureValueError("jnz", operands.op1)
                ctx.pc = add_values(ctx.pc, operands.op1, self.prime)
