"""Instruction and program builders shared by the tests."""

from typing import Dict, List, Optional, Sequence

from builtin_runners import get_builtin_runner
from hints.base import ExecutionScopes
from primitives.relocatable import MaybeRelocatable, RelocatableValue
from vm.instruction import (
    ApUpdate,
    Op1Addr,
    Opcode,
    PcUpdate,
    Register,
    Res,
    encode_instruction,
    make_instruction,
)
from vm.memory import Memory
from vm.program import CompiledHint, Program
from vm.vm_core import RunContext, VirtualMachine

# [ap] = [ap + 1] + [ap + 2]
ASSERT_ADD = encode_instruction(make_instruction(
    off0=0, off1=1, off2=2, res=Res.ADD, opcode=Opcode.ASSERT_EQ))

# [ap] = [ap + 1] * [ap + 2]
ASSERT_MUL = encode_instruction(make_instruction(
    off0=0, off1=1, off2=2, res=Res.MUL, opcode=Opcode.ASSERT_EQ))

# [ap] = imm; ap++
PUSH_IMM = 0x480680017FFF8000

# ret
RET = 0x208B7FFF7FFF7FFE

# call rel imm
CALL_REL = 0x1104800180018000

# jmp rel imm if [ap - 1] != 0
JNZ_REL = encode_instruction(make_instruction(
    off0=-1, off1=-1, off2=1, op0_register=Register.FP, op1_addr=Op1Addr.IMM,
    pc_update=PcUpdate.JNZ))

# jmp rel imm
JMP_REL = encode_instruction(make_instruction(
    off0=-1, off1=-1, off2=1, dst_register=Register.FP, op0_register=Register.FP,
    op1_addr=Op1Addr.IMM, pc_update=PcUpdate.JUMP_REL))

# [ap - 1] = [[fp - 3]]
STORE_AT_ARG_PTR = encode_instruction(make_instruction(
    off0=-1, off1=-3, off2=0, op0_register=Register.FP, op1_addr=Op1Addr.OP0,
    opcode=Opcode.ASSERT_EQ))

# [ap] = [fp - 3] + imm; ap++
PUSH_ARG_PLUS_IMM = encode_instruction(make_instruction(
    off0=0, off1=-3, off2=1, op0_register=Register.FP, op1_addr=Op1Addr.IMM,
    res=Res.ADD, ap_update=ApUpdate.ADD1, opcode=Opcode.ASSERT_EQ))


def push_imm(value: int) -> List[int]:
    return [PUSH_IMM, value]


def store_one_in_builtin(builtin: str, value: int) -> Program:
    """main(ptr) -> ptr + 1, after writing value at [ptr]."""
    data = push_imm(value) + [STORE_AT_ARG_PTR, PUSH_ARG_PLUS_IMM, 1, RET]
    return Program(data=data, builtins=[builtin], main=0)


def return_constant(value: int) -> Program:
    """main() -> value."""
    return Program(data=push_imm(value) + [RET], main=0)


def add_proof_program() -> Program:
    """A single `[ap] = [ap + 1] + [ap + 2]` with __start__ = 0 and __end__ = 1."""
    return Program(data=[ASSERT_ADD], main=0, start=0, end=1)


def hinted_program(data: Sequence[int], hints: Dict[int, List[str]],
                   builtins: Optional[List[str]] = None) -> Program:
    return Program(
        data=list(data),
        hints={pc: [CompiledHint(code=code) for code in codes] for pc, codes in hints.items()},
        builtins=builtins or [],
        main=0,
    )


def make_vm(
    data: Sequence[int],
    stack: Sequence[MaybeRelocatable] = (),
    ap_offset: Optional[int] = None,
    fp_offset: Optional[int] = None,
    builtins: Sequence[str] = (),
) -> VirtualMachine:
    """
    A bare VM: program in segment 0, stack in segment 1, then builtin segments.

    ap and fp default to just past the stack.
    """
    memory = Memory()
    program_base = memory.add_segment()
    execution_base = memory.add_segment()
    runners = {}
    for name in builtins:
        runner = get_builtin_runner(name)
        runner.initialize_segments(memory)
        runner.add_validation_rules(memory)
        runner.add_auto_deduction_rules(memory)
        runners[name] = runner
    memory.load_data(program_base, data)
    memory.load_data(execution_base, stack)
    ap = execution_base + (len(stack) if ap_offset is None else ap_offset)
    fp = execution_base + (len(stack) if fp_offset is None else fp_offset)
    context = RunContext(memory=memory, pc=program_base, ap=ap, fp=fp)
    return VirtualMachine(
        run_context=context,
        exec_scopes=ExecutionScopes(),
        builtin_runners=runners,
        program_base=program_base,
    )


def addr(segment_index: int, offset: int) -> RelocatableValue:
    return RelocatableValue(segment_index, offset)
