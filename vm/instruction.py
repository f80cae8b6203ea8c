"""Instruction representation, decoder and encoder.

An encoded instruction is a 63-bit field element:

    bits  0..15   off0 (dst offset), biased by 2^15
    bits 16..31   off1 (op0 offset), biased by 2^15
    bits 32..47   off2 (op1 offset), biased by 2^15
    bits 48..63   flags (see the *_BIT constants, relative to bit 48)

Decoding is pure: it never touches memory. Immediate values live in the cell after
the instruction and are fetched by the VM as op1 (pc + off2, with off2 == 1).
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

from vm.errors import InvalidInstructionError

# --- Encoding Layout ---

OFFSET_BITS = 16
OFFSET_BIAS = 2 ** (OFFSET_BITS - 1)
N_FLAGS = 16
FLAGS_SHIFT = 3 * OFFSET_BITS
MAX_ENCODING = 2 ** (FLAGS_SHIFT + N_FLAGS)

DST_REG_BIT = 0
OP0_REG_BIT = 1
OP1_IMM_BIT = 2
OP1_FP_BIT = 3
OP1_AP_BIT = 4
RES_ADD_BIT = 5
RES_MUL_BIT = 6
PC_JUMP_ABS_BIT = 7
PC_JUMP_REL_BIT = 8
PC_JNZ_BIT = 9
AP_ADD_BIT = 10
AP_ADD1_BIT = 11
OPCODE_CALL_BIT = 12
OPCODE_RET_BIT = 13
OPCODE_ASSERT_EQ_BIT = 14
RESERVED_BIT = 15


# --- Instruction Fields ---

class Register(Enum):
    AP = 0
    FP = 1


class Op1Addr(Enum):
    """Where op1 is read from."""
    OP0 = 0   # [op0 + off2] (double dereference)
    IMM = 1   # [pc + 1]
    FP = 2    # [fp + off2]
    AP = 4    # [ap + off2]


class Res(Enum):
    """Combinator applied to op0 and op1."""
    OP1 = 0
    ADD = 1
    MUL = 2
    UNCONSTRAINED = 3  # jnz only; res is not computed


class PcUpdate(Enum):
    REGULAR = 0   # pc += size
    JUMP = 1      # pc = res
    JUMP_REL = 2  # pc += res
    JNZ = 4       # pc += op1 if dst != 0 else size


class ApUpdate(Enum):
    REGULAR = 0
    ADD = 1    # ap += res
    ADD1 = 2   # ap += 1
    ADD2 = 3   # ap += 2 (call only, implied by the opcode)


class FpUpdate(Enum):
    REGULAR = 0
    AP_PLUS2 = 1  # call: fp = ap + 2
    DST = 2       # ret: fp = dst


class Opcode(Enum):
    NOP = 0
    CALL = 1
    RET = 2
    ASSERT_EQ = 4


@dataclass(frozen=True)
class Instruction:
    """A decoded instruction."""
    off0: int
    off1: int
    off2: int
    dst_register: Register
    op0_register: Register
    op1_addr: Op1Addr
    res: Res
    pc_update: PcUpdate
    ap_update: ApUpdate
    fp_update: FpUpdate
    opcode: Opcode

    @property
    def size(self) -> int:
        """Number of memory cells the instruction occupies (2 with an immediate)."""
        return 2 if self.op1_addr is Op1Addr.IMM else 1


# --- Decoding ---

_OP1_ADDR_BY_BITS = {0: Op1Addr.OP0, 1: Op1Addr.IMM, 2: Op1Addr.FP, 4: Op1Addr.AP}
_PC_UPDATE_BY_BITS = {0: PcUpdate.REGULAR, 1: PcUpdate.JUMP, 2: PcUpdate.JUMP_REL, 4: PcUpdate.JNZ}
_AP_UPDATE_BY_BITS = {0: ApUpdate.REGULAR, 1: ApUpdate.ADD, 2: ApUpdate.ADD1}
_OPCODE_BY_BITS = {0: Opcode.NOP, 1: Opcode.CALL, 2: Opcode.RET, 4: Opcode.ASSERT_EQ}


def _flag(flags: int, bit: int) -> int:
    return (flags >> bit) & 1


@lru_cache(maxsize=None)
def decode_instruction(encoding: int) -> Instruction:
    """
    Decode an encoded instruction.

    Args:
        encoding: Field element holding the instruction

    Returns:
        The decoded Instruction

    Raises:
        InvalidInstructionError: If the flags encode an unsupported combination
    """
    if not isinstance(encoding, int) or not 0 <= encoding < MAX_ENCODING:
        raise InvalidInstructionError(f"Instruction encoding {encoding!r} is out of range",
                                      encoding=encoding)

    off0 = (encoding & 0xFFFF) - OFFSET_BIAS
    off1 = ((encoding >> OFFSET_BITS) & 0xFFFF) - OFFSET_BIAS
    off2 = ((encoding >> (2 * OFFSET_BITS)) & 0xFFFF) - OFFSET_BIAS
    flags = encoding >> FLAGS_SHIFT

    def invalid(reason: str) -> InvalidInstructionError:
        return InvalidInstructionError(f"Invalid instruction 0x{encoding:x}: {reason}",
                                       encoding=encoding)

    if _flag(flags, RESERVED_BIT):
        raise invalid("reserved flag bit is set")

    dst_register = Register.FP if _flag(flags, DST_REG_BIT) else Register.AP
    op0_register = Register.FP if _flag(flags, OP0_REG_BIT) else Register.AP

    op1_bits = (_flag(flags, OP1_IMM_BIT)
                | _flag(flags, OP1_FP_BIT) << 1
                | _flag(flags, OP1_AP_BIT) << 2)
    if op1_bits not in _OP1_ADDR_BY_BITS:
        raise invalid(f"invalid op1 source flags {op1_bits:03b}")
    op1_addr = _OP1_ADDR_BY_BITS[op1_bits]
    if op1_addr is Op1Addr.IMM and off2 != 1:
        raise invalid(f"immediate op1 requires off2 == 1, got {off2}")

    pc_bits = (_flag(flags, PC_JUMP_ABS_BIT)
               | _flag(flags, PC_JUMP_REL_BIT) << 1
               | _flag(flags, PC_JNZ_BIT) << 2)
    if pc_bits not in _PC_UPDATE_BY_BITS:
        raise invalid(f"invalid pc update flags {pc_bits:03b}")
    pc_update = _PC_UPDATE_BY_BITS[pc_bits]

    res_bits = _flag(flags, RES_ADD_BIT) | _flag(flags, RES_MUL_BIT) << 1
    if res_bits == 3:
        raise invalid("both add and mul combinators are set")
    if pc_update is PcUpdate.JNZ:
        if res_bits != 0:
            raise invalid("jnz requires the op1 combinator")
        res = Res.UNCONSTRAINED
    else:
        res = {0: Res.OP1, 1: Res.ADD, 2: Res.MUL}[res_bits]

    ap_bits = _flag(flags, AP_ADD_BIT) | _flag(flags, AP_ADD1_BIT) << 1
    if ap_bits not in _AP_UPDATE_BY_BITS:
        raise invalid("both ap update flags are set")
    ap_update = _AP_UPDATE_BY_BITS[ap_bits]

    opcode_bits = (_flag(flags, OPCODE_CALL_BIT)
                   | _flag(flags, OPCODE_RET_BIT) << 1
                   | _flag(flags, OPCODE_ASSERT_EQ_BIT) << 2)
    if opcode_bits not in _OPCODE_BY_BITS:
        raise invalid(f"invalid opcode flags {opcode_bits:03b}")
    opcode = _OPCODE_BY_BITS[opcode_bits]

    if opcode is Opcode.CALL:
        if ap_update is not ApUpdate.REGULAR:
            raise invalid("call must not update ap explicitly")
        ap_update = ApUpdate.ADD2

    if opcode is Opcode.CALL:
        fp_update = FpUpdate.AP_PLUS2
    elif opcode is Opcode.RET:
        fp_update = FpUpdate.DST
    else:
        fp_update = FpUpdate.REGULAR

    return Instruction(
        off0=off0,
        off1=off1,
        off2=off2,
        dst_register=dst_register,
        op0_register=op0_register,
        op1_addr=op1_addr,
        res=res,
        pc_update=pc_update,
        ap_update=ap_update,
        fp_update=fp_update,
        opcode=opcode,
    )


# --- Encoding ---

def encode_instruction(instruction: Instruction) -> int:
    """Encode an Instruction. Inverse of decode_instruction."""
    for name in ("off0", "off1", "off2"):
        off = getattr(instruction, name)
        if not -OFFSET_BIAS <= off < OFFSET_BIAS:
            raise ValueError(f"{name}={off} does not fit in {OFFSET_BITS} signed bits")

    flags = 0
    if instruction.dst_register is Register.FP:
        flags |= 1 << DST_REG_BIT
    if instruction.op0_register is Register.FP:
        flags |= 1 << OP0_REG_BIT
    flags |= {
        Op1Addr.OP0: 0,
        Op1Addr.IMM: 1 << OP1_IMM_BIT,
        Op1Addr.FP: 1 << OP1_FP_BIT,
        Op1Addr.AP: 1 << OP1_AP_BIT,
    }[instruction.op1_addr]
    flags |= {
        Res.OP1: 0,
        Res.UNCONSTRAINED: 0,
        Res.ADD: 1 << RES_ADD_BIT,
        Res.MUL: 1 << RES_MUL_BIT,
    }[instruction.res]
    flags |= {
        PcUpdate.REGULAR: 0,
        PcUpdate.JUMP: 1 << PC_JUMP_ABS_BIT,
        PcUpdate.JUMP_REL: 1 << PC_JUMP_REL_BIT,
        PcUpdate.JNZ: 1 << PC_JNZ_BIT,
    }[instruction.pc_update]
    flags |= {
        ApUpdate.REGULAR: 0,
        ApUpdate.ADD2: 0,
        ApUpdate.ADD: 1 << AP_ADD_BIT,
        ApUpdate.ADD1: 1 << AP_ADD1_BIT,
    }[instruction.ap_update]
    flags |= {
        Opcode.NOP: 0,
        Opcode.CALL: 1 << OPCODE_CALL_BIT,
        Opcode.RET: 1 << OPCODE_RET_BIT,
        Opcode.ASSERT_EQ: 1 << OPCODE_ASSERT_EQ_BIT,
    }[instruction.opcode]

    return (
        (instruction.off0 + OFFSET_BIAS)
        | (instruction.off1 + OFFSET_BIAS) << OFFSET_BITS
        | (instruction.off2 + OFFSET_BIAS) << (2 * OFFSET_BITS)
        | flags << FLAGS_SHIFT
    )


def make_instruction(
    off0: int = 0,
    off1: int = 0,
    off2: int = 0,
    dst_register: Register = Register.AP,
    op0_register: Register = Register.AP,
    op1_addr: Op1Addr = Op1Addr.AP,
    res: Res = Res.OP1,
    pc_update: PcUpdate = PcUpdate.REGULAR,
    ap_update: ApUpdate = ApUpdate.REGULAR,
    opcode: Opcode = Opcode.NOP,
) -> Instruction:
    """Build an Instruction with the implied fields (fp update, call ap update) filled in."""
    if opcode is Opcode.CALL:
        ap_update = ApUpdate.ADD2
        fp_update = FpUpdate.AP_PLUS2
    elif opcode is Opcode.RET:
        fp_update = FpUpdate.DST
    else:
        fp_update = FpUpdate.REGULAR
    if pc_update is PcUpdate.JNZ:
        res = Res.UNCONSTRAINED
    return Instruction(off0, off1, off2, dst_register, op0_register, op1_addr, res,
                       pc_update, ap_update, fp_update, opcode)
