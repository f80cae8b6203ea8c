"""Tests for instruction decoding and encoding."""

import pytest

from vm.errors import InvalidInstructionError
from vm.instruction import (
    ApUpdate,
    FpUpdate,
    Op1Addr,
    Opcode,
    PcUpdate,
    Register,
    Res,
    decode_instruction,
    encode_instruction,
    make_instruction,
)

from tests.helpers import CALL_REL, JNZ_REL, PUSH_IMM, RET

FLAGS_SHIFT = 48


def with_flags(flags: int, offsets: int = 0x800080008000) -> int:
    return flags << FLAGS_SHIFT | offsets


class TestDecode:
    """Tests for decoding known encodings."""

    def test_push_immediate(self) -> None:
        """[ap] = imm; ap++"""
        instr = decode_instruction(PUSH_IMM)
        assert (instr.off0, instr.off1, instr.off2) == (0, -1, 1)
        assert instr.op0_register is Register.FP
        assert instr.op1_addr is Op1Addr.IMM
        assert instr.res is Res.OP1
        assert instr.ap_update is ApUpdate.ADD1
        assert instr.opcode is Opcode.ASSERT_EQ
        assert instr.size == 2

    def test_ret(self) -> None:
        instr = decode_instruction(RET)
        assert (instr.off0, instr.off1, instr.off2) == (-2, -1, -1)
        assert instr.dst_register is Register.FP
        assert instr.op1_addr is Op1Addr.FP
        assert instr.pc_update is PcUpdate.JUMP
        assert instr.fp_update is FpUpdate.DST
        assert instr.opcode is Opcode.RET
        assert instr.size == 1

    def test_call(self) -> None:
        """call rel imm implies ap += 2 and fp = ap + 2."""
        instr = decode_instruction(CALL_REL)
        assert instr.opcode is Opcode.CALL
        assert instr.pc_update is PcUpdate.JUMP_REL
        assert instr.ap_update is ApUpdate.ADD2
        assert instr.fp_update is FpUpdate.AP_PLUS2

    def test_jnz_res_is_unconstrained(self) -> None:
        instr = decode_instruction(JNZ_REL)
        assert instr.pc_update is PcUpdate.JNZ
        assert instr.res is Res.UNCONSTRAINED

    def test_decode_is_cached(self) -> None:
        assert decode_instruction(RET) is decode_instruction(RET)


class TestDecodeValidation:
    """Tests for rejected flag combinations."""

    @pytest.mark.parametrize("flags,reason", [
        (1 << 15, "reserved"),
        ((1 << 5) | (1 << 6), "add and mul"),
        ((1 << 2) | (1 << 3), "op1"),
        ((1 << 7) | (1 << 8), "pc update"),
        ((1 << 10) | (1 << 11), "ap update"),
        ((1 << 12) | (1 << 14), "opcode"),
        ((1 << 9) | (1 << 5), "jnz"),
        ((1 << 12) | (1 << 11), "call"),
    ])
    def test_invalid_flag_combinations(self, flags: int, reason: str) -> None:
        with pytest.raises(InvalidInstructionError, match=reason):
            decode_instruction(with_flags(flags, offsets=0x800180008000))

    def test_immediate_requires_off2_one(self) -> None:
        with pytest.raises(InvalidInstructionError, match="off2"):
            decode_instruction(with_flags(1 << 2, offsets=0x800280008000))

    def test_out_of_range_encoding(self) -> None:
        with pytest.raises(InvalidInstructionError, match="out of range"):
            decode_instruction(2**64)
        with pytest.raises(InvalidInstructionError):
            decode_instruction(-1)

    def test_top_bit_is_reserved_not_out_of_range(self) -> None:
        with pytest.raises(InvalidInstructionError, match="reserved"):
            decode_instruction(2**63)

    def test_error_carries_encoding(self) -> None:
        encoding = with_flags(1 << 15)
        with pytest.raises(InvalidInstructionError) as exc_info:
            decode_instruction(encoding)
        assert exc_info.value.encoding == encoding


class TestEncode:
    """Tests for the encoder used by tooling and tests."""

    def test_known_encodings(self) -> None:
        assert encode_instruction(make_instruction(
            off0=-2, off1=-1, off2=-1, dst_register=Register.FP, op0_register=Register.FP,
            op1_addr=Op1Addr.FP, pc_update=PcUpdate.JUMP, opcode=Opcode.RET)) == RET
        assert encode_instruction(make_instruction(
            off0=0, off1=1, off2=1, op1_addr=Op1Addr.IMM, pc_update=PcUpdate.JUMP_REL,
            opcode=Opcode.CALL)) == CALL_REL
        assert encode_instruction(make_instruction(
            off0=0, off1=-1, off2=1, op0_register=Register.FP, op1_addr=Op1Addr.IMM,
            ap_update=ApUpdate.ADD1, opcode=Opcode.ASSERT_EQ)) == PUSH_IMM

    def test_decode_inverts_encode(self) -> None:
        for encoding in (RET, CALL_REL, PUSH_IMM, JNZ_REL):
            assert encode_instruction(decode_instruction(encoding)) == encoding

    def test_offset_out_of_range(self) -> None:
        with pytest.raises(ValueError):
            encode_instruction(make_instruction(off0=2**15))
