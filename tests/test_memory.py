"""Tests for segmented write-once memory."""

import pytest

from primitives.field import STARK_PRIME
from primitives.relocatable import RelocatableValue
from vm.errors import MemoryConsistencyError, UnknownCellError, UnknownSegmentError
from vm.memory import MAX_SEGMENT_GROWTH, Memory


class TestSegments:
    """Tests for segment allocation and sizes."""

    def test_add_segment_returns_consecutive_bases(self) -> None:
        mem = Memory()
        assert mem.add_segment() == RelocatableValue(0, 0)
        assert mem.add() == RelocatableValue(1, 0)
        assert mem.n_segments == 2

    def test_size_is_one_past_highest_written_offset(self, memory: Memory) -> None:
        memory.write(RelocatableValue(1, 4), 9)
        assert memory.segment_size(1) == 5
        assert memory.segment_sizes() == [0, 5]
        assert memory.segment_cells(1) == [None, None, None, None, 9]

    def test_write_far_past_end_raises(self, memory: Memory) -> None:
        with pytest.raises(MemoryConsistencyError, match="would grow segment 1"):
            memory.write(RelocatableValue(1, MAX_SEGMENT_GROWTH), 1)
        assert memory.segment_size(1) == 0

    def test_unknown_segment_write_raises(self, memory: Memory) -> None:
        with pytest.raises(UnknownSegmentError):
            memory.write(RelocatableValue(7, 0), 1)

    def test_unknown_segment_is_consistency_error(self, memory: Memory) -> None:
        with pytest.raises(MemoryConsistencyError):
            memory.segment_size(5)


class TestWriteOnce:
    """Tests for write-once cells."""

    def test_same_value_twice_succeeds(self, memory: Memory) -> None:
        addr = RelocatableValue(1, 0)
        memory.write(addr, 5)
        memory.write(addr, 5)
        assert memory.read(addr) == 5

    def test_different_value_raises(self, memory: Memory) -> None:
        addr = RelocatableValue(1, 0)
        memory[addr] = 5
        with pytest.raises(MemoryConsistencyError) as exc_info:
            memory[addr] = 6
        assert exc_info.value.address == addr

    def test_different_relocatable_raises(self, memory: Memory) -> None:
        addr = RelocatableValue(1, 0)
        memory[addr] = RelocatableValue(0, 1)
        with pytest.raises(MemoryConsistencyError):
            memory[addr] = RelocatableValue(0, 2)

    def test_values_are_reduced(self, memory: Memory) -> None:
        """-1 and p - 1 are the same field element."""
        addr = RelocatableValue(1, 0)
        memory[addr] = -1
        memory[addr] = STARK_PRIME - 1
        assert memory[addr] == STARK_PRIME - 1

    def test_non_felt_value_raises(self, memory: Memory) -> None:
        with pytest.raises(TypeError):
            memory[RelocatableValue(1, 0)] = "x"

    def test_frozen_memory_rejects_writes(self, memory: Memory) -> None:
        memory.freeze()
        with pytest.raises(MemoryConsistencyError):
            memory[RelocatableValue(1, 0)] = 1
        with pytest.raises(MemoryConsistencyError):
            memory.add_segment()


class TestReads:
    """Tests for reads and auto-deduction."""

    def test_unwritten_read_raises(self, memory: Memory) -> None:
        with pytest.raises(UnknownCellError):
            memory.read(RelocatableValue(1, 3))

    def test_get_returns_default(self, memory: Memory) -> None:
        assert memory.get(RelocatableValue(1, 3)) is None
        assert memory.get(RelocatableValue(1, 3), 0) == 0
        assert RelocatableValue(1, 3) not in memory

    def test_deduction_before_failure(self, memory: Memory) -> None:
        """A deduction rule fills a missing cell on read, and the value sticks."""
        calls = []

        def rule(mem, address):
            calls.append(address)
            return address.offset * 10

        memory.add_auto_deduction_rule(1, rule)
        assert memory.read(RelocatableValue(1, 4)) == 40
        assert memory.get(RelocatableValue(1, 4)) == 40
        assert memory.read(RelocatableValue(1, 4)) == 40
        assert len(calls) == 1

    def test_deduction_miss_raises(self, memory: Memory) -> None:
        memory.add_auto_deduction_rule(1, lambda mem, address: None)
        with pytest.raises(UnknownCellError):
            memory.read(RelocatableValue(1, 0))

    def test_validation_rule_runs_on_first_write(self, memory: Memory) -> None:
        seen = []
        memory.add_validation_rule(1, lambda mem, address: seen.append(address))
        memory[RelocatableValue(1, 0)] = 1
        memory[RelocatableValue(1, 0)] = 1
        assert seen == [RelocatableValue(1, 0)]

    def test_validate_existing_memory(self, memory: Memory) -> None:
        memory[RelocatableValue(1, 2)] = 1
        seen = []
        memory.add_validation_rule(1, lambda mem, address: seen.append(address))
        memory.validate_existing_memory()
        assert seen == [RelocatableValue(1, 2)]


class TestHelpers:
    """Tests for the bulk helpers used by hints and the runner."""

    def test_load_data(self, memory: Memory) -> None:
        end = memory.load_data(RelocatableValue(1, 0), [1, 2, 3])
        assert end == RelocatableValue(1, 3)
        assert [v for _, v in memory.segment_items(1)] == [1, 2, 3]

    def test_load_empty_data(self, memory: Memory) -> None:
        assert memory.load_data(RelocatableValue(1, 0), []) == RelocatableValue(1, 0)

    def test_gen_arg_allocates_segment_for_lists(self, memory: Memory) -> None:
        ptr = memory.gen_arg([4, [5, 6]])
        assert ptr == RelocatableValue(2, 0)
        assert memory[ptr] == 4
        inner = memory[ptr + 1]
        assert isinstance(inner, RelocatableValue)
        assert [memory[inner], memory[inner + 1]] == [5, 6]

    def test_len_counts_written_cells(self, memory: Memory) -> None:
        memory[RelocatableValue(0, 0)] = 1
        memory[RelocatableValue(1, 3)] = 1
        assert len(memory) == 2
