"""
Error taxonomy of the VM.

Every fault is fatal to the run that produced it. Errors carry the offending program
counter and/or memory address so a failed run can still be reported in a structured
way (see ErrorReport).
"""

from dataclasses import dataclass
from typing import Optional

from primitives.relocatable import MaybeRelocatable, RelocatableValue


@dataclass(frozen=True)
class ErrorReport:
    """Structured description of a faulted run."""
    kind: str
    message: str
    pc: int = 0
    pc_segment: int = 0
    address: Optional[str] = None


class VmError(Exception):
    """Base class of all run faults."""

    def __init__(
        self,
        message: str,
        pc: Optional[MaybeRelocatable] = None,
        address: Optional[MaybeRelocatable] = None,
    ):
        super().__init__(message)
        self.message = message
        self.pc = pc
        self.address = address

    def with_pc(self, pc: MaybeRelocatable) -> "VmError":
        """Attach the pc of the failing step if the error does not carry one yet."""
        if self.pc is None:
            self.pc = pc
        return self

    def to_report(self) -> ErrorReport:
        pc_segment, pc_offset = 0, 0
        if isinstance(self.pc, RelocatableValue):
            pc_segment, pc_offset = self.pc.segment_index, self.pc.offset
        elif isinstance(self.pc, int) and self.pc >= 0:
            pc_offset = self.pc
        return ErrorReport(
            kind=type(self).__name__,
            message=self.message,
            pc=pc_offset,
            pc_segment=pc_segment,
            address=None if self.address is None else str(self.address),
        )

    def __str__(self) -> str:
        parts = []
        if self.pc is not None:
            parts.append(f"pc={self.pc}")
        if self.address is not None:
            parts.append(f"address={self.address}")
        location = f" ({', '.join(parts)})" if parts else ""
        return f"{self.message}{location}"


class LoadError(VmError):
    """Malformed or unsupported program artifact."""


class InvalidInstructionError(VmError):
    """An encoded instruction whose flags form an unsupported combination."""

    def __init__(self, message: str, encoding: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.encoding = encoding


class MemoryConsistencyError(VmError):
    """A write-once violation (or a failed equality assertion on a written cell)."""


class UnknownSegmentError(MemoryConsistencyError):
    """Access to a segment that was never allocated."""


class UnknownCellError(VmError):
    """Read of a cell that was never written and could not be deduced."""


class DivisionError(VmError):
    """Deduction through a mul combinator whose divisor is zero."""


class PureValueError(VmError):
    """An arithmetic operation that is undefined on relocatable values."""

    def __init__(self, operation: str, *values: MaybeRelocatable, **kwargs):
        values_str = ", ".join(str(v) for v in values)
        super().__init__(f"Could not complete computation '{operation}' on {values_str}", **kwargs)
        self.operation = operation


class BuiltinError(VmError):
    """A builtin predicate was violated or a value could not be deduced."""

    def __init__(self, builtin_name: str, message: str, address: Optional[MaybeRelocatable] = None,
                 **kwargs):
        super().__init__(f"{builtin_name} builtin: {message}", address=address, **kwargs)
        self.builtin_name = builtin_name


class HintError(VmError):
    """An exception raised while executing hint code."""

    def __init__(self, message: str, hint_index: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.hint_index = hint_index


class ProgramTerminationError(VmError):
    """Execution left the instruction stream or ran out of steps before halting."""


class RunCancelledError(VmError):
    """The run was aborted between two steps."""
