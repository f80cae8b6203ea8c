"""VM - memory, instruction codec, execution engine, runner and relocation.

Submodules are imported explicitly (e.g. `from vm.runner import CairoRunner`):
vm.program depends on the builtin_runners package, which itself builds on
vm.errors and vm.memory.
"""

from vm.errors import (
    BuiltinError,
    DivisionError,
    ErrorReport,
    HintError,
    InvalidInstructionError,
    LoadError,
    MemoryConsistencyError,
    ProgramTerminationError,
    PureValueError,
    RunCancelledError,
    UnknownCellError,
    UnknownSegmentError,
    VmError,
)
from vm.memory import Memory

__all__ = [
    # Errors
    "VmError",
    "ErrorReport",
    "LoadError",
    "InvalidInstructionError",
    "MemoryConsistencyError",
    "UnknownSegmentError",
    "UnknownCellError",
    "DivisionError",
    "PureValueError",
    "BuiltinError",
    "HintError",
    "ProgramTerminationError",
    "RunCancelledError",
    # Memory
    "Memory",
]
