"""Run configuration and run inputs."""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class RunConfig:
    """
    Knobs of a single run.

    Attributes:
        proof_mode: Enter through __start__ and halt at __end__ instead of returning
            from main
        max_steps: Abort with ProgramTerminationError after this many steps (None = no limit)
        trace_enabled: Record a (pc, ap, fp) entry per step
        allow_python_hints: Execute hint code without a native implementation as Python
        validate_builtins: Run the full builtin validation pass in end_run()
        check_final_stack: Check the builtin pointers returned by main
    """
    proof_mode: bool = False
    max_steps: Optional[int] = None
    trace_enabled: bool = True
    allow_python_hints: bool = True
    validate_builtins: bool = True
    check_final_stack: bool = True

    def __post_init__(self) -> None:
        if self.max_steps is not None and self.max_steps < 0:
            raise ValueError(f"max_steps must be non-negative, got {self.max_steps}")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RunConfig":
        """Build a config from a plain dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise KeyError(f"Unknown run config keys: {sorted(unknown)}")
        return cls(**d)


@dataclass
class RunInputs:
    """
    External inputs of a run.

    Attributes:
        args: Extra arguments pushed after the builtin pointers when entering main
            (lists become freshly allocated segments)
        witness: Values exposed to hints through the root execution scope
        initial_registers: Optional (pc, ap, fp) offsets overriding the defaults;
            pc is relative to the program segment, ap and fp to the execution segment
    """
    args: List[Any] = field(default_factory=list)
    witness: Dict[str, Any] = field(default_factory=dict)
    initial_registers: Optional[Tuple[int, int, int]] = None
