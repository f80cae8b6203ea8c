"""Compiled program artifact loader."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from builtin_runners import validate_builtin_names
from primitives.field import STARK_PRIME
from vm.errors import LoadError

logger = logging.getLogger(__name__)


# --- Data Structures ---

@dataclass(frozen=True)
class ApTracking:
    """Position of ap relative to the start of its tracking group."""
    group: int = 0
    offset: int = 0


@dataclass(frozen=True)
class FlowTrackingData:
    """References visible at a program point and the ap tracking there."""
    ap_tracking: ApTracking = field(default_factory=ApTracking)
    reference_ids: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class CompiledHint:
    """Hint code attached to a program counter."""
    code: str
    accessible_scopes: List[str] = field(default_factory=list)
    flow_tracking_data: FlowTrackingData = field(default_factory=FlowTrackingData)


@dataclass(frozen=True)
class Reference:
    """A compiler reference, e.g. '[cast(fp + (-3), felt*)]'."""
    pc: int
    value: str
    ap_tracking: ApTracking = field(default_factory=ApTracking)


@dataclass(frozen=True)
class Program:
    """
    An immutable compiled program.

    Attributes:
        data: Instruction stream (encoded instructions and immediates)
        hints: Hints by pc offset, in execution order
        builtins: Required builtin names, in canonical order
        main: Entry offset (pc of the main function)
        start: Offset of the __start__ label (proof mode entry), if any
        end: Offset of the __end__ label (halt marker), if any
        identifiers: Identifier table from the compiler, keyed by full name
        references: Reference manager entries, indexed by reference id
        main_scope: Name of the main module scope
        prime: Field prime the program was compiled for
    """
    data: List[int]
    hints: Dict[int, List[CompiledHint]] = field(default_factory=dict)
    builtins: List[str] = field(default_factory=list)
    main: Optional[int] = 0
    start: Optional[int] = None
    end: Optional[int] = None
    identifiers: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    references: List[Reference] = field(default_factory=list)
    main_scope: str = "__main__"
    prime: int = STARK_PRIME

    def __post_init__(self) -> None:
        if self.prime != STARK_PRIME:
            raise LoadError(f"Unsupported prime 0x{self.prime:x}; expected 0x{STARK_PRIME:x}")
        for i, word in enumerate(self.data):
            if not isinstance(word, int) or not 0 <= word < self.prime:
                raise LoadError(f"Program data word {i} is not a field element: {word!r}")
        if self.main is None and self.start is None:
            raise LoadError("Program has neither a main function nor a __start__ label")
        validate_builtin_names(self.builtins)
        for pc in self.hints:
            if not 0 <= pc < len(self.data):
                raise LoadError(f"Hint attached to pc {pc} outside of the program")

    # --- Loading ---

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Program":
        """Load a program from a compiled JSON file."""
        with open(path) as f:
            try:
                j = json.load(f)
            except json.JSONDecodeError as exc:
                raise LoadError(f"{path}: invalid JSON: {exc}") from exc
        return cls.from_dict(j)

    @classmethod
    def from_dict(cls, j: Dict[str, Any]) -> "Program":
        """Build a Program from the parsed compiler output."""
        try:
            prime = _parse_int(j.get("prime", STARK_PRIME))
            data = [_parse_int(w) for w in j["data"]]
            hints = _parse_hints(j.get("hints", {}))
            builtins = list(j.get("builtins", []))
            main_scope = j.get("main_scope", "__main__")
            identifiers = dict(j.get("identifiers", {}))
            references = _parse_references(j.get("reference_manager", {}))
        except (KeyError, TypeError, ValueError) as exc:
            raise LoadError(f"Malformed program artifact: {exc!r}") from exc

        main = _label_pc(identifiers, f"{main_scope}.main")
        if main is None:
            main = j.get("main")

        program = cls(
            data=data,
            hints=hints,
            builtins=builtins,
            main=main,
            start=_label_pc(identifiers, f"{main_scope}.__start__"),
            end=_label_pc(identifiers, f"{main_scope}.__end__"),
            identifiers=identifiers,
            references=references,
            main_scope=main_scope,
            prime=prime,
        )
        logger.info(
            "Loaded program: %d words, %d hinted pcs, builtins=%s",
            len(program.data), len(program.hints), program.builtins,
        )
        return program

    # --- Identifiers ---

    def get_identifier(self, name: str) -> Dict[str, Any]:
        """
        Look up an identifier, following aliases.

        Raises:
            KeyError: If the identifier does not exist
        """
        seen = set()
        while True:
            if name not in self.identifiers:
                raise KeyError(f"Identifier '{name}' not found")
            ident = self.identifiers[name]
            if ident.get("type") != "alias":
                return ident
            if name in seen:
                raise KeyError(f"Cyclic alias '{name}'")
            seen.add(name)
            name = ident["destination"]

    def get_label(self, name: str) -> int:
        """pc offset of a function or label."""
        ident = self.get_identifier(name)
        if ident.get("type") not in ("function", "label"):
            raise KeyError(f"Identifier '{name}' is not a function or label")
        return ident["pc"]

    def get_const(self, name: str) -> int:
        ident = self.get_identifier(name)
        if ident.get("type") != "const":
            raise KeyError(f"Identifier '{name}' is not a constant")
        return _parse_int(ident["value"])


# --- Parsing Helpers ---

def _parse_int(value: Union[int, str]) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16) if value.lower().startswith(("0x", "-0x")) else int(value)


def _label_pc(identifiers: Dict[str, Dict[str, Any]], name: str) -> Optional[int]:
    ident = identifiers.get(name)
    if ident is None or ident.get("type") not in ("function", "label"):
        return None
    return ident["pc"]


def _parse_ap_tracking(d: Optional[Dict[str, int]]) -> ApTracking:
    if not d:
        return ApTracking()
    return ApTracking(group=d["group"], offset=d["offset"])


def _parse_hints(raw: Dict[str, List[Dict[str, Any]]]) -> Dict[int, List[CompiledHint]]:
    hints: Dict[int, List[CompiledHint]] = {}
    for pc, entries in raw.items():
        parsed = []
        for h in entries:
            ftd = h.get("flow_tracking_data") or {}
            parsed.append(CompiledHint(
                code=h["code"],
                accessible_scopes=list(h.get("accessible_scopes", [])),
                flow_tracking_data=FlowTrackingData(
                    ap_tracking=_parse_ap_tracking(ftd.get("ap_tracking")),
                    reference_ids=dict(ftd.get("reference_ids", {})),
                ),
            ))
        hints[int(pc)] = parsed
    return hints


def _parse_references(raw: Dict[str, Any]) -> List[Reference]:
    return [
        Reference(
            pc=r.get("pc", 0),
            value=r["value"],
            ap_tracking=_parse_ap_tracking(r.get("ap_tracking_data")),
        )
        for r in raw.get("references", [])
    ]
