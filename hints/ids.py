"""Resolution of `ids.<name>` inside hints.

The compiler describes every variable visible to a hint as a reference expression
such as '[cast(fp + (-3), felt*)]' or 'cast([ap + (-1)] + 2, felt*)'. References are
parsed with the Cairo expression grammar of cairo-lang and evaluated here against the
registers and memory at the hint's program point. References based on ap are
corrected by the difference between the hint's ap tracking and the reference's ap
tracking; they are unusable when the two belong to different tracking groups.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from starkware.cairo.lang.compiler.ast import cairo_types
from starkware.cairo.lang.compiler.ast.cairo_types import (
    TypeFelt,
    TypeIdentifier,
    TypePointer,
    TypeStruct,
)
from starkware.cairo.lang.compiler.ast.expr import (
    ExprCast,
    ExprConst,
    ExprDeref,
    Expression,
    ExprNeg,
    ExprOperator,
    ExprParentheses,
    ExprReg,
)
from starkware.cairo.lang.compiler.error_handling import LocationError
from starkware.cairo.lang.compiler.instruction import Register
from starkware.cairo.lang.compiler.parser import parse_expr, parse_type

from primitives.relocatable import MaybeRelocatable, RelocatableValue
from vm.memory import Memory
from vm.program import ApTracking, Program, Reference

FELT = "felt"


# --- Types ---

@dataclass(frozen=True)
class CairoType:
    """A Cairo type name with its pointer depth ('felt**' -> ('felt', 2))."""
    name: str
    pointer_depth: int = 0

    @classmethod
    def from_ast(cls, cairo_type: cairo_types.CairoType) -> "CairoType":
        depth = 0
        while isinstance(cairo_type, TypePointer):
            depth += 1
            cairo_type = cairo_type.pointee
        if isinstance(cairo_type, TypeFelt):
            name = FELT
        elif isinstance(cairo_type, TypeIdentifier):
            name = str(cairo_type.name)
        elif isinstance(cairo_type, TypeStruct):
            name = str(cairo_type.scope)
        else:
            name = cairo_type.format()
        return cls(name, depth)

    @classmethod
    def parse(cls, s: str) -> "CairoType":
        try:
            return cls.from_ast(parse_type(s.strip()))
        except LocationError as exc:
            raise ValueError(f"Cannot parse type '{s}': {exc}") from exc

    @property
    def is_pointer(self) -> bool:
        return self.pointer_depth > 0

    @property
    def is_felt(self) -> bool:
        return self.pointer_depth == 0 and self.name == FELT

    def pointee(self) -> "CairoType":
        if not self.is_pointer:
            raise TypeError(f"Cannot dereference non-pointer type {self}")
        return CairoType(self.name, self.pointer_depth - 1)

    def __str__(self) -> str:
        return self.name + "*" * self.pointer_depth


# --- Parsing ---

def parse_reference(text: str) -> Expression:
    """
    Parse a reference expression into a cairo-lang expression tree.

    Raises:
        ValueError: If text is not a valid Cairo expression
    """
    try:
        return parse_expr(text)
    except LocationError as exc:
        raise ValueError(f"Cannot parse reference '{text}': {exc}") from exc


def uses_ap(expr: Expression) -> bool:
    return any(isinstance(node, ExprReg) and node.reg is Register.AP
               for node in expr.get_subtree())


# --- Evaluation ---

def _evaluate(expr: Expression, ap: RelocatableValue, fp: RelocatableValue, memory: Memory,
              prime: int) -> MaybeRelocatable:
    if isinstance(expr, ExprReg):
        return ap if expr.reg is Register.AP else fp
    if isinstance(expr, ExprConst):
        return expr.val
    if isinstance(expr, ExprParentheses):
        return _evaluate(expr.val, ap, fp, memory, prime)
    if isinstance(expr, ExprCast):
        return _evaluate(expr.expr, ap, fp, memory, prime)
    if isinstance(expr, ExprNeg):
        value = _evaluate(expr.val, ap, fp, memory, prime)
        if not isinstance(value, int):
            raise TypeError(f"Cannot negate address {value}")
        return -value
    if isinstance(expr, ExprDeref):
        address = _evaluate(expr.addr, ap, fp, memory, prime)
        if not isinstance(address, RelocatableValue):
            raise TypeError(f"Cannot dereference non-address {address}")
        return memory.read(address)
    if isinstance(expr, ExprOperator) and expr.op in ("+", "-", "*"):
        lhs = _evaluate(expr.a, ap, fp, memory, prime)
        rhs = _evaluate(expr.b, ap, fp, memory, prime)
        if expr.op == "+":
            return lhs + rhs
        if expr.op == "-":
            return lhs - rhs
        if not isinstance(lhs, int) or not isinstance(rhs, int):
            raise TypeError(f"Cannot multiply {lhs} by {rhs}")
        return lhs * rhs
    raise TypeError(f"Unsupported expression in reference: {expr.format()}")


@dataclass(frozen=True)
class ResolvedReference:
    """Either an lvalue (address + type of the cell) or an rvalue (value + type)."""
    cairo_type: CairoType
    address: Optional[RelocatableValue] = None
    value: Optional[MaybeRelocatable] = None

    @property
    def is_lvalue(self) -> bool:
        return self.address is not None


def resolve_reference(expr: Expression, ap: RelocatableValue, fp: RelocatableValue,
                      memory: Memory, prime: int) -> ResolvedReference:
    """Evaluate a top-level reference: '[cast(E, T*)]' is an lvalue of type T."""
    if isinstance(expr, ExprDeref):
        inner = expr.addr
        cairo_type = CairoType(FELT)
        if isinstance(inner, ExprCast):
            cast_type = CairoType.from_ast(inner.dest_type)
            if cast_type.is_pointer:
                cairo_type = cast_type.pointee()
                inner = inner.expr
        address = _evaluate(inner, ap, fp, memory, prime)
        if not isinstance(address, RelocatableValue):
            raise TypeError(f"Reference address {address} is not relocatable")
        return ResolvedReference(cairo_type, address=address)
    cairo_type = CairoType.from_ast(expr.dest_type) if isinstance(expr, ExprCast) else CairoType(FELT)
    value = _evaluate(expr, ap, fp, memory, prime)
    if isinstance(value, int):
        value %= prime
    return ResolvedReference(cairo_type, value=value)


# --- ids ---

class StructRef:
    """A struct living in memory; members are read and written through attributes."""

    def __init__(self, ids: "IdsManager", struct_name: str, address: RelocatableValue):
        object.__setattr__(self, "_ids", ids)
        object.__setattr__(self, "_struct_name", struct_name)
        object.__setattr__(self, "address_", address)

    def _member(self, name: str) -> Tuple[CairoType, RelocatableValue]:
        members = self._ids.struct_members(self._struct_name)
        if name not in members:
            raise AttributeError(f"Struct {self._struct_name} has no member '{name}'")
        cairo_type, offset = members[name]
        return cairo_type, self.address_ + offset

    def __getattr__(self, name: str) -> Any:
        cairo_type, address = self._member(name)
        return self._ids.load(cairo_type, address)

    def __setattr__(self, name: str, value: MaybeRelocatable) -> None:
        cairo_type, address = self._member(name)
        self._ids.store(cairo_type, address, value)


class StructDef:
    """A struct definition accessed through ids, e.g. ids.DictAccess.SIZE."""

    def __init__(self, name: str, size: int, members: Dict[str, Tuple[CairoType, int]]):
        self.name = name
        self.SIZE = size
        self._members = members

    def __getattr__(self, name: str) -> int:
        if name in self._members:
            return self._members[name][1]
        raise AttributeError(f"Struct {self.name} has no member '{name}'")


class IdsManager:
    """The `ids` object of a hint."""

    def __init__(
        self,
        program: Program,
        reference_ids: Dict[str, int],
        accessible_scopes: List[str],
        hint_ap_tracking: ApTracking,
        ap: RelocatableValue,
        fp: RelocatableValue,
        memory: Memory,
    ):
        object.__setattr__(self, "_program", program)
        object.__setattr__(self, "_refs", {name.split(".")[-1]: program.references[i]
                                           for name, i in reference_ids.items()})
        object.__setattr__(self, "_scopes", accessible_scopes)
        object.__setattr__(self, "_ap_tracking", hint_ap_tracking)
        object.__setattr__(self, "_ap", ap)
        object.__setattr__(self, "_fp", fp)
        object.__setattr__(self, "_memory", memory)

    # --- Reference access ---

    def _resolve(self, name: str) -> ResolvedReference:
        ref: Reference = self._refs[name]
        expr = parse_reference(ref.value)
        ap = self._ap
        if uses_ap(expr):
            if ref.ap_tracking.group != self._ap_tracking.group:
                raise ValueError(f"Reference '{name}' was revoked (ap tracking group changed)")
            ap = ap - (self._ap_tracking.offset - ref.ap_tracking.offset)
        return resolve_reference(expr, ap, self._fp, self._memory, self._program.prime)

    def __getattr__(self, name: str) -> Any:
        if name in self._refs:
            resolved = self._resolve(name)
            if resolved.is_lvalue:
                return self.load(resolved.cairo_type, resolved.address)
            return resolved.value
        return self._lookup_identifier(name)

    def __setattr__(self, name: str, value: MaybeRelocatable) -> None:
        if name not in self._refs:
            raise AttributeError(f"Unknown reference 'ids.{name}'")
        resolved = self._resolve(name)
        if not resolved.is_lvalue:
            raise AttributeError(f"Reference 'ids.{name}' is not assignable")
        self.store(resolved.cairo_type, resolved.address, value)

    def get_address(self, name: str) -> RelocatableValue:
        """Address of an lvalue reference."""
        resolved = self._resolve(name)
        if not resolved.is_lvalue:
            raise AttributeError(f"Reference 'ids.{name}' has no address")
        return resolved.address

    # --- Typed memory access ---

    def load(self, cairo_type: CairoType, address: RelocatableValue) -> Any:
        if cairo_type.is_felt or cairo_type.is_pointer:
            return self._memory.read(address)
        return StructRef(self, self._full_struct_name(cairo_type.name), address)

    def store(self, cairo_type: CairoType, address: RelocatableValue, value: MaybeRelocatable) -> None:
        if not (cairo_type.is_felt or cairo_type.is_pointer):
            raise TypeError(f"Cannot assign to a value of struct type {cairo_type}")
        self._memory.write(address, value)

    # --- Identifiers ---

    def _candidates(self, name: str) -> List[str]:
        return [f"{scope}.{name}" for scope in reversed(self._scopes)] + [name]

    def _full_struct_name(self, name: str) -> str:
        for candidate in [name] + self._candidates(name):
            ident = self._program.identifiers.get(candidate)
            if ident is not None and ident.get("type") in ("struct", "alias"):
                return candidate
        return name

    def struct_members(self, struct_name: str) -> Dict[str, Tuple[CairoType, int]]:
        ident = self._program.get_identifier(struct_name)
        if ident.get("type") != "struct":
            raise TypeError(f"'{struct_name}' is not a struct")
        return {
            member: (CairoType.parse(m["cairo_type"]), m["offset"])
            for member, m in ident.get("members", {}).items()
        }

    def _lookup_identifier(self, name: str) -> Any:
        for candidate in self._candidates(name):
            if candidate not in self._program.identifiers:
                continue
            ident = self._program.get_identifier(candidate)
            if ident.get("type") == "const":
                return self._program.get_const(candidate)
            if ident.get("type") == "struct":
                return StructDef(candidate, ident["size"], self.struct_members(candidate))
        raise AttributeError(f"Unknown identifier 'ids.{name}'")
