"""Script AST: immutable nodes produced once per compilation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Prefix(Enum):
    REFERENCE = "&"
    DEREFERENCE = "*"


class Comparator(Enum):
    EQUALS = "=="
    NOT_EQUALS = "!="
    LESS_THAN = "<"
    GREATER_THAN = ">"
    LESS_OR_EQUAL = "<="
    GREATER_OR_EQUAL = ">="


@dataclass(frozen=True)
class TypeDecl:
    name: str
    is_ref: bool = False


@dataclass(frozen=True)
class TypedArgument:
    name: str
    type_name: TypeDecl


@dataclass(frozen=True)
class MemberAccess:
    name: str


@dataclass(frozen=True)
class ArrayIndex:
    element: str  # decimal digits, parsed at lowering time


DeReference = Union[MemberAccess, ArrayIndex]


@dataclass(frozen=True)
class LValue:
    name: str
    prefix: Prefix | None = None
    derefs: tuple[DeReference, ...] = ()


@dataclass(frozen=True)
class Immediate:
    value: str


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: tuple[RValue, ...] = ()


RValue = Union[FunctionCall, Immediate, LValue]


@dataclass(frozen=True)
class Assignment:
    left: LValue
    right: RValue
    type_name: TypeDecl | None = None


@dataclass(frozen=True)
class Return:
    value: RValue | None = None


Expression = Union[Assignment, FunctionCall, Return]


@dataclass(frozen=True)
class InputLine:
    args: tuple[TypedArgument, ...] = ()


@dataclass(frozen=True)
class ScriptDef:
    input: InputLine
    exprs: tuple[Expression, ...] = ()


@dataclass(frozen=True)
class Condition:
    """Reserved: parsed but not accepted by any statement form."""

    left: LValue
    op: Comparator
    right: RValue
