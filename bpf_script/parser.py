"""Grammar-driven parsing of script text into the AST."""

from __future__ import annotations

import logging
from pathlib import Path

from lark import Lark, Token, Transformer
from lark.exceptions import UnexpectedInput

from .ast_types import (
    ArrayIndex,
    Assignment,
    Comparator,
    Condition,
    FunctionCall,
    Immediate,
    InputLine,
    LValue,
    MemberAccess,
    Prefix,
    Return,
    ScriptDef,
    TypeDecl,
    TypedArgument,
)
from .errors import CompileError
from . import constants

logger = logging.getLogger(__name__)

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")

_PARSER = Lark(
    _GRAMMAR_PATH.read_text(encoding="utf-8"),
    parser="lalr",
    start=["script", "condition"],
    maybe_placeholders=True,
)


class ScriptBuilder(Transformer):
    """Builds AST nodes bottom-up from the lark parse tree."""

    def IDENT(self, token: Token) -> str:
        return str(token)

    def IMMEDIATE(self, token: Token) -> str:
        return str(token)

    def script(self, children) -> ScriptDef:
        input_line, *exprs = children
        return ScriptDef(input=input_line, exprs=tuple(exprs))

    def input_line(self, children) -> InputLine:
        return InputLine(args=tuple(c for c in children if c is not None))

    def typed_argument(self, children) -> TypedArgument:
        name, type_decl = children
        return TypedArgument(name=name, type_name=type_decl)

    def type_decl(self, children) -> TypeDecl:
        ref, name = children
        return TypeDecl(name=name, is_ref=ref is not None)

    def assignment(self, children) -> Assignment:
        left, type_decl, right = children
        return Assignment(left=left, type_name=type_decl, right=right)

    def function_call(self, children) -> FunctionCall:
        name, *args = children
        return FunctionCall(name=name, args=tuple(a for a in args if a is not None))

    def return_stmt(self, children) -> Return:
        (value,) = children
        return Return(value=value)

    def condition(self, children) -> Condition:
        left, op, right = children
        return Condition(left=left, op=op, right=right)

    def lvalue(self, children) -> LValue:
        prefix, name, *derefs = children
        return LValue(name=name, prefix=prefix, derefs=tuple(derefs))

    def member_access(self, children) -> MemberAccess:
        (name,) = children
        return MemberAccess(name=name)

    def array_index(self, children) -> ArrayIndex:
        (element,) = children
        return ArrayIndex(element=element)

    def immediate(self, children) -> Immediate:
        (value,) = children
        return Immediate(value=value)

    def prefix(self, children) -> Prefix:
        (token,) = children
        return Prefix(str(token))

    def comparator(self, children) -> Comparator:
        (token,) = children
        return Comparator(str(token))


def _parse(text: str, start: str, line: int):
    try:
        tree = _PARSER.parse(text, start=start)
    except UnexpectedInput as exc:
        position = getattr(exc, "pos_in_stream", None)
        raise CompileError(
            f"Parse failed at position {position} "
            f"(line {exc.line}, column {exc.column}).",
            line,
        ) from exc
    return ScriptBuilder().transform(tree)


def parse_script(text: str, line: int = constants.FIRST_LINE) -> ScriptDef:
    """Parse a complete script; failures carry *line* as their statement index."""
    script = _parse(text, "script", line)
    logger.debug(
        "Parsed script: %d argument(s), %d statement(s)",
        len(script.input.args),
        len(script.exprs),
    )
    return script


def parse_condition(text: str, line: int = constants.FIRST_LINE) -> Condition:
    """Parse the reserved ``<lvalue> <comparator> <rvalue>`` form."""
    return _parse(text, "condition", line)
