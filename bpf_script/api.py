"""Composable API functions for one-shot compilation.

Each function builds a fresh :class:`Compiler`, so calls never share state.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .btf_types import TypeDatabase
from .compiler import Compiler
from .instructions import Instruction

logger = logging.getLogger(__name__)


def _compile(
    source: str,
    types: TypeDatabase,
    captures: dict[str, int] | None,
) -> Compiler:
    compiler = Compiler(types)
    for name, value in (captures or {}).items():
        compiler.capture(name, value)
    compiler.compile(source)
    return compiler


def compile_script(
    source: str,
    types: TypeDatabase,
    captures: dict[str, int] | None = None,
) -> list[Instruction]:
    """Compile a script and return its optimized instructions.

    Args:
        source: The script text.
        types: Type database used to resolve declared and member types.
        captures: Host values to bind by name before compiling.

    Returns:
        The finalized instruction list.
    """
    return _compile(source, types, captures).get_instructions()


def compile_to_bytecode(
    source: str,
    types: TypeDatabase,
    captures: dict[str, int] | None = None,
) -> list[int]:
    """Compile a script and return the encoded 64-bit instruction words."""
    return _compile(source, types, captures).get_bytecode()


def dump_instructions(
    source: str,
    types: TypeDatabase,
    captures: dict[str, int] | None = None,
) -> str:
    """Compile a script and return a human-readable listing, one instruction per line."""
    instructions = compile_script(source, types, captures)
    return "\n".join(f"  {inst}" for inst in instructions)


def load_type_database(path: str | Path) -> TypeDatabase:
    """Load a JSON type description from *path*."""
    logger.info("Loading type database from %s", path)
    return TypeDatabase.from_file(path)
