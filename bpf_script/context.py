"""Compilation context, the single mutable state threaded through lowering."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

from .btf_types import QualifiedType
from .errors import CompileError
from .instructions import Instruction
from . import constants

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapturedImmediate:
    """Host value baked into the program; has no address."""

    value: int


@dataclass(frozen=True)
class StackSlot:
    """Fixed negative offset from the frame register."""

    offset: int


VariableLocation = Union[CapturedImmediate, StackSlot]


@dataclass(frozen=True)
class VariableInfo:
    var_type: QualifiedType
    location: VariableLocation


@dataclass
class CompilationContext:
    variables: dict[str, VariableInfo] = field(default_factory=dict)
    instructions: list[Instruction] = field(default_factory=list)
    stack: int = 0
    line: int = constants.FIRST_LINE

    def error(self, message: str) -> CompileError:
        return CompileError(message, self.line)

    def emit(self, *instructions: Instruction) -> None:
        self.instructions.extend(instructions)

    # ── symbol table ─────────────────────────────────────────────

    def lookup(self, name: str) -> VariableInfo | None:
        return self.variables.get(name)

    def get_variable(self, name: str) -> VariableInfo:
        info = self.variables.get(name)
        if info is None:
            raise self.error(f'No variable with the name "{name}".')
        return info

    def define(self, name: str, info: VariableInfo) -> None:
        logger.debug("Defined %s: %s at %s", name, info.var_type, info.location)
        self.variables[name] = info

    # ── stack ────────────────────────────────────────────────────

    def stack_offset(self) -> int:
        return -self.stack

    def push_stack(self, size: int) -> int:
        """Commit *size* more bytes below the frame base and return the new offset."""
        if self.stack + size > constants.MAX_STACK_SIZE:
            raise self.error(
                f"Stack size exceeded {constants.MAX_STACK_SIZE} bytes with this assignment."
            )
        self.stack += size
        logger.debug("Allocated %d stack bytes (total %d)", size, self.stack)
        return self.stack_offset()
