"""Compiler error type."""

from __future__ import annotations


class CompileError(Exception):
    """Raised on the first failure of a compilation, tagged with the active line."""

    def __init__(self, message: str, line: int):
        super().__init__(message)
        self.message = message
        self.line = line

    def __str__(self) -> str:
        return f"[Line {self.line}] {self.message}"
