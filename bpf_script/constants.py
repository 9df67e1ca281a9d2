"""Named constants that replace magic numbers across the compiler."""

from __future__ import annotations

MAX_STACK_SIZE = 512
MAX_ARGUMENTS = 5
POINTER_SIZE = 8
DEFAULT_IMMEDIATE_SIZE = 8
BITS_PER_BYTE = 8

FIRST_LINE = 1

# Register numbers as fixed by the calling convention
RESULT_REGISTER = 0
FIRST_ARGUMENT_REGISTER = 1
SCRATCH_REGISTER = 6
FRAME_REGISTER = 10

REGISTER_LOAD_SIZES: tuple[int, ...] = (1, 2, 4, 8)
STORE_CHUNK_SIZES: tuple[int, ...] = (8, 4, 2, 1)
