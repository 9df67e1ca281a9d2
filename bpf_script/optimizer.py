"""Peephole optimizer for the redundancy left by per-statement lowering.

Works purely on register and memory effects of the instruction stream. The
input is scanned once; each instruction is appended to the output and the tail
of the output is rewritten while one of the rules applies:

* ``rX = rY; rX += K; rX = *(sz *)(rX + O)`` becomes ``rX = *(sz *)(rY + O + K)``
  (either the move or the add may be missing)
* ``rX = rX`` and ``rX += 0`` are dropped
* a store directly followed by a store covering the same bytes is dropped
"""

from __future__ import annotations

import logging

from .instructions import Instruction, Opcode, Register

logger = logging.getLogger(__name__)

_INT16_MIN = -(1 << 15)
_INT16_MAX = (1 << 15) - 1


def _is_noop(inst: Instruction) -> bool:
    if inst.opcode == Opcode.MOV64_REG:
        return inst.dst == inst.src
    if inst.opcode == Opcode.ADD64_IMM:
        return inst.imm == 0
    return False


def _fold_address_load(out: list[Instruction]) -> bool:
    """Fold an address computation into the load that consumes it."""
    load = out[-1]
    if not load.is_load or load.dst != load.src:
        return False
    reg = load.dst

    delta = 0
    start = len(out) - 2
    if start >= 0 and out[start].opcode == Opcode.ADD64_IMM and out[start].dst == reg:
        delta = out[start].imm
        start -= 1

    base = reg
    if start >= 0 and out[start].opcode == Opcode.MOV64_REG and out[start].dst == reg:
        base = Register(out[start].src)
    else:
        start += 1
    if start == len(out) - 1:
        return False

    offset = load.offset + delta
    if not _INT16_MIN <= offset <= _INT16_MAX:
        return False
    out[start:] = [Instruction.loadx(load.access_size, reg, base, offset)]
    return True


def _drop_overwritten_store(out: list[Instruction]) -> bool:
    if len(out) < 2:
        return False
    first, second = out[-2], out[-1]
    if not (first.is_store and second.is_store):
        return False
    if first.dst != second.dst or first.offset != second.offset:
        return False
    if second.access_size < first.access_size:
        return False
    del out[-2]
    return True


_TAIL_RULES = (_fold_address_load, _drop_overwritten_store)


def optimize(instructions: list[Instruction]) -> list[Instruction]:
    """Return an equivalent instruction list that is never longer than the input."""
    out: list[Instruction] = []
    for inst in instructions:
        if _is_noop(inst):
            continue
        out.append(inst)
        while any(rule(out) for rule in _TAIL_RULES):
            pass
    logger.debug("Optimizer: %d -> %d instructions", len(instructions), len(out))
    return out
