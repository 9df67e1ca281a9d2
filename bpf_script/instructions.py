"""eBPF machine instructions and their binary encoding."""

from __future__ import annotations

from enum import IntEnum

from pydantic import BaseModel, ConfigDict, model_validator


class Register(IntEnum):
    R0 = 0
    R1 = 1
    R2 = 2
    R3 = 3
    R4 = 4
    R5 = 5
    R6 = 6
    R7 = 7
    R8 = 8
    R9 = 9
    R10 = 10

    @classmethod
    def from_num(cls, num: int) -> Register:
        return cls(num)

    def __str__(self) -> str:
        return f"r{self.value}"

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)


class LoadType(IntEnum):
    """Source-register tag of a wide immediate load (``BPF_PSEUDO_*``)."""

    VOID = 0
    MAP = 1
    MAP_VALUE = 2
    BTF_ID = 3
    FUNC = 4
    MAP_IDX = 5
    MAP_IDX_VALUE = 6


class Opcode(IntEnum):
    # Immediate stores: *(size *)(dst + off) = imm
    ST_B = 0x72
    ST_H = 0x6A
    ST_W = 0x62
    ST_DW = 0x7A
    # Register store: *(u64 *)(dst + off) = src
    STX_DW = 0x7B
    # Register loads: dst = *(size *)(src + off)
    LDX_B = 0x71
    LDX_H = 0x69
    LDX_W = 0x61
    LDX_DW = 0x79
    # 64-bit ALU
    MOV64_IMM = 0xB7
    MOV64_REG = 0xBF
    ADD64_IMM = 0x07
    # Wide immediate load, occupies two words
    LD_DW = 0x18
    # Control flow
    CALL = 0x85
    EXIT = 0x95


STORE_OPCODES: dict[int, Opcode] = {
    1: Opcode.ST_B,
    2: Opcode.ST_H,
    4: Opcode.ST_W,
    8: Opcode.ST_DW,
}

LOAD_OPCODES: dict[int, Opcode] = {
    1: Opcode.LDX_B,
    2: Opcode.LDX_H,
    4: Opcode.LDX_W,
    8: Opcode.LDX_DW,
}

ACCESS_SIZES: dict[Opcode, int] = {
    **{op: size for size, op in STORE_OPCODES.items()},
    **{op: size for size, op in LOAD_OPCODES.items()},
    Opcode.STX_DW: 8,
}

_SIZE_NAMES: dict[int, str] = {1: "u8", 2: "u16", 4: "u32", 8: "u64"}

_INT16_RANGE = range(-(1 << 15), 1 << 15)
_INT32_RANGE = range(-(1 << 31), 1 << 31)
_WIDE_RANGE = range(-(1 << 63), 1 << 64)


def to_signed(value: int, bits: int) -> int:
    """Reinterpret the low *bits* of *value* as a two's-complement integer."""
    mask = (1 << bits) - 1
    value &= mask
    if value >> (bits - 1):
        value -= 1 << bits
    return value


def fits_imm32(value: int) -> bool:
    return value in _INT32_RANGE


def _fmt_mem(reg: Register, offset: int) -> str:
    sign = "-" if offset < 0 else "+"
    return f"({reg} {sign} {abs(offset)})"


class Instruction(BaseModel):
    model_config = ConfigDict(frozen=True)

    opcode: Opcode
    dst: Register = Register.R0
    src: int = 0
    offset: int = 0
    imm: int = 0

    @model_validator(mode="after")
    def _check_operands(self) -> Instruction:
        if self.offset not in _INT16_RANGE:
            raise ValueError(f"offset {self.offset} does not fit in 16 bits")
        imm_range = _WIDE_RANGE if self.is_wide else _INT32_RANGE
        if self.imm not in imm_range:
            raise ValueError(f"immediate {self.imm} out of range for {self.opcode.name}")
        return self

    # ── constructors ─────────────────────────────────────────────

    @classmethod
    def store(cls, size: int, reg: Register, offset: int, imm: int) -> Instruction:
        return cls(opcode=STORE_OPCODES[size], dst=reg, offset=offset, imm=imm)

    @classmethod
    def store8(cls, reg: Register, offset: int, imm: int) -> Instruction:
        return cls.store(1, reg, offset, imm)

    @classmethod
    def store16(cls, reg: Register, offset: int, imm: int) -> Instruction:
        return cls.store(2, reg, offset, imm)

    @classmethod
    def store32(cls, reg: Register, offset: int, imm: int) -> Instruction:
        return cls.store(4, reg, offset, imm)

    @classmethod
    def store64(cls, reg: Register, offset: int, imm: int) -> Instruction:
        return cls.store(8, reg, offset, imm)

    @classmethod
    def storex64(cls, reg: Register, offset: int, src: Register) -> Instruction:
        return cls(opcode=Opcode.STX_DW, dst=reg, src=int(src), offset=offset)

    @classmethod
    def loadx(cls, size: int, dst: Register, src: Register, offset: int) -> Instruction:
        return cls(opcode=LOAD_OPCODES[size], dst=dst, src=int(src), offset=offset)

    @classmethod
    def loadx8(cls, dst: Register, src: Register, offset: int) -> Instruction:
        return cls.loadx(1, dst, src, offset)

    @classmethod
    def loadx16(cls, dst: Register, src: Register, offset: int) -> Instruction:
        return cls.loadx(2, dst, src, offset)

    @classmethod
    def loadx32(cls, dst: Register, src: Register, offset: int) -> Instruction:
        return cls.loadx(4, dst, src, offset)

    @classmethod
    def loadx64(cls, dst: Register, src: Register, offset: int) -> Instruction:
        return cls.loadx(8, dst, src, offset)

    @classmethod
    def mov64(cls, reg: Register, imm: int) -> Instruction:
        return cls(opcode=Opcode.MOV64_IMM, dst=reg, imm=imm)

    @classmethod
    def movx64(cls, dst: Register, src: Register) -> Instruction:
        return cls(opcode=Opcode.MOV64_REG, dst=dst, src=int(src))

    @classmethod
    def add64(cls, reg: Register, imm: int) -> Instruction:
        return cls(opcode=Opcode.ADD64_IMM, dst=reg, imm=imm)

    @classmethod
    def loadtype(cls, reg: Register, imm: int, load_type: LoadType) -> Instruction:
        return cls(opcode=Opcode.LD_DW, dst=reg, src=int(load_type), imm=imm)

    @classmethod
    def call(cls, helper_id: int) -> Instruction:
        return cls(opcode=Opcode.CALL, imm=int(helper_id))

    @classmethod
    def exit(cls) -> Instruction:
        return cls(opcode=Opcode.EXIT)

    # ── queries ──────────────────────────────────────────────────

    @property
    def is_wide(self) -> bool:
        return self.opcode == Opcode.LD_DW

    @property
    def is_store(self) -> bool:
        return self.opcode in STORE_OPCODES.values() or self.opcode == Opcode.STX_DW

    @property
    def is_load(self) -> bool:
        return self.opcode in LOAD_OPCODES.values()

    @property
    def access_size(self) -> int:
        return ACCESS_SIZES.get(self.opcode, 0)

    # ── encoding ─────────────────────────────────────────────────

    def encode(self) -> tuple[int, int | None]:
        """Encode into one 64-bit word, plus a second word for wide immediates."""
        word = (
            int(self.opcode)
            | (int(self.dst) & 0xF) << 8
            | (self.src & 0xF) << 12
            | (self.offset & 0xFFFF) << 16
            | (self.imm & 0xFFFFFFFF) << 32
        )
        if not self.is_wide:
            return word, None
        return word, ((self.imm >> 32) & 0xFFFFFFFF) << 32

    def __str__(self) -> str:
        op = self.opcode
        if op in STORE_OPCODES.values():
            return f"*({_SIZE_NAMES[self.access_size]} *){_fmt_mem(self.dst, self.offset)} = {self.imm}"
        if op == Opcode.STX_DW:
            return f"*(u64 *){_fmt_mem(self.dst, self.offset)} = {Register(self.src)}"
        if op in LOAD_OPCODES.values():
            mem = _fmt_mem(Register(self.src), self.offset)
            return f"{self.dst} = *({_SIZE_NAMES[self.access_size]} *){mem}"
        if op == Opcode.MOV64_IMM:
            return f"{self.dst} = {self.imm}"
        if op == Opcode.MOV64_REG:
            return f"{self.dst} = {Register(self.src)}"
        if op == Opcode.ADD64_IMM:
            return f"{self.dst} += {self.imm}"
        if op == Opcode.LD_DW:
            tag = LoadType(self.src)
            suffix = "" if tag == LoadType.VOID else f" ({tag.name.lower()})"
            return f"{self.dst} = {self.imm} ll{suffix}"
        if op == Opcode.CALL:
            return f"call {self.imm}"
        return "exit"
