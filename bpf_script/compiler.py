"""Script compiler: AST lowering into eBPF instructions."""

from __future__ import annotations

import logging

from .ast_types import (
    ArrayIndex,
    Assignment,
    DeReference,
    FunctionCall,
    Immediate,
    LValue,
    MemberAccess,
    Prefix,
    Return,
    RValue,
    ScriptDef,
    TypeDecl,
)
from .btf_types import (
    ArrayType,
    IntegerType,
    QualifiedType,
    StructType,
    TypeDatabase,
)
from .context import (
    CapturedImmediate,
    CompilationContext,
    StackSlot,
    VariableInfo,
)
from .helpers import Helpers
from .instructions import Instruction, LoadType, Register, fits_imm32, to_signed
from .optimizer import optimize
from .parser import parse_script
from . import constants

logger = logging.getLogger(__name__)

_FRAME = Register(constants.FRAME_REGISTER)
_RESULT = Register(constants.RESULT_REGISTER)
_SCRATCH = Register(constants.SCRATCH_REGISTER)


def _unhandled(node: object) -> TypeError:
    return TypeError(f"Unhandled AST variant: {type(node).__name__}")


class Compiler:
    """Compiles scripts against a type database.

    The compiler owns one :class:`CompilationContext` for its whole lifetime;
    calling :meth:`compile` again appends to the variables and instructions
    of the previous call instead of starting over.
    """

    def __init__(self, types: TypeDatabase):
        self._types = types
        self._context = CompilationContext()

    @classmethod
    def create(cls, types: TypeDatabase) -> Compiler:
        return cls(types)

    def capture(self, name: str, value: int) -> None:
        """Bind a host value to *name*; scripts read it as a typed immediate.

        Mostly used for map descriptors and other integers the program needs
        at load time. Only the low 32 bits of *value* are kept.
        """
        info = VariableInfo(
            var_type=QualifiedType.int_type(8, True),
            location=CapturedImmediate(value & 0xFFFFFFFF),
        )
        self._context.define(name, info)

    # ── lookups ──────────────────────────────────────────────────

    def _resolve_type_by_id(self, type_id: int) -> QualifiedType:
        resolved = self._types.resolve_type_by_id(type_id)
        if resolved is None:
            raise self._context.error(f'Bad BTF database: type id "{type_id}" not found.')
        return resolved

    def _resolve_type_by_decl(self, decl: TypeDecl) -> QualifiedType:
        resolved = self._types.resolve_type_by_name(decl.name)
        if resolved is None:
            raise self._context.error(f'No type found with the name "{decl.name}".')
        return resolved.reference() if decl.is_ref else resolved

    def _parse_immediate(self, text: str, size: int, is_signed: bool) -> int:
        bits = size * constants.BITS_PER_BYTE
        if is_signed:
            low, high = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
        else:
            low, high = 0, (1 << bits) - 1
        value = int(text, 10) if text.isascii() and text.isdigit() else None
        if value is None or not low <= value <= high:
            raise self._context.error(f'Bad immediate value "{text}".')
        return value

    # ── stack emission ───────────────────────────────────────────

    def _emit_store_immediate(self, size: int, offset: int, value: int) -> None:
        value = to_signed(value, size * constants.BITS_PER_BYTE)
        if size == 8 and not fits_imm32(value):
            # st dw only carries a sign-extended 32-bit operand
            self._context.emit(
                Instruction.loadtype(_SCRATCH, value, LoadType.VOID),
                Instruction.storex64(_FRAME, offset, _SCRATCH),
            )
            return
        self._context.emit(Instruction.store(size, _FRAME, offset, value))

    def _emit_init_stack(self, offset: int, value: int, size: int) -> None:
        """Tile the byte *value* over *size* bytes, largest chunks first."""
        pattern = int.from_bytes(bytes([value & 0xFF]) * 8, "little")
        for chunk in constants.STORE_CHUNK_SIZES:
            while size >= chunk:
                self._emit_store_immediate(chunk, offset, pattern)
                offset += chunk
                size -= chunk

    def _emit_push_immediate(
        self, text: str, cast_type: QualifiedType, use_offset: int | None
    ) -> tuple[int, QualifiedType]:
        base = cast_type.base_type
        if cast_type.is_pointer():
            size, is_signed = constants.POINTER_SIZE, False
        elif isinstance(base, IntegerType):
            size, is_signed = base.size, base.is_signed
        elif isinstance(base, (StructType, ArrayType)):
            size, is_signed = base.size, False
        elif cast_type.is_void():
            size, is_signed = constants.DEFAULT_IMMEDIATE_SIZE, False
        else:
            raise self._context.error(
                "Can only assign immediates to integer/inferred types."
            )

        offset = use_offset if use_offset is not None else self._context.push_stack(size)

        if size in constants.REGISTER_LOAD_SIZES:
            value = self._parse_immediate(text, size, is_signed)
            self._emit_store_immediate(size, offset, value)
            if cast_type.is_void():
                return offset, QualifiedType.int_type(size, is_signed)
            return offset, cast_type

        fill = self._parse_immediate(text, 1, True)
        self._emit_init_stack(offset, fill, size)
        return offset, cast_type

    def _emit_push_register(self, reg: Register, use_offset: int | None) -> int:
        offset = (
            use_offset
            if use_offset is not None
            else self._context.push_stack(constants.POINTER_SIZE)
        )
        self._context.emit(Instruction.storex64(_FRAME, offset, reg))
        return offset

    def _emit_deref_register_to_stack(
        self, reg: Register, cast_type: QualifiedType, offset: int
    ) -> None:
        # probe_read_kernel(frame + offset, size, reg)
        self._context.emit(
            Instruction.movx64(Register.R1, _FRAME),
            Instruction.add64(Register.R1, offset),
            Instruction.mov64(Register.R2, cast_type.get_size()),
            Instruction.movx64(Register.R3, reg),
            Instruction.call(Helpers.ProbeReadKernel),
        )

    def _emit_push_captured(
        self, lval: LValue, info: VariableInfo, cast_type: QualifiedType, use_offset: int | None
    ) -> tuple[int, QualifiedType]:
        self._check_captured_read(lval)
        real_type = info.var_type if cast_type.is_void() else cast_type
        if real_type.get_size() != info.var_type.get_size():
            raise self._context.error("Cannot assign two types of different sizes.")
        self._context.emit(
            Instruction.loadtype(_SCRATCH, info.location.value, LoadType.VOID)
        )
        return self._emit_push_register(_SCRATCH, use_offset), real_type

    def _emit_push_lvalue(
        self, lval: LValue, cast_type: QualifiedType, use_offset: int | None
    ) -> tuple[int, QualifiedType]:
        info = self._context.get_variable(lval.name)
        if isinstance(info.location, CapturedImmediate):
            return self._emit_push_captured(lval, info, cast_type, use_offset)

        # r6 = address of the lvalue
        var_type = self._emit_set_register_to_lvalue_addr(_SCRATCH, lval)
        if lval.prefix == Prefix.DEREFERENCE:
            raise self._context.error("Dereferencing is not currently implemented.")

        source_type = var_type.reference() if lval.prefix == Prefix.REFERENCE else var_type
        real_type = source_type if cast_type.is_void() else cast_type
        if real_type.get_size() != source_type.get_size():
            raise self._context.error("Cannot assign two types of different sizes.")

        offset = (
            use_offset
            if use_offset is not None
            else self._context.push_stack(real_type.get_size())
        )

        if lval.prefix == Prefix.REFERENCE:
            self._context.emit(Instruction.storex64(_FRAME, offset, _SCRATCH))
        else:
            self._emit_deref_register_to_stack(_SCRATCH, real_type, offset)
        return offset, real_type

    def _emit_push_rvalue(
        self, rval: RValue, cast_type: QualifiedType, use_offset: int | None
    ) -> tuple[int, QualifiedType]:
        if isinstance(rval, Immediate):
            return self._emit_push_immediate(rval.value, cast_type, use_offset)
        if isinstance(rval, LValue):
            return self._emit_push_lvalue(rval, cast_type, use_offset)
        if isinstance(rval, FunctionCall):
            base = cast_type.base_type
            if not isinstance(base, IntegerType) or cast_type.is_pointer():
                raise self._context.error(
                    "Cannot store function return in non-integer type."
                )
            if base.size != 8:
                raise self._context.error(
                    "Cannot store function return value in non-64-bit integer."
                )
            self._emit_call(rval)
            return self._emit_push_register(_RESULT, use_offset), cast_type
        raise _unhandled(rval)

    # ── dereference chains ───────────────────────────────────────

    def _get_member_access(
        self, qtype: QualifiedType, name: str
    ) -> tuple[int, QualifiedType]:
        base = qtype.base_type
        if not isinstance(base, StructType):
            raise self._context.error("Tried to get member on non-struct type.")
        member = base.get_member(name)
        if member is None:
            raise self._context.error(f'Member "{name}" doesn\'t exist.')
        if member.offset % constants.BITS_PER_BYTE != 0:
            raise self._context.error("Bitfield accesses aren't supported.")
        member_type = self._resolve_type_by_id(member.type_id)
        return member.offset // constants.BITS_PER_BYTE, member_type

    def _get_array_index(
        self, qtype: QualifiedType, text: str
    ) -> tuple[int, QualifiedType]:
        index = self._parse_immediate(text, 4, False)
        base = qtype.base_type
        if not isinstance(base, ArrayType):
            raise self._context.error("Tried to index into non-array type.")
        # An index equal to the element count is tolerated.
        if index > base.num_elements:
            raise self._context.error(
                f"Tried to access array index {index} when array size is {base.num_elements}."
            )
        element_type = self._resolve_type_by_id(base.element_type)
        return element_type.get_size() * index, element_type

    def _get_deref_step(
        self, qtype: QualifiedType, deref: DeReference
    ) -> tuple[int, QualifiedType]:
        if isinstance(deref, MemberAccess):
            return self._get_member_access(qtype, deref.name)
        if isinstance(deref, ArrayIndex):
            return self._get_array_index(qtype, deref.element)
        raise _unhandled(deref)

    def _get_assign_offset(
        self, qtype: QualifiedType, derefs: tuple[DeReference, ...]
    ) -> tuple[int, QualifiedType]:
        """Static byte offset and narrowed type of a member/index chain."""
        offset = 0
        cur_type = qtype
        for deref in derefs:
            if cur_type.is_pointer():
                raise self._context.error("Indirect assignments aren't supported.")
            step, cur_type = self._get_deref_step(cur_type, deref)
            offset += step
        return offset, cur_type

    def _emit_apply_derefs_to_reg(
        self, reg: Register, var_type: QualifiedType, derefs: tuple[DeReference, ...]
    ) -> QualifiedType:
        """Advance the address in *reg* along *derefs*, following one pointer per step."""
        cur_type = var_type
        for deref in derefs:
            if cur_type.is_pointer():
                self._context.emit(Instruction.loadx64(reg, reg, 0))
                cur_type = cur_type.dereference()
            step, cur_type = self._get_deref_step(cur_type, deref)
            if step > 0:
                self._context.emit(Instruction.add64(reg, step))
        return cur_type

    def _emit_set_register_to_lvalue_addr(
        self, reg: Register, lval: LValue
    ) -> QualifiedType:
        info = self._context.get_variable(lval.name)
        if isinstance(info.location, CapturedImmediate):
            raise self._context.error(
                f'Captured value "{lval.name}" has no address.'
            )
        self._context.emit(
            Instruction.movx64(reg, _FRAME),
            Instruction.add64(reg, info.location.offset),
        )
        return self._emit_apply_derefs_to_reg(reg, info.var_type, lval.derefs)

    # ── register emission ────────────────────────────────────────

    def _check_captured_read(self, lval: LValue) -> None:
        if lval.prefix is not None:
            raise self._context.error(
                f'Cannot reference or dereference captured value "{lval.name}".'
            )
        if lval.derefs:
            raise self._context.error(
                f'Cannot dereference captured value "{lval.name}".'
            )

    def _emit_load_register(self, reg: Register, qtype: QualifiedType) -> None:
        size = qtype.get_size()
        if size not in constants.REGISTER_LOAD_SIZES:
            raise self._context.error("Variable too large to be passed in a register.")
        self._context.emit(Instruction.loadx(size, reg, reg, 0))

    def _emit_set_register_from_lvalue(
        self, reg: Register, lval: LValue, load_type: LoadType | None
    ) -> None:
        info = self._context.get_variable(lval.name)
        if isinstance(info.location, CapturedImmediate):
            self._check_captured_read(lval)
            self._context.emit(
                Instruction.loadtype(reg, info.location.value, load_type or LoadType.VOID)
            )
            return

        var_type = self._emit_set_register_to_lvalue_addr(reg, lval)

        # The register already holds the address.
        if lval.prefix == Prefix.REFERENCE:
            return

        self._emit_load_register(reg, var_type)

        if lval.prefix == Prefix.DEREFERENCE:
            if not var_type.is_pointer():
                raise self._context.error("Cannot dereference a non-pointer type.")
            self._emit_load_register(reg, var_type.dereference())

    def _emit_set_register_from_rvalue(
        self, reg: Register, rval: RValue, load_type: LoadType | None
    ) -> None:
        if isinstance(rval, Immediate):
            value = self._parse_immediate(rval.value, 8, True)
            if load_type is None and fits_imm32(value):
                self._context.emit(Instruction.mov64(reg, value))
            else:
                self._context.emit(
                    Instruction.loadtype(reg, value, load_type or LoadType.VOID)
                )
        elif isinstance(rval, LValue):
            self._emit_set_register_from_lvalue(reg, rval, load_type)
        elif isinstance(rval, FunctionCall):
            self._emit_call(rval)
            if reg != _RESULT:
                self._context.emit(Instruction.movx64(reg, _RESULT))
        else:
            raise _unhandled(rval)

    # ── statements ───────────────────────────────────────────────

    def _emit_call(self, call: FunctionCall) -> None:
        helper = Helpers.from_string(call.name)
        if helper is None:
            raise self._context.error(f'Unknown helper function "{call.name}".')
        if len(call.args) > constants.MAX_ARGUMENTS:
            raise self._context.error(
                f"Function calls can have a maximum of {constants.MAX_ARGUMENTS} arguments."
            )

        # Arguments go straight into r1-r5; a nested call clobbers earlier ones.
        hints = helper.get_arg_types()
        for i, arg in enumerate(call.args):
            reg = Register(constants.FIRST_ARGUMENT_REGISTER + i)
            self._emit_set_register_from_rvalue(reg, arg, hints[i])
        self._context.emit(Instruction.call(helper))

    def _emit_assign(self, assign: Assignment) -> None:
        left = assign.left
        if left.prefix is not None:
            raise self._context.error(
                f'Cannot assign through a "{left.prefix.value}" prefix.'
            )

        info = self._context.lookup(left.name)
        if info is not None:
            if assign.type_name is not None:
                raise self._context.error(
                    f'Can\'t re-type "{left.name}" after first assignment.'
                )
            if not isinstance(info.location, StackSlot):
                raise self._context.error(
                    f'Variable "{left.name}" cannot be re-assigned.'
                )
            rel_offset, cast_type = self._get_assign_offset(info.var_type, left.derefs)
            self._emit_push_rvalue(assign.right, cast_type, info.location.offset + rel_offset)
            return

        if left.derefs:
            raise self._context.error(f'No variable with the name "{left.name}".')
        cast_type = (
            self._resolve_type_by_decl(assign.type_name)
            if assign.type_name is not None
            else QualifiedType()
        )
        offset, new_type = self._emit_push_rvalue(assign.right, cast_type, None)
        self._context.define(left.name, VariableInfo(new_type, StackSlot(offset)))

    def _emit_return(self, ret: Return) -> None:
        if ret.value is None:
            self._context.emit(Instruction.mov64(_RESULT, 0))
        else:
            self._emit_set_register_from_rvalue(_RESULT, ret.value, None)
        self._context.emit(Instruction.exit())

    def _emit_prologue(self, script: ScriptDef) -> None:
        args = script.input.args
        if len(args) > constants.MAX_ARGUMENTS:
            raise self._context.error(
                f"Functions can have a maximum of {constants.MAX_ARGUMENTS} arguments."
            )
        names = [arg.name for arg in args]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise self._context.error(
                f'Duplicate argument name "{duplicates[0]}".'
            )

        # Spill every incoming register to the stack.
        for i, arg in enumerate(args):
            reg = Register(constants.FIRST_ARGUMENT_REGISTER + i)
            arg_type = self._resolve_type_by_decl(arg.type_name)
            offset = self._emit_push_register(reg, None)
            self._context.define(arg.name, VariableInfo(arg_type, StackSlot(offset)))

    def _emit_body(self, script: ScriptDef) -> None:
        for expr in script.exprs:
            self._context.line += 1
            logger.debug("Lowering line %d: %s", self._context.line, type(expr).__name__)
            if isinstance(expr, Assignment):
                self._emit_assign(expr)
            elif isinstance(expr, FunctionCall):
                self._emit_call(expr)
            elif isinstance(expr, Return):
                self._emit_return(expr)
            else:
                raise _unhandled(expr)

        # Programs implicitly return 0.
        if not script.exprs or not isinstance(script.exprs[-1], Return):
            self._emit_return(Return())

    # ── public surface ───────────────────────────────────────────

    def compile(self, script_text: str) -> None:
        """Compile *script_text*, raising :class:`CompileError` on the first failure."""
        logger.info("Compiling script (%d bytes)", len(script_text))
        script = parse_script(script_text, line=self._context.line)
        self._emit_prologue(script)
        self._emit_body(script)
        self._context.instructions = optimize(self._context.instructions)
        logger.info(
            "Compiled to %d instruction(s), %d stack byte(s)",
            len(self._context.instructions),
            self._context.stack,
        )

    def get_instructions(self) -> list[Instruction]:
        return list(self._context.instructions)

    def get_bytecode(self) -> list[int]:
        """Raw instruction words, ready to hand to the kernel loader."""
        bytecode: list[int] = []
        for instruction in self._context.instructions:
            word, extension = instruction.encode()
            bytecode.append(word)
            if extension is not None:
                bytecode.append(extension)
        return bytecode

    def get_bytes(self) -> bytes:
        return b"".join(word.to_bytes(8, "little") for word in self.get_bytecode())
