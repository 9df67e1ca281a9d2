"""BTF-style type database of structural kernel type descriptions.

Types live in a flat table indexed by numeric id (id 0 is ``void``). Named
integers, structs and typedefs can be looked up by name; pointers and arrays
are anonymous and only reachable by id, exactly like the kernel's BTF blob.
Resolution follows typedef and pointer chains and returns a
:class:`QualifiedType`: the underlying base type plus the number of pointer
levels that were crossed on the way.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from . import constants

logger = logging.getLogger(__name__)


class VoidType(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["void"] = "void"


class IntegerType(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["int"] = "int"
    name: str = ""
    size: int
    is_signed: bool = False


class StructMember(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    offset: int  # in bits
    type_id: int


class StructType(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["struct"] = "struct"
    name: str = ""
    size: int
    members: tuple[StructMember, ...] = ()

    def get_member(self, name: str) -> StructMember | None:
        return next((m for m in self.members if m.name == name), None)


class ArrayType(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["array"] = "array"
    element_type: int
    num_elements: int
    size: int = 0


class PointerType(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["pointer"] = "pointer"
    target: int


class TypedefType(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["typedef"] = "typedef"
    name: str
    target: int


BaseType = Union[VoidType, IntegerType, StructType, ArrayType]

BtfType = Annotated[
    Union[VoidType, IntegerType, StructType, ArrayType, PointerType, TypedefType],
    Field(discriminator="kind"),
]


class QualifiedType(BaseModel):
    """A resolved base type plus its pointer depth."""

    model_config = ConfigDict(frozen=True)

    base_type: BaseType = VoidType()
    num_refs: int = 0

    @classmethod
    def int_type(cls, size: int, is_signed: bool) -> QualifiedType:
        return cls(base_type=IntegerType(size=size, is_signed=is_signed))

    def is_pointer(self) -> bool:
        return self.num_refs > 0

    def is_void(self) -> bool:
        return isinstance(self.base_type, VoidType) and not self.is_pointer()

    def get_size(self) -> int:
        if self.is_pointer():
            return constants.POINTER_SIZE
        if isinstance(self.base_type, VoidType):
            return 0
        return self.base_type.size

    def reference(self) -> QualifiedType:
        return self.model_copy(update={"num_refs": self.num_refs + 1})

    def dereference(self) -> QualifiedType:
        return self.model_copy(update={"num_refs": max(self.num_refs - 1, 0)})

    def __str__(self) -> str:
        base = self.base_type
        if isinstance(base, VoidType):
            name = "void"
        elif isinstance(base, ArrayType):
            name = f"array[{base.num_elements}]"
        else:
            name = base.name or f"{base.kind}{base.size * constants.BITS_PER_BYTE}"
        return "&" * self.num_refs + name


class TypeDocument(BaseModel):
    """On-disk JSON layout: entry *i* gets type id *i + 1*."""

    types: list[BtfType] = []


class TypeDatabase:
    """In-memory table of BTF-style type descriptions."""

    def __init__(self):
        self._types: list[BtfType] = [VoidType()]
        self._names: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._types)

    # ── construction ─────────────────────────────────────────────

    def _register(self, entry: BtfType) -> int:
        if isinstance(entry, ArrayType):
            element = self.resolve_type_by_id(entry.element_type)
            if element is None:
                raise ValueError(f"Array element type id {entry.element_type} is not defined")
            entry = entry.model_copy(
                update={"size": element.get_size() * entry.num_elements}
            )
        name = getattr(entry, "name", "")
        if name and name in self._names:
            raise ValueError(f"Type name {name!r} is already defined")
        type_id = len(self._types)
        self._types.append(entry)
        if name:
            self._names[name] = type_id
        logger.debug("Registered type #%d (%s %s)", type_id, entry.kind, name or "<anon>")
        return type_id

    def add_integer(self, name: str, size: int, is_signed: bool) -> int:
        return self._register(IntegerType(name=name, size=size, is_signed=is_signed))

    def add_struct(self, name: str, size: int, members: list[tuple[str, int, int]]) -> int:
        """Add a struct; *members* are ``(name, bit_offset, type_id)`` triples."""
        return self._register(
            StructType(
                name=name,
                size=size,
                members=tuple(
                    StructMember(name=m_name, offset=offset, type_id=type_id)
                    for m_name, offset, type_id in members
                ),
            )
        )

    def add_array(self, element_type: int, num_elements: int) -> int:
        return self._register(
            ArrayType(element_type=element_type, num_elements=num_elements)
        )

    def add_pointer(self, target: int) -> int:
        return self._register(PointerType(target=target))

    def add_typedef(self, name: str, target: int) -> int:
        return self._register(TypedefType(name=name, target=target))

    @classmethod
    def from_json(cls, text: str) -> TypeDatabase:
        document = TypeDocument.model_validate_json(text)
        database = cls()
        for entry in document.types:
            database._register(entry)
        logger.info("Loaded %d types", len(document.types))
        return database

    @classmethod
    def from_file(cls, path: str | Path) -> TypeDatabase:
        return cls.from_json(Path(path).read_text(encoding="utf-8"))

    def to_json(self) -> str:
        return TypeDocument(types=self._types[1:]).model_dump_json(indent=2)

    # ── resolution ───────────────────────────────────────────────

    def get_type_id(self, name: str) -> int | None:
        return self._names.get(name)

    def resolve_type_by_name(self, name: str) -> QualifiedType | None:
        type_id = self._names.get(name)
        if type_id is None:
            return None
        return self.resolve_type_by_id(type_id)

    def resolve_type_by_id(self, type_id: int) -> QualifiedType | None:
        num_refs = 0
        seen: set[int] = set()
        while 0 <= type_id < len(self._types) and type_id not in seen:
            seen.add(type_id)
            entry = self._types[type_id]
            if isinstance(entry, PointerType):
                num_refs += 1
                type_id = entry.target
            elif isinstance(entry, TypedefType):
                type_id = entry.target
            else:
                return QualifiedType(base_type=entry, num_refs=num_refs)
        return None
