"""Tests for the BTF-style type database and QualifiedType."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from bpf_script.btf_types import (
    ArrayType,
    IntegerType,
    QualifiedType,
    StructType,
    TypeDatabase,
    VoidType,
)


class TestResolution:
    def test_void_is_id_zero(self, types):
        assert types.resolve_type_by_id(0) == QualifiedType()
        assert types.resolve_type_by_id(0).is_void()

    def test_named_integer(self, types):
        resolved = types.resolve_type_by_name("__s16")
        assert resolved.base_type == IntegerType(name="__s16", size=2, is_signed=True)
        assert resolved.num_refs == 0

    def test_typedef_is_transparent(self, types):
        assert types.resolve_type_by_name("size_t") == types.resolve_type_by_name("__u64")

    def test_pointer_adds_a_reference(self, types):
        msghdr = types.resolve_type_by_name("msghdr").base_type
        member = msghdr.get_member("msg_iov")
        resolved = types.resolve_type_by_id(member.type_id)
        assert resolved.num_refs == 1
        assert resolved.base_type.name == "iovec"

    def test_void_pointer_is_a_pointer(self, types):
        iovec = types.resolve_type_by_name("iovec").base_type
        resolved = types.resolve_type_by_id(iovec.get_member("iov_base").type_id)
        assert resolved.is_pointer()
        assert not resolved.is_void()
        assert resolved.get_size() == 8

    def test_unknown_lookups(self, types):
        assert types.resolve_type_by_name("nope") is None
        assert types.resolve_type_by_id(9999) is None
        assert types.resolve_type_by_id(-1) is None
        assert types.get_type_id("nope") is None

    def test_typedef_cycle_is_rejected(self):
        db = TypeDatabase()
        first = db.add_typedef("a", 2)
        db.add_typedef("b", first)
        assert db.resolve_type_by_name("a") is None


class TestConstruction:
    def test_array_size_is_computed(self, types):
        task = types.resolve_type_by_name("task_info").base_type
        comm = types.resolve_type_by_id(task.get_member("comm").type_id)
        assert isinstance(comm.base_type, ArrayType)
        assert comm.base_type.num_elements == 16
        assert comm.get_size() == 16

    def test_array_of_pointers(self):
        db = TypeDatabase()
        ptr = db.add_pointer(0)
        arr = db.add_array(ptr, 4)
        assert db.resolve_type_by_id(arr).get_size() == 32

    def test_array_with_unknown_element_fails(self):
        with pytest.raises(ValueError):
            TypeDatabase().add_array(42, 4)

    def test_duplicate_names_fail(self, types):
        with pytest.raises(ValueError):
            types.add_integer("__u8", 1, False)

    def test_struct_members_keep_order(self, types):
        packed = types.resolve_type_by_name("packed7").base_type
        assert isinstance(packed, StructType)
        assert [m.name for m in packed.members] == ["a", "b", "c"]
        assert [m.offset for m in packed.members] == [0, 32, 48]

    def test_ids_are_sequential(self):
        db = TypeDatabase()
        assert db.add_integer("u8", 1, False) == 1
        assert db.add_pointer(1) == 2
        assert len(db) == 3


class TestJson:
    def test_round_trip_preserves_resolution(self, types):
        reloaded = TypeDatabase.from_json(types.to_json())
        for name in ("iovec", "msghdr", "task_info", "size_t", "big_buffer"):
            assert reloaded.resolve_type_by_name(name) == types.resolve_type_by_name(name)

    def test_hand_written_document(self):
        text = """
        {"types": [
            {"kind": "int", "name": "__u32", "size": 4},
            {"kind": "array", "element_type": 1, "num_elements": 3},
            {"kind": "struct", "name": "triple", "size": 12,
             "members": [{"name": "values", "offset": 0, "type_id": 2}]}
        ]}
        """
        db = TypeDatabase.from_json(text)
        triple = db.resolve_type_by_name("triple")
        assert triple.get_size() == 12
        assert db.resolve_type_by_id(2).get_size() == 12

    def test_unknown_kind_fails(self):
        with pytest.raises(ValidationError):
            TypeDatabase.from_json('{"types": [{"kind": "float", "size": 4}]}')


class TestQualifiedType:
    def test_reference_round_trip(self):
        base = QualifiedType.int_type(4, True)
        ref = base.reference()
        assert ref.is_pointer()
        assert ref.get_size() == 8
        assert ref.dereference() == base

    def test_dereference_stops_at_zero(self):
        assert QualifiedType().dereference() == QualifiedType()

    def test_void_has_no_size(self):
        assert QualifiedType(base_type=VoidType()).get_size() == 0

    def test_rendering(self, types):
        assert str(types.resolve_type_by_name("iovec").reference()) == "&iovec"
        assert str(QualifiedType.int_type(8, False)) == "int64"
        assert str(QualifiedType()) == "void"
