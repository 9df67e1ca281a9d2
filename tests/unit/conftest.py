"""Shared type database for compiler tests."""

import pytest

from bpf_script.btf_types import TypeDatabase


def build_types() -> TypeDatabase:
    """A small kernel-like type table.

    Layouts (byte offsets):
      iovec        16  iov_base: void * @0, iov_len: size_t @8
      msghdr       24  msg_name: void * @0, msg_iov: &iovec @8, msg_iovlen: size_t @16
      task_info    24  pid: int @0, flags: __u32 @4, comm: __u8[16] @8
      packed7       7  a: __u32 @0, b: __u16 @4, c: __u8 @6
      flags_word    4  lo: __u32 @0, hi: __u32 at bit 4 (a bitfield)
      broken        8  bad: dangling type id 9999 @0
      big_buffer  300  data: __u8[300] @0
    """
    db = TypeDatabase()
    void_ptr = db.add_pointer(0)
    u8 = db.add_integer("__u8", 1, False)
    db.add_integer("__s8", 1, True)
    u16 = db.add_integer("__u16", 2, False)
    db.add_integer("__s16", 2, True)
    u32 = db.add_integer("__u32", 4, False)
    db.add_integer("__s32", 4, True)
    int_id = db.add_integer("int", 4, True)
    u64 = db.add_integer("__u64", 8, False)
    db.add_integer("__s64", 8, True)
    size_t = db.add_typedef("size_t", u64)

    iovec = db.add_struct("iovec", 16, [("iov_base", 0, void_ptr), ("iov_len", 64, size_t)])
    iovec_ptr = db.add_pointer(iovec)
    db.add_struct(
        "msghdr",
        24,
        [("msg_name", 0, void_ptr), ("msg_iov", 64, iovec_ptr), ("msg_iovlen", 128, size_t)],
    )

    comm = db.add_array(u8, 16)
    db.add_struct("task_info", 24, [("pid", 0, int_id), ("flags", 32, u32), ("comm", 64, comm)])
    db.add_struct("packed7", 7, [("a", 0, u32), ("b", 32, u16), ("c", 48, u8)])
    db.add_struct("flags_word", 4, [("lo", 0, u32), ("hi", 4, u32)])
    db.add_struct("broken", 8, [("bad", 0, 9999)])
    db.add_struct("big_buffer", 300, [("data", 0, db.add_array(u8, 300))])
    return db


@pytest.fixture
def types() -> TypeDatabase:
    return build_types()
