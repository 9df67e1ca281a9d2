"""eBPF script compiler package."""

from .compiler import Compiler  # noqa: F401
from .errors import CompileError  # noqa: F401
from .helpers import Helpers  # noqa: F401
from .btf_types import QualifiedType, TypeDatabase  # noqa: F401
from .instructions import Instruction, LoadType, Register  # noqa: F401
from .api import (  # noqa: F401
    compile_script,
    compile_to_bytecode,
    dump_instructions,
    load_type_database,
)
