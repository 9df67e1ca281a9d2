"""Kernel helper catalog: callable routines and their argument load hints."""

from __future__ import annotations

from enum import IntEnum

from . import constants
from .instructions import LoadType

_V = LoadType.VOID
_M = LoadType.MAP


class Helpers(IntEnum):
    MapLookupElem = 1
    MapUpdateElem = 2
    MapDeleteElem = 3
    ProbeRead = 4
    KtimeGetNs = 5
    TracePrintk = 6
    GetPrandomU32 = 7
    GetSmpProcessorId = 8
    TailCall = 12
    GetCurrentPidTgid = 14
    GetCurrentUidGid = 15
    GetCurrentComm = 16
    PerfEventOutput = 25
    GetStackid = 27
    GetCurrentTask = 35
    ProbeReadStr = 45
    GetCurrentCgroupId = 80
    SendSignal = 109
    ProbeReadUser = 112
    ProbeReadKernel = 113
    ProbeReadUserStr = 114
    ProbeReadKernelStr = 115
    KtimeGetBootNs = 125
    RingbufOutput = 130
    RingbufReserve = 131
    RingbufSubmit = 132
    RingbufDiscard = 133
    GetCurrentTaskBtf = 158
    KtimeGetCoarseNs = 160

    @classmethod
    def from_string(cls, name: str) -> Helpers | None:
        """Look up a helper by its script name, e.g. ``get_current_uid_gid``."""
        return _BY_NAME.get(name)

    @property
    def script_name(self) -> str:
        return "".join(
            f"_{c.lower()}" if c.isupper() else c for c in self.name
        ).lstrip("_")

    def get_arg_types(self) -> tuple[LoadType, ...]:
        """Load hints for argument registers r1-r5, in order."""
        hints = _ARG_TYPES.get(self, ())
        return hints + (_V,) * (constants.MAX_ARGUMENTS - len(hints))


_ARG_TYPES: dict[Helpers, tuple[LoadType, ...]] = {
    Helpers.MapLookupElem: (_M,),
    Helpers.MapUpdateElem: (_M,),
    Helpers.MapDeleteElem: (_M,),
    Helpers.TailCall: (_V, _M),
    Helpers.PerfEventOutput: (_V, _M),
    Helpers.GetStackid: (_V, _M),
    Helpers.RingbufOutput: (_M,),
    Helpers.RingbufReserve: (_M,),
}

_BY_NAME: dict[str, Helpers] = {helper.script_name: helper for helper in Helpers}
