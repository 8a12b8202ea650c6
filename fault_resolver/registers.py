"""Per-architecture register and segment tables.

Register values come from a RegisterSnapshot captured at crash time. Only
full-width general purpose registers and the instruction pointer are
supported, since the tables exist to evaluate address expressions.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Mapping, Optional, Tuple

from .errors import UnsupportedArchitecture, UnsupportedRegister, UnsupportedSegment

MASK64 = 0xFFFFFFFFFFFFFFFF


class Architecture(Enum):
    """CPU architectures whose crashes can be resolved."""
    X86 = "x86"
    AMD64 = "amd64"

    @classmethod
    def parse(cls, value) -> "Architecture":
        """Accept an Architecture, its value, or a common alias."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            alias = ARCHITECTURE_ALIASES.get(key)
            if alias is not None:
                return alias
        raise UnsupportedArchitecture(value)


ARCHITECTURE_ALIASES: Dict[str, Architecture] = {
    "x86": Architecture.X86,
    "i386": Architecture.X86,
    "ia32": Architecture.X86,
    "intel": Architecture.X86,
    "amd64": Architecture.AMD64,
    "x86_64": Architecture.AMD64,
    "x86-64": Architecture.AMD64,
    "x64": Architecture.AMD64,
}

X86_REGISTERS: Tuple[str, ...] = (
    "eax", "ebx", "ecx", "edx", "edi", "esi", "ebp", "esp", "eip",
)

AMD64_REGISTERS: Tuple[str, ...] = (
    "rax", "rbx", "rcx", "rdx", "rdi", "rsi", "rbp", "rsp",
    "r8", "r9", "r10", "r11", "r12", "r13", "r14", "r15",
    "rip",
)

X86_SEGMENTS: Tuple[str, ...] = ("ds", "es", "fs", "gs")

REGISTER_TABLES: Dict[Architecture, frozenset] = {
    Architecture.X86: frozenset(X86_REGISTERS),
    Architecture.AMD64: frozenset(AMD64_REGISTERS),
}

# Segment names a snapshot may carry values for.
SNAPSHOT_SEGMENTS: Dict[Architecture, frozenset] = {
    Architecture.X86: frozenset(X86_SEGMENTS),
    Architecture.AMD64: frozenset(),
}


def _snapshot_segment(name: str) -> Callable[["RegisterSnapshot"], int]:
    return lambda snapshot: snapshot.segments[name]


def _flat_segment(snapshot: "RegisterSnapshot") -> int:
    return 0


# AMD64 fs/gs bases are not captured, so those names are rejected rather
# than guessed.
SEGMENT_TABLES: Dict[Architecture, Dict[str, Callable[["RegisterSnapshot"], int]]] = {
    Architecture.X86: {name: _snapshot_segment(name) for name in X86_SEGMENTS},
    Architecture.AMD64: {"ds": _flat_segment, "es": _flat_segment},
}


@dataclass(frozen=True)
class RegisterSnapshot:
    """Register state of the faulting thread.

    Registers of the architecture's closed set that are not supplied read
    as zero, like a zero-initialised CPU context. Names outside the set are
    rejected at construction.
    """
    architecture: Architecture
    registers: Mapping[str, int] = field(default_factory=dict)
    segments: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        arch = Architecture.parse(self.architecture)
        object.__setattr__(self, "architecture", arch)

        known = REGISTER_TABLES[arch]
        regs = {name: 0 for name in known}
        for name, value in self.registers.items():
            key = name.lower()
            if key not in known:
                raise UnsupportedRegister(name, arch)
            regs[key] = int(value) & MASK64
        object.__setattr__(self, "registers", regs)

        known_segments = SNAPSHOT_SEGMENTS[arch]
        segs = {name: 0 for name in known_segments}
        for name, value in self.segments.items():
            key = name.lower()
            if key not in known_segments:
                raise UnsupportedSegment(name, arch)
            segs[key] = int(value) & MASK64
        object.__setattr__(self, "segments", segs)

    @classmethod
    def create(cls, architecture, segments: Optional[Mapping[str, int]] = None,
               **registers: int) -> "RegisterSnapshot":
        """Convenience constructor: ``RegisterSnapshot.create("x86", esi=0x1000)``."""
        return cls(Architecture.parse(architecture), registers, segments or {})

    def register_value(self, name: str) -> int:
        return register_value(self, name)

    def segment_base(self, name: str) -> int:
        return segment_base(self, name)


def register_value(snapshot: RegisterSnapshot, name: str) -> int:
    """Look up a full-width register; unknown names raise UnsupportedRegister."""
    key = name.lower()
    if key not in REGISTER_TABLES[snapshot.architecture]:
        raise UnsupportedRegister(name, snapshot.architecture)
    return snapshot.registers[key]


def segment_base(snapshot: RegisterSnapshot, name: str) -> int:
    """Look up a segment base; unknown names raise UnsupportedSegment."""
    getter = SEGMENT_TABLES[snapshot.architecture].get(name.lower())
    if getter is None:
        raise UnsupportedSegment(name, snapshot.architecture)
    return getter(snapshot)


# Minidump CONTEXT attribute names per register, for both context layouts.
MINIDUMP_CONTEXT_FIELDS: Dict[Architecture, Dict[str, str]] = {
    Architecture.X86: {
        "eax": "Eax", "ebx": "Ebx", "ecx": "Ecx", "edx": "Edx",
        "edi": "Edi", "esi": "Esi", "ebp": "Ebp", "esp": "Esp",
        "eip": "Eip",
    },
    Architecture.AMD64: {
        "rax": "Rax", "rbx": "Rbx", "rcx": "Rcx", "rdx": "Rdx",
        "rdi": "Rdi", "rsi": "Rsi", "rbp": "Rbp", "rsp": "Rsp",
        "r8": "R8", "r9": "R9", "r10": "R10", "r11": "R11",
        "r12": "R12", "r13": "R13", "r14": "R14", "r15": "R15",
        "rip": "Rip",
    },
}

MINIDUMP_SEGMENT_FIELDS: Dict[Architecture, Dict[str, str]] = {
    Architecture.X86: {"ds": "SegDs", "es": "SegEs", "fs": "SegFs", "gs": "SegGs"},
    Architecture.AMD64: {},
}
