"""Failure kinds raised while resolving a faulting instruction's address.

Every stage raises one of these; the resolver boundary catches them and
reports "address undetermined" instead of propagating.
"""
from __future__ import annotations

from typing import Optional


class FaultResolverError(Exception):
    """Base class for all resolution failures."""


class OutOfBounds(FaultResolverError):
    """Fault address lies outside the captured memory snapshot."""

    def __init__(self, address: int, base: int, size: int):
        self.address = address
        self.base = base
        self.size = size
        super().__init__(
            f"Address 0x{address:X} outside snapshot "
            f"[0x{base:X}, 0x{base + size:X})"
        )


class DecodeError(FaultResolverError):
    """The instruction decoder could not produce instruction text."""


class DecodeUnavailable(DecodeError):
    """No decoder capability on this platform (missing tool or library)."""


class DecodeFailure(DecodeError):
    """The decoder ran but produced no usable instruction text."""


class TokenizeError(FaultResolverError):
    """Decoded instruction text has a malformed operand list."""


class UnsupportedArchitecture(FaultResolverError):
    def __init__(self, architecture):
        self.architecture = architecture
        super().__init__(f"Unsupported architecture: {architecture!r}")


class UnsupportedRegister(FaultResolverError):
    def __init__(self, name: str, architecture=None):
        self.name = name
        self.architecture = architecture
        arch = f" on {architecture.value}" if architecture is not None else ""
        super().__init__(f"Unsupported register: {name}{arch}")


class UnsupportedSegment(FaultResolverError):
    def __init__(self, name: str, architecture=None):
        self.name = name
        self.architecture = architecture
        arch = f" on {architecture.value}" if architecture is not None else ""
        super().__init__(f"Unsupported segment register: {name}{arch}")


class NotAMemoryOperand(FaultResolverError):
    """Operand is a register or immediate, not a bracketed memory reference."""

    def __init__(self, operand: str):
        self.operand = operand
        super().__init__(f"Not a memory operand: {operand!r}")


class MissingOperand(FaultResolverError):
    """The instruction has no operand in the requested slot."""

    def __init__(self, side: str):
        self.side = side
        super().__init__(f"Instruction has no {side} operand")


class UnresolvedInstruction(FaultResolverError):
    """Address query against a resolver whose construction failed."""

    def __init__(self, cause: Optional[FaultResolverError] = None):
        self.cause = cause
        msg = "Faulting instruction could not be resolved"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
