"""Recover the memory address touched by a crash's faulting instruction.

A FaultInstructionResolver is built once per crash: it reads the bytes at
the fault address, decodes and tokenizes the first instruction, and then
answers any number of source/destination address queries against a
register snapshot.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .decoders import MAX_INSTRUCTION_LENGTH, InstructionDecoder, get_decoder
from .errors import (
    DecodeFailure,
    FaultResolverError,
    MissingOperand,
    OutOfBounds,
    UnresolvedInstruction,
    UnsupportedArchitecture,
)
from .expression import calculate_address
from .registers import Architecture, RegisterSnapshot
from .tokenizer import TokenizedInstruction, tokenize_instruction

logger = logging.getLogger(__name__)


class MemorySnapshot(ABC):
    """Read-only view of one captured memory region."""

    @property
    @abstractmethod
    def base(self) -> int:
        ...

    @property
    @abstractmethod
    def size(self) -> int:
        ...

    @abstractmethod
    def read_byte_at(self, address: int) -> Optional[int]:
        """Byte at ``address``, or None if that memory was not captured."""

    def contains(self, address: int) -> bool:
        return self.base <= address < self.base + self.size


class BytesMemorySnapshot(MemorySnapshot):
    """Memory snapshot backed by an in-memory bytes buffer."""

    def __init__(self, base: int, data: bytes):
        self._base = base
        self._data = bytes(data)

    @property
    def base(self) -> int:
        return self._base

    @property
    def size(self) -> int:
        return len(self._data)

    def read_byte_at(self, address: int) -> Optional[int]:
        offset = address - self._base
        if 0 <= offset < len(self._data):
            return self._data[offset]
        return None


@dataclass
class AddressResult:
    """Outcome of one address query."""
    success: bool
    address: Optional[int] = None
    operand: str = ""
    error: Optional[FaultResolverError] = None

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

    def __str__(self):
        if self.success:
            return f"0x{self.address:016X}"
        return f"<unresolved: {self.error_message}>"


def read_instruction_bytes(memory: MemorySnapshot, address: int,
                           max_length: int = MAX_INSTRUCTION_LENGTH) -> bytes:
    """Read up to ``max_length`` bytes, stopping at the first unreadable byte.

    A short read is not an error: the instruction may fit in fewer bytes.
    """
    data = bytearray()
    for offset in range(max_length):
        value = memory.read_byte_at(address + offset)
        if value is None:
            break
        data.append(value)
    return bytes(data)


class FaultInstructionResolver:
    """Decodes the faulting instruction once and evaluates its operands.

    Construction never raises for an undecodable crash: the resolver is
    left unresolved, ``error`` says why, and every query fails.
    """

    def __init__(self, architecture, memory: MemorySnapshot, fault_address: int,
                 decoder: Optional[InstructionDecoder] = None):
        self._fault_address = fault_address
        self._architecture: Optional[Architecture] = None
        self._raw_bytes = b""
        self._instruction_text = ""
        self._instruction: Optional[TokenizedInstruction] = None
        self._error: Optional[FaultResolverError] = None

        try:
            self._resolve(architecture, memory, fault_address, decoder)
        except FaultResolverError as e:
            self._instruction = None
            self._error = e
            logger.info("Could not resolve instruction at 0x%x: %s", fault_address, e)

    def _resolve(self, architecture, memory: MemorySnapshot, fault_address: int,
                 decoder: Optional[InstructionDecoder]) -> None:
        self._architecture = Architecture.parse(architecture)

        if not memory.contains(fault_address):
            raise OutOfBounds(fault_address, memory.base, memory.size)

        self._raw_bytes = read_instruction_bytes(memory, fault_address)
        if len(self._raw_bytes) < MAX_INSTRUCTION_LENGTH:
            logger.debug("Only %d instruction bytes readable at 0x%x",
                         len(self._raw_bytes), fault_address)

        decoder = decoder or get_decoder()
        try:
            self._instruction_text = decoder.decode(self._raw_bytes, self._architecture)
        except FaultResolverError:
            raise
        except Exception as e:
            logger.warning("%s decoder raised unexpectedly: %s", decoder.name, e)
            raise DecodeFailure(f"{decoder.name} decoder error: {e}")

        self._instruction = tokenize_instruction(self._instruction_text)

    @property
    def resolved(self) -> bool:
        return self._instruction is not None

    @property
    def error(self) -> Optional[FaultResolverError]:
        return self._error

    @property
    def architecture(self) -> Optional[Architecture]:
        return self._architecture

    @property
    def fault_address(self) -> int:
        return self._fault_address

    @property
    def raw_bytes(self) -> bytes:
        return self._raw_bytes

    @property
    def instruction_text(self) -> str:
        return self._instruction_text

    @property
    def operation(self) -> str:
        return self._instruction.operation if self._instruction else ""

    @property
    def destination(self) -> str:
        return self._instruction.destination if self._instruction else ""

    @property
    def source(self) -> str:
        return self._instruction.source if self._instruction else ""

    def resolve_source_address(self, registers: RegisterSnapshot) -> AddressResult:
        return self._resolve_operand("source", self.source, registers)

    def resolve_destination_address(self, registers: RegisterSnapshot) -> AddressResult:
        return self._resolve_operand("destination", self.destination, registers)

    def _resolve_operand(self, side: str, operand: str,
                         registers: RegisterSnapshot) -> AddressResult:
        if not self.resolved:
            return AddressResult(False, error=UnresolvedInstruction(self._error))
        if not operand:
            return AddressResult(False, error=MissingOperand(side))
        if registers.architecture is not self._architecture:
            return AddressResult(False, operand=operand,
                                 error=UnsupportedArchitecture(registers.architecture))
        try:
            address = calculate_address(operand, registers)
        except FaultResolverError as e:
            return AddressResult(False, operand=operand, error=e)
        return AddressResult(True, address=address, operand=operand)

    def __repr__(self):
        if not self.resolved:
            return f"<FaultInstructionResolver 0x{self._fault_address:x} unresolved: {self._error}>"
        return f"<FaultInstructionResolver 0x{self._fault_address:x} {self._instruction_text!r}>"
