"""Drive the fault resolver from a Windows minidump.

Uses the ``minidump`` package for parsing. The exception stream gives the
fault address and crashing thread, the thread's CONTEXT gives registers,
and the memory segment list gives the code bytes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .decoders import InstructionDecoder
from .errors import FaultResolverError, UnsupportedArchitecture
from .registers import (
    MINIDUMP_CONTEXT_FIELDS,
    MINIDUMP_SEGMENT_FIELDS,
    Architecture,
    RegisterSnapshot,
)
from .resolver import AddressResult, FaultInstructionResolver, MemorySnapshot

# Optional dependencies
try:
    from minidump.minidumpfile import MinidumpFile
    HAS_MINIDUMP = True
except ImportError:
    MinidumpFile = None
    HAS_MINIDUMP = False

logger = logging.getLogger(__name__)


def _to_int(value) -> Optional[int]:
    """Normalise the int/bytes/enum shapes minidump uses for numeric fields."""
    if value is None:
        return None
    try:
        if isinstance(value, int):
            return int(value)
        if isinstance(value, bytes):
            return int.from_bytes(value, "little")
        if hasattr(value, "value"):
            return int(value.value)
        return int(value)
    except (ValueError, TypeError):
        return None


class MinidumpMemorySnapshot(MemorySnapshot):
    """One captured memory segment of a minidump."""

    def __init__(self, segment, reader):
        self.segment = segment
        self.reader = reader

    @property
    def base(self) -> int:
        return int(self.segment.start_virtual_address)

    @property
    def size(self) -> int:
        return int(self.segment.size)

    def read_byte_at(self, address: int) -> Optional[int]:
        if not self.contains(address):
            return None
        try:
            data = self.reader.read(address, 1)
        except Exception as e:
            # the reader raises a bare Exception for unmapped addresses
            logger.debug("Read at 0x%x failed: %s", address, e)
            return None
        if not data:
            return None
        return data[0]


def _memory_segments(md) -> List[Any]:
    segments = []
    for attr in ("memory_segments_64", "memory_segments"):
        stream = getattr(md, attr, None)
        if stream:
            segments.extend(getattr(stream, "memory_segments", None) or [])
    return segments


def find_memory_snapshot(md, address: int, reader=None) -> Optional[MinidumpMemorySnapshot]:
    """Memory snapshot of the segment holding ``address`` (64-bit list first)."""
    for segment in _memory_segments(md):
        start = _to_int(getattr(segment, "start_virtual_address", None))
        size = _to_int(getattr(segment, "size", None))
        if start is None or not size:
            continue
        if start <= address < start + size:
            return MinidumpMemorySnapshot(segment, reader or md.get_reader())
    return None


def architecture_from_minidump(md) -> Architecture:
    """Map the SystemInfo processor architecture onto Architecture."""
    sysinfo = getattr(md, "sysinfo", None)
    arch = getattr(sysinfo, "ProcessorArchitecture", None)
    if arch is None:
        raise UnsupportedArchitecture(None)

    name = str(getattr(arch, "name", arch)).upper()
    if "AMD64" in name:
        return Architecture.AMD64
    if "INTEL" in name or "X86" in name:
        return Architecture.X86

    code = _to_int(arch)
    if code == 9:
        return Architecture.AMD64
    if code == 0:
        return Architecture.X86
    raise UnsupportedArchitecture(arch)


def register_snapshot_from_context(architecture, context) -> RegisterSnapshot:
    """Build a RegisterSnapshot from a minidump thread CONTEXT object.

    X86 segment values are taken from the SegDs..SegGs fields.
    """
    arch = Architecture.parse(architecture)
    registers = {}
    for name, attr in MINIDUMP_CONTEXT_FIELDS[arch].items():
        value = _to_int(getattr(context, attr, None))
        if value is not None:
            registers[name] = value
    segments = {}
    for name, attr in MINIDUMP_SEGMENT_FIELDS[arch].items():
        value = _to_int(getattr(context, attr, None))
        if value is not None:
            segments[name] = value
    return RegisterSnapshot(arch, registers, segments)


@dataclass
class FaultAnalysis:
    """Resolved memory operands of a minidump's faulting instruction."""
    exception_code: Optional[int] = None
    exception_address: Optional[int] = None
    thread_id: Optional[int] = None
    architecture: Optional[Architecture] = None

    instruction_bytes: bytes = b""
    instruction_text: str = ""
    operation: str = ""
    destination: str = ""
    source: str = ""

    source_address: Optional[AddressResult] = None
    destination_address: Optional[AddressResult] = None

    errors: List[str] = field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return bool(self.operation)

    def to_dict(self) -> Dict[str, Any]:
        def _addr(result: Optional[AddressResult]):
            if result is None:
                return None
            return {
                "success": result.success,
                "address": hex(result.address) if result.success else None,
                "operand": result.operand,
                "error": result.error_message,
            }

        return {
            "exception_code": hex(self.exception_code) if self.exception_code is not None else None,
            "exception_address": hex(self.exception_address) if self.exception_address is not None else None,
            "thread_id": self.thread_id,
            "architecture": self.architecture.value if self.architecture else None,
            "instruction_bytes": self.instruction_bytes.hex(),
            "instruction": self.instruction_text,
            "operation": self.operation,
            "destination": self.destination,
            "source": self.source,
            "destination_address": _addr(self.destination_address),
            "source_address": _addr(self.source_address),
            "errors": list(self.errors),
        }


def _exception_record(md):
    stream = getattr(md, "exception", None)
    records = getattr(stream, "exception_records", None) if stream else None
    if records:
        return records[0]
    return stream


def _thread_context(md, thread_id: Optional[int]):
    threads = getattr(md, "threads", None)
    for thread in getattr(threads, "threads", None) or []:
        if getattr(thread, "ThreadId", None) == thread_id:
            return getattr(thread, "ContextObject", None)
    return None


def analyze_fault(md, decoder: Optional[InstructionDecoder] = None) -> FaultAnalysis:
    """Resolve the faulting instruction's operand addresses in a parsed minidump.

    Problems are collected in ``FaultAnalysis.errors``; nothing is raised.
    """
    analysis = FaultAnalysis()

    try:
        analysis.architecture = architecture_from_minidump(md)
    except UnsupportedArchitecture as e:
        analysis.errors.append(str(e))
        return analysis

    exc_stream = _exception_record(md)
    exc_rec = getattr(exc_stream, "ExceptionRecord", None) if exc_stream else None
    if exc_rec is None:
        analysis.errors.append("No exception record in dump")
        return analysis

    analysis.thread_id = getattr(exc_stream, "ThreadId", None)
    analysis.exception_code = _to_int(getattr(exc_rec, "ExceptionCode", None))
    analysis.exception_address = _to_int(getattr(exc_rec, "ExceptionAddress", None))
    if analysis.exception_address is None:
        analysis.errors.append("Exception record has no exception address")
        return analysis

    context = _thread_context(md, analysis.thread_id)
    if context is None:
        analysis.errors.append(f"No CPU context for crashing thread {analysis.thread_id}")
        return analysis

    try:
        registers = register_snapshot_from_context(analysis.architecture, context)
    except FaultResolverError as e:
        analysis.errors.append(f"Register snapshot: {e}")
        return analysis

    memory = find_memory_snapshot(md, analysis.exception_address)
    if memory is None:
        analysis.errors.append(
            f"Exception address 0x{analysis.exception_address:X} not in captured memory"
        )
        return analysis

    resolver = FaultInstructionResolver(
        analysis.architecture, memory, analysis.exception_address, decoder
    )
    analysis.instruction_bytes = resolver.raw_bytes
    analysis.instruction_text = resolver.instruction_text
    if not resolver.resolved:
        analysis.errors.append(f"Instruction not resolved: {resolver.error}")
        return analysis

    analysis.operation = resolver.operation
    analysis.destination = resolver.destination
    analysis.source = resolver.source
    analysis.destination_address = resolver.resolve_destination_address(registers)
    analysis.source_address = resolver.resolve_source_address(registers)
    return analysis


def analyze_dump_fault(dump_path: str,
                       decoder: Optional[InstructionDecoder] = None) -> FaultAnalysis:
    """Parse ``dump_path`` and run :func:`analyze_fault` on it."""
    if not HAS_MINIDUMP:
        analysis = FaultAnalysis()
        analysis.errors.append("minidump package not installed")
        return analysis

    try:
        md = MinidumpFile.parse(dump_path)
    except Exception as e:
        analysis = FaultAnalysis()
        analysis.errors.append(f"Minidump parsing error: {e}")
        return analysis
    return analyze_fault(md, decoder)
