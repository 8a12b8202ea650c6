"""Crash fault address resolver.

Reconstructs the memory address referenced by a crash's faulting
instruction:
- Reads the instruction bytes at the fault address from the memory snapshot
- Decodes the first instruction (capstone in-process, or objdump)
- Tokenizes it into operation / destination / source operands
- Evaluates bracketed memory operands against the captured registers
- Minidump adapters to drive all of the above from a .dmp file
"""
from .errors import (
    FaultResolverError,
    OutOfBounds,
    DecodeError,
    DecodeUnavailable,
    DecodeFailure,
    TokenizeError,
    UnsupportedArchitecture,
    UnsupportedRegister,
    UnsupportedSegment,
    NotAMemoryOperand,
    MissingOperand,
    UnresolvedInstruction,
)
from .registers import Architecture, RegisterSnapshot
from .tokenizer import TokenizedInstruction, tokenize_instruction
from .expression import AddressExpression, parse_address_expression, calculate_address
from .decoders import (
    InstructionDecoder,
    ObjdumpDecoder,
    CapstoneDecoder,
    get_decoder,
    MAX_INSTRUCTION_LENGTH,
)
from .resolver import (
    AddressResult,
    BytesMemorySnapshot,
    FaultInstructionResolver,
    MemorySnapshot,
)
from .config import ResolverConfig
from .minidump_source import (
    FaultAnalysis,
    MinidumpMemorySnapshot,
    analyze_dump_fault,
    analyze_fault,
)

__all__ = [
    # Errors
    "FaultResolverError",
    "OutOfBounds",
    "DecodeError",
    "DecodeUnavailable",
    "DecodeFailure",
    "TokenizeError",
    "UnsupportedArchitecture",
    "UnsupportedRegister",
    "UnsupportedSegment",
    "NotAMemoryOperand",
    "MissingOperand",
    "UnresolvedInstruction",
    # Registers
    "Architecture",
    "RegisterSnapshot",
    # Tokenizer / evaluator
    "TokenizedInstruction",
    "tokenize_instruction",
    "AddressExpression",
    "parse_address_expression",
    "calculate_address",
    # Decoders
    "InstructionDecoder",
    "ObjdumpDecoder",
    "CapstoneDecoder",
    "get_decoder",
    "MAX_INSTRUCTION_LENGTH",
    # Resolver
    "AddressResult",
    "BytesMemorySnapshot",
    "FaultInstructionResolver",
    "MemorySnapshot",
    "ResolverConfig",
    # Minidump
    "FaultAnalysis",
    "MinidumpMemorySnapshot",
    "analyze_dump_fault",
    "analyze_fault",
]

__version__ = "1.0.0"
