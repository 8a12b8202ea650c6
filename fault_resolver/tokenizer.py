"""Split decoded instruction text into operation and operands.

Input is a single Intel-syntax line such as::

    lock cmpxchg DWORD PTR [esi+0x10],eax

which tokenizes to operation ``cmpxchg``, destination ``[esi+0x10]`` and
source ``eax``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List

from .errors import TokenizeError

logger = logging.getLogger(__name__)

INSTRUCTION_PREFIXES = frozenset({
    "lock", "rep", "repe", "repz", "repne", "repnz", "bnd", "notrack",
})

# Compared upper-cased; objdump prints these in capitals, capstone does not.
OPERAND_SIZES = frozenset({
    "BYTE", "WORD", "DWORD", "FWORD", "QWORD", "TBYTE",
    "XMMWORD", "YMMWORD", "ZMMWORD", "PTR",
})

_TOKEN_RE = re.compile(r"[^\s,]+|,")


@dataclass(frozen=True)
class TokenizedInstruction:
    operation: str
    destination: str = ""
    source: str = ""


def is_instruction_prefix(token: str) -> bool:
    return token.lower() in INSTRUCTION_PREFIXES


def is_operand_size(token: str) -> bool:
    return token.upper() in OPERAND_SIZES


def split_tokens(text: str) -> List[str]:
    """Whitespace/comma tokens; each comma is its own token."""
    return _TOKEN_RE.findall(text)


def tokenize_instruction(text: str) -> TokenizedInstruction:
    """Tokenize one instruction.

    Raises:
        TokenizeError: no mnemonic, a missing or misplaced operand
            separator, a dangling comma, or a comma after the source operand.
    """
    operation = ""
    dest = ""
    src = ""
    found_comma = False

    for token in split_tokens(text):
        if not operation:
            if token == ",":
                raise TokenizeError(f"Unexpected comma before mnemonic in {text!r}")
            if is_instruction_prefix(token):
                continue
            operation = token
        elif not dest:
            if is_operand_size(token):
                continue
            if token == ",":
                raise TokenizeError(f"Expected destination operand but found comma in {text!r}")
            dest = token
        elif not found_comma:
            if token != ",":
                raise TokenizeError(
                    f"Expected comma after destination operand but found {token!r} in {text!r}"
                )
            found_comma = True
        elif not src:
            if is_operand_size(token):
                continue
            if token == ",":
                raise TokenizeError(f"Empty operand between commas in {text!r}")
            src = token
        elif token == ",":
            raise TokenizeError(f"Unexpected comma after last operand in {text!r}")
        # anything else after the source operand is ignored

    if not operation:
        raise TokenizeError(f"No mnemonic found in {text!r}")
    if found_comma and not src:
        raise TokenizeError(f"Found comma but no source operand in {text!r}")

    logger.debug("Tokenized %r -> %s %s, %s", text, operation, dest, src)
    return TokenizedInstruction(operation, dest, src)
