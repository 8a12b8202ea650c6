"""Evaluate bracketed memory operands against captured registers.

Supported operand form::

    (segment:)[base(+index(*scale))(+|-offset)]

e.g. ``fs:[esi+edi*4-0x80]``. Scale is decimal, offset is a ``0x`` hex
literal. Arithmetic wraps at 64 bits like a native pointer.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .errors import NotAMemoryOperand
from .registers import MASK64, RegisterSnapshot, register_value, segment_base

logger = logging.getLogger(__name__)

_NAME = r"[A-Za-z_][A-Za-z0-9_]*"

_EXPRESSION_RE = re.compile(
    rf"^(?:(?P<segment>{_NAME}):)?"              # "fs:"
    rf"\[(?P<base>{_NAME})"                      # "[esi"
    rf"(?:\+(?P<index>{_NAME})(?:\*(?P<scale>\d+))?)?"  # "+edi*4"
    r"(?:(?P<sign>[+-])(?P<offset>0x[0-9A-Fa-f]+))?"   # "-0x80"
    r"\]$"
)


@dataclass(frozen=True)
class AddressExpression:
    base: str
    segment: Optional[str] = None
    index: Optional[str] = None
    scale: int = 1
    offset_sign: Optional[str] = None
    offset: int = 0

    @property
    def signed_offset(self) -> int:
        return -self.offset if self.offset_sign == "-" else self.offset


def parse_address_expression(operand: str) -> AddressExpression:
    """Parse operand text into its addressing components.

    Raises:
        NotAMemoryOperand: text is not a bracketed memory reference.
    """
    match = _EXPRESSION_RE.match(operand.strip())
    if not match:
        raise NotAMemoryOperand(operand)

    index = match.group("index")
    scale = 1
    if index and match.group("scale"):
        scale = int(match.group("scale"), 10)

    sign = match.group("sign")
    offset = int(match.group("offset"), 16) if sign else 0

    return AddressExpression(
        base=match.group("base"),
        segment=match.group("segment"),
        index=index,
        scale=scale,
        offset_sign=sign,
        offset=offset,
    )


def evaluate_address_expression(expression: AddressExpression,
                                registers: RegisterSnapshot) -> int:
    """Compute the effective address, resolving names in a fixed order:
    segment, base, index. The first unknown name raises."""
    seg_value = 0
    if expression.segment:
        seg_value = segment_base(registers, expression.segment)

    base_value = register_value(registers, expression.base)

    index_value = 0
    if expression.index:
        index_value = register_value(registers, expression.index)

    address = (seg_value + base_value + index_value * expression.scale) & MASK64
    if expression.offset_sign == "+":
        address = (address + expression.offset) & MASK64
    elif expression.offset_sign == "-":
        address = (address - expression.offset) & MASK64
    return address


def calculate_address(operand: str, registers: RegisterSnapshot) -> int:
    """Parse and evaluate one operand.

    Raises:
        NotAMemoryOperand, UnsupportedSegment, UnsupportedRegister
    """
    expression = parse_address_expression(operand)
    address = evaluate_address_expression(expression, registers)
    logger.debug("%s -> 0x%x", operand, address)
    return address
