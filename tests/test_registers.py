"""Tests for the per-architecture register/segment tables."""
import pytest

from fault_resolver.errors import (
    UnsupportedArchitecture,
    UnsupportedRegister,
    UnsupportedSegment,
)
from fault_resolver.registers import (
    AMD64_REGISTERS,
    X86_REGISTERS,
    Architecture,
    RegisterSnapshot,
    register_value,
    segment_base,
)


def test_architecture_parse_aliases():
    assert Architecture.parse("x86") is Architecture.X86
    assert Architecture.parse("i386") is Architecture.X86
    assert Architecture.parse("AMD64") is Architecture.AMD64
    assert Architecture.parse("x86_64") is Architecture.AMD64
    assert Architecture.parse(Architecture.X86) is Architecture.X86


def test_architecture_parse_rejects_others():
    with pytest.raises(UnsupportedArchitecture):
        Architecture.parse("arm64")
    with pytest.raises(UnsupportedArchitecture):
        Architecture.parse(7)


def test_unsupplied_registers_read_as_zero():
    regs = RegisterSnapshot.create("amd64", rax=5)
    assert register_value(regs, "rax") == 5
    assert register_value(regs, "r11") == 0
    assert set(regs.registers) == set(AMD64_REGISTERS)


def test_register_lookup_is_per_architecture():
    regs = RegisterSnapshot.create("x86", eax=1)
    with pytest.raises(UnsupportedRegister):
        register_value(regs, "rax")
    regs64 = RegisterSnapshot.create("amd64", rax=1)
    with pytest.raises(UnsupportedRegister):
        register_value(regs64, "eax")


def test_snapshot_rejects_unknown_names():
    with pytest.raises(UnsupportedRegister):
        RegisterSnapshot.create("x86", ax=1)
    with pytest.raises(UnsupportedSegment):
        RegisterSnapshot.create("amd64", segments={"fs": 0x10})


def test_values_are_truncated_to_64_bits():
    regs = RegisterSnapshot.create("amd64", rax=(1 << 64) + 7)
    assert regs.register_value("rax") == 7


def test_x86_segment_bases():
    regs = RegisterSnapshot.create("x86", segments={"fs": 0x30, "gs": 0x40})
    assert segment_base(regs, "fs") == 0x30
    assert segment_base(regs, "gs") == 0x40
    assert segment_base(regs, "ds") == 0


def test_amd64_segment_asymmetry():
    regs = RegisterSnapshot.create("amd64")
    assert segment_base(regs, "ds") == 0
    assert segment_base(regs, "es") == 0
    for name in ("fs", "gs", "cs", "ss"):
        with pytest.raises(UnsupportedSegment):
            segment_base(regs, name)


def test_register_tables_are_closed():
    assert "eip" in X86_REGISTERS
    assert len(X86_REGISTERS) == 9
    assert len(AMD64_REGISTERS) == 17
