"""Tests for the objdump and capstone instruction decoders."""
import os
import subprocess
import unittest
from unittest.mock import patch

import pytest

from fault_resolver import decoders
from fault_resolver.config import ResolverConfig
from fault_resolver.decoders import (
    CapstoneDecoder,
    ObjdumpDecoder,
    get_decoder,
    normalize_operands,
    parse_listing,
)
from fault_resolver.errors import DecodeFailure, DecodeUnavailable
from fault_resolver.registers import Architecture

OBJDUMP_OUTPUT = """
/tmp/fault_resolver-abc/raw_bytes.bin:     file format binary


Disassembly of section .data:

0000000000000000 <.data>:
   0:\tlock cmpxchg DWORD PTR [esi+0x10],eax
   5:\tadd    BYTE PTR [eax],al
"""


def test_parse_listing_returns_first_instruction():
    assert parse_listing(OBJDUMP_OUTPUT) == "lock cmpxchg DWORD PTR [esi+0x10],eax"


def test_parse_listing_strips_comments():
    out = "   0:\tmov    rax,QWORD PTR [rip+0x2000]        # 0x2007\n"
    assert parse_listing(out) == "mov    rax,QWORD PTR [rip+0x2000]"


def test_parse_listing_rejects_malformed_output():
    with pytest.raises(DecodeFailure):
        parse_listing("objdump: can't disassemble for architecture UNKNOWN!\n")
    with pytest.raises(DecodeFailure):
        parse_listing("")


def test_parse_listing_rejects_bad_instruction():
    with pytest.raises(DecodeFailure):
        parse_listing("   0:\t(bad)  \n")


def test_normalize_operands():
    assert normalize_operands("dword ptr [esi + 0x10], eax") == "dword ptr [esi+0x10], eax"
    assert normalize_operands("qword ptr [rbp - 8]") == "qword ptr [rbp-0x8]"
    assert normalize_operands("eax, dword ptr [esi + edi*4 + 0x10]") == "eax, dword ptr [esi+edi*4+0x10]"
    assert normalize_operands("dword ptr fs:[eax - 4], ecx") == "dword ptr fs:[eax-0x4], ecx"
    assert normalize_operands("eax, 5") == "eax, 5"


class FakeDecoder(decoders.InstructionDecoder):
    name = "fake"

    def __init__(self, listing="   0:\tinc eax\n", available=True):
        self.listing = listing
        self._available = available
        self.calls = []

    @property
    def available(self):
        return self._available

    def disassemble(self, raw_bytes, architecture):
        self.calls.append((raw_bytes, architecture))
        return self.listing


def test_decode_rejects_empty_input():
    decoder = FakeDecoder()
    with pytest.raises(DecodeFailure):
        decoder.decode(b"", Architecture.X86)
    assert decoder.calls == []


def test_decode_unavailable():
    with pytest.raises(DecodeUnavailable):
        FakeDecoder(available=False).decode(b"\x40", Architecture.X86)


def test_decode_truncates_to_max_instruction_length():
    decoder = FakeDecoder()
    decoder.decode(bytes(range(20)), "amd64")
    raw, arch = decoder.calls[0]
    assert len(raw) == 15
    assert arch is Architecture.AMD64


class TestObjdumpDecoder(unittest.TestCase):
    def setUp(self):
        self.decoder = ObjdumpDecoder("objdump", timeout=5)
        self.seen_paths = []

    def _fake_run(self, listing, returncode=0):
        def run(cmd, stdout=None, stderr=None, timeout=None):
            input_path = cmd[-1]
            self.seen_paths.append(input_path)
            with open(input_path, "rb") as f:
                self.assertEqual(f.read(), b"\xf0\x0f\xb1\x46\x10")
            stdout.write(listing.encode())
            return subprocess.CompletedProcess(cmd, returncode, stderr=b"boom" if returncode else b"")
        return run

    def test_command_line(self):
        cmd = self.decoder.build_command(Architecture.AMD64, "/tmp/in.bin")
        self.assertEqual(cmd, [
            "objdump", "-D", "--no-show-raw-insn", "-b", "binary",
            "-M", "intel", "-m", "i386:x86-64", "/tmp/in.bin",
        ])
        self.assertIn("i386", self.decoder.build_command(Architecture.X86, "x"))

    @patch("fault_resolver.decoders.subprocess.run")
    def test_decode_and_cleanup(self, mock_run):
        mock_run.side_effect = self._fake_run(OBJDUMP_OUTPUT)
        with patch.object(ObjdumpDecoder, "available", True):
            text = self.decoder.decode(b"\xf0\x0f\xb1\x46\x10", Architecture.X86)
        self.assertEqual(text, "lock cmpxchg DWORD PTR [esi+0x10],eax")
        # exchange files are gone once decode returns
        self.assertFalse(os.path.exists(os.path.dirname(self.seen_paths[0])))

    @patch("fault_resolver.decoders.subprocess.run")
    def test_exchange_files_are_unique_per_call(self, mock_run):
        mock_run.side_effect = self._fake_run(OBJDUMP_OUTPUT)
        with patch.object(ObjdumpDecoder, "available", True):
            self.decoder.decode(b"\xf0\x0f\xb1\x46\x10", Architecture.X86)
            self.decoder.decode(b"\xf0\x0f\xb1\x46\x10", Architecture.X86)
        self.assertNotEqual(self.seen_paths[0], self.seen_paths[1])

    @patch("fault_resolver.decoders.subprocess.run")
    def test_nonzero_exit_is_failure_and_cleans_up(self, mock_run):
        mock_run.side_effect = self._fake_run("", returncode=1)
        with patch.object(ObjdumpDecoder, "available", True):
            with self.assertRaises(DecodeFailure):
                self.decoder.decode(b"\xf0\x0f\xb1\x46\x10", Architecture.X86)
        self.assertFalse(os.path.exists(os.path.dirname(self.seen_paths[0])))

    @patch("fault_resolver.decoders.subprocess.run")
    def test_timeout_is_failure(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired("objdump", 5)
        with patch.object(ObjdumpDecoder, "available", True):
            with self.assertRaises(DecodeFailure):
                self.decoder.decode(b"\x90", Architecture.X86)

    @patch("fault_resolver.decoders.subprocess.run")
    def test_missing_binary_is_unavailable(self, mock_run):
        mock_run.side_effect = FileNotFoundError("objdump")
        with patch.object(ObjdumpDecoder, "available", True):
            with self.assertRaises(DecodeUnavailable):
                self.decoder.decode(b"\x90", Architecture.X86)

    @patch("fault_resolver.decoders.shutil.which", return_value="/usr/bin/objdump")
    def test_available_only_on_linux(self, _which):
        with patch.object(decoders.sys, "platform", "linux"):
            self.assertTrue(self.decoder.available)
        with patch.object(decoders.sys, "platform", "win32"):
            self.assertFalse(self.decoder.available)

    @patch("fault_resolver.decoders.shutil.which", return_value=None)
    def test_unavailable_without_binary(self, _which):
        with patch.object(decoders.sys, "platform", "linux"):
            self.assertFalse(self.decoder.available)
            with self.assertRaises(DecodeUnavailable):
                self.decoder.decode(b"\x90", Architecture.X86)


def test_get_decoder_honours_config():
    config = ResolverConfig(decoder="objdump", objdump_path="/opt/objdump", decode_timeout=3)
    decoder = get_decoder(config=config)
    assert isinstance(decoder, ObjdumpDecoder)
    assert decoder.objdump_path == "/opt/objdump"
    assert decoder.timeout == 3
    assert isinstance(get_decoder("capstone", config), CapstoneDecoder)
    with pytest.raises(ValueError):
        get_decoder("ida", config)


def test_get_decoder_auto_falls_back_to_objdump():
    with patch.object(decoders, "HAS_CAPSTONE", False):
        assert isinstance(get_decoder("auto", ResolverConfig()), ObjdumpDecoder)
    with patch.object(decoders, "HAS_CAPSTONE", True):
        assert isinstance(get_decoder("auto", ResolverConfig()), CapstoneDecoder)


def test_capstone_unavailable_without_library():
    with patch.object(decoders, "HAS_CAPSTONE", False):
        with pytest.raises(DecodeUnavailable):
            CapstoneDecoder().decode(b"\x90", Architecture.X86)


@pytest.mark.skipif(not decoders.HAS_CAPSTONE, reason="capstone not installed")
class TestCapstoneDecoder:
    def test_lock_cmpxchg(self):
        text = CapstoneDecoder().decode(b"\xf0\x0f\xb1\x46\x10", Architecture.X86)
        assert text == "lock cmpxchg dword ptr [esi+0x10], eax"

    def test_sib_operand(self):
        text = CapstoneDecoder().decode(b"\x8b\x44\xbe\x10", Architecture.X86)
        assert text == "mov eax, dword ptr [esi+edi*4+0x10]"

    def test_small_displacement_becomes_hex(self):
        text = CapstoneDecoder().decode(b"\x48\x8b\x45\xf8", Architecture.AMD64)
        assert text == "mov rax, qword ptr [rbp-0x8]"

    def test_truncated_bytes_fail(self):
        with pytest.raises(DecodeFailure):
            CapstoneDecoder().decode(b"\x8b", Architecture.X86)
