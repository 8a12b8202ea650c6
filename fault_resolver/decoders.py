"""Instruction decoders: raw bytes -> text of the first instruction.

Two realizations share one contract:

- ObjdumpDecoder shells out to GNU objdump (Linux only)
- CapstoneDecoder decodes in-process with the capstone library

Both produce an objdump-style listing line (``   0:\\tmov eax,[ebx]``)
which ``parse_listing`` reduces to the instruction text.
"""
from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import sys
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from .config import ResolverConfig
from .errors import DecodeFailure, DecodeUnavailable
from .registers import Architecture

# Optional dependencies
try:
    import capstone
    HAS_CAPSTONE = True
except ImportError:
    capstone = None
    HAS_CAPSTONE = False

logger = logging.getLogger(__name__)

MAX_INSTRUCTION_LENGTH = 15

# "   0:\tlock cmpxchg DWORD PTR [esi+0x10],eax"
_LISTING_LINE_RE = re.compile(r"^\s+[0-9a-fA-F]+:\s+(\S.*?)\s*$")
_LISTING_COMMENT_RE = re.compile(r"\s+#.*$")


def parse_listing(output: str) -> str:
    """Return the instruction text of the first listing line.

    Raises:
        DecodeFailure: no ``<label>: <text>`` line, or the decoder marked
            the bytes as undecodable.
    """
    for line in output.splitlines():
        match = _LISTING_LINE_RE.match(line)
        if not match:
            continue
        text = _LISTING_COMMENT_RE.sub("", match.group(1)).strip()
        if not text or text.startswith("(bad)"):
            raise DecodeFailure(f"Decoder could not decode instruction: {line.strip()!r}")
        return text
    raise DecodeFailure("No instruction found in decoder output")


class InstructionDecoder(ABC):
    """Decodes the first instruction found in a byte buffer."""

    name = "decoder"

    @property
    @abstractmethod
    def available(self) -> bool:
        """False when the backing tool or library is missing."""

    @abstractmethod
    def disassemble(self, raw_bytes: bytes, architecture: Architecture) -> str:
        """Return a listing whose first ``<label>: <text>`` line is the first instruction."""

    def decode(self, raw_bytes: bytes, architecture: Architecture) -> str:
        """Decode the first instruction in ``raw_bytes``.

        Raises:
            DecodeUnavailable: decoder missing on this platform
            DecodeFailure: empty input or unusable decoder output
        """
        architecture = Architecture.parse(architecture)
        if not raw_bytes:
            raise DecodeFailure("No instruction bytes to decode")
        if not self.available:
            raise DecodeUnavailable(f"{self.name} decoder is not available")

        listing = self.disassemble(bytes(raw_bytes[:MAX_INSTRUCTION_LENGTH]), architecture)
        text = parse_listing(listing)
        logger.debug("%s decoded %s -> %r", self.name, raw_bytes.hex(), text)
        return text


class ObjdumpDecoder(InstructionDecoder):
    """Runs ``objdump -b binary`` over the bytes written to a temp file."""

    name = "objdump"
    SUPPORTED_PLATFORMS = ("linux",)

    ARCHITECTURES = {
        Architecture.X86: "i386",
        Architecture.AMD64: "i386:x86-64",
    }

    def __init__(self, objdump_path: str = "objdump", timeout: float = 10.0):
        self.objdump_path = objdump_path
        self.timeout = timeout

    @property
    def available(self) -> bool:
        if not sys.platform.startswith(self.SUPPORTED_PLATFORMS):
            return False
        return shutil.which(self.objdump_path) is not None

    def build_command(self, architecture: Architecture, input_path: str) -> list:
        return [
            self.objdump_path,
            "-D",
            "--no-show-raw-insn",
            "-b", "binary",
            "-M", "intel",
            "-m", self.ARCHITECTURES[architecture],
            input_path,
        ]

    @contextmanager
    def _exchange_files(self) -> Iterator[Tuple[str, str]]:
        """Private (input, output) paths, removed on every exit path.

        Each call gets its own directory, so concurrent decodes never share
        exchange files.
        """
        with tempfile.TemporaryDirectory(prefix="fault_resolver-") as workdir:
            yield (os.path.join(workdir, "raw_bytes.bin"),
                   os.path.join(workdir, "disassembly.txt"))

    def disassemble(self, raw_bytes: bytes, architecture: Architecture) -> str:
        with self._exchange_files() as (input_path, output_path):
            with open(input_path, "wb") as f:
                f.write(raw_bytes)

            cmd = self.build_command(architecture, input_path)
            try:
                with open(output_path, "wb") as out:
                    result = subprocess.run(
                        cmd,
                        stdout=out,
                        stderr=subprocess.PIPE,
                        timeout=self.timeout,
                    )
            except subprocess.TimeoutExpired:
                raise DecodeFailure(f"objdump timed out after {self.timeout} seconds")
            except OSError as e:
                raise DecodeUnavailable(f"Failed to run objdump: {e}")

            if result.returncode != 0:
                stderr = (result.stderr or b"").decode("utf-8", errors="replace").strip()
                raise DecodeFailure(f"objdump exited with {result.returncode}: {stderr}")

            with open(output_path, "r", encoding="utf-8", errors="replace") as f:
                return f.read()


# Whitespace inside brackets and bare decimal displacements, as capstone
# prints them: "[rax + rcx*4 + 8]" -> "[rax+rcx*4+0x8]"
_BRACKET_RE = re.compile(r"\[([^\]]*)\]")
_DECIMAL_DISP_RE = re.compile(r"([+-])(\d+)(?![\dxX*])")


def normalize_operands(op_str: str) -> str:
    """Rewrite capstone operand text into objdump's compact bracket form."""
    def _compact(match):
        inner = re.sub(r"\s+", "", match.group(1))
        inner = _DECIMAL_DISP_RE.sub(lambda m: f"{m.group(1)}{int(m.group(2)):#x}", inner)
        return f"[{inner}]"
    return _BRACKET_RE.sub(_compact, op_str)


class CapstoneDecoder(InstructionDecoder):
    """In-process decoding; exchange buffers are plain memory."""

    name = "capstone"

    def __init__(self):
        self._engines = {}

    @property
    def available(self) -> bool:
        return HAS_CAPSTONE

    def _engine(self, architecture: Architecture):
        engine = self._engines.get(architecture)
        if engine is None:
            mode = capstone.CS_MODE_32 if architecture is Architecture.X86 else capstone.CS_MODE_64
            engine = capstone.Cs(capstone.CS_ARCH_X86, mode)
            engine.syntax = capstone.CS_OPT_SYNTAX_INTEL
            self._engines[architecture] = engine
        return engine

    def disassemble(self, raw_bytes: bytes, architecture: Architecture) -> str:
        try:
            insn = next(self._engine(architecture).disasm(raw_bytes, 0), None)
        except capstone.CsError as e:
            raise DecodeFailure(f"capstone error: {e}")
        if insn is None:
            raise DecodeFailure("capstone found no instruction")

        text = insn.mnemonic
        if insn.op_str:
            text += " " + normalize_operands(insn.op_str)
        return f"   {insn.address:x}:\t{text}\n"


def get_decoder(name: Optional[str] = None,
                config: Optional[ResolverConfig] = None) -> InstructionDecoder:
    """Build the configured decoder; ``auto`` prefers capstone."""
    config = config or ResolverConfig.from_env()
    name = (name or config.decoder).lower()

    if name == "capstone":
        return CapstoneDecoder()
    if name == "objdump":
        return ObjdumpDecoder(config.objdump_path, config.decode_timeout)
    if name == "auto":
        if HAS_CAPSTONE:
            return CapstoneDecoder()
        logger.info("capstone not installed; falling back to objdump")
        return ObjdumpDecoder(config.objdump_path, config.decode_timeout)
    raise ValueError(f"Unknown decoder: {name}")
