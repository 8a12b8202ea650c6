#!/usr/bin/env python3
"""
Crash Fault Resolver - Main Entry Point

Resolves the memory address touched by a crash's faulting instruction.
"""

import sys
import json
import logging
import argparse

# Load .env before reading configuration
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass

from fault_resolver import (
    Architecture,
    BytesMemorySnapshot,
    FaultInstructionResolver,
    FaultResolverError,
    RegisterSnapshot,
    ResolverConfig,
    calculate_address,
    get_decoder,
)
from fault_resolver.minidump_source import analyze_dump_fault


def _parse_int(text: str) -> int:
    return int(text, 0)


def _parse_registers(items):
    registers = {}
    segments = {}
    for item in items or []:
        if "=" not in item:
            raise ValueError(f"Expected name=value, got {item!r}")
        name, value = item.split("=", 1)
        name = name.strip().lower()
        target = segments if name in ("ds", "es", "fs", "gs") else registers
        target[name] = _parse_int(value.strip())
    return registers, segments


def _print_address(label: str, result) -> None:
    if result is None:
        return
    if result.success:
        print(f"{label:<22} 0x{result.address:016X}  ({result.operand})")
    else:
        print(f"{label:<22} undetermined: {result.error_message}")


def cmd_resolve(args, config) -> int:
    decoder = get_decoder(args.decoder, config)
    analysis = analyze_dump_fault(args.target, decoder)

    if args.json or args.output:
        data = json.dumps(analysis.to_dict(), indent=2)
        if args.output:
            with open(args.output, 'w') as f:
                f.write(data)
            print(f"Results saved to: {args.output}")
        else:
            print(data)
    else:
        print("=" * 70)
        print("FAULTING INSTRUCTION")
        print("=" * 70)
        if analysis.exception_code is not None:
            print(f"Exception Code:        0x{analysis.exception_code:08X}")
        if analysis.exception_address is not None:
            print(f"Exception Address:     0x{analysis.exception_address:016X}")
        if analysis.architecture:
            print(f"Architecture:          {analysis.architecture.value}")
        if analysis.instruction_bytes:
            print(f"Bytes:                 {analysis.instruction_bytes.hex()}")
        if analysis.instruction_text:
            print(f"Instruction:           {analysis.instruction_text}")
        _print_address("Destination address:", analysis.destination_address)
        _print_address("Source address:", analysis.source_address)
        for err in analysis.errors:
            print(f"  ! {err}")

    resolved_any = any(
        r is not None and r.success
        for r in (analysis.destination_address, analysis.source_address)
    )
    return 0 if resolved_any else 1


def cmd_decode(args, config) -> int:
    raw = bytes.fromhex(args.bytes.replace(" ", ""))
    decoder = get_decoder(args.decoder, config)
    memory = BytesMemorySnapshot(0, raw)
    resolver = FaultInstructionResolver(args.arch, memory, 0, decoder)
    if not resolver.resolved:
        print(f"Could not decode: {resolver.error}")
        return 1
    print(f"Instruction:  {resolver.instruction_text}")
    print(f"Operation:    {resolver.operation}")
    print(f"Destination:  {resolver.destination}")
    print(f"Source:       {resolver.source}")
    return 0


def cmd_eval(args, config) -> int:
    registers, segments = _parse_registers(args.reg)
    snapshot = RegisterSnapshot.create(args.arch, segments=segments, **registers)
    try:
        address = calculate_address(args.operand, snapshot)
    except FaultResolverError as e:
        print(f"Could not evaluate {args.operand!r}: {e}")
        return 1
    print(f"0x{address:016X}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Crash Fault Resolver - recover the address a crashing instruction touched',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Resolve the faulting instruction of a minidump
  %(prog)s resolve crash.dmp

  # Decode and tokenize raw instruction bytes
  %(prog)s decode --arch x86 --bytes "f0 0f b1 46 10"

  # Evaluate an operand against register values
  %(prog)s eval --arch x86 --operand "fs:[eax-0x4]" --reg eax=0x2000 --reg fs=0x30

Environment: FAULT_RESOLVER_DECODER, FAULT_RESOLVER_OBJDUMP,
FAULT_RESOLVER_DECODE_TIMEOUT, FAULT_RESOLVER_LOG_LEVEL (also read from .env)
        """
    )

    parser.add_argument(
        'command',
        choices=['resolve', 'decode', 'eval'],
        help='Command to execute'
    )

    parser.add_argument(
        'target',
        nargs='?',
        help='Path to crash dump file (.dmp) for resolve'
    )

    parser.add_argument(
        '--arch',
        choices=[a.value for a in Architecture],
        help='Architecture for decode/eval'
    )

    parser.add_argument(
        '--bytes',
        help='Hex instruction bytes for decode'
    )

    parser.add_argument(
        '--operand',
        help='Operand text for eval, e.g. "[esi+edi*4+0x10]"'
    )

    parser.add_argument(
        '--reg',
        action='append',
        metavar='NAME=VALUE',
        help='Register or segment value for eval (repeatable)'
    )

    parser.add_argument(
        '--decoder',
        choices=['auto', 'capstone', 'objdump'],
        help='Instruction decoder (default: FAULT_RESOLVER_DECODER or auto)'
    )

    parser.add_argument(
        '--json',
        action='store_true',
        help='Print resolve results as JSON'
    )

    parser.add_argument(
        '--output',
        '-o',
        help='Output file for JSON results (default: console)'
    )

    args = parser.parse_args(argv)

    config = ResolverConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(levelname)s %(name)s: %(message)s',
    )

    if args.command == 'resolve':
        if not args.target:
            parser.error("resolve command requires a dump file argument")
        return cmd_resolve(args, config)

    if not args.arch:
        parser.error(f"{args.command} command requires --arch")

    if args.command == 'decode':
        if not args.bytes:
            parser.error("decode command requires --bytes")
        try:
            return cmd_decode(args, config)
        except ValueError as e:
            parser.error(f"invalid --bytes: {e}")

    if args.command == 'eval':
        if not args.operand:
            parser.error("eval command requires --operand")
        try:
            return cmd_eval(args, config)
        except ValueError as e:
            parser.error(str(e))
        except FaultResolverError as e:
            print(f"Invalid register snapshot: {e}")
            return 1

    return 2


if __name__ == '__main__':
    sys.exit(main())
