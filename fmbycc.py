#!/usr/bin/env python3
"""
fmbycc — FMBY compiler CLI

Usage:
    python fmbycc.py <input.fm> [-o output.asm] [--compat | --fmbyas]
                               [--strict] [--tokens] [--cleaned] [--verbose]

Examples:
    python fmbycc.py main.fm -o main.asm
    python fmbycc.py main.fm --compat          # 4-byte words, asm to stdout
    python fmbycc.py main.fm --tokens          # dump token stream
"""

import argparse
import logging
import sys

from fmby_compiler import __version__, compile_source
from fmby_compiler.lexer import LexerError
from fmby_compiler.codegen import CodeGenError, WORD_PROFILES

logger = logging.getLogger("fmbycc")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="fmbycc",
        description="FMBY to x86 assembly compiler",
        epilog="Modes: " + ", ".join(
            f"{name} ({p['description']})" for name, p in WORD_PROFILES.items()),
    )
    parser.add_argument("input", help="Input FMBY source file")
    parser.add_argument("-o", "--output", help="Output assembly file (default: stdout)")
    backend = parser.add_mutually_exclusive_group()
    backend.add_argument("--compat", action="store_true",
                         help="Emit 4-byte word code (default: 8-byte)")
    backend.add_argument("--fmbyas", action="store_true",
                         help="Alternate backend (not implemented)")
    parser.add_argument("--strict", action="store_true",
                        help="Fail on unbound names and incomplete constructs")
    parser.add_argument("--tokens", action="store_true",
                        help="Dump token stream and exit (debug)")
    parser.add_argument("--cleaned", action="store_true",
                        help="Dump cleaned source and exit (debug)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Print compilation details to stderr")
    parser.add_argument("--version", action="version",
                        version=f"fmbycc {__version__}")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.fmbyas:
        logger.error("Build target -fmbyas is not implemented")
        return 1

    # Read input
    try:
        with open(args.input, "r", encoding="utf-8") as f:
            source = f.read()
    except FileNotFoundError:
        logger.error(f"File not found: {args.input}")
        return 1
    except OSError as e:
        logger.error(f"Error reading {args.input}: {e}")
        return 1

    mode = "compat" if args.compat else "native"
    if args.tokens:
        out_format = "tokens"
    elif args.cleaned:
        out_format = "cleaned"
    else:
        out_format = "asm"

    if args.verbose:
        print(f"[fmbycc] Input:  {args.input}", file=sys.stderr)
        print(f"[fmbycc] Mode:   {mode} — {WORD_PROFILES[mode]['description']}", file=sys.stderr)

    try:
        result = compile_source(source, mode=mode, strict=args.strict, output=out_format)
    except LexerError as e:
        logger.error(str(e))
        return 1
    except CodeGenError as e:
        logger.error(str(e))
        return 1
    except Exception as e:
        logger.error(f"Internal compiler error: {e}")
        if args.verbose:
            logger.exception("Traceback")
        return 2

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(result)
            if not result.endswith("\n"):
                f.write("\n")
        if args.verbose:
            print(f"[fmbycc] Output: {args.output} ({out_format})", file=sys.stderr)
    else:
        print(result, end="" if result.endswith("\n") else "\n")

    if args.verbose and out_format == "asm":
        line_count = result.count("\n")
        print(f"[fmbycc] Generated {line_count} lines of assembly", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
