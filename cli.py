#!/usr/bin/env python3
"""
CHIP-8 Command-Line Runner
===========================
Loads a ROM image and runs it, rendering the framebuffer to the terminal
or a pygame window.

Provides:
  - ROM loading and execution at a fixed frame rate
  - Per-instruction disassembly trace
  - ROM disassembly listing
  - Assembling source files into ROM images

Usage:
  python cli.py ROM [--fps N] [--ipf N] [--frames N]
                    [--display {terminal,window,none}] [--scale N]
                    [--seed N] [--trace]
  python cli.py ROM --disasm
  python cli.py --assemble SRC OUT [--listing]
"""

from __future__ import annotations

import argparse
import sys
from typing import Iterator, Optional

from chip8 import Instruction, Opcode, Chip8Error, decode, LOAD_ADDR
from asm import assemble, AsmError
from system import Chip8System, DEFAULT_FPS, DEFAULT_IPF

# ---------------------------------------------------------------------------
#  Disassembler
# ---------------------------------------------------------------------------

_NNN_OPS = (Opcode.JMP, Opcode.JSR, Opcode.MVI, Opcode.JMI)


def disassemble(insn: Instruction) -> str:
    """One-line rendering of a decoded instruction."""
    op = insn.opcode
    name = op.value

    if op is Opcode.INVALID:
        return f"0x{insn.word:04x} invalid!"
    if op in (Opcode.CLS, Opcode.RTS):
        return name
    if op in _NNN_OPS:
        return f"{name} 0x{insn.operand:03x}"
    if op is Opcode.SPRITE:
        return f"{name} v{insn.reg1:x} v{insn.reg2:x} 0x{insn.operand:x}"
    if insn.reg2 is not None:
        return f"{name} v{insn.reg1:x} v{insn.reg2:x}"
    if insn.operand is not None:
        return f"{name} v{insn.reg1:x} 0x{insn.operand:02x}"
    return f"{name} v{insn.reg1:x}"


def disassemble_image(data: bytes | bytearray,
                      base: int = LOAD_ADDR) -> Iterator[tuple[int, int, str]]:
    """Yield (address, word, text) for each 2-byte word of an image.

    A trailing odd byte is padded with zero.
    """
    for off in range(0, len(data), 2):
        hi = data[off]
        lo = data[off + 1] if off + 1 < len(data) else 0
        word = (hi << 8) | lo
        yield base + off, word, disassemble(decode(word))


def _trace(addr: int, insn: Instruction):
    print(f"  {addr:04X}: {insn.word:04X}  {disassemble(insn)}", file=sys.stderr)


# ---------------------------------------------------------------------------
#  Display selection
# ---------------------------------------------------------------------------

def _make_display(kind: str, chip: Chip8System, scale: int):
    from display import (TerminalDisplay, FramebufferDisplay, HeadlessDisplay,
                         DisplayError)

    if kind == "window":
        try:
            disp = FramebufferDisplay(chip, scale=scale)
            disp.start()
            print(f"[display] window opened (scale={scale}x)", file=sys.stderr)
            return disp
        except ImportError as e:
            print(f"[display] pygame not available: {e}", file=sys.stderr)
            print("[display] Install with: pip install pygame", file=sys.stderr)
            kind = "terminal"
        except DisplayError as e:
            print(f"[display] window unavailable: {e}", file=sys.stderr)
            print("[display] Falling back to the terminal", file=sys.stderr)
            kind = "terminal"
    if kind == "terminal":
        disp = TerminalDisplay()
        disp.start()
        return disp
    return HeadlessDisplay()


# ---------------------------------------------------------------------------
#  Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chip8",
        description="CHIP-8 virtual machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py maze.ch8\n"
               "  python cli.py maze.ch8 --display window --scale 12\n"
               "  python cli.py maze.ch8 --display none --frames 100 --trace\n"
               "  python cli.py maze.ch8 --disasm\n"
               "  python cli.py --assemble maze.asm maze.ch8\n"
    )
    parser.add_argument("rom", nargs="?", default=None,
                        help="Program image to load at 0x200")
    parser.add_argument("--fps", type=int, default=DEFAULT_FPS,
                        help=f"Target frame rate (default: {DEFAULT_FPS})")
    parser.add_argument("--ipf", type=int, default=DEFAULT_IPF,
                        help=f"Instructions per frame (default: {DEFAULT_IPF})")
    parser.add_argument("--frames", type=int, default=None, metavar="N",
                        help="Stop after N frames (default: run until closed)")
    parser.add_argument("--display", choices=("terminal", "window", "none"),
                        default="terminal",
                        help="Where to render the framebuffer (default: terminal)")
    parser.add_argument("--scale", type=int, default=10, metavar="N",
                        help="Pixel scale factor for the window (default: 10)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the random number source")
    parser.add_argument("--trace", action="store_true",
                        help="Print every executed instruction to stderr")
    parser.add_argument("--disasm", action="store_true",
                        help="Print a disassembly of ROM and exit")
    parser.add_argument("--assemble", nargs=2, metavar=("SRC", "OUT"),
                        help="Assemble SRC to the ROM image OUT and exit")
    parser.add_argument("--listing", "-l", action="store_true",
                        help="Print assembly listing (with --assemble)")
    return parser


def main(argv: Optional[list[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # ---- Assemble-only mode -------------------------------------------
    if args.assemble:
        src_path, out_path = args.assemble
        try:
            with open(src_path, "r") as f:
                source = f.read()
            code = assemble(source, listing=args.listing)
        except OSError as e:
            print(f"Cannot read '{src_path}': {e.strerror}", file=sys.stderr)
            sys.exit(1)
        except AsmError as e:
            print(f"Assembly error: {e}", file=sys.stderr)
            sys.exit(1)
        try:
            with open(out_path, "wb") as f:
                f.write(code)
        except OSError as e:
            print(f"Cannot write '{out_path}': {e.strerror}", file=sys.stderr)
            sys.exit(1)
        print(f"Assembled {src_path} → {out_path} ({len(code)} bytes)")
        return

    if args.rom is None:
        parser.error("a ROM image is required")
    if args.fps <= 0 or args.ipf <= 0:
        parser.error("--fps and --ipf must be positive")

    try:
        chip = Chip8System(fps=args.fps, instructions_per_frame=args.ipf,
                           seed=args.seed,
                           trace=_trace if args.trace else None)
        size = chip.load_image_file(args.rom)
    except Chip8Error as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    # ---- Disassembly-only mode ----------------------------------------
    if args.disasm:
        image = bytes(chip.state.mem[LOAD_ADDR:LOAD_ADDR + size])
        for addr, word, text in disassemble_image(image):
            print(f"  {addr:04X}: {word:04X}  {text}")
        return

    display = _make_display(args.display, chip, args.scale)
    try:
        chip.run(frames=args.frames, render=display.render, poll=display.poll)
    except Chip8Error as e:
        display.stop()
        print(f"Fault: {e}", file=sys.stderr)
        print(chip.dump_state(), file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        display.stop()
        print("\nInterrupted.")
        return
    display.stop()


if __name__ == "__main__":
    main()
