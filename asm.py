"""
CHIP-8 Assembler
=================
Translates assembly text into raw program images, using the same
mnemonic syntax the disassembler prints.

Supports:
  - Labels (terminated with ':')
  - Every instruction the decoder accepts
  - Registers v0..vf, immediates in decimal or 0x hex
  - Comments (';' to end of line)
  - .db, .dw directives

Usage:
  from asm import assemble
  image = assemble(source_text)
"""

from __future__ import annotations

from chip8 import Instruction, Opcode, LOAD_ADDR

# ---------------------------------------------------------------------------
#  Encoding tables
# ---------------------------------------------------------------------------

# Fixed-prefix families: opcode -> top nibble
NNN_BASE = {
    Opcode.JMP: 0x1000,
    Opcode.JSR: 0x2000,
    Opcode.MVI: 0xA000,
    Opcode.JMI: 0xB000,
}

# 8xyN register ALU family
ALU_SUB = {
    Opcode.MOV: 0x0, Opcode.OR:  0x1, Opcode.AND: 0x2, Opcode.XOR: 0x3,
    Opcode.ADD: 0x4, Opcode.SUB: 0x5, Opcode.SHR: 0x6, Opcode.RSB: 0x7,
    Opcode.SHL: 0xE,
}

# ExKK / FxKK single-register families
XKK_OPS = {
    Opcode.SKPR:   0xE09E, Opcode.SKUP:   0xE0A1,
    Opcode.GDELAY: 0xF007, Opcode.KEY:    0xF00A,
    Opcode.SDELAY: 0xF015, Opcode.SSOUND: 0xF018,
    Opcode.ADI:    0xF01E, Opcode.FONT:   0xF029,
    Opcode.BCD:    0xF033, Opcode.STR:    0xF055,
    Opcode.LDR:    0xF065,
}

# Register/immediate pairs: (immediate form, register form)
PAIR_OPS = {
    Opcode.SKEQ: (0x3000, 0x5000),
    Opcode.SKNE: (0x4000, 0x9000),
    Opcode.MOV:  (0x6000, 0x8000),
    Opcode.ADD:  (0x7000, 0x8004),
}

MNEMONICS = {op.value: op for op in Opcode if op is not Opcode.INVALID}


def encode(insn: Instruction) -> int:
    """Build the 16-bit word for a decoded instruction (inverse of decode)."""
    op = insn.opcode
    x = (insn.reg1 or 0) & 0xF
    y = (insn.reg2 or 0) & 0xF

    if op is Opcode.CLS:
        return 0x00E0
    if op is Opcode.RTS:
        return 0x00EE
    if op in NNN_BASE:
        return NNN_BASE[op] | (insn.operand & 0xFFF)
    if op in PAIR_OPS:
        imm_base, reg_base = PAIR_OPS[op]
        if insn.reg2 is None:
            return imm_base | (x << 8) | (insn.operand & 0xFF)
        return reg_base | (x << 8) | (y << 4)
    if op in ALU_SUB:
        return 0x8000 | (x << 8) | (y << 4) | ALU_SUB[op]
    if op is Opcode.RAND:
        return 0xC000 | (x << 8) | (insn.operand & 0xFF)
    if op is Opcode.SPRITE:
        return 0xD000 | (x << 8) | (y << 4) | (insn.operand & 0xF)
    if op in XKK_OPS:
        return XKK_OPS[op] | (x << 8)
    raise ValueError(f"cannot encode {op.value!r} instruction")


# ---------------------------------------------------------------------------
#  Parser helpers
# ---------------------------------------------------------------------------

class AsmError(Exception):
    def __init__(self, line: int, msg: str):
        self.line = line
        super().__init__(f"Line {line}: {msg}")


def _is_reg(tok: str) -> bool:
    tok = tok.lower()
    return len(tok) == 2 and tok[0] == "v" and tok[1] in "0123456789abcdef"


def _parse_reg(lineno: int, tok: str) -> int:
    """Parse 'v0'-'vf'. Returns register index."""
    if not _is_reg(tok):
        raise AsmError(lineno, f"Invalid register: {tok!r}")
    return int(tok[1], 16)


def _parse_value(lineno: int, tok: str, labels: dict[str, int], bits: int) -> int:
    """Parse an immediate or label reference and range-check it."""
    if tok in labels:
        val = labels[tok]
    else:
        try:
            val = int(tok, 0)
        except ValueError:
            raise AsmError(lineno, f"Bad value or unknown label: {tok!r}") from None
    if not 0 <= val < (1 << bits):
        raise AsmError(lineno, f"Value {tok} out of range for {bits} bits")
    return val


def _split_ops(rest: str) -> list[str]:
    """Split operands on commas and/or whitespace."""
    return rest.replace(",", " ").split()


def _strip_comment(raw: str) -> str:
    return raw.split(";", 1)[0].strip()


def _split_mnemonic(text: str) -> tuple[str, str]:
    """Split 'MNEM operands' -> (mnem, operands_str)."""
    parts = text.split(None, 1)
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]


# ---------------------------------------------------------------------------
#  Assembler
# ---------------------------------------------------------------------------

def _directive_size(lineno: int, text: str) -> int:
    name, rest = _split_mnemonic(text)
    name = name.lower()
    count = len(_split_ops(rest))
    if name == ".db":
        return count
    if name == ".dw":
        return count * 2
    raise AsmError(lineno, f"Unknown directive: {name}")


def _emit_directive(lineno: int, text: str, labels: dict[str, int]) -> bytes:
    name, rest = _split_mnemonic(text)
    out = bytearray()
    for tok in _split_ops(rest):
        if name.lower() == ".db":
            out.append(_parse_value(lineno, tok, labels, 8))
        else:
            out += _parse_value(lineno, tok, labels, 16).to_bytes(2, "big")
    return bytes(out)


def parse_instruction(lineno: int, text: str,
                      labels: dict[str, int] | None = None) -> Instruction:
    """Parse one instruction line into an Instruction."""
    labels = labels or {}
    mnem, rest = _split_mnemonic(text)
    op = MNEMONICS.get(mnem.lower())
    if op is None:
        raise AsmError(lineno, f"Unknown mnemonic: {mnem!r}")
    ops = _split_ops(rest)

    def want(n: int):
        if len(ops) != n:
            raise AsmError(lineno, f"{mnem} takes {n} operand(s), got {len(ops)}")

    if op in (Opcode.CLS, Opcode.RTS):
        want(0)
        return Instruction(op)
    if op in NNN_BASE:
        want(1)
        return Instruction(op, operand=_parse_value(lineno, ops[0], labels, 12))
    if op in PAIR_OPS:
        want(2)
        x = _parse_reg(lineno, ops[0])
        if _is_reg(ops[1]):
            return Instruction(op, reg1=x, reg2=_parse_reg(lineno, ops[1]))
        return Instruction(op, reg1=x,
                           operand=_parse_value(lineno, ops[1], labels, 8))
    if op in ALU_SUB:
        if op in (Opcode.SHR, Opcode.SHL) and len(ops) == 1:
            ops.append("v0")
        want(2)
        return Instruction(op, reg1=_parse_reg(lineno, ops[0]),
                           reg2=_parse_reg(lineno, ops[1]))
    if op is Opcode.RAND:
        want(2)
        return Instruction(op, reg1=_parse_reg(lineno, ops[0]),
                           operand=_parse_value(lineno, ops[1], labels, 8))
    if op is Opcode.SPRITE:
        want(3)
        return Instruction(op, reg1=_parse_reg(lineno, ops[0]),
                           reg2=_parse_reg(lineno, ops[1]),
                           operand=_parse_value(lineno, ops[2], labels, 4))
    want(1)
    return Instruction(op, reg1=_parse_reg(lineno, ops[0]))


def assemble(source: str, base_addr: int = LOAD_ADDR,
             listing: bool = False) -> bytearray:
    """
    Two-pass assembler.
    Pass 1: collect labels, compute sizes.
    Pass 2: emit bytes with resolved addresses.
    If listing=True, print an address/hex/source listing to stdout.
    """
    cleaned: list[tuple[int, str]] = []
    for i, raw in enumerate(source.split("\n"), 1):
        stripped = _strip_comment(raw)
        if stripped:
            cleaned.append((i, stripped))

    # ---- Pass 1: labels and sizes ----
    labels: dict[str, int] = {}
    items: list[tuple[int, str]] = []
    pc = base_addr
    for lineno, text in cleaned:
        if text.endswith(":"):
            lbl = text[:-1].strip()
            if lbl in labels:
                raise AsmError(lineno, f"Duplicate label: {lbl}")
            labels[lbl] = pc
            continue
        items.append((lineno, text))
        pc += _directive_size(lineno, text) if text.startswith(".") else 2

    # ---- Pass 2: emit ----
    code = bytearray()
    pc = base_addr
    for lineno, text in items:
        if text.startswith("."):
            chunk = _emit_directive(lineno, text, labels)
        else:
            word = encode(parse_instruction(lineno, text, labels))
            chunk = word.to_bytes(2, "big")
        if listing:
            print(f"  {pc:04X}  {chunk.hex().upper():<12s}  {text}")
        code += chunk
        pc += len(chunk)
    return code
