"""
CHIP-8 Virtual Machine Core
============================
Machine state, instruction decoder and execution engine for the classic
8-bit "chip" virtual CPU with its 64x32 monochrome framebuffer.

Every instruction is a 16-bit big-endian word.  The fetch/decode/execute
cycle is split into three pieces so each can be tested on its own:

    word  = fetch(state)          # read at PC, PC += 2
    insn  = decode(word)          # pure, total, never raises
    execute(insn, state)          # mutates state, raises only on INVALID

All arithmetic is masked back to its register width immediately.
Address, stack and arithmetic overflow wrap silently.
"""

from __future__ import annotations

import enum
import random
from dataclasses import dataclass
from typing import Optional

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEM_SIZE     = 4096
MEM_MASK     = MEM_SIZE - 1
LOAD_ADDR    = 0x200         # program images start here
MAX_IMAGE_SIZE = MEM_SIZE - LOAD_ADDR
NUM_REGS     = 16
FLAG_REG     = 0xF           # VF: carry / borrow / collision
STACK_DEPTH  = 16
NUM_KEYS     = 16

SCREEN_W     = 64
SCREEN_H     = 32
SCREEN_PIXELS = SCREEN_W * SCREEN_H   # 2048
FB_BYTES     = SCREEN_PIXELS // 8     # 256

FONT_BASE    = 0x000         # hex digit glyphs live in the reserved region
FONT_HEIGHT  = 5

MASK8  = 0xFF
MASK16 = 0xFFFF


# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for all machine faults."""
    pass


class InvalidOpcodeError(Chip8Error):
    """An INVALID instruction reached the execution engine."""

    def __init__(self, word: int, address: Optional[int] = None):
        self.word = word
        self.address = address
        if address is None:
            msg = f"invalid instruction {word:#06x}"
        else:
            msg = f"invalid instruction {word:#06x} at {address:#06x}"
        super().__init__(msg)


class ImageLoadError(Chip8Error):
    """The program image could not be read or does not fit in memory."""
    pass


# ---------------------------------------------------------------------------
#  Instructions
# ---------------------------------------------------------------------------

class Opcode(enum.Enum):
    CLS     = "cls"
    RTS     = "rts"
    JMP     = "jmp"
    JSR     = "jsr"
    JMI     = "jmi"
    SKEQ    = "skeq"
    SKNE    = "skne"
    MOV     = "mov"
    ADD     = "add"
    OR      = "or"
    AND     = "and"
    XOR     = "xor"
    SUB     = "sub"
    SHR     = "shr"
    RSB     = "rsb"
    SHL     = "shl"
    MVI     = "mvi"
    RAND    = "rand"
    SPRITE  = "sprite"
    SKPR    = "skpr"
    SKUP    = "skup"
    GDELAY  = "gdelay"
    KEY     = "key"
    SDELAY  = "sdelay"
    SSOUND  = "ssound"
    ADI     = "adi"
    FONT    = "font"
    BCD     = "bcd"
    STR     = "str"
    LDR     = "ldr"
    INVALID = "invalid"


@dataclass(frozen=True)
class Instruction:
    """One decoded instruction word.

    ``reg1``/``reg2`` are register indices, ``operand`` is the immediate,
    address or sprite height.  Fields the instruction does not use are
    ``None``.  When ``reg2`` is ``None`` the second operand of a two-operand
    instruction is ``operand`` instead of a register.
    """
    opcode: Opcode
    reg1: Optional[int] = None
    reg2: Optional[int] = None
    operand: Optional[int] = None
    word: int = 0


# Sub-opcode tables for the families that share a top nibble.
_ALU_OPS = {
    0x0: Opcode.MOV,
    0x1: Opcode.OR,
    0x2: Opcode.AND,
    0x3: Opcode.XOR,
    0x4: Opcode.ADD,
    0x5: Opcode.SUB,
    0x6: Opcode.SHR,
    0x7: Opcode.RSB,
    0xE: Opcode.SHL,
}

_KEY_OPS = {
    0x9E: Opcode.SKPR,
    0xA1: Opcode.SKUP,
}

_MISC_OPS = {
    0x07: Opcode.GDELAY,
    0x0A: Opcode.KEY,
    0x15: Opcode.SDELAY,
    0x18: Opcode.SSOUND,
    0x1E: Opcode.ADI,
    0x29: Opcode.FONT,
    0x33: Opcode.BCD,
    0x55: Opcode.STR,
    0x65: Opcode.LDR,
}


def decode(word: int) -> Instruction:
    """Decode a 16-bit instruction word.  Never raises."""
    word &= MASK16
    f = (word >> 12) & 0xF
    x = (word >> 8) & 0xF
    y = (word >> 4) & 0xF
    n = word & 0xF
    kk = word & 0xFF
    nnn = word & 0xFFF

    if f == 0x0:
        if word == 0x00E0:
            return Instruction(Opcode.CLS, word=word)
        if word == 0x00EE:
            return Instruction(Opcode.RTS, word=word)
    elif f == 0x1:
        return Instruction(Opcode.JMP, operand=nnn, word=word)
    elif f == 0x2:
        return Instruction(Opcode.JSR, operand=nnn, word=word)
    elif f == 0x3:
        return Instruction(Opcode.SKEQ, reg1=x, operand=kk, word=word)
    elif f == 0x4:
        return Instruction(Opcode.SKNE, reg1=x, operand=kk, word=word)
    elif f == 0x5:
        if n == 0x0:
            return Instruction(Opcode.SKEQ, reg1=x, reg2=y, word=word)
    elif f == 0x6:
        return Instruction(Opcode.MOV, reg1=x, operand=kk, word=word)
    elif f == 0x7:
        return Instruction(Opcode.ADD, reg1=x, operand=kk, word=word)
    elif f == 0x8:
        op = _ALU_OPS.get(n)
        if op is not None:
            return Instruction(op, reg1=x, reg2=y, word=word)
    elif f == 0x9:
        if n == 0x0:
            return Instruction(Opcode.SKNE, reg1=x, reg2=y, word=word)
    elif f == 0xA:
        return Instruction(Opcode.MVI, operand=nnn, word=word)
    elif f == 0xB:
        return Instruction(Opcode.JMI, operand=nnn, word=word)
    elif f == 0xC:
        return Instruction(Opcode.RAND, reg1=x, operand=kk, word=word)
    elif f == 0xD:
        return Instruction(Opcode.SPRITE, reg1=x, reg2=y, operand=n, word=word)
    elif f == 0xE:
        op = _KEY_OPS.get(kk)
        if op is not None:
            return Instruction(op, reg1=x, word=word)
    elif f == 0xF:
        op = _MISC_OPS.get(kk)
        if op is not None:
            return Instruction(op, reg1=x, word=word)

    return Instruction(Opcode.INVALID, word=word)


# ---------------------------------------------------------------------------
#  Machine state
# ---------------------------------------------------------------------------

class Chip8State:
    """Mutable machine record: memory, registers, stack, timers, framebuffer."""

    def __init__(self, seed: Optional[int] = None):
        self.mem = bytearray(MEM_SIZE)
        self.regs: list[int] = [0] * NUM_REGS
        self.i: int = 0                       # index register
        self.pc: int = LOAD_ADDR
        self.stack: list[int] = [0] * STACK_DEPTH
        self.sp: int = 0
        self.delay_timer: int = 0
        self.sound_timer: int = 0
        self.buffer = bytearray(FB_BYTES)     # 64x32, 8 px per byte, MSB left
        self.keys: list[bool] = [False] * NUM_KEYS
        self.rng = random.Random(seed)

    @classmethod
    def create(cls, image: bytes | bytearray = b"",
               seed: Optional[int] = None) -> "Chip8State":
        """Fresh machine with *image* copied to LOAD_ADDR."""
        state = cls(seed=seed)
        state.load_image(image)
        return state

    def load_image(self, image: bytes | bytearray):
        """Copy a program image to LOAD_ADDR.  Images that would wrap into
        the reserved region below LOAD_ADDR are rejected."""
        if len(image) > MAX_IMAGE_SIZE:
            raise ImageLoadError(
                f"image is {len(image)} bytes, at most {MAX_IMAGE_SIZE} fit "
                f"above {LOAD_ADDR:#05x}")
        self.load(LOAD_ADDR, image)

    def load(self, addr: int, data: bytes | bytearray):
        """Write raw bytes into memory, wrapping at the top of the space."""
        for k, b in enumerate(data):
            self.mem[(addr + k) & MEM_MASK] = b

    def read_word(self, addr: int) -> int:
        return (self.mem[addr & MEM_MASK] << 8) | self.mem[(addr + 1) & MEM_MASK]

    def dump_regs(self) -> str:
        lines = []
        for row in range(0, NUM_REGS, 4):
            lines.append("  " + "  ".join(
                f"V{r:X}={self.regs[r]:02X}" for r in range(row, row + 4)))
        lines.append(f"  I={self.i:04X}  PC={self.pc:04X}  SP={self.sp:X}  "
                     f"DT={self.delay_timer:02X}  ST={self.sound_timer:02X}")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
#  Sprite blitter
# ---------------------------------------------------------------------------

def draw_sprite(state: Chip8State, x: int, y: int, height: int) -> int:
    """XOR an 8xN sprite from memory at I onto the framebuffer.

    The origin wraps over the whole 64x32 bitmap: the bit offset of each
    row is ``((y + row) * 64 + x) % 2048``.  An 8-pixel row generally
    straddles two framebuffer bytes; the old window is rebuilt from both,
    XORed with the sprite byte, and split back with complementary masks.

    Returns 1 if any previously set pixel was cleared, else 0.
    """
    buf = state.buffer
    collision = 0
    for row in range(height):
        idx = ((y + row) * SCREEN_W + x) % SCREEN_PIXELS
        i1 = idx >> 3
        i2 = (i1 + 1) & 0xFF
        s = idx & 0x07

        old = ((buf[i1] << s) | (buf[i2] >> (8 - s))) & MASK8
        new = old ^ state.mem[(state.i + row) & MEM_MASK]
        if ~new & old & MASK8:
            collision = 1

        buf[i1] = (buf[i1] & (0xFF00 >> s) & MASK8) | (new >> s)
        buf[i2] = (buf[i2] & (0xFF >> s)) | ((new << (8 - s)) & MASK8)
    return collision


# ---------------------------------------------------------------------------
#  Execution engine
# ---------------------------------------------------------------------------

def _skip(state: Chip8State):
    state.pc = (state.pc + 2) & MASK16


def execute(insn: Instruction, state: Chip8State):
    """Apply one decoded instruction to *state*."""
    op = insn.opcode
    v = state.regs
    x = insn.reg1

    def op2() -> int:
        # second operand: register if present, otherwise the immediate
        return insn.operand if insn.reg2 is None else v[insn.reg2]

    if op is Opcode.MOV:
        v[x] = op2() & MASK8
    elif op is Opcode.ADD:
        result = v[x] + op2()
        v[x] = result & MASK8
        if insn.reg2 is not None:
            v[FLAG_REG] = 1 if result > MASK8 else 0
    elif op is Opcode.OR:
        v[x] |= v[insn.reg2]
    elif op is Opcode.AND:
        v[x] &= v[insn.reg2]
    elif op is Opcode.XOR:
        v[x] ^= v[insn.reg2]
    elif op is Opcode.SUB:
        a, b = v[x], v[insn.reg2]
        v[x] = (a - b) & MASK8
        v[FLAG_REG] = 1 if a >= b else 0
    elif op is Opcode.RSB:
        a, b = v[x], v[insn.reg2]
        v[x] = (b - a) & MASK8
        v[FLAG_REG] = 1 if b >= a else 0
    elif op is Opcode.SHR:
        a = v[x]
        v[x] = a >> 1
        v[FLAG_REG] = a & 1
    elif op is Opcode.SHL:
        a = v[x]
        v[x] = (a << 1) & MASK8
        v[FLAG_REG] = (a >> 7) & 1
    elif op is Opcode.MVI:
        state.i = insn.operand & MASK16
    elif op is Opcode.ADI:
        state.i = (state.i + v[x]) & MASK16
    elif op is Opcode.RAND:
        v[x] = state.rng.randrange(256) & insn.operand
    elif op is Opcode.SKEQ:
        if v[x] == op2():
            _skip(state)
    elif op is Opcode.SKNE:
        if v[x] != op2():
            _skip(state)
    elif op is Opcode.SKPR:
        if state.keys[v[x] & 0xF]:
            _skip(state)
    elif op is Opcode.SKUP:
        if not state.keys[v[x] & 0xF]:
            _skip(state)
    elif op is Opcode.JMP:
        state.pc = insn.operand & MASK16
    elif op is Opcode.JMI:
        state.pc = (insn.operand + v[0]) & MASK16
    elif op is Opcode.JSR:
        state.stack[state.sp] = state.pc
        state.sp = (state.sp + 1) % STACK_DEPTH
        state.pc = insn.operand & MASK16
    elif op is Opcode.RTS:
        state.sp = (state.sp - 1) % STACK_DEPTH
        state.pc = state.stack[state.sp]
    elif op is Opcode.CLS:
        state.buffer[:] = bytes(FB_BYTES)
    elif op is Opcode.SPRITE:
        v[FLAG_REG] = draw_sprite(state, v[x], v[insn.reg2], insn.operand)
    elif op is Opcode.GDELAY:
        v[x] = state.delay_timer
    elif op is Opcode.SDELAY:
        state.delay_timer = v[x]
    elif op is Opcode.SSOUND:
        state.sound_timer = v[x]
    elif op is Opcode.KEY:
        for k, down in enumerate(state.keys):
            if down:
                v[x] = k
                break
        else:
            # no key down: rewind so this instruction runs again
            state.pc = (state.pc - 2) & MASK16
    elif op is Opcode.FONT:
        state.i = FONT_BASE + FONT_HEIGHT * (v[x] & 0xF)
    elif op is Opcode.BCD:
        a = v[x]
        state.mem[state.i & MEM_MASK] = a // 100
        state.mem[(state.i + 1) & MEM_MASK] = (a // 10) % 10
        state.mem[(state.i + 2) & MEM_MASK] = a % 10
    elif op is Opcode.STR:
        for k in range(x + 1):
            state.mem[(state.i + k) & MEM_MASK] = v[k]
    elif op is Opcode.LDR:
        # V0..Vx inclusive
        for k in range(x + 1):
            v[k] = state.mem[(state.i + k) & MEM_MASK]
    else:
        raise InvalidOpcodeError(insn.word)


# ---------------------------------------------------------------------------
#  Fetch / step
# ---------------------------------------------------------------------------

def fetch(state: Chip8State) -> int:
    """Read the big-endian word at PC and advance PC by 2."""
    word = state.read_word(state.pc)
    state.pc = (state.pc + 2) & MASK16
    return word


def step(state: Chip8State) -> tuple[int, Instruction]:
    """Run one fetch/decode/execute cycle.

    Returns ``(address, instruction)`` of the instruction just executed.
    """
    addr = state.pc
    insn = decode(fetch(state))
    try:
        execute(insn, state)
    except InvalidOpcodeError as e:
        raise InvalidOpcodeError(e.word, addr) from None
    return addr, insn
