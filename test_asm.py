"""
Assembler and encoder tests.
"""

import unittest

from asm import assemble, encode, parse_instruction, AsmError
from chip8 import Instruction, Opcode, decode
from cli import disassemble
from conftest import MAZE_ROM

MAZE_SRC = """
    ; random maze
    mov v0 0x00
    mov v1 0x00
loop:
    mvi right
    rand v2 0x01
    skeq v2 0x01
    mvi left
    sprite v0 v1 4
    add v0 0x04
    skeq v0 0x40
    jmp loop
    mov v0 0x00
    add v1 0x04
    skeq v1 0x20
    jmp loop
park:
    jmp park
left:
    .db 0x80 0x40 0x20 0x10
right:
    .db 0x20, 0x40, 0x80, 0x10
"""


class TestEncode(unittest.TestCase):

    def test_move_add_and_bitfields(self):
        cases = {
            0x6A3C: (Opcode.MOV, 0xA, None, 0x3C),
            0x8AB0: (Opcode.MOV, 0xA, 0xB, None),
            0x7F01: (Opcode.ADD, 0xF, None, 0x01),
            0x8124: (Opcode.ADD, 0x1, 0x2, None),
            0x8DE2: (Opcode.AND, 0xD, 0xE, None),
        }
        for word, (op, x, y, operand) in cases.items():
            insn = decode(word)
            self.assertEqual((insn.opcode, insn.reg1, insn.reg2, insn.operand),
                             (op, x, y, operand))
            self.assertEqual(encode(Instruction(op, x, y, operand)), word)

    def test_encode_invalid_raises(self):
        with self.assertRaises(ValueError):
            encode(Instruction(Opcode.INVALID, word=0x0123))


class TestAssemble(unittest.TestCase):

    def test_maze_source_matches_image(self):
        self.assertEqual(bytes(assemble(MAZE_SRC)), MAZE_ROM)

    def test_labels_resolve_against_base(self):
        code = assemble("start:\njmp start", base_addr=0x300)
        self.assertEqual(code, bytearray(b"\x13\x00"))

    def test_dw_directive(self):
        code = assemble(".dw 0x1234 0xABCD")
        self.assertEqual(code, bytearray(b"\x12\x34\xAB\xCD"))

    def test_commas_and_case(self):
        self.assertEqual(assemble("MOV V3, 0x10"), assemble("mov v3 0x10"))

    def test_shift_single_operand(self):
        self.assertEqual(assemble("shr v4"), bytearray(b"\x84\x06"))

    def test_listing(self):
        import io
        from contextlib import redirect_stdout
        buf = io.StringIO()
        with redirect_stdout(buf):
            assemble("cls\nrts", listing=True)
        self.assertIn("0200  00E0", buf.getvalue())
        self.assertIn("0202  00EE", buf.getvalue())

    def test_errors_carry_line_numbers(self):
        bad = {
            "cls\nfoo v0": "Unknown mnemonic",
            "mov vg 1": "Invalid register",
            "mov v0 0x100": "out of range",
            "jmp nowhere": "unknown label",
            "a:\na:": "Duplicate label",
            "sprite v0 v1": "operand",
            ".dd 1": "Unknown directive",
        }
        for src, msg in bad.items():
            with self.assertRaises(AsmError) as ctx:
                assemble(src)
            self.assertIn(msg, str(ctx.exception), src)
        with self.assertRaises(AsmError) as ctx:
            assemble("cls\nfoo v0")
        self.assertEqual(ctx.exception.line, 2)

    def test_disassembly_reassembles(self):
        for word in range(0, 0x10000, 7):
            insn = decode(word)
            if insn.opcode is Opcode.INVALID:
                continue
            text = disassemble(insn)
            self.assertEqual(encode(parse_instruction(1, text)), word, text)


if __name__ == "__main__":
    unittest.main()
