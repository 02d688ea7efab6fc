"""
CHIP-8 Framebuffer Display
===========================
Renders the machine's packed 64x32 bitmap (256 bytes, 8 pixels per
byte, MSB leftmost).  Pixel (row, col) is lit when

    buffer[8*row + col//8] & (1 << (7 - col%8))

Three front ends:
  TerminalDisplay     — block characters redrawn in place with ANSI codes
  FramebufferDisplay  — pygame window, also feeds the hex keypad
  HeadlessDisplay     — records frame snapshots (tests)

All of them are driven from the host loop in the same thread as the
machine: ``render(buffer)`` after each frame, ``poll()`` for input.

Usage (programmatic):
    from display import FramebufferDisplay
    disp = FramebufferDisplay(chip, scale=10)
    disp.start()
    chip.run(render=disp.render, poll=disp.poll)
    disp.stop()
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, TextIO

import numpy as np

from chip8 import SCREEN_W, SCREEN_H, FB_BYTES

if TYPE_CHECKING:
    from system import Chip8System

ON_CHAR = "█"
OFF_CHAR = " "

FG_COLOR = (220, 255, 220)
BG_COLOR = (16, 24, 16)

# Conventional QWERTY block for the 4x4 hex keypad:
#   1 2 3 C        1 2 3 4
#   4 5 6 D   <-   Q W E R
#   7 8 9 E        A S D F
#   A 0 B F        Z X C V
KEYMAP = {
    "1": 0x1, "2": 0x2, "3": 0x3, "4": 0xC,
    "q": 0x4, "w": 0x5, "e": 0x6, "r": 0xD,
    "a": 0x7, "s": 0x8, "d": 0x9, "f": 0xE,
    "z": 0xA, "x": 0x0, "c": 0xB, "v": 0xF,
}


class DisplayError(Exception):
    """The window could not be opened (no usable video device)."""
    pass


# ── Pixel helpers ─────────────────────────────────────────────────────


def framebuffer_pixels(buffer: bytes | bytearray) -> np.ndarray:
    """Unpack the 256-byte bitmap into a (32, 64) uint8 array of 0/1."""
    raw = np.frombuffer(bytes(buffer), dtype=np.uint8, count=FB_BYTES)
    return np.unpackbits(raw).reshape(SCREEN_H, SCREEN_W)


def pixel(buffer: bytes | bytearray, row: int, col: int) -> bool:
    return bool(buffer[8 * row + col // 8] & (1 << (7 - col % 8)))


def render_text(buffer: bytes | bytearray, on: str = ON_CHAR,
                off: str = OFF_CHAR) -> list[str]:
    """Return the framebuffer as 32 strings of 64 characters."""
    pixels = framebuffer_pixels(buffer)
    return ["".join(on if p else off for p in row) for row in pixels]


# ── Terminal ──────────────────────────────────────────────────────────


class TerminalDisplay:
    """Redraws the framebuffer in a text terminal, one cell per pixel."""

    def __init__(self, out: TextIO | None = None, on: str = ON_CHAR,
                 off: str = OFF_CHAR):
        self.out = out if out is not None else sys.stdout
        self.on = on
        self.off = off
        self._last: bytes | None = None

    def start(self):
        self.out.write("\x1b[2J\x1b[?25l")   # clear, hide cursor
        self.out.flush()

    def stop(self):
        self.out.write("\x1b[?25h\n")
        self.out.flush()

    def render(self, buffer: bytes | bytearray):
        frame = bytes(buffer)
        if frame == self._last:
            return
        self._last = frame
        border = "+" + "-" * SCREEN_W + "+"
        lines = [border]
        lines += ["|" + line + "|" for line in render_text(frame, self.on, self.off)]
        lines.append(border)
        self.out.write("\x1b[H" + "\n".join(lines) + "\n")
        self.out.flush()

    def poll(self) -> bool:
        return True


# ── pygame window ─────────────────────────────────────────────────────


class FramebufferDisplay:
    """pygame window showing the framebuffer, scaled by an integer factor.

    ``poll()`` pumps the event queue, forwards keypad presses to the
    system and returns False once the window is closed or Escape is hit.
    """

    def __init__(self, chip: "Chip8System", scale: int = 10,
                 title: str = "CHIP-8"):
        self.chip = chip
        self.scale = max(1, scale)
        self.title = title
        self._pygame = None
        self._screen = None
        self._surface = None
        self._keys: dict[int, int] = {}

    # -- public API -------------------------------------------------------

    def start(self):
        """Open the window."""
        import pygame

        pygame.init()
        try:
            pygame.display.set_caption(self.title)
            self._screen = pygame.display.set_mode(
                (SCREEN_W * self.scale, SCREEN_H * self.scale))
        except pygame.error as e:
            pygame.quit()
            raise DisplayError(str(e)) from e
        self._pygame = pygame
        self._surface = pygame.Surface((SCREEN_W, SCREEN_H))
        self._keys = {pygame.key.key_code(name): k for name, k in KEYMAP.items()}

    def stop(self):
        if self._pygame is not None:
            self._pygame.quit()
            self._pygame = None

    @property
    def running(self) -> bool:
        return self._pygame is not None

    def render(self, buffer: bytes | bytearray):
        pygame = self._pygame
        if pygame is None:
            return
        # surfarray is indexed [x, y]
        pixels = framebuffer_pixels(buffer).T
        rgb = np.empty((SCREEN_W, SCREEN_H, 3), dtype=np.uint8)
        rgb[:] = BG_COLOR
        rgb[pixels == 1] = FG_COLOR
        pygame.surfarray.blit_array(self._surface, rgb)
        scaled = pygame.transform.scale(self._surface, self._screen.get_size())
        self._screen.blit(scaled, (0, 0))
        pygame.display.flip()

    def poll(self) -> bool:
        pygame = self._pygame
        if pygame is None:
            return False
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                return False
            if event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    return False
                if event.key in self._keys:
                    self.chip.press(self._keys[event.key])
            elif event.type == pygame.KEYUP:
                if event.key in self._keys:
                    self.chip.release(self._keys[event.key])
        return True


# ── Headless ──────────────────────────────────────────────────────────


class HeadlessDisplay:
    """No-op display for testing — records framebuffer snapshots."""

    def __init__(self, limit: int | None = None):
        self.snapshots: list[bytes] = []
        self.limit = limit

    def start(self):
        pass

    def stop(self):
        pass

    def render(self, buffer: bytes | bytearray):
        self.snapshots.append(bytes(buffer))

    def poll(self) -> bool:
        return self.limit is None or len(self.snapshots) < self.limit
