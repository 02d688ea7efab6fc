"""
Framebuffer rendering tests.

The pygame window test runs against SDL's dummy driver (see conftest.py);
deselect it with ``-m "not display"``.
"""

import io
import random

import pytest

from display import (framebuffer_pixels, pixel, render_text,
                     TerminalDisplay, HeadlessDisplay, FramebufferDisplay,
                     DisplayError, KEYMAP, ON_CHAR)
from system import Chip8System
from conftest import MAZE_ROM


def _random_buffer(seed=7):
    rng = random.Random(seed)
    return bytearray(rng.randrange(256) for _ in range(256))


def test_pixels_agree_with_bit_formula():
    buf = _random_buffer()
    pixels = framebuffer_pixels(buf)
    assert pixels.shape == (32, 64)
    for row in range(32):
        for col in range(64):
            assert pixels[row, col] == pixel(buf, row, col)


def test_pixel_msb_is_leftmost():
    buf = bytearray(256)
    buf[8 * 3 + 1] = 0x80
    assert pixel(buf, 3, 8)
    assert not pixel(buf, 3, 9)
    assert framebuffer_pixels(buf).sum() == 1


def test_render_text_shape():
    buf = bytearray(256)
    buf[0] = 0xC0
    lines = render_text(buf, on="#", off=".")
    assert len(lines) == 32
    assert all(len(line) == 64 for line in lines)
    assert lines[0].startswith("##.")
    assert set(lines[1]) == {"."}


def test_terminal_skips_unchanged_frames():
    out = io.StringIO()
    disp = TerminalDisplay(out=out)
    buf = bytearray(256)
    buf[255] = 0x01
    disp.render(buf)
    first = out.getvalue()
    assert first.startswith("\x1b[H+")
    assert ON_CHAR + "|" in first
    disp.render(buf)
    assert out.getvalue() == first
    buf[0] = 0x80
    disp.render(buf)
    assert len(out.getvalue()) > len(first)
    assert disp.poll()


def test_headless_snapshots_and_limit():
    chip = Chip8System(MAZE_ROM, seed=11)
    disp = HeadlessDisplay(limit=3)
    n = chip.run(render=disp.render, poll=disp.poll, sleep=lambda s: None)
    assert n == 3
    assert len(disp.snapshots) == 3
    assert disp.snapshots[-1] == bytes(chip.buffer)
    # snapshots are copies, not views of the live buffer
    chip.state.buffer[0] ^= 0xFF
    assert disp.snapshots[-1] != bytes(chip.buffer)


def test_keymap_covers_keypad():
    assert sorted(KEYMAP.values()) == list(range(16))


@pytest.mark.display
def test_window_feeds_keypad():
    pygame = pytest.importorskip("pygame")
    chip = Chip8System(MAZE_ROM, seed=5)
    disp = FramebufferDisplay(chip, scale=2)
    disp.start()
    try:
        assert disp.running
        chip.frame()
        disp.render(chip.buffer)
        surface = pygame.display.get_surface()
        assert surface.get_size() == (128, 64)

        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_q))
        assert disp.poll()
        assert chip.state.keys[0x4]

        pygame.event.post(pygame.event.Event(pygame.KEYUP, key=pygame.K_q))
        assert disp.poll()
        assert not chip.state.keys[0x4]

        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_ESCAPE))
        assert not disp.poll()
    finally:
        disp.stop()
    assert not disp.running


def test_render_before_start_is_noop():
    disp = FramebufferDisplay(Chip8System())
    disp.render(bytearray(256))
    assert not disp.poll()
    assert not disp.running


@pytest.mark.display
def test_window_without_video_device(monkeypatch):
    pygame = pytest.importorskip("pygame")
    monkeypatch.setenv("SDL_VIDEODRIVER", "nosuchdriver")
    disp = FramebufferDisplay(Chip8System())
    with pytest.raises(DisplayError):
        disp.start()
    assert not disp.running
    assert not pygame.get_init()
