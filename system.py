"""
CHIP-8 System
==============
Wires together:
  - One Chip8State (chip8.py) holding all machine state
  - The frame scheduler that runs a fixed batch of instructions per
    display frame and decays the timers at a logical 60 Hz
  - Image loading, the built-in hex font and the keypad
  - The host loop: advance a frame, render, poll input, sleep the rest
    of the frame budget

Timers decay against *logical* time (instructions executed), not wall
time, so a program sees the same timer behaviour whether the host
renders at 15, 30 or 60 FPS.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from chip8 import (
    Chip8State, Instruction, ImageLoadError, step,
    LOAD_ADDR, FONT_BASE, NUM_KEYS,
)

# ---------------------------------------------------------------------------
#  Host configuration
# ---------------------------------------------------------------------------

DEFAULT_FPS = 30
DEFAULT_IPF = 20            # instructions per frame
TIMER_HZ    = 60

# 4x5 hex digit glyphs 0..F, one byte per row, high nibble used.
FONT = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

TraceFn = Callable[[int, Instruction], None]


# ---------------------------------------------------------------------------
#  Frame scheduler
# ---------------------------------------------------------------------------

class FrameScheduler:
    """Runs one display frame worth of instructions and decays the timers.

    Each instruction advances the logical clock by
    ``1000 / fps / instructions_per_frame`` ms.  Whenever the clock
    crosses a 60 Hz boundary both timers drop by one (clamped at zero).
    The clock is kept as an instruction count so boundaries are computed
    exactly, with no floating point drift.
    """

    def __init__(self, fps: int = DEFAULT_FPS,
                 instructions_per_frame: int = DEFAULT_IPF,
                 trace: Optional[TraceFn] = None):
        if fps <= 0 or instructions_per_frame <= 0:
            raise ValueError("fps and instructions_per_frame must be positive")
        self.fps = fps
        self.instructions_per_frame = instructions_per_frame
        self.trace = trace
        self.cycles = 0       # instructions executed so far
        self.frames = 0
        self._ticks = 0       # 60 Hz boundaries already applied

    @property
    def elapsed_ms(self) -> float:
        """Logical time consumed so far, in milliseconds."""
        return self.cycles * 1000 / (self.fps * self.instructions_per_frame)

    @property
    def ticks(self) -> int:
        """60 Hz boundaries crossed so far: floor(elapsed_ms * 60 / 1000)."""
        return (self.cycles * TIMER_HZ) // (self.fps * self.instructions_per_frame)

    def advance_frame(self, state: Chip8State) -> int:
        """Execute one frame.  Returns the number of timer ticks applied."""
        applied = 0
        for _ in range(self.instructions_per_frame):
            addr, insn = step(state)
            if self.trace is not None:
                self.trace(addr, insn)
            self.cycles += 1
            ticks = self.ticks
            if ticks != self._ticks:
                delta = ticks - self._ticks
                self._ticks = ticks
                state.delay_timer = max(0, state.delay_timer - delta)
                state.sound_timer = max(0, state.sound_timer - delta)
                applied += delta
        self.frames += 1
        return applied


# ---------------------------------------------------------------------------
#  System
# ---------------------------------------------------------------------------

class Chip8System:
    """A machine plus its scheduler, font, keypad and host loop."""

    def __init__(self, image: bytes | bytearray = b"",
                 fps: int = DEFAULT_FPS,
                 instructions_per_frame: int = DEFAULT_IPF,
                 seed: Optional[int] = None,
                 trace: Optional[TraceFn] = None):
        self.state = Chip8State(seed=seed)
        self.scheduler = FrameScheduler(fps, instructions_per_frame,
                                        trace=trace)
        self.state.load(FONT_BASE, FONT)
        self.load_image(image)

    @property
    def fps(self) -> int:
        return self.scheduler.fps

    @property
    def buffer(self) -> bytearray:
        return self.state.buffer

    # -- Loading --

    def load_image(self, data: bytes | bytearray):
        """Copy a raw program image to LOAD_ADDR."""
        self.state.load_image(data)

    def load_image_file(self, path: str) -> int:
        """Load a ROM file.  Returns its size in bytes."""
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise ImageLoadError(f"cannot read '{path}': {e.strerror or e}") from e
        self.load_image(data)
        return len(data)

    # -- Keypad --

    def press(self, key: int):
        self.state.keys[key % NUM_KEYS] = True

    def release(self, key: int):
        self.state.keys[key % NUM_KEYS] = False

    # -- Execution --

    def frame(self) -> int:
        """Advance one frame without pacing.  Returns timer ticks applied."""
        return self.scheduler.advance_frame(self.state)

    def run(self, frames: Optional[int] = None,
            render: Optional[Callable[[bytearray], None]] = None,
            poll: Optional[Callable[[], bool]] = None,
            sleep: Callable[[float], None] = time.sleep,
            clock: Callable[[], float] = time.perf_counter) -> int:
        """Host loop.  Returns the number of frames run.

        Per frame: execute, ``render(buffer)``, ``poll()`` (False stops
        the loop), then sleep whatever is left of ``1 / fps``.  Faults
        from the engine propagate immediately.
        """
        budget = 1.0 / self.fps
        count = 0
        while frames is None or count < frames:
            start = clock()
            self.frame()
            count += 1
            if render is not None:
                render(self.state.buffer)
            if poll is not None and not poll():
                break
            remaining = budget - (clock() - start)
            if remaining > 0:
                sleep(remaining)
        return count

    def dump_state(self) -> str:
        return (f"frames={self.scheduler.frames} cycles={self.scheduler.cycles}\n"
                + self.state.dump_regs())
