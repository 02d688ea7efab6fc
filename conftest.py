"""
Pytest configuration for the CHIP-8 test suite.

    python -m pytest                 # full suite
    python -m pytest -m "not display"  # skip pygame window tests

pygame tests run against SDL's dummy video driver, so no window opens.
"""

import base64
import os

import pytest

# Must be set before pygame initialises its video subsystem.
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

# Random maze demo: draws a 16x8 grid of diagonal strokes, then parks on
# a self-jump at 0x21C.
MAZE_ROM = base64.b64decode(
    "YABhAKIiwgEyAaIe0BRwBDBAEgRgAHEEMSASBBIcgEAgECBAgBA=")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "display: tests that open a pygame display (dummy SDL driver)")


@pytest.fixture
def maze_rom() -> bytes:
    return MAZE_ROM


@pytest.fixture
def rom_file(tmp_path, maze_rom):
    path = tmp_path / "maze.ch8"
    path.write_bytes(maze_rom)
    return str(path)
