"""Turning raw frame dumps into viewable images."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
from PIL import Image

DEFAULT_ROWS = 960
DEFAULT_COLS = 1920
DEFAULT_CHANNELS = 1


def restore_image(rows: int, cols: int, channels: int, data: bytes) -> np.ndarray:
    """Interpret raw 8-bit pixel bytes as an image.

    One and three channels are kept; any other count is read as four channels.
    Extra bytes are ignored; too few raise ValueError.
    """
    if rows <= 0 or cols <= 0:
        raise ValueError(f"invalid image size {rows}x{cols}")
    depth = channels if channels in (1, 3) else 4
    needed = rows * cols * depth
    buffer = np.frombuffer(bytes(data), dtype=np.uint8)
    if buffer.size < needed:
        raise ValueError(f"raw data holds {buffer.size} bytes, image needs {needed}")
    shape = (rows, cols) if depth == 1 else (rows, cols, depth)
    return buffer[:needed].copy().reshape(shape)


def _to_pil(image: np.ndarray) -> Image.Image:
    if image.ndim == 2:
        return Image.fromarray(image)
    if image.shape[2] == 3:
        return Image.fromarray(np.ascontiguousarray(image[..., ::-1]))
    return Image.fromarray(np.ascontiguousarray(image[..., [2, 1, 0, 3]]))


def raw_to_bmp(
    source: str | Path,
    target: str | Path,
    rows: int = DEFAULT_ROWS,
    cols: int = DEFAULT_COLS,
    channels: int = DEFAULT_CHANNELS,
) -> Path:
    """Write the raw dump ``source`` as an image file ``target``; colour data is BGR."""
    image = restore_image(rows, cols, channels, Path(source).read_bytes())
    _to_pil(image).save(target)
    return Path(target)


def main(argv: list[str] | None = None) -> int:
    """Convert a raw frame dump to an image file."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) < 2:
        print("Usage:")
        print("\traw2bmp in.raw out.bmp")
        return 0
    parser = argparse.ArgumentParser(prog="raw2bmp", description=main.__doc__)
    parser.add_argument("source")
    parser.add_argument("target")
    parser.add_argument("--rows", type=int, default=DEFAULT_ROWS)
    parser.add_argument("--cols", type=int, default=DEFAULT_COLS)
    parser.add_argument("--channels", type=int, default=DEFAULT_CHANNELS)
    options = parser.parse_args(args)
    try:
        raw_to_bmp(options.source, options.target, options.rows, options.cols, options.channels)
    except (OSError, ValueError) as exc:
        print(f"raw2bmp: {exc}", file=sys.stderr)
        return 1
    return 0