"""Small helpers: size formatting, random numbers, sequences, strings and ffmpeg."""

from __future__ import annotations

import random
import subprocess
from collections.abc import Iterable, Sequence
from os import PathLike
from typing import Union

INVALID_DIR_SYMBOLS = ("/", "<", ">", ":", '"', "/", "\\", "|", "?", "*")

_SIZE_UNITS = ("B", "KiB", "MiB", "GiB")

StrPath = Union[str, PathLike]


class MergeError(RuntimeError):
    """Raised when ffmpeg fails to merge segment files."""


def format_size(size: int) -> str:
    """Format a byte rate so the number stays >= 1 where a larger unit exists."""
    index = 0
    value = size
    while value >> 10 >= 1 and index <= 3:
        value >>= 10
        index += 1
    index = min(index, len(_SIZE_UNITS) - 1)
    return f"{size / (1 << (index * 10)):.2f} {_SIZE_UNITS[index]}/s"


def random_int(low: int, high: int) -> int:
    """Return a random integer in the closed range [low, high]."""
    if high < low:
        raise ValueError(f"empty range: {low}..{high}")
    return random.randint(low, high)


def _length(seq: Sequence | None) -> int:
    return 0 if seq is None else len(seq)


def slice_equal(s1: Sequence | None, s2: Sequence | None) -> bool:
    """Compare two sequences element-wise; None differs from an empty sequence."""
    if _length(s1) != _length(s2):
        return False
    if (s1 is None) != (s2 is None):
        return False
    return all(a == b for a, b in zip(s1 or (), s2 or ()))


def is_sub_slice(dst: Sequence | None, src: Sequence | None) -> bool:
    """Return whether every element of ``src`` occurs in ``dst``."""
    if _length(src) > _length(dst):
        return False
    if (src is None) != (dst is None):
        return False
    present = set(dst or ())
    return all(item in present for item in src or ())


def replace_chars(text: str, chars: Iterable[str]) -> str:
    """Remove every occurrence of the given characters from ``text``."""
    return text.translate({ord(c): None for c in chars})


def merge_to_mp4(file_list_path: StrPath, output_path: StrPath) -> None:
    """Concatenate the segments listed in ``file_list_path`` into one MP4 file."""
    command = [
        "ffmpeg",
        "-f",
        "concat",
        "-safe",
        "0",
        "-i",
        str(file_list_path),
        "-c",
        "copy",
        str(output_path),
        "-y",
    ]
    try:
        result = subprocess.run(
            command,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            check=False,
        )
    except OSError as exc:
        raise MergeError(str(exc)) from exc
    if result.returncode != 0:
        stderr = (result.stderr or b"").decode(errors="replace")
        raise MergeError(f"exit status {result.returncode}\n{stderr}")