"""
Output path construction.

Given an input file, an optional output directory and the extension of the
selected output kind, compute the final output path and the temp path the
encoder writes to before the commit rename.
"""
import os
from dataclasses import dataclass
from typing import Optional

from .errors import PathOverflow

# Fail-fast bound on any computed path
PATH_LIMIT = 4096

TMP_SUFFIX = ".tmp"

if os.name == "nt":
    PATH_SEPARATOR = "\\"
    PATH_SEPARATORS = "\\/:"
else:
    PATH_SEPARATOR = "/"
    PATH_SEPARATORS = "/"


@dataclass(frozen=True)
class PathPair:
    tmp_path: str
    final_path: str


def base_name(path: str, seps: str = PATH_SEPARATORS) -> str:
    """Return the part of ``path`` after the last of any separator in ``seps``."""
    cut = max(path.rfind(sep) for sep in seps)
    return path[cut + 1:]


def _checked(path: str, max_length: int) -> str:
    if len(path) > max_length:
        raise PathOverflow(f"Path too long ({len(path)} > {max_length} characters): {path[:64]}...")
    return path


def build_paths(
    input_path: str,
    output_dir: Optional[str],
    ext: str,
    max_length: int = PATH_LIMIT,
    seps: str = PATH_SEPARATORS,
    sep: str = PATH_SEPARATOR,
) -> PathPair:
    """
    Compute the PathPair for one input file.

    With an output directory the input's base name is placed inside it, a
    separator being inserted only when the directory does not already end
    in one. Without it the output sits next to the input. Raises
    PathOverflow when any resulting path is longer than ``max_length``.
    """
    if output_dir:
        prefix = output_dir if output_dir[-1] in seps else output_dir + sep
        stem = _checked(prefix + base_name(input_path, seps), max_length)
    else:
        stem = _checked(input_path, max_length)

    final_path = _checked(stem + ext, max_length)
    tmp_path = _checked(final_path + TMP_SUFFIX, max_length)
    return PathPair(tmp_path=tmp_path, final_path=final_path)
