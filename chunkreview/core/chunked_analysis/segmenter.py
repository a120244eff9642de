"""Split a multi-file diff into ordered, labeled content units.

Boundaries recognized while scanning lines:
  - ``diff --git a/<old> b/<new>`` headers
  - a ``--- <path>`` / ``+++ <path>`` pair (plain unified diff)
  - a standalone ``+++ b/<path>`` target marker

Inside an open git header the ``+++`` line only refines the label, so a
git diff yields one unit per file. After the first git header the plain
markers are ignored: removed "-- x" and added "++ y" hunk lines mimic
them. Any unit that reaches the character ceiling is force-flushed and
the remainder is labeled "<file> (continued)".

Lines keep their line endings: joining every unit's text gives back the
original input unchanged.
"""

import logging
import re
from typing import List, Optional

from .models import ContentUnit

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "unknown"
CONTINUED_SUFFIX = " (continued)"

_GIT_HEADER_RE = re.compile(r"^diff --git a/(.+?) b/(.+)$")
_TARGET_MARKER_RE = re.compile(r"^\+\+\+ b/(.+)$")


def _split_lines(text: str) -> List[str]:
    """Split on newlines, keeping them attached to their line."""
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _marker_path(line: str) -> Optional[str]:
    """Path named by a ``---``/``+++`` marker line, or None for /dev/null."""
    path = line[4:].split("\t", 1)[0].strip()
    if not path or path == "/dev/null":
        return None
    if path.startswith(("a/", "b/")):
        path = path[2:]
    return path or None


class DiffSegmenter:
    """Split raw diff text into ContentUnits bounded by max_chars.

    Args:
        max_chars: Character ceiling for a single unit
    """

    def __init__(self, max_chars: int):
        if max_chars <= 0:
            raise ValueError(f"max_chars must be positive, got {max_chars}")
        self._max_chars = max_chars

    def split(self, text: str) -> List[ContentUnit]:
        """Split text into units. Empty input yields an empty list."""
        if not text:
            return []

        lines = _split_lines(text)
        pieces: List[tuple] = []
        buffer: List[str] = []
        size = 0
        file_label = UNKNOWN_LABEL
        label = UNKNOWN_LABEL
        header_open = False
        # Set by the first git header; from then on only git headers split.
        git_mode = False

        def flush():
            nonlocal buffer, size
            if buffer:
                pieces.append((label, "".join(buffer)))
                buffer = []
                size = 0

        for i, line in enumerate(lines):
            bare = line.rstrip("\r\n")

            if bare.startswith("diff --git"):
                flush()
                match = _GIT_HEADER_RE.match(bare)
                file_label = label = match.group(2) if match else UNKNOWN_LABEL
                header_open = True
                git_mode = True
            elif (
                bare.startswith("--- ")
                and not header_open
                and not git_mode
                and i + 1 < len(lines)
                and lines[i + 1].startswith("+++ ")
            ):
                flush()
                target = _marker_path(lines[i + 1].rstrip("\r\n")) or _marker_path(bare)
                file_label = label = target or UNKNOWN_LABEL
                header_open = True
            elif bare.startswith("+++ "):
                target = _marker_path(bare)
                if header_open:
                    if target:
                        file_label = label = target
                    header_open = False
                elif not git_mode and _TARGET_MARKER_RE.match(bare):
                    flush()
                    file_label = label = target or UNKNOWN_LABEL
            elif bare.startswith("@@"):
                header_open = False

            if len(line) > self._max_chars:
                # A single line longer than the ceiling is cut to fit.
                room = self._max_chars - size
                segments = [line[:room]]
                rest = line[room:]
                while rest:
                    segments.append(rest[:self._max_chars])
                    rest = rest[self._max_chars:]
            else:
                segments = [line]

            for segment in segments:
                buffer.append(segment)
                size += len(segment)
                if size >= self._max_chars:
                    flush()
                    label = f"{file_label}{CONTINUED_SUFFIX}"

        flush()

        units = [
            ContentUnit(
                order_index=index,
                source_label=unit_label,
                text=unit_text,
                size_chars=len(unit_text),
            )
            for index, (unit_label, unit_text) in enumerate(pieces)
        ]
        logger.debug(
            f"Segmented {len(text)} chars into {len(units)} units "
            f"(max_chars={self._max_chars})"
        )
        return units
