"""Split normalized text into overlapping, line-addressable chunks."""

from __future__ import annotations

import hashlib
import re

from semantic_index.data.models import Chunk

__all__ = ["TextChunker", "line_spans", "slice_lines"]

_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s")


def line_spans(text: str) -> list[tuple[int, int]]:
    """Return ``(start, end)`` character offsets of each line, newline excluded."""

    spans: list[tuple[int, int]] = []
    start = 0
    for line in text.split("\n"):
        end = start + len(line)
        spans.append((start, end))
        start = end + 1
    if text.endswith("\n"):
        spans.pop()
    return spans


def slice_lines(text: str, start_line: int, end_line: int) -> str | None:
    """Return lines ``start_line``..``end_line`` (1-based, inclusive) of ``text``.

    ``None`` means the range no longer exists in ``text``.
    """

    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
    if start_line < 1 or start_line > len(lines) or end_line < start_line:
        return None
    return "\n".join(lines[start_line - 1 : min(end_line, len(lines))])


class TextChunker:
    """Greedy paragraph packer with a bounded chunk size and trailing-line overlap.

    Chunks close on blank lines or before markdown headings when possible. A
    chunk carries at most ``overlap_chars`` (and never more than half of its
    own size) of trailing lines into the next one.
    """

    def __init__(self, *, max_chars: int = 1_500, overlap_chars: int = 200) -> None:
        if max_chars < 1:
            raise ValueError("max_chars must be >= 1")
        if not 0 <= overlap_chars < max_chars:
            raise ValueError("overlap_chars must be in [0, max_chars)")
        self.max_chars = max_chars
        self.overlap_chars = overlap_chars

    def chunk(self, text: str) -> list[Chunk]:
        if not text.strip():
            return []
        spans = line_spans(text)
        pieces: list[tuple[int, int, int, int]] = []
        count = len(spans)

        def width(index: int) -> int:
            start, end = spans[index]
            return end - start + 1

        def blank(index: int) -> bool:
            start, end = spans[index]
            return not text[start:end].strip()

        def boundary_after(index: int) -> bool:
            if index + 1 >= count or blank(index) or blank(index + 1):
                return True
            start, end = spans[index + 1]
            return bool(_HEADING_RE.match(text[start:end]))

        i = 0
        while i < count:
            while i < count and blank(i):
                i += 1
            if i >= count:
                break
            if width(i) > self.max_chars:
                pieces.extend(self._split_long_line(text, spans[i], i + 1))
                i += 1
                continue

            size = 0
            j = i
            cut: int | None = None
            while j < count and size + width(j) <= self.max_chars:
                size += width(j)
                j += 1
                if boundary_after(j - 1):
                    cut = j
            end = cut if cut is not None and j < count else j

            last = end - 1
            while last > i and blank(last):
                last -= 1
            pieces.append((spans[i][0], spans[last][1], i + 1, last + 1))
            if end >= count:
                break

            budget = min(self.overlap_chars, size // 2)
            k = end
            carried = 0
            while k - 1 > i and carried + width(k - 1) <= budget:
                k -= 1
                carried += width(k)
            following = end
            while following < count and blank(following):
                following += 1
            if (
                following >= count
                or carried + sum(width(x) for x in range(end, following + 1)) > self.max_chars
            ):
                # carried lines alone would make a chunk with no new text
                k = end
            i = k

        chunks: list[Chunk] = []
        for start, end, first_line, last_line in pieces:
            body = text[start:end]
            if not body.strip():
                continue
            chunks.append(
                Chunk(
                    sequence=len(chunks),
                    start_offset=start,
                    end_offset=end,
                    start_line=first_line,
                    end_line=last_line,
                    text=body,
                    digest=hashlib.sha256(body.encode("utf-8")).hexdigest(),
                )
            )
        return chunks

    def _split_long_line(
        self, text: str, span: tuple[int, int], line_number: int
    ) -> list[tuple[int, int, int, int]]:
        start, end = span
        step = max(1, self.max_chars - self.overlap_chars)
        windows: list[tuple[int, int, int, int]] = []
        offset = start
        while offset < end:
            stop = min(offset + self.max_chars, end)
            windows.append((offset, stop, line_number, line_number))
            if stop >= end:
                break
            offset += step
        return windows
