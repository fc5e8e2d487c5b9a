# scribe/humanizer/service/chunk_splitter.py
"""
Bounded chunking for long documents.

Units are taken greedily at the coarsest boundary that fits: whole
paragraphs, then whole sentences, then fixed-size character slices.
Each chunk remembers the separator that preceded it in the source so
``reassemble`` can put the document back together in ordinal order.
"""

import re
from dataclasses import dataclass
from typing import List, Sequence, Tuple

DEFAULT_MAX_CHUNK_CHARS = 3500
MIN_CHUNK_CHARS = 1500
MAX_CHUNK_CHARS = 8000

PARAGRAPH_BREAK = re.compile(r"\n{2,}")
SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")

PARAGRAPH_JOINER = "\n\n"
SENTENCE_JOINER = " "


@dataclass(frozen=True)
class Chunk:
    ordinal: int
    offset: int
    length: int
    text: str
    joiner: str = ""

    @property
    def source_range(self) -> Tuple[int, int]:
        return self.offset, self.length


def clamp_chunk_size(max_chunk_chars: int) -> int:
    return min(max(int(max_chunk_chars), MIN_CHUNK_CHARS), MAX_CHUNK_CHARS)


def _spans(text: str, pattern: "re.Pattern[str]", start: int, end: int) -> List[Tuple[int, int]]:
    """Non-blank pieces of text[start:end] between matches of ``pattern``."""
    spans = []
    cursor = start
    for match in pattern.finditer(text, start, end):
        if text[cursor:match.start()].strip():
            spans.append((cursor, match.start()))
        cursor = match.end()
    if text[cursor:end].strip():
        spans.append((cursor, end))
    return spans


def _units(text: str, limit: int) -> List[Tuple[int, int, str]]:
    """(start, end, joiner) triples, each no longer than ``limit``."""
    units = []
    for p_start, p_end in _spans(text, PARAGRAPH_BREAK, 0, len(text)):
        if p_end - p_start <= limit:
            units.append((p_start, p_end, PARAGRAPH_JOINER))
            continue
        joiner = PARAGRAPH_JOINER
        for s_start, s_end in _spans(text, SENTENCE_BREAK, p_start, p_end):
            if s_end - s_start <= limit:
                units.append((s_start, s_end, joiner))
            else:
                for h_start in range(s_start, s_end, limit):
                    units.append((h_start, min(h_start + limit, s_end), joiner if h_start == s_start else ""))
            joiner = SENTENCE_JOINER
    return units


def split_into_chunks(text: str, max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS) -> List[Chunk]:
    limit = clamp_chunk_size(max_chunk_chars)
    chunks: List[Chunk] = []
    current = ""
    start = end = 0
    lead = ""

    def flush():
        chunks.append(Chunk(len(chunks), start, end - start, current, lead if chunks else ""))

    for u_start, u_end, joiner in _units(text, limit):
        piece = text[u_start:u_end]
        if current and len(current) + len(joiner) + len(piece) <= limit:
            current += joiner + piece
            end = u_end
            continue
        if current:
            flush()
        current, start, end, lead = piece, u_start, u_end, joiner
    if current:
        flush()
    return chunks


def reassemble(chunks: Sequence[Chunk], texts: Sequence[str]) -> str:
    """Join per-chunk outputs in ordinal order using each chunk's original separator."""
    if len(chunks) != len(texts):
        raise ValueError(f"expected {len(chunks)} chunk outputs, got {len(texts)}")
    ordered = sorted(zip(chunks, texts), key=lambda pair: pair[0].ordinal)
    return "".join((chunk.joiner if i else "") + text for i, (chunk, text) in enumerate(ordered))
