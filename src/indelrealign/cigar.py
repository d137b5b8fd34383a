"""CIGAR helpers on pysam-style ``(op, length)`` tuples."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple

from .models import AlignedRead, CigarTuple

CIGAR_MATCH = 0
CIGAR_INS = 1
CIGAR_DEL = 2
CIGAR_REF_SKIP = 3
CIGAR_SOFT_CLIP = 4
CIGAR_HARD_CLIP = 5
CIGAR_PAD = 6
CIGAR_EQUAL = 7
CIGAR_DIFF = 8

_CIGAR_OPS = "MIDNSHP=X"
_CIGAR_PATTERN = re.compile(r"([0-9]+)([MIDNSHP=X])")

_ALIGNED_OPS = (CIGAR_MATCH, CIGAR_EQUAL, CIGAR_DIFF)
_QUERY_OPS = (CIGAR_MATCH, CIGAR_INS, CIGAR_SOFT_CLIP, CIGAR_EQUAL, CIGAR_DIFF)
_REFERENCE_OPS = (CIGAR_MATCH, CIGAR_DEL, CIGAR_REF_SKIP, CIGAR_EQUAL, CIGAR_DIFF)
_CLIP_OPS = (CIGAR_SOFT_CLIP, CIGAR_HARD_CLIP)


class MalformedAlignmentError(ValueError):
    """Raised when a read's gap structure is inconsistent with its bases."""


@dataclass(frozen=True)
class IndelEvent:
    """One I or D operation, located on the reference."""

    kind: int  # CIGAR_INS or CIGAR_DEL
    ref_pos: int  # insertion: bases go before this position; deletion: first deleted base
    length: int
    query_pos: int  # index into the read sequence where the event starts
    inserted: str = ""
    flanked: bool = True  # aligned bases on both sides


def cigar_to_string(cigar: Sequence[Tuple[int, int]]) -> str:
    if not cigar:
        return "*"
    return "".join(f"{length}{_CIGAR_OPS[op]}" for op, length in cigar)


def parse_cigar(text: str) -> CigarTuple:
    if text in ("", "*"):
        return ()
    ops = _CIGAR_PATTERN.findall(text)
    if "".join(n + o for n, o in ops) != text:
        raise MalformedAlignmentError(f"Unparseable CIGAR: {text}")
    return tuple((_CIGAR_OPS.index(o), int(n)) for n, o in ops)


def reference_length(cigar: Sequence[Tuple[int, int]]) -> int:
    return sum(length for op, length in cigar if op in _REFERENCE_OPS)


def query_length(cigar: Sequence[Tuple[int, int]]) -> int:
    return sum(length for op, length in cigar if op in _QUERY_OPS)


def has_indel(cigar: Sequence[Tuple[int, int]]) -> bool:
    return any(op in (CIGAR_INS, CIGAR_DEL) for op, _ in cigar)


def is_spliced_or_padded(cigar: Sequence[Tuple[int, int]]) -> bool:
    return any(op in (CIGAR_REF_SKIP, CIGAR_PAD) for op, _ in cigar)


def split_clips(
    cigar: Sequence[Tuple[int, int]],
) -> Tuple[CigarTuple, CigarTuple, CigarTuple]:
    """Split a CIGAR into (leading clips, core, trailing clips)."""
    ops = list(cigar)
    i = 0
    while i < len(ops) and ops[i][0] in _CLIP_OPS:
        i += 1
    j = len(ops)
    while j > i and ops[j - 1][0] in _CLIP_OPS:
        j -= 1
    return tuple(ops[:i]), tuple(ops[i:j]), tuple(ops[j:])


def soft_clip_lengths(cigar: Sequence[Tuple[int, int]]) -> Tuple[int, int]:
    lead, _, trail = split_clips(cigar)
    return (
        sum(n for op, n in lead if op == CIGAR_SOFT_CLIP),
        sum(n for op, n in trail if op == CIGAR_SOFT_CLIP),
    )


def aligned_blocks(cigar: Sequence[Tuple[int, int]], start: int) -> Iterator[Tuple[int, int, int]]:
    """Yield ``(ref_pos, query_pos, length)`` for each M/=/X block."""
    ref_pos = start
    query_pos = 0
    for op, length in cigar:
        if op in _ALIGNED_OPS:
            yield ref_pos, query_pos, length
            ref_pos += length
            query_pos += length
        elif op in (CIGAR_INS, CIGAR_SOFT_CLIP):
            query_pos += length
        elif op in (CIGAR_DEL, CIGAR_REF_SKIP):
            ref_pos += length


def indel_events(read: AlignedRead) -> List[IndelEvent]:
    """Return the indels of a placed read, in alignment order."""
    if read.start is None:
        return []
    events: List[IndelEvent] = []
    ref_pos = read.start
    query_pos = 0
    last = len(read.cigar) - 1
    for i, (op, length) in enumerate(read.cigar):
        if op in (CIGAR_INS, CIGAR_DEL):
            flanked = (
                0 < i < last
                and read.cigar[i - 1][0] in _ALIGNED_OPS
                and read.cigar[i + 1][0] in _ALIGNED_OPS
            )
            if op == CIGAR_INS:
                inserted = read.sequence[query_pos : query_pos + length]
                events.append(IndelEvent(op, ref_pos, length, query_pos, inserted, flanked))
                query_pos += length
            else:
                events.append(IndelEvent(op, ref_pos, length, query_pos, "", flanked))
                ref_pos += length
        elif op in _ALIGNED_OPS:
            ref_pos += length
            query_pos += length
        elif op == CIGAR_SOFT_CLIP:
            query_pos += length
        elif op == CIGAR_REF_SKIP:
            ref_pos += length
    return events


def validate_alignment(read: AlignedRead) -> None:
    """Raise MalformedAlignmentError if a placed read cannot be realigned safely."""
    if read.start is None or read.start < 0:
        raise MalformedAlignmentError(f"{read.read_name}: missing alignment start")
    if not read.cigar:
        raise MalformedAlignmentError(f"{read.read_name}: empty CIGAR")
    for op, length in read.cigar:
        if not 0 <= op < len(_CIGAR_OPS):
            raise MalformedAlignmentError(f"{read.read_name}: unknown CIGAR op {op}")
        if length <= 0:
            raise MalformedAlignmentError(f"{read.read_name}: non-positive CIGAR length")
    if reference_length(read.cigar) == 0:
        raise MalformedAlignmentError(f"{read.read_name}: CIGAR consumes no reference")
    if not read.sequence:
        raise MalformedAlignmentError(f"{read.read_name}: missing sequence")
    qlen = query_length(read.cigar)
    if qlen != len(read.sequence):
        raise MalformedAlignmentError(
            f"{read.read_name}: CIGAR query length {qlen} != sequence length {len(read.sequence)}"
        )
    if read.qualities is not None and len(read.qualities) not in (0, len(read.sequence)):
        raise MalformedAlignmentError(f"{read.read_name}: quality length != sequence length")


def merge_adjacent(cigar: Sequence[Tuple[int, int]]) -> CigarTuple:
    """Drop zero-length ops and merge runs of the same op."""
    out: List[Tuple[int, int]] = []
    for op, length in cigar:
        if length <= 0:
            continue
        if out and out[-1][0] == op:
            out[-1] = (op, out[-1][1] + length)
        else:
            out.append((op, length))
    return tuple(out)
