"""Reference sequence access for target regions.

A region's reference comes either from a FASTA (``FastaReference``) or, when no
FASTA is given, is rebuilt from the MD tags of the reads overlapping it. Bases
that cannot be recovered are ``N`` and never count as mismatches.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Deque, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

import pysam

from .cigar import (
    CIGAR_DEL,
    CIGAR_EQUAL,
    CIGAR_DIFF,
    CIGAR_INS,
    CIGAR_MATCH,
    CIGAR_REF_SKIP,
    CIGAR_SOFT_CLIP,
    MalformedAlignmentError,
)
from .models import AlignedRead

logger = logging.getLogger(__name__)

_MD_TOKEN = re.compile(r"(\d+)|(\^[A-Za-z]+)|([A-Za-z])")
_ALIGNED_OPS = (CIGAR_MATCH, CIGAR_EQUAL, CIGAR_DIFF)

MdToken = Union[int, str]


class ReferenceSource(Protocol):
    def has_contig(self, contig: str) -> bool:
        ...

    def fetch(self, contig: str, start: int, end: int) -> str:
        ...


class FastaReference:
    """Indexed FASTA reader (requires a .fai next to the FASTA)."""

    def __init__(self, path: str | Path) -> None:
        self.path = str(path)
        self._fasta = pysam.FastaFile(self.path)
        self._lengths = dict(zip(self._fasta.references, self._fasta.lengths))

    def has_contig(self, contig: str) -> bool:
        return contig in self._lengths

    def fetch(self, contig: str, start: int, end: int) -> str:
        start = max(0, start)
        end = min(end, self._lengths[contig])
        if end <= start:
            return ""
        return self._fasta.fetch(contig, start, end).upper()

    def close(self) -> None:
        self._fasta.close()

    def __enter__(self) -> "FastaReference":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class DictReference:
    """In-memory reference keyed by contig name."""

    def __init__(self, sequences: Mapping[str, str]) -> None:
        self._sequences = {k: v.upper() for k, v in sequences.items()}

    def has_contig(self, contig: str) -> bool:
        return contig in self._sequences

    def fetch(self, contig: str, start: int, end: int) -> str:
        return self._sequences[contig][max(0, start) : max(0, end)]


@dataclass(frozen=True)
class ReferenceWindow:
    """Reference bases starting at ``start`` on ``contig``."""

    contig: str
    start: int
    sequence: str

    @property
    def end(self) -> int:
        return self.start + len(self.sequence)

    def bases(self, start: int, end: int) -> str:
        """Bases for [start, end); positions outside the window are 'N'."""
        if end <= start:
            return ""
        lo = max(start, self.start)
        hi = min(end, self.end)
        if hi <= lo:
            return "N" * (end - start)
        return (
            "N" * (lo - start)
            + self.sequence[lo - self.start : hi - self.start]
            + "N" * (end - hi)
        )

    def is_unknown(self) -> bool:
        return self.sequence.count("N") == len(self.sequence)


def parse_md(md: str) -> List[MdToken]:
    """Split an MD tag into match-run ints, mismatch bases and '^'-prefixed deletions."""
    tokens: List[MdToken] = []
    pos = 0
    for m in _MD_TOKEN.finditer(md):
        if m.start() != pos:
            raise MalformedAlignmentError(f"Unparseable MD tag: {md}")
        pos = m.end()
        if m.group(1) is not None:
            tokens.append(int(m.group(1)))
        else:
            tokens.append((m.group(2) or m.group(3)).upper())
    if pos != len(md):
        raise MalformedAlignmentError(f"Unparseable MD tag: {md}")
    return tokens


def _drop_zero_runs(tokens: Deque[MdToken]) -> None:
    while tokens and tokens[0] == 0:
        tokens.popleft()


def reference_from_md(read: AlignedRead) -> str:
    """Rebuild the reference bases spanned by a read from its CIGAR and MD tag."""
    if read.md is None:
        raise MalformedAlignmentError(f"{read.read_name}: no MD tag")
    tokens: Deque[MdToken] = deque(parse_md(read.md))
    out: List[str] = []
    qpos = 0

    for op, length in read.cigar:
        if op in _ALIGNED_OPS:
            remaining = length
            while remaining:
                _drop_zero_runs(tokens)
                if not tokens:
                    raise MalformedAlignmentError(f"{read.read_name}: MD shorter than CIGAR")
                tok = tokens[0]
                if isinstance(tok, int):
                    n = min(tok, remaining)
                    out.append(read.sequence[qpos : qpos + n])
                    qpos += n
                    remaining -= n
                    if n == tok:
                        tokens.popleft()
                    else:
                        tokens[0] = tok - n
                elif tok.startswith("^"):
                    raise MalformedAlignmentError(f"{read.read_name}: MD deletion inside match block")
                else:
                    out.append(tok)
                    tokens.popleft()
                    qpos += 1
                    remaining -= 1
        elif op == CIGAR_DEL:
            _drop_zero_runs(tokens)
            tok = tokens.popleft() if tokens else None
            if not isinstance(tok, str) or not tok.startswith("^") or len(tok) - 1 != length:
                raise MalformedAlignmentError(f"{read.read_name}: MD does not match deletion")
            out.append(tok[1:])
        elif op in (CIGAR_INS, CIGAR_SOFT_CLIP):
            qpos += length
        elif op == CIGAR_REF_SKIP:
            out.append("N" * length)

    _drop_zero_runs(tokens)
    if tokens:
        raise MalformedAlignmentError(f"{read.read_name}: MD longer than CIGAR")
    return "".join(out).upper()


def md_tag_for(
    sequence: str,
    cigar: Sequence[Tuple[int, int]],
    start: int,
    window: ReferenceWindow,
) -> str:
    """Compute the MD tag of an alignment against a reference window."""
    parts: List[str] = []
    run = 0
    ref_pos = start
    qpos = 0
    for op, length in cigar:
        if op in _ALIGNED_OPS:
            ref = window.bases(ref_pos, ref_pos + length)
            for i in range(length):
                if sequence[qpos + i].upper() == ref[i]:
                    run += 1
                else:
                    parts.append(f"{run}{ref[i]}")
                    run = 0
            ref_pos += length
            qpos += length
        elif op == CIGAR_DEL:
            parts.append(f"{run}^{window.bases(ref_pos, ref_pos + length)}")
            run = 0
            ref_pos += length
        elif op in (CIGAR_INS, CIGAR_SOFT_CLIP):
            qpos += length
        elif op == CIGAR_REF_SKIP:
            ref_pos += length
    parts.append(str(run))
    return "".join(parts)


def window_from_reads(
    contig: str,
    start: int,
    end: int,
    reads: Iterable[AlignedRead],
) -> ReferenceWindow:
    """Assemble a reference window from the MD tags of the given reads."""
    bases = ["N"] * max(0, end - start)
    for read in reads:
        if read.md is None or read.start is None:
            continue
        try:
            ref = reference_from_md(read)
        except MalformedAlignmentError as e:
            logger.debug("Ignoring MD tag: %s", e)
            continue
        for i, base in enumerate(ref):
            p = read.start + i - start
            if 0 <= p < len(bases) and base != "N":
                bases[p] = base
    return ReferenceWindow(contig=contig, start=start, sequence="".join(bases))


def build_window(
    contig: str,
    start: int,
    end: int,
    reads: Sequence[AlignedRead],
    reference: Optional[ReferenceSource] = None,
) -> ReferenceWindow:
    """Reference window over [start, end), from a FASTA when possible."""
    start = max(0, start)
    if reference is not None and reference.has_contig(contig):
        return ReferenceWindow(contig=contig, start=start, sequence=reference.fetch(contig, start, end))
    return window_from_reads(contig, start, end, reads)
