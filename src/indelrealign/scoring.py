from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .cigar import (
    CIGAR_DEL,
    CIGAR_INS,
    CIGAR_MATCH,
    MalformedAlignmentError,
    aligned_blocks,
    is_spliced_or_padded,
    merge_adjacent,
    soft_clip_lengths,
    split_clips,
)
from .models import AlignedRead, CigarTuple, Consensus, RealignmentDecision
from .reference import ReferenceWindow

logger = logging.getLogger(__name__)

# Phred-scaled mismatch penalty used when a read carries no base qualities.
DEFAULT_MISMATCH_PENALTY = 20
PHRED_PER_LOG10 = 10.0

_N = ord("N")


def encode(seq: str) -> np.ndarray:
    return np.frombuffer(seq.upper().encode("ascii"), dtype=np.uint8)


def mismatch_penalties(read: AlignedRead, lo: int = 0, hi: Optional[int] = None) -> np.ndarray:
    """Per-base mismatch penalties (phred) for ``read.sequence[lo:hi]``."""
    if hi is None:
        hi = len(read.sequence)
    if not read.qualities:
        return np.full(hi - lo, DEFAULT_MISMATCH_PENALTY, dtype=np.int64)
    return np.asarray(read.qualities[lo:hi], dtype=np.int64)


def _mismatch_phred(query: np.ndarray, ref: np.ndarray, penalties: np.ndarray) -> int:
    mask = (query != ref) & (ref != _N)
    return int(penalties[mask].sum())


def original_phred(read: AlignedRead, window: ReferenceWindow) -> int:
    """Quality sum over mismatching aligned bases of the read's current alignment."""
    if read.start is None:
        raise MalformedAlignmentError(f"{read.read_name}: mapped read without a start position")
    seq = encode(read.sequence)
    penalties = mismatch_penalties(read)
    total = 0
    for ref_pos, qpos, length in aligned_blocks(read.cigar, read.start):
        ref = encode(window.bases(ref_pos, ref_pos + length))
        total += _mismatch_phred(seq[qpos : qpos + length], ref, penalties[qpos : qpos + length])
    return total


def original_cost(read: AlignedRead, window: ReferenceWindow) -> float:
    return original_phred(read, window) / PHRED_PER_LOG10


@dataclass(frozen=True, eq=False)
class ConsensusLayout:
    """A consensus applied to a reference window, ready for read sweeps."""

    consensus: Consensus
    window_start: int
    bases: np.ndarray
    junction: int  # offset of the event in ``bases``
    inserted: int
    deleted: int


def layout_consensus(consensus: Consensus, window: ReferenceWindow) -> Optional[ConsensusLayout]:
    a = consensus.start - window.start
    b = consensus.end - window.start
    if a <= 0 or b >= len(window.sequence):
        return None
    return ConsensusLayout(
        consensus=consensus,
        window_start=window.start,
        bases=encode(consensus.apply(window.sequence, window.start)),
        junction=a,
        inserted=len(consensus.replacement),
        deleted=b - a,
    )


@dataclass(frozen=True)
class Placement:
    start: int
    cigar: CigarTuple
    phred: int


@dataclass(frozen=True, eq=False)
class _Query:
    bases: np.ndarray
    penalties: np.ndarray
    lead: CigarTuple
    trail: CigarTuple


def _aligned_query(read: AlignedRead) -> _Query:
    lead, _, trail = split_clips(read.cigar)
    s_lead, s_trail = soft_clip_lengths(read.cigar)
    hi = len(read.sequence) - s_trail
    return _Query(
        bases=encode(read.sequence[s_lead:hi]),
        penalties=mismatch_penalties(read, s_lead, hi),
        lead=lead,
        trail=trail,
    )


def best_placement(
    read: AlignedRead,
    layout: ConsensusLayout,
    query: Optional[_Query] = None,
) -> Optional[Placement]:
    """Cheapest ungapped placement of the read on the consensus across its junction.

    Only offsets leaving at least one aligned base on each side of the event, and
    putting every aligned base on a known (non-``N``) consensus base, are
    considered. Ties go to the placement closest to the original start, then to
    the leftmost one.
    """
    if read.start is None:
        return None
    if query is None:
        query = _aligned_query(read)
    n_query = len(query.bases)
    a, k = layout.junction, layout.inserted
    lo = max(0, a + k - n_query + 1)
    hi = min(a - 1, len(layout.bases) - n_query)
    if n_query == 0 or hi < lo:
        return None

    windows = sliding_window_view(layout.bases, n_query)[lo : hi + 1]
    known = np.flatnonzero(~(windows == _N).any(axis=1))
    if len(known) == 0:
        return None
    costs = ((windows[known] != query.bases) * query.penalties).sum(axis=1)
    best_cost = costs.min()

    tied = known[costs == best_cost] + lo
    shift = np.abs(layout.window_start + tied - read.start)
    o = int(tied[int(np.argmin(shift))])

    middle: List[Tuple[int, int]] = [(CIGAR_MATCH, a - o)]
    if k:
        middle.append((CIGAR_INS, k))
    if layout.deleted:
        middle.append((CIGAR_DEL, layout.deleted))
    middle.append((CIGAR_MATCH, o + n_query - a - k))

    return Placement(
        start=layout.window_start + o,
        cigar=merge_adjacent(query.lead + tuple(middle) + query.trail),
        phred=int(best_cost),
    )


def score_read(
    read: AlignedRead,
    layouts: Sequence[Optional[ConsensusLayout]],
    window: ReferenceWindow,
    lod_threshold: float,
) -> RealignmentDecision:
    """Decide whether to move a read onto one of the region's consensuses.

    Costs are quality sums over mismatching bases on the log10 scale; the read is
    moved only if ``original_cost - best_cost`` exceeds ``lod_threshold`` and the
    best cost is strictly lower. Equal best costs go to the lowest ranked
    consensus.
    """
    orig = original_phred(read, window)
    unchanged = RealignmentDecision(
        read_name=read.read_name,
        consensus=None,
        consensus_index=None,
        original_cost=orig / PHRED_PER_LOG10,
        new_cost=None,
        log_odds=0.0,
    )
    if not layouts or is_spliced_or_padded(read.cigar):
        return unchanged

    query = _aligned_query(read)
    if len(query.bases) == 0:
        return unchanged

    best: Optional[Placement] = None
    best_idx: Optional[int] = None
    for i, layout in enumerate(layouts):
        if layout is None:
            continue
        p = best_placement(read, layout, query)
        if p is None:
            continue
        if best is None or p.phred < best.phred:
            best, best_idx = p, i

    if best is None or best_idx is None:
        return unchanged

    original = orig / PHRED_PER_LOG10
    new = best.phred / PHRED_PER_LOG10
    log_odds = original - new
    if log_odds > lod_threshold and best.phred < orig:
        layout = layouts[best_idx]
        assert layout is not None
        return RealignmentDecision(
            read_name=read.read_name,
            consensus=layout.consensus,
            consensus_index=best_idx,
            original_cost=original,
            new_cost=new,
            log_odds=log_odds,
            new_start=best.start,
            new_cigar=best.cigar,
        )
    return RealignmentDecision(
        read_name=read.read_name,
        consensus=None,
        consensus_index=None,
        original_cost=original,
        new_cost=new,
        log_odds=log_odds,
    )
