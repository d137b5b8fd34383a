from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Set, Tuple

from .cigar import CIGAR_INS, indel_events
from .config import ConfigurationError, ConsensusStrategy, RealignConfig
from .known_sites import KnownSite
from .models import Consensus, TargetRegion
from .reference import ReferenceWindow

logger = logging.getLogger(__name__)

_IndelKey = Tuple[int, int, str]


def left_normalize(window: ReferenceWindow, start: int, end: int, replacement: str) -> _IndelKey:
    """Shift an indel to its leftmost equivalent position within the window.

    Unknown ('N') reference bases stop the shift.
    """
    if end > start:  # deletion
        while start - 1 >= window.start:
            left = window.bases(start - 1, start)
            if left == "N" or left != window.bases(end - 1, end):
                break
            start -= 1
            end -= 1
        return start, end, replacement

    seq = replacement
    while seq and start - 1 >= window.start:
        left = window.bases(start - 1, start)
        if left == "N" or left != seq[-1]:
            break
        seq = left + seq[:-1]
        start -= 1
    return start, start, seq


def _inside_window(window: ReferenceWindow, start: int, end: int) -> bool:
    # at least one reference base on each side of the event
    return start > window.start and end < window.end


def _rank_key_by_support(c: Consensus) -> Tuple[int, int, int, str]:
    return (-c.support, c.start, c.indel_length, c.replacement)


def consensuses_from_reads(
    region: TargetRegion,
    window: ReferenceWindow,
    max_indel_size: int,
) -> List[Consensus]:
    """One candidate per distinct (left-normalised) indel seen in the member reads.

    Ranked by number of supporting reads, then start, then indel length.
    """
    support: Dict[_IndelKey, Set[int]] = {}
    for key, read in region.members:
        for ev in indel_events(read):
            if not ev.flanked or ev.length > max_indel_size:
                continue
            if ev.kind == CIGAR_INS:
                s, e, rep = ev.ref_pos, ev.ref_pos, ev.inserted.upper()
            else:
                s, e, rep = ev.ref_pos, ev.ref_pos + ev.length, ""
            s, e, rep = left_normalize(window, s, e, rep)
            if not _inside_window(window, s, e):
                continue
            support.setdefault((s, e, rep), set()).add(key)

    out = [
        Consensus(
            contig=region.region.contig,
            start=s,
            end=e,
            replacement=rep,
            source="reads",
            support=len(keys),
        )
        for (s, e, rep), keys in support.items()
    ]
    out.sort(key=_rank_key_by_support)
    return out


def consensuses_from_known_sites(
    region: TargetRegion,
    window: ReferenceWindow,
    known_sites: Sequence[KnownSite],
    max_indel_size: int,
) -> List[Consensus]:
    """Candidates from known indels overlapping the region, nearest to its centre first."""
    rr = region.region
    seen: Dict[_IndelKey, Consensus] = {}
    for site in known_sites:
        if site.contig != rr.contig or not site.is_indel or site.indel_length > max_indel_size:
            continue
        pos, ref, alt = site.trimmed()
        if ref == "":
            s, e, rep = pos, pos, alt
        else:
            s, e, rep = pos, pos + len(ref), ""
        if not (s < rr.end and max(e, s + 1) > rr.start):
            continue
        if not _inside_window(window, s, e) or (s, e, rep) in seen:
            continue
        spanning = sum(
            1
            for read in region.reads
            if read.start is not None and read.end is not None and read.start < s and read.end > e
        )
        seen[(s, e, rep)] = Consensus(
            contig=rr.contig, start=s, end=e, replacement=rep, source="known", support=spanning
        )

    centre2 = rr.start + rr.end
    out = list(seen.values())
    out.sort(key=lambda c: (abs(c.start + c.end - centre2), c.start, c.indel_length, c.replacement))
    return out


def generate_consensuses(
    region: TargetRegion,
    window: ReferenceWindow,
    config: RealignConfig,
    known_sites: Sequence[KnownSite] = (),
) -> List[Consensus]:
    """Ranked candidate consensuses for a region, at most ``max_consensus_number``."""
    if config.strategy is ConsensusStrategy.FROM_READS:
        candidates = consensuses_from_reads(region, window, config.max_indel_size)
    elif config.strategy is ConsensusStrategy.FROM_KNOWN_SITES:
        candidates = consensuses_from_known_sites(region, window, known_sites, config.max_indel_size)
    else:
        raise ConfigurationError(f"Unknown consensus strategy: {config.strategy!r}")

    if len(candidates) > config.max_consensus_number:
        logger.debug(
            "Region %s: keeping %d of %d candidate consensuses",
            region.region,
            config.max_consensus_number,
            len(candidates),
        )
    return candidates[: config.max_consensus_number]
