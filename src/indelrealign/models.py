from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

CigarTuple = Tuple[Tuple[int, int], ...]

# pysam op codes that consume the reference: M, D, N, =, X
_REF_CONSUMING = (0, 2, 3, 7, 8)


@dataclass(frozen=True)
class AlignedRead:
    """A mapped short read, as seen by the realignment engine.

    Coordinates are 0-based half-open in internal representation.

    Attributes
    ----------
    read_name:
        Query name.
    contig:
        Reference name the read is aligned to, or None if unplaced.
    start:
        0-based alignment start, or None when undefined.
    cigar:
        Gap structure as pysam-style ``(op, length)`` tuples.
    sequence:
        Read bases, including soft-clipped bases.
    qualities:
        Per-base phred qualities, or None when absent.
    mapped:
        False for unmapped reads; these never enter a target region.
    md:
        MD tag, if the aligner emitted one. Used to rebuild the reference when
        no FASTA is available.
    old_start, old_cigar:
        Original geometry, set only on reads produced by the rewriter.
    """

    read_name: str
    contig: Optional[str]
    start: Optional[int]
    cigar: CigarTuple
    sequence: str
    qualities: Optional[Tuple[int, ...]] = None
    mapped: bool = True
    flag: int = 0
    mapq: int = 255
    md: Optional[str] = None
    old_start: Optional[int] = None
    old_cigar: Optional[str] = None

    @property
    def reference_length(self) -> int:
        return sum(length for op, length in self.cigar if op in _REF_CONSUMING)

    @property
    def end(self) -> Optional[int]:
        if self.start is None:
            return None
        return self.start + self.reference_length


@dataclass(frozen=True)
class ReferenceRegion:
    """Half-open interval [start, end) on one contig."""

    contig: str
    start: int
    end: int

    @property
    def width(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "ReferenceRegion") -> bool:
        return self.contig == other.contig and self.start < other.end and other.start < self.end

    def contains(self, pos0: int) -> bool:
        return self.start <= pos0 < self.end

    def __str__(self) -> str:
        return f"{self.contig}:{self.start}-{self.end}"


Member = Tuple[int, AlignedRead]


@dataclass(frozen=True)
class TargetRegion:
    """A realignment unit: a bounded interval plus the reads that fell into it.

    ``members`` holds ``(key, read)`` pairs, where ``key`` is the read's index in
    the caller's input collection.
    """

    region: ReferenceRegion
    members: Tuple[Member, ...]

    @property
    def reads(self) -> List[AlignedRead]:
        return [r for _, r in self.members]


@dataclass(frozen=True)
class Consensus:
    """A candidate alternate reference for a target region.

    Replacing reference bases ``[start, end)`` with ``replacement`` yields the
    alternate sequence. Insertions have ``start == end``; deletions have an
    empty replacement.
    """

    contig: str
    start: int
    end: int
    replacement: str
    source: str  # 'reads' or 'known'
    support: int = 0

    @property
    def is_insertion(self) -> bool:
        return self.start == self.end and len(self.replacement) > 0

    @property
    def is_deletion(self) -> bool:
        return self.end > self.start and self.replacement == ""

    @property
    def indel_length(self) -> int:
        if self.is_insertion:
            return len(self.replacement)
        return self.end - self.start

    def apply(self, reference: str, ref_start: int) -> str:
        """Return ``reference`` (which begins at ``ref_start``) with this indel applied."""
        a = self.start - ref_start
        b = self.end - ref_start
        return reference[:a] + self.replacement + reference[b:]


@dataclass(frozen=True)
class RealignmentDecision:
    """Per-read outcome of scoring against a region's consensuses."""

    read_name: str
    consensus: Optional[Consensus]
    consensus_index: Optional[int]
    original_cost: float
    new_cost: Optional[float]
    log_odds: float
    new_start: Optional[int] = None
    new_cigar: Optional[CigarTuple] = None

    @property
    def accepted(self) -> bool:
        return self.consensus is not None


_LOD_BINS = np.linspace(0.0, 100.0, 51)


@dataclass
class RealignmentSummary:
    """Diagnostic counters aggregated over one engine run."""

    reads_total: int = 0
    reads_unmapped: int = 0
    reads_malformed: int = 0
    reads_skipped_width: int = 0
    reads_in_regions: int = 0
    reads_realigned: int = 0
    regions_processed: int = 0
    regions_without_candidates: int = 0
    regions_without_reference: int = 0
    candidates_evaluated: int = 0
    lod_scores: List[float] = field(default_factory=list)
    region_widths: List[int] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        d = asdict(self)
        d.pop("lod_scores")
        d.pop("region_widths")
        return d

    def to_dict(self) -> Dict[str, Any]:
        lod_counts = np.histogram(np.clip(self.lod_scores, 0.0, 100.0), bins=_LOD_BINS)[0]
        if self.region_widths:
            width_counts, width_edges = np.histogram(self.region_widths, bins=20)
        else:
            width_counts, width_edges = np.zeros(0, dtype=np.int64), np.zeros(0)
        return {
            "counts": self.counts(),
            "lod_hist": {
                "bin_edges": _LOD_BINS.tolist(),
                "counts": lod_counts.tolist(),
            },
            "region_width_hist": {
                "bin_edges": width_edges.tolist(),
                "counts": width_counts.tolist(),
            },
        }
