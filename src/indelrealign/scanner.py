"""Target region discovery over position-ordered reads.

The scanner is a fold: ``RegionScanner.push`` consumes one read and returns
whatever became final because of it (closed target regions and reads that can
no longer join any region). ``finish`` flushes the remaining state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Set, Tuple, Union

from .cigar import CIGAR_DEL, CIGAR_INS, MalformedAlignmentError, validate_alignment
from .config import RealignConfig
from .known_sites import KnownSitesTable
from .models import AlignedRead, Member, RealignmentSummary, ReferenceRegion, TargetRegion

logger = logging.getLogger(__name__)

# A region is closed once a read starts more than this many bases past its end.
REGION_CLOSE_SLACK = 10


class UnsortedInputError(ValueError):
    """Raised when input declared as sorted is observed out of order."""


@dataclass(frozen=True)
class PassThrough:
    """A read that leaves the scanner without joining a target region."""

    key: int
    read: AlignedRead
    reason: str  # 'unmapped', 'malformed', 'no_evidence' or 'width'


ScanEvent = Union[TargetRegion, PassThrough]


def has_indel_evidence(read: AlignedRead, max_indel_size: int) -> bool:
    return any(
        op in (CIGAR_INS, CIGAR_DEL) and length <= max_indel_size for op, length in read.cigar
    )


def _span(read: AlignedRead) -> Tuple[int, int]:
    start, end = read.start, read.end
    if start is None or end is None:
        raise MalformedAlignmentError(f"{read.read_name}: mapped read without a start position")
    return start, end


class RegionScanner:
    """Clusters sorted reads into disjoint, width-bounded target regions.

    A non-evidence read stays pending until no later region can reach it: a
    region holding a read starting at ``s`` cannot start before
    ``s - max_target_size``, and regions never cross an already closed one.
    """

    def __init__(
        self,
        config: RealignConfig,
        summary: Optional[RealignmentSummary] = None,
        *,
        known_sites: Optional[KnownSitesTable] = None,
    ) -> None:
        self.config = config
        self.summary = summary if summary is not None else RealignmentSummary()
        self.known_sites = known_sites

        self._contig: Optional[str] = None
        self._last_start = -1
        self._seen_contigs: Set[str] = set()

        # open region state; _members is empty when no region is open
        self._start = 0
        self._end = 0
        self._members: List[Member] = []

        # non-evidence reads that may still overlap a future region
        self._pending: List[Member] = []

    @property
    def is_open(self) -> bool:
        return bool(self._members)

    def _evidence(self, read: AlignedRead, contig: str, start: int, end: int) -> bool:
        if has_indel_evidence(read, self.config.max_indel_size):
            return True
        if self.known_sites is not None:
            return self.known_sites.has_indel_within(contig, start, end, self.config.max_indel_size)
        return False

    def _check_order(self, read: AlignedRead, contig: str, start: int) -> None:
        if contig != self._contig:
            if contig in self._seen_contigs:
                raise UnsortedInputError(
                    f"Input is not sorted: contig {contig} seen again after {self._contig}"
                )
            self._seen_contigs.add(contig)
            return
        if start < self._last_start:
            raise UnsortedInputError(
                f"Input is not sorted: {read.read_name} starts at {contig}:{start} "
                f"after a read starting at {self._last_start}"
            )

    def _close(self) -> List[ScanEvent]:
        if not self._members:
            return []
        assert self._contig is not None
        region = TargetRegion(
            region=ReferenceRegion(self._contig, self._start, self._end),
            members=tuple(self._members),
        )
        self._members = []
        logger.debug("Closed target region %s with %d reads", region.region, len(region.members))
        # pending reads left of a closed region cannot join a later one
        return [region] + self._release_pending(before=region.region.end)

    def _release_pending(self, before: Optional[int] = None) -> List[ScanEvent]:
        """Pass through pending reads ending at or before ``before`` (all if None)."""
        out: List[ScanEvent] = []
        keep: List[Member] = []
        for key, read in self._pending:
            if before is None or _span(read)[1] <= before:
                out.append(PassThrough(key, read, "no_evidence"))
            else:
                keep.append((key, read))
        self._pending = keep
        return out

    def _adopt_pending(self) -> List[ScanEvent]:
        """Move pending reads overlapping the open region into it, within the width cap."""
        out: List[ScanEvent] = []
        changed = True
        while changed:
            changed = False
            keep: List[Member] = []
            for key, read in self._pending:
                read_start, read_end = _span(read)
                if read_start >= self._end or read_end <= self._start:
                    keep.append((key, read))
                    continue
                start = min(self._start, read_start)
                end = max(self._end, read_end)
                if end - start <= self.config.max_target_size:
                    self._start, self._end = start, end
                    self._members.append((key, read))
                    changed = True
                else:
                    self.summary.reads_skipped_width += 1
                    out.append(PassThrough(key, read, "width"))
            self._pending = keep
        return out

    def _open(self, key: int, read: AlignedRead, start: int, end: int) -> List[ScanEvent]:
        self._start, self._end = start, end
        self._members = [(key, read)]
        return self._adopt_pending()

    def push(self, key: int, read: AlignedRead) -> List[ScanEvent]:
        if not read.mapped or read.contig is None:
            self.summary.reads_unmapped += 1
            return [PassThrough(key, read, "unmapped")]
        try:
            validate_alignment(read)
            start, end = _span(read)
        except MalformedAlignmentError as e:
            self.summary.reads_malformed += 1
            logger.debug("Malformed alignment passed through: %s", e)
            return [PassThrough(key, read, "malformed")]

        contig = read.contig
        out: List[ScanEvent] = []

        self._check_order(read, contig, start)
        if contig != self._contig:
            out += self._close()
            out += self._release_pending()
            self._contig = contig
        self._last_start = start

        if self.is_open and start > self._end + REGION_CLOSE_SLACK:
            out += self._close()

        out += self._place(key, read, contig, start, end)
        out += self._release_pending(before=start - self.config.max_target_size)
        return out

    def _place(
        self, key: int, read: AlignedRead, contig: str, start: int, end: int
    ) -> List[ScanEvent]:
        evidence = self._evidence(read, contig, start, end)
        width_ok = end - start <= self.config.max_target_size

        if self.is_open:
            overlaps = start < self._end
            if not (evidence or overlaps):
                self._pending.append((key, read))
                return []
            if max(self._end, end) - self._start <= self.config.max_target_size:
                self._end = max(self._end, end)
                self._members.append((key, read))
                return self._adopt_pending()
            if evidence and not overlaps and width_ok:
                return self._close() + self._open(key, read, start, end)
            self.summary.reads_skipped_width += 1
            return [PassThrough(key, read, "width")]

        if evidence:
            if not width_ok:
                self.summary.reads_skipped_width += 1
                return [PassThrough(key, read, "width")]
            return self._open(key, read, start, end)

        self._pending.append((key, read))
        return []

    def finish(self) -> List[ScanEvent]:
        out = self._close()
        out += self._release_pending()
        return out


def scan_regions(
    keyed_reads: Iterable[Tuple[int, AlignedRead]],
    config: RealignConfig,
    summary: Optional[RealignmentSummary] = None,
    *,
    known_sites: Optional[KnownSitesTable] = None,
) -> Iterator[ScanEvent]:
    """Lazily scan ``(key, read)`` pairs ordered by (contig, start)."""
    scanner = RegionScanner(config, summary, known_sites=known_sites)
    for key, read in keyed_reads:
        yield from scanner.push(key, read)
    yield from scanner.finish()
