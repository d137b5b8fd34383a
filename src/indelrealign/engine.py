"""Indel realignment over a collection of reads.

Sorted reads are scanned into target regions; each region is an independent
unit of work (consensus generation, scoring, rewriting) that can run in a
worker process. Results are merged back into input order.
"""

from __future__ import annotations

import logging
import multiprocessing
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from tqdm import tqdm

from .config import ConfigurationError, ConsensusStrategy, RealignConfig
from .consensus import generate_consensuses
from .known_sites import KnownSite, KnownSitesTable
from .merger import merge_reads
from .models import (
    AlignedRead,
    Member,
    RealignmentDecision,
    RealignmentSummary,
    ReferenceRegion,
    TargetRegion,
)
from .reference import ReferenceSource, ReferenceWindow, build_window
from .rewriter import rewrite_read
from .scanner import PassThrough, scan_regions
from .scoring import layout_consensus, score_read

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegionTask:
    """Everything a worker needs to realign one region."""

    region: TargetRegion
    window: ReferenceWindow
    config: RealignConfig
    known_sites: Tuple[KnownSite, ...] = ()


@dataclass(frozen=True)
class RegionResult:
    region: ReferenceRegion
    n_candidates: int
    has_reference: bool
    outputs: Tuple[Member, ...]
    decisions: Tuple[RealignmentDecision, ...]  # accepted only


@dataclass
class RealignmentResult:
    reads: List[AlignedRead]
    decisions: List[RealignmentDecision] = field(default_factory=list)
    summary: RealignmentSummary = field(default_factory=RealignmentSummary)


def realign_region(task: RegionTask) -> RegionResult:
    """Generate consensuses for one region and rewrite the reads that improve."""
    region = task.region
    if task.window.is_unknown():
        return RegionResult(region.region, 0, False, region.members, ())

    consensuses = generate_consensuses(region, task.window, task.config, task.known_sites)
    if not consensuses:
        return RegionResult(region.region, 0, True, region.members, ())

    layouts = [layout_consensus(c, task.window) for c in consensuses]
    outputs: List[Member] = []
    accepted: List[RealignmentDecision] = []
    for key, read in region.members:
        decision = score_read(read, layouts, task.window, task.config.lod_threshold)
        outputs.append((key, rewrite_read(read, decision, task.window)))
        if decision.accepted:
            accepted.append(decision)
    return RegionResult(region.region, len(consensuses), True, tuple(outputs), tuple(accepted))


def sort_by_reference_position(
    keyed_reads: Iterable[Member],
    contig_order: Optional[Sequence[str]] = None,
) -> List[Member]:
    """Total order by (contig, start, key); unplaced reads go last."""
    rank: Dict[str, int] = {c: i for i, c in enumerate(contig_order or ())}
    unknown_rank = len(rank)

    def sort_key(item: Member) -> Tuple[int, int, str, int, int]:
        key, read = item
        if not read.mapped or read.contig is None or read.start is None:
            return (1, 0, "", 0, key)
        return (0, rank.get(read.contig, unknown_rank), read.contig, read.start, key)

    return sorted(keyed_reads, key=sort_key)


def _make_task(
    region: TargetRegion,
    config: RealignConfig,
    reference: Optional[ReferenceSource],
    known_sites: Optional[KnownSitesTable],
) -> RegionTask:
    rr = region.region
    pad = max(len(r.sequence) for r in region.reads)
    window = build_window(rr.contig, rr.start - pad, rr.end + pad, region.reads, reference)
    sites: Tuple[KnownSite, ...] = ()
    if known_sites is not None and config.strategy is ConsensusStrategy.FROM_KNOWN_SITES:
        sites = known_sites.overlapping(rr.contig, rr.start, rr.end)
    return RegionTask(region=region, window=window, config=config, known_sites=sites)


def _run_tasks(tasks: List[RegionTask], workers: int, progress: bool) -> List[RegionResult]:
    if workers > 1 and len(tasks) > 1:
        chunksize = max(1, len(tasks) // (workers * 4))
        with multiprocessing.Pool(processes=workers) as pool:
            it: Iterable[RegionResult] = pool.imap(realign_region, tasks, chunksize=chunksize)
            if progress:
                it = tqdm(it, total=len(tasks), unit="region", desc="Realigning regions")
            return list(it)

    it = map(realign_region, tasks)
    if progress:
        it = tqdm(it, total=len(tasks), unit="region", desc="Realigning regions")
    return list(it)


def realign_indels(
    reads: Iterable[AlignedRead],
    config: Optional[RealignConfig] = None,
    *,
    known_sites: Optional[KnownSitesTable] = None,
    reference: Optional[ReferenceSource] = None,
    contig_order: Optional[Sequence[str]] = None,
    workers: int = 1,
    progress: bool = False,
) -> RealignmentResult:
    """Realign reads around indels.

    Parameters
    ----------
    reads:
        Input reads, in any order unless ``config.is_sorted`` is set.
    config:
        Engine settings; defaults to ``RealignConfig()``.
    known_sites:
        Known indel table, required for the known-sites strategy. Never mutated.
    reference:
        Reference sequence source. Without one, each region's reference is
        rebuilt from the reads' MD tags.
    contig_order:
        Contig order used when sorting (e.g. BAM header order).
    workers:
        Number of worker processes for region realignment.

    Returns
    -------
    RealignmentResult
        Reads in input order (same length as the input), the accepted decisions
        and a diagnostic summary.
    """
    config = (config or RealignConfig()).validate()
    if config.strategy is ConsensusStrategy.FROM_KNOWN_SITES and known_sites is None:
        raise ConfigurationError("The known-sites strategy requires a known sites table")
    if workers < 1:
        raise ConfigurationError(f"workers must be >= 1 (got {workers})")

    t0 = time.time()
    keyed: List[Member] = list(enumerate(reads))
    summary = RealignmentSummary(reads_total=len(keyed))

    if not config.is_sorted:
        logger.info("Sorting %d reads by reference position", len(keyed))
        keyed = sort_by_reference_position(keyed, contig_order)

    scan_known = known_sites if config.strategy is ConsensusStrategy.FROM_KNOWN_SITES else None
    outputs: List[Member] = []
    tasks: List[RegionTask] = []
    for event in scan_regions(keyed, config, summary, known_sites=scan_known):
        if isinstance(event, PassThrough):
            outputs.append((event.key, event.read))
        else:
            tasks.append(_make_task(event, config, reference, known_sites))
    logger.info("Found %d target regions", len(tasks))

    decisions: List[RealignmentDecision] = []
    for res in _run_tasks(tasks, workers, progress):
        summary.regions_processed += 1
        summary.region_widths.append(res.region.width)
        summary.reads_in_regions += len(res.outputs)
        summary.candidates_evaluated += res.n_candidates
        if not res.has_reference:
            summary.regions_without_reference += 1
        elif res.n_candidates == 0:
            summary.regions_without_candidates += 1
        summary.reads_realigned += len(res.decisions)
        summary.lod_scores.extend(d.log_odds for d in res.decisions)
        decisions.extend(res.decisions)
        outputs.extend(res.outputs)

    if summary.regions_without_reference:
        logger.warning(
            "%d target regions had no reference bases (no FASTA and no MD tags) and were left unchanged.",
            summary.regions_without_reference,
        )

    merged = merge_reads(len(keyed), outputs)
    logger.info(
        "Realigned %d of %d reads in %d regions (%.1fs)",
        summary.reads_realigned,
        summary.reads_total,
        summary.regions_processed,
        time.time() - t0,
    )
    return RealignmentResult(reads=merged, decisions=decisions, summary=summary)
