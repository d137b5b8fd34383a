from __future__ import annotations

import dataclasses
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pysam
from tqdm import tqdm

from . import __version__
from .cigar import CIGAR_DEL, CIGAR_INS, cigar_to_string
from .config import RealignConfig
from .engine import RealignmentResult, realign_indels
from .known_sites import KnownSitesTable
from .models import AlignedRead, RealignmentDecision
from .reference import FastaReference
from .utils import ensure_outdir, open_textmaybe_gzip, write_json

logger = logging.getLogger(__name__)


def read_from_segment(seg: pysam.AlignedSegment) -> AlignedRead:
    """Engine view of a pysam record. The record itself is not modified."""
    mapped = not seg.is_unmapped and seg.reference_id >= 0
    quals = seg.query_qualities
    qualities = None
    if quals is not None and len(quals) > 0 and not all(q == 0xFF for q in quals):
        qualities = tuple(int(q) for q in quals)
    return AlignedRead(
        read_name=seg.query_name or "",
        contig=seg.reference_name if mapped else None,
        start=seg.reference_start if mapped and seg.reference_start >= 0 else None,
        cigar=tuple((int(op), int(n)) for op, n in (seg.cigartuples or ())),
        sequence=seg.query_sequence or "",
        qualities=qualities,
        mapped=mapped,
        flag=int(seg.flag),
        mapq=int(seg.mapping_quality),
        md=str(seg.get_tag("MD")) if seg.has_tag("MD") else None,
    )


def _edit_distance(md: str, cigar: Iterable[tuple]) -> int:
    mismatches = 0
    in_deletion = False
    for ch in md:
        if ch == "^":
            in_deletion = True
        elif ch.isdigit():
            in_deletion = False
        elif not in_deletion:
            mismatches += 1
    return mismatches + sum(n for op, n in cigar if op in (CIGAR_INS, CIGAR_DEL))


def apply_read_to_segment(seg: pysam.AlignedSegment, read: AlignedRead) -> pysam.AlignedSegment:
    """Copy rewritten geometry onto the original record, keeping all other fields.

    The original position (1-based) and CIGAR go into the standard OP/OC tags.
    Mate fields of other records are handled by ``update_mate_fields``.
    """
    if read.old_start is None or read.start is None:
        return seg
    seg.reference_start = read.start
    seg.cigartuples = list(read.cigar)
    if read.md is not None:
        seg.set_tag("MD", read.md, value_type="Z")
        if seg.has_tag("NM"):
            seg.set_tag("NM", _edit_distance(read.md, read.cigar), value_type="i")
    seg.set_tag("OC", read.old_cigar, value_type="Z")
    seg.set_tag("OP", read.old_start + 1, value_type="i")
    return seg


def update_mate_fields(segments: List[pysam.AlignedSegment], reads: List[AlignedRead]) -> int:
    """Point PNEXT (and MC, when present) at the new position of realigned mates.

    Only primary alignments are treated as mates. TLEN is left as written by the aligner.
    Returns the number of records updated.
    """
    moved: Dict[tuple, pysam.AlignedSegment] = {}
    for seg, read in zip(segments, reads):
        if read.old_start is None or not seg.is_paired:
            continue
        if seg.is_secondary or seg.is_supplementary:
            continue
        moved[(seg.query_name, seg.is_read1)] = seg

    n = 0
    if not moved:
        return n
    for seg in segments:
        if not seg.is_paired or seg.mate_is_unmapped:
            continue
        mate = moved.get((seg.query_name, seg.is_read2))
        if mate is None or mate.reference_id != seg.next_reference_id:
            continue
        seg.next_reference_start = mate.reference_start
        if seg.has_tag("MC"):
            seg.set_tag("MC", mate.cigarstring, value_type="Z")
        n += 1
    return n


def _output_header(header: Dict[str, Any]) -> Dict[str, Any]:
    header = dict(header)
    programs = list(header.get("PG", []))
    ids = {pg.get("ID") for pg in programs}
    pg_id = "indelrealign"
    n = 1
    while pg_id in ids:
        pg_id = f"indelrealign.{n}"
        n += 1
    pg: Dict[str, Any] = {"ID": pg_id, "PN": "indelrealign", "VN": __version__}
    if programs:
        pg["PP"] = programs[-1].get("ID")
    programs.append(pg)
    header["PG"] = programs
    return header


def _coordinate_key(item: tuple) -> tuple:
    idx, seg = item
    ref_id = seg.reference_id if seg.reference_id >= 0 else 1 << 30
    return (ref_id, seg.reference_start, idx)


def _write_decisions_tsv(path: str | Path, decisions: List[RealignmentDecision]) -> None:
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write(
            "\t".join(
                [
                    "qname",
                    "chrom",
                    "new_pos1",
                    "new_cigar",
                    "consensus",
                    "original_cost",
                    "new_cost",
                    "log_odds",
                ]
            )
            + "\n"
        )
        for d in decisions:
            assert d.consensus is not None and d.new_start is not None and d.new_cigar is not None
            c = d.consensus
            fh.write(
                f"{d.read_name}\t{c.contig}\t{d.new_start + 1}\t{cigar_to_string(d.new_cigar)}\t"
                f"{c.start}:{c.end}:{c.replacement or '-'}\t{d.original_cost:.1f}\t"
                f"{(d.new_cost or 0.0):.1f}\t{d.log_odds:.1f}\n"
            )


def realign_bam(
    *,
    bam_path: str,
    out_bam: str,
    outdir: str | Path,
    config: Optional[RealignConfig] = None,
    known_sites: Optional[KnownSitesTable] = None,
    ref_fasta: Optional[str] = None,
    workers: int = 1,
    progress: bool = True,
) -> Dict[str, object]:
    """Realign a BAM, write the output BAM plus summary.json, and return the summary dict.

    A coordinate-sorted input (``@HD SO:coordinate``) is treated as sorted and
    the output is re-sorted and indexed, since realigned reads may move.
    Other inputs are written back in their original order.
    """
    t0 = time.time()
    outdir_path = ensure_outdir(outdir)
    config = config or RealignConfig()

    with pysam.AlignmentFile(bam_path, "rb", check_sq=False) as bam:
        header = bam.header.to_dict()
        contigs = list(bam.header.references)
        it: Iterable[pysam.AlignedSegment] = bam.fetch(until_eof=True)
        if progress:
            it = tqdm(it, unit="read", desc="Loading reads")
        segments = list(it)

    sort_order = header.get("HD", {}).get("SO", "unknown")
    coordinate_sorted = sort_order == "coordinate"
    if coordinate_sorted and not config.is_sorted:
        config = dataclasses.replace(config, is_sorted=True)
    logger.info("Loaded %d records from %s (SO:%s)", len(segments), bam_path, sort_order)

    reference = FastaReference(ref_fasta) if ref_fasta is not None else None
    try:
        result: RealignmentResult = realign_indels(
            (read_from_segment(s) for s in segments),
            config,
            known_sites=known_sites,
            reference=reference,
            contig_order=contigs,
            workers=workers,
            progress=progress,
        )
    finally:
        if reference is not None:
            reference.close()

    for seg, read in zip(segments, result.reads):
        apply_read_to_segment(seg, read)
    n_mates = update_mate_fields(segments, result.reads)
    logger.info("Updated mate position on %d records", n_mates)

    ordered = list(enumerate(segments))
    if coordinate_sorted:
        ordered.sort(key=_coordinate_key)

    with pysam.AlignmentFile(str(out_bam), "wb", header=_output_header(header)) as out:
        for _, seg in ordered:
            out.write(seg)
    if coordinate_sorted:
        pysam.index(str(out_bam))

    decisions_tsv = outdir_path / "realignments.tsv.gz"
    _write_decisions_tsv(decisions_tsv, result.decisions)

    summary: Dict[str, object] = {
        "bam_path": bam_path,
        "out_bam": str(out_bam),
        "ref_fasta": ref_fasta,
        "sort_order": sort_order,
        "strategy": config.strategy.value,
        "lod_threshold": float(config.lod_threshold),
        "max_indel_size": int(config.max_indel_size),
        "max_consensus_number": int(config.max_consensus_number),
        "max_target_size": int(config.max_target_size),
        "known_sites": len(known_sites) if known_sites is not None else None,
        "workers": int(workers),
        "realignments_tsv_gz": str(decisions_tsv),
        "runtime_seconds": float(time.time() - t0),
    }
    summary.update(result.summary.to_dict())

    write_json(outdir_path / "summary.json", summary)
    return summary
