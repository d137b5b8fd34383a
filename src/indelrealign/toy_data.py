from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import pysam

from .reference import ReferenceWindow, md_tag_for
from .utils import ensure_outdir, write_json

TOY_CONTIG = "chr1"
TOY_LENGTH = 400
READ_LENGTH = 50

INSERTION_POS = 150  # inserted bases go before this 0-based position
INSERTION_LENGTH = 3
DELETION_POS = 300
DELETION_LENGTH = 2


def toy_reference(length: int = TOY_LENGTH, seed: int = 7) -> str:
    """Random sequence where no base equals the base one or three positions back.

    Shifting any stretch by one or three bases therefore mismatches at every
    position, which makes misaligned reads easy to recognise.
    """
    rng = random.Random(seed)
    seq: List[str] = []
    for i in range(length):
        banned = set()
        if i >= 1:
            banned.add(seq[i - 1])
        if i >= 3:
            banned.add(seq[i - 3])
        seq.append(rng.choice([b for b in "ACGT" if b not in banned]))
    return "".join(seq)


def toy_insertion(ref_seq: str, pos: int = INSERTION_POS, length: int = INSERTION_LENGTH) -> str:
    """Homopolymer insertion whose base differs from both flanking reference bases."""
    base = next(b for b in "ACGT" if b not in (ref_seq[pos - 1], ref_seq[pos]))
    return base * length


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _make_read(
    name: str,
    start0: int,
    seq: str,
    cigar: Sequence[Tuple[int, int]],
    window: ReferenceWindow,
    mapq: int = 60,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = 0
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = list(cigar)
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    a.set_tag("MD", md_tag_for(seq, cigar, start0, window), value_type="Z")
    return a


def _toy_reads(ref_seq: str, window: ReferenceWindow) -> List[pysam.AlignedSegment]:
    reads: List[pysam.AlignedSegment] = []
    ins = toy_insertion(ref_seq)
    k = len(ins)

    for start0 in list(range(20, 81, 6)) + list(range(196, 251, 6)) + list(range(316, 347, 6)):
        seq = ref_seq[start0 : start0 + READ_LENGTH]
        reads.append(_make_read(f"ref_{start0}", start0, seq, [(0, READ_LENGTH)], window))

    # insertion carriers aligned with the gap
    for h in range(110, 129, 2):
        left = INSERTION_POS - h
        seq = ref_seq[h:INSERTION_POS] + ins + ref_seq[INSERTION_POS : h + READ_LENGTH - k]
        cigar = [(0, left), (1, k), (0, READ_LENGTH - left - k)]
        reads.append(_make_read(f"ins_{h}", h, seq, cigar, window))

    # insertion carriers the aligner placed without a gap
    for s in (140, 142, 144):
        seq = ref_seq[s:INSERTION_POS] + ins + ref_seq[INSERTION_POS : s + READ_LENGTH - k]
        reads.append(_make_read(f"ins_mis_{s}", s, seq, [(0, READ_LENGTH)], window))

    # deletion carriers aligned with the gap
    d = DELETION_LENGTH
    for h in range(262, 281, 3):
        left = DELETION_POS - h
        seq = ref_seq[h:DELETION_POS] + ref_seq[DELETION_POS + d : h + READ_LENGTH + d]
        cigar = [(0, left), (2, d), (0, READ_LENGTH - left)]
        reads.append(_make_read(f"del_{h}", h, seq, cigar, window))

    # deletion carriers the aligner placed without a gap
    for s in (290, 293):
        seq = ref_seq[s:DELETION_POS] + ref_seq[DELETION_POS + d : s + READ_LENGTH + d]
        reads.append(_make_read(f"del_mis_{s}", s, seq, [(0, READ_LENGTH)], window))

    reads.sort(key=lambda r: (r.reference_start, r.query_name))
    return reads


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a tiny reference, BAM, and known-indel VCF suitable for quick demos/tests.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - reads.bam (+ .bai), coordinate sorted, with MD tags; a 3 bp insertion
      and a 2 bp deletion are each carried by correctly gapped reads plus a few
      reads aligned without the gap
    - known_indels.vcf.gz (+ .tbi) with both indels

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    contig = TOY_CONTIG
    ref_seq = toy_reference()
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, contig, ref_seq)
    pysam.faidx(str(ref_fa))

    window = ReferenceWindow(contig=contig, start=0, sequence=ref_seq)

    bam_path = outdir_p / "reads.bam"
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": contig, "LN": len(ref_seq)}],
    }
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in _toy_reads(ref_seq, window):
            bam.write(r)
    pysam.index(str(bam_path))

    # Known indels, VCF-style with an anchor base
    ins = toy_insertion(ref_seq)
    known = [
        (INSERTION_POS - 1, ref_seq[INSERTION_POS - 1], ref_seq[INSERTION_POS - 1] + ins),
        (
            DELETION_POS - 1,
            ref_seq[DELETION_POS - 1 : DELETION_POS + DELETION_LENGTH],
            ref_seq[DELETION_POS - 1],
        ),
    ]

    vcf_path = outdir_p / "known_indels.vcf"
    vcf_header = pysam.VariantHeader()
    vcf_header.add_meta("fileformat", "VCFv4.2")
    vcf_header.contigs.add(contig, length=len(ref_seq))

    with pysam.VariantFile(str(vcf_path), "w", header=vcf_header) as vcf:
        for pos0, ref, alt in known:
            rec = vcf.new_record(
                contig=contig,
                start=pos0,
                stop=pos0 + len(ref),
                alleles=(ref, alt),
                id=f"{contig}:{pos0 + 1}:{ref}:{alt}",
                qual=60,
                filter="PASS",
            )
            vcf.write(rec)

    vcf_gz = outdir_p / "known_indels.vcf.gz"
    pysam.tabix_compress(str(vcf_path), str(vcf_gz), force=True)
    pysam.tabix_index(str(vcf_gz), preset="vcf", force=True)

    summary = {
        "ref_fa": str(ref_fa),
        "reads_bam": str(bam_path),
        "known_vcf": str(vcf_gz),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
