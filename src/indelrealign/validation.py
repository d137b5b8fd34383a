from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List

if TYPE_CHECKING:
    from .known_sites import KnownSitesTable

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"


def check_fasta_index(fasta_path: str | Path) -> None:
    """Ensure a FASTA has a .fai index; raise ValueError with fix instructions."""
    fa = Path(fasta_path)
    fai = fa.with_suffix(fa.suffix + ".fai")
    if fai.exists():
        return
    raise ValueError("FASTA is not indexed. Run: samtools faidx " + str(fa))


def check_vcf_index(vcf_path: str | Path) -> None:
    """Ensure a bgzipped VCF has a tabix index; raise ValueError with fix instructions."""
    vcf = Path(vcf_path)
    if vcf.suffixes[-2:] == [".vcf", ".gz"]:
        tbi = vcf.with_suffix(vcf.suffix + ".tbi")
        if not tbi.exists():
            raise ValueError(
                "VCF is not bgzip/tabix indexed. Run: bgzip -c "
                + str(vcf.with_suffix(""))
                + " > "
                + str(vcf)
                + "; tabix -p vcf "
                + str(vcf)
            )
    elif vcf.suffix == ".vcf":
        logger.info(
            "VCF is uncompressed (.vcf). This is supported but slower; "
            "consider bgzip+tabix for large files."
        )


def detect_contig_style(contigs: Iterable[str]) -> str:
    """Infer contig style: 'ucsc' if most contigs start with 'chr', else 'ensembl'."""
    names = [c for c in contigs if c]
    if not names:
        return "unknown"
    chr_like = [c for c in names if c.startswith(_UCSC_PREFIX)]
    if len(chr_like) >= max(1, int(0.5 * len(names))):
        return "ucsc"
    return "ensembl"


def remap_contig(contig: str, style: str) -> str:
    """Remap a contig name to the requested style (ucsc or ensembl)."""
    if style == "ucsc":
        if contig.startswith(_UCSC_PREFIX):
            return contig
        if contig == "MT":
            return "chrM"
        return f"{_UCSC_PREFIX}{contig}"
    if style == "ensembl":
        if contig.startswith(_UCSC_PREFIX):
            core = contig[len(_UCSC_PREFIX) :]
            if core == "M":
                return "MT"
            return core
        return contig
    return contig


def resolve_known_sites_style(
    table: "KnownSitesTable",
    bam_contigs: List[str],
    requested: str = "auto",
) -> "KnownSitesTable":
    """Return the known-sites table with contig names matching the BAM header."""
    known_style = detect_contig_style(table.contigs)
    bam_style = detect_contig_style(bam_contigs)
    target_style = requested
    if requested == "auto":
        target_style = bam_style if bam_style != "unknown" else known_style

    if known_style != target_style and known_style != "unknown":
        logger.warning(
            "Contig style mismatch detected (known sites=%s, BAM=%s). Remapping known sites to %s style.",
            known_style,
            bam_style,
            target_style,
        )
        table = table.remapped(target_style)

    if len(table) and not set(table.contigs).intersection(bam_contigs):
        raise ValueError(
            "Contig mismatch between BAM and known-sites VCF (e.g., chr1 vs 1). "
            "Use --contig-style {ucsc,ensembl,auto} to override."
        )
    return table
