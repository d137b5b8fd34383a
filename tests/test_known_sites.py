from pathlib import Path

import pysam
import pytest

from indelrealign.known_sites import KnownSite, KnownSitesTable, load_known_sites
from indelrealign.validation import detect_contig_style, remap_contig, resolve_known_sites_style


def _make_known_vcf(path: Path, contig: str = "chr1") -> Path:
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    header.filters.add("LowQual", None, None, "Low quality")
    header.contigs.add(contig, length=400)

    records = [
        (99, ("A", "AGGG"), "PASS"),  # insertion
        (199, ("CTT", "C"), "PASS"),  # deletion
        (249, ("A", "G"), "PASS"),  # SNV
        (299, ("G", "GA"), "LowQual"),
    ]
    vcf_path = path / "known.vcf"
    with pysam.VariantFile(str(vcf_path), "w", header=header) as vcf:
        for pos0, alleles, filt in records:
            rec = vcf.new_record(
                contig=contig,
                start=pos0,
                stop=pos0 + len(alleles[0]),
                alleles=alleles,
                qual=60,
                filter=filt,
            )
            vcf.write(rec)

    vcf_gz = path / "known.vcf.gz"
    pysam.tabix_compress(str(vcf_path), str(vcf_gz), force=True)
    pysam.tabix_index(str(vcf_gz), preset="vcf", force=True)
    return vcf_gz


def test_known_site_trimming():
    ins = KnownSite("chr1", 99, "A", "AGGG")
    assert ins.trimmed() == (100, "", "GGG")
    assert ins.is_indel and ins.indel_length == 3

    dele = KnownSite("chr1", 199, "CTT", "C")
    assert dele.trimmed() == (200, "TT", "")
    assert dele.indel_length == 2

    assert not KnownSite("chr1", 10, "A", "G").is_indel
    assert not KnownSite("chr1", 10, "AT", "GCC").is_indel


def test_load_known_sites(tmp_path: Path):
    vcf_gz = _make_known_vcf(tmp_path)
    table, stats = load_known_sites(str(vcf_gz))
    assert stats["records_total"] == 4
    assert stats["sites_kept"] == 2
    assert stats["sites_skipped_filter"] == 1
    assert stats["sites_skipped_non_indel"] == 1
    assert len(table) == 2
    assert table.contigs == ["chr1"]

    table, stats = load_known_sites(str(vcf_gz), require_pass=False, max_indel_size=2)
    assert stats["sites_skipped_size"] == 1
    assert sorted(s.position for s in table.overlapping("chr1", 0, 400)) == [199, 299]


def test_overlap_queries():
    table = KnownSitesTable(
        [
            KnownSite("chr1", 99, "A", "AGGG"),
            KnownSite("chr1", 199, "CTTTT", "C"),
            KnownSite("chr2", 5, "A", "AT"),
        ]
    )
    assert [s.position for s in table.overlapping("chr1", 200, 202)] == [199]
    assert table.overlapping("chr1", 101, 150) == ()
    assert table.overlapping("chr3", 0, 1000) == ()
    assert table.has_indel_within("chr1", 90, 110)
    assert not table.has_indel_within("chr1", 90, 110, max_indel_size=2)


def test_contig_style_remapping():
    assert detect_contig_style(["chr1", "chr2"]) == "ucsc"
    assert detect_contig_style(["1", "2", "MT"]) == "ensembl"
    assert remap_contig("MT", "ucsc") == "chrM"
    assert remap_contig("chr7", "ensembl") == "7"

    table = KnownSitesTable([KnownSite("1", 99, "A", "AGGG")])
    resolved = resolve_known_sites_style(table, ["chr1", "chr2"], "auto")
    assert resolved.contigs == ["chr1"]

    with pytest.raises(ValueError, match="Contig mismatch"):
        resolve_known_sites_style(table, ["chr1", "chr2"], "ensembl")
