import pytest

from indelrealign.cigar import MalformedAlignmentError, parse_cigar
from indelrealign.models import AlignedRead
from indelrealign.reference import (
    DictReference,
    ReferenceWindow,
    build_window,
    md_tag_for,
    parse_md,
    reference_from_md,
    window_from_reads,
)


def make_read(seq: str, cigar: str, md: str, start: int = 0) -> AlignedRead:
    return AlignedRead(
        read_name="r1",
        contig="chr1",
        start=start,
        cigar=parse_cigar(cigar),
        sequence=seq,
        md=md,
    )


def test_parse_md():
    assert parse_md("3T4") == [3, "T", 4]
    assert parse_md("4^GG4") == [4, "^GG", 4]
    with pytest.raises(MalformedAlignmentError):
        parse_md("3T4!")


def test_reference_from_md_mismatch():
    assert reference_from_md(make_read("ACGAACGT", "8M", "3T4")) == "ACGTACGT"


def test_reference_from_md_deletion():
    assert reference_from_md(make_read("ACGTACGT", "4M2D4M", "4^GG4")) == "ACGTGGACGT"


def test_reference_from_md_insertion_and_soft_clip():
    assert reference_from_md(make_read("ACGTTTAC", "4M2I2M", "6")) == "ACGTAC"
    assert reference_from_md(make_read("NNACGT", "2S4M", "4")) == "ACGT"


def test_reference_from_md_length_mismatch():
    with pytest.raises(MalformedAlignmentError):
        reference_from_md(make_read("ACGTACGT", "8M", "7"))


def test_md_tag_for():
    window = ReferenceWindow("chr1", 100, "ACGTACGT")
    assert md_tag_for("ACGAACGT", ((0, 8),), 100, window) == "3T4"

    window = ReferenceWindow("chr1", 0, "ACGTGGACGT")
    assert md_tag_for("ACGTACGT", parse_cigar("4M2D4M"), 0, window) == "4^GG4"
    assert md_tag_for("ACGTTTAC", parse_cigar("4M2I2M"), 0, ReferenceWindow("chr1", 0, "ACGTAC")) == "6"


def test_window_bases_pad_with_n():
    window = ReferenceWindow("chr1", 10, "ACGT")
    assert window.bases(8, 12) == "NNAC"
    assert window.bases(13, 16) == "TNN"
    assert window.bases(20, 22) == "NN"
    assert window.end == 14


def test_window_from_reads_fills_covered_bases_only():
    reads = [
        make_read("ACGA", "4M", "3T0", start=2),
        make_read("GGCC", "4M", "4", start=8),
    ]
    window = window_from_reads("chr1", 0, 12, reads)
    assert window.sequence == "NNACGTNNGGCC"
    assert not window.is_unknown()
    assert window_from_reads("chr1", 0, 5, []).is_unknown()


def test_build_window_prefers_reference_source():
    ref = DictReference({"chr1": "acgtacgtacgt"})
    reads = [make_read("TTTT", "4M", "4", start=0)]
    window = build_window("chr1", -3, 6, reads, ref)
    assert window.start == 0
    assert window.sequence == "ACGTAC"

    # contig missing from the reference: fall back to MD tags
    window = build_window("chr2", 0, 4, [make_read("TTTT", "4M", "4")], ref)
    assert window.sequence == "TTTT"
