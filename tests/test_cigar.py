import pytest

from indelrealign.cigar import (
    CIGAR_DEL,
    CIGAR_INS,
    MalformedAlignmentError,
    cigar_to_string,
    indel_events,
    merge_adjacent,
    parse_cigar,
    query_length,
    reference_length,
    split_clips,
    validate_alignment,
)
from indelrealign.models import AlignedRead


def make_read(seq: str, cigar: str, start: int = 100) -> AlignedRead:
    return AlignedRead(
        read_name="r1",
        contig="chr1",
        start=start,
        cigar=parse_cigar(cigar),
        sequence=seq,
        qualities=tuple([40] * len(seq)),
    )


def test_parse_and_format_cigar():
    assert parse_cigar("10M3I37M") == ((0, 10), (1, 3), (0, 37))
    assert cigar_to_string(((4, 5), (0, 10), (2, 2), (0, 5))) == "5S10M2D5M"
    assert parse_cigar("*") == ()
    with pytest.raises(MalformedAlignmentError):
        parse_cigar("10Q")


def test_lengths():
    cigar = parse_cigar("5S10M2D5M3I2S")
    assert reference_length(cigar) == 17
    assert query_length(cigar) == 25


def test_split_clips():
    lead, core, trail = split_clips(parse_cigar("3H5S10M2S"))
    assert lead == ((5, 3), (4, 5))
    assert core == ((0, 10),)
    assert trail == ((4, 2),)


def test_indel_events_insertion_and_deletion():
    ins = indel_events(make_read("ACGTTTACGT", "4M2I4M"))
    assert len(ins) == 1
    assert ins[0].kind == CIGAR_INS
    assert ins[0].ref_pos == 104
    assert ins[0].query_pos == 4
    assert ins[0].inserted == "TT"
    assert ins[0].flanked

    dels = indel_events(make_read("ACGTACGT", "4M2D4M"))
    assert [(e.kind, e.ref_pos, e.length) for e in dels] == [(CIGAR_DEL, 104, 2)]


def test_indel_at_read_edge_is_not_flanked():
    events = indel_events(make_read("AAACGTACGT", "2I8M"))
    assert len(events) == 1
    assert not events[0].flanked


def test_validate_alignment_rejects_inconsistent_reads():
    validate_alignment(make_read("ACGTACGT", "8M"))
    with pytest.raises(MalformedAlignmentError):
        validate_alignment(make_read("ACGTACG", "8M"))
    with pytest.raises(MalformedAlignmentError):
        validate_alignment(make_read("ACGTACGT", "8I"))
    with pytest.raises(MalformedAlignmentError):
        validate_alignment(
            AlignedRead(read_name="r", contig="chr1", start=5, cigar=(), sequence="ACGT")
        )


def test_merge_adjacent():
    assert merge_adjacent(((0, 3), (0, 0), (0, 2), (1, 1))) == ((0, 5), (1, 1))
