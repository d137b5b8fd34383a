from typing import Optional, Tuple

from indelrealign.models import AlignedRead, Consensus
from indelrealign.reference import ReferenceWindow
from indelrealign.scoring import (
    DEFAULT_MISMATCH_PENALTY,
    best_placement,
    layout_consensus,
    mismatch_penalties,
    original_cost,
    original_phred,
    score_read,
)
from indelrealign.toy_data import toy_insertion, toy_reference

REF = toy_reference()
INS = toy_insertion(REF)
WINDOW = ReferenceWindow("chr1", 0, REF)
CONSENSUS = Consensus("chr1", 150, 150, INS, source="reads", support=10)


def make_read(
    start: int,
    seq: str,
    cigar: Optional[Tuple[Tuple[int, int], ...]] = None,
    quals: Optional[Tuple[int, ...]] = None,
) -> AlignedRead:
    return AlignedRead(
        read_name="r1",
        contig="chr1",
        start=start,
        cigar=cigar or ((0, len(seq)),),
        sequence=seq,
        qualities=quals if quals is not None else tuple([40] * len(seq)),
    )


def misaligned_read(start: int = 140) -> AlignedRead:
    seq = REF[start:150] + INS + REF[150 : start + 50 - len(INS)]
    return make_read(start, seq)


def _other_base(b: str) -> str:
    return "A" if b != "A" else "C"


def test_original_phred_counts_mismatch_qualities():
    seq = REF[10:30]
    assert original_phred(make_read(10, seq), WINDOW) == 0

    mutated = seq[:5] + _other_base(seq[5]) + seq[6:]
    quals = tuple([40] * 5 + [30] + [40] * 14)
    read = make_read(10, mutated, quals=quals)
    assert original_phred(read, WINDOW) == 30
    assert original_cost(read, WINDOW) == 3.0


def test_unknown_reference_bases_never_mismatch():
    window = ReferenceWindow("chr1", 0, "NNNN" + REF[4:20])
    read = make_read(0, "ACGT" + REF[4:20])
    assert original_phred(read, window) == 0


def test_default_penalty_without_qualities():
    read = AlignedRead("r", "chr1", 0, ((0, 4),), "ACGT")
    assert list(mismatch_penalties(read)) == [DEFAULT_MISMATCH_PENALTY] * 4


def test_layout_requires_flanking_bases():
    assert layout_consensus(CONSENSUS, WINDOW) is not None
    edge = Consensus("chr1", 0, 0, "AC", source="reads")
    assert layout_consensus(edge, WINDOW) is None


def test_best_placement_recovers_insertion():
    layout = layout_consensus(CONSENSUS, WINDOW)
    assert layout is not None
    p = best_placement(misaligned_read(140), layout)
    assert p is not None
    assert p.start == 140
    assert p.cigar == ((0, 10), (1, 3), (0, 37))
    assert p.phred == 0


def test_best_placement_keeps_soft_clips():
    seq = "GGGGG" + REF[140:150] + INS + REF[150:182]
    read = make_read(140, seq, cigar=((4, 5), (0, 45)))
    layout = layout_consensus(CONSENSUS, WINDOW)
    assert layout is not None
    p = best_placement(read, layout)
    assert p is not None
    assert p.start == 140
    assert p.cigar == ((4, 5), (0, 10), (1, 3), (0, 32))


def test_score_read_accepts_large_improvement():
    layout = layout_consensus(CONSENSUS, WINDOW)
    read = misaligned_read(140)
    d = score_read(read, [layout], WINDOW, lod_threshold=5.0)
    assert d.accepted
    assert d.consensus == CONSENSUS
    assert d.consensus_index == 0
    assert d.new_cost == 0.0
    assert d.log_odds == d.original_cost > 5.0
    assert d.new_start == 140


def test_score_read_rejects_reads_already_correct():
    layout = layout_consensus(CONSENSUS, WINDOW)
    seq = REF[130:150] + INS + REF[150:177]
    read = make_read(130, seq, cigar=((0, 20), (1, 3), (0, 27)))
    d = score_read(read, [layout], WINDOW, lod_threshold=0.0)
    assert not d.accepted
    assert d.original_cost == 0.0
    assert d.new_start is None


def test_marginal_read_depends_on_threshold():
    # insertion sits in the low-quality tail of the read
    seq = REF[104:150] + INS + REF[150]
    quals = tuple([40] * 46 + [2] * 4)
    read = make_read(104, seq, quals=quals)
    layout = layout_consensus(CONSENSUS, WINDOW)

    lenient = score_read(read, [layout], WINDOW, lod_threshold=0.0)
    assert lenient.accepted
    assert lenient.new_cigar == ((0, 46), (1, 3), (0, 1))
    assert 0.0 < lenient.log_odds < 5.0

    strict = score_read(read, [layout], WINDOW, lod_threshold=5.0)
    assert not strict.accepted
    assert strict.log_odds == lenient.log_odds


def test_spliced_reads_are_never_moved():
    layout = layout_consensus(CONSENSUS, WINDOW)
    seq = REF[120:150] + REF[160:180]
    read = make_read(120, seq, cigar=((0, 30), (3, 10), (0, 20)))
    d = score_read(read, [layout], WINDOW, lod_threshold=0.0)
    assert not d.accepted


def test_placements_never_cover_unknown_bases():
    known_from_145 = ReferenceWindow("chr1", 0, "N" * 145 + REF[145:])
    layout = layout_consensus(CONSENSUS, known_from_145)
    assert layout is not None
    p = best_placement(misaligned_read(140), layout)
    assert p is not None
    assert p.start >= 145
    assert p.phred > 0

    known_from_150 = ReferenceWindow("chr1", 0, "N" * 150 + REF[150:])
    layout = layout_consensus(CONSENSUS, known_from_150)
    assert layout is not None
    assert best_placement(misaligned_read(140), layout) is None
