from __future__ import annotations

import dataclasses
from typing import Optional

from .cigar import cigar_to_string
from .models import AlignedRead, RealignmentDecision
from .reference import ReferenceWindow, md_tag_for


def rewrite_read(
    read: AlignedRead,
    decision: RealignmentDecision,
    window: Optional[ReferenceWindow] = None,
) -> AlignedRead:
    """Apply an accepted decision; otherwise return ``read`` itself.

    The rewritten read keeps every non-alignment field. Its MD tag is recomputed
    against ``window`` when the read had one, and the original position and
    CIGAR are kept in ``old_start`` / ``old_cigar``.
    """
    if not decision.accepted:
        return read
    assert decision.new_start is not None and decision.new_cigar is not None

    md = read.md
    if md is not None and window is not None:
        md = md_tag_for(read.sequence, decision.new_cigar, decision.new_start, window)

    return dataclasses.replace(
        read,
        start=decision.new_start,
        cigar=decision.new_cigar,
        md=md,
        old_start=read.start,
        old_cigar=cigar_to_string(read.cigar),
    )
