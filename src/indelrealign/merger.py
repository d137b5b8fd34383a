from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

from .models import AlignedRead


class CardinalityError(RuntimeError):
    """Raised when the engine output does not map one-to-one onto its input."""


def merge_reads(n_input: int, outputs: Iterable[Tuple[int, AlignedRead]]) -> List[AlignedRead]:
    """Recombine keyed reads from all regions and pass-throughs into input order.

    Every key in ``range(n_input)`` must appear exactly once.
    """
    slots: List[Optional[AlignedRead]] = [None] * n_input
    for key, read in outputs:
        if not 0 <= key < n_input:
            raise CardinalityError(f"Read key {key} out of range for {n_input} input reads")
        if slots[key] is not None:
            raise CardinalityError(f"Read key {key} ({read.read_name}) emitted twice")
        slots[key] = read

    missing = [i for i, r in enumerate(slots) if r is None]
    if missing:
        raise CardinalityError(
            f"{len(missing)} input reads were dropped (first missing key: {missing[0]})"
        )
    return [r for r in slots if r is not None]
