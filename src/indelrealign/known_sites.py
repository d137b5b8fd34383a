from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import pysam

from .validation import remap_contig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnownSite:
    """A known indel allele.

    ``position`` is the 0-based position of the first base of ``ref``, with VCF
    style alleles (a shared anchor base is allowed).
    """

    contig: str
    position: int
    ref: str
    alt: str
    site_id: str = "."

    @property
    def end(self) -> int:
        return self.position + len(self.ref)

    def trimmed(self) -> Tuple[int, str, str]:
        """Drop shared leading/trailing bases; return (position, ref, alt)."""
        ref, alt, pos = self.ref.upper(), self.alt.upper(), self.position
        while ref and alt and ref[-1] == alt[-1]:
            ref, alt = ref[:-1], alt[:-1]
        while ref and alt and ref[0] == alt[0]:
            ref, alt = ref[1:], alt[1:]
            pos += 1
        return pos, ref, alt

    @property
    def is_indel(self) -> bool:
        _, ref, alt = self.trimmed()
        return (ref == "") != (alt == "")

    @property
    def indel_length(self) -> int:
        _, ref, alt = self.trimmed()
        return abs(len(ref) - len(alt))


@dataclass(frozen=True)
class _ContigSites:
    positions: Tuple[int, ...]  # sorted 0-based positions
    sites: Tuple[KnownSite, ...]  # aligned with positions
    max_span: int


class KnownSitesTable:
    """Read-only, per-contig index of known indel sites.

    Workers only ever receive tuples taken from this table, never the table
    itself.
    """

    def __init__(self, sites: Iterable[KnownSite]) -> None:
        by_contig: Dict[str, List[KnownSite]] = {}
        for s in sites:
            by_contig.setdefault(s.contig, []).append(s)

        self._index: Dict[str, _ContigSites] = {}
        for contig, lst in by_contig.items():
            lst_sorted = sorted(lst, key=lambda x: (x.position, x.ref, x.alt))
            self._index[contig] = _ContigSites(
                positions=tuple(s.position for s in lst_sorted),
                sites=tuple(lst_sorted),
                max_span=max(len(s.ref) for s in lst_sorted),
            )

    def __len__(self) -> int:
        return sum(len(c.sites) for c in self._index.values())

    @property
    def contigs(self) -> List[str]:
        return list(self._index)

    def overlapping(self, contig: str, start: int, end: int) -> Tuple[KnownSite, ...]:
        """Sites whose reference allele overlaps [start, end)."""
        idx = self._index.get(contig)
        if idx is None:
            return ()
        left = bisect.bisect_left(idx.positions, start - idx.max_span)
        right = bisect.bisect_left(idx.positions, end)
        return tuple(s for s in idx.sites[left:right] if s.end > start)

    def has_indel_within(
        self, contig: str, start: int, end: int, max_indel_size: Optional[int] = None
    ) -> bool:
        for s in self.overlapping(contig, start, end):
            if s.is_indel and (max_indel_size is None or s.indel_length <= max_indel_size):
                return True
        return False

    def remapped(self, style: str) -> "KnownSitesTable":
        """Copy of the table with contig names converted to ``style``."""
        sites: List[KnownSite] = []
        for idx in self._index.values():
            for s in idx.sites:
                sites.append(
                    KnownSite(
                        contig=remap_contig(s.contig, style),
                        position=s.position,
                        ref=s.ref,
                        alt=s.alt,
                        site_id=s.site_id,
                    )
                )
        return KnownSitesTable(sites)


def load_known_sites(
    vcf_path: str,
    *,
    require_pass: bool = True,
    max_indel_size: Optional[int] = None,
) -> Tuple[KnownSitesTable, Dict[str, int]]:
    """Load known indels from a VCF.

    Multi-allelic records contribute one site per indel ALT. SNVs, symbolic and
    complex alleles are skipped.

    Returns
    -------
    table:
        Known sites index.
    stats:
        Simple counters about records kept/skipped.
    """
    stats: Dict[str, int] = {
        "records_total": 0,
        "records_pass": 0,
        "sites_kept": 0,
        "sites_skipped_filter": 0,
        "sites_skipped_non_indel": 0,
        "sites_skipped_size": 0,
    }

    sites: List[KnownSite] = []
    with pysam.VariantFile(vcf_path) as vcf:
        # VCF.fetch() requires an index for bgzipped VCFs; fall back to sequential iteration.
        try:
            iterator = vcf.fetch()
        except (ValueError, OSError):
            iterator = vcf

        for rec in iterator:
            stats["records_total"] += 1

            if require_pass:
                filt = list(rec.filter.keys())
                if len(filt) > 0 and not (len(filt) == 1 and filt[0] == "PASS"):
                    stats["sites_skipped_filter"] += 1
                    continue
            stats["records_pass"] += 1

            ref = rec.ref
            for alt in rec.alts or ():
                if alt is None or alt.startswith("<") or "[" in alt or "]" in alt or alt == "*":
                    stats["sites_skipped_non_indel"] += 1
                    continue
                site = KnownSite(
                    contig=str(rec.contig),
                    position=int(rec.pos) - 1,  # VCF is 1-based
                    ref=ref.upper(),
                    alt=alt.upper(),
                    site_id=rec.id if rec.id is not None else f"{rec.contig}:{rec.pos}:{ref}:{alt}",
                )
                if not site.is_indel:
                    stats["sites_skipped_non_indel"] += 1
                    continue
                if max_indel_size is not None and site.indel_length > max_indel_size:
                    stats["sites_skipped_size"] += 1
                    continue
                sites.append(site)

    stats["sites_kept"] = len(sites)
    if not sites:
        logger.warning("No usable known indel sites were found in %s.", vcf_path)
    else:
        logger.info("Loaded %d known indel sites from %s", len(sites), vcf_path)
    return KnownSitesTable(sites), stats
