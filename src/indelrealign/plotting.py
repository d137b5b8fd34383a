from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def _plot_binned(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    xlabel: str,
    ylabel: str,
    title: str,
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    widths = [bin_edges[i + 1] - bin_edges[i] for i in range(len(counts))]
    centers = [bin_edges[i] + widths[i] / 2.0 for i in range(len(counts))]

    plt.figure()
    if counts:
        plt.bar(centers, counts, width=widths, align="center")
    else:
        plt.text(0.5, 0.5, "no data", ha="center", va="center", transform=plt.gca().transAxes)
    plt.xlabel(xlabel)
    plt.ylabel(ylabel)
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_outcome_counts(
    *,
    counts: Dict[str, int],
    out_png: str | Path,
    title: str = "Read outcomes",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    realigned = int(counts.get("reads_realigned", 0))
    in_regions = int(counts.get("reads_in_regions", 0))
    labels = ["Realigned", "Kept (in region)", "Outside regions", "Unmapped", "Malformed"]
    values = [
        realigned,
        in_regions - realigned,
        int(counts.get("reads_total", 0))
        - in_regions
        - int(counts.get("reads_unmapped", 0))
        - int(counts.get("reads_malformed", 0)),
        int(counts.get("reads_unmapped", 0)),
        int(counts.get("reads_malformed", 0)),
    ]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Read count")
    plt.title(title)
    plt.xticks(rotation=15, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_lod_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    title: str = "Log-odds of accepted realignments",
) -> None:
    """Scores above the last bin edge are counted in the last bin."""
    _plot_binned(
        bin_edges=bin_edges,
        counts=counts,
        out_png=out_png,
        xlabel="Log-odds improvement (log10)",
        ylabel="Read count",
        title=title,
    )


def plot_region_width_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    title: str = "Target region widths",
) -> None:
    _plot_binned(
        bin_edges=bin_edges,
        counts=counts,
        out_png=out_png,
        xlabel="Region width (bp)",
        ylabel="Region count",
        title=title,
    )
