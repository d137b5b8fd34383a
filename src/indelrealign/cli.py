from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import pysam

from . import __version__
from .bam import realign_bam
from .config import ConfigurationError, ConsensusStrategy, RealignConfig
from .known_sites import KnownSitesTable, load_known_sites
from .plotting import plot_lod_hist, plot_outcome_counts, plot_region_width_hist
from .report import render_report
from .toy_data import make_toy_data
from .utils import ensure_outdir, write_json
from .validation import (
    check_fasta_index,
    check_vcf_index,
    detect_contig_style,
    resolve_known_sites_style,
)


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    sys.stderr.write(f"{err.__class__.__name__}: {err}\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _bam_contigs(bam_path: str) -> list[str]:
    with pysam.AlignmentFile(bam_path, "rb", check_sq=False) as bam:
        return list(bam.header.references)


def _vcf_contigs(vcf_path: str) -> list[str]:
    with pysam.VariantFile(vcf_path) as vcf:
        return list(vcf.header.contigs)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="indelrealign",
        description=(
            "indelrealign: local realignment of short reads around insertions and deletions, "
            "using consensuses built from the reads or from known indel sites."
        ),
    )
    p.add_argument("--version", action="version", version=f"indelrealign {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference, BAM, and known-indel VCF for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # realign
    # -----------------
    r = sub.add_parser(
        "realign",
        help="Realign reads around indels and write a realigned BAM plus a report.",
    )
    r.add_argument("--bam", required=True, type=_path_exists, help="Input BAM.")
    r.add_argument("--outdir", required=True, help="Output directory (report, summary, logs).")
    r.add_argument(
        "--out-bam",
        default=None,
        help="Output BAM path (default: outdir/realigned.bam).",
    )
    r.add_argument(
        "--ref",
        default=None,
        type=_path_exists,
        help="Reference FASTA (indexed). If omitted, the reference is rebuilt from MD tags.",
    )
    r.add_argument(
        "--known-vcf",
        default=None,
        type=_path_exists,
        help="Known indels VCF (.vcf/.vcf.gz), used with --strategy known.",
    )
    r.add_argument(
        "--strategy",
        choices=[s.value for s in ConsensusStrategy],
        default=ConsensusStrategy.FROM_READS.value,
        help="Consensus source: indels observed in the reads, or known sites.",
    )
    r.add_argument(
        "--no-require-pass",
        action="store_true",
        help="Do not require FILTER=PASS for known sites.",
    )
    r.add_argument(
        "--assume-sorted",
        action="store_true",
        help="Treat the input as coordinate sorted even without SO:coordinate in the header.",
    )
    r.add_argument(
        "--max-indel-size",
        type=int,
        default=RealignConfig.max_indel_size,
        help="Largest indel (bp) used as evidence or as a candidate.",
    )
    r.add_argument(
        "--max-consensus-number",
        type=int,
        default=RealignConfig.max_consensus_number,
        help="Maximum candidate consensuses per target region.",
    )
    r.add_argument(
        "--lod-threshold",
        type=float,
        default=RealignConfig.lod_threshold,
        help="Minimum log10 improvement required to move a read.",
    )
    r.add_argument(
        "--max-target-size",
        type=int,
        default=RealignConfig.max_target_size,
        help="Maximum target region width (bp).",
    )
    r.add_argument("--workers", type=int, default=1, help="Worker processes for region realignment.")
    r.add_argument(
        "--contig-style",
        choices=["ucsc", "ensembl", "auto"],
        default="auto",
        help="Contig naming style to reconcile BAM/VCF headers.",
    )
    r.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    r.add_argument("--resume", action="store_true", help="Skip if outputs already exist.")
    r.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "indelrealign quickstart (copy/paste):",
        "",
        "1) Realign around indels seen in the reads (reference from FASTA):",
        "   indelrealign realign \\",
        "     --bam sample.bam \\",
        "     --ref ref.fa \\",
        "     --outdir results/",
        "   Outputs: results/realigned.bam, results/report.html, results/summary.json",
        "",
        "2) Realign around known indels only:",
        "   indelrealign realign \\",
        "     --bam sample.bam \\",
        "     --ref ref.fa \\",
        "     --strategy known \\",
        "     --known-vcf known_indels.vcf.gz \\",
        "     --outdir results_known/",
        "",
        "3) No FASTA at hand (reads carry MD tags):",
        "   indelrealign realign \\",
        "     --bam sample.bam \\",
        "     --outdir results_md/ \\",
        "     --workers 4",
        "",
        "Tip: indelrealign make-toy-data --outdir toy/ builds a small BAM to try these on.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def _config_from_args(args: argparse.Namespace) -> RealignConfig:
    return RealignConfig(
        strategy=ConsensusStrategy(args.strategy),
        is_sorted=bool(args.assume_sorted),
        max_indel_size=int(args.max_indel_size),
        max_consensus_number=int(args.max_consensus_number),
        lod_threshold=float(args.lod_threshold),
        max_target_size=int(args.max_target_size),
    ).validate()


def _write_plots(outdir: Path, run: Dict[str, Any]) -> Dict[str, str]:
    plots_dir = outdir / "plots"
    plots_dir.mkdir(parents=True, exist_ok=True)

    outcome_png = plots_dir / "outcome_counts.png"
    lod_png = plots_dir / "lod_hist.png"
    width_png = plots_dir / "region_width_hist.png"

    plot_outcome_counts(counts=run["counts"], out_png=outcome_png)
    plot_lod_hist(
        bin_edges=run["lod_hist"]["bin_edges"],
        counts=run["lod_hist"]["counts"],
        out_png=lod_png,
    )
    plot_region_width_hist(
        bin_edges=run["region_width_hist"]["bin_edges"],
        counts=run["region_width_hist"]["counts"],
        out_png=width_png,
    )

    return {
        "outcome_counts": str(Path("plots") / outcome_png.name),
        "lod_hist": str(Path("plots") / lod_png.name),
        "region_width_hist": str(Path("plots") / width_png.name),
    }


def cmd_realign(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "realign.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("indelrealign")
    logger.info("indelrealign %s", __version__)

    try:
        config = _config_from_args(args)
        if args.workers < 1:
            raise ConfigurationError(f"--workers must be >= 1 (got {args.workers})")
        use_known = config.strategy is ConsensusStrategy.FROM_KNOWN_SITES
        if use_known and args.known_vcf is None:
            raise ConfigurationError("--strategy known requires --known-vcf")
        if args.known_vcf is not None and not use_known:
            logger.warning("--known-vcf is only used with --strategy known; ignoring it.")

        if args.ref is not None:
            check_fasta_index(args.ref)
        if use_known:
            check_vcf_index(args.known_vcf)

        bam_contigs = _bam_contigs(args.bam)
        out_bam = args.out_bam or str(outdir / "realigned.bam")

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"BAM contig style: {detect_contig_style(bam_contigs)}")
            if use_known:
                print(f"Known sites contig style: {detect_contig_style(_vcf_contigs(args.known_vcf))}")
            print(f"Reference: {args.ref or 'rebuilt from MD tags'}")
            print("Planned outputs:")
            print(f"  realigned BAM -> {out_bam}")
            print(f"  report.html -> {outdir / 'report.html'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            return 0

        outdir = ensure_outdir(outdir)

        if args.resume and (outdir / "summary.json").exists() and Path(out_bam).exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(outdir / "report.html"))
            return 0

        known_sites: Optional[KnownSitesTable] = None
        known_stats: Optional[Dict[str, int]] = None
        if use_known:
            known_sites, known_stats = load_known_sites(
                args.known_vcf,
                require_pass=not bool(args.no_require_pass),
                max_indel_size=config.max_indel_size,
            )
            known_sites = resolve_known_sites_style(known_sites, bam_contigs, args.contig_style)
            write_json(outdir / "known_sites_stats.json", known_stats)

        run = realign_bam(
            bam_path=args.bam,
            out_bam=out_bam,
            outdir=outdir,
            config=config,
            known_sites=known_sites,
            ref_fasta=args.ref,
            workers=int(args.workers),
            progress=True,
        )

        plots_rel = _write_plots(outdir, run)
        report_path = render_report(
            outdir=outdir,
            version=__version__,
            run=run,
            plots=plots_rel,
            known_vcf=args.known_vcf if use_known else None,
            known_stats=known_stats,
        )

        logger.info("Report written: %s", report_path)
        print(str(report_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "realign":
        return cmd_realign(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
